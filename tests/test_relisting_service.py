"""Tests for persisted relisting detection, batch passes and queries."""

import asyncio
import datetime as dt

import pytest

from listing_dedup.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    OperationCancelledError,
)
from listing_dedup.matching.config import MatchingConfig, RelistingConfig
from listing_dedup.models.dealer import Dealer
from listing_dedup.models.enums import RelistingType
from listing_dedup.models.listing import Listing
from listing_dedup.models.relisting_pattern import RelistingPattern
from listing_dedup.relisting import service
from listing_dedup.relisting.service import (
    detect_relisting,
    get_dealer_relisting_patterns,
    get_dealer_relisting_statistics,
    get_listing_relisting_history,
    get_suspicious_patterns,
    reclassify_patterns,
    record_manual_relisting,
    scan_for_relistings,
    update_frequent_relister_flags,
)
from listing_dedup.schemas import ScrapedRecord
from listing_dedup.worker.persistence import record_from_listing

from conftest import NOW, TENANT, make_listing

CONFIG = MatchingConfig()


def _current(id: str = "CUR", **overrides) -> Listing:
    data = {"first_seen_at": NOW, "last_seen_at": NOW, "created_at": NOW, "price": 17000.0}
    data.update(overrides)
    return make_listing(id, **data)


def _previous(id: str = "PREV", days_ago: float = 2, **overrides) -> Listing:
    data = {
        "is_active": False,
        "deactivated_at": NOW - dt.timedelta(days=days_ago),
        "last_seen_at": NOW - dt.timedelta(days=days_ago),
        "first_seen_at": NOW - dt.timedelta(days=40),
        "created_at": NOW - dt.timedelta(days=40),
    }
    data.update(overrides)
    return make_listing(id, **data)


class _FlagEverything:
    def classify(self, pattern):
        return "flagged"


class TestDetectRelisting:
    async def test_vin_relisting_recorded(self, session) -> None:
        current = _current(vin="V1", dealer_id="D1")
        session.add_all([current, _previous(vin="V1", relisted_count=1)])
        await session.flush()

        result = await detect_relisting(session, record_from_listing(current), CONFIG, NOW)

        assert result.is_relisting
        assert result.matched_listing_id == "PREV"
        assert result.match_confidence == 100
        assert result.match_method == "vin"
        assert result.price_delta == pytest.approx(-1000.0)
        assert result.time_off_market == dt.timedelta(days=2)

        pattern = result.pattern
        assert pattern.id is not None
        assert pattern.relisting_type is RelistingType.VIN_MATCH
        assert pattern.dealer_id == "D1"
        assert pattern.previous_price == 18000.0
        assert pattern.current_price == 17000.0
        assert pattern.price_change_percent == pytest.approx(-1000 / 18000 * 100)
        assert pattern.days_between_listings == 2
        assert pattern.previous_days_on_market == 38
        assert pattern.is_suspicious
        assert "same VIN" in pattern.suspicious_reason

        assert current.relisted_count == 2
        assert current.previous_listing_id == "PREV"

    async def test_active_previous_is_not_a_relisting(self, session) -> None:
        current = _current(vin="V1")
        session.add_all([current, make_listing("OTHER", vin="V1")])
        await session.flush()

        result = await detect_relisting(session, record_from_listing(current), CONFIG, NOW)

        assert not result.is_relisting
        assert result.pattern is None
        assert current.relisted_count == 0

    async def test_overlapping_listing_is_not_a_relisting(self, session) -> None:
        current = _current(vin="V1", first_seen_at=NOW - dt.timedelta(days=30))
        session.add_all([current, _previous(vin="V1", days_ago=5)])
        await session.flush()

        result = await detect_relisting(session, record_from_listing(current), CONFIG, NOW)

        assert not result.is_relisting
        assert current.relisted_count == 0
        assert await get_listing_relisting_history(session, TENANT, "CUR") == []

    async def test_detection_is_idempotent(self, session) -> None:
        current = _current(vin="V1")
        session.add_all([current, _previous(vin="V1")])
        await session.flush()
        record = record_from_listing(current)

        first = await detect_relisting(session, record, CONFIG, NOW)
        second = await detect_relisting(session, record, CONFIG, NOW)

        assert second.is_relisting
        assert second.pattern.id == first.pattern.id
        assert current.relisted_count == 1

    async def test_outside_lookback_ignored(self, session) -> None:
        current = _current(vin="V1")
        session.add_all([current, _previous(vin="V1", days_ago=120)])
        await session.flush()

        result = await detect_relisting(session, record_from_listing(current), CONFIG, NOW)
        assert not result.is_relisting

    async def test_requires_listing_id(self, session) -> None:
        record = ScrapedRecord(tenant_id=TENANT, external_id="x", source_site="SiteA")
        with pytest.raises(InvalidArgumentError):
            await detect_relisting(session, record, CONFIG, NOW)
        with pytest.raises(InvalidArgumentError):
            await detect_relisting(session, None, CONFIG, NOW)

    async def test_unknown_listing(self, session) -> None:
        record = ScrapedRecord(
            tenant_id=TENANT, external_id="x", source_site="SiteA", listing_id="missing"
        )
        with pytest.raises(NotFoundError):
            await detect_relisting(session, record, CONFIG, NOW)

    async def test_custom_classifier(self, session) -> None:
        current = _current(external_id="ext-PREV", make="Toyota")
        session.add_all([current, _previous(days_ago=30)])
        await session.flush()

        result = await detect_relisting(
            session, record_from_listing(current), CONFIG, NOW, classifier=_FlagEverything()
        )
        assert result.match_method == "external_id"
        assert result.pattern.suspicious_reason == "flagged"


class TestManualRelisting:
    async def test_records_combined_match(self, session) -> None:
        session.add_all([_current(), _previous(make="Toyota")])
        await session.flush()

        pattern = await record_manual_relisting(session, TENANT, "CUR", "PREV", CONFIG)

        assert pattern.relisting_type is RelistingType.COMBINED_MATCH
        assert pattern.match_confidence == 100.0
        assert pattern.match_method == "manual"
        current = await session.get(Listing, "CUR")
        assert current.relisted_count == 1

    async def test_overlapping_manual_link_has_no_negative_gap(self, session) -> None:
        session.add_all([
            _current(first_seen_at=NOW - dt.timedelta(days=30)),
            _previous(days_ago=5),
        ])
        await session.flush()

        pattern = await record_manual_relisting(session, TENANT, "CUR", "PREV", CONFIG)

        assert pattern.time_off_market_days == 0.0
        assert pattern.days_between_listings == 0

    async def test_duplicate_conflicts(self, session) -> None:
        session.add_all([_current(), _previous()])
        await session.flush()
        await record_manual_relisting(session, TENANT, "CUR", "PREV", CONFIG)
        with pytest.raises(ConflictError):
            await record_manual_relisting(session, TENANT, "CUR", "PREV", CONFIG)

    async def test_errors(self, session) -> None:
        session.add(_current())
        await session.flush()
        with pytest.raises(InvalidArgumentError):
            await record_manual_relisting(session, TENANT, "CUR", "CUR", CONFIG)
        with pytest.raises(NotFoundError):
            await record_manual_relisting(session, TENANT, "CUR", "NOPE", CONFIG)
        with pytest.raises(NotFoundError):
            await record_manual_relisting(session, "tenant-2", "CUR", "PREV", CONFIG)


class TestScan:
    async def _seed(self, add_listings) -> None:
        await add_listings(
            _current("CUR1", vin="V1"),
            _previous("PREV1", vin="V1"),
            _current("CUR2", vin="V2", make="Ford", model="Focus"),
        )

    async def test_scan_finds_relistings(self, test_session_factory, add_listings) -> None:
        await self._seed(add_listings)
        calls = []
        cfg = MatchingConfig(relisting=RelistingConfig(progress_interval=1))

        result = await scan_for_relistings(
            test_session_factory, TENANT, progress=lambda *a: calls.append(a),
            config=cfg, now=NOW,
        )

        assert result.listings_scanned == 2
        assert result.relistings_found == 1
        assert result.suspicious_patterns == 1
        assert len(result.pattern_ids) == 1
        assert result.errors == []
        assert [c[:2] for c in calls] == [(1, 2), (2, 2)]

        async with test_session_factory() as session:
            current = await session.get(Listing, "CUR1")
            assert current.relisted_count == 1

    async def test_progress_default_cadence(self, test_session_factory, add_listings) -> None:
        await add_listings(*[_current(f"C{i:02d}", vin=f"VIN{i}") for i in range(51)])
        calls = []

        result = await scan_for_relistings(
            test_session_factory, TENANT, progress=lambda *a: calls.append(a),
            config=CONFIG, now=NOW,
        )

        assert result.listings_scanned == 51
        assert calls == [
            (50, 51, "Processed 50/51 listings"),
            (51, 51, "Processed 51/51 listings"),
        ]

    async def test_rescan_skips_recorded(self, test_session_factory, add_listings) -> None:
        await self._seed(add_listings)
        await scan_for_relistings(test_session_factory, TENANT, config=CONFIG, now=NOW)
        again = await scan_for_relistings(test_session_factory, TENANT, config=CONFIG, now=NOW)
        assert again.listings_scanned == 1
        assert again.relistings_found == 0

    async def test_lookback_window(self, test_session_factory, add_listings) -> None:
        await self._seed(add_listings)
        result = await scan_for_relistings(
            test_session_factory, TENANT, lookback_days=1, config=CONFIG,
            now=NOW + dt.timedelta(days=5),
        )
        assert result.listings_scanned == 0

    async def test_item_errors_collected(self, test_session_factory, add_listings, monkeypatch) -> None:
        await self._seed(add_listings)
        real = service.detect_relisting

        async def _flaky(session, record, *args, **kwargs):
            if record.listing_id == "CUR2":
                raise RuntimeError("boom")
            return await real(session, record, *args, **kwargs)

        monkeypatch.setattr(service, "detect_relisting", _flaky)
        result = await scan_for_relistings(test_session_factory, TENANT, config=CONFIG, now=NOW)

        assert result.relistings_found == 1
        assert result.errors == ["CUR2: boom"]

    async def test_cancellation(self, test_session_factory, add_listings) -> None:
        await self._seed(add_listings)
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError) as exc_info:
            await scan_for_relistings(
                test_session_factory, TENANT, cancel_event=cancel, config=CONFIG, now=NOW
            )
        assert exc_info.value.processed == 0
        assert exc_info.value.total == 2

    async def test_cancellation_keeps_committed_work(self, test_session_factory, add_listings) -> None:
        await self._seed(add_listings)
        cancel = asyncio.Event()
        cfg = MatchingConfig(relisting=RelistingConfig(progress_interval=1))

        with pytest.raises(OperationCancelledError) as exc_info:
            await scan_for_relistings(
                test_session_factory, TENANT, progress=lambda *a: cancel.set(),
                cancel_event=cancel, config=cfg, now=NOW,
            )
        assert exc_info.value.processed == 1

        async with test_session_factory() as session:
            history = await get_listing_relisting_history(session, TENANT, "PREV1")
            assert len(history) == 1


class TestDealerStatistics:
    async def _seed(self, session) -> None:
        session.add_all([
            Dealer(id="D1", tenant_id=TENANT, name="Relist Motors"),
            Dealer(id="D2", tenant_id=TENANT, name="Steady Cars"),
            _current(vin="V1", dealer_id="D1"),
            _previous(vin="V1", dealer_id="D1"),
            make_listing("OTHER", dealer_id="D2"),
        ])
        await session.flush()
        current = await session.get(Listing, "CUR")
        await detect_relisting(session, record_from_listing(current), CONFIG, NOW)
        await session.commit()

    async def test_statistics(self, session) -> None:
        await self._seed(session)
        stats = await get_dealer_relisting_statistics(session, TENANT, "D1", CONFIG)

        assert stats.total_listings == 2
        assert stats.total_relistings == 1
        assert stats.relisting_rate == pytest.approx(0.5)
        assert stats.suspicious_relistings == 1
        assert stats.average_days_between_relistings == pytest.approx(2.0)
        assert stats.average_price_change == pytest.approx(-1000.0)
        # Fewer relistings than the default minimum
        assert not stats.is_frequent_relister

    async def test_dealer_without_listings(self, session) -> None:
        stats = await get_dealer_relisting_statistics(session, TENANT, "D9", CONFIG)
        assert stats.relisting_rate == 0.0
        assert stats.average_price_change is None

    async def test_update_flags(self, session, test_session_factory) -> None:
        await self._seed(session)
        cfg = MatchingConfig(relisting=RelistingConfig(frequent_relister_min_relistings=1))

        result = await update_frequent_relister_flags(test_session_factory, TENANT, config=cfg, now=NOW)

        assert result.dealers_checked == 2
        assert result.dealers_updated == 1
        assert result.errors == []
        async with test_session_factory() as check:
            d1 = await check.get(Dealer, "D1")
            d2 = await check.get(Dealer, "D2")
            assert d1.frequent_relister
            assert d1.frequent_relister_updated_at == NOW
            assert not d2.frequent_relister

    async def test_update_flags_cancelled(self, session, test_session_factory) -> None:
        await self._seed(session)
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError):
            await update_frequent_relister_flags(
                test_session_factory, TENANT, cancel_event=cancel, config=CONFIG
            )


class TestPatternQueries:
    async def _pattern(self, session, current_id, previous_id, dealer_id, suspicious, detected_at):
        session.add(
            RelistingPattern(
                tenant_id=TENANT,
                current_listing_id=current_id,
                previous_listing_id=previous_id,
                dealer_id=dealer_id,
                type=RelistingType.FUZZY_MATCH.value,
                match_confidence=80.0,
                match_method="fuzzy",
                previous_deactivated_at=detected_at - dt.timedelta(days=10),
                current_listed_at=detected_at,
                days_between_listings=10,
                time_off_market_days=10.0,
                previous_days_on_market=20,
                price_change_percent=0.0,
                is_suspicious=suspicious,
                suspicious_reason="flagged" if suspicious else None,
                detected_at=detected_at,
            )
        )
        await session.flush()

    async def test_queries(self, session) -> None:
        await self._pattern(session, "B", "A", "D1", False, NOW - dt.timedelta(days=3))
        await self._pattern(session, "C", "B", "D1", True, NOW - dt.timedelta(days=1))
        await self._pattern(session, "Y", "X", "D2", True, NOW - dt.timedelta(days=2))

        dealer = await get_dealer_relisting_patterns(session, TENANT, "D1")
        assert [p.current_listing_id for p in dealer] == ["C", "B"]

        windowed = await get_dealer_relisting_patterns(
            session, TENANT, "D1", from_date=NOW - dt.timedelta(days=2)
        )
        assert [p.current_listing_id for p in windowed] == ["C"]

        history = await get_listing_relisting_history(session, TENANT, "B")
        assert [(p.current_listing_id, p.previous_listing_id) for p in history] == [
            ("C", "B"),
            ("B", "A"),
        ]

        suspicious = await get_suspicious_patterns(session, TENANT, limit=1)
        assert [p.current_listing_id for p in suspicious] == ["C"]

    async def test_reclassify(self, session) -> None:
        await self._pattern(session, "B", "A", "D1", True, NOW)
        await self._pattern(session, "C", "B", "D1", False, NOW)

        changed = await reclassify_patterns(session, TENANT, config=CONFIG)
        assert changed == 1
        assert await get_suspicious_patterns(session, TENANT) == []

        assert await reclassify_patterns(session, TENANT, classifier=_FlagEverything()) == 2
