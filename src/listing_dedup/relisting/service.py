"""Persistence-backed relisting detection, batch passes and queries.

Single-record functions take an ``AsyncSession`` and flush, leaving the
transaction to the caller.  Batch passes take a session factory and commit
each entity in its own unit of work, so a failure or cancellation never
rolls back entities already processed.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from listing_dedup.db.session import session_scope
from listing_dedup.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    OperationCancelledError,
)
from listing_dedup.matching.config import MatchingConfig, load_default_config
from listing_dedup.models.base import utcnow
from listing_dedup.models.dealer import Dealer
from listing_dedup.models.enums import RelistingType
from listing_dedup.models.listing import Listing
from listing_dedup.models.relisting_pattern import RelistingPattern
from listing_dedup.relisting.classifier import (
    DefaultSuspiciousClassifier,
    SuspiciousPatternClassifier,
    apply_classification,
)
from listing_dedup.relisting.detector import METHOD_LABELS, find_relisting_match, inactive_since
from listing_dedup.schemas import ScrapedRecord
from listing_dedup.worker.persistence import (
    listing_to_dict,
    load_deactivated_listings_as_dicts,
    record_from_listing,
)

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class RelistingDetectionResult:
    is_relisting: bool
    pattern: RelistingPattern | None = None
    matched_listing_id: str | None = None
    match_confidence: float = 0.0
    match_method: str | None = None
    price_delta: float | None = None
    time_off_market: dt.timedelta | None = None


@dataclass
class RelistingScanResult:
    listings_scanned: int = 0
    relistings_found: int = 0
    suspicious_patterns: int = 0
    pattern_ids: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0


@dataclass
class DealerRelistingStatistics:
    dealer_id: str
    total_listings: int
    total_relistings: int
    relisting_rate: float
    suspicious_relistings: int
    average_days_between_relistings: float
    average_price_change: float | None
    average_price_change_percent: float | None
    is_frequent_relister: bool


@dataclass
class FrequentRelisterUpdateResult:
    dealers_checked: int = 0
    dealers_updated: int = 0
    errors: list[str] = field(default_factory=list)


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


def _report(
    progress: ProgressCallback | None, done: int, total: int, interval: int, noun: str
) -> None:
    if progress is not None and (done % interval == 0 or done == total):
        progress(done, total, f"Processed {done}/{total} {noun}")


def _check_cancelled(
    cancel_event: asyncio.Event | None, processed: int, total: int, log
) -> None:
    if cancel_event is not None and cancel_event.is_set():
        log.warning("batch_cancelled", processed=processed, total=total)
        raise OperationCancelledError(processed, total)


# ---------------------------------------------------------------------------
# Pattern construction
# ---------------------------------------------------------------------------


def build_pattern(
    tenant_id: str,
    current: Listing,
    previous: dict,
    relisting_type: RelistingType,
    confidence: float,
    method: str,
) -> RelistingPattern:
    """Snapshot one relisting, deriving the price and timing figures."""
    previous_deactivated_at = inactive_since(previous)
    current_listed_at = current.first_seen_at or utcnow()
    # Overlapping listings (manual links) count as zero days off market
    off_market_days = max(
        0.0, (current_listed_at - previous_deactivated_at).total_seconds() / 86400
    )

    previous_price = previous.get("price")
    price_change = None
    price_change_percent = None
    if previous_price is not None and current.price is not None:
        price_change = current.price - previous_price
        if previous_price != 0:
            price_change_percent = price_change / previous_price * 100

    previous_dom = previous.get("days_on_market")
    if previous_dom is None and previous.get("first_seen_at") is not None:
        previous_dom = max(0, (previous_deactivated_at - previous["first_seen_at"]).days)

    return RelistingPattern(
        tenant_id=tenant_id,
        current_listing_id=current.id,
        previous_listing_id=previous["id"],
        dealer_id=current.dealer_id,
        type=relisting_type.value,
        match_confidence=confidence,
        match_method=method,
        previous_price=previous_price,
        current_price=current.price,
        price_change=price_change,
        price_change_percent=price_change_percent,
        previous_deactivated_at=previous_deactivated_at,
        current_listed_at=current_listed_at,
        days_between_listings=int(off_market_days),
        time_off_market_days=off_market_days,
        previous_days_on_market=previous_dom or 0,
        vin=current.vin,
        make=current.make,
        model=current.model,
        year=current.year,
        is_suspicious=False,
    )


async def _find_pattern(
    session: AsyncSession, tenant_id: str, current_id: str, previous_id: str
) -> RelistingPattern | None:
    result = await session.execute(
        sa.select(RelistingPattern).where(
            RelistingPattern.tenant_id == tenant_id,
            RelistingPattern.current_listing_id == current_id,
            RelistingPattern.previous_listing_id == previous_id,
        )
    )
    return result.scalar_one_or_none()


def _detection_result(
    pattern: RelistingPattern, confidence: float, method: str
) -> RelistingDetectionResult:
    return RelistingDetectionResult(
        is_relisting=True,
        pattern=pattern,
        matched_listing_id=pattern.previous_listing_id,
        match_confidence=confidence,
        match_method=method,
        price_delta=pattern.price_change,
        time_off_market=dt.timedelta(days=pattern.time_off_market_days),
    )


# ---------------------------------------------------------------------------
# Single-record detection
# ---------------------------------------------------------------------------


async def detect_relisting(
    session: AsyncSession,
    record: ScrapedRecord | None,
    config: MatchingConfig | None = None,
    now: dt.datetime | None = None,
    classifier: SuspiciousPatternClassifier | None = None,
) -> RelistingDetectionResult:
    """Check whether the record's listing relists a deactivated one.

    On a hit, stores one ``RelistingPattern`` and counts the relisting on
    the current listing.  A pattern that already exists for the pair is
    returned as-is without counting again.

    Raises:
        InvalidArgumentError: ``record`` is ``None`` or has no ``listing_id``.
        NotFoundError: The record's listing does not exist for its tenant.
    """
    if record is None:
        raise InvalidArgumentError("record must not be None")
    if not record.listing_id:
        raise InvalidArgumentError("relisting detection needs record.listing_id")
    if config is None:
        config = load_default_config()
    if now is None:
        now = utcnow()
    relisting = config.relisting

    current = await session.get(Listing, record.listing_id)
    if current is None or current.tenant_id != record.tenant_id:
        raise NotFoundError(f"listing {record.listing_id} not found")

    candidates = await load_deactivated_listings_as_dicts(
        session,
        record.tenant_id,
        since=now - dt.timedelta(days=relisting.lookback_days),
        exclude_id=current.id,
    )
    current_dict = {**record.to_dict(), "first_seen_at": current.first_seen_at}
    match = find_relisting_match(current_dict, candidates, relisting, now)
    if match is None:
        return RelistingDetectionResult(is_relisting=False)

    previous = match.candidate
    existing = await _find_pattern(session, record.tenant_id, current.id, previous["id"])
    if existing is not None:
        logger.debug(
            "relisting_already_recorded",
            pattern_id=existing.id,
            listing_id=current.id,
            previous_listing_id=previous["id"],
        )
        return _detection_result(existing, match.confidence, match.method)

    pattern = build_pattern(
        record.tenant_id, current, previous, match.type, match.confidence, match.method
    )
    apply_classification(pattern, classifier or DefaultSuspiciousClassifier(relisting.suspicious))
    session.add(pattern)
    current.mark_as_relisted(previous["id"], previous.get("relisted_count") or 0)
    await session.flush()

    logger.info(
        "relisting_detected",
        tenant_id=record.tenant_id,
        listing_id=current.id,
        previous_listing_id=previous["id"],
        type=match.type.value,
        confidence=match.confidence,
        suspicious=pattern.is_suspicious,
    )
    return _detection_result(pattern, match.confidence, match.method)


async def record_manual_relisting(
    session: AsyncSession,
    tenant_id: str,
    current_listing_id: str,
    previous_listing_id: str,
    config: MatchingConfig | None = None,
    classifier: SuspiciousPatternClassifier | None = None,
) -> RelistingPattern:
    """Record an operator-confirmed relisting at full confidence."""
    if current_listing_id == previous_listing_id:
        raise InvalidArgumentError("a listing cannot relist itself")
    if config is None:
        config = load_default_config()

    current = await session.get(Listing, current_listing_id)
    previous = await session.get(Listing, previous_listing_id)
    for listing_id, listing in ((current_listing_id, current), (previous_listing_id, previous)):
        if listing is None or listing.tenant_id != tenant_id:
            raise NotFoundError(f"listing {listing_id} not found")

    if await _find_pattern(session, tenant_id, current_listing_id, previous_listing_id):
        raise ConflictError(
            f"relisting {current_listing_id} <- {previous_listing_id} already recorded"
        )

    pattern = build_pattern(
        tenant_id,
        current,
        listing_to_dict(previous),
        RelistingType.COMBINED_MATCH,
        100.0,
        METHOD_LABELS[RelistingType.COMBINED_MATCH],
    )
    apply_classification(
        pattern, classifier or DefaultSuspiciousClassifier(config.relisting.suspicious)
    )
    session.add(pattern)
    current.mark_as_relisted(previous.id, previous.relisted_count or 0)
    await session.flush()

    logger.info(
        "manual_relisting_recorded",
        tenant_id=tenant_id,
        listing_id=current_listing_id,
        previous_listing_id=previous_listing_id,
    )
    return pattern


# ---------------------------------------------------------------------------
# Batch passes
# ---------------------------------------------------------------------------


async def scan_for_relistings(
    session_factory: async_sessionmaker,
    tenant_id: str,
    lookback_days: int | None = None,
    progress: ProgressCallback | None = None,
    cancel_event: asyncio.Event | None = None,
    config: MatchingConfig | None = None,
    now: dt.datetime | None = None,
    classifier: SuspiciousPatternClassifier | None = None,
) -> RelistingScanResult:
    """Run relisting detection over recently created active listings.

    Listings that already have a pattern as the current side are skipped.
    Each listing is checked in its own transaction; failures are recorded
    as ``"<listing id>: <message>"`` and the scan continues.

    Raises:
        OperationCancelledError: ``cancel_event`` was set; raised before
            the next listing is started.
    """
    if config is None:
        config = load_default_config()
    if lookback_days is None:
        lookback_days = config.relisting.scan_lookback_days
    if now is None:
        now = utcnow()
    log = logger.bind(tenant_id=tenant_id, operation="relisting_scan")
    started = time.perf_counter()

    already_recorded = sa.exists().where(
        RelistingPattern.tenant_id == tenant_id,
        RelistingPattern.current_listing_id == Listing.id,
    )
    async with session_factory() as session:
        result = await session.execute(
            sa.select(Listing.id)
            .where(
                Listing.tenant_id == tenant_id,
                Listing.is_active.is_(True),
                Listing.created_at >= now - dt.timedelta(days=lookback_days),
                ~already_recorded,
            )
            .order_by(Listing.created_at, Listing.id)
        )
        listing_ids = list(result.scalars().all())

    total = len(listing_ids)
    scan = RelistingScanResult(listings_scanned=total)
    log.info("relisting_scan_started", total=total, lookback_days=lookback_days)

    for i, listing_id in enumerate(listing_ids):
        _check_cancelled(cancel_event, i, total, log)
        try:
            async with session_scope(session_factory) as session:
                listing = await session.get(Listing, listing_id)
                detection = await detect_relisting(
                    session, record_from_listing(listing), config, now, classifier
                )
            if detection.is_relisting:
                scan.relistings_found += 1
                scan.pattern_ids.append(detection.pattern.id)
                if detection.pattern.is_suspicious:
                    scan.suspicious_patterns += 1
        except Exception as e:
            log.error("relisting_scan_item_failed", listing_id=listing_id, error=str(e), exc_info=True)
            scan.errors.append(f"{listing_id}: {e}")
        _report(progress, i + 1, total, config.relisting.progress_interval, "listings")

    scan.duration_ms = int((time.perf_counter() - started) * 1000)
    log.info(
        "relisting_scan_complete",
        scanned=total,
        found=scan.relistings_found,
        suspicious=scan.suspicious_patterns,
        errors=len(scan.errors),
        duration_ms=scan.duration_ms,
    )
    return scan


async def get_dealer_relisting_statistics(
    session: AsyncSession,
    tenant_id: str,
    dealer_id: str,
    config: MatchingConfig | None = None,
) -> DealerRelistingStatistics:
    """Aggregate relisting behaviour of one dealer."""
    if config is None:
        config = load_default_config()
    relisting = config.relisting

    total_listings = (
        await session.execute(
            sa.select(sa.func.count()).select_from(Listing).where(
                Listing.tenant_id == tenant_id, Listing.dealer_id == dealer_id
            )
        )
    ).scalar_one()
    patterns = (
        await session.execute(
            sa.select(RelistingPattern).where(
                RelistingPattern.tenant_id == tenant_id,
                RelistingPattern.dealer_id == dealer_id,
            )
        )
    ).scalars().all()

    total_relistings = len(patterns)
    rate = total_relistings / total_listings if total_listings else 0.0
    return DealerRelistingStatistics(
        dealer_id=dealer_id,
        total_listings=total_listings,
        total_relistings=total_relistings,
        relisting_rate=rate,
        suspicious_relistings=sum(1 for p in patterns if p.is_suspicious),
        average_days_between_relistings=_mean([p.days_between_listings for p in patterns]) or 0.0,
        average_price_change=_mean([p.price_change for p in patterns if p.price_change is not None]),
        average_price_change_percent=_mean(
            [p.price_change_percent for p in patterns if p.price_change_percent is not None]
        ),
        is_frequent_relister=(
            rate >= relisting.frequent_relister_rate
            and total_relistings >= relisting.frequent_relister_min_relistings
        ),
    )


async def update_frequent_relister_flags(
    session_factory: async_sessionmaker,
    tenant_id: str,
    progress: ProgressCallback | None = None,
    cancel_event: asyncio.Event | None = None,
    config: MatchingConfig | None = None,
    now: dt.datetime | None = None,
) -> FrequentRelisterUpdateResult:
    """Recompute ``Dealer.frequent_relister`` for every dealer of a tenant.

    Same batch discipline as ``scan_for_relistings``.
    """
    if config is None:
        config = load_default_config()
    if now is None:
        now = utcnow()
    log = logger.bind(tenant_id=tenant_id, operation="frequent_relister_update")

    async with session_factory() as session:
        result = await session.execute(
            sa.select(Dealer.id).where(Dealer.tenant_id == tenant_id).order_by(Dealer.id)
        )
        dealer_ids = list(result.scalars().all())

    total = len(dealer_ids)
    outcome = FrequentRelisterUpdateResult()

    for i, dealer_id in enumerate(dealer_ids):
        _check_cancelled(cancel_event, i, total, log)
        try:
            async with session_scope(session_factory) as session:
                stats = await get_dealer_relisting_statistics(session, tenant_id, dealer_id, config)
                dealer = await session.get(Dealer, dealer_id)
                if dealer.frequent_relister != stats.is_frequent_relister:
                    dealer.frequent_relister = stats.is_frequent_relister
                    outcome.dealers_updated += 1
                    log.info(
                        "frequent_relister_flag_changed",
                        dealer_id=dealer_id,
                        frequent_relister=stats.is_frequent_relister,
                        relisting_rate=round(stats.relisting_rate, 4),
                    )
                dealer.frequent_relister_updated_at = now
            outcome.dealers_checked += 1
        except Exception as e:
            log.error("frequent_relister_item_failed", dealer_id=dealer_id, error=str(e), exc_info=True)
            outcome.errors.append(f"{dealer_id}: {e}")
        _report(progress, i + 1, total, config.relisting.progress_interval, "dealers")

    log.info(
        "frequent_relister_update_complete",
        checked=outcome.dealers_checked,
        updated=outcome.dealers_updated,
        errors=len(outcome.errors),
    )
    return outcome


async def reclassify_patterns(
    session: AsyncSession,
    tenant_id: str,
    classifier: SuspiciousPatternClassifier | None = None,
    config: MatchingConfig | None = None,
) -> int:
    """Re-run suspicious classification over a tenant's patterns.

    Returns the number of patterns whose flag or reason changed.
    """
    if classifier is None:
        classifier = DefaultSuspiciousClassifier((config or load_default_config()).relisting.suspicious)

    result = await session.execute(
        sa.select(RelistingPattern).where(RelistingPattern.tenant_id == tenant_id)
    )
    changed = sum(
        1 for pattern in result.scalars().all() if apply_classification(pattern, classifier)
    )
    await session.flush()
    logger.info("relisting_patterns_reclassified", tenant_id=tenant_id, changed=changed)
    return changed


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _window(
    stmt: sa.Select,
    from_date: dt.datetime | None,
    to_date: dt.datetime | None,
    limit: int | None,
) -> sa.Select:
    if from_date is not None:
        stmt = stmt.where(RelistingPattern.detected_at >= from_date)
    if to_date is not None:
        stmt = stmt.where(RelistingPattern.detected_at <= to_date)
    stmt = stmt.order_by(RelistingPattern.detected_at.desc(), RelistingPattern.id.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return stmt


async def get_dealer_relisting_patterns(
    session: AsyncSession,
    tenant_id: str,
    dealer_id: str,
    from_date: dt.datetime | None = None,
    to_date: dt.datetime | None = None,
    limit: int | None = None,
) -> list[RelistingPattern]:
    stmt = sa.select(RelistingPattern).where(
        RelistingPattern.tenant_id == tenant_id,
        RelistingPattern.dealer_id == dealer_id,
    )
    result = await session.execute(_window(stmt, from_date, to_date, limit))
    return list(result.scalars().all())


async def get_listing_relisting_history(
    session: AsyncSession, tenant_id: str, listing_id: str
) -> list[RelistingPattern]:
    """Patterns where the listing is either the current or the previous side."""
    stmt = sa.select(RelistingPattern).where(
        RelistingPattern.tenant_id == tenant_id,
        sa.or_(
            RelistingPattern.current_listing_id == listing_id,
            RelistingPattern.previous_listing_id == listing_id,
        ),
    )
    result = await session.execute(_window(stmt, None, None, None))
    return list(result.scalars().all())


async def get_suspicious_patterns(
    session: AsyncSession,
    tenant_id: str,
    from_date: dt.datetime | None = None,
    to_date: dt.datetime | None = None,
    limit: int | None = None,
) -> list[RelistingPattern]:
    stmt = sa.select(RelistingPattern).where(
        RelistingPattern.tenant_id == tenant_id,
        RelistingPattern.is_suspicious.is_(True),
    )
    result = await session.execute(_window(stmt, from_date, to_date, limit))
    return list(result.scalars().all())
