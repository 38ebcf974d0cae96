"""Matching orchestrator bridging persistence, dealer rules and the pipeline.

Provides the runtime logic that connects:
1. Loading the tenant's active listings from the DB
2. Resolving the applicable dealer rule into an effective configuration
3. Running the matching pipeline (pure function)
4. Enqueuing review items for results in the review band
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from listing_dedup.db.session import session_scope
from listing_dedup.errors import InvalidArgumentError, OperationCancelledError
from listing_dedup.matching.config import MatchingConfig, load_default_config
from listing_dedup.matching.pipeline import MatchResult, find_best_match
from listing_dedup.relisting.service import ProgressCallback
from listing_dedup.review.queue import create_review_item, review_exists
from listing_dedup.rules import apply_rule
from listing_dedup.rules.store import get_applicable_rule, record_rule_application
from listing_dedup.schemas import ScrapedRecord
from listing_dedup.worker.persistence import link_matched_listing, load_active_listings_as_dicts

logger = structlog.get_logger()


@dataclass
class BatchResult:
    """Outcome of ``process_scraped_batch``."""

    total: int = 0
    matched: int = 0
    reviews_created: int = 0
    review_band: int = 0
    new_listings: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def processed(self) -> int:
        return self.matched + self.review_band + self.new_listings


async def match_scraped_record(
    session: AsyncSession,
    record: ScrapedRecord | None,
    config: MatchingConfig | None = None,
) -> MatchResult:
    """Match one scraped record against the tenant's active listings.

    The applicable dealer rule is resolved once and recorded as applied.
    In the review band a pending review item is enqueued when the record
    carries a ``listing_id`` and the pair has no pending review yet.  The
    matched listing is never modified.

    Raises:
        InvalidArgumentError: ``record`` is ``None``; raised before any I/O.
        ConflictError: A concurrent writer enqueued the same pair first.
    """
    if record is None:
        raise InvalidArgumentError("record must not be None")
    if config is None:
        config = load_default_config()
    log = logger.bind(tenant_id=record.tenant_id, external_id=record.external_id)

    candidates = await load_active_listings_as_dicts(session, record.tenant_id)

    rule = await get_applicable_rule(
        session, record.tenant_id, record.dealer_id, record.to_dict()
    )
    if rule is not None:
        await record_rule_application(session, rule.id)
    effective = apply_rule(config, rule)

    result = find_best_match(record, candidates, effective)
    result.rule_id = rule.id if rule is not None else None

    if result.needs_review:
        if not record.listing_id:
            log.warning(
                "review_skipped_no_listing_id",
                matched_listing_id=result.matched_listing_id,
                confidence=result.confidence,
            )
        elif await review_exists(
            session, record.tenant_id, record.listing_id, result.matched_listing_id
        ):
            log.info(
                "review_already_pending",
                listing_id=record.listing_id,
                matched_listing_id=result.matched_listing_id,
            )
        else:
            item = await create_review_item(
                session,
                record.tenant_id,
                record.listing_id,
                result.matched_listing_id,
                result.confidence,
                result.method,
                result.field_scores,
            )
            result.review_item_id = item.id

    log.info(
        "record_matched",
        decision=result.decision,
        method=result.method.value,
        confidence=result.confidence,
        matched_listing_id=result.matched_listing_id,
        rule_id=result.rule_id,
        candidates=len(candidates),
    )
    return result


async def process_scraped_batch(
    session_factory: async_sessionmaker,
    records: list[ScrapedRecord],
    config: MatchingConfig | None = None,
    progress: ProgressCallback | None = None,
    cancel_event: asyncio.Event | None = None,
) -> BatchResult:
    """Match a batch of records, one transaction per record.

    Auto-matched records with a ``listing_id`` get duplicate-of metadata
    on their own listing.  Failures are recorded as ``"<id>: <message>"``
    and the batch continues.

    Raises:
        OperationCancelledError: ``cancel_event`` was set; raised before
            the next record is started.
    """
    if config is None:
        config = load_default_config()
    total = len(records)
    log = logger.bind(operation="scraped_batch", batch_size=total)
    batch = BatchResult(total=total)
    started = time.perf_counter()

    for i, record in enumerate(records):
        if cancel_event is not None and cancel_event.is_set():
            log.warning("batch_cancelled", processed=i, total=total)
            raise OperationCancelledError(i, total)

        entity_id = (record.listing_id or record.external_id) if record is not None else f"#{i}"
        try:
            async with session_scope(session_factory) as session:
                result = await match_scraped_record(session, record, config)
                if result.is_match and record.listing_id:
                    await link_matched_listing(
                        session,
                        record.listing_id,
                        result.matched_listing_id,
                        result.confidence,
                        result.method.value,
                    )
            if result.is_match:
                batch.matched += 1
            elif result.needs_review:
                batch.review_band += 1
                if result.review_item_id is not None:
                    batch.reviews_created += 1
            else:
                batch.new_listings += 1
        except Exception as e:
            log.error("batch_record_failed", entity_id=entity_id, error=str(e), exc_info=True)
            batch.errors.append(f"{entity_id}: {e}")

        done = i + 1
        if progress is not None and (done % config.progress_interval == 0 or done == total):
            progress(done, total, f"Processed {done}/{total} records")

    batch.duration_ms = int((time.perf_counter() - started) * 1000)
    log.info(
        "batch_complete",
        matched=batch.matched,
        review_band=batch.review_band,
        reviews_created=batch.reviews_created,
        new_listings=batch.new_listings,
        errors=len(batch.errors),
        duration_ms=batch.duration_ms,
    )
    return batch
