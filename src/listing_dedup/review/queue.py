"""Review queue: persisted near-match pairs awaiting a human decision.

State machine: ``pending -> resolved`` or ``pending -> dismissed``; both
are terminal.  Functions take an ``AsyncSession`` and flush; the caller
owns the transaction.
"""

from __future__ import annotations

import datetime as dt
import math

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from listing_dedup.errors import ConflictError, InvalidArgumentError
from listing_dedup.models.base import utcnow
from listing_dedup.models.enums import MatchMethod, ResolutionDecision, ReviewStatus
from listing_dedup.models.listing import Listing
from listing_dedup.models.review_item import ReviewItem, pair_key
from listing_dedup.review.schemas import (
    ListingSummary,
    ReviewFilter,
    ReviewItemInfo,
    ReviewPage,
    ReviewQueueStats,
)

logger = structlog.get_logger()


async def review_exists(
    session: AsyncSession, tenant_id: str, listing_id_a: str, listing_id_b: str
) -> bool:
    """Whether a pending item exists for the unordered pair."""
    stmt = sa.select(sa.func.count()).select_from(ReviewItem).where(
        ReviewItem.tenant_id == tenant_id,
        ReviewItem.pair_key == pair_key(listing_id_a, listing_id_b),
        ReviewItem.status == ReviewStatus.PENDING.value,
    )
    return (await session.execute(stmt)).scalar_one() > 0


async def create_review_item(
    session: AsyncSession,
    tenant_id: str,
    listing_id_a: str,
    listing_id_b: str,
    confidence: float,
    method: MatchMethod,
    field_scores: dict | None = None,
) -> ReviewItem:
    """Enqueue a pending review for a listing pair.

    Raises:
        InvalidArgumentError: Both ids name the same listing.
        ConflictError: A pending item already exists for the pair in
            either order.  When the unique index rather than the
            pre-check detects it, the session must be rolled back.
    """
    if listing_id_a == listing_id_b:
        raise InvalidArgumentError("a review pair needs two different listings")

    if await review_exists(session, tenant_id, listing_id_a, listing_id_b):
        raise ConflictError(
            f"pending review already exists for {listing_id_a} / {listing_id_b}"
        )

    item = ReviewItem(
        tenant_id=tenant_id,
        listing_id_a=listing_id_a,
        listing_id_b=listing_id_b,
        pair_key=pair_key(listing_id_a, listing_id_b),
        confidence_score=confidence,
        match_method=MatchMethod(method).value,
        field_scores=field_scores,
        status=ReviewStatus.PENDING.value,
        resolution=ResolutionDecision.UNSET.value,
    )
    session.add(item)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise ConflictError(
            f"pending review already exists for {listing_id_a} / {listing_id_b}"
        ) from exc

    logger.info(
        "review_item_created",
        review_id=item.id,
        tenant_id=tenant_id,
        listing_id_a=listing_id_a,
        listing_id_b=listing_id_b,
        confidence=confidence,
        method=item.match_method,
    )
    return item


async def _pending_item(
    session: AsyncSession, review_id: int, tenant_id: str | None
) -> ReviewItem | None:
    item = await session.get(ReviewItem, review_id)
    if item is None or (tenant_id is not None and item.tenant_id != tenant_id):
        return None
    if not item.is_pending:
        return None
    return item


async def resolve_review(
    session: AsyncSession,
    review_id: int,
    decision: ResolutionDecision | str,
    resolved_by: str | None = None,
    notes: str | None = None,
    tenant_id: str | None = None,
    now: dt.datetime | None = None,
) -> bool:
    """Resolve a pending item.

    Returns ``False`` without any change when the item is missing or no
    longer pending.  Resolving with ``unset`` raises
    ``InvalidArgumentError``.
    """
    try:
        decision = ResolutionDecision(decision)
    except ValueError as exc:
        raise InvalidArgumentError(f"unknown resolution decision {decision!r}") from exc
    if decision is ResolutionDecision.UNSET:
        raise InvalidArgumentError("a resolution decision is required")

    item = await _pending_item(session, review_id, tenant_id)
    if item is None:
        logger.warning("review_not_resolvable", review_id=review_id)
        return False

    item.status = ReviewStatus.RESOLVED.value
    item.resolution = decision.value
    item.resolved_at = now or utcnow()
    item.resolved_by = resolved_by
    item.notes = notes
    await session.flush()

    logger.info(
        "review_resolved",
        review_id=review_id,
        decision=decision.value,
        resolved_by=resolved_by,
    )
    return True


async def dismiss_review(
    session: AsyncSession,
    review_id: int,
    reason: str | None = None,
    dismissed_by: str | None = None,
    tenant_id: str | None = None,
    now: dt.datetime | None = None,
) -> bool:
    """Dismiss a pending item; ``False`` when missing or not pending."""
    item = await _pending_item(session, review_id, tenant_id)
    if item is None:
        logger.warning("review_not_dismissable", review_id=review_id)
        return False

    item.status = ReviewStatus.DISMISSED.value
    item.resolved_at = now or utcnow()
    item.resolved_by = dismissed_by
    item.notes = reason
    await session.flush()

    logger.info("review_dismissed", review_id=review_id, reason=reason)
    return True


async def add_review_note(
    session: AsyncSession, review_id: int, note: str, tenant_id: str | None = None
) -> bool:
    """Append a line to the item's notes, in any status."""
    item = await session.get(ReviewItem, review_id)
    if item is None or (tenant_id is not None and item.tenant_id != tenant_id):
        return False

    item.notes = f"{item.notes}\n{note}" if item.notes else note
    await session.flush()
    return True


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def _summaries(
    session: AsyncSession, items: list[ReviewItem]
) -> dict[str, ListingSummary]:
    ids = {i.listing_id_a for i in items} | {i.listing_id_b for i in items}
    if not ids:
        return {}
    result = await session.execute(sa.select(Listing).where(Listing.id.in_(ids)))
    return {
        listing.id: ListingSummary.model_validate(listing)
        for listing in result.scalars().all()
    }


def _to_info(item: ReviewItem, summaries: dict[str, ListingSummary]) -> ReviewItemInfo:
    return ReviewItemInfo(
        id=item.id,
        tenant_id=item.tenant_id,
        listing_id_a=item.listing_id_a,
        listing_id_b=item.listing_id_b,
        confidence_score=item.confidence_score,
        match_method=MatchMethod(item.match_method),
        field_scores=item.field_scores,
        status=ReviewStatus(item.status),
        resolution=ResolutionDecision(item.resolution),
        created_at=item.created_at,
        resolved_at=item.resolved_at,
        resolved_by=item.resolved_by,
        notes=item.notes,
        listing_a=summaries.get(item.listing_id_a),
        listing_b=summaries.get(item.listing_id_b),
    )


async def get_review(
    session: AsyncSession, review_id: int, tenant_id: str | None = None
) -> ReviewItemInfo | None:
    item = await session.get(ReviewItem, review_id)
    if item is None or (tenant_id is not None and item.tenant_id != tenant_id):
        return None
    return _to_info(item, await _summaries(session, [item]))


async def list_reviews(
    session: AsyncSession, tenant_id: str, filters: ReviewFilter | None = None
) -> ReviewPage:
    """Filtered, paginated review items.

    Ordered by confidence descending, then newest first.
    """
    if filters is None:
        filters = ReviewFilter()

    stmt = sa.select(ReviewItem).where(ReviewItem.tenant_id == tenant_id)
    if filters.status is not None:
        stmt = stmt.where(ReviewItem.status == filters.status.value)
    if filters.match_method is not None:
        stmt = stmt.where(ReviewItem.match_method == filters.match_method.value)
    if filters.min_confidence is not None:
        stmt = stmt.where(ReviewItem.confidence_score >= filters.min_confidence)
    if filters.max_confidence is not None:
        stmt = stmt.where(ReviewItem.confidence_score <= filters.max_confidence)
    if filters.created_from is not None:
        stmt = stmt.where(ReviewItem.created_at >= filters.created_from)
    if filters.created_to is not None:
        stmt = stmt.where(ReviewItem.created_at <= filters.created_to)

    count_stmt = sa.select(sa.func.count()).select_from(stmt.subquery())
    total = (await session.execute(count_stmt)).scalar_one()

    stmt = (
        stmt.order_by(ReviewItem.confidence_score.desc(), ReviewItem.created_at.desc())
        .offset((filters.page - 1) * filters.size)
        .limit(filters.size)
    )
    items = list((await session.execute(stmt)).scalars().all())
    summaries = await _summaries(session, items)

    pages = math.ceil(total / filters.size) if total > 0 else 1
    return ReviewPage(
        items=[_to_info(item, summaries) for item in items],
        total=total,
        page=filters.page,
        size=filters.size,
        pages=pages,
    )


async def list_pending_reviews(
    session: AsyncSession, tenant_id: str, limit: int = 50
) -> list[ReviewItemInfo]:
    page = await list_reviews(
        session, tenant_id, ReviewFilter(status=ReviewStatus.PENDING, size=limit)
    )
    return page.items


async def get_review_stats(session: AsyncSession, tenant_id: str) -> ReviewQueueStats:
    """Counts per status and resolution plus mean confidence."""
    stmt = sa.select(
        sa.func.count(),
        sa.func.sum(sa.case((ReviewItem.status == ReviewStatus.PENDING.value, 1), else_=0)),
        sa.func.sum(sa.case((ReviewItem.status == ReviewStatus.RESOLVED.value, 1), else_=0)),
        sa.func.sum(sa.case((ReviewItem.status == ReviewStatus.DISMISSED.value, 1), else_=0)),
        sa.func.sum(
            sa.case((ReviewItem.resolution == ResolutionDecision.SAME_VEHICLE.value, 1), else_=0)
        ),
        sa.func.sum(
            sa.case((ReviewItem.resolution == ResolutionDecision.DIFFERENT_VEHICLE.value, 1), else_=0)
        ),
        sa.func.avg(ReviewItem.confidence_score),
    ).where(ReviewItem.tenant_id == tenant_id)

    total, pending, resolved, dismissed, same, different, avg = (
        await session.execute(stmt)
    ).one()
    return ReviewQueueStats(
        total=total,
        pending=pending or 0,
        resolved=resolved or 0,
        dismissed=dismissed or 0,
        same_vehicle=same or 0,
        different_vehicle=different or 0,
        average_confidence=round(avg or 0.0, 2),
    )
