"""Listing loading and link persistence for the matching workers.

Provides:
- ``listing_to_dict``: Convert a ``Listing`` row into the dict shape the
  pure matching and relisting functions consume.
- ``load_active_listings_as_dicts`` / ``load_deactivated_listings_as_dicts``:
  Tenant-scoped candidate pools.
- ``link_matched_listing``: Record fuzzy-link metadata on an incoming listing.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from listing_dedup.models.listing import Listing
from listing_dedup.schemas import ScrapedRecord


def listing_to_dict(listing: Listing) -> dict:
    return {
        "id": listing.id,
        "tenant_id": listing.tenant_id,
        "vin": listing.vin,
        "external_id": listing.external_id,
        "source_site": listing.source_site,
        "make": listing.make,
        "model": listing.model,
        "year": listing.year,
        "price": listing.price,
        "mileage": listing.mileage,
        "exterior_color": listing.exterior_color,
        "image_hash": listing.image_hash,
        "city": listing.city,
        "latitude": listing.latitude,
        "longitude": listing.longitude,
        "dealer_id": listing.dealer_id,
        "is_active": listing.is_active,
        "first_seen_at": listing.first_seen_at,
        "last_seen_at": listing.last_seen_at,
        "deactivated_at": listing.deactivated_at,
        "days_on_market": listing.days_on_market,
        "relisted_count": listing.relisted_count,
    }


def record_from_listing(listing: Listing) -> ScrapedRecord:
    """Rebuild the scraped record of a stored listing, for batch re-checks."""
    return ScrapedRecord(
        tenant_id=listing.tenant_id,
        external_id=listing.external_id,
        source_site=listing.source_site,
        listing_id=listing.id,
        vin=listing.vin,
        make=listing.make,
        model=listing.model,
        year=listing.year,
        price=listing.price,
        mileage=listing.mileage,
        latitude=listing.latitude,
        longitude=listing.longitude,
        dealer_id=listing.dealer_id,
        exterior_color=listing.exterior_color,
        image_hash=listing.image_hash,
        city=listing.city,
    )


async def load_active_listings_as_dicts(
    session: AsyncSession, tenant_id: str
) -> list[dict]:
    """All active listings of a tenant, oldest first."""
    result = await session.execute(
        select(Listing)
        .where(Listing.tenant_id == tenant_id, Listing.is_active.is_(True))
        .order_by(Listing.first_seen_at, Listing.id)
    )
    return [listing_to_dict(listing) for listing in result.scalars().all()]


async def load_deactivated_listings_as_dicts(
    session: AsyncSession,
    tenant_id: str,
    since: dt.datetime,
    exclude_id: str | None = None,
) -> list[dict]:
    """Deactivated listings that went off market at or after ``since``.

    Listings without a deactivation time are judged by ``last_seen_at``.
    Most recently deactivated first.
    """
    stmt = select(Listing).where(
        Listing.tenant_id == tenant_id,
        Listing.is_active.is_(False),
        or_(
            Listing.deactivated_at >= since,
            and_(Listing.deactivated_at.is_(None), Listing.last_seen_at >= since),
        ),
    )
    if exclude_id is not None:
        stmt = stmt.where(Listing.id != exclude_id)
    stmt = stmt.order_by(Listing.deactivated_at.desc(), Listing.last_seen_at.desc())

    result = await session.execute(stmt)
    return [listing_to_dict(listing) for listing in result.scalars().all()]


async def link_matched_listing(
    session: AsyncSession,
    listing_id: str,
    matched_listing_id: str,
    confidence: float,
    method: str,
) -> bool:
    """Store duplicate-of metadata on the incoming listing.

    The matched listing is left untouched.  Returns ``False`` when the
    incoming listing does not exist.
    """
    listing = await session.get(Listing, listing_id)
    if listing is None:
        return False
    listing.duplicate_of_id = matched_listing_id
    listing.match_confidence = confidence
    listing.match_method = method
    await session.flush()
    return True
