"""Listing model -- one scraped vehicle offering on one marketplace."""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from listing_dedup.models.base import Base, new_id, utcnow


class Listing(Base):
    """A vehicle listing owned by a tenant.

    ``(external_id, source_site)`` is the marketplace's natural key.
    ``relisted_count`` and ``previous_listing_id`` are maintained by
    relisting detection; ``duplicate_of_id``, ``match_confidence`` and
    ``match_method`` record an automatic link to an existing listing.
    """

    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(sa.String, primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(sa.String, index=True)

    # Identity
    vin: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    external_id: Mapped[str] = mapped_column(sa.String)
    source_site: Mapped[str] = mapped_column(sa.String)

    # Vehicle attributes
    make: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    model: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    year: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    price: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    mileage: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    exterior_color: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    image_hash: Mapped[str | None] = mapped_column(sa.String, nullable=True)

    # Location
    city: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    latitude: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(sa.Float, nullable=True)

    dealer_id: Mapped[str | None] = mapped_column(sa.String, nullable=True, index=True)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    first_seen_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
    deactivated_at: Mapped[datetime | None] = mapped_column(sa.DateTime, nullable=True)
    days_on_market: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)

    # Relisting linkage
    relisted_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    previous_listing_id: Mapped[str | None] = mapped_column(sa.String, nullable=True)

    # Fuzzy-link metadata
    duplicate_of_id: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    match_confidence: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    match_method: Mapped[str | None] = mapped_column(sa.String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(sa.DateTime, nullable=True, onupdate=utcnow)

    __table_args__ = (
        sa.Index("ix_listings_tenant_active", "tenant_id", "is_active"),
        sa.Index("ix_listings_tenant_external", "tenant_id", "external_id", "source_site"),
    )

    def deactivate(self, at: datetime | None = None) -> None:
        if self.is_active:
            self.is_active = False
            self.deactivated_at = at or utcnow()

    def reactivate(self) -> None:
        if not self.is_active:
            self.is_active = True
            self.deactivated_at = None

    def mark_as_relisted(self, previous_listing_id: str, previous_relisted_count: int = 0) -> None:
        """Link to the earlier incarnation and count one more relisting.

        The count continues the previous listing's chain when that is
        longer than this listing's own.
        """
        self.relisted_count = max(self.relisted_count or 0, previous_relisted_count or 0) + 1
        self.previous_listing_id = previous_listing_id
