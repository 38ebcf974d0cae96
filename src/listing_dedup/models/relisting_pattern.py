"""Relisting pattern model linking a listing to its earlier incarnation."""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from listing_dedup.models.base import Base, utcnow
from listing_dedup.models.enums import RelistingType, sql_in


class RelistingPattern(Base):
    """One detected relisting.

    Rows are written once.  Only ``is_suspicious`` and
    ``suspicious_reason`` change afterwards, through the classification
    pass.
    """

    __tablename__ = "relisting_patterns"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String)
    current_listing_id: Mapped[str] = mapped_column(sa.String)
    previous_listing_id: Mapped[str] = mapped_column(sa.String)
    dealer_id: Mapped[str | None] = mapped_column(sa.String, nullable=True)

    # Detection
    type: Mapped[str] = mapped_column(sa.String)
    match_confidence: Mapped[float] = mapped_column(sa.Float)
    match_method: Mapped[str] = mapped_column(sa.String)

    # Price
    previous_price: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    current_price: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    price_change: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    price_change_percent: Mapped[float | None] = mapped_column(sa.Float, nullable=True)

    # Timing
    previous_deactivated_at: Mapped[datetime] = mapped_column(sa.DateTime)
    current_listed_at: Mapped[datetime] = mapped_column(sa.DateTime)
    days_between_listings: Mapped[int] = mapped_column(sa.Integer)
    time_off_market_days: Mapped[float] = mapped_column(sa.Float)
    previous_days_on_market: Mapped[int] = mapped_column(sa.Integer, default=0)

    # Vehicle snapshot
    vin: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    make: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    model: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    year: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)

    is_suspicious: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    suspicious_reason: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

    detected_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)

    __table_args__ = (
        sa.UniqueConstraint(
            "tenant_id", "current_listing_id", "previous_listing_id",
            name="uq_relisting_patterns_pair",
        ),
        sa.Index("ix_relisting_patterns_dealer", "tenant_id", "dealer_id"),
        sa.CheckConstraint(f"type IN ({sql_in(RelistingType)})", name="valid_relisting_type"),
    )

    @property
    def relisting_type(self) -> RelistingType:
        return RelistingType(self.type)
