"""Per-dealer deduplication rule model."""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from listing_dedup.models.base import Base, new_id, utcnow


class DealerDeduplicationRule(Base):
    """Thresholds, weights, tolerances and feature flags for one dealer.

    Every override column is nullable; ``None`` means the system default
    from ``MatchingConfig`` applies.  The ``min_*``/``max_*`` and filter
    columns bound which listings the rule applies to.
    """

    __tablename__ = "dealer_dedup_rules"

    id: Mapped[str] = mapped_column(sa.String, primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(sa.String)
    dealer_id: Mapped[str] = mapped_column(sa.String)
    rule_name: Mapped[str] = mapped_column(sa.String)
    description: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    priority: Mapped[int] = mapped_column(sa.Integer, default=0)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)

    # Thresholds
    auto_match_threshold: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    review_threshold: Mapped[float | None] = mapped_column(sa.Float, nullable=True)

    # Weights
    make_model_weight: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    year_weight: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    mileage_weight: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    price_weight: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    location_weight: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    image_weight: Mapped[float | None] = mapped_column(sa.Float, nullable=True)

    # Tolerances
    mileage_tolerance: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    price_tolerance: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    year_tolerance: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)

    # Features
    enable_vin_matching: Mapped[bool | None] = mapped_column(sa.Boolean, nullable=True)
    enable_fuzzy_matching: Mapped[bool | None] = mapped_column(sa.Boolean, nullable=True)
    enable_image_matching: Mapped[bool | None] = mapped_column(sa.Boolean, nullable=True)
    require_exact_vin_match: Mapped[bool | None] = mapped_column(sa.Boolean, nullable=True)

    # Applicability bounds
    min_price: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    max_price: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    min_year: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    max_year: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    make_filter: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    model_filter: Mapped[str | None] = mapped_column(sa.String, nullable=True)

    # Usage
    times_applied: Mapped[int] = mapped_column(sa.Integer, default=0)
    last_applied_at: Mapped[datetime | None] = mapped_column(sa.DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
    created_by: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(sa.DateTime, nullable=True)
    updated_by: Mapped[str | None] = mapped_column(sa.String, nullable=True)

    __table_args__ = (
        sa.Index("ix_dealer_dedup_rules_dealer", "tenant_id", "dealer_id", "is_active"),
    )
