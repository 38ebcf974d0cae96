"""Review item model for near-match pairs awaiting a human decision."""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from listing_dedup.models.base import Base, utcnow
from listing_dedup.models.enums import (
    MatchMethod,
    ResolutionDecision,
    ReviewStatus,
    sql_in,
)


def pair_key(listing_id_a: str, listing_id_b: str) -> str:
    """Order-independent key for a listing pair."""
    low, high = sorted((listing_id_a, listing_id_b))
    return f"{low}|{high}"


class ReviewItem(Base):
    """A listing pair scored inside the review band.

    ``pair_key`` is the normalized unordered pair; the partial unique
    index allows at most one pending item per pair and tenant while
    keeping any number of resolved or dismissed history rows.
    """

    __tablename__ = "review_items"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String)
    listing_id_a: Mapped[str] = mapped_column(sa.String)
    listing_id_b: Mapped[str] = mapped_column(sa.String)
    pair_key: Mapped[str] = mapped_column(sa.String)

    confidence_score: Mapped[float] = mapped_column(sa.Float)
    match_method: Mapped[str] = mapped_column(sa.String)
    field_scores: Mapped[dict | None] = mapped_column(sa.JSON, nullable=True)

    status: Mapped[str] = mapped_column(sa.String, default=ReviewStatus.PENDING.value)
    resolution: Mapped[str] = mapped_column(sa.String, default=ResolutionDecision.UNSET.value)
    resolved_at: Mapped[datetime | None] = mapped_column(sa.DateTime, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    notes: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)

    __table_args__ = (
        sa.Index(
            "uq_review_items_pending_pair",
            "tenant_id",
            "pair_key",
            unique=True,
            sqlite_where=sa.text("status = 'pending'"),
            postgresql_where=sa.text("status = 'pending'"),
        ),
        sa.Index("ix_review_items_tenant_status", "tenant_id", "status"),
        sa.CheckConstraint("listing_id_a <> listing_id_b", name="distinct_listings"),
        sa.CheckConstraint(f"status IN ({sql_in(ReviewStatus)})", name="valid_review_status"),
        sa.CheckConstraint(f"resolution IN ({sql_in(ResolutionDecision)})", name="valid_resolution"),
        sa.CheckConstraint(f"match_method IN ({sql_in(MatchMethod)})", name="valid_review_method"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == ReviewStatus.PENDING.value
