"""Pydantic models for review queue queries and results."""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from listing_dedup.models.enums import MatchMethod, ResolutionDecision, ReviewStatus


class ReviewFilter(BaseModel):
    """Filter and page selection for ``list_reviews``."""

    status: ReviewStatus | None = None
    match_method: MatchMethod | None = None
    min_confidence: float | None = None
    max_confidence: float | None = None
    created_from: dt.datetime | None = None
    created_to: dt.datetime | None = None
    page: int = Field(default=1, ge=1)
    size: int = Field(default=20, ge=1, le=500)


class ListingSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    make: str | None = None
    model: str | None = None
    year: int | None = None
    price: float | None = None
    mileage: int | None = None
    city: str | None = None
    source_site: str | None = None


class ReviewItemInfo(BaseModel):
    """A review item denormalized with both listings' summaries."""

    id: int
    tenant_id: str
    listing_id_a: str
    listing_id_b: str
    confidence_score: float
    match_method: MatchMethod
    field_scores: dict | None = None
    status: ReviewStatus
    resolution: ResolutionDecision
    created_at: dt.datetime
    resolved_at: dt.datetime | None = None
    resolved_by: str | None = None
    notes: str | None = None
    listing_a: ListingSummary | None = None
    listing_b: ListingSummary | None = None


class ReviewPage(BaseModel):
    items: list[ReviewItemInfo]
    total: int
    page: int
    size: int
    pages: int


class ReviewQueueStats(BaseModel):
    total: int = 0
    pending: int = 0
    resolved: int = 0
    dismissed: int = 0
    same_vehicle: int = 0
    different_vehicle: int = 0
    average_confidence: float = 0.0
