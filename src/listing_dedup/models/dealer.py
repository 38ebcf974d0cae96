from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from listing_dedup.models.base import Base, new_id, utcnow


class Dealer(Base):
    __tablename__ = "dealers"

    id: Mapped[str] = mapped_column(sa.String, primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(sa.String, index=True)
    name: Mapped[str] = mapped_column(sa.String)

    # Recomputed by the periodic relister pass, never on single detections
    frequent_relister: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    frequent_relister_updated_at: Mapped[datetime | None] = mapped_column(sa.DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
