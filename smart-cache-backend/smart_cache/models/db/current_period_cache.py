from __future__ import annotations
"""SQLAlchemy model for the current-period fast-path cache."""
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from smart_cache.database import Base


class CurrentPeriodCache(Base):
    __tablename__ = "current_period_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_id: Mapped[int] = mapped_column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    period_type: Mapped[str] = mapped_column(String(16), nullable=False)
    period_id: Mapped[str] = mapped_column(String(10), nullable=False, index=True)

    cache_payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    data_source: Mapped[str] = mapped_column(String(32), nullable=False)
    # Read by the FreshnessPolicy; only bumped by a successful rebuild.
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("client_id", "platform", "period_type", "period_id", name="uq_current_period_cache_key"),
    )
