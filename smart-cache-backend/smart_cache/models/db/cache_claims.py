from __future__ import annotations
"""SQLAlchemy model for rebuild claims (cross-process single-flight)."""
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from smart_cache.database import Base


class CacheClaim(Base):
    """One row per cache key currently being rebuilt.

    Inserted before the fetch, deleted after STORED/FAILED. A row whose
    ``expires_at`` has passed belongs to a crashed rebuild and may be taken over.
    """
    __tablename__ = "cache_claims"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False)
    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    period_type: Mapped[str] = mapped_column(String(16), nullable=False)
    period_id: Mapped[str] = mapped_column(String(10), nullable=False)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("client_id", "platform", "period_type", "period_id", name="uq_cache_claims_key"),
    )
