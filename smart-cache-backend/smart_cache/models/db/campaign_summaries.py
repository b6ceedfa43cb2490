from __future__ import annotations
"""SQLAlchemy model for stored per-period aggregate summaries (database view)."""
from datetime import date, datetime
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Date, DateTime, ForeignKey, JSON, Numeric, Float, BigInteger, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .clients import Client
from smart_cache.database import Base


class CampaignSummary(Base):
    __tablename__ = "campaign_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Natural key: (client_id, platform, period_type, period_id)
    client_id: Mapped[int] = mapped_column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    period_type: Mapped[str] = mapped_column(String(16), nullable=False)
    period_id: Mapped[str] = mapped_column(String(10), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    # Scalar totals for querying / reporting; the payload is authoritative.
    total_spend: Mapped[float] = mapped_column(Numeric(14, 2), default=0)
    total_impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    total_clicks: Mapped[int] = mapped_column(BigInteger, default=0)
    total_conversions: Mapped[int] = mapped_column(BigInteger, default=0)
    average_ctr: Mapped[float] = mapped_column(Float, default=0.0)
    average_cpc: Mapped[float] = mapped_column(Float, default=0.0)
    reservations: Mapped[int] = mapped_column(Integer, default=0)
    reservation_value: Mapped[float] = mapped_column(Numeric(14, 2), default=0)
    roas: Mapped[float] = mapped_column(Float, default=0.0)
    cost_per_reservation: Mapped[float] = mapped_column(Float, default=0.0)
    campaign_count: Mapped[int] = mapped_column(Integer, default=0)

    summary_payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, default=1)
    data_source: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    client: Mapped["Client"] = relationship("Client", back_populates="summaries")

    __table_args__ = (
        UniqueConstraint("client_id", "platform", "period_type", "period_id", name="uq_campaign_summaries_key"),
    )
