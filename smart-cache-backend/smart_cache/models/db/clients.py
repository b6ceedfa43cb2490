from __future__ import annotations
"""SQLAlchemy model for hotel clients whose ad accounts are reported on."""
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .campaign_summaries import CampaignSummary

from sqlalchemy.sql import func
from smart_cache.database import Base


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, unique=True, index=True)
    # Platform account identifiers; credentials live outside this service.
    meta_ad_account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    google_customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    summaries: Mapped[list["CampaignSummary"]] = relationship(
        "CampaignSummary", back_populates="client", cascade="all, delete-orphan"
    )

    def account_id_for(self, platform: str) -> str | None:
        """Return the ad account id for ``platform`` ('meta' | 'google')."""
        if platform == "meta":
            account = self.meta_ad_account_id
            # Graph API ids are stored with or without the act_ prefix
            if account and account.startswith("act_"):
                return account[4:]
            return account
        if platform == "google":
            return self.google_customer_id
        return None
