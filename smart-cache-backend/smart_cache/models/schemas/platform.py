"""
Pydantic schemas for ad platform adapter output.
Adapters map their raw Meta / Google Ads responses onto these before
anything downstream (aggregation, storage) sees them.
"""
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

FUNNEL_FIELDS: tuple[str, ...] = (
    "click_to_call",
    "email_contacts",
    "booking_step_1",
    "booking_step_2",
    "booking_step_3",
    "reservations",
    "reservation_value",
)

class CampaignRow(BaseModel):
    """One campaign's raw metrics for a period.

    Funnel counters are floats because simulated / derived data may share
    account totals across campaigns pro-rata; production rows are integral.
    ``ctr`` is the platform's own reported value in percent.
    """
    campaign_id: str
    campaign_name: str = "Unknown Campaign"
    status: str = "UNKNOWN"

    spend: float = Field(0.0, ge=0)
    impressions: int = Field(0, ge=0)
    clicks: int = Field(0, ge=0)
    conversions: float = Field(0.0, ge=0)
    ctr: Optional[float] = Field(None, ge=0, description="Platform reported CTR (%)")
    cpc: Optional[float] = Field(None, ge=0, description="Platform reported cost per click")

    click_to_call: float = Field(0.0, ge=0)
    email_contacts: float = Field(0.0, ge=0)
    booking_step_1: float = Field(0.0, ge=0)
    booking_step_2: float = Field(0.0, ge=0)
    booking_step_3: float = Field(0.0, ge=0)
    reservations: float = Field(0.0, ge=0)
    reservation_value: float = Field(0.0, ge=0)

    model_config = ConfigDict(extra="ignore", json_schema_extra={
        "example": {
            "campaign_id": "120210000000001",
            "campaign_name": "Spring stays - retargeting",
            "spend": 412.55,
            "impressions": 51230,
            "clicks": 903,
            "conversions": 14,
            "ctr": 1.76,
            "cpc": 0.46,
            "click_to_call": 6,
            "email_contacts": 2,
            "booking_step_1": 120,
            "booking_step_2": 41,
            "booking_step_3": 19,
            "reservations": 14,
            "reservation_value": 6210.0,
        }
    })

class AccountInsights(BaseModel):
    """Account-level insight object; its CTR / CPC are used verbatim when present."""
    ctr: float = Field(ge=0, description="Account level CTR (%)")
    cpc: float = Field(ge=0)
    spend: Optional[float] = Field(None, ge=0)
    impressions: Optional[int] = Field(None, ge=0)
    clicks: Optional[int] = Field(None, ge=0)
