from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class PhoneNumber(BaseModel):
    """Rented number row."""

    id: int
    phone_number: str
    # NULL on rows that predate multi-provider support
    provider: Optional[str] = None

    # Provider identifiers
    rent_id: Optional[str] = None  # booking id used for every later provider call
    order_id: Optional[str] = None
    order_booking_id: Optional[str] = None
    external_url: Optional[str] = None  # scrape target for receive_sms_online

    # Canonical codes
    service: str = "unknown"
    country: str = "0"

    # Lifecycle
    status: str = "active"  # active, expired, cancelled
    end_date: Optional[datetime] = None
    last_message_check: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status == "active"
