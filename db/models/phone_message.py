from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class PhoneMessage(BaseModel):
    """Stored inbound SMS row."""

    id: int
    phone_number_id: int
    sender: str
    message: str
    received_at: datetime
    message_source: str = "api"  # api, scraping, webhook
    raw: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
