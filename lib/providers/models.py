"""Provider Pydantic models.

Normalized shapes every adapter returns, regardless of upstream dialect.
"""

import re
from datetime import datetime, timezone
from typing import Dict, Optional, Any

from pydantic import BaseModel, Field


CODE_PATTERN = re.compile(r"\b(\d{4,8})\b")


def extract_code(text: Optional[str]) -> Optional[str]:
    """Pull a 4-8 digit verification code out of an SMS body."""
    if not text:
        return None
    match = CODE_PATTERN.search(text)
    return match.group(1) if match else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CatalogService(BaseModel):
    """One purchasable service in a provider catalog."""
    code: str
    name: str
    price: float = 0.0
    count: int = 0
    currency: str = "USD"


class CatalogCountry(BaseModel):
    """One country in a provider catalog."""
    code: str
    name: str


class Catalog(BaseModel):
    """Merged services/countries for a provider."""
    provider: str
    services: Dict[str, CatalogService] = Field(default_factory=dict)
    countries: Dict[str, CatalogCountry] = Field(default_factory=dict)
    # "live" when built from upstream data, "fallback" for the curated list
    source: str = "live"

    def is_empty(self) -> bool:
        return not self.services


class RentalResult(BaseModel):
    """Outcome of a successful rent call."""
    provider: str
    booking_id: str = Field(min_length=1)
    phone_number: str = Field(min_length=1)
    service: str
    country: str
    expires_at: Optional[datetime] = None
    order_id: Optional[str] = None
    cost: Optional[float] = None


class ProviderMessage(BaseModel):
    """One inbound SMS, normalized."""
    sender: str
    message: str
    received_at: datetime = Field(default_factory=utcnow)
    source: str = "api"
    # False when received_at was inferred (missing, relative or clock-only)
    exact_time: bool = True
    # audit capture (scraped row HTML or matched text)
    raw: Optional[str] = None

    @property
    def code(self) -> Optional[str]:
        return extract_code(self.message)

    def key(self) -> tuple:
        """Dedup key (sender, message)."""
        return (self.sender, self.message)


class ActiveRental(BaseModel):
    """A rental the provider reports as live."""
    provider: str
    booking_id: str
    phone_number: str
    service: Optional[str] = None
    status: str = "active"
    expires_at: Optional[datetime] = None
    order_id: Optional[str] = None
    can_extend: Optional[bool] = None
    has_new_sms: Optional[bool] = None


class Ack(BaseModel):
    """Acknowledgement for extend/cancel."""
    provider: str
    booking_id: str
    success: bool = True
    message: Optional[str] = None
    expires_at: Optional[datetime] = None
    raw: Optional[Any] = None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a provider timestamp (unix seconds/ms or ISO-8601 string).

    Naive values are assumed UTC. Returns None when unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
        seconds = float(value)
        # millisecond epochs
        if seconds > 10_000_000_000:
            seconds = seconds / 1000
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
            except ValueError:
                return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None
