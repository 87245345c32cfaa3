"""receive-sms-online.info inbox scraping (the provider with no API)."""

from lib.receive_sms.parser import is_valid_message, parse_messages
from lib.receive_sms.relay import PathStats, RelayPathCache
from lib.receive_sms.scraper import ReceiveSmsScraper, ScrapeDebugInfo, ScrapeResult, validate_url

__all__ = [
    "ReceiveSmsScraper",
    "ScrapeResult",
    "ScrapeDebugInfo",
    "RelayPathCache",
    "PathStats",
    "parse_messages",
    "is_valid_message",
    "validate_url",
]
