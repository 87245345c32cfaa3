"""Rental provider adapters.

One adapter per upstream, all implementing IProviderAdapter, plus the
shared code tables, error taxonomy and retry helper they build on.
"""

from lib.providers.base import IProviderAdapter, BaseProviderClient
from lib.providers.codes import CodeTables, CodeTranslator, get_translator
from lib.providers.errors import ErrorKind, ProviderError, ResolveError, is_already_inactive
from lib.providers.models import (
    Ack,
    ActiveRental,
    Catalog,
    CatalogCountry,
    CatalogService,
    ProviderMessage,
    RentalResult,
    extract_code,
)
from lib.providers.registry import (
    ALL_PROVIDERS,
    ANOSIM,
    GOGETSMS,
    RECEIVE_SMS_ONLINE,
    SMS_ACTIVATE,
    SMSPVA,
    ProviderRegistry,
)
from lib.providers.retry import retry_async

__all__ = [
    # Interface
    "IProviderAdapter",
    "BaseProviderClient",
    "ProviderRegistry",
    # Codes
    "CodeTables",
    "CodeTranslator",
    "get_translator",
    # Errors
    "ErrorKind",
    "ProviderError",
    "ResolveError",
    "is_already_inactive",
    "retry_async",
    # Models
    "Ack",
    "ActiveRental",
    "Catalog",
    "CatalogCountry",
    "CatalogService",
    "ProviderMessage",
    "RentalResult",
    "extract_code",
    # Provider tags
    "ALL_PROVIDERS",
    "ANOSIM",
    "GOGETSMS",
    "RECEIVE_SMS_ONLINE",
    "SMS_ACTIVATE",
    "SMSPVA",
]
