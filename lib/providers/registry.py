"""Provider tag -> adapter lookup."""

from typing import Dict, Optional, Type

from lib.providers.anosim import AnosimClient
from lib.providers.base import BaseProviderClient, IProviderAdapter
from lib.providers.gogetsms import GoGetSmsClient
from lib.providers.sms_activate import SmsActivateClient
from lib.providers.smspva import SmspvaClient


SMS_ACTIVATE = "sms_activate"
SMSPVA = "smspva"
ANOSIM = "anosim"
GOGETSMS = "gogetsms"
# HTML-only inbox, handled by lib.receive_sms instead of an adapter
RECEIVE_SMS_ONLINE = "receive_sms_online"

ADAPTER_CLASSES: Dict[str, Type[BaseProviderClient]] = {
    SMS_ACTIVATE: SmsActivateClient,
    SMSPVA: SmspvaClient,
    ANOSIM: AnosimClient,
    GOGETSMS: GoGetSmsClient,
}

ALL_PROVIDERS = tuple(ADAPTER_CLASSES) + (RECEIVE_SMS_ONLINE,)

# Records without a provider tag predate multi-provider support
DEFAULT_PROVIDER = SMS_ACTIVATE


class ProviderRegistry:
    """Lazily builds one adapter instance per provider tag.

    Pass `adapters` to inject ready-made (or mock) adapters.
    """

    def __init__(self, adapters: Optional[Dict[str, IProviderAdapter]] = None):
        self._adapters: Dict[str, IProviderAdapter] = dict(adapters or {})

    def get(self, provider: Optional[str]) -> IProviderAdapter:
        tag = provider or DEFAULT_PROVIDER
        if tag not in self._adapters:
            if tag not in ADAPTER_CLASSES:
                raise KeyError(f"Unknown provider: {tag}")
            self._adapters[tag] = ADAPTER_CLASSES[tag]()
        return self._adapters[tag]

    def available(self) -> Dict[str, bool]:
        """Provider tag -> credential configured."""
        return {tag: self.get(tag).is_available() for tag in ADAPTER_CLASSES}
