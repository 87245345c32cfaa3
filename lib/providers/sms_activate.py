"""SMS-Activate rental API adapter.

SMS-Activate is the canonical provider: its numeric country ids and
two-letter service codes are the code space the rest of the system uses,
so its translator tables are identity maps.
"""

from lib.providers.handler_api import HandlerApiClient


API_BASE_URL = "https://api.sms-activate.io/stubs/handler_api.php"


class SmsActivateClient(HandlerApiClient):
    """SMS-Activate rental client.

    Usage:
        client = SmsActivateClient()
        catalog = await client.get_catalog(rent_time="4", country="16")
        rental = await client.rent("wa", rent_time="4", country="16")
    """

    name = "sms_activate"
    base_url = API_BASE_URL
    api_key_env = "SMS_ACTIVATE_API_KEY"
