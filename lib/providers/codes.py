"""Country/service code translation.

The canonical code space is SMS-Activate's: numeric country ids ("0" Russia,
"12" USA virtual, "16" United Kingdom, "43" Germany, ...) and two-letter
service codes ("wa", "tg", "go", ...). Each secondary provider speaks its own
vocabulary; the tables below map between them.

Tables are immutable (MappingProxyType) and bundled per provider in a
CodeTables instance that adapters receive at construction time, so tests can
inject smaller tables.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from lib.providers.models import Catalog, CatalogCountry, CatalogService


def _frozen(d: dict) -> Mapping:
    return MappingProxyType(dict(d))


# Canonical country id -> (ISO code, display name)
CANONICAL_COUNTRIES: Mapping[str, Tuple[str, str]] = _frozen({
    "0": ("RU", "Russia"),
    "1": ("UA", "Ukraine"),
    "2": ("KZ", "Kazakhstan"),
    "4": ("PH", "Philippines"),
    "6": ("ID", "Indonesia"),
    "7": ("MY", "Malaysia"),
    "9": ("TZ", "Tanzania"),
    "12": ("US", "USA (virtual)"),
    "13": ("IL", "Israel"),
    "14": ("HK", "Hong Kong"),
    "15": ("PL", "Poland"),
    "16": ("GB", "United Kingdom"),
    "21": ("EG", "Egypt"),
    "23": ("IE", "Ireland"),
    "24": ("KH", "Cambodia"),
    "29": ("RS", "Serbia"),
    "32": ("RO", "Romania"),
    "34": ("EE", "Estonia"),
    "36": ("CA", "Canada"),
    "39": ("AR", "Argentina"),
    "43": ("DE", "Germany"),
    "44": ("LT", "Lithuania"),
    "45": ("HR", "Croatia"),
    "46": ("SE", "Sweden"),
    "48": ("NL", "Netherlands"),
    "49": ("LV", "Latvia"),
    "50": ("AT", "Austria"),
    "52": ("TH", "Thailand"),
    "54": ("MX", "Mexico"),
    "56": ("ES", "Spain"),
    "59": ("SI", "Slovenia"),
    "60": ("BD", "Bangladesh"),
    "62": ("TR", "Turkey"),
    "63": ("CZ", "Czech Republic"),
    "67": ("NZ", "New Zealand"),
    "77": ("CY", "Cyprus"),
    "78": ("FR", "France"),
    "82": ("BE", "Belgium"),
    "83": ("BG", "Bulgaria"),
    "84": ("HU", "Hungary"),
    "85": ("MD", "Moldova"),
    "86": ("IT", "Italy"),
    "117": ("PT", "Portugal"),
    "129": ("GR", "Greece"),
    "141": ("SK", "Slovakia"),
    "163": ("FI", "Finland"),
    "172": ("DK", "Denmark"),
    "175": ("AU", "Australia"),
    "187": ("US", "United States"),
    "199": ("MT", "Malta"),
})

# Canonical service code -> display name
CANONICAL_SERVICES: Mapping[str, str] = _frozen({
    "wa": "WhatsApp",
    "tg": "Telegram",
    "go": "Google",
    "fb": "Facebook",
    "ig": "Instagram",
    "tw": "Twitter",
    "ds": "Discord",
    "vi": "Viber",
    "vk": "VK",
    "ok": "Odnoklassniki",
    "ms": "Microsoft",
    "am": "Amazon",
    "ap": "Apple",
    "li": "LinkedIn",
    "lf": "TikTok",
    "oi": "Tinder",
    "nt": "Netflix",
    "sn": "Snapchat",
    "wb": "WeChat",
    "ub": "Uber",
    "ts": "PayPal",
    "mt": "Steam",
    "ya": "Yandex",
    "ma": "Mail.ru",
    "full": "Full rental",
    "ot": "Other",
})


def is_iso_country(code: Optional[str]) -> bool:
    """True for two-letter alphabetic country codes ("DE", "gb")."""
    return bool(code) and len(code) == 2 and code.isalpha()


def canonical_from_iso(iso: str) -> Optional[str]:
    """First canonical id whose ISO code matches ("GB"/"UK" -> "16")."""
    iso = iso.upper()
    if iso == "UK":
        iso = "GB"
    for canonical, (code, _) in CANONICAL_COUNTRIES.items():
        if code == iso:
            return canonical
    return None


@dataclass(frozen=True)
class CodeTables:
    """Static translation tables for one provider."""
    provider: str
    # canonical country id -> provider country code
    countries: Mapping[str, str]
    # canonical service code -> provider service code
    services: Mapping[str, str]
    default_country: str
    default_service: Optional[str] = None
    # provider country code -> display name
    country_names: Mapping[str, str] = field(default_factory=lambda: _frozen({}))
    # provider service code -> display name
    service_names: Mapping[str, str] = field(default_factory=lambda: _frozen({}))
    # curated catalog used when the live catalog is unavailable:
    # (code, name, price, count)
    fallback_services: Tuple[Tuple[str, str, float, int], ...] = ()
    fallback_countries: Tuple[Tuple[str, str], ...] = ()
    # pass two-letter ISO codes through unchanged
    accepts_iso: bool = True


class CodeTranslator:
    """Translate canonical codes into a provider's vocabulary and back."""

    def __init__(self, tables: CodeTables):
        self.tables = tables
        self._reverse_countries: Dict[str, str] = {}
        for canonical, native in tables.countries.items():
            # first canonical id wins for the reverse direction
            self._reverse_countries.setdefault(native, canonical)
        self._reverse_services: Dict[str, str] = {}
        for canonical, native in tables.services.items():
            self._reverse_services.setdefault(native, canonical)
        self._native_services = (
            set(tables.services.values())
            | set(tables.service_names)
            | {code for code, _, _, _ in tables.fallback_services}
        )

    @property
    def provider(self) -> str:
        return self.tables.provider

    def translate_country(self, canonical: Optional[str]) -> Optional[str]:
        """Map a canonical country id to the provider code, or None."""
        if canonical is None:
            return None
        code = str(canonical).strip()
        if code in self.tables.countries:
            return self.tables.countries[code]
        if is_iso_country(code):
            if self.tables.accepts_iso:
                return code.upper()
            canonical_id = canonical_from_iso(code)
            if canonical_id is not None:
                return self.tables.countries.get(canonical_id)
        return None

    def translate_service(self, canonical: Optional[str]) -> Optional[str]:
        """Map a canonical service code to the provider code, or None."""
        if canonical is None:
            return None
        return self.tables.services.get(str(canonical).strip())

    def country_or_default(self, canonical: Optional[str]) -> str:
        return self.translate_country(canonical) or self.tables.default_country

    def service_or_default(self, canonical: Optional[str]) -> Optional[str]:
        native = self.translate_service(canonical)
        if native:
            return native
        if canonical and canonical in self._native_services:
            # already a native code
            return canonical
        return self.tables.default_service

    def canonical_country(self, native: str) -> Optional[str]:
        """Inverse lookup: provider country code -> canonical id."""
        return self._reverse_countries.get(native)

    def canonical_service(self, native: str) -> Optional[str]:
        """Inverse lookup: provider service code -> canonical code."""
        return self._reverse_services.get(native)

    def service_name(self, code: str) -> str:
        return (
            self.tables.service_names.get(code)
            or CANONICAL_SERVICES.get(code)
            or code
        )

    def country_name(self, code: str) -> str:
        if code in self.tables.country_names:
            return self.tables.country_names[code]
        if code in CANONICAL_COUNTRIES:
            return CANONICAL_COUNTRIES[code][1]
        return code

    def fallback_catalog(self) -> Catalog:
        """Curated catalog used when the live catalog cannot be built."""
        services = {
            code: CatalogService(code=code, name=name, price=price, count=count)
            for code, name, price, count in self.tables.fallback_services
        }
        countries = {
            code: CatalogCountry(code=code, name=name)
            for code, name in self.tables.fallback_countries
        }
        return Catalog(
            provider=self.tables.provider,
            services=services,
            countries=countries,
            source="fallback",
        )


# =============================================================================
# SMS-Activate (canonical provider)
# =============================================================================

SMS_ACTIVATE_TABLES = CodeTables(
    provider="sms_activate",
    countries=_frozen({code: code for code in CANONICAL_COUNTRIES}),
    services=_frozen({code: code for code in CANONICAL_SERVICES}),
    default_country="0",
    default_service="ot",
    service_names=CANONICAL_SERVICES,
    fallback_services=(
        ("wa", "WhatsApp", 0.36, 100),
        ("tg", "Telegram", 0.30, 100),
        ("go", "Google", 0.40, 100),
        ("fb", "Facebook", 0.35, 100),
        ("ig", "Instagram", 0.35, 100),
        ("tw", "Twitter", 0.40, 100),
        ("full", "Full rental", 4.78, 20),
        ("ot", "Other", 0.30, 100),
    ),
    fallback_countries=(
        ("0", "Russia"),
        ("12", "USA (virtual)"),
        ("16", "United Kingdom"),
        ("43", "Germany"),
    ),
    # canonical ids are numeric, an ISO code is never valid here
    accepts_iso=False,
)


# =============================================================================
# SMSPVA
# =============================================================================

SMSPVA_TABLES = CodeTables(
    provider="smspva",
    countries=_frozen({
        "0": "RU", "1": "UA", "2": "KZ", "4": "PH", "6": "ID", "7": "MY",
        "9": "TZ", "12": "US", "13": "IL", "14": "HK", "15": "PL", "16": "UK",
        "21": "EG", "23": "IE", "24": "KH", "29": "RS", "32": "RO", "34": "EE",
        "36": "CA", "39": "AR", "43": "DE", "44": "LT", "45": "HR", "46": "SE",
        "48": "NL", "49": "LV", "50": "AT", "52": "TH", "54": "MX", "56": "ES",
        "59": "SI", "60": "BD", "62": "TR", "63": "CZ", "67": "NZ", "77": "CY",
        "78": "FR", "82": "BE", "83": "BG", "84": "HU", "85": "MD", "86": "IT",
        "117": "PT", "163": "FI", "172": "DK", "175": "AU", "187": "US",
    }),
    services=_frozen({
        "go": "opt1", "fb": "opt2", "ma": "opt4", "li": "opt8", "oi": "opt9",
        "vi": "opt11", "ms": "opt15", "ig": "opt16", "wa": "opt20",
        "ya": "opt23", "tg": "opt29", "vk": "opt33", "ok": "opt33",
        "tw": "opt41", "am": "opt44", "mt": "opt58", "ts": "opt83",
        "lf": "opt104", "ot": "opt142", "ds": "opt147", "ap": "opt154",
        "nt": "opt225",
    }),
    default_country="RU",
    default_service="opt142",
    country_names=_frozen({
        "RU": "Russia", "US": "United States", "UK": "United Kingdom",
        "DE": "Germany", "FR": "France", "NL": "Netherlands", "PL": "Poland",
        "SE": "Sweden", "LT": "Lithuania", "LV": "Latvia", "EE": "Estonia",
        "UA": "Ukraine", "KZ": "Kazakhstan", "CA": "Canada", "ES": "Spain",
        "IT": "Italy", "PT": "Portugal", "FI": "Finland", "CZ": "Czech Republic",
    }),
    service_names=_frozen({
        "opt1": "Google/Gmail", "opt2": "Facebook", "opt4": "Mail.ru Group",
        "opt8": "LinkedIn", "opt9": "Tinder", "opt11": "Viber",
        "opt15": "Microsoft", "opt16": "Instagram", "opt20": "WhatsApp",
        "opt23": "Yandex", "opt29": "Telegram", "opt33": "Mail.RU (VK, OK)",
        "opt41": "Twitter/X", "opt44": "Amazon", "opt58": "Steam",
        "opt83": "PayPal", "opt104": "TikTok", "opt142": "Other",
        "opt147": "Discord", "opt154": "Apple", "opt225": "Netflix",
    }),
    fallback_services=(
        ("opt1", "WhatsApp", 0.40, 100),
        ("opt2", "Telegram", 0.25, 150),
        ("opt3", "Google/Gmail", 0.55, 80),
        ("opt4", "Facebook", 0.75, 60),
        ("opt5", "Instagram", 0.85, 70),
        ("opt6", "Twitter/X", 1.10, 40),
        ("opt7", "Discord", 0.65, 90),
        ("opt8", "Viber", 0.35, 120),
        ("opt9", "LinkedIn", 0.95, 50),
        ("opt10", "TikTok", 0.80, 75),
        ("opt11", "Snapchat", 0.70, 65),
        ("opt12", "Signal", 0.45, 85),
        ("opt13", "Microsoft", 0.60, 70),
        ("opt14", "Apple ID", 1.20, 30),
        ("opt15", "Amazon", 0.90, 55),
        ("opt16", "Netflix", 1.00, 45),
        ("opt17", "Spotify", 0.50, 80),
        ("opt18", "PayPal", 1.50, 25),
        ("opt19", "Uber", 0.85, 60),
        ("opt20", "Steam", 0.75, 50),
    ),
    fallback_countries=(
        ("US", "United States"),
        ("DE", "Germany"),
        ("UK", "United Kingdom"),
        ("RU", "Russia"),
        ("FR", "France"),
    ),
)


# =============================================================================
# Anosim
# =============================================================================

# Anosim country ids seen on /Countries
ANOSIM_COUNTRY_NAMES: Mapping[str, str] = _frozen({
    "66": "Cyprus",
    "67": "CzechRepublic",
    "98": "Germany",
    "151": "Kenya",
    "165": "Lithuania",
    "196": "Netherlands",
    "220": "Poland",
    "221": "Portugal",
    "252": "SouthAfrica",
    "261": "Sweden",
    "286": "UnitedKingdom",
})

ANOSIM_TABLES = CodeTables(
    provider="anosim",
    countries=_frozen({
        "43": "98",
        "0": "98",
        "12": "98",
        "187": "98",
        "16": "286",
        "63": "67",
        "44": "165",
        "48": "196",
        "15": "220",
        "117": "221",
        "46": "261",
        "77": "66",
        # native ids are accepted as-is
        **{native: native for native in ANOSIM_COUNTRY_NAMES},
    }),
    services=_frozen({
        "wa": "WhatsApp", "tg": "Telegram", "go": "Google", "fb": "Facebook",
        "ig": "Instagram", "tw": "Twitter", "ds": "Discord", "am": "Amazon",
        "ap": "Apple", "ms": "Microsoft", "vi": "Viber", "wb": "WeChat",
        "lf": "TikTok", "oi": "Tinder", "nt": "Netflix", "li": "LinkedIn",
        "sn": "Snapchat", "vk": "VK", "ot": "Other",
    }),
    default_country="98",
    country_names=ANOSIM_COUNTRY_NAMES,
    service_names=_frozen({
        "go": "Google/Gmail/YouTube",
    }),
    fallback_services=(
        ("full_germany", "Full Germany Rental", 10.85, 10),
        ("full_unitedkingdom", "Full UnitedKingdom Rental", 12.00, 10),
        ("wa", "WhatsApp", 1.50, 10),
        ("tg", "Telegram", 1.50, 10),
        ("go", "Google/Gmail/YouTube", 1.50, 10),
        ("fb", "Facebook", 1.50, 10),
        ("ig", "Instagram", 1.50, 10),
        ("ot", "Other", 1.00, 10),
    ),
    fallback_countries=(
        ("98", "Germany"),
        ("286", "UnitedKingdom"),
        ("196", "Netherlands"),
    ),
    # anosim country ids are numeric
    accepts_iso=False,
)

# Anosim product names that map back to canonical service codes
ANOSIM_PRODUCT_ALIASES: Mapping[str, str] = _frozen({
    "YouTube": "go",
    "Gmail": "go",
})


# =============================================================================
# GoGetSMS
# =============================================================================

GOGETSMS_TABLES = CodeTables(
    provider="gogetsms",
    countries=_frozen({
        "16": "GB", "187": "US", "12": "US", "43": "DE", "78": "FR",
        "86": "IT", "56": "ES", "48": "NL", "15": "PL", "0": "RU", "1": "UA",
        "63": "CZ", "34": "EE", "44": "LT", "49": "LV", "6": "ID", "77": "CY",
        "4": "PH", "45": "HR", "7": "MY", "50": "AT", "52": "TH", "172": "DK",
        "32": "RO", "23": "IE", "129": "GR", "163": "FI", "117": "PT",
        "175": "AU", "46": "SE", "82": "BE", "59": "SI", "141": "SK",
        "84": "HU", "83": "BG", "199": "MT",
    }),
    services=_frozen({
        "wa": "3", "vi": "4", "tg": "5", "go": "7", "fb": "9", "tw": "10",
        "ig": "15", "ms": "19",
    }),
    default_country="GB",
    country_names=_frozen({
        "GB": "United Kingdom", "DE": "Germany", "US": "United States",
        "FR": "France", "IT": "Italy", "ES": "Spain", "NL": "Netherlands",
        "PL": "Poland", "CZ": "Czech Republic", "PT": "Portugal",
        "SE": "Sweden", "FI": "Finland", "DK": "Denmark", "EE": "Estonia",
        "LV": "Latvia", "LT": "Lithuania", "IE": "Ireland", "AT": "Austria",
        "BE": "Belgium", "RO": "Romania", "GR": "Greece", "RU": "Russia",
    }),
    service_names=_frozen({
        "3": "WhatsApp", "4": "Viber", "5": "Telegram",
        "7": "Google/YouTube/Gmail", "9": "Facebook", "10": "Twitter",
        "15": "Instagram", "19": "Microsoft",
    }),
    fallback_services=(
        ("full_uk", "Full UK Rental", 15.00, 10),
        ("full_germany", "Full Germany Rental", 18.00, 10),
        ("full_usa", "Full USA Rental", 20.00, 10),
        ("wa", "WhatsApp", 5.00, 10),
        ("tg", "Telegram", 4.50, 10),
        ("go", "Google", 6.00, 10),
        ("fb", "Facebook", 5.50, 10),
        ("tw", "Twitter", 5.00, 10),
        ("ig", "Instagram", 5.50, 10),
        ("ms", "Microsoft", 6.00, 10),
        ("vi", "Viber", 4.00, 10),
    ),
    fallback_countries=(
        ("GB", "United Kingdom"),
        ("DE", "Germany"),
        ("US", "United States"),
        ("LT", "Lithuania"),
        ("PL", "Poland"),
        ("NL", "Netherlands"),
        ("FR", "France"),
    ),
)


DEFAULT_TABLES: Mapping[str, CodeTables] = _frozen({
    t.provider: t
    for t in (SMS_ACTIVATE_TABLES, SMSPVA_TABLES, ANOSIM_TABLES, GOGETSMS_TABLES)
})


def get_translator(provider: str) -> CodeTranslator:
    """Translator backed by the bundled tables for a provider."""
    if provider not in DEFAULT_TABLES:
        raise KeyError(f"No code tables for provider: {provider}")
    return CodeTranslator(DEFAULT_TABLES[provider])


def list_providers() -> List[str]:
    return list(DEFAULT_TABLES.keys())
