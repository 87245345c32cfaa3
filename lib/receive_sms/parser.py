"""HTML inbox parser for receive-sms-online.info pages.

Layers are tried in order and the first one that yields at least one
valid message wins:

  1. labelled rows    <td data-label="From   :"> / "Message   :" / "Added   :"
  2. table rows       3 columns (from | message | added), 2 columns, or a
                      single "sender: text" cell; the first row is a header
  3. From/Message     "From: X ... Message: Y" pairs in the page text
  4. service + code   "<known service> ... 123456"
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from bs4 import BeautifulSoup

from lib.providers.models import ProviderMessage, utcnow


SCRAPING_SOURCE = "scraping"

SENDER_PATTERNS = (
    re.compile(r"^[a-zA-Z0-9\s\-_.@+]{2,}$"),
    re.compile(r"^\+?\d{7,15}$"),
    re.compile(r"^[a-zA-Z][a-zA-Z0-9\s]{1,}$"),
)

PLACEHOLDER_PATTERNS = (
    re.compile(r"^[\s\-_=+]*$"),
    re.compile(r"^test\s*$", re.IGNORECASE),
    re.compile(r"^example", re.IGNORECASE),
    re.compile(r"^lorem\s+ipsum", re.IGNORECASE),
)

# Column titles that show up when a header row is parsed as data
HEADER_WORDS = {"from", "sender", "number", "phone", "message", "messages", "sms messages", "text", "added", "time"}

MIN_SENDER_LENGTH = 2
MIN_MESSAGE_LENGTH = 5

FROM_MESSAGE_PATTERN = re.compile(r"From:\s*([^\n\r]+)[\s\S]*?Message:\s*([^\n\r]+)", re.IGNORECASE)

KNOWN_SERVICES = (
    "Celerity", "Instagram", "Facebook", "Google", "WhatsApp", "Telegram", "Twitter",
    "Apple", "Microsoft", "Amazon", "Netflix", "Uber", "PayPal", "comdirect",
)
SERVICE_CODE_PATTERN = re.compile(
    r"\b(" + "|".join(KNOWN_SERVICES) + r")\b[^\d\n]{0,40}?(\d{4,8})\b",
    re.IGNORECASE,
)

SINGLE_CELL_SPLIT = re.compile(r"[|\-:]")

RELATIVE_TIME = re.compile(r"(\d+)\s*(second|sec|minute|min|hour|day|week)s?\s+ago", re.IGNORECASE)
RELATIVE_UNITS = {
    "second": "seconds", "sec": "seconds",
    "minute": "minutes", "min": "minutes",
    "hour": "hours", "day": "days", "week": "weeks",
}

# (regex, strptime format) pairs, most specific first
TIMESTAMP_FORMATS = (
    (re.compile(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}"), "%Y-%m-%d %H:%M:%S"),
    (re.compile(r"\d{2}\.\d{2}\.\d{4} \d{2}:\d{2}"), "%d.%m.%Y %H:%M"),
    (re.compile(r"[A-Za-z]{3} \d{1,2}, \d{4} \d{1,2}:\d{2} [AP]M"), "%b %d, %Y %I:%M %p"),
    (re.compile(r"\d{2}/\d{2}/\d{4} \d{2}:\d{2}"), "%d/%m/%Y %H:%M"),
)
TIME_ONLY_FORMATS = (
    (re.compile(r"\d{2}:\d{2}:\d{2}"), "%H:%M:%S"),
    (re.compile(r"\d{2}:\d{2}"), "%H:%M"),
)


def is_valid_message(sender: str, message: str) -> bool:
    """Sender and text both long enough and not placeholders or headers."""
    sender = (sender or "").strip()
    message = (message or "").strip()
    if len(sender) < MIN_SENDER_LENGTH or len(message) < MIN_MESSAGE_LENGTH:
        return False
    if sender.lower() in HEADER_WORDS or message.lower() in HEADER_WORDS:
        return False
    if not any(p.match(sender) for p in SENDER_PATTERNS):
        return False
    return not any(p.match(message) for p in PLACEHOLDER_PATTERNS)


def read_scraped_timestamp(text: str, now: Optional[datetime] = None) -> Tuple[datetime, bool]:
    """Parse the "Added" column into (timestamp, exact).

    Only a full date and time is exact. Relative ("5 minutes ago") and
    clock-only values are anchored to `now` and move between polls;
    missing or unrecognised text yields `now`.
    """
    now = now or utcnow()
    text = (text or "").strip()
    if not text:
        return now, False

    relative = RELATIVE_TIME.search(text)
    if relative:
        unit = RELATIVE_UNITS[relative.group(2).lower()]
        return now - timedelta(**{unit: int(relative.group(1))}), False

    for pattern, fmt in TIMESTAMP_FORMATS:
        match = pattern.search(text)
        if match:
            try:
                return datetime.strptime(match.group(0), fmt).replace(tzinfo=timezone.utc), True
            except ValueError:
                continue

    for pattern, fmt in TIME_ONLY_FORMATS:
        match = pattern.search(text)
        if match:
            try:
                parsed = datetime.strptime(match.group(0), fmt)
            except ValueError:
                continue
            stamp = now.replace(hour=parsed.hour, minute=parsed.minute, second=parsed.second, microsecond=0)
            # a clock time later than now belongs to yesterday
            return (stamp - timedelta(days=1) if stamp > now else stamp), False

    return now, False


def parse_scraped_timestamp(text: str, now: Optional[datetime] = None) -> datetime:
    """Parse the "Added" column. Falls back to `now` when unrecognised."""
    return read_scraped_timestamp(text, now)[0]


def _message(sender: str, text: str, received_at: datetime, raw: str, exact_time: bool = False) -> ProviderMessage:
    return ProviderMessage(
        sender=sender.strip(),
        message=text.strip(),
        received_at=received_at,
        source=SCRAPING_SOURCE,
        exact_time=exact_time,
        raw=raw,
    )


def _label(cell) -> str:
    return re.sub(r"[\s:]+", "", cell.get("data-label", "")).lower()


def _parse_labelled_rows(soup: BeautifulSoup, now: datetime) -> List[ProviderMessage]:
    messages = []
    for row in soup.select("table tr"):
        cells = {_label(td): td.get_text(" ", strip=True) for td in row.find_all("td", attrs={"data-label": True})}
        sender, text, added = cells.get("from"), cells.get("message"), cells.get("added")
        if not (sender and text and added):
            continue
        if is_valid_message(sender, text):
            received_at, exact = read_scraped_timestamp(added, now)
            messages.append(_message(sender, text, received_at, str(row), exact))
    return messages


def _parse_table_rows(soup: BeautifulSoup, now: datetime) -> List[ProviderMessage]:
    messages = []
    for table in soup.find_all("table"):
        for row in table.find_all("tr")[1:]:
            cells = [c.get_text(" ", strip=True) for c in row.find_all(["td", "th"])]
            if len(cells) >= 3:
                sender, text, added = cells[0], cells[1], cells[2]
            elif len(cells) == 2:
                sender, text, added = cells[0], cells[1], ""
            elif len(cells) == 1:
                parts = SINGLE_CELL_SPLIT.split(cells[0])
                if len(parts) < 2:
                    continue
                sender, text, added = parts[0], " ".join(parts[1:]), ""
            else:
                continue
            sender, text = sender.strip(), text.strip()
            if is_valid_message(sender, text):
                received_at, exact = read_scraped_timestamp(added, now)
                messages.append(_message(sender, text, received_at, str(row), exact))
    return messages


def _page_text(soup: BeautifulSoup) -> str:
    return (soup.body or soup).get_text("\n")


def _parse_from_message_pairs(soup: BeautifulSoup, now: datetime) -> List[ProviderMessage]:
    messages = []
    for match in FROM_MESSAGE_PATTERN.finditer(_page_text(soup)):
        sender, text = match.group(1).strip(), match.group(2).strip()
        if is_valid_message(sender, text):
            messages.append(_message(sender, text, now, match.group(0)))
    return messages


def _parse_service_codes(soup: BeautifulSoup, now: datetime) -> List[ProviderMessage]:
    messages = []
    for match in SERVICE_CODE_PATTERN.finditer(_page_text(soup)):
        sender, code = match.group(1), match.group(2)
        messages.append(_message(sender, f"Your verification code is: {code}", now, match.group(0)))
    return messages


LAYERS: List[Callable[[BeautifulSoup, datetime], List[ProviderMessage]]] = [
    _parse_labelled_rows,
    _parse_table_rows,
    _parse_from_message_pairs,
    _parse_service_codes,
]


def parse_messages(html: str, now: Optional[datetime] = None) -> List[ProviderMessage]:
    """Extract inbox messages from a fetched page."""
    if not html:
        return []
    now = now or utcnow()
    soup = BeautifulSoup(html, "html.parser")
    for layer in LAYERS:
        messages = layer(soup, now)
        if messages:
            return messages
    return []
