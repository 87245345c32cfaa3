"""Tests for the receive-sms-online inbox parser."""

from datetime import datetime, timedelta, timezone

import pytest

from lib.receive_sms.parser import (
    SCRAPING_SOURCE,
    is_valid_message,
    parse_messages,
    parse_scraped_timestamp,
    read_scraped_timestamp,
)


NOW = datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc)

LABELLED_PAGE = """
<html><body>
<table class="table">
  <tr><th>From</th><th>Message</th><th>Added</th></tr>
  <tr>
    <td data-label="From   :">Google</td>
    <td data-label="Message   :">G-482910 is your Google verification code.</td>
    <td data-label="Added   :">2026-10-19 09:58:12</td>
  </tr>
  <tr>
    <td data-label="From   :">Telegram</td>
    <td data-label="Message   :">Telegram code: 55821</td>
    <td data-label="Added   :">3 minutes ago</td>
  </tr>
</table>
</body></html>
"""

PLAIN_TABLE_PAGE = """
<html><body>
<table>
  <tr><td>From</td><td>Message</td><td>Added</td></tr>
  <tr><td>WhatsApp</td><td>Your WhatsApp code 123-456</td><td>5 minutes ago</td></tr>
  <tr><td>From</td><td>Message</td><td>Added</td></tr>
</table>
</body></html>
"""

SINGLE_CELL_PAGE = """
<html><body>
<table>
  <tr><td>Messages</td></tr>
  <tr><td>Telegram: Login code 55555</td></tr>
  <tr><td>no separator here</td></tr>
</table>
</body></html>
"""

FROM_MESSAGE_PAGE = """
<html><body>
<div><p>From: Amazon</p><p>Message: 839201 is your Amazon OTP</p></div>
</body></html>
"""

SERVICE_CODE_PAGE = """
<html><body><div>Instagram code 123456 received just now</div></body></html>
"""


@pytest.mark.no_db
def test_is_valid_message():
    """Should reject headers, short values, placeholders and odd senders."""
    assert is_valid_message("Google", "G-482910 is your code")
    assert is_valid_message("+4915112345678", "Your code is 1234")
    assert not is_valid_message("From", "Message")
    assert not is_valid_message("G", "hello world")
    assert not is_valid_message("Google", "hi")
    assert not is_valid_message("Google", "-----")
    assert not is_valid_message("Google", "Example text here")
    assert not is_valid_message("###", "hello world")


@pytest.mark.no_db
def test_parse_labelled_rows():
    """Should read data-label rows with their timestamps."""
    messages = parse_messages(LABELLED_PAGE, now=NOW)

    assert [m.sender for m in messages] == ["Google", "Telegram"]
    assert messages[0].code == "482910"
    assert messages[0].received_at == datetime(2026, 10, 19, 9, 58, 12, tzinfo=timezone.utc)
    assert messages[1].received_at == NOW - timedelta(minutes=3)
    assert all(m.source == SCRAPING_SOURCE for m in messages)
    assert "data-label" in messages[0].raw


@pytest.mark.no_db
def test_parse_plain_table_skips_header_rows():
    messages = parse_messages(PLAIN_TABLE_PAGE, now=NOW)

    assert len(messages) == 1
    assert messages[0].sender == "WhatsApp"
    assert messages[0].message == "Your WhatsApp code 123-456"
    assert messages[0].received_at == NOW - timedelta(minutes=5)


@pytest.mark.no_db
def test_parse_single_cell_rows():
    messages = parse_messages(SINGLE_CELL_PAGE, now=NOW)

    assert [(m.sender, m.message) for m in messages] == [("Telegram", "Login code 55555")]
    assert messages[0].received_at == NOW


@pytest.mark.no_db
def test_parse_from_message_pairs():
    messages = parse_messages(FROM_MESSAGE_PAGE, now=NOW)

    assert [(m.sender, m.message) for m in messages] == [("Amazon", "839201 is your Amazon OTP")]


@pytest.mark.no_db
def test_parse_service_code_fallback():
    """Should synthesize a message from a known service name and a code."""
    messages = parse_messages(SERVICE_CODE_PAGE, now=NOW)

    assert len(messages) == 1
    assert messages[0].sender == "Instagram"
    assert messages[0].message == "Your verification code is: 123456"


@pytest.mark.no_db
def test_parse_empty_pages():
    assert parse_messages("", now=NOW) == []
    assert parse_messages("<html><body><p>No messages yet</p></body></html>", now=NOW) == []


@pytest.mark.no_db
def test_parse_scraped_timestamp_formats():
    assert parse_scraped_timestamp("19.10.2026 08:30", NOW) == datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc)
    assert parse_scraped_timestamp("Oct 19, 2026 8:05 AM", NOW) == datetime(2026, 10, 19, 8, 5, tzinfo=timezone.utc)
    assert parse_scraped_timestamp("2 hours ago", NOW) == NOW - timedelta(hours=2)
    assert parse_scraped_timestamp("garbage", NOW) == NOW
    assert parse_scraped_timestamp("", NOW) == NOW


@pytest.mark.no_db
def test_parse_scraped_time_only():
    """Should put a clock time later than now on the previous day."""
    assert parse_scraped_timestamp("09:15", NOW) == datetime(2026, 10, 19, 9, 15, tzinfo=timezone.utc)
    assert parse_scraped_timestamp("23:30", NOW) == datetime(2026, 10, 18, 23, 30, tzinfo=timezone.utc)


@pytest.mark.no_db
def test_only_full_dates_are_exact():
    """Should flag inferred timestamps so they are not used for time matching."""
    assert read_scraped_timestamp("2026-10-19 09:00:00", NOW) == (datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc), True)
    assert read_scraped_timestamp("5 minutes ago", NOW)[1] is False
    assert read_scraped_timestamp("09:15", NOW)[1] is False
    assert read_scraped_timestamp("", NOW) == (NOW, False)

    two_column = "<table><tr><th>From</th><th>Message</th></tr><tr><td>Google</td><td>G-123456 is your code</td></tr></table>"
    [message] = parse_messages(two_column, now=NOW)
    assert message.received_at == NOW
    assert message.exact_time is False
