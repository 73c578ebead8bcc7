from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mail_push_forwarder.mail import RawMail
from mail_push_forwarder.message import MailParseError, format_address, parse_date, parse_mail
from mail_push_forwarder.tool import Tool
from tests.helpers import make_raw_mail


def test_plain_mail_is_parsed() -> None:
    raw = make_raw_mail(
        "7",
        subject="Invoice",
        sender="Alice Example <alice@example.test>",
        to="Bob <bob@example.test>, carol@example.test",
        text="Please pay.\n",
    )

    mail = parse_mail(raw, Tool())

    assert mail.uid == "7"
    assert mail.subject == "Invoice"
    assert mail.mail_from == ["Alice Example (alice@example.test)"]
    assert mail.mail_to == ["Bob (bob@example.test)", "carol@example.test"]
    assert mail.text == "Please pay."
    assert mail.has_attachments is False
    assert mail.date == datetime(2026, 2, 16, 10, 0, tzinfo=timezone.utc)


def test_html_only_mail_falls_back_to_cleaned_html() -> None:
    raw = make_raw_mail("8", text=None, html="<p>Hi <b>there</b></p><script>x</script>")

    mail = parse_mail(raw, Tool())

    assert mail.body == ""
    assert mail.text == "Hi there"


def test_plain_part_wins_over_html_part() -> None:
    raw = make_raw_mail("9", text="plain version", html="<p>html version</p>")

    mail = parse_mail(raw, Tool())

    assert mail.text == "plain version"
    assert "html version" in mail.html_body


def test_attachment_sets_flag() -> None:
    raw = make_raw_mail("10", attachment=b"\x00\x01binary")

    mail = parse_mail(raw, Tool())

    assert mail.has_attachments is True
    assert mail.text == "Plain body"


def test_encoded_subject_is_decoded() -> None:
    raw = make_raw_mail("11", subject="Grüße aus Köln")

    mail = parse_mail(raw, Tool())

    assert mail.subject == "Grüße aus Köln"


def test_internal_date_is_used_without_date_header() -> None:
    data = b"Subject: no date\r\nFrom: a@example.test\r\n\r\nbody\r\n"
    raw = RawMail(uid="12", data=data, internal_date="16-Feb-2026 10:00:05 +0100")

    mail = parse_mail(raw, Tool())

    assert mail.date is not None
    assert mail.date.utcoffset().total_seconds() == 3600
    assert mail.text == "body"


def test_unparseable_date_gives_none() -> None:
    assert parse_date("not a date", "") is None


def test_format_address() -> None:
    assert format_address("Alice", "alice@example.test") == "Alice (alice@example.test)"
    assert format_address("", "alice@example.test") == "alice@example.test"


def test_broken_payload_raises_parse_error() -> None:
    raw = RawMail(uid="13", data=None)

    with pytest.raises(MailParseError, match="13"):
        parse_mail(raw, Tool())
