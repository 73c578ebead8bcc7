from __future__ import annotations

import asyncio
from email.message import EmailMessage

from mail_push_forwarder.config import AccountConfig
from mail_push_forwarder.mail import Mail, RawMail
from mail_push_forwarder.tool import Tool


def make_account(**overrides) -> AccountConfig:
    values = dict(
        name="work",
        server="imap.example.test",
        user="me@example.test",
        password="secret-password",
        push_url="https://push.example.test/KEY",
        poll_interval=60,
        idle_timeout=20,
    )
    values.update(overrides)
    return AccountConfig(**values)


def make_raw_mail(
    uid: str,
    *,
    subject: str = "Hello",
    sender: str = "Alice <alice@example.test>",
    to: str = "me@example.test",
    text: str | None = "Plain body",
    html: str | None = None,
    attachment: bytes | None = None,
    date: str = "Mon, 16 Feb 2026 10:00:00 +0000",
) -> RawMail:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to
    msg["Date"] = date
    if text is not None:
        msg.set_content(text)
    if html is not None:
        if text is None:
            msg.set_content(html, subtype="html")
        else:
            msg.add_alternative(html, subtype="html")
    if attachment is not None:
        msg.add_attachment(attachment, maintype="application", subtype="octet-stream", filename="report.bin")
    return RawMail(uid=uid, data=msg.as_bytes(), internal_date="16-Feb-2026 10:00:05 +0000")


class FakeMail:
    """Scriptable stand-in for Mail. `idle_outcomes` entries: True/False, an exception, or "hang"."""

    def __init__(
        self,
        *,
        connect_error: Exception | None = None,
        login_error: Exception | None = None,
        folders: list[str] | None = None,
        list_error: Exception | None = None,
        messages: list[RawMail] | None = None,
        fetch_error: Exception | None = None,
        mark_error: Exception | None = None,
        supports_idle: bool = True,
        idle_outcomes: list[object] | None = None,
        counts: list[int | Exception] | None = None,
    ) -> None:
        self.connect_error = connect_error
        self.login_error = login_error
        self.folders = folders if folders is not None else ["INBOX", "Archive"]
        self.list_error = list_error
        self.unread = {raw.uid: raw for raw in messages or []}
        self.total = len(self.unread)
        self.message_count: int | None = None
        self.fetch_error = fetch_error
        self.mark_error = mark_error
        self.supports_idle = supports_idle
        self.idle_outcomes = list(idle_outcomes or [])
        self.counts = list(counts or [])
        self.calls: list[str] = []
        self.marked_read: list[str] = []
        self.stop_called = 0
        self.disconnected = False
        self.abandoned = False
        self._idle_stop: asyncio.Event | None = None

    async def connect(self) -> None:
        self.calls.append("connect")
        if self.connect_error is not None:
            raise self.connect_error

    async def login(self) -> None:
        self.calls.append("login")
        if self.login_error is not None:
            raise self.login_error

    async def list_folders(self) -> list[str]:
        self.calls.append("list")
        if self.list_error is not None:
            raise self.list_error
        return self.folders

    async def select_folder(self, folder: str) -> int:
        self.calls.append("select")
        if self.counts:
            count = self.counts.pop(0)
            if isinstance(count, Exception):
                raise count
            self.message_count = count
            return count
        self.message_count = self.total
        return self.total

    async def fetch_messages(self, folder: str, limit: int = 50) -> list[RawMail]:
        self.calls.append("fetch")
        self.message_count = None
        if self.fetch_error is not None:
            raise self.fetch_error
        self.message_count = self.total
        return list(self.unread.values())[:limit]

    def add_message(self, raw: RawMail) -> None:
        self.unread[raw.uid] = raw
        self.total += 1

    async def mark_as_read(self, uid: str) -> None:
        self.calls.append("mark:%s" % uid)
        if self.mark_error is not None:
            raise self.mark_error
        self.unread.pop(uid, None)
        self.marked_read.append(uid)

    async def idle(self, timeout: float) -> bool:
        self.calls.append("idle")
        outcome = self.idle_outcomes.pop(0) if self.idle_outcomes else "hang"
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "hang":
            self._idle_stop = asyncio.Event()
            await self._idle_stop.wait()
            return False
        return bool(outcome)

    async def stop_idle(self) -> None:
        self.stop_called += 1
        if self._idle_stop is not None:
            self._idle_stop.set()

    async def disconnect(self) -> None:
        self.calls.append("disconnect")
        self.disconnected = True

    def abandon(self) -> None:
        self.calls.append("abandon")
        self.abandoned = True


class FakePusher:
    def __init__(self, outcomes: list[bool | Exception] | None = None, default: bool = True, url: str = "https://push") -> None:
        self.outcomes = list(outcomes or [])
        self.default = default
        self.url = url
        self.pushed: list[tuple[str, str]] = []
        self.closed = False

    async def push(self, title: str, msg: str) -> bool:
        self.pushed.append((title, msg))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.closed = True


def mail_sequence(mails: list[FakeMail], fallback_error: Exception | None = None):
    """mail_factory handing out `mails` in order, then connections that fail to connect."""
    created: list[FakeMail] = []
    pending = list(mails)

    def factory() -> FakeMail:
        if pending:
            mail = pending.pop(0)
        else:
            mail = FakeMail(connect_error=fallback_error or Mail.MailError("Connection refused"))
        created.append(mail)
        return mail

    factory.created = created
    return factory


def make_tool() -> Tool:
    tool = Tool()
    tool.mask("secret-password")
    return tool
