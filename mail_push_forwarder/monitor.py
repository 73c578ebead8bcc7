import asyncio
import logging
from enum import Enum

from .config import AccountConfig, DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY
from .mail import FETCH_LIMIT, Mail, RawMail
from .message import MailParseError, parse_mail
from .pusher import PushError, Pusher, build_message_content, format_receive_time
from .tool import Tool
from .watcher import ChangeKind, wait_for_change

ALERT_TITLE = 'Please check the mail service'


class MonitorState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    AUTHENTICATING = 'authenticating'
    DISCOVERING = 'discovering'
    FETCHING = 'fetching'
    WAITING = 'waiting'
    BACKOFF = 'backoff'
    FATAL = 'fatal'


class AccountMonitor:
    """
        Watches one account: connect, login, forward unread mails, wait for
        changes, and start over after failures. All fields belong to the one
        task running `run()`; nothing else reads or writes them.
    """
    account: AccountConfig
    tool: Tool
    pusher: Pusher
    mail: Mail | None = None
    retries: int = 0
    max_retries: int
    retry_delay: float
    first_connect: bool = True
    state: MonitorState = MonitorState.DISCONNECTED
    last_error: BaseException | None = None

    def __init__(self, account: AccountConfig, tool: Tool,
                 max_retries: int = DEFAULT_MAX_RETRIES, retry_delay: float = DEFAULT_RETRY_DELAY,
                 pusher: Pusher | None = None, mail_factory=None):
        self.account = account
        self.tool = tool
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.pusher = pusher if pusher is not None else Pusher(account.push_url, account.name)
        self.mail_factory = mail_factory if mail_factory is not None else (lambda: Mail(account, tool))

    @property
    def name(self) -> str:
        return self.account.name

    async def run(self) -> MonitorState:
        """
        Keep the account monitored until the retry limit is reached. Returns
        the terminal FATAL state; anything but a connection failure propagates.
        """
        logging.info("[%s] Starting mail monitor" % self.name)
        while True:
            try:
                await self.run_session()
            except (Mail.MailError, OSError) as session_error:
                if not await self.handle_error(session_error):
                    return self.state

    async def run_session(self):
        """
        One connection from login to teardown. Returns normally after a clean
        IDLE timeout (reconnect wanted), raises on connection failures.
        """
        self.mail = self.mail_factory()
        try:
            self.state = MonitorState.CONNECTING
            await self.mail.connect()
            self.state = MonitorState.AUTHENTICATING
            await self.mail.login()
            logging.info("[%s] Login successful" % self.name)
            self.retries = 0

            if self.first_connect:
                self.first_connect = False
                self.state = MonitorState.DISCOVERING
                await self.discover_folders()

            folder = self.account.folder
            while True:
                self.state = MonitorState.FETCHING
                await self.fetch_and_deliver(folder)

                self.state = MonitorState.WAITING
                result = await wait_for_change(self.mail, self.name, folder,
                                               self.account.idle_timeout_seconds, self.account.poll_interval,
                                               self.mail.message_count)
                if result.kind is ChangeKind.SIGNAL:
                    continue
                if result.kind is ChangeKind.TIMEOUT:
                    return
                raise Mail.MailError(result.reason or "Waiting for new mail failed")
        except asyncio.CancelledError:
            # shutdown: no logout round trip
            self.abandon_connection()
            raise
        finally:
            await self.close_connection()

    def abandon_connection(self):
        mail, self.mail = self.mail, None
        if mail is not None:
            mail.abandon()
        self.state = MonitorState.DISCONNECTED

    async def close_connection(self):
        mail, self.mail = self.mail, None
        if mail is not None:
            await mail.disconnect()
        self.state = MonitorState.DISCONNECTED

    async def discover_folders(self):
        try:
            folders = await self.mail.list_folders()
        except Mail.MailError as list_error:
            logging.warning("[%s] Cannot list folders: %s" % (self.name, list_error))
            return
        logging.info("[%s] 📁 Available folders:" % self.name)
        for folder in folders:
            logging.info("[%s]    • %s" % (self.name, folder))

    async def fetch_and_deliver(self, folder: str) -> int:
        """
        Forward the unread mails of `folder` and mark each one read once its
        push succeeded. Problems with single mails are logged and skipped;
        nothing raised in here counts against the retry limit.
        """
        try:
            raw_mails = await self.mail.fetch_messages(folder, FETCH_LIMIT)
        except Mail.MailError as fetch_error:
            logging.error("[%s] Cannot fetch mails: %s" % (self.name, fetch_error))
            return 0

        if not raw_mails:
            return 0
        logging.info("[%s] 📥 %i new mail(s) in '%s'" % (self.name, len(raw_mails), folder))

        delivered = 0
        for raw in raw_mails:
            try:
                if await self.deliver(raw):
                    delivered += 1
            except Exception as mail_error:
                logging.critical("[%s] Cannot process mail with UID '%s': %s"
                                 % (self.name, raw.uid, self.tool.describe_error(mail_error)))
        return delivered

    async def deliver(self, raw: RawMail) -> bool:
        try:
            mail = parse_mail(raw, self.tool)
        except MailParseError as parse_error:
            logging.error("[%s] %s" % (self.name, parse_error))
            return False

        content = build_message_content(mail.text,
                                        format_receive_time(mail.date),
                                        mail.mail_from[0] if mail.mail_from else '',
                                        mail.mail_to,
                                        mail.has_attachments)
        try:
            pushed = await self.pusher.push(mail.subject, content)
        except PushError as push_error:
            logging.error("[%s] ❌ Push failed for [%s] %s: %s" % (self.name, mail.uid, mail.subject, push_error))
            return False

        if not pushed:
            logging.warning("[%s] Push not accepted, mail stays unread: [%s] %s" % (self.name, mail.uid, mail.subject))
            return False

        try:
            await self.mail.mark_as_read(mail.uid)
        except Mail.MailError as store_error:
            logging.error("[%s] Cannot mark mail [%s] as read: %s" % (self.name, mail.uid, store_error))
        logging.info("[%s] 📤 Pushed: [%s] %s" % (self.name, mail.uid, mail.subject))
        return True

    async def handle_error(self, error: BaseException) -> bool:
        """
        Count a connection failure. Returns True after the backoff delay when
        another attempt is allowed, False once the account is given up.
        """
        self.retries += 1
        self.last_error = error

        if self.retries >= self.max_retries:
            self.state = MonitorState.FATAL
            logging.critical("[%s] Reached maximum retries (%i), giving up: %s"
                             % (self.name, self.max_retries, error))
            await self.send_alert(error)
            return False

        self.state = MonitorState.BACKOFF
        logging.error("[%s] %s, retrying in %is (attempt %i/%i)"
                      % (self.name, error, self.retry_delay, self.retries, self.max_retries))
        await asyncio.sleep(self.retry_delay)
        return True

    async def send_alert(self, error: BaseException):
        msg = ("Account [%s] reached the maximum number of retries (%i), the service stopped.\nLast error: %s"
               % (self.name, self.max_retries, error))
        try:
            if await self.pusher.push(ALERT_TITLE, msg):
                logging.info("[%s] Alert sent" % self.name)
            else:
                logging.warning("[%s] Alert was not delivered" % self.name)
        except PushError as push_error:
            logging.critical("[%s] Cannot send alert: %s" % (self.name, push_error))

    async def close(self):
        await self.pusher.close()
