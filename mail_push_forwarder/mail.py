import asyncio
import logging
import re
import socket
import threading
from dataclasses import dataclass

import imaplib2

from .config import AccountConfig
from .tool import Tool

FETCH_LIMIT = 50

CONNECTION_ERROR_MARKERS = ('connection', 'eof', 'broken pipe', 'reset by peer', 'aborted', 'timed out')


def is_connection_error(error: BaseException | None) -> bool:
    """
    True for errors that mean the socket is gone (as opposed to a protocol level complaint).
    """
    if error is None:
        return False
    if isinstance(error, (imaplib2.IMAP4.abort, ConnectionError, socket.error)):
        return True
    errors = getattr(error, 'errors', None)
    if isinstance(errors, BaseException) and is_connection_error(errors):
        return True
    message = str(error).lower()
    return any(marker in message for marker in CONNECTION_ERROR_MARKERS)


async def run_blocking(func, *args, **kwargs):
    """
    Run a blocking imaplib2 call in a daemon thread and await its result.
    Daemon threads never hold up process exit when the loop is stopped while
    a call still hangs on the socket.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def settle(result, error):
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def worker():
        result, error = None, None
        try:
            result = func(*args, **kwargs)
        except Exception as call_error:
            error = call_error
        try:
            loop.call_soon_threadsafe(settle, result, error)
        except RuntimeError:
            # event loop already closed, nobody waits for this call anymore
            logging.debug("Dropping result of %s after shutdown" % getattr(func, '__name__', func))

    threading.Thread(target=worker, name='imap-call', daemon=True).start()
    return await future


@dataclass
class RawMail:
    uid: str
    data: bytes
    internal_date: str = ''


class Mail:
    """
        Mailbox protocol client for one account. Every blocking imaplib2 call
        runs in a worker thread so that one account never stalls the others.
    """
    mailbox: imaplib2.IMAP4_SSL | None = None
    account: AccountConfig
    tool: Tool
    supports_idle: bool = False
    # message count of the last SELECT, None when unknown
    message_count: int | None = None

    class MailError(Exception):
        def __init__(self, message, errors=None):
            super().__init__(message)
            self.errors = errors

    def __init__(self, account: AccountConfig, tool: Tool):
        self.account = account
        self.tool = tool

    def _error(self, action: str, error: BaseException) -> 'Mail.MailError':
        msg = "%s '%s:%i' failed: %s" % (action, self.account.server, self.account.port,
                                         self.tool.describe_error(error))
        logging.debug(msg)
        return self.MailError(msg, error)

    def _require_mailbox(self) -> imaplib2.IMAP4_SSL:
        if self.mailbox is None:
            raise self.MailError("Not connected to '%s'" % self.account.server)
        return self.mailbox

    async def connect(self):
        """
        Open a TLS connection to the IMAP server.
        """
        try:
            self.mailbox = await run_blocking(imaplib2.IMAP4_SSL,
                                              host=self.account.server,
                                              port=self.account.port,
                                              timeout=self.account.timeout)
        except socket.gaierror as gai_error:
            msg = "Connection error '%s:%i': %s" % (self.account.server, self.account.port, gai_error.strerror)
            logging.debug(msg)
            raise self.MailError(msg, gai_error)
        except Exception as connect_error:
            raise self._error("Connection to", connect_error)
        self.supports_idle = self._has_idle_capability()

    async def login(self):
        mailbox = self._require_mailbox()
        try:
            rv, _ = await run_blocking(mailbox.login, self.account.user, self.account.password)
        except Exception as login_error:
            raise self._error("Login to", login_error)
        if rv != 'OK':
            raise self.MailError("Cannot login to mailbox: %s" % str(rv))

        # servers may only announce IDLE once authenticated
        try:
            rv, data = await run_blocking(mailbox.capability)
            if rv == 'OK' and data and data[0]:
                self.supports_idle = 'IDLE' in self.tool.binary_to_string(data[0]).upper().split()
        except imaplib2.IMAP4.error as capability_error:
            logging.debug("[%s] CAPABILITY failed: %s" % (self.account.name, capability_error))

    def _has_idle_capability(self) -> bool:
        capabilities = getattr(self.mailbox, 'capabilities', None) or ()
        return 'IDLE' in [self.tool.binary_to_string(cap).upper() for cap in capabilities]

    async def list_folders(self) -> list[str]:
        mailbox = self._require_mailbox()
        try:
            rv, mailboxes = await run_blocking(mailbox.list)
        except Exception as list_error:
            raise self._error("Listing folders on", list_error)
        if rv != 'OK':
            raise self.MailError("Can't get list of available mailboxes / folders: %s" % str(rv))

        folders = []
        for mb in mailboxes or []:
            if not mb:
                continue
            # mb is bytes, e.g. b'(\\HasNoChildren) "/" "Archive"'
            mb_str = self.tool.binary_to_string(mb)
            match = re.search(r'"([^"]+)"$', mb_str)
            if match:
                folders.append(match.group(1))
            else:
                folders.append(mb_str.strip().split()[-1])
        return folders

    @staticmethod
    def quote_folder(folder: str) -> str:
        if folder.startswith('"') or not re.search(r'[\s"\\]', folder):
            return folder
        return '"%s"' % folder.replace('\\', '\\\\').replace('"', '\\"')

    def _select_sync(self, folder: str) -> int:
        mailbox = self._require_mailbox()
        rv, data = mailbox.select(self.quote_folder(folder))
        if rv != 'OK':
            raise self.MailError("Unable to open mailbox '%s': %s" % (folder, str(rv)))
        try:
            count = int(self.tool.binary_to_string(data[0]))
        except (TypeError, ValueError, IndexError):
            count = 0
        self.message_count = count
        return count

    async def select_folder(self, folder: str) -> int:
        """
        Select the folder and return its message count.
        """
        try:
            return await run_blocking(self._select_sync, folder)
        except self.MailError:
            raise
        except Exception as select_error:
            raise self._error("Selecting '%s' on" % folder, select_error)

    def _search_unseen_sync(self) -> list[str]:
        rv, data = self.mailbox.uid('SEARCH', None, 'UNSEEN')
        if rv != 'OK':
            raise imaplib2.IMAP4.error("UID SEARCH UNSEEN returned %s" % str(rv))
        if not data or not data[0]:
            return []
        return self.tool.binary_to_string(data[0]).split()

    def _recent_unseen_sync(self, count: int, limit: int) -> list[str]:
        """
        Fallback for servers rejecting flag searches: look at the most recent
        messages by sequence number and keep those without the \\Seen flag.
        """
        start = max(1, count - limit + 1)
        rv, data = self.mailbox.fetch('%i:%i' % (start, count), '(UID FLAGS)')
        if rv != 'OK':
            raise self.MailError("Fetching flags of messages %i:%i returned %s" % (start, count, str(rv)))

        uids = []
        for item in data or []:
            if isinstance(item, tuple):
                item = item[0]
            if not item:
                continue
            line = self.tool.binary_to_string(item)
            uid_match = re.search(r'\bUID\s+(\d+)', line, re.IGNORECASE)
            flags_match = re.search(r'\bFLAGS\s+\(([^)]*)\)', line, re.IGNORECASE)
            if uid_match is None:
                continue
            flags = flags_match.group(1).lower().split() if flags_match else []
            if '\\seen' not in flags:
                uids.append(uid_match.group(1))
        return uids

    def _fetch_sync(self, folder: str, limit: int) -> list[RawMail]:
        count = self._select_sync(folder)
        if count == 0:
            return []

        try:
            uids = self._search_unseen_sync()
        except imaplib2.IMAP4.abort:
            raise
        except imaplib2.IMAP4.error as search_error:
            logging.debug("[%s] Unread search not supported (%s), checking the most recent %i messages"
                          % (self.account.name, search_error, limit))
            uids = self._recent_unseen_sync(count, limit)

        uids = sorted(set(uids), key=int)
        if limit > 0 and len(uids) > limit:
            uids = uids[-limit:]

        mails = []
        for uid in uids:
            # PEEK keeps the \Seen flag untouched until the push succeeded
            rv, fetch_data = self.mailbox.uid('FETCH', uid, '(INTERNALDATE BODY.PEEK[])')
            if rv != 'OK' or not fetch_data:
                logging.error("[%s] ERROR getting message: %s" % (self.account.name, uid))
                continue

            msg_raw = None
            meta = ''
            for response_part in fetch_data:
                if isinstance(response_part, tuple):
                    meta += self.tool.binary_to_string(response_part[0])
                    if msg_raw is None:
                        msg_raw = response_part[1]
                elif response_part:
                    meta += self.tool.binary_to_string(response_part)

            if msg_raw is None:
                logging.error("[%s] Could not find message body in fetch response for UID '%s'. Data: %s"
                              % (self.account.name, uid, str(fetch_data)[:200]))
                continue

            date_match = re.search(r'INTERNALDATE\s+"([^"]+)"', meta, re.IGNORECASE)
            mails.append(RawMail(uid=uid, data=msg_raw, internal_date=date_match.group(1) if date_match else ''))
        return mails

    async def fetch_messages(self, folder: str, limit: int = FETCH_LIMIT) -> list[RawMail]:
        """
        Return up to `limit` unread messages of `folder`, oldest first, without marking them read.
        """
        self._require_mailbox()
        self.message_count = None
        try:
            return await run_blocking(self._fetch_sync, folder, limit)
        except self.MailError:
            raise
        except Exception as fetch_error:
            raise self._error("Fetching '%s' from" % folder, fetch_error)

    async def mark_as_read(self, uid: str):
        mailbox = self._require_mailbox()
        try:
            rv, _ = await run_blocking(mailbox.uid, 'STORE', uid, '+FLAGS', '(\\Seen)')
        except Exception as store_error:
            raise self._error("Marking UID %s as read on" % uid, store_error)
        if rv != 'OK':
            raise self.MailError("Marking UID %s as read returned %s" % (uid, str(rv)))

    def _has_update(self) -> bool:
        # untagged EXISTS/RECENT responses collected while idling
        for code in ('EXISTS', 'RECENT'):
            _, data = self.mailbox.response(code)
            if data and data[0] is not None:
                return True
        return False

    async def idle(self, timeout: float) -> bool:
        """
        Put the selected folder into IDLE mode. Resolves True when the server
        announced new messages, False when IDLE ended without such a payload
        (server timeout, stop_idle, unrelated untagged response).
        """
        mailbox = self._require_mailbox()
        loop = asyncio.get_running_loop()
        finished = loop.create_future()

        def settle(callback_args):
            if not finished.done():
                finished.set_result(callback_args)

        def on_idle_done(callback_args):
            # called from an imaplib2 thread
            loop.call_soon_threadsafe(settle, callback_args)

        # drop responses left over from SELECT
        self._has_update()
        try:
            mailbox.idle(timeout=timeout, callback=on_idle_done)
        except Exception as idle_error:
            raise self._error("IDLE on", idle_error)

        response, _, error = await finished
        if error:
            error_type, error_value = error
            raise self._error("IDLE on", error_value if isinstance(error_value, BaseException)
                              else error_type(error_value))
        if response is None or response[0] != 'OK':
            raise self.MailError("IDLE ended with %s" % (response,))
        return self._has_update()

    async def stop_idle(self):
        """
        Terminate a running IDLE: imaplib2 ends IDLE as soon as another command is issued.
        """
        mailbox = self._require_mailbox()
        try:
            await run_blocking(mailbox.noop)
        except Exception as noop_error:
            raise self._error("Stopping IDLE on", noop_error)

    @staticmethod
    def _logout_sync(mailbox: imaplib2.IMAP4_SSL):
        try:
            if mailbox.state == 'SELECTED':
                mailbox.close()
        except Exception as ex:
            logging.debug("Cannot close mailbox: %s" % ', '.join(map(str, ex.args)))
        try:
            mailbox.logout()
        except Exception as ex:
            logging.debug("Cannot logout: %s" % ', '.join(map(str, ex.args)))

    async def disconnect(self):
        if self.mailbox is not None:
            mailbox = self.mailbox
            self.mailbox = None
            self.supports_idle = False
            await run_blocking(self._logout_sync, mailbox)

    def abandon(self):
        """
        Drop the connection without waiting: the logout runs in a daemon thread nobody awaits.
        """
        if self.mailbox is not None:
            mailbox = self.mailbox
            self.mailbox = None
            self.supports_idle = False
            threading.Thread(target=self._logout_sync, args=(mailbox,), name='imap-logout', daemon=True).start()
