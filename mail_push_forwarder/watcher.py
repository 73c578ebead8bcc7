"""
    Wait until the watched folder may hold new mail.

    Servers announcing IDLE get a long-poll raced against the configured idle
    timeout; all others are polled by comparing the message count. Either
    way the caller gets exactly one ChangeResult per call.
"""
import asyncio
import logging
from enum import Enum

from .mail import Mail, is_connection_error

STOP_IDLE_GRACE = 30.0


class ChangeKind(Enum):
    SIGNAL = 1
    TIMEOUT = 2
    ERROR = 3


class ChangeResult:
    kind: ChangeKind
    reason: str
    connection_lost: bool

    def __init__(self, kind: ChangeKind, reason: str = '', connection_lost: bool = False):
        self.kind = kind
        self.reason = reason
        self.connection_lost = connection_lost

    @classmethod
    def signal(cls) -> 'ChangeResult':
        return cls(ChangeKind.SIGNAL)

    @classmethod
    def timeout(cls, reason: str = '') -> 'ChangeResult':
        return cls(ChangeKind.TIMEOUT, reason)

    @classmethod
    def error(cls, reason: str, connection_lost: bool = False) -> 'ChangeResult':
        return cls(ChangeKind.ERROR, reason, connection_lost)

    def __repr__(self):
        return "ChangeResult(%s, %r)" % (self.kind.name, self.reason)


async def _stop_idle(mail: Mail, idle_task: asyncio.Future) -> str | None:
    """
    End a running IDLE request and wait for it to finish. Returns an error
    text when the request could not be ended cleanly.
    """
    problem = None
    try:
        await mail.stop_idle()
    except Mail.MailError as stop_error:
        problem = str(stop_error)

    try:
        await asyncio.wait_for(idle_task, STOP_IDLE_GRACE)
    except asyncio.TimeoutError:
        problem = problem or "IDLE did not end within %is" % STOP_IDLE_GRACE
    except Exception as idle_error:
        problem = problem or str(idle_error)
    return problem


def _arrived_since(account_name: str, baseline: int | None, count: int) -> bool:
    if baseline is None or count <= baseline:
        return False
    logging.info("[%s] New mail arrived meanwhile (count: %i -> %i)" % (account_name, baseline, count))
    return True


async def wait_with_idle(mail: Mail, account_name: str, folder: str, idle_timeout: float,
                         baseline: int | None = None) -> ChangeResult:
    logging.info("[%s] Watching folder '%s' with IDLE" % (account_name, folder))
    try:
        count = await mail.select_folder(folder)
    except Mail.MailError as select_error:
        return ChangeResult.error(str(select_error), is_connection_error(select_error))
    if _arrived_since(account_name, baseline, count):
        return ChangeResult.signal()

    # the server side limit is kept above ours so the local timer decides
    idle_task = asyncio.ensure_future(mail.idle(idle_timeout + STOP_IDLE_GRACE))
    try:
        done, _ = await asyncio.wait({idle_task}, timeout=idle_timeout)
    except asyncio.CancelledError:
        # shutdown: the connection is dropped anyway, do not wait for the server
        idle_task.cancel()
        await asyncio.gather(idle_task, return_exceptions=True)
        raise

    if idle_task not in done:
        problem = await _stop_idle(mail, idle_task)
        if problem:
            logging.error("[%s] Cannot end IDLE: %s" % (account_name, problem))
            return ChangeResult.error(problem, True)
        logging.info("[%s] IDLE timeout after %gs, reconnecting" % (account_name, idle_timeout))
        return ChangeResult.timeout("IDLE timeout")

    idle_error = idle_task.exception()
    if idle_error is not None:
        if is_connection_error(idle_error):
            logging.warning("[%s] Connection lost, reconnecting: %s" % (account_name, idle_error))
            return ChangeResult.error(str(idle_error), True)
        logging.error("[%s] IDLE error: %s" % (account_name, idle_error))
        return ChangeResult.error(str(idle_error))

    if idle_task.result():
        logging.info("[%s] IDLE reported new mail" % account_name)
        return ChangeResult.signal()

    # woken up by something that is not a new message
    logging.info("[%s] IDLE ended without new mail, reconnecting" % account_name)
    return ChangeResult.timeout("IDLE ended without update")


async def wait_with_polling(mail: Mail, account_name: str, folder: str, poll_interval: float,
                            baseline: int | None = None) -> ChangeResult:
    logging.info("[%s] Polling folder '%s' (interval: %is)" % (account_name, folder, poll_interval))
    try:
        last_count = await mail.select_folder(folder)
    except Mail.MailError as select_error:
        return ChangeResult.error(str(select_error), is_connection_error(select_error))
    if _arrived_since(account_name, baseline, last_count):
        return ChangeResult.signal()

    while True:
        await asyncio.sleep(poll_interval)
        try:
            count = await mail.select_folder(folder)
        except Mail.MailError as select_error:
            return ChangeResult.error(str(select_error), is_connection_error(select_error))

        if count != last_count:
            logging.info("[%s] New mail detected (count: %i -> %i)" % (account_name, last_count, count))
            return ChangeResult.signal()


async def wait_for_change(mail: Mail, account_name: str, folder: str,
                          idle_timeout: float, poll_interval: float, baseline: int | None = None) -> ChangeResult:
    """
    Wait for new mail in `folder`. `baseline` is the message count seen by
    the last fetch; mail that arrived after it is reported at once.
    """
    if mail.supports_idle:
        return await wait_with_idle(mail, account_name, folder, idle_timeout, baseline)
    return await wait_with_polling(mail, account_name, folder, poll_interval, baseline)
