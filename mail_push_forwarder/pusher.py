import logging
from datetime import datetime

import httpx

PUSH_TIMEOUT = 30.0
SEPARATOR = '----------------------------'
ATTACHMENT_NOTICE = 'This mail has attachments, please check them in your mailbox.'
RECIPIENT_INDENT = '    '


class PushError(Exception):
    pass


def format_receive_time(date: datetime | None) -> str:
    if date is None:
        return '-'
    # tz-aware dates are shown in local time, naive ones as they are
    return date.astimezone().strftime('%Y-%m-%d %H:%M:%S')


def build_message_content(body: str, receive_time: str, mail_from: str, mail_to: list[str],
                          has_attachments: bool) -> str:
    """
    Build the push message text: body, attachment hint, then a footer with time, sender and recipients.
    """
    content = body
    if has_attachments:
        content += "\n\n" + ATTACHMENT_NOTICE

    content += "\n\n" + SEPARATOR + "\n"
    content += "Received: %s\n" % receive_time
    content += "From: %s\n" % mail_from
    if mail_to:
        content += "To: %s\n" % mail_to[0]
        for recipient in mail_to[1:]:
            content += "%s%s\n" % (RECIPIENT_INDENT, recipient)
    return content


class Pusher:
    url: str
    account_name: str
    client: httpx.AsyncClient

    def __init__(self, url: str, account_name: str, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.account_name = account_name
        self.client = httpx.AsyncClient(timeout=PUSH_TIMEOUT, transport=transport)

    async def push(self, title: str, msg: str) -> bool:
        """
        Post title and message as form data. True only on HTTP 200; an unset
        endpoint is a no-op that reports "not delivered".
        """
        if not self.url:
            return False

        try:
            response = await self.client.post(self.url, data={'title': title, 'msg': msg})
        except httpx.HTTPError as push_error:
            raise PushError("Push request to '%s' failed: %s" % (self.url, push_error)) from push_error

        if response.status_code == 200:
            return True
        logging.debug("[%s] Push endpoint answered HTTP %i: %s"
                      % (self.account_name, response.status_code, response.text[:200]))
        return False

    async def close(self):
        await self.client.aclose()
