import email
import email.message
import logging
import re
from datetime import datetime
from email.utils import getaddresses, parsedate_to_datetime

from bs4 import BeautifulSoup, Comment

from .mail import RawMail
from .tool import Tool

# closing tags of these elements end a line
BLOCK_ELEMENTS = ('p', 'div', 'tr', 'li', 'table', 'blockquote', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6')


class MailData:
    uid: str = ''
    subject: str = ''
    mail_from: list[str]
    mail_to: list[str]
    date: datetime | None = None
    body: str = ''
    html_body: str = ''
    has_attachments: bool = False

    def __init__(self, uid: str = ''):
        self.uid = uid
        self.mail_from = []
        self.mail_to = []

    @property
    def text(self) -> str:
        """
        Plain text to forward: the text/plain part, or the cleaned HTML part when there is none.
        """
        if self.body.strip():
            return self.body.strip()
        if self.html_body:
            return cleanup_html(self.html_body)
        return ''


class MailParseError(Exception):
    pass


def cleanup_html(message: str) -> str:
    """
    Turn an HTML body into readable plain text: drop script/style blocks and
    comments, end a line at every <br> and block element, remove remaining
    tags, decode entities and squeeze blank lines and repeated spaces.
    """
    if not message:
        return ''
    try:
        soup = BeautifulSoup(message, 'html.parser')
        root = soup.body if soup.body else soup

        for comment in root.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()
        for element in root.find_all(['script', 'style']):
            element.decompose()
        for line_break in root.find_all('br'):
            line_break.replace_with('\n')
        for element in root.find_all(BLOCK_ELEMENTS):
            element.append('\n')

        lines = []
        for line in root.get_text().splitlines():
            line = re.sub(r'[ \t\xa0]+', ' ', line).strip()
            if line:
                lines.append(line)
        return '\n'.join(lines)

    except Exception as ex:
        logging.critical("Error cleaning HTML: %s" % str(ex))
        return ''


def decode_body(msg: email.message.Message, mail: MailData, tool: Tool):
    """
    Get payload from message and fill text, html and attachment flag
    """
    for part in msg.walk():
        content_type = part.get_content_type()
        if content_type.startswith('multipart/'):
            continue

        if part.get_content_disposition() == 'attachment':
            mail.has_attachments = True
            continue

        if content_type not in ('text/plain', 'text/html'):
            if part.get_filename():
                mail.has_attachments = True
            continue

        payload = part.get_payload(decode=True)
        if not payload:
            continue
        text = tool.binary_to_string(bytes(payload), encoding=part.get_content_charset()).strip()
        if content_type == 'text/plain' and not mail.body:
            mail.body = text
        elif content_type == 'text/html' and not mail.html_body:
            mail.html_body = text


def format_address(name: str, address: str) -> str:
    # "Name (addr)" keeps the address readable where angle brackets get eaten as markup
    if name and address:
        return "%s (%s)" % (name, address)
    return address or name


def decode_addresses(values: list[str], tool: Tool) -> list[str]:
    addresses = []
    for name, address in getaddresses([str(value) for value in values]):
        entry = format_address(tool.decode_mail_data(name).strip(), address.strip())
        if entry:
            addresses.append(entry)
    return addresses


def parse_date(date_header, internal_date: str) -> datetime | None:
    if date_header:
        try:
            return parsedate_to_datetime(str(date_header))
        except (TypeError, ValueError, IndexError):
            pass
    if internal_date:
        try:
            return datetime.strptime(internal_date, '%d-%b-%Y %H:%M:%S %z')
        except ValueError:
            pass
    return None


def parse_mail(raw: RawMail, tool: Tool) -> MailData:
    """
    parse subject, addresses, date and body of a fetched mail into structured mail data
    """
    try:
        msg = email.message_from_bytes(raw.data)
        mail = MailData(raw.uid)
        mail.subject = tool.decode_mail_data(msg['Subject']).strip()
        mail.mail_from = decode_addresses(msg.get_all('From', []), tool)
        mail.mail_to = decode_addresses(msg.get_all('To', []), tool)
        mail.date = parse_date(msg['Date'], raw.internal_date)
        decode_body(msg, mail, tool)
        return mail

    except Exception as parse_error:
        raise MailParseError("Cannot parse mail with UID '%s': %s" % (raw.uid, tool.describe_error(parse_error)))
