"""Polling of the supplier reply mailbox over IMAP."""

from __future__ import annotations

import contextlib
import imaplib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parseaddr
from html.parser import HTMLParser
from typing import List, Optional

from config.settings import settings as default_settings
from services.errors import ConfigurationError, TransportError

logger = logging.getLogger(__name__)


@dataclass
class InboxMessage:
    uid: str
    message_id: str
    subject: str
    from_addr: str
    to: List[str] = field(default_factory=list)
    text: str = ""
    date: Optional[datetime] = None


class _BodyHTMLStripper(HTMLParser):
    def __init__(self) -> None:
        super().__init__()
        self._chunks: List[str] = []

    def handle_data(self, data: str) -> None:
        self._chunks.append(data)

    @property
    def text(self) -> str:
        return re.sub(r"\s+", " ", " ".join(self._chunks)).strip()


def _strip_html_tags(html: str) -> str:
    parser = _BodyHTMLStripper()
    parser.feed(html)
    parser.close()
    return parser.text


def _extract_text(message: EmailMessage) -> str:
    plain = message.get_body(preferencelist=("plain",))
    if plain is not None:
        content = plain.get_content()
        if isinstance(content, str) and content.strip():
            return content.strip()
    html = message.get_body(preferencelist=("html",))
    if html is not None:
        content = html.get_content()
        if isinstance(content, str):
            return _strip_html_tags(content)
    return ""


def _message_date(message: EmailMessage) -> Optional[datetime]:
    header = message.get("Date")
    if header is None:
        return None
    try:
        return header.datetime
    except AttributeError:
        return None


def to_inbox_message(uid: str, message: EmailMessage) -> Optional[InboxMessage]:
    text = _extract_text(message)
    if not text:
        return None
    from_addr = parseaddr(str(message.get("From") or ""))[1].strip().lower()
    recipients = [
        address.strip().lower()
        for _, address in getaddresses([str(value) for value in message.get_all("To", [])])
        if address
    ]
    return InboxMessage(
        uid=str(uid),
        message_id=str(message.get("Message-ID") or "").strip(),
        subject=str(message.get("Subject") or ""),
        from_addr=from_addr,
        to=recipients,
        text=text,
        date=_message_date(message),
    )


class ImapInbox:
    def __init__(self, settings=None, connection_factory=None) -> None:
        self.settings = settings or default_settings
        self._connection_factory = connection_factory

    @property
    def configured(self) -> bool:
        return self.settings.imap_configured()

    def _connect(self) -> imaplib.IMAP4:
        host = self.settings.imap_host
        port = int(self.settings.imap_port)
        if self._connection_factory is not None:
            return self._connection_factory(host, port)
        if self.settings.imap_use_ssl:
            return imaplib.IMAP4_SSL(host, port)
        return imaplib.IMAP4(host, port)

    def fetch_messages(self, since: Optional[datetime] = None, limit: int = 200) -> List[InboxMessage]:
        """Return the most recent ``limit`` messages received on or after ``since``."""

        if not self.configured:
            raise ConfigurationError(
                "IMAP is not configured. Set IMAP_HOST, IMAP_PORT, IMAP_USER, IMAP_PASSWORD."
            )

        connection = self._connect()
        try:
            connection.login(self.settings.imap_user, self.settings.imap_password)
            status, _ = connection.select(self.settings.imap_mailbox)
            if status != "OK":
                raise TransportError(f"Unable to select IMAP folder {self.settings.imap_mailbox}")

            criteria = ["ALL"]
            if since is not None:
                criteria = ["SINCE", since.strftime("%d-%b-%Y")]
            status, data = connection.uid("SEARCH", None, *criteria)
            if status != "OK":
                raise TransportError("IMAP search failed")
            uids = (data[0] or b"").split()[-max(1, limit):]

            messages: List[InboxMessage] = []
            for uid in uids:
                status, msg_data = connection.uid("FETCH", uid, "(RFC822)")
                if status != "OK":
                    continue
                for part in msg_data:
                    if not isinstance(part, tuple):
                        continue
                    parsed = BytesParser(policy=policy.default).parsebytes(part[1])
                    record = to_inbox_message(uid.decode(), parsed)
                    if record is not None:
                        messages.append(record)
                    break
            logger.info("Fetched %s inbox messages from %s", len(messages), self.settings.imap_mailbox)
            return messages
        except imaplib.IMAP4.error as exc:
            raise TransportError(f"IMAP error: {exc}") from exc
        finally:
            with contextlib.suppress(Exception):
                connection.logout()
