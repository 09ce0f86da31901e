import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from typing import Dict, Iterable, List, Optional, Union

from config.settings import settings as default_settings
from services.errors import ConfigurationError, EmailTransportError


@dataclass
class EmailSendResult:
    """Outcome of an SMTP send attempt."""

    message_id: str
    accepted: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)


class EmailService:
    """Sends plain-text (optionally HTML) email over SMTP."""

    def __init__(self, settings=None, smtp_factory=None):
        self.settings = settings or default_settings
        self.logger = logging.getLogger(__name__)
        self._smtp_factory = smtp_factory

    @property
    def configured(self) -> bool:
        return self.settings.smtp_configured()

    @property
    def sender(self) -> str:
        return self.settings.smtp_from or self.settings.smtp_user or ""

    @staticmethod
    def _infer_domain(sender: str) -> Optional[str]:
        if "@" in (sender or ""):
            return sender.rsplit("@", 1)[1].strip(" >") or None
        return None

    def _connect(self) -> smtplib.SMTP:
        host = self.settings.smtp_host
        port = int(self.settings.smtp_port)
        timeout = self.settings.smtp_timeout
        if self._smtp_factory is not None:
            return self._smtp_factory(host, port, timeout)
        if self.settings.smtp_use_ssl:
            context = ssl.create_default_context()
            return smtplib.SMTP_SSL(host, port, timeout=timeout, context=context)
        return smtplib.SMTP(host, port, timeout=timeout)

    def _deliver_via_smtp(self, message_payload: str, sender: str, recipients: List[str]) -> Dict:
        server = self._connect()
        try:
            if not self.settings.smtp_use_ssl and self.settings.smtp_starttls:
                server.starttls(context=ssl.create_default_context())
            server.login(self.settings.smtp_user, self.settings.smtp_password)
            return server.sendmail(sender, recipients, message_payload) or {}
        finally:
            try:
                server.quit()
            except smtplib.SMTPException:
                self.logger.debug("SMTP quit failed", exc_info=True)

    def send_email(
        self,
        to: Union[str, Iterable[str]],
        subject: str,
        text: str,
        *,
        html: str = "",
        headers: Optional[Dict[str, str]] = None,
        message_id: Optional[str] = None,
    ) -> EmailSendResult:
        """Send one message and report which recipients the server accepted.

        Raises :class:`ConfigurationError` when SMTP settings are incomplete
        and :class:`EmailTransportError` when delivery fails.
        """

        if not self.configured:
            raise ConfigurationError(
                "SMTP is not configured. Set SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM."
            )

        recipient_list = [to] if isinstance(to, str) else list(to)
        recipient_list = [item.strip() for item in recipient_list if item and item.strip()]
        if not recipient_list:
            raise EmailTransportError("No recipient address supplied")

        sender = self.sender
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = ", ".join(recipient_list)
        reply_to = self.settings.smtp_reply_to or self.settings.smtp_user
        if reply_to:
            msg["Reply-To"] = reply_to
        generated_message_id = message_id or make_msgid(domain=self._infer_domain(sender))
        msg["Message-ID"] = generated_message_id
        msg["Date"] = formatdate(localtime=True)
        for key, value in (headers or {}).items():
            if key and value is not None:
                msg[str(key)] = str(value)

        msg.attach(MIMEText(text or "", "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))

        try:
            refused = self._deliver_via_smtp(msg.as_string(), sender, recipient_list)
        except (smtplib.SMTPException, OSError) as exc:
            self.logger.error("Email send to %s failed: %s", recipient_list, exc)
            raise EmailTransportError(str(exc)) from exc

        rejected = [address for address in recipient_list if address in refused]
        accepted = [address for address in recipient_list if address not in refused]
        self.logger.info("Sent email %s to %s", generated_message_id, accepted)
        return EmailSendResult(generated_message_id, accepted, rejected)
