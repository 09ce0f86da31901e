import os
import smtplib
import sys
from datetime import datetime, timezone
from email.message import EmailMessage

import pytest
import requests

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from config.settings import Settings
from services.email_service import EmailService
from services.errors import ConfigurationError, EmailTransportError, WhatsAppTransportError
from services.imap_inbox import ImapInbox
from services.whatsapp_service import WhatsAppService, normalize_whatsapp_to, parse_twilio_inbound

SMTP_SETTINGS = dict(
    smtp_host="smtp.example.com",
    smtp_port=587,
    smtp_user="bot@example.com",
    smtp_password="secret",
    smtp_from="Sourcing <bot@example.com>",
)
TWILIO_SETTINGS = dict(
    twilio_account_sid="AC123",
    twilio_auth_token="token",
    twilio_whatsapp_from="whatsapp:+14155238886",
)


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout, refuse=None, error=None):
        self.host = host
        self.port = port
        self.refuse = refuse or {}
        self.error = error
        self.calls = []
        FakeSMTP.instances.append(self)

    def starttls(self, context=None):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user))

    def sendmail(self, sender, recipients, payload):
        if self.error:
            raise self.error
        self.calls.append(("sendmail", sender, tuple(recipients)))
        self.payload = payload
        return self.refuse

    def quit(self):
        self.calls.append("quit")


def test_email_send_reports_accepted_and_rejected():
    FakeSMTP.instances = []
    service = EmailService(
        Settings(**SMTP_SETTINGS),
        smtp_factory=lambda host, port, timeout: FakeSMTP(host, port, timeout, refuse={"b@x.com": (550, b"no")}),
    )

    result = service.send_email(["a@x.com", "b@x.com"], "RFQ Request: Lamp", "Hello")

    smtp = FakeSMTP.instances[0]
    assert result.accepted == ["a@x.com"]
    assert result.rejected == ["b@x.com"]
    assert result.message_id.endswith("@example.com>")
    assert smtp.calls[0] == "starttls"
    assert smtp.calls[-1] == "quit"
    assert "Subject: RFQ Request: Lamp" in smtp.payload


def test_email_failures_raise_domain_errors():
    with pytest.raises(ConfigurationError):
        EmailService(Settings(smtp_host=None)).send_email("a@x.com", "s", "t")

    service = EmailService(
        Settings(**SMTP_SETTINGS),
        smtp_factory=lambda host, port, timeout: FakeSMTP(
            host, port, timeout, error=smtplib.SMTPRecipientsRefused({})
        ),
    )
    with pytest.raises(EmailTransportError):
        service.send_email("a@x.com", "s", "t")

    with pytest.raises(EmailTransportError):
        EmailService(Settings(**SMTP_SETTINGS)).send_email("  ", "s", "t")


class FakeResponse:
    def __init__(self, status_code=201, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text
        self.content = b"{}" if payload is not None else b""

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError("error", response=self)

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.posts = []

    def post(self, url, data=None, auth=None, timeout=None):
        self.posts.append((url, data, auth))
        return self.response


def test_whatsapp_send_normalises_destination():
    session = FakeSession(FakeResponse(payload={"sid": "SM42", "status": "queued"}))
    service = WhatsAppService(Settings(**TWILIO_SETTINGS), session=session)

    sent = service.send_message("98765 43210", "x" * 2000)

    url, data, auth = session.posts[0]
    assert url.endswith("/Accounts/AC123/Messages.json")
    assert data["To"] == "whatsapp:+919876543210"
    assert len(data["Body"]) == 1500
    assert auth == ("AC123", "token")
    assert sent["sid"] == "SM42"
    assert sent["from"] == "whatsapp:+14155238886"


def test_whatsapp_errors():
    with pytest.raises(ConfigurationError):
        WhatsAppService(Settings(twilio_account_sid=None), session=FakeSession(None)).send_message("+14155550100", "hi")

    service = WhatsAppService(Settings(**TWILIO_SETTINGS), session=FakeSession(FakeResponse()))
    with pytest.raises(WhatsAppTransportError):
        service.send_message("12", "hi")

    failing = WhatsAppService(
        Settings(**TWILIO_SETTINGS), session=FakeSession(FakeResponse(status_code=400, text="bad number"))
    )
    with pytest.raises(WhatsAppTransportError) as excinfo:
        failing.send_message("+14155550100", "hi")
    assert excinfo.value.status_code == 400


def test_whatsapp_number_normalisation_and_inbound_parsing():
    assert normalize_whatsapp_to("whatsapp:+14155550100") == "whatsapp:+14155550100"
    assert normalize_whatsapp_to("+1 (415) 555-0100") == "whatsapp:+14155550100"
    assert normalize_whatsapp_to("") == ""

    inbound = parse_twilio_inbound({"From": " whatsapp:+919876543210 ", "Body": " Rs 40/kg ", "MessageSid": "SM1"})
    assert inbound["from"] == "whatsapp:+919876543210"
    assert inbound["message"] == "Rs 40/kg"
    assert inbound["message_sid"] == "SM1"


def test_webhook_token_verification():
    service = WhatsAppService(Settings(twilio_webhook_verify_token="s3cret"), session=FakeSession(None))
    assert service.verify_webhook_token({"x-webhook-token": "s3cret"}, {})
    assert service.verify_webhook_token({}, {"verify_token": "s3cret"})
    assert not service.verify_webhook_token({}, {})

    open_service = WhatsAppService(Settings(twilio_webhook_verify_token=None), session=FakeSession(None))
    assert open_service.verify_webhook_token(None, None)


def _raw_email(uid):
    message = EmailMessage()
    message["From"] = "Ravi <Ravi@ErodeSpices.in>"
    message["To"] = "bot@example.com"
    message["Subject"] = f"Quote {uid}"
    message["Message-ID"] = f"<quote-{uid}@erodespices.in>"
    message["Date"] = "Fri, 10 May 2024 10:00:00 +0000"
    message.set_content("Rs 42/kg, MOQ 500 kg, 7 days")
    return message.as_bytes()


class FakeImap:
    def __init__(self):
        self.searches = []
        self.logged_out = False

    def login(self, user, password):
        self.user = user

    def select(self, mailbox):
        return "OK", [b"2"]

    def uid(self, command, *args):
        if command == "SEARCH":
            self.searches.append(args)
            return "OK", [b"1 2"]
        uid = args[0].decode()
        return "OK", [(f"{uid} (RFC822)".encode(), _raw_email(uid)), b")"]

    def logout(self):
        self.logged_out = True


def test_imap_fetch_parses_messages():
    connection = FakeImap()
    inbox = ImapInbox(
        Settings(imap_host="imap.example.com", imap_user="bot", imap_password="pw"),
        connection_factory=lambda host, port: connection,
    )

    messages = inbox.fetch_messages(since=datetime(2024, 5, 1, tzinfo=timezone.utc), limit=1)

    assert connection.searches == [(None, "SINCE", "01-May-2024")]
    assert len(messages) == 1
    assert messages[0].uid == "2"
    assert messages[0].from_addr == "ravi@erodespices.in"
    assert messages[0].message_id == "<quote-2@erodespices.in>"
    assert messages[0].text == "Rs 42/kg, MOQ 500 kg, 7 days"
    assert connection.logged_out


def test_imap_requires_configuration():
    with pytest.raises(ConfigurationError):
        ImapInbox(Settings(imap_host=None)).fetch_messages()
