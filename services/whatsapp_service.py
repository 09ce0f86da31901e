"""WhatsApp delivery through the Twilio REST API."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping, Optional

import requests

from config.settings import settings as default_settings
from models.checklist import utc_now
from services.errors import ConfigurationError, WhatsAppTransportError

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
MAX_BODY_CHARS = 1500

_WHATSAPP_ADDRESS = re.compile(r"^whatsapp:\+\d{10,15}$")
_NON_DIGITS = re.compile(r"[^\d]")


def normalize_whatsapp_to(value: Any) -> str:
    """Return ``whatsapp:+<digits>`` or an empty string when unusable.

    Bare ten-digit numbers are treated as Indian mobiles and prefixed with 91.
    """

    text = str(value or "").strip()
    if not text:
        return ""
    if _WHATSAPP_ADDRESS.match(text):
        return text
    digits = _NON_DIGITS.sub("", text)
    if not digits:
        return ""
    normalized = f"91{digits}" if len(digits) == 10 else digits
    if not re.fullmatch(r"\d{10,15}", normalized):
        return ""
    return f"whatsapp:+{normalized}"


def parse_twilio_inbound(body: Mapping[str, Any]) -> Dict[str, Any]:
    """Extract the fields we keep from a Twilio inbound webhook payload."""

    return {
        "from": str(body.get("From") or "").strip(),
        "to": str(body.get("To") or "").strip(),
        "message": str(body.get("Body") or "").strip(),
        "message_sid": str(body.get("MessageSid") or ""),
        "profile_name": str(body.get("ProfileName") or ""),
        "timestamp": utc_now().isoformat(),
    }


class WhatsAppService:
    def __init__(self, settings=None, session: Optional[requests.Session] = None) -> None:
        self.settings = settings or default_settings
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return self.settings.twilio_configured()

    def verify_webhook_token(
        self, headers: Optional[Mapping[str, Any]] = None, body: Optional[Mapping[str, Any]] = None
    ) -> bool:
        expected = self.settings.twilio_webhook_verify_token
        if not expected:
            return True
        headers = headers or {}
        body = body or {}
        supplied = (
            headers.get("x-webhook-token")
            or headers.get("X-Webhook-Token")
            or body.get("verify_token")
            or body.get("token")
        )
        return str(supplied or "") == str(expected)

    def send_message(self, to: str, body: str) -> Dict[str, str]:
        if not self.configured:
            raise ConfigurationError(
                "Twilio WhatsApp is not configured. Set TWILIO_ACCOUNT_SID, "
                "TWILIO_AUTH_TOKEN, TWILIO_WHATSAPP_FROM."
            )
        destination = normalize_whatsapp_to(to)
        if not destination:
            raise WhatsAppTransportError("Invalid WhatsApp destination number. Expected E.164 format.")

        account_sid = self.settings.twilio_account_sid
        sender = self.settings.twilio_whatsapp_from
        url = f"{TWILIO_API_BASE}/Accounts/{account_sid}/Messages.json"
        payload = {"To": destination, "From": sender, "Body": str(body or "")[:MAX_BODY_CHARS]}
        try:
            response = self._session.post(
                url,
                data=payload,
                auth=(account_sid, self.settings.twilio_auth_token),
                timeout=self.settings.twilio_timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            message = exc.response.text if exc.response is not None else str(exc)
            raise WhatsAppTransportError(message, status_code=status_code) from exc
        except requests.RequestException as exc:
            raise WhatsAppTransportError(str(exc)) from exc

        data = response.json() if response.content else {}
        logger.info("Queued WhatsApp message %s to %s", data.get("sid"), destination)
        return {
            "sid": data.get("sid") or "",
            "status": data.get("status") or "queued",
            "to": data.get("to") or destination,
            "from": data.get("from") or sender,
        }
