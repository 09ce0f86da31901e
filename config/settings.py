# Sourcewise/config/settings.py

import json
import os
from typing import Any, Dict, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
ENV_FILE_PATH = os.path.join(PROJECT_ROOT, '.env')

DEFAULT_AWARD_WEIGHTS: Dict[str, float] = {
    "cost": 0.45,
    "lead": 0.20,
    "moq": 0.15,
    "confidence": 0.10,
    "risk": 0.10,
}


class Settings(BaseSettings):
    # Project document store (PostgreSQL). Leave db_host empty for the
    # in-memory repository.
    db_host: Optional[str] = Field(default=None, env="DB_HOST")
    db_name: Optional[str] = Field(default=None, env="DB_NAME")
    db_user: Optional[str] = Field(default=None, env="DB_USER")
    db_password: Optional[str] = Field(default=None, env="DB_PASSWORD")
    db_port: int = Field(default=5432, env="DB_PORT")
    project_patch_max_retries: int = Field(default=3, env="PROJECT_PATCH_MAX_RETRIES")

    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    negotiation_lock_timeout_seconds: int = Field(
        default=120, env="NEGOTIATION_LOCK_TIMEOUT_SECONDS"
    )

    # LLM provider (any OpenAI-compatible chat completions endpoint)
    llm_base_url: Optional[str] = Field(default=None, env="LLM_BASE_URL")
    llm_api_key: Optional[str] = Field(default=None, env="LLM_API_KEY")
    llm_model: str = Field(default="gemini-2.0-flash", env="LLM_MODEL")
    llm_timeout: int = Field(default=60, env="LLM_TIMEOUT")
    llm_temperature: float = Field(default=0.4, env="LLM_TEMPERATURE")
    llm_max_tokens: int = Field(default=1200, env="LLM_MAX_TOKENS")

    # Email settings
    smtp_host: Optional[str] = Field(default=None, env="SMTP_HOST")
    smtp_port: int = Field(default=0, env="SMTP_PORT")
    smtp_user: Optional[str] = Field(default=None, env="SMTP_USER")
    smtp_password: Optional[str] = Field(default=None, env="SMTP_PASSWORD")
    smtp_from: Optional[str] = Field(default=None, env="SMTP_FROM")
    smtp_reply_to: Optional[str] = Field(default=None, env="SMTP_REPLY_TO")
    smtp_use_ssl: bool = Field(default=False, env="SMTP_USE_SSL")
    smtp_starttls: bool = Field(default=True, env="SMTP_STARTTLS")
    smtp_timeout: int = Field(default=30, env="SMTP_TIMEOUT")

    imap_host: Optional[str] = Field(default=None, env="IMAP_HOST")
    imap_port: int = Field(default=993, env="IMAP_PORT")
    imap_user: Optional[str] = Field(default=None, env="IMAP_USER")
    imap_password: Optional[str] = Field(default=None, env="IMAP_PASSWORD")
    imap_mailbox: str = Field(default="INBOX", env="IMAP_MAILBOX")
    imap_use_ssl: bool = Field(default=True, env="IMAP_USE_SSL")

    # Messaging (Twilio WhatsApp)
    twilio_account_sid: Optional[str] = Field(default=None, env="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, env="TWILIO_AUTH_TOKEN")
    twilio_whatsapp_from: Optional[str] = Field(default=None, env="TWILIO_WHATSAPP_FROM")
    twilio_webhook_verify_token: Optional[str] = Field(
        default=None, env="TWILIO_WEBHOOK_VERIFY_TOKEN"
    )
    twilio_timeout: int = Field(default=15, env="TWILIO_TIMEOUT")

    # Workflow constants
    max_automated_rounds: int = Field(default=2, env="MAX_AUTOMATED_ROUNDS")
    negotiation_mock_send: bool = Field(
        default=False,
        validation_alias=AliasChoices("SOURCING_NEGOTIATION_MOCK_SEND", "negotiation_mock_send"),
    )
    followup_response_sla_hours: float = Field(default=24, env="FOLLOWUP_RESPONSE_SLA_HOURS")
    followup_cadence_hours: float = Field(default=24, env="FOLLOWUP_CADENCE_HOURS")
    followup_max_followups: int = Field(default=2, env="FOLLOWUP_MAX_FOLLOWUPS")
    award_weights: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_AWARD_WEIGHTS), env="AWARD_WEIGHTS"
    )
    sender_signature: str = Field(default="Sourcewise", env="SENDER_SIGNATURE")

    class Config:
        env_file = ENV_FILE_PATH
        env_file_encoding = 'utf-8'
        extra = "ignore"

    @staticmethod
    def _parse_mapping(value: Any) -> Dict[str, Any]:
        if value in (None, "", {}):
            return {}
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("Value must be valid JSON mapping") from exc
            if not isinstance(parsed, dict):
                raise ValueError("JSON value must decode to an object")
            return parsed
        raise TypeError("Unsupported type; expected dict or JSON string")

    @field_validator("award_weights", mode="before")
    @classmethod
    def _coerce_award_weights(cls, value):
        """Merge partial weight overrides onto the default award weights."""

        parsed = cls._parse_mapping(value)
        merged = dict(DEFAULT_AWARD_WEIGHTS)
        for key, raw in parsed.items():
            name = str(key).strip().lower()
            if name not in merged:
                continue
            merged[name] = float(raw)
        return merged

    def smtp_configured(self) -> bool:
        return bool(
            self.smtp_host
            and self.smtp_port
            and self.smtp_user
            and self.smtp_password
            and (self.smtp_from or self.smtp_user)
        )

    def imap_configured(self) -> bool:
        return bool(
            self.imap_host
            and self.imap_port
            and self.imap_user
            and self.imap_password
            and self.imap_mailbox
        )

    def twilio_configured(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_whatsapp_from
        )

    def llm_configured(self) -> bool:
        return bool(self.llm_base_url)


try:
    settings = Settings()
except Exception as e:
    print(f"!!! FATAL ERROR: Could not load application settings from .env file: {e}")
    raise
