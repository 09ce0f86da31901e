"""Error taxonomy shared by the sourcing workflow services."""

from __future__ import annotations

from typing import Optional


class SourcingError(RuntimeError):
    """Base class for all workflow errors surfaced to callers."""


class NotFoundError(SourcingError):
    """Raised when a project or supplier does not exist."""


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class SupplierNotFoundError(NotFoundError):
    def __init__(self, supplier_id: Optional[str]) -> None:
        super().__init__(f"Supplier not found: {supplier_id}")
        self.supplier_id = supplier_id


class PreconditionFailedError(SourcingError):
    """Raised when an operation cannot run against the current project state."""


class NoSuppliersAvailableError(PreconditionFailedError):
    def __init__(self, message: str = "No suppliers available for award decision.") -> None:
        super().__init__(message)


class ConfigurationError(SourcingError):
    """Raised when a required collaborator (SMTP, IMAP, Twilio, LLM) is not configured."""


class TransportError(SourcingError):
    """Raised when an outbound message could not be delivered."""


class ConcurrencyConflictError(SourcingError):
    """Raised when an optimistic update keeps losing to concurrent writers."""

    def __init__(self, project_id: str, attempts: int) -> None:
        super().__init__(
            f"Project {project_id} was modified concurrently; gave up after {attempts} attempts"
        )
        self.project_id = project_id
        self.attempts = attempts


class EmailTransportError(TransportError):
    """SMTP delivery failed."""


class WhatsAppTransportError(TransportError):
    """Twilio rejected the message or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMClientError(SourcingError):
    """Raised when the LLM endpoint returns an error or malformed payload."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WebhookVerificationError(SourcingError):
    """Inbound webhook did not carry the expected verification token."""
