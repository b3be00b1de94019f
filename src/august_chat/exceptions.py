"""Domain exception hierarchy for the August chat client and gateway."""

from __future__ import annotations

from typing import Any


class AugustChatError(RuntimeError):
    """Base class for all domain-level chat errors."""


class ConfigValidationError(AugustChatError):
    """Raised when configuration cannot be validated safely."""


class AttachmentError(AugustChatError):
    """Raised when an attachment cannot be read at all."""


class PersistenceError(AugustChatError):
    """Raised when the conversation store rejects or cannot reach a write."""


class PersistenceFormatError(PersistenceError):
    """Raised when a persisted payload cannot be decoded safely."""


class IdentityError(AugustChatError):
    """Raised when sign-in, sign-out, or session lookup fails."""


class InvalidTransitionError(AugustChatError):
    """Raised when the session state machine is asked for an illegal move."""


class GatewayError(AugustChatError):
    """A failure surfaced by the completion gateway.

    ``status`` is the HTTP status the gateway answers with, ``error`` the short
    message placed in the response body, and ``detail`` optional diagnostic
    data (the upstream error text, never internal secrets).
    """

    status: int = 500

    def __init__(
        self,
        error: str,
        *,
        status: int | None = None,
        detail: Any | None = None,
    ) -> None:
        super().__init__(error)
        self.error = error
        if status is not None:
            self.status = status
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.detail is not None:
            body["detail"] = self.detail
        return body


class GatewayAuthError(GatewayError):
    """Missing, invalid, or expired caller credential."""

    status = 401


class GatewayRequestError(GatewayError):
    """Malformed request body or disallowed parameters."""

    status = 400


class GatewayConfigurationError(GatewayError):
    """Server-side configuration (secrets, endpoints) is missing."""

    status = 500


class UpstreamProviderError(GatewayError):
    """Every negotiation attempt against the model provider failed."""

    status = 500
