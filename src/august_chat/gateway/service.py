"""Stateless completion handler: authenticate, validate, negotiate."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import json
import logging
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import DEFAULT_MODEL, ServerConfig, ServerSecrets
from ..exceptions import (
    GatewayAuthError,
    GatewayConfigurationError,
    GatewayRequestError,
    UpstreamProviderError,
)
from ..identity import SupabaseAdminVerifier
from .negotiation import AttemptOutcome, ModelRequestAttempt, extract_content, plan_attempts

LOGGER = logging.getLogger(__name__)

TokenVerifier = Callable[[str], Awaitable[str]]


class ChatMessagePayload(BaseModel):
    """One message as accepted from the client."""

    model_config = ConfigDict(extra="ignore")

    role: Literal["system", "user", "assistant"]
    content: str | list[dict[str, Any]]


class CompletionRequest(BaseModel):
    """Validated request body."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    messages: list[ChatMessagePayload] = Field(min_length=1)
    model: str | None = None
    enable_web: bool = Field(default=False, alias="enableWeb")


def parse_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def parse_request(body: bytes | str | Any) -> CompletionRequest:
    """Decode and validate the body, raising ``GatewayRequestError``."""
    if isinstance(body, (bytes, str)):
        try:
            data = json.loads(body or b"")
        except ValueError as exc:
            raise GatewayRequestError("Invalid JSON body") from exc
    else:
        data = body
    if not isinstance(data, dict):
        raise GatewayRequestError("Invalid JSON body")

    messages = data.get("messages")
    if not isinstance(messages, list) or not messages:
        raise GatewayRequestError("messages must be a non-empty array")
    try:
        return CompletionRequest.model_validate(data)
    except ValidationError as exc:
        detail = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        raise GatewayRequestError("Invalid request body", detail=detail) from exc


class CompletionGateway:
    """Per request: Unauthenticated -> Authenticated -> Negotiating -> done.

    Holds no per-request state; only injected configuration and an HTTP
    client are shared between requests.
    """

    def __init__(
        self,
        config: ServerConfig,
        secrets: ServerSecrets,
        http_client: httpx.AsyncClient | None = None,
        verifier: TokenVerifier | None = None,
    ) -> None:
        self.config = config
        self._secrets = secrets
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._verifier = verifier

    def _verify(self) -> TokenVerifier:
        if self._verifier is not None:
            return self._verifier
        return SupabaseAdminVerifier(
            self._secrets.identity_url,
            self._secrets.service_role_key,
            self._client,
        ).verify

    def _provider_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._secrets.provider_api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.config.referer,
            "X-Title": self.config.title,
        }

    async def authenticate(self, authorization: str | None) -> str:
        token = parse_bearer(authorization)
        if token is None:
            raise GatewayAuthError("Missing Authorization header")
        if not self._secrets.complete:
            LOGGER.error(
                "gateway.config.missing",
                extra={"event": "gateway.config.missing"},
            )
            raise GatewayConfigurationError("Missing server configuration")
        user_id = await self._verify()(token)
        LOGGER.debug("gateway.auth.ok", extra={"event": "gateway.auth.ok"})
        return user_id

    def resolve_model(self, requested: str | None) -> str:
        model = (requested or "").strip() or DEFAULT_MODEL
        allowed = self.config.allowed_models
        if allowed and model not in allowed:
            raise GatewayRequestError("Model not allowed", detail=model)
        return model

    async def _attempt(self, attempt: ModelRequestAttempt) -> AttemptOutcome:
        name = attempt.shape.name
        try:
            response = await self._client.post(
                self.config.provider_url,
                json=attempt.payload,
                headers=self._provider_headers(),
            )
        except httpx.HTTPError as exc:
            return AttemptOutcome(shape_name=name, ok=False, detail=str(exc) or type(exc).__name__)

        if not response.is_success:
            return AttemptOutcome(
                shape_name=name,
                ok=False,
                detail=response.text,
                status=response.status_code,
            )
        try:
            data = response.json()
        except ValueError:
            data = None
        return AttemptOutcome(
            shape_name=name,
            ok=True,
            content=extract_content(data),
            status=response.status_code,
        )

    async def negotiate(self, request: CompletionRequest, model: str) -> str:
        """Try each planned shape in order and return the first success."""
        messages = [message.model_dump() for message in request.messages]
        attempts = plan_attempts(
            model,
            messages,
            request.enable_web,
            self.config.native_web_families,
        )
        last: AttemptOutcome | None = None
        for attempt in attempts:
            outcome = await self._attempt(attempt)
            LOGGER.info(
                "gateway.attempt",
                extra={
                    "event": "gateway.attempt",
                    "shape": outcome.shape_name,
                    "model": model,
                    "ok": outcome.ok,
                    "status": outcome.status,
                },
            )
            if outcome.ok:
                return outcome.content
            last = outcome
        raise UpstreamProviderError(
            "OpenRouter error", detail=last.detail if last is not None else None
        )

    async def complete(self, authorization: str | None, body: bytes | str | Any) -> str:
        await self.authenticate(authorization)
        request = parse_request(body)
        model = self.resolve_model(request.model)
        return await self.negotiate(request, model)

    async def aclose(self) -> None:
        await self._client.aclose()
