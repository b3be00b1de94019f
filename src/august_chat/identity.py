"""Identity provider adapters for the client and the gateway."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Protocol

import httpx

from .exceptions import GatewayAuthError, IdentityError
from .models import utc_now

LOGGER = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

SessionListener = Callable[[str, "AuthSession | None"], None]


@dataclass(frozen=True)
class AuthSession:
    """A signed-in identity and the credential that proves it."""

    user_id: str
    email: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def __repr__(self) -> str:
        return f"AuthSession(user_id={self.user_id!r}, email={self.email!r})"

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= utc_now()


class IdentityProvider(Protocol):
    """Client-side identity operations used by the orchestrator and UI."""

    @property
    def requires_sign_in(self) -> bool: ...

    async def current_session(self) -> AuthSession | None: ...

    async def sign_in(self, email: str, password: str) -> AuthSession: ...

    async def sign_out(self) -> None: ...

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]: ...


class _ListenerMixin:
    def __init__(self) -> None:
        self._listeners: list[SessionListener] = []

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, session: AuthSession | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:  # noqa: BLE001 - one listener must not break the others.
                LOGGER.exception(
                    "identity.listener.failed",
                    extra={"event": "identity.listener.failed", "auth_event": event},
                )


class SupabaseAuthClient(_ListenerMixin):
    """Email and password sessions against a hosted ``/auth/v1`` endpoint."""

    requires_sign_in = True

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._session: AuthSession | None = None

    async def current_session(self) -> AuthSession | None:
        if self._session is not None and self._session.expired:
            LOGGER.info("identity.session.expired", extra={"event": "identity.session.expired"})
            self._session = None
            self._notify(SIGNED_OUT, None)
        return self._session

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            for key in ("error_description", "msg", "message", "error"):
                value = body.get(key)
                if isinstance(value, str) and value:
                    return value
        return f"HTTP {response.status_code}"

    @staticmethod
    def _session_from_payload(payload: dict[str, Any]) -> AuthSession:
        user = payload.get("user") or {}
        access_token = payload.get("access_token")
        user_id = user.get("id") if isinstance(user, dict) else None
        if not isinstance(access_token, str) or not access_token or not user_id:
            raise IdentityError("Sign-in response did not include a session.")
        expires_in = payload.get("expires_in")
        expires_at = (
            utc_now() + timedelta(seconds=int(expires_in))
            if isinstance(expires_in, (int, float))
            else None
        )
        return AuthSession(
            user_id=str(user_id),
            email=str(user.get("email") or ""),
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
        )

    async def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            response = await self._client.post(
                f"{self.base_url}/auth/v1/token",
                params={"grant_type": "password"},
                json={"email": email.strip(), "password": password},
                headers={"apikey": self._anon_key},
            )
        except httpx.HTTPError as exc:
            raise IdentityError(f"Unable to reach the identity provider: {exc}") from exc
        if response.status_code >= 400:
            raise IdentityError(self._error_message(response))
        try:
            payload = response.json()
        except ValueError as exc:
            raise IdentityError("Invalid response from the identity provider.") from exc
        if not isinstance(payload, dict):
            raise IdentityError("Invalid response from the identity provider.")

        self._session = self._session_from_payload(payload)
        LOGGER.info("identity.signed_in", extra={"event": "identity.signed_in"})
        self._notify(SIGNED_IN, self._session)
        return self._session

    async def sign_out(self) -> None:
        """Revoke the session remotely when possible; always clear it locally."""
        session = self._session
        self._session = None
        if session is not None:
            try:
                response = await self._client.post(
                    f"{self.base_url}/auth/v1/logout",
                    headers={
                        "apikey": self._anon_key,
                        "Authorization": f"Bearer {session.access_token}",
                    },
                )
                if response.status_code >= 400:
                    LOGGER.warning(
                        "identity.sign_out.rejected",
                        extra={
                            "event": "identity.sign_out.rejected",
                            "status": response.status_code,
                        },
                    )
            except httpx.HTTPError as exc:
                LOGGER.warning(
                    "identity.sign_out.failed",
                    extra={"event": "identity.sign_out.failed", "error": str(exc)},
                )
        self._notify(SIGNED_OUT, None)

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalIdentity(_ListenerMixin):
    """A fixed offline identity used with the local JSON backend."""

    requires_sign_in = False

    def __init__(self, user_id: str = "local", email: str = "local@localhost") -> None:
        super().__init__()
        self._template = AuthSession(user_id=user_id, email=email, access_token="local")
        self._session: AuthSession | None = self._template

    async def current_session(self) -> AuthSession | None:
        return self._session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        self._session = self._template
        self._notify(SIGNED_IN, self._session)
        return self._session

    async def sign_out(self) -> None:
        self._session = None
        self._notify(SIGNED_OUT, None)


class SupabaseAdminVerifier:
    """Server-side check that a bearer token belongs to a live user."""

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._service_role_key = service_role_key
        self._client = http_client

    async def verify(self, access_token: str) -> str:
        """Return the user id for ``access_token`` or raise ``GatewayAuthError``."""
        try:
            response = await self._client.get(
                f"{self.base_url}/auth/v1/user",
                headers={
                    "apikey": self._service_role_key,
                    "Authorization": f"Bearer {access_token}",
                },
            )
        except httpx.HTTPError as exc:
            LOGGER.warning(
                "gateway.auth.unreachable",
                extra={"event": "gateway.auth.unreachable", "error_type": type(exc).__name__},
            )
            raise GatewayAuthError("Unauthorized") from exc

        if response.status_code != 200:
            raise GatewayAuthError("Unauthorized")
        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayAuthError("Unauthorized") from exc
        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not user_id:
            raise GatewayAuthError("Unauthorized")
        return str(user_id)
