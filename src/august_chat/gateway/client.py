"""HTTP client for the completion gateway."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
from typing import Any

import httpx

from ..exceptions import GatewayError

LOGGER = logging.getLogger(__name__)


class GatewayClient:
    """Posts assembled turns to the gateway and returns the completion text."""

    def __init__(
        self,
        url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 120.0,
    ) -> None:
        self.url = url
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def complete(
        self,
        access_token: str,
        messages: Sequence[Mapping[str, Any]],
        model: str,
        enable_web: bool = False,
    ) -> str:
        body = {"messages": list(messages), "model": model, "enableWeb": enable_web}
        try:
            response = await self._client.post(
                self.url,
                json=body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            LOGGER.warning(
                "gateway_client.unreachable",
                extra={"event": "gateway_client.unreachable", "error": str(exc)},
            )
            raise GatewayError("Gateway unreachable", detail=str(exc)) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.is_success:
            error = "Gateway error"
            detail: Any = response.text or None
            if isinstance(payload, dict):
                error = str(payload.get("error") or error)
                detail = payload.get("detail")
            raise GatewayError(error, status=response.status_code, detail=detail)

        if not isinstance(payload, dict):
            raise GatewayError("Invalid gateway response", status=response.status_code)
        content = payload.get("content")
        return content if isinstance(content, str) else ""

    async def aclose(self) -> None:
        await self._client.aclose()
