"""Hosted row store reached through its PostgREST interface."""

from __future__ import annotations

from collections.abc import Sequence
import logging
from typing import Any

import httpx

from ..exceptions import PersistenceError, PersistenceFormatError
from ..models import AttachmentMeta, Conversation, Message, Role

LOGGER = logging.getLogger(__name__)

CONVERSATIONS_TABLE = "conversations"
MESSAGES_TABLE = "messages"


class RestBackend:
    """Conversation rows over HTTP, scoped by the bound user credential.

    Ownership filtering is enforced by row-level security on the server; the
    owner argument is only used to fill ``user_id`` on insert.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._access_token: str | None = None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    def bind(self, access_token: str | None) -> None:
        self._access_token = access_token

    def _headers(self, *, representation: bool = False) -> dict[str, str]:
        if not self._access_token:
            raise PersistenceError("Not signed in.")
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._access_token}",
        }
        if representation:
            headers["Prefer"] = "return=representation"
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        representation: bool = False,
    ) -> Any:
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(representation=representation),
            )
        except httpx.HTTPError as exc:
            LOGGER.warning(
                "rest_backend.request.failed",
                extra={
                    "event": "rest_backend.request.failed",
                    "method": method,
                    "table": table,
                    "error": str(exc),
                },
            )
            raise PersistenceError(f"Unable to reach the conversation store: {exc}") from exc

        if response.status_code >= 400:
            LOGGER.warning(
                "rest_backend.request.rejected",
                extra={
                    "event": "rest_backend.request.rejected",
                    "method": method,
                    "table": table,
                    "status": response.status_code,
                },
            )
            raise PersistenceError(
                f"Conversation store rejected {method} {table} ({response.status_code}): "
                f"{response.text}"
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise PersistenceFormatError(f"Invalid JSON from conversation store: {exc}") from exc

    @staticmethod
    def _rows(payload: Any) -> list[dict[str, Any]]:
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise PersistenceFormatError("Expected a list of rows.")
        return [row for row in payload if isinstance(row, dict)]

    def _single(self, payload: Any) -> dict[str, Any]:
        rows = self._rows(payload)
        if not rows:
            raise PersistenceFormatError("The conversation store returned no row.")
        return rows[0]

    async def list_conversations(self, owner: str) -> list[Conversation]:
        payload = await self._request(
            "GET",
            CONVERSATIONS_TABLE,
            params={"select": "*", "order": "updated_at.desc"},
        )
        return [Conversation.from_row(row) for row in self._rows(payload)]

    async def create_conversation(self, owner: str) -> Conversation:
        payload = await self._request(
            "POST",
            CONVERSATIONS_TABLE,
            json={"user_id": owner},
            representation=True,
        )
        return Conversation.from_row(self._single(payload))

    async def set_title_if_unset(
        self, owner: str, conversation_id: str, title: str
    ) -> Conversation | None:
        payload = await self._request(
            "PATCH",
            CONVERSATIONS_TABLE,
            params={"id": f"eq.{conversation_id}", "title": "is.null"},
            json={"title": title},
            representation=True,
        )
        rows = self._rows(payload)
        return Conversation.from_row(rows[0]) if rows else None

    async def delete_conversation(self, owner: str, conversation_id: str) -> None:
        await self._request(
            "DELETE",
            CONVERSATIONS_TABLE,
            params={"id": f"eq.{conversation_id}"},
        )

    async def list_messages(self, owner: str, conversation_id: str) -> list[Message]:
        payload = await self._request(
            "GET",
            MESSAGES_TABLE,
            params={
                "select": "*",
                "conversation_id": f"eq.{conversation_id}",
                "order": "created_at.asc",
            },
        )
        return [Message.from_row(row) for row in self._rows(payload)]

    async def insert_message(
        self,
        owner: str,
        conversation_id: str,
        role: Role,
        content: str,
        attachments: Sequence[AttachmentMeta] = (),
    ) -> Message:
        body: dict[str, Any] = {
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
        }
        if attachments:
            body["attachments"] = [meta.to_row() for meta in attachments]
        payload = await self._request(
            "POST", MESSAGES_TABLE, json=body, representation=True
        )
        return Message.from_row(self._single(payload))

    async def aclose(self) -> None:
        await self._client.aclose()
