"""Request-shape negotiation against the upstream model provider.

Tool syntax for web-augmented answers differs between model families, so the
gateway tries an ordered list of payload shapes and keeps the first success.
Each shape is plain data; supporting a new family means adding a shape.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any

DEFAULT_NATIVE_WEB_FAMILIES: tuple[str, ...] = ("openai/", "anthropic/", "perplexity/")


@dataclass(frozen=True)
class PayloadShape:
    """One way of phrasing a completion request.

    ``native_only`` shapes are tried only for models whose identifier starts
    with one of the native web families; ``web_only`` shapes only when the
    caller asked for web-augmented answers.
    """

    name: str
    extras: Mapping[str, Any] = field(default_factory=dict)
    web_only: bool = True
    native_only: bool = False

    def applies_to(
        self, model: str, enable_web: bool, native_families: Sequence[str]
    ) -> bool:
        if self.web_only and not enable_web:
            return False
        if self.native_only:
            lowered = model.lower()
            return any(lowered.startswith(prefix) for prefix in native_families)
        return True

    def build(self, model: str, messages: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": model, "messages": list(messages), "stream": False}
        payload.update(deepcopy(dict(self.extras)))
        return payload


NATIVE_WEB_SHAPE = PayloadShape(
    name="native-web",
    extras={"web_search_options": {"search_context_size": "medium"}},
    native_only=True,
)
GENERIC_TOOL_SHAPE = PayloadShape(
    name="generic-web-tool",
    extras={"tools": [{"type": "web_search"}]},
)
PLAIN_SHAPE = PayloadShape(name="plain", web_only=False)

# Tried strictly in this order; the plain shape always closes the list.
PAYLOAD_SHAPES: tuple[PayloadShape, ...] = (
    NATIVE_WEB_SHAPE,
    GENERIC_TOOL_SHAPE,
    PLAIN_SHAPE,
)


@dataclass(frozen=True)
class ModelRequestAttempt:
    """A planned try: which shape and the exact payload sent upstream."""

    shape: PayloadShape
    payload: dict[str, Any]


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one attempt: content on success, diagnostic detail otherwise."""

    shape_name: str
    ok: bool
    content: str = ""
    detail: Any = None
    status: int | None = None


def plan_attempts(
    model: str,
    messages: Sequence[Mapping[str, Any]],
    enable_web: bool,
    native_families: Sequence[str] = DEFAULT_NATIVE_WEB_FAMILIES,
    shapes: Sequence[PayloadShape] = PAYLOAD_SHAPES,
) -> list[ModelRequestAttempt]:
    """Return the ordered attempts for one request."""
    return [
        ModelRequestAttempt(shape=shape, payload=shape.build(model, messages))
        for shape in shapes
        if shape.applies_to(model, enable_web, native_families)
    ]


def extract_content(data: Any) -> str:
    """Return ``choices[0].message.content`` or an empty string."""
    if not isinstance(data, Mapping):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, Mapping):
        return ""
    message = first.get("message")
    if not isinstance(message, Mapping):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""
