"""Completion gateway: negotiation, request handling, and HTTP surfaces."""

from __future__ import annotations

from .client import GatewayClient
from .negotiation import (
    PAYLOAD_SHAPES,
    AttemptOutcome,
    ModelRequestAttempt,
    PayloadShape,
    plan_attempts,
)
from .service import CompletionGateway, CompletionRequest

__all__ = [
    "PAYLOAD_SHAPES",
    "AttemptOutcome",
    "CompletionGateway",
    "CompletionRequest",
    "GatewayClient",
    "ModelRequestAttempt",
    "PayloadShape",
    "plan_attempts",
]
