"""Relative-time grouping for the conversation sidebar."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime

from .models import Conversation

TODAY = "Today"
YESTERDAY = "Yesterday"
LAST_WEEK = "Last week"


def _local_date(value: datetime) -> date:
    if value.tzinfo is None:
        return value.date()
    return value.astimezone().date()


def days_between(earlier: datetime, now: datetime) -> int:
    """Whole calendar days between two instants, measured at local midnight."""
    return (_local_date(now) - _local_date(earlier)).days


def bucket_label(timestamp: datetime, now: datetime | None = None) -> str:
    """Return the sidebar bucket for a last-activity timestamp."""
    reference = now or datetime.now().astimezone()
    days = days_between(timestamp, reference)
    if days <= 0:
        return TODAY
    if days == 1:
        return YESTERDAY
    if days < 7:
        return f"{days} days ago"
    if days < 14:
        return LAST_WEEK
    if days < 21:
        return "2 weeks ago"
    if days < 28:
        return "3 weeks ago"
    local = timestamp.astimezone() if timestamp.tzinfo else timestamp
    return local.strftime("%B %Y")


def group_conversations(
    conversations: Iterable[Conversation], now: datetime | None = None
) -> list[tuple[str, list[Conversation]]]:
    """Group conversations into labeled buckets.

    Buckets appear in order of first occurrence and keep the incoming order
    of their members; nothing is re-sorted here.
    """
    reference = now or datetime.now().astimezone()
    groups: dict[str, list[Conversation]] = {}
    for conversation in conversations:
        label = bucket_label(conversation.last_activity, reference)
        groups.setdefault(label, []).append(conversation)
    return list(groups.items())
