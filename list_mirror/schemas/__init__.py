"""Schemas package initialization."""
from .messages import (
    ChangeNotice,
    ContinuationPayload,
    MessageKind,
    NotificationEnvelope,
    parse_message,
)

__all__ = [
    "ChangeNotice",
    "ContinuationPayload",
    "MessageKind",
    "NotificationEnvelope",
    "parse_message",
]
