"""
wagateway: a multi-session WhatsApp gateway core.

Runs many linked-device sessions side by side on top of pyaileys, mirrors
their event streams into a per-session local store and exposes a
wrapper-API-compatible surface for messages, chats, contacts and groups.
"""

from __future__ import annotations

from .config import GatewayConfig
from .exceptions import (
    ChatHistoryRequiredError,
    GatewayError,
    InvalidContentError,
    InvalidSessionIdError,
    MediaFetchError,
    MessageNotFoundError,
    QueryError,
    SessionNotConnectedError,
    SessionNotFoundError,
    UnsupportedContentTypeError,
    UnsupportedOperationError,
)
from .groups import GroupService
from .manager import SessionManager
from .messages import MessageService
from .notify import NotificationHub
from .session import Session, SessionStatus

__all__ = [
    "ChatHistoryRequiredError",
    "GatewayConfig",
    "GatewayError",
    "GroupService",
    "InvalidContentError",
    "InvalidSessionIdError",
    "MediaFetchError",
    "MessageNotFoundError",
    "MessageService",
    "NotificationHub",
    "QueryError",
    "Session",
    "SessionManager",
    "SessionNotConnectedError",
    "SessionNotFoundError",
    "SessionStatus",
    "UnsupportedContentTypeError",
    "UnsupportedOperationError",
]

__version__ = "0.1.0"
