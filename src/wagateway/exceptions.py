from __future__ import annotations


class GatewayError(Exception):
    """Base error for the wagateway package."""


class InvalidSessionIdError(GatewayError):
    """Session id cannot be mapped to a safe on-disk directory name."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"invalid session id: {session_id!r}")
        self.session_id = session_id


class SessionNotFoundError(GatewayError):
    """No live session exists for the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionNotConnectedError(GatewayError):
    """
    The session is absent from the live map or not in the `connected` state.

    Always raised synchronously to the caller; the core never retries it.
    """

    def __init__(self, session_id: str) -> None:
        super().__init__("Session not connected")
        self.session_id = session_id


class MessageNotFoundError(GatewayError):
    """Every message-key resolution strategy missed."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "Message not found in local store. "
            "Ensure it was synced or received after this session started."
        )


class UnsupportedOperationError(GatewayError):
    """The protocol library cannot perform the requested action."""


class UnsupportedContentTypeError(UnsupportedOperationError):
    def __init__(self, content_type: object) -> None:
        super().__init__(f"Unsupported content type: {content_type}")
        self.content_type = content_type


class QueryError(GatewayError):
    """The server answered an IQ query with an error stanza."""

    def __init__(self, code: int, text: str) -> None:
        super().__init__(f"{text} ({code})")
        self.code = code
        self.text = text


class InvalidContentError(GatewayError):
    """A send request carried content that does not match its declared type."""


class ChatHistoryRequiredError(GatewayError):
    """A chat modification needs a locally observed message in that chat."""

    def __init__(self, chat_id: str) -> None:
        super().__init__(
            "No local messages found in this chat. "
            "Receive at least one message before modifying chat state."
        )
        self.chat_id = chat_id


class MediaFetchError(GatewayError):
    """Downloading media from a URL failed."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"failed to download media from {url}: {reason}")
        self.url = url
        self.reason = reason
