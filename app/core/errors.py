from __future__ import annotations

from typing import Any, Optional


class ChatError(Exception):
    """Base class for failures raised by the chat pipeline."""

    session_id: Optional[str] = None


class InvalidRequest(ChatError):
    pass


class OwnershipMismatch(ChatError):
    """The session id already belongs to another client."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f'Session {session_id} belongs to another client')
        self.session_id = session_id


class SessionNotFound(ChatError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f'Session {session_id} not found')
        self.session_id = session_id


class UpstreamBusy(ChatError):
    """A turn for the same session is still waiting on the automation engine."""

    def __init__(self, session_id: str) -> None:
        super().__init__('The previous message is still being processed, try again shortly')
        self.session_id = session_id


class UpstreamNotConfigured(ChatError):
    def __init__(self) -> None:
        super().__init__('AUTOMATION_WEBHOOK_URL is not configured')


class UpstreamFailure(ChatError):
    """Non-2xx status, timeout or transport error from the automation engine."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class MalformedPayload(ChatError):
    pass


class StorageFailure(ChatError):
    """The database rejected a read or write during a chat turn."""

    def __init__(self, session_id: Optional[str] = None) -> None:
        super().__init__('Chat history could not be stored, please try again')
        self.session_id = session_id
