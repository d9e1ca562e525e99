"""Exception hierarchy shared by the bridge components.

Session-level errors abort a cycle and feed the scheduler's backoff. Item-level
errors are caught by the pipeline and leave the message unseen (except
``AckError``, which is raised after the message was already delivered).
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


class ConfigurationError(BridgeError):
    """Required settings are missing; raised once at startup."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required environment variables: {', '.join(self.missing)}")


class SessionError(BridgeError):
    """The mail store session could not be established or used."""


class StoreConnectionError(SessionError):
    """Login or network failure while opening a mail store session."""


class ProtocolError(SessionError):
    """The server rejected a mailbox-level command (SELECT, SEARCH)."""


class ItemError(BridgeError):
    """A single message could not be processed."""

    def __init__(self, message: str, uid: int | None = None) -> None:
        self.uid = uid
        super().__init__(message)


class FetchError(ItemError):
    """The message could not be retrieved (vanished, no body, transport error)."""


class ParseError(ItemError):
    """The message was retrieved but its content is malformed."""


class DeliveryError(ItemError):
    """The primary notification for a message could not be sent."""


class AckError(ItemError):
    """The message was delivered but could not be flagged as seen."""


class AttachmentError(BridgeError):
    """A single attachment could not be transmitted."""

    def __init__(self, filename: str, reason: str) -> None:
        self.filename = filename
        self.reason = reason
        super().__init__(f"{filename}: {reason}")


class TelegramAPIError(BridgeError):
    """The Telegram Bot API rejected a request or could not be reached."""

    def __init__(self, method: str, description: str, status_code: int | None = None) -> None:
        self.method = method
        self.description = description
        self.status_code = status_code
        super().__init__(f"{method} failed: {description}")
