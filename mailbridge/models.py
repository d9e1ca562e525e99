"""Typed containers shared across the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import NewType, Optional

# Durable IMAP UID: stable across sessions, the only key used to mark a message seen.
MessageUid = NewType("MessageUid", int)
# Positional message sequence number: only meaningful inside the session that produced it.
SequenceNumber = NewType("SequenceNumber", int)


@dataclass
class Attachment:
    """A file attached to a message."""

    filename: str
    content_type: str
    size: int
    content: Optional[bytes] = None


@dataclass
class Message:
    """A parsed message ready to be forwarded."""

    uid: MessageUid
    sender: str
    recipient: str
    subject: str
    date: datetime
    text: str
    html: str = ""
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class DeliveryResult:
    """What happened when one message was pushed to the chat."""

    success: bool
    sent_attachments: list[str] = field(default_factory=list)
    skipped_attachments: list[str] = field(default_factory=list)
    failed_attachments: list[str] = field(default_factory=list)


@dataclass
class ItemFailure:
    """One message that did not make it through a cycle."""

    uid: MessageUid
    stage: str  # fetch | parse | deliver | ack
    reason: str
    subject: Optional[str] = None


@dataclass
class CycleOutcome:
    """Accumulates per-item results for one poll cycle."""

    session_ok: bool = True
    discovered: int = 0
    delivered: int = 0
    acknowledged: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> int:
        return len(self.failures)

    def record_failure(
        self, uid: MessageUid, stage: str, reason: str, subject: Optional[str] = None
    ) -> None:
        self.failures.append(ItemFailure(uid=uid, stage=stage, reason=reason, subject=subject))

    def failed_uids(self, stage: Optional[str] = None) -> list[MessageUid]:
        return [f.uid for f in self.failures if stage is None or f.stage == stage]

    @classmethod
    def session_failure(cls, error: str) -> "CycleOutcome":
        return cls(session_ok=False, error=error)
