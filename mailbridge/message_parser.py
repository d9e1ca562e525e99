"""Turn raw RFC 822 bytes into :class:`Message` objects."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from email import policy
from email.errors import MessageError
from email.message import EmailMessage
from email.parser import BytesParser

from .errors import ParseError
from .models import Attachment, Message, MessageUid
from .utils import ensure_utc

logger = logging.getLogger(__name__)

_HTML_ENTITIES = {"nbsp": " ", "amp": "&", "lt": "<", "gt": ">", "quot": '"', "#39": "'", "#x27": "'"}


def html_to_text(html: str) -> str:
    """Crude HTML → plain text for messages without a text/plain part."""
    s = str(html or "")
    s = re.sub(r"<(script|style)\b.*?</\1>", " ", s, flags=re.I | re.S)
    s = re.sub(r"<br\s*/?>", "\n", s, flags=re.I)
    s = re.sub(r"</(p|div|tr|li|h[1-6])>", "\n", s, flags=re.I)
    s = re.sub(r"</?[^>]+>", " ", s)
    s = re.sub(r"&([A-Za-z0-9#]+);", lambda m: _HTML_ENTITIES.get(m.group(1).lower(), " "), s)
    s = s.replace("\u00a0", " ").replace("\r", "")
    s = re.sub(r"[ \t]+", " ", s)
    s = re.sub(r" *\n *", "\n", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


def parse_message(raw: bytes, uid: MessageUid) -> Message:
    """Parse one message; raise :class:`ParseError` on malformed content."""
    if not isinstance(raw, (bytes, bytearray)):
        raise ParseError(f"expected bytes, got {type(raw).__name__}", uid=uid)
    try:
        msg = BytesParser(policy=policy.default).parsebytes(bytes(raw))
        if not msg.keys():
            raise ParseError("message has no headers", uid=uid)
        return Message(
            uid=uid,
            sender=str(msg.get("From") or "") or "Unknown",
            recipient=str(msg.get("To") or ""),
            subject=str(msg.get("Subject") or "") or "(No Subject)",
            date=_message_date(msg),
            text=_plain_body(msg),
            html=_html_body(msg),
            attachments=_attachments(msg),
        )
    except (MessageError, ValueError, TypeError, IndexError) as exc:
        raise ParseError(f"Parse error: {exc}", uid=uid) from exc


def _message_date(msg: EmailMessage) -> datetime:
    header = msg.get("Date")
    parsed = getattr(header, "datetime", None)
    if parsed is None:
        return datetime.now(tz=UTC)
    try:
        return ensure_utc(parsed)
    except (OverflowError, ValueError):
        logger.warning("Date header %r is out of range; using the current time", str(header))
        return datetime.now(tz=UTC)


def _part_text(part: EmailMessage) -> str:
    try:
        return part.get_content()
    except (LookupError, UnicodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def _plain_body(msg: EmailMessage) -> str:
    part = msg.get_body(preferencelist=("plain",))
    if part is not None:
        return _part_text(part).strip()
    html = _html_body(msg)
    return html_to_text(html) if html else ""


def _html_body(msg: EmailMessage) -> str:
    part = msg.get_body(preferencelist=("html",))
    return _part_text(part) if part is not None else ""


def _attachments(msg: EmailMessage) -> list[Attachment]:
    attachments: list[Attachment] = []
    for part in msg.iter_attachments():
        content = part.get_payload(decode=True)
        if not isinstance(content, bytes):
            content = None
        filename = part.get_filename() or "attachment"
        if content is None:
            logger.debug("Attachment %s has no decodable payload", filename)
        attachments.append(
            Attachment(
                filename=filename,
                content_type=part.get_content_type() or "application/octet-stream",
                size=len(content) if content is not None else 0,
                content=content,
            )
        )
    return attachments
