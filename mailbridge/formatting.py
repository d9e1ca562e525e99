"""Telegram HTML texts for forwarded messages and bridge status notices."""

from __future__ import annotations

from .models import Attachment, Message
from .utils import format_megabytes, to_timezone

TELEGRAM_TEXT_LIMIT = 4096
CAPTION_LIMIT = 1024
BODY_LIMIT = 3000
TRUNCATION_MARKER = "\n\n... [truncated]"


def escape_html(text: str | None) -> str:
    if not text:
        return ""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def truncate_text(text: str, max_length: int = 4000) -> str:
    """Cut text at ``max_length`` characters and append a visible marker.

    Lossy on purpose: Telegram caps message length and the remainder is dropped.
    """
    if not text or len(text) <= max_length:
        return text
    return text[:max_length] + TRUNCATION_MARKER


def format_email_message(message: Message, timezone: str = "UTC") -> str:
    date = to_timezone(message.date, timezone).strftime("%d.%m.%Y, %H:%M:%S")
    attachment_info = (
        f"\n📎 <b>Attachments:</b> {len(message.attachments)}" if message.attachments else ""
    )
    body = truncate_text(message.text or "(No text content)", BODY_LIMIT)
    text = (
        "📧 <b>New Email</b>\n\n"
        f"<b>From:</b> {escape_html(message.sender)}\n"
        f"<b>To:</b> {escape_html(message.recipient)}\n"
        f"<b>Subject:</b> {escape_html(message.subject)}\n"
        f"<b>Date:</b> {escape_html(date)}"
        f"{attachment_info}\n\n"
        f"<b>Message:</b>\n{escape_html(body)}"
    )
    if len(text) > TELEGRAM_TEXT_LIMIT:
        # Escaping can push a 3000-char body past the hard limit; cut the escaped
        # text before the last entity so no half-written "&amp;" is sent.
        cut = TELEGRAM_TEXT_LIMIT - len(TRUNCATION_MARKER)
        head = text[:cut]
        amp = head.rfind("&")
        if amp != -1 and ";" not in head[amp:]:
            head = head[:amp]
        text = head + TRUNCATION_MARKER
    return text


def attachment_caption(filename: str) -> str:
    return f"📎 {escape_html(filename)}"[:CAPTION_LIMIT]


def skipped_attachment_text(attachment: Attachment) -> str:
    return (
        f"⚠️ <b>Skipped attachment:</b> {escape_html(attachment.filename)}\n"
        f"<i>Size {format_megabytes(attachment.size)} ({attachment.size} bytes) exceeds limit</i>"
    )


def failed_attachment_text(filename: str, error: str) -> str:
    return (
        f"⚠️ <b>Failed to send attachment:</b> {escape_html(filename)}\n"
        f"<i>Error: {escape_html(error)}</i>"
    )


def startup_text(account: str, poll_interval_seconds: float) -> str:
    return (
        "🤖 <b>Mail Bot Started</b>\n\n"
        f"Monitoring: {escape_html(account)}\n"
        f"Poll interval: {poll_interval_seconds:g} seconds"
    )


def shutdown_text() -> str:
    return "🔴 <b>Mail Bot Stopped</b>"
