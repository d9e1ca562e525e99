"""Push parsed messages and their attachments into the Telegram chat."""

from __future__ import annotations

import logging
import threading

from .config import Settings
from .errors import AttachmentError, DeliveryError, TelegramAPIError
from .formatting import (
    attachment_caption,
    failed_attachment_text,
    format_email_message,
    skipped_attachment_text,
)
from .models import Attachment, DeliveryResult, Message
from .telegram_client import TelegramClient
from .utils import format_megabytes, pause

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Deliver one message: the text first, then each attachment in order.

    Only the text notification decides success. Oversized, empty or failing
    attachments turn into warnings in the chat and never abort the message.
    """

    def __init__(
        self,
        client: TelegramClient,
        settings: Settings,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.client = client
        self.max_attachment_size = settings.max_attachment_size
        self.attachment_spacing_ms = settings.attachment_spacing_ms
        self.timezone = settings.display_timezone
        self.stop_event = stop_event

    def channel(self):
        """Hold one chat connection open across several deliveries."""
        return self.client.channel()

    def deliver(self, message: Message) -> DeliveryResult:
        logger.info("Sending email: %r from %s", message.subject, message.sender)
        try:
            self.client.send_message(format_email_message(message, self.timezone))
        except TelegramAPIError as exc:
            raise DeliveryError(f"Text notification failed: {exc}", uid=message.uid) from exc

        result = DeliveryResult(success=True)
        transmitted = False
        for attachment in message.attachments:
            if attachment.size > self.max_attachment_size:
                logger.warning(
                    "Skipping attachment %s of UID %s: %s exceeds limit",
                    attachment.filename,
                    message.uid,
                    format_megabytes(attachment.size),
                )
                self._warn(skipped_attachment_text(attachment))
                result.skipped_attachments.append(attachment.filename)
                continue

            if not attachment.content:
                logger.warning("Attachment %s has no content", attachment.filename)
                result.skipped_attachments.append(attachment.filename)
                continue

            if transmitted:
                pause(self.stop_event, self.attachment_spacing_ms)
            transmitted = True

            try:
                self._send_attachment(attachment)
            except AttachmentError as exc:
                logger.error(
                    "Failed to send attachment %s of UID %s: %s",
                    attachment.filename,
                    message.uid,
                    exc.reason,
                )
                result.failed_attachments.append(attachment.filename)
                self._warn(failed_attachment_text(attachment.filename, exc.reason))
                continue

            logger.info("Sent attachment: %s", attachment.filename)
            result.sent_attachments.append(attachment.filename)

        logger.info("Email sent successfully: %r", message.subject)
        return result

    def notify(self, text: str) -> bool:
        """Send a free-form status text; return False instead of raising."""
        return self._warn(text)

    def _send_attachment(self, attachment: Attachment) -> None:
        try:
            self.client.send_document(
                attachment.content, attachment.filename, attachment_caption(attachment.filename)
            )
        except TelegramAPIError as exc:
            raise AttachmentError(attachment.filename, exc.description) from exc

    def _warn(self, text: str) -> bool:
        try:
            self.client.send_message(text)
        except TelegramAPIError as exc:
            logger.warning("Could not send notice to Telegram: %s", exc)
            return False
        return True
