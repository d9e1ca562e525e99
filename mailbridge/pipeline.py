"""One poll cycle: list and fetch unseen mail, forward it, then mark it read."""

from __future__ import annotations

import logging
import threading

from .config import Settings
from .errors import AckError, DeliveryError, FetchError, ParseError, SessionError
from .mail_source import MailSource
from .models import CycleOutcome, Message
from .notifier import TelegramNotifier
from .utils import pause

logger = logging.getLogger(__name__)


class Pipeline:
    """Drive a single cycle and report a :class:`CycleOutcome`.

    Messages are fetched in one listing session which is closed before any
    delivery starts. Each delivered message is then marked seen in its own
    session, so a crash between delivery and the flag update shows up as a
    duplicate on the next cycle rather than a lost message.
    """

    def __init__(
        self,
        source: MailSource,
        notifier: TelegramNotifier,
        settings: Settings,
        stop_event: threading.Event | None = None,
        dry_run: bool = False,
    ) -> None:
        self.source = source
        self.notifier = notifier
        self.item_spacing_ms = settings.item_spacing_ms
        self.stop_event = stop_event
        self.dry_run = dry_run

    def run_cycle(self) -> CycleOutcome:
        logger.info("Checking for new emails...")
        outcome = CycleOutcome()
        try:
            messages = self._collect(outcome)
        except SessionError as exc:
            logger.error("Error checking emails: %s", exc)
            return CycleOutcome.session_failure(str(exc))

        if outcome.discovered == 0:
            logger.info("No new emails")
            return outcome

        if self.dry_run:
            for message in messages:
                logger.info(
                    "[DRY-RUN] Would forward UID %s %r from %s (%d attachment(s))",
                    message.uid,
                    message.subject,
                    message.sender,
                    len(message.attachments),
                )
            return outcome

        logger.info("Processing %d email(s)...", len(messages))
        with self.notifier.channel():
            for index, message in enumerate(messages):
                if index:
                    pause(self.stop_event, self.item_spacing_ms)
                self._process(message, outcome)

        logger.info(
            "Processed: %d delivered, %d acknowledged, %d failed",
            outcome.delivered,
            outcome.acknowledged,
            outcome.failed,
        )
        return outcome

    def _collect(self, outcome: CycleOutcome) -> list[Message]:
        """List unseen UIDs and fetch each one inside a single session."""
        messages: list[Message] = []
        with self.source.session() as session:
            session.connect()
            session.select_inbox()
            uids = session.list_unseen()
            outcome.discovered = len(uids)
            logger.info("Found %d unread email(s)", len(uids))

            for uid in uids:
                try:
                    messages.append(session.fetch(uid))
                except ParseError as exc:
                    logger.error("Cannot parse email UID %s: %s", uid, exc)
                    outcome.record_failure(uid, "parse", str(exc))
                except FetchError as exc:
                    logger.error("Error fetching email UID %s: %s", uid, exc)
                    outcome.record_failure(uid, "fetch", str(exc))
                except Exception as exc:
                    logger.exception("Unexpected error fetching email UID %s", uid)
                    outcome.record_failure(uid, "fetch", str(exc))

        if uids:
            logger.info("Successfully fetched %d of %d emails", len(messages), len(uids))
        return messages

    def _process(self, message: Message, outcome: CycleOutcome) -> None:
        try:
            self.notifier.deliver(message)
        except DeliveryError as exc:
            logger.error(
                "Failed to deliver email UID %s %r: %s; left unread for the next cycle",
                message.uid,
                message.subject,
                exc,
            )
            outcome.record_failure(message.uid, "deliver", str(exc), message.subject)
            return
        except Exception as exc:
            logger.exception(
                "Unexpected error delivering email UID %s %r; left unread for the next cycle",
                message.uid,
                message.subject,
            )
            outcome.record_failure(message.uid, "deliver", str(exc), message.subject)
            return
        outcome.delivered += 1

        try:
            self.source.acknowledge(message.uid)
        except AckError as exc:
            logger.error(
                "DUPLICATE RISK: email UID %s %r was delivered but not marked read: %s",
                message.uid,
                message.subject,
                exc,
            )
            outcome.record_failure(message.uid, "ack", str(exc), message.subject)
            return
        except Exception as exc:
            logger.exception(
                "DUPLICATE RISK: email UID %s %r was delivered but marking it read failed unexpectedly",
                message.uid,
                message.subject,
            )
            outcome.record_failure(message.uid, "ack", str(exc), message.subject)
            return
        outcome.acknowledged += 1
        logger.info("Successfully processed email UID %s: %r", message.uid, message.subject)
