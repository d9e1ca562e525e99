"""Process-level wiring: validate settings, announce, poll, shut down."""

from __future__ import annotations

import logging
import threading

from .config import Settings
from .errors import ConfigurationError
from .formatting import shutdown_text, startup_text
from .mail_source import MailSource
from .models import CycleOutcome
from .notifier import TelegramNotifier
from .pipeline import Pipeline
from .scheduler import BackoffPolicy, PollScheduler
from .telegram_client import TelegramClient

logger = logging.getLogger(__name__)


class MailBridge:
    """Forward unread IMAP mail to a Telegram chat until stopped."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: TelegramClient | None = None,
        source: MailSource | None = None,
        dry_run: bool = False,
    ) -> None:
        self.settings = settings
        self.dry_run = dry_run
        self.stop_event = threading.Event()
        self.client = client or TelegramClient(settings)
        self.source = source or MailSource(settings)
        self.notifier = TelegramNotifier(self.client, settings, stop_event=self.stop_event)
        self.pipeline = Pipeline(
            self.source, self.notifier, settings, stop_event=self.stop_event, dry_run=dry_run
        )
        self.scheduler = PollScheduler(
            BackoffPolicy(settings.poll_interval_ms, settings.backoff_cap_ms),
            stop_event=self.stop_event,
        )

    def validate(self) -> None:
        missing = self.settings.missing_required()
        if missing:
            raise ConfigurationError(missing)

    def start(self) -> None:
        """Validate, check Telegram, then poll until :meth:`stop` is called."""
        self._prepare()
        self._announce(startup_text(self.settings.imap_user, self.settings.poll_interval_seconds))
        self.scheduler.run(self.pipeline.run_cycle)
        self._announce(shutdown_text())
        logger.info("Bridge stopped")

    def run_once(self) -> CycleOutcome:
        """Validate and run exactly one cycle, without status notices."""
        self._prepare()
        return self.scheduler.run_once(self.pipeline.run_cycle)

    def stop(self) -> None:
        logger.info("Stopping bridge...")
        self.scheduler.stop()

    def _prepare(self) -> None:
        self.validate()
        logger.info("Starting Mail-to-Telegram bridge...")
        logger.info("Poll interval: %g seconds", self.settings.poll_interval_seconds)
        me = self.client.get_me()
        logger.info("Bot connected: @%s", me.get("username"))

    def _announce(self, text: str) -> None:
        if self.dry_run:
            return
        if not self.notifier.notify(text):
            logger.warning("Could not send status notification")
