"""Entry point that forwards unread IMAP mail into a Telegram chat."""

from __future__ import annotations

import argparse
import logging
import signal
from pathlib import Path
import sys

from dotenv import load_dotenv
from pydantic import ValidationError

# Ensure project root is on sys.path when running as a script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mailbridge.bridge import MailBridge
from mailbridge.config import Settings
from mailbridge.errors import ConfigurationError, TelegramAPIError

load_dotenv()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Forward unread IMAP mail to Telegram.")
    parser.add_argument("--once", action="store_true", help="Run a single poll cycle and exit")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List and fetch unread mail without sending it or marking it read",
    )
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    try:
        settings = Settings()
    except ValidationError as exc:
        configure_logging("INFO")
        logging.error("Fatal error: invalid configuration: %s", exc)
        return 1
    configure_logging(settings.log_level)

    bridge = MailBridge(settings, dry_run=args.dry_run)

    def _shutdown(signum, _frame) -> None:
        logging.info("Received %s", signal.Signals(signum).name)
        bridge.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        if args.once or args.dry_run:
            outcome = bridge.run_once()
            logging.info(
                "Run complete: discovered=%s delivered=%s acknowledged=%s failed=%s",
                outcome.discovered,
                outcome.delivered,
                outcome.acknowledged,
                outcome.failed,
            )
            return 0 if outcome.session_ok else 1
        bridge.start()
    except (ConfigurationError, TelegramAPIError) as exc:
        logging.error("Fatal error: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
