"""Configuration management for the IMAP→Telegram bridge."""

from __future__ import annotations

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()

# Field name -> environment variable, for every setting the bridge cannot start without.
REQUIRED_SETTINGS = {
    "telegram_bot_token": "TELEGRAM_BOT_TOKEN",
    "telegram_chat_id": "TELEGRAM_CHAT_ID",
    "imap_host": "IMAP_HOST",
    "imap_user": "IMAP_USER",
    "imap_password": "IMAP_PASSWORD",
}


class Settings(BaseSettings):
    """App configuration derived from environment variables."""

    imap_host: str | None = Field(None, alias="IMAP_HOST")
    imap_port: int = Field(993, alias="IMAP_PORT")
    imap_user: str | None = Field(None, alias="IMAP_USER")
    imap_password: str | None = Field(None, alias="IMAP_PASSWORD")
    imap_tls: bool = Field(True, alias="IMAP_TLS")
    imap_mailbox: str = Field("INBOX", alias="IMAP_MAILBOX")
    imap_timeout: float = Field(30.0, alias="IMAP_TIMEOUT")

    telegram_bot_token: str | None = Field(None, alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: str | None = Field(None, alias="TELEGRAM_CHAT_ID")
    telegram_api_base: str = Field("https://api.telegram.org", alias="TELEGRAM_API_BASE")

    poll_interval_ms: int = Field(60_000, alias="POLL_INTERVAL", gt=0)
    backoff_cap_ms: int = Field(600_000, alias="BACKOFF_CAP", gt=0)
    max_attachment_size: int = Field(52_428_800, alias="MAX_ATTACHMENT_SIZE", ge=0)
    item_spacing_ms: int = Field(1_000, alias="ITEM_SPACING_MS", ge=0)
    attachment_spacing_ms: int = Field(500, alias="ATTACHMENT_SPACING_MS", ge=0)

    display_timezone: str = Field("UTC", alias="DISPLAY_TIMEZONE")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "imap_host",
        "imap_user",
        "imap_password",
        "telegram_bot_token",
        "telegram_chat_id",
        mode="before",
    )
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("imap_mailbox", mode="before")
    @classmethod
    def _normalize_mailbox(cls, value):
        if isinstance(value, str):
            return value.strip() or "INBOX"
        return value

    def missing_required(self) -> list[str]:
        """Environment names of every required setting that is unset."""
        return [env for field, env in REQUIRED_SETTINGS.items() if not getattr(self, field)]

    @property
    def telegram_api_url(self) -> str:
        return f"{self.telegram_api_base.rstrip('/')}/bot{self.telegram_bot_token}"

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000
