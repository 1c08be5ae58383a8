"""
Configuration management with Pydantic settings.
Values come from environment variables or a ``.env`` file; CLI flags override them.
"""
from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when the settings cannot support the requested operation."""


class Settings(BaseSettings):
    """Application settings with validation and type safety."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Telegram Configuration
    bot_token: Optional[str] = Field(default=None, description="Bot token from @BotFather")
    telegram_channels: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Comma-separated channel usernames or numeric chat IDs"
    )

    # Mastodon Feed Configuration
    feed_url: Optional[str] = Field(default=None, description="Full URL of the public RSS feed")
    mastodon_host: Optional[str] = Field(default=None, description="Mastodon server, e.g. mastodon.social")
    mastodon_account: Optional[str] = Field(default=None, description="Account name, e.g. user or user@domain")

    # Database Configuration
    database_path: Path = Field(default=Path("./mastotg.db"), description="SQLite ledger file")

    # Polling Configuration
    poll_interval_seconds: int = Field(default=300, ge=1)
    request_timeout: float = Field(default=20.0, gt=0)
    user_agent: str = Field(default="mastotg (+https://github.com/myl7/mastotg)")
    skip_backlog: bool = Field(default=True, description="On the first run, ignore posts already in the feed")
    max_posts_per_round: Optional[int] = Field(default=None, ge=1)

    # Delivery Configuration
    max_retry_attempts: int = Field(default=3, ge=1, le=10)
    flood_wait_multiplier: float = Field(default=1.5, ge=1.0, le=5.0)
    append_link: bool = Field(default=False, description="Append the original post URL to each message")

    # Logging Configuration
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    debug_mode: bool = Field(default=False)
    log_json: bool = Field(default=True)
    log_file: Optional[Path] = Field(default=None)

    @field_validator('telegram_channels', mode='before')
    @classmethod
    def parse_channels(cls, v):
        """Parse comma-separated channels from environment variable."""
        if isinstance(v, str):
            return [x.strip() for x in v.split(',') if x.strip()]
        return v

    @field_validator('telegram_channels')
    @classmethod
    def normalize_channels(cls, v: List[str]) -> List[str]:
        return [normalize_channel(channel) for channel in v]

    @field_validator('database_path', mode='before')
    @classmethod
    def parse_database_path(cls, v):
        """Ensure database directory exists."""
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator('log_level', mode='before')
    @classmethod
    def upper_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL for the ledger database."""
        return f"sqlite+aiosqlite:///{self.database_path}"

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug_mode else self.log_level

    def validate_for_forwarding(self) -> None:
        """Ensure everything needed to send to Telegram is configured."""
        if not self.bot_token:
            raise ConfigurationError("BOT_TOKEN is required to forward posts to Telegram")
        if not self.telegram_channels:
            raise ConfigurationError("TELEGRAM_CHANNELS must list at least one channel")


def normalize_channel(channel: str) -> str:
    """Return a chat id usable by the Bot API.

    Numeric ids such as ``-1001234567890`` are kept as they are, usernames get
    a leading ``@``.
    """
    channel = channel.strip()
    if not channel:
        raise ValueError("empty channel")
    if channel.lstrip('-').isdigit() or channel.startswith('@'):
        return channel
    return f"@{channel}"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
