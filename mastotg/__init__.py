"""Forward posts from a Mastodon account's RSS feed to Telegram channels."""
import os

# python-telegram-bot returns time periods such as RetryAfter.retry_after as timedelta
os.environ.setdefault("PTB_TIMEDELTA", "true")

__version__ = "0.3.0"
