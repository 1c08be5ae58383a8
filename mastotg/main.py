"""
Application entry point for the Mastodon to Telegram forwarder.
Wires the ledger database, feed client, Telegram sender and poll loop together.
"""
import asyncio
import logging
import signal
import sys
from typing import Optional

import structlog

from mastotg.clients import BotClientManager, ConsoleSender, FeedClient
from mastotg.config import Settings, settings as default_settings
from mastotg.core import DeduplicationService, ForwardingEngine, PollLoop, RoundResult
from mastotg.database import DatabaseManager, close_database, init_database

logger = structlog.get_logger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure structlog on top of the standard logging module."""
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers = [logging.StreamHandler(sys.stderr)]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, settings.effective_log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


class MastotgApplication:
    """Main application class for the forwarder."""

    def __init__(self, settings: Optional[Settings] = None, dry_run: bool = False):
        self.settings = settings or default_settings
        self.dry_run = dry_run
        self.db = DatabaseManager(self.settings.database_url)
        self.sender = None
        self.feed_client: Optional[FeedClient] = None
        self.poll_loop: Optional[PollLoop] = None
        self._running = False

    async def initialize(self) -> None:
        """Initialize all application components."""
        logger.info("Initializing mastotg...")

        if not self.dry_run:
            self.settings.validate_for_forwarding()

        version = await init_database(self.db)
        logger.info("Database initialized", schema_version=version)

        self.feed_client = FeedClient.from_settings(self.settings)
        self.sender = ConsoleSender() if self.dry_run else BotClientManager(self.settings.bot_token)

        deduplication_service = DeduplicationService(self.db)
        channels = self.settings.telegram_channels or (["stdout"] if self.dry_run else [])
        forwarding_engine = ForwardingEngine(
            self.sender,
            deduplication_service,
            channels,
            settings=self.settings,
            record_deliveries=not self.dry_run,
        )
        self.poll_loop = PollLoop(
            self.feed_client,
            deduplication_service,
            forwarding_engine,
            settings=self.settings,
            dry_run=self.dry_run,
        )
        logger.info("Initialization completed", feed_url=self.feed_client.feed_url,
                    channels=channels, dry_run=self.dry_run)

    async def start(self) -> None:
        if self._running:
            return
        await self.sender.start()
        self._running = True

    async def stop(self) -> None:
        """Stop all components gracefully."""
        if self.poll_loop:
            self.poll_loop.stop()
        try:
            if self.sender and self._running:
                await self.sender.stop()
            if self.feed_client:
                await self.feed_client.close()
        finally:
            self._running = False
            await close_database(self.db)
            logger.info("mastotg stopped")

    async def run_once(self) -> RoundResult:
        """Run a single poll round."""
        try:
            await self.initialize()
            await self.start()
            result = await self.poll_loop.poll_once()
            logger.info("Poll round finished", **result.as_dict())
            return result
        finally:
            await self.stop()

    async def run(self) -> None:
        """Run the poll loop until a shutdown signal."""
        try:
            await self.initialize()
            await self.start()
            self._setup_signal_handlers()
            await self.poll_loop.run_forever()
        finally:
            await self.stop()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Received signal {signum}, initiating shutdown...")
            self.poll_loop.stop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, signal_handler, sig)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                signal.signal(sig, lambda signum, frame: signal_handler(signum))

    @property
    def is_running(self) -> bool:
        return self._running


def run_async(coro):
    """Run a coroutine, on uvloop for better performance on Unix systems."""
    if sys.platform != 'win32':
        import uvloop
        return uvloop.run(coro)
    return asyncio.run(coro)
