#!/usr/bin/env python3
"""
Sandstorm Tracker - Insurgency: Sandstorm server log tracker
Follows server logs, keeps match and session state, stores stats in MongoDB
and announces events on Discord
"""

import asyncio
import logging
import signal
import sys

import discord
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient

from tracker.commands.chat_commands import ChatCommandHandler
from tracker.config import TrackerConfig, load_server_targets
from tracker.models.database import DatabaseManager
from tracker.parsers.components.match_state import MatchStateMachine, StateRegistry
from tracker.parsers.unified_log_parser import EventNotifier, UnifiedLogParser
from tracker.utils.channel_router import ChannelRouter
from tracker.utils.crash_monitor import CrashMonitor, register_crash_monitor
from tracker.utils.exceptions import ConfigurationException
from tracker.utils.task_pool import TaskPool

# Configure logging first
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('tracker.log', encoding='utf-8')
    ]
)
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()


class TrackerBot(discord.Bot):
    """Main bot class for the Sandstorm tracker"""

    def __init__(self, config: TrackerConfig, targets):
        intents = discord.Intents.default()
        intents.guilds = True

        super().__init__(
            intents=intents,
            status=discord.Status.online,
            activity=discord.Game(name="Insurgency: Sandstorm"),
            auto_sync_commands=False
        )

        self.config = config
        self.targets = targets
        self.headless = not config.discord_token
        self.mongo_client = None
        self.db_manager = None
        self.scheduler = AsyncIOScheduler()
        self.task_pool = TaskPool()
        self.registry = StateRegistry(targets)
        self.state_machine = MatchStateMachine(self.registry)
        self.command_handler = ChatCommandHandler(self.registry)
        self.log_parser = None
        self.crash_monitor = None
        self._setup_complete = False
        self._stopped = False

        logger.info(f"Tracker initialized for {len(targets)} servers"
                    f"{' (headless)' if self.headless else ''}")

    async def setup_database(self) -> bool:
        """Setup MongoDB connection, continuing without persistence if it is unreachable"""
        try:
            logger.info("Testing MongoDB connection...")
            self.mongo_client = AsyncIOMotorClient(
                self.config.mongo_uri,
                serverSelectionTimeoutMS=10000,
                connectTimeoutMS=10000,
                socketTimeoutMS=20000,
                maxPoolSize=50,
                minPoolSize=1
            )

            await asyncio.wait_for(
                self.mongo_client.admin.command('ping'),
                timeout=5.0
            )
            logger.info("✅ Successfully connected to MongoDB")

            self.db_manager = DatabaseManager(self.mongo_client)
            try:
                await asyncio.wait_for(self.db_manager.initialize_database(), timeout=60.0)
                logger.info("✅ Database indexes initialized")
            except asyncio.TimeoutError:
                logger.warning("⚠️ Database initialization timed out - continuing with existing indexes")
            except Exception as db_error:
                logger.error(f"❌ Database initialization error: {db_error} - continuing with existing indexes")
            return True

        except asyncio.TimeoutError:
            logger.error("❌ MongoDB connection timeout - check MONGO_URI")
        except Exception as e:
            logger.error(f"❌ MongoDB init failed: {e} - check MONGO_URI")

        logger.error("❌ Database setup failed - tracking without persistence")
        if self.mongo_client is not None:
            self.mongo_client.close()
        self.mongo_client = None
        self.db_manager = None
        return False

    def setup_scheduler(self) -> bool:
        """Setup background job scheduler"""
        try:
            self.scheduler.start()
            logger.info("Background job scheduler started")
            return True
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            return False

    async def start_tracking(self):
        """Database, parser, watcher and scheduled jobs, in that order"""
        logger.info("🚀 Starting database and tracker setup...")
        await self.setup_database()

        router = None if self.headless else ChannelRouter(self, self.config.notify_channel_id)
        notifier = EventNotifier(router, {t.server_id: t for t in self.targets})

        self.log_parser = UnifiedLogParser(
            self,
            self.targets,
            registry=self.registry,
            state_machine=self.state_machine,
            db_manager=self.db_manager,
            task_pool=self.task_pool,
            command_handler=self.command_handler,
            notifier=notifier,
            debounce_seconds=self.config.debounce_seconds,
        )
        await self.log_parser.load_cursors()

        self.crash_monitor = CrashMonitor(
            self.registry,
            self.state_machine,
            self.db_manager,
            self.task_pool,
            notifier=notifier,
            inactivity_threshold=self.config.inactivity_threshold,
        )

        if not self.setup_scheduler():
            logger.error("❌ Scheduler setup failed")
            return

        register_crash_monitor(self.scheduler, self.crash_monitor, self.config.crash_check_interval)
        self.scheduler.add_job(
            self.log_parser.flush_cursors,
            'interval',
            seconds=self.config.cursor_flush_interval,
            id='cursor_flush',
            max_instances=1,
            coalesce=True
        )
        self.scheduler.add_job(
            self.log_parser.retry_unhealthy,
            'interval',
            seconds=self.config.health_retry_interval,
            id='health_retry',
            max_instances=1,
            coalesce=True
        )
        logger.info("✅ Scheduled jobs: crash_monitor, cursor_flush, health_retry")

        await self.log_parser.start_watching(use_polling=self.config.watch_use_polling)
        logger.info("✅ Tracker running")

    async def on_ready(self):
        """Called when bot is ready and connected to Discord"""
        # Only run setup once
        if self._setup_complete:
            return
        self._setup_complete = True
        logger.info(f"Connected to Discord as {self.user}")
        await self.start_tracking()

    async def shutdown(self):
        """Graceful shutdown bounded by the configured grace period"""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down tracker...")

        grace = self.config.shutdown_grace_seconds
        if self.log_parser is not None:
            try:
                await asyncio.wait_for(self.log_parser.stop(grace), timeout=grace + 5.0)
            except asyncio.TimeoutError:
                logger.warning("⚠️ Tracker did not stop within the grace period")
            except Exception as e:
                logger.error(f"Error during shutdown: {e}")

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

        if self.db_manager is not None:
            self.db_manager.close()
            logger.info("MongoDB connection closed")

        logger.info("Tracker shutdown complete")

    async def close(self):
        """Clean shutdown"""
        await self.shutdown()
        await super().close()


async def run_headless(bot: TrackerBot):
    """Run the pipeline on the asyncio loop without a Discord connection"""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        await bot.start_tracking()
        await stop.wait()
    finally:
        await bot.shutdown()


async def main() -> int:
    """Main entry point"""
    logger.info("🚀 Starting Sandstorm tracker...")

    try:
        config = TrackerConfig.from_env()
        logging.getLogger().setLevel(config.log_level)
        if not config.mongo_uri:
            raise ConfigurationException("MONGO_URI not found in environment variables")
        targets = load_server_targets(config.servers_config)
        if not targets:
            raise ConfigurationException(f"No enabled servers in {config.servers_config}")
    except ConfigurationException as e:
        logger.error(f"❌ Configuration error: {e}")
        return 1

    bot = TrackerBot(config, targets)

    if bot.headless:
        logger.info("No BOT_TOKEN configured, running headless")
        await run_headless(bot)
        return 0

    try:
        await bot.start(config.discord_token)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    except Exception as e:
        logger.error(f"Error in bot execution: {e}")
        raise
    finally:
        if not bot.is_closed():
            await bot.close()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
