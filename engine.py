# engine.py
"""
Compensation engine - main entry point.
Runs the payout queue worker until SIGINT/SIGTERM.
"""
import argparse
import asyncio
import logging
import signal
import sys

from config import Config, ConfigurationError
from core.db import setup_database
from models.listeners import register_all_listeners
from mlm_engine.events.setup import setup_mlm_event_handlers
from background.payout_scheduler import PayoutScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('mlm_engine.log')
    ]
)

logger = logging.getLogger(__name__)


def initialize_engine():
    """
    Load configuration, prepare the database and wire listeners and handlers.

    Raises:
        ConfigurationError: If configuration is missing or inconsistent
    """
    try:
        logger.info("=" * 60)
        logger.info("MLM ENGINE INITIALIZATION")
        logger.info("=" * 60)

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 1: Load configuration from .env
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("📋 Loading configuration from .env...")
        Config.initialize_from_env()
        Config.validate()
        logger.info("✓ Configuration loaded")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 2: Setup database
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("💾 Setting up database...")
        setup_database()
        register_all_listeners()
        logger.info("✓ Database ready")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 3: Event handlers
        # ═══════════════════════════════════════════════════════════════════════
        setup_mlm_event_handlers()

        Config.set(Config.SYSTEM_READY, True)
        logger.info("✅ Engine initialized")

    except ConfigurationError as e:
        logger.critical(f"❌ Configuration error: {e}")
        raise


def setup_signal_handlers(loop: asyncio.AbstractEventLoop, stopEvent: asyncio.Event) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stopEvent.set)
        except NotImplementedError:
            # Signal handlers not available on Windows
            logger.warning(f"Signal handler for {sig} not available on this platform")


async def main(drainOnce: bool = False):
    """Main entry point."""
    scheduler = None
    try:
        initialize_engine()
        scheduler = PayoutScheduler()

        if drainOnce:
            summary = await scheduler.processPayoutQueue()
            logger.info(f"Single drain finished: {summary}")
            return

        stopEvent = asyncio.Event()
        setup_signal_handlers(asyncio.get_running_loop(), stopEvent)

        await scheduler.start()
        logger.info("🔄 Payout worker running, press Ctrl+C to stop")
        await stopEvent.wait()

    except Exception as e:
        logger.critical(f"❌ Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if scheduler is not None:
            await scheduler.stop()
        logger.info("👋 Engine shutdown complete")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="Run the compensation engine payout worker")
    parser.add_argument("--drain-once", action="store_true", help="process one payout batch and exit")
    args = parser.parse_args()

    try:
        asyncio.run(main(drainOnce=args.drain_once))
    except KeyboardInterrupt:
        logger.info("Engine stopped")
