# main.py
"""
Commission engine - main entry point.
Wires configuration, database, compensation plan, event handlers and the
reconciliation scheduler, then runs until interrupted.
"""
import asyncio
import logging
import signal
import sys

from config import Config, ConfigurationError
from core.db import setup_database, dispose_engine
from models.listeners import register_all_listeners
from mlm_system.config.rule_set import get_rule_set
from mlm_system.errors import InvalidRuleSet
from mlm_system.events.setup import setup_mlm_event_handlers, teardown_mlm_event_handlers
from background.reconciliation_scheduler import ReconciliationScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('commissions.log')
    ]
)

logger = logging.getLogger(__name__)


async def initialize() -> ReconciliationScheduler:
    """
    Initialize the engine with all services and configurations.

    Returns:
        Started ReconciliationScheduler
    """
    try:
        logger.info("=" * 60)
        logger.info("COMMISSION ENGINE INITIALIZATION")
        logger.info("=" * 60)

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 1: Load configuration from .env
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("📋 Loading configuration from .env...")
        Config.initialize_from_env()
        Config.validate_critical_keys()
        logging.getLogger().setLevel(Config.get(Config.LOG_LEVEL, "INFO"))
        logger.info("✓ Configuration loaded")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 2: Setup database
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("💾 Setting up database...")
        setup_database()
        register_all_listeners()
        logger.info("✓ Database ready")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 3: Load compensation plan (fail fast on invalid plan)
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("📐 Loading compensation plan...")
        rule_set = get_rule_set()
        logger.info(f"✓ Compensation plan {rule_set.version} loaded")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 4: Setup MLM event handlers
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("🔗 Setting up MLM event handlers...")
        setup_mlm_event_handlers()
        logger.info("✓ MLM event handlers ready")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 5: Start background services
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("🚀 Starting background services...")
        scheduler = ReconciliationScheduler()
        await scheduler.start()
        logger.info("✓ Background services started")

        logger.info("=" * 60)
        logger.info("✅ INITIALIZATION COMPLETE")
        logger.info("=" * 60)

        return scheduler

    except (ConfigurationError, InvalidRuleSet) as e:
        logger.critical(f"❌ Initialization failed: {e}")
        raise
    except Exception as e:
        logger.critical(f"❌ Initialization failed: {e}", exc_info=True)
        raise


async def main():
    """Main entry point."""
    scheduler = None
    try:
        scheduler = await initialize()

        # Run until SIGINT/SIGTERM
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows event loops lack signal handlers; KeyboardInterrupt still applies
                pass

        logger.info("🔄 Waiting for events...")
        await stop_event.wait()

    except KeyboardInterrupt:
        logger.info("⚠️ Stopped by user")
    except Exception as e:
        logger.critical(f"❌ Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if scheduler:
            await scheduler.stop()
        teardown_mlm_event_handlers()
        dispose_engine()
        logger.info("👋 Shutdown complete")


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Engine stopped")
