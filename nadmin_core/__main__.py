"""
nadmin core entry point

Allows running the core directly via `python -m nadmin_core`.
Configures logging to stderr, opens the store and keeps the session
maintenance loop running until interrupted.
"""

import asyncio
import logging
import sys

from .core.admin_core import AdminCore
from .core.config import CoreConfig
from .core.constants import LOG_FORMAT, get_default_config
from .persistence import StoreError


def setup_logging():
    """Configure logging to stderr"""
    logging.basicConfig(
        level=get_default_config()["logging"]["level"],
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


async def main():
    """Main entry point"""
    setup_logging()
    logger = logging.getLogger("main")

    core = AdminCore(CoreConfig.from_env())
    try:
        await core.start()
        status = await core.get_status()
        logger.info(
            f"Store ready at {status.store_path}: {status.session_count} sessions, "
            f"password {'configured' if status.password_configured else 'not configured'}"
        )
        await asyncio.Event().wait()
    except StoreError as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await core.stop()


def run():
    """Console script entry"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    run()
