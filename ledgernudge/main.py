"""Desktop runner for the expense-log reminder engine.

Bootstraps the services, reconciles the pending reminder with current
settings and permission, then polls for due reminders until interrupted.
"""
import asyncio
import logging

from config import LOG_LEVEL
from core import bootstrap, shutdown

logger = logging.getLogger(__name__)


async def run() -> None:
    svc = await bootstrap()
    try:
        await svc.reminders.initialize()
        await svc.reminders.runtime_gate_check("startup")
        svc.platform.start(lambda fn: asyncio.get_running_loop().create_task(fn()))
        logger.info("[REMINDER] Desktop reminder engine running")
        await asyncio.Event().wait()
    finally:
        await shutdown(svc)


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
