"""Periodic cleanup of expired sessions, CSRF tokens and rate-limit buckets."""

import asyncio
import logging

from .container import SecurityCore
from .exceptions import SessionStoreError

logger = logging.getLogger(__name__)


async def run_maintenance_once(core: SecurityCore) -> dict[str, int] | None:
    """Run one cleanup pass; store failures are logged and retried next pass."""
    try:
        removed = await core.run_maintenance()
    except SessionStoreError as exc:
        logger.error(f"Maintenance pass failed: {exc}")
        return None

    logger.debug(f"Maintenance pass complete: {removed}")
    return removed


async def maintenance_loop(core: SecurityCore, interval_seconds: float) -> None:
    """Run cleanup passes forever, every interval_seconds, until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        await run_maintenance_once(core)
