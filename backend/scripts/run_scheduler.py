#!/usr/bin/env python3
"""
Poll the scheduled_mutations table and run every pause/revert that is due.
Alternative to calling POST /api/cron/mutations from an external scheduler.

Run from backend directory:
  python scripts/run_scheduler.py

Options:
  --interval SECONDS   Seconds between polls (default: 60)
  --once               Run a single pass and exit (non-zero if any row went dead)
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from budgetbot.config import get_settings
from budgetbot.database import async_session, init_db
from budgetbot.errors import MutationRevertFailure
from budgetbot.services.gateway import create_gateway
from budgetbot.services.mutation_service import MutationScheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("run_scheduler")


async def run_pass() -> int:
    """One sweep. Returns the number of rows that exhausted their retries."""
    settings = get_settings()
    async with create_gateway(settings) as gateway:
        async with async_session() as db:
            scheduler = MutationScheduler.from_settings(db, gateway, settings)
            report = await scheduler.run_due_mutations()
    try:
        report.raise_for_dead()
    except MutationRevertFailure as e:
        logger.critical(str(e))
    return len(report.dead)


async def main(interval: int, once: bool) -> int:
    await init_db()
    if once:
        return 1 if await run_pass() else 0

    logger.info(f"Scheduler polling every {interval}s")
    while True:
        try:
            await run_pass()
        except Exception:
            # Next pass retries; rows stay pending in the database
            logger.exception("Scheduler pass failed")
        await asyncio.sleep(interval)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run due scheduled mutations")
    parser.add_argument("--interval", type=int, default=60, help="Seconds between polls")
    parser.add_argument("--once", action="store_true", help="Run one pass and exit")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.interval, args.once)))
