#!/usr/bin/env python3
"""Close expired MVP voting windows.

Meant to be run by cron at ``MVP_SWEEP_INTERVAL_HOURS`` cadence, e.g.::

    0 */3 * * *  cd /srv/matchday/backend && python scripts/run_mvp_sweep.py
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from matchday.db import build_engine
from matchday.exceptions import MigrationInProgress
from matchday.services.mvp_voting import MvpVotingStateMachine
from matchday.utils.sentry import init_sentry


async def run_sweep(database_url: str) -> dict:
    engine = build_engine(database_url)
    Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with Session() as session:
            return await MvpVotingStateMachine(session).scheduled_sweep()
    finally:
        await engine.dispose()


async def main() -> int:
    parser = argparse.ArgumentParser(description="Close expired MVP voting windows.")
    parser.add_argument(
        "--verbose", action="store_true", help="Log at DEBUG level instead of INFO."
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL environment variable is required")
    init_sentry()

    try:
        report = await run_sweep(database_url)
    except MigrationInProgress:
        logging.getLogger(__name__).warning("Legacy migration running; sweep skipped")
        return 0
    print(json.dumps(report, indent=2, sort_keys=True))
    return 1 if report["failures"] else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
