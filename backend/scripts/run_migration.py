#!/usr/bin/env python3
"""Migrate legacy players and matches onto canonical group members.

While a phase runs the migration flag is held in the database, so match
recording and MVP closes in every process answer 409 until it is released.
If a run dies without releasing it, clear it with ``--release-flag``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from matchday import config
from matchday.db import build_engine
from matchday.services.migration import (
    IdentityDeduplicationEngine,
    migration_guard,
    release_migration_flag,
)
from matchday.utils.sentry import init_sentry

PHASES = ("members", "matches", "stats", "all")

logger = logging.getLogger(__name__)


async def run_phase(database_url: str, phase: str, batch_size: int) -> dict:
    engine = build_engine(database_url)
    Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with Session() as session, migration_guard(session):
            migration = IdentityDeduplicationEngine(session, batch_size=batch_size)
            if phase == "members":
                return await migration.migrate_group_members()
            if phase == "matches":
                return await migration.migrate_matches()
            if phase == "stats":
                return await migration.recompute_season_stats()
            return await migration.run_deduplication()
    finally:
        await engine.dispose()


async def release_flag(database_url: str) -> None:
    engine = build_engine(database_url)
    Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with Session() as session:
            await release_migration_flag(session)
    finally:
        await engine.dispose()


async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run one or all phases of the legacy identity migration."
    )
    parser.add_argument("phase", choices=PHASES, nargs="?", default="all")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=config.MIGRATION_BATCH_SIZE,
        help="Rows written per committed chunk.",
    )
    parser.add_argument(
        "--release-flag",
        action="store_true",
        help="Clear a migration flag left by a crashed run, then exit.",
    )
    args = parser.parse_args()
    if args.batch_size <= 0:
        parser.error("--batch-size must be positive")

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL environment variable is required")
    init_sentry()

    if args.release_flag:
        await release_flag(database_url)
        logger.info("Migration flag cleared")
        return

    report = await run_phase(database_url, args.phase, args.batch_size)
    print(json.dumps(report, indent=2, sort_keys=True))


if __name__ == "__main__":
    asyncio.run(main())
