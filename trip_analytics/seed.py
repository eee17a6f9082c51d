"""Seed the analytics database.

Usage:
    python -m trip_analytics.seed --sample
    python -m trip_analytics.seed --demo --drivers 20 --trips 100 --seed 42
    python -m trip_analytics.seed --csv data/
"""

import argparse
import asyncio
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from .config import config
from .db import create_engine, create_session_factory, init_db
from .persistence import create_sample_data, generate_demo_data, load_csv_data

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed drivers, trips, payments and ratings.")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--sample", action="store_true", help="insert the fixed two-driver sample set")
    mode.add_argument("--demo", action="store_true", help="append random demo data")
    mode.add_argument("--csv", metavar="DIR", nargs="?", const=config.data_dir,
                      help="load drivers/trips/payments/ratings CSV files (default: DATA_DIR)")
    parser.add_argument("--drivers", type=int, default=20)
    parser.add_argument("--trips", type=int, default=100)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--database-url", default=None)
    return parser


async def run(args: argparse.Namespace) -> dict:
    engine = create_engine(args.database_url)
    try:
        await init_db(engine)
        session_factory = create_session_factory(engine)
        async with session_factory() as db:
            if args.sample:
                return await create_sample_data(db)
            if args.demo:
                return await generate_demo_data(db, drivers=args.drivers, trips=args.trips, seed=args.seed)
            return await load_csv_data(db, args.csv)
    finally:
        await engine.dispose()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        created = asyncio.run(run(args))
    except FileNotFoundError as e:
        logger.error("Missing seed file: %s", e)
        return 1
    except ValueError as e:
        logger.error("Invalid seed data: %s", e)
        return 1
    except SQLAlchemyError as e:
        logger.error("Seeding failed: %s", e)
        return 2

    for table, count in created.items():
        logger.info("%s: %d rows", table, count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
