import argparse
import asyncio
import logging
import sys
from decimal import Decimal
from pathlib import Path

from common.logging_setup import setup_logging
from common.settings import load_settings
from etl.pipeline import run_staking_pipeline
from storage.manager import storage_from_settings


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Reconcile staking operations from the Subscan explorer")
    p.add_argument("--config", default="config.yaml", help="Path to the YAML settings file")
    p.add_argument("--sqlite-path", dest="sqlite_path", default=None,
                   help="Override the SQLite DB file (e.g., data/staking.db)")
    p.add_argument("--rows", type=int, default=None, help="Extrinsics requested per query")
    p.add_argument("--concurrency", type=int, default=None,
                   help="Max explorer requests in flight (default unbounded)")
    p.add_argument("--usd-price", dest="usd_price", type=Decimal, default=None,
                   help="Use this USD quote instead of the stored one")
    p.add_argument("--dry-run", action="store_true", help="Do not persist the reconciled operations")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    st = load_settings(args.config)
    if args.sqlite_path:
        st.db.driver = "sqlite"
        st.db.sqlite_path = args.sqlite_path
    if args.rows is not None:
        st.pipeline.rows = args.rows
    if args.concurrency is not None:
        st.pipeline.concurrency = args.concurrency
    if args.usd_price is not None:
        st.price.usd = args.usd_price

    if st.db.driver == "sqlite":
        Path(st.db.sqlite_path).parent.mkdir(parents=True, exist_ok=True)
    storage = storage_from_settings(st.db)
    storage.setup()

    ops = asyncio.run(run_staking_pipeline(st, storage=storage))
    if ops is None:
        print("Staking run produced no result", file=sys.stderr)
        return 1

    if not args.dry_run:
        storage.write_operations(ops)
    written = "found" if args.dry_run else "stored"
    print(f"Staking run done. operations {written} {len(ops)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
