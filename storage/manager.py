# storage/manager.py
from __future__ import annotations
from typing import Any

from common.settings import DB
from storage.sqlite_backend import SQLiteStorage

try:
    # optional; may not be present in CI
    from storage.postgres_backend import PostgresStorage  # type: ignore
except ImportError:  # pragma: no cover
    PostgresStorage = None  # type: ignore


def get_storage(backend: str, **opts: Any):
    """
    Factory for storage backends. Accepts flexible option names.
      - sqlite: db_path | sqlite_path | path
      - postgres: dsn | pg_dsn
    """
    b = (backend or "").lower()
    if b == "sqlite":
        db_path = opts.get("db_path") or opts.get("sqlite_path") or opts.get("path") or "data/staking.db"
        return SQLiteStorage(db_path)
    elif b in ("postgres", "postgresql", "pg"):
        if PostgresStorage is None:
            raise RuntimeError("Postgres backend requested but psycopg2 not available")
        dsn = opts.get("dsn") or opts.get("pg_dsn")
        if not dsn:
            raise ValueError("postgres backend requires a dsn")
        return PostgresStorage(dsn=dsn)
    else:
        raise ValueError(f"Unknown storage backend: {backend!r}")


def storage_from_settings(db: DB):
    return get_storage(db.driver, sqlite_path=db.sqlite_path, pg_dsn=db.pg_dsn)
