from __future__ import annotations

import sqlite3
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from ingestion.models import Operation, OperationKind, ValidatorAssociation
from storage.schema import ALL_DDL

# stays under SQLITE_MAX_VARIABLE_NUMBER on old builds
_IN_CHUNK = 500


def operation_row(op: Operation) -> Tuple:
    """Column tuple for staking_operations. Amounts as base 10 text, time in ms."""
    return (
        op.hash,
        op.extrinsic_index,
        int(op.block_number),
        op.timestamp_ms,
        op.kind.value,
        str(op.quantity),
        str(op.usd_value),
        op.from_wallet,
        op.to_wallet,
    )


def row_to_operation(r: Sequence[Any]) -> Operation:
    hash_, extrinsic_index, block_number, ts_ms, kind, quantity, usd_value, from_wallet, to_wallet = r
    return Operation(
        block_number=int(block_number),
        timestamp=datetime.fromtimestamp(int(ts_ms) / 1000, tz=timezone.utc),
        kind=OperationKind(kind),
        from_wallet=from_wallet,
        extrinsic_index=extrinsic_index,
        quantity=Decimal(quantity),
        usd_value=Decimal(usd_value),
        to_wallet=to_wallet,
        hash=hash_,
    )


def _chunks(values: List[str], size: int = _IN_CHUNK) -> Iterable[List[str]]:
    for i in range(0, len(values), size):
        yield values[i:i + size]


class SQLiteStorage:
    """
    Operations, validator associations and price quotes in one SQLite file.

    The pipeline calls in from worker threads, so the connection is shared
    across threads and every statement runs under one lock. Validator
    upserts for the same nominator are therefore serialised.
    """

    def __init__(self, path: str):
        self.path = path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def _ensure(self) -> None:
        if self.conn is not None:
            return
        self.setup()

    def setup(self) -> None:
        with self._lock:
            if self.conn is not None:
                return
            con = sqlite3.connect(self.path, check_same_thread=False)
            con.row_factory = sqlite3.Row
            for ddl in ALL_DDL:
                con.execute(ddl)
            con.commit()
            self.conn = con

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    # ---- operations ----

    def _existing_extrinsics(self, indexes: List[str]) -> set:
        found = set()
        for chunk in _chunks(indexes):
            marks = ",".join("?" * len(chunk))
            cur = self.conn.execute(
                f"SELECT DISTINCT extrinsic_index FROM staking_operations WHERE extrinsic_index IN ({marks})",
                tuple(chunk),
            )
            found.update(r[0] for r in cur.fetchall())
        return found

    def get_not_existing_operations(self, candidates: List[Operation]) -> List[Operation]:
        """Candidates whose extrinsic is not stored yet, in input order."""
        self._ensure()
        with self._lock:
            existing = self._existing_extrinsics(sorted({op.extrinsic_index for op in candidates}))
        return [op for op in candidates if op.extrinsic_index not in existing]

    def write_operations(self, ops: Iterable[Operation]) -> int:
        self._ensure()
        rows = [operation_row(op) for op in ops]
        with self._lock:
            self.conn.executemany(
                """
                INSERT INTO staking_operations
                  (hash, extrinsic_index, block_number, timestamp_ms, kind, quantity, usd_value, from_wallet, to_wallet)
                VALUES (?,?,?,?,?,?,?,?,?)
                ON CONFLICT(hash) DO UPDATE SET
                  quantity = excluded.quantity,
                  usd_value = excluded.usd_value
                """,
                rows,
            )
            self.conn.commit()
        return len(rows)

    def read_operations(self) -> List[Operation]:
        self._ensure()
        with self._lock:
            cur = self.conn.execute(
                """
                SELECT hash, extrinsic_index, block_number, timestamp_ms, kind, quantity, usd_value, from_wallet, to_wallet
                FROM staking_operations ORDER BY block_number, extrinsic_index
                """
            )
            return [row_to_operation(tuple(r)) for r in cur.fetchall()]

    # ---- validators ----

    def import_or_update_validators(self, associations: Iterable[ValidatorAssociation]) -> int:
        """Upsert by nominator; the last association for a nominator wins."""
        self._ensure()
        rows = [(a.nominator, a.validator) for a in associations]
        if not rows:
            return 0
        with self._lock:
            self.conn.executemany(
                """
                INSERT INTO validators(nominator, validator) VALUES(?, ?)
                ON CONFLICT(nominator) DO UPDATE SET validator = excluded.validator
                """,
                rows,
            )
            self.conn.commit()
        return len(rows)

    def get_not_existing_nominators(self, addresses: List[str]) -> List[str]:
        self._ensure()
        wanted = list(dict.fromkeys(addresses))
        found = set()
        with self._lock:
            for chunk in _chunks(wanted):
                marks = ",".join("?" * len(chunk))
                cur = self.conn.execute(f"SELECT nominator FROM validators WHERE nominator IN ({marks})", tuple(chunk))
                found.update(r[0] for r in cur.fetchall())
        return [a for a in wanted if a not in found]

    def get_validator_by_nominator(self, nominator: str) -> Optional[ValidatorAssociation]:
        self._ensure()
        with self._lock:
            row = self.conn.execute(
                "SELECT nominator, validator FROM validators WHERE nominator = ?", (nominator,)
            ).fetchone()
        return ValidatorAssociation(nominator=row[0], validator=row[1]) if row else None

    # ---- prices ----

    def record_price(self, primary_token: str, secondary_token: str, price: Decimal | float | str,
                     quoted_at_ms: Optional[int] = None) -> None:
        self._ensure()
        ts = int(quoted_at_ms if quoted_at_ms is not None else time.time() * 1000)
        with self._lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO price_quotes(primary_token, secondary_token, price, quoted_at_ms) VALUES(?,?,?,?)",
                (primary_token.lower(), secondary_token.lower(), str(Decimal(str(price))), ts),
            )
            self.conn.commit()

    def get_usd_price(self, primary_token: str, secondary_token: str) -> Optional[Decimal]:
        """Latest recorded quote for the pair, or None when there is none."""
        self._ensure()
        with self._lock:
            row = self.conn.execute(
                """
                SELECT price FROM price_quotes
                WHERE primary_token = ? AND secondary_token = ?
                ORDER BY quoted_at_ms DESC LIMIT 1
                """,
                (primary_token.lower(), secondary_token.lower()),
            ).fetchone()
        return Decimal(row[0]) if row else None
