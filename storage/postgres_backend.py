import threading
import time
from decimal import Decimal
from typing import Iterable, List, Optional

import psycopg2

from ingestion.models import Operation, ValidatorAssociation
from .schema import ALL_DDL
from .sqlite_backend import operation_row, row_to_operation


class PostgresStorage:
    def __init__(self, dsn: str):
        self.dsn = dsn
        self.conn = None
        self._lock = threading.RLock()

    def _ensure(self) -> None:
        if self.conn is None:
            self.setup()

    def setup(self) -> None:
        with self._lock:
            if self.conn is not None:
                return
            self.conn = psycopg2.connect(self.dsn)
            cur = self.conn.cursor()
            for ddl in ALL_DDL:
                cur.execute(ddl)
            self.conn.commit()

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def get_not_existing_operations(self, candidates: List[Operation]) -> List[Operation]:
        self._ensure()
        indexes = list({op.extrinsic_index for op in candidates})
        if not indexes:
            return []
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                "SELECT DISTINCT extrinsic_index FROM staking_operations WHERE extrinsic_index = ANY(%s)",
                (indexes,),
            )
            existing = {r[0] for r in cur.fetchall()}
        return [op for op in candidates if op.extrinsic_index not in existing]

    def write_operations(self, ops: Iterable[Operation]) -> int:
        self._ensure()
        sql = """
        INSERT INTO staking_operations
          (hash, extrinsic_index, block_number, timestamp_ms, kind, quantity, usd_value, from_wallet, to_wallet)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (hash) DO UPDATE SET
          quantity = EXCLUDED.quantity,
          usd_value = EXCLUDED.usd_value
        """
        rows = [operation_row(op) for op in ops]
        with self._lock:
            cur = self.conn.cursor()
            cur.executemany(sql, rows)
            self.conn.commit()
        return len(rows)

    def read_operations(self) -> List[Operation]:
        self._ensure()
        sql = """
        SELECT hash, extrinsic_index, block_number, timestamp_ms, kind, quantity, usd_value, from_wallet, to_wallet
        FROM staking_operations ORDER BY block_number, extrinsic_index
        """
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(sql)
            return [row_to_operation(r) for r in cur.fetchall()]

    def import_or_update_validators(self, associations: Iterable[ValidatorAssociation]) -> int:
        self._ensure()
        sql = """
        INSERT INTO validators (nominator, validator) VALUES (%s, %s)
        ON CONFLICT (nominator) DO UPDATE SET validator = EXCLUDED.validator
        """
        rows = [(a.nominator, a.validator) for a in associations]
        if not rows:
            return 0
        with self._lock:
            cur = self.conn.cursor()
            cur.executemany(sql, rows)
            self.conn.commit()
        return len(rows)

    def get_not_existing_nominators(self, addresses: List[str]) -> List[str]:
        self._ensure()
        wanted = list(dict.fromkeys(addresses))
        if not wanted:
            return []
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("SELECT nominator FROM validators WHERE nominator = ANY(%s)", (wanted,))
            found = {r[0] for r in cur.fetchall()}
        return [a for a in wanted if a not in found]

    def get_validator_by_nominator(self, nominator: str) -> Optional[ValidatorAssociation]:
        self._ensure()
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("SELECT nominator, validator FROM validators WHERE nominator = %s", (nominator,))
            r = cur.fetchone()
        return ValidatorAssociation(nominator=r[0], validator=r[1]) if r else None

    def record_price(self, primary_token: str, secondary_token: str, price, quoted_at_ms: Optional[int] = None) -> None:
        self._ensure()
        ts = int(quoted_at_ms if quoted_at_ms is not None else time.time() * 1000)
        sql = """
        INSERT INTO price_quotes (primary_token, secondary_token, price, quoted_at_ms)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (primary_token, secondary_token, quoted_at_ms) DO UPDATE SET price = EXCLUDED.price
        """
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(sql, (primary_token.lower(), secondary_token.lower(), str(Decimal(str(price))), ts))
            self.conn.commit()

    def get_usd_price(self, primary_token: str, secondary_token: str) -> Optional[Decimal]:
        self._ensure()
        sql = """
        SELECT price FROM price_quotes
        WHERE primary_token = %s AND secondary_token = %s
        ORDER BY quoted_at_ms DESC LIMIT 1
        """
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(sql, (primary_token.lower(), secondary_token.lower()))
            r = cur.fetchone()
        return Decimal(r[0]) if r else None
