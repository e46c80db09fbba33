from contextlib import closing
from typing import Optional
import sqlite3

import pandas as pd

DBPath = str

# sign of each kind in a validator's net stake; withdrawals were already
# counted when the unbond was requested
KIND_SIGN = {
    "Stake": 1.0,
    "ReStake": 1.0,
    "RequestUnstake": -1.0,
    "WithdrawUnstaked": 0.0,
}

OPERATION_COLUMNS = [
    "hash", "extrinsic_index", "block_number", "timestamp_ms", "kind",
    "quantity", "usd_value", "from_wallet", "to_wallet",
]


def _connect(db_path: DBPath) -> sqlite3.Connection:
    con = sqlite3.connect(db_path)
    con.row_factory = sqlite3.Row
    return con


def operations_frame(db_path: DBPath, as_of_block: Optional[int] = None) -> pd.DataFrame:
    """
    All stored staking operations with numeric quantity and usd_value columns
    and a UTC timestamp column.
    """
    sql = f"SELECT {', '.join(OPERATION_COLUMNS)} FROM staking_operations"
    params: tuple = ()
    if as_of_block is not None:
        sql += " WHERE block_number <= ?"
        params = (int(as_of_block),)
    with closing(_connect(db_path)) as con:
        df = pd.read_sql_query(sql, con, params=params)
    if df.empty:
        return pd.DataFrame(columns=OPERATION_COLUMNS + ["timestamp"])
    df["quantity"] = df["quantity"].astype(float)
    df["usd_value"] = df["usd_value"].astype(float)
    df["timestamp"] = pd.to_datetime(df["timestamp_ms"], unit="ms", utc=True)
    return df


def totals_by_kind(db_path: DBPath, as_of_block: Optional[int] = None) -> pd.DataFrame:
    df = operations_frame(db_path, as_of_block)
    if df.empty:
        return pd.DataFrame(columns=["kind", "operations", "quantity", "usd_value"])
    out = (
        df.groupby("kind")
        .agg(operations=("hash", "count"), quantity=("quantity", "sum"), usd_value=("usd_value", "sum"))
        .reset_index()
        .sort_values("kind")
    )
    return out.reset_index(drop=True)


def stake_by_validator(db_path: DBPath, as_of_block: Optional[int] = None) -> pd.DataFrame:
    """
    Net stake and distinct nominators per validator, largest first.
    Operations without a resolved validator are left out.
    """
    df = operations_frame(db_path, as_of_block)
    df = df[df["to_wallet"] != "none"] if not df.empty else df
    if df.empty:
        return pd.DataFrame(columns=["validator", "net_stake", "nominators"])
    df = df.assign(signed=df["quantity"] * df["kind"].map(KIND_SIGN).fillna(0.0))
    out = (
        df.groupby("to_wallet")
        .agg(net_stake=("signed", "sum"), nominators=("from_wallet", "nunique"))
        .reset_index()
        .rename(columns={"to_wallet": "validator"})
        .sort_values(["net_stake", "validator"], ascending=[False, True])
    )
    return out.reset_index(drop=True)
