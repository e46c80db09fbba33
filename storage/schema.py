# storage/schema.py
CREATE_TABLE_OPERATIONS = """
CREATE TABLE IF NOT EXISTS staking_operations (
    hash            TEXT PRIMARY KEY,
    extrinsic_index TEXT NOT NULL,
    block_number    BIGINT NOT NULL,
    timestamp_ms    BIGINT NOT NULL,
    kind            TEXT NOT NULL,
    quantity        TEXT NOT NULL,
    usd_value       TEXT NOT NULL,
    from_wallet     TEXT NOT NULL,
    to_wallet       TEXT NOT NULL
);
"""

CREATE_INDEX_OPERATIONS_EXTRINSIC = """
CREATE INDEX IF NOT EXISTS idx_staking_operations_extrinsic
    ON staking_operations (extrinsic_index);
"""

CREATE_TABLE_VALIDATORS = """
CREATE TABLE IF NOT EXISTS validators (
    nominator TEXT PRIMARY KEY,
    validator TEXT NOT NULL
);
"""

CREATE_TABLE_PRICES = """
CREATE TABLE IF NOT EXISTS price_quotes (
    primary_token   TEXT NOT NULL,
    secondary_token TEXT NOT NULL,
    price           TEXT NOT NULL,
    quoted_at_ms    BIGINT NOT NULL,
    PRIMARY KEY (primary_token, secondary_token, quoted_at_ms)
);
"""

ALL_DDL = (
    CREATE_TABLE_OPERATIONS,
    CREATE_INDEX_OPERATIONS_EXTRINSIC,
    CREATE_TABLE_VALIDATORS,
    CREATE_TABLE_PRICES,
)
