# ingestion/models.py
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List

# to_wallet of an operation whose validator is not known yet
NO_VALIDATOR = "none"

BATCH_ALL_CALL = "batch_all"


class OperationKind(str, Enum):
    STAKE = "Stake"
    RE_STAKE = "ReStake"
    REQUEST_UNSTAKE = "RequestUnstake"
    WITHDRAW_UNSTAKED = "WithdrawUnstaked"


class StakingCall(str, Enum):
    BOND = "bond"
    BOND_EXTRA = "bond_extra"
    REBOND = "rebond"
    NOMINATE = "nominate"
    UNBOND = "unbond"
    WITHDRAW_UNBONDED = "withdraw_unbonded"


class Module(str, Enum):
    STAKING = "staking"
    UTILITY = "utility"


@dataclass(frozen=True)
class EventParam:
    name: str
    type_name: str
    value: str


@dataclass(frozen=True)
class Event:
    index: str
    params: List[EventParam] = field(default_factory=list)


@dataclass(frozen=True)
class ValidatorAssociation:
    nominator: str
    validator: str


def operation_hash(extrinsic_index: str, kind: OperationKind, from_wallet: str, to_wallet: str) -> str:
    raw = "|".join((extrinsic_index, kind.value, from_wallet, to_wallet))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class Operation:
    """
    A staking operation as it moves through the reconciliation stages.

    Created as a skeleton (zero quantity and value, no validator, empty hash)
    and filled in place. The hash is written last, once to_wallet is final.
    """
    block_number: int
    timestamp: datetime
    kind: OperationKind
    from_wallet: str
    extrinsic_index: str
    quantity: Decimal = Decimal(0)
    usd_value: Decimal = Decimal(0)
    to_wallet: str = NO_VALIDATOR
    hash: str = ""

    @property
    def has_validator(self) -> bool:
        return bool(self.to_wallet) and self.to_wallet != NO_VALIDATOR

    @property
    def timestamp_ms(self) -> int:
        return int(self.timestamp.timestamp() * 1000)

    def set_hash(self) -> str:
        if self.hash:
            raise RuntimeError(f"operation {self.extrinsic_index} already has a hash")
        self.hash = operation_hash(self.extrinsic_index, self.kind, self.from_wallet, self.to_wallet)
        return self.hash

    def to_association(self) -> ValidatorAssociation | None:
        if not self.has_validator:
            return None
        return ValidatorAssociation(nominator=self.from_wallet, validator=self.to_wallet)
