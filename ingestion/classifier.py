# ingestion/classifier.py
from decimal import Decimal
from typing import Dict, Optional, Union

from ingestion.models import NO_VALIDATOR, OperationKind, StakingCall

# unbond amounts at or below one planck do not count as an unstake request
UNBOND_EPSILON = Decimal("1e-12")

CALL_KINDS: Dict[StakingCall, OperationKind] = {
    StakingCall.BOND: OperationKind.STAKE,
    StakingCall.BOND_EXTRA: OperationKind.STAKE,
    StakingCall.REBOND: OperationKind.STAKE,
    StakingCall.NOMINATE: OperationKind.RE_STAKE,
    StakingCall.UNBOND: OperationKind.REQUEST_UNSTAKE,
    StakingCall.WITHDRAW_UNBONDED: OperationKind.WITHDRAW_UNSTAKED,
}


def classify_call(call: Union[StakingCall, str]) -> OperationKind:
    """Kind of a single-call staking extrinsic. Raises ValueError for unknown calls."""
    return CALL_KINDS[StakingCall(call)]


def classify_batch(unbond_amount: Decimal, target: Optional[str]) -> OperationKind:
    """
    Kind of a batch_all extrinsic from its decoded sub-calls.

    An unbond dominates everything else in the batch, then a nomination
    target, otherwise the batch only bonded funds.
    """
    if unbond_amount > UNBOND_EPSILON:
        return OperationKind.REQUEST_UNSTAKE
    if target and target != NO_VALIDATOR:
        return OperationKind.RE_STAKE
    return OperationKind.STAKE
