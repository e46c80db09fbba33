from decimal import Decimal

import pytest

from ingestion.classifier import CALL_KINDS, classify_batch, classify_call
from ingestion.models import NO_VALIDATOR, OperationKind, StakingCall


@pytest.mark.parametrize("call,kind", [
    ("bond", OperationKind.STAKE),
    ("bond_extra", OperationKind.STAKE),
    ("rebond", OperationKind.STAKE),
    ("nominate", OperationKind.RE_STAKE),
    ("unbond", OperationKind.REQUEST_UNSTAKE),
    ("withdraw_unbonded", OperationKind.WITHDRAW_UNSTAKED),
])
def test_single_call_table(call, kind):
    assert classify_call(call) is kind
    assert classify_call(StakingCall(call)) is kind


def test_table_is_total():
    assert set(CALL_KINDS) == set(StakingCall)


def test_unknown_call_is_rejected():
    with pytest.raises(ValueError):
        classify_call("chill")


def test_batch_tie_break():
    assert classify_batch(Decimal("0.5"), "5Validator") is OperationKind.REQUEST_UNSTAKE
    assert classify_batch(Decimal("1e-12"), "5Validator") is OperationKind.RE_STAKE
    assert classify_batch(Decimal(0), NO_VALIDATOR) is OperationKind.STAKE
    assert classify_batch(Decimal(0), None) is OperationKind.STAKE
