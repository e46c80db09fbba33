import json
from decimal import Decimal

import pytest

from ingestion.decoder import (
    DecodeError,
    decode_account,
    decode_batch_all,
    decode_extrinsic,
    enrich_operation,
    operations_from_extrinsics,
    parse_amount,
    parse_event,
    parse_events,
)
from ingestion.models import NO_VALIDATOR, Event, EventParam, OperationKind, StakingCall

ZERO_ID = "0x" + "00" * 32
ZERO_ADDR = "5C4hrfjw9DjXZTzV3MwzrrAr9P1MJhSrvWGWqi1eSuyUpnhM"
VALIDATOR_ID = "0x" + "11" * 32


def _extrinsic(**over):
    rec = {
        "success": True,
        "block_timestamp": 1700000000,
        "account_id": "5Nominator",
        "block_num": 42,
        "extrinsic_index": "42-1",
    }
    rec.update(over)
    return rec


def _batch(*calls, encoded=True):
    params = [{"name": "calls", "type": "Vec<Call>", "value": list(calls)}]
    return _extrinsic(params=json.dumps(params) if encoded else params)


def _call(name, **params):
    return {"call_module": "Staking", "call_name": name,
            "params": [{"name": k, "type": "Balance", "value": v} for k, v in params.items()]}


def _nominate(hex_id):
    return {"call_module": "Staking", "call_name": "nominate",
            "params": [{"name": "targets", "type": "Vec<MultiAddress>", "value": [{"Id": hex_id}]}]}


def test_decode_account_zero_bytes():
    assert decode_account(ZERO_ID, 42) == ZERO_ADDR


@pytest.mark.parametrize("bad", ["00" * 32, "0x" + "00" * 31, "0x" + "zz" * 32, None, 7])
def test_decode_account_rejects_malformed(bad):
    with pytest.raises(DecodeError):
        decode_account(bad)


def test_parse_amount_fixed_point():
    assert parse_amount("1000000000000") == Decimal(1)
    assert parse_amount("500000000000") == Decimal("0.5")
    assert parse_amount(0) == 0
    for bad in ("1.5", "-1", "abc", True):
        with pytest.raises(DecodeError):
            parse_amount(bad)


def test_single_call_skeleton():
    res = decode_extrinsic(_extrinsic(), StakingCall.UNBOND)
    assert res.ok
    op = res.value
    assert op.kind is OperationKind.REQUEST_UNSTAKE
    assert op.block_number == 42
    assert op.timestamp_ms == 1700000000 * 1000
    assert op.from_wallet == "5Nominator"
    assert op.quantity == 0 and op.usd_value == 0
    assert op.to_wallet == NO_VALIDATOR
    assert op.hash == ""


def test_single_call_skips_failed_and_incomplete_records():
    assert decode_extrinsic(_extrinsic(success=False), StakingCall.BOND).reason
    assert decode_extrinsic(_extrinsic(block_num="42"), StakingCall.BOND).reason
    rec = _extrinsic()
    del rec["account_id"]
    assert not decode_extrinsic(rec, StakingCall.BOND).ok


def test_single_nominate_reads_target_from_params():
    params = json.dumps([{"name": "targets", "type": "Vec<MultiAddress>", "value": [{"Id": ZERO_ID}]}])
    op = decode_extrinsic(_extrinsic(params=params), StakingCall.NOMINATE).value
    assert op.kind is OperationKind.RE_STAKE
    assert op.to_wallet == ZERO_ADDR


def test_batch_unbond_dominates_nominate():
    rec = _batch(
        _call("bond", controller="0x00", value="1000000000000"),
        _call("unbond", value="500000000000"),
        _nominate(VALIDATOR_ID),
    )
    op = decode_batch_all(rec).value
    assert op.quantity == Decimal("1.5")
    assert op.kind is OperationKind.REQUEST_UNSTAKE


def test_batch_without_nominate_has_no_validator():
    op = decode_batch_all(_batch(_call("bond", value="1000000000000"), _call("unbond", value="500000000000"))).value
    assert op.quantity == Decimal("1.5")
    assert op.kind is OperationKind.REQUEST_UNSTAKE
    assert op.to_wallet == NO_VALIDATOR


def test_batch_bond_extra_and_nominate_is_restake():
    op = decode_batch_all(_batch(_call("bond_extra", max_additional="2000000000000"), _nominate(ZERO_ID),
                                 encoded=False)).value
    assert op.quantity == Decimal(2)
    assert op.kind is OperationKind.RE_STAKE
    assert op.to_wallet == ZERO_ADDR


def test_batch_bond_only_is_stake():
    op = decode_batch_all(_batch(_call("bond", value="3000000000000"))).value
    assert op.kind is OperationKind.STAKE
    assert op.quantity == Decimal(3)


def test_batch_malformed_records_are_skipped():
    assert not decode_batch_all(_batch(_nominate("00" * 32))).ok
    assert not decode_batch_all(_batch(_nominate("0x" + "00" * 20))).ok
    assert not decode_batch_all(_batch(_call("bond", controller="0x00"))).ok
    assert not decode_batch_all(_batch({"params": []})).ok
    assert not decode_batch_all(_extrinsic(params="not json")).ok


def test_operations_from_extrinsics_drops_skipped():
    records = [_extrinsic(), _extrinsic(success=False), "garbage", _extrinsic(extrinsic_index="43-2")]
    ops = operations_from_extrinsics(records, StakingCall.BOND)
    assert [op.extrinsic_index for op in ops] == ["42-1", "43-2"]
    assert operations_from_extrinsics(None, StakingCall.BOND) == []
    assert operations_from_extrinsics([_batch(_call("bond", value="1"))], "batch_all")[0].quantity == Decimal("1e-12")


def test_parse_event_list_and_encoded_params():
    raw = {"event_index": "9-1", "params": [{"name": "stash", "type_name": "AccountId", "value": ZERO_ID},
                                            {"name": "broken"}]}
    ev = parse_event(raw).value
    assert ev == Event(index="9-1", params=[EventParam("stash", "AccountId", ZERO_ID)])

    encoded = {"event_index": "9-2", "params": json.dumps(raw["params"])}
    assert parse_event(encoded, params_encoded=True).value.params == ev.params
    assert not parse_event(raw, params_encoded=True).ok
    assert parse_events([raw, {"params": []}]) == [ev]


def _events(*params):
    return [Event("1-0", []), Event("1-1", [EventParam(n, "T", v) for n, v in params])]


def test_enrichment_sets_wallet_and_quantity():
    op = decode_extrinsic(_extrinsic(), StakingCall.BOND).value
    res = enrich_operation(op, _events(("stash", ZERO_ID), ("amount", "2500000000000")))
    assert res.ok
    assert op.from_wallet == ZERO_ADDR
    assert op.quantity == Decimal("2.5")
    assert op.to_wallet == NO_VALIDATOR


@pytest.mark.parametrize("events", [
    [Event("1-0", [])],
    _events(("stash", ZERO_ID)),
    _events(("controller", ZERO_ID), ("amount", "1")),
    _events(("who", ZERO_ID), ("value", "1")),
    _events(("who", "00" * 32), ("amount", "1")),
    _events(("who", ZERO_ID), ("amount", "lots")),
])
def test_enrichment_rejects_unexpected_shapes(events):
    op = decode_extrinsic(_extrinsic(), StakingCall.WITHDRAW_UNBONDED).value
    assert not enrich_operation(op, events).ok
    assert op.from_wallet == "5Nominator"


@pytest.mark.parametrize("ts", [1700000000000, 10**20, -10**20])
def test_out_of_range_timestamp_is_skipped(ts):
    assert not decode_extrinsic(_extrinsic(block_timestamp=ts), StakingCall.BOND).ok
    rec = _batch(_call("bond", value="1000000000000"))
    rec["block_timestamp"] = ts
    assert not decode_batch_all(rec).ok
    assert operations_from_extrinsics([rec, _batch(_call("bond", value="1"))], "batch_all")[0].quantity == Decimal("1e-12")


@pytest.mark.parametrize("bad", ["0x" + "00 " * 32, "0x " + "00" * 32, "0x" + "00" * 32 + "\n"])
def test_decode_account_rejects_whitespace(bad):
    with pytest.raises(DecodeError):
        decode_account(bad)


@pytest.mark.parametrize("bad", ["1_000", "+5", "0x10", "", " "])
def test_parse_amount_rejects_loose_integer_syntax(bad):
    with pytest.raises(DecodeError):
        parse_amount(bad)
