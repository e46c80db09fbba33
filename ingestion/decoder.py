"""
ingestion.decoder

Turn raw explorer records into typed Event and Operation records.

Record level decoders never raise on bad input. They return a DecodeResult
that is either decoded (value set) or skipped (reason set), so callers can
drop the record and still see why it was dropped.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Generic, Iterable, List, Optional, TypeVar, Union

from substrateinterface.utils.ss58 import ss58_encode

from ingestion.classifier import classify_batch, classify_call
from ingestion.models import (
    BATCH_ALL_CALL,
    NO_VALIDATOR,
    Event,
    EventParam,
    Operation,
    StakingCall,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

PLANCK_PER_UNIT = Decimal(10) ** 12
ACCOUNT_ID_BYTES = 32
DEFAULT_SS58_FORMAT = 42

STASH_PARAM_NAMES = ("stash", "who")
AMOUNT_PARAM_NAME = "amount"

HEX_ACCOUNT_RE = re.compile(r"0x[0-9a-fA-F]{64}")
PLANCK_RE = re.compile(r"[0-9]+")


class DecodeError(ValueError):
    pass


@dataclass(frozen=True)
class DecodeResult(Generic[T]):
    value: Optional[T] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    @classmethod
    def decoded(cls, value: T) -> "DecodeResult[T]":
        return cls(value=value)

    @classmethod
    def skipped(cls, reason: str) -> "DecodeResult[T]":
        return cls(reason=reason)


def collect(results: Iterable[DecodeResult[T]], what: str = "record") -> List[T]:
    """Keep decoded values, log skip reasons."""
    out: List[T] = []
    for res in results:
        if res.ok:
            out.append(res.value)
        else:
            log.debug("skipping %s: %s", what, res.reason)
    return out


# ---------------- scalar decoding ----------------

def decode_account(value: Any, ss58_format: int = DEFAULT_SS58_FORMAT) -> str:
    """
    Decode a 0x prefixed hex account id into its SS58 address.
    Raises DecodeError on a missing prefix, bad hex or a length other than 32 bytes.
    """
    if not isinstance(value, str) or not value.startswith("0x"):
        raise DecodeError(f"account id must be a 0x prefixed hex string, got {value!r}")
    if not HEX_ACCOUNT_RE.fullmatch(value):
        raise DecodeError(f"account id must be {ACCOUNT_ID_BYTES} bytes of hex, got {value!r}")
    return ss58_encode(bytes.fromhex(value[2:]), ss58_format=ss58_format)


def parse_amount(value: Any) -> Decimal:
    """Fixed point planck integer (string or int) to a unit Decimal."""
    if isinstance(value, bool):
        raise DecodeError(f"amount must be an integer, got {value!r}")
    if isinstance(value, int):
        planck = value
    elif isinstance(value, str) and PLANCK_RE.fullmatch(value.strip()):
        planck = int(value.strip())
    else:
        raise DecodeError(f"amount is not an integer: {value!r}")
    if planck < 0:
        raise DecodeError(f"amount must not be negative: {value!r}")
    return Decimal(planck) / PLANCK_PER_UNIT


def _json_list(value: Any) -> list:
    """Explorer params come either as a JSON encoded string or already parsed."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise DecodeError(f"params are not valid JSON: {e}") from e
    if not isinstance(value, list):
        raise DecodeError(f"params must be a list, got {type(value).__name__}")
    return value


def _str_field(d: Any, name: str) -> str:
    v = d.get(name) if isinstance(d, dict) else None
    if not isinstance(v, str):
        raise DecodeError(f"missing string field {name!r}")
    return v


def _int_field(d: Any, name: str) -> int:
    v = d.get(name) if isinstance(d, dict) else None
    if not isinstance(v, int) or isinstance(v, bool):
        raise DecodeError(f"missing integer field {name!r}")
    return v


def _utc_from_seconds(ts: int) -> datetime:
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as e:
        raise DecodeError(f"block_timestamp out of range: {ts}") from e


# ---------------- events ----------------

def parse_event(raw: Any, *, params_encoded: bool = False) -> DecodeResult[Event]:
    """
    Event from an event/params record (params is a list) or an extrinsic
    detail record (params is a JSON string, params_encoded=True).
    Params missing one of name, type_name or value are left out.
    """
    try:
        index = _str_field(raw, "event_index")
        params_raw = raw.get("params")
        if params_encoded and not isinstance(params_raw, str):
            raise DecodeError("detail event params must be a JSON string")
        params = []
        for p in _json_list(params_raw):
            try:
                params.append(EventParam(
                    name=_str_field(p, "name"),
                    type_name=_str_field(p, "type_name"),
                    value=_str_field(p, "value"),
                ))
            except DecodeError:
                continue
    except DecodeError as e:
        return DecodeResult.skipped(str(e))
    return DecodeResult.decoded(Event(index=index, params=params))


def parse_events(records: Optional[list], *, params_encoded: bool = False) -> List[Event]:
    return collect((parse_event(r, params_encoded=params_encoded) for r in records or []), "event")


# ---------------- operations ----------------

def _skeleton(raw: Any, call: StakingCall | None = None) -> Operation:
    if not isinstance(raw, dict):
        raise DecodeError("extrinsic record must be an object")
    if raw.get("success") is not True:
        raise DecodeError("extrinsic did not succeed")
    ts = _int_field(raw, "block_timestamp")
    block_number = _int_field(raw, "block_num")
    if block_number < 0:
        raise DecodeError("block_num must not be negative")
    kind = classify_call(call) if call is not None else classify_batch(Decimal(0), None)
    return Operation(
        block_number=block_number,
        timestamp=_utc_from_seconds(ts),
        kind=kind,
        from_wallet=_str_field(raw, "account_id"),
        extrinsic_index=_str_field(raw, "extrinsic_index"),
    )


def _nomination_target(call_params: Any, ss58_format: int) -> str:
    """First target of a nominate call, as an SS58 address."""
    params = _json_list(call_params)
    if not params or not isinstance(params[0], dict):
        raise DecodeError("nominate call has no targets param")
    targets = params[0].get("value")
    if not isinstance(targets, list) or not targets:
        raise DecodeError("nominate targets must be a non empty list")
    first = targets[0]
    hex_id = first.get("Id") if isinstance(first, dict) else first
    return decode_account(hex_id, ss58_format)


def decode_extrinsic(raw: Any, call: StakingCall, ss58_format: int = DEFAULT_SS58_FORMAT) -> DecodeResult[Operation]:
    """
    Skeleton operation for a single-call staking extrinsic.

    Quantity stays zero until enrichment. For nominate the first target is
    read from the extrinsic params when they are present.
    """
    try:
        op = _skeleton(raw, call)
    except ValueError as e:
        return DecodeResult.skipped(str(e))

    if StakingCall(call) is StakingCall.NOMINATE and raw.get("params") is not None:
        try:
            op.to_wallet = _nomination_target(raw["params"], ss58_format)
        except DecodeError as e:
            log.debug("nominate %s has no decodable target: %s", op.extrinsic_index, e)
    return DecodeResult.decoded(op)


def _find_call(calls: list, name: str) -> Optional[dict]:
    for c in calls:
        if not isinstance(c, dict) or not isinstance(c.get("call_name"), str):
            raise DecodeError("batch sub-call without call_name")
        if c["call_name"] == name:
            return c
    return None


def _call_amount(call: Optional[dict], param_name: str) -> Decimal:
    if call is None:
        return Decimal(0)
    for p in _json_list(call.get("params")):
        if isinstance(p, dict) and p.get("name") == param_name:
            return parse_amount(p.get("value"))
    raise DecodeError(f"{call['call_name']} has no {param_name!r} param")


def decode_batch_all(raw: Any, ss58_format: int = DEFAULT_SS58_FORMAT) -> DecodeResult[Operation]:
    """
    Operation for a utility.batch_all extrinsic.

    quantity is the sum of the bond, bond_extra and unbond amounts; a
    nominate sub-call supplies to_wallet. Classification follows
    classifier.classify_batch.
    """
    try:
        op = _skeleton(raw)
        params = _json_list(raw.get("params"))
        if not params or not isinstance(params[0], dict):
            raise DecodeError("batch_all has no calls param")
        calls = params[0].get("value")
        if not isinstance(calls, list):
            raise DecodeError("batch_all calls must be a list")

        bond = _call_amount(_find_call(calls, StakingCall.BOND.value), "value")
        bond_extra = _call_amount(_find_call(calls, StakingCall.BOND_EXTRA.value), "max_additional")
        unbond = _call_amount(_find_call(calls, StakingCall.UNBOND.value), "value")

        nominate = _find_call(calls, StakingCall.NOMINATE.value)
        target = _nomination_target(nominate.get("params"), ss58_format) if nominate else NO_VALIDATOR
    except DecodeError as e:
        return DecodeResult.skipped(str(e))

    op.quantity = bond + bond_extra + unbond
    op.to_wallet = target
    op.kind = classify_batch(unbond, target)
    return DecodeResult.decoded(op)


def operations_from_extrinsics(
    records: Optional[list],
    call: Union[StakingCall, str],
    ss58_format: int = DEFAULT_SS58_FORMAT,
) -> List[Operation]:
    if call == BATCH_ALL_CALL:
        results = (decode_batch_all(r, ss58_format) for r in records or [])
    else:
        results = (decode_extrinsic(r, StakingCall(call), ss58_format) for r in records or [])
    return collect(results, f"{getattr(call, 'value', call)} extrinsic")


def enrich_operation(op: Operation, events: List[Event], ss58_format: int = DEFAULT_SS58_FORMAT) -> DecodeResult[Operation]:
    """
    Backfill from_wallet and quantity of a single-call operation from its
    extrinsic events. The staking event is the second one; its first param
    is the stash account and its last param the amount.
    """
    if len(events) < 2:
        return DecodeResult.skipped(f"{op.extrinsic_index}: expected at least 2 events, got {len(events)}")
    params = events[1].params
    if len(params) < 2:
        return DecodeResult.skipped(f"{op.extrinsic_index}: staking event has {len(params)} params")

    stash, amount = params[0], params[-1]
    if stash.name not in STASH_PARAM_NAMES:
        return DecodeResult.skipped(f"{op.extrinsic_index}: unexpected first param {stash.name!r}")
    if amount.name != AMOUNT_PARAM_NAME:
        return DecodeResult.skipped(f"{op.extrinsic_index}: unexpected last param {amount.name!r}")

    try:
        from_wallet = decode_account(stash.value, ss58_format)
        quantity = parse_amount(amount.value)
    except DecodeError as e:
        return DecodeResult.skipped(f"{op.extrinsic_index}: {e}")

    op.from_wallet = from_wallet
    op.to_wallet = NO_VALIDATOR
    op.quantity = quantity
    return DecodeResult.decoded(op)
