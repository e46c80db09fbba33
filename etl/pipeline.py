"""
etl.pipeline

Staking reconciliation: explorer queries in, hashed operations out.

Stages run as barriers. Inside a stage every item gets its own task and the
stage joins on all of them before the next one starts; a task that fails only
loses its own record. Blocking calls (HTTP, database) run in worker threads.
"""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple, Union

from common.settings import Pipeline as PipelineSettings, Settings
from common.utils import fan_out, unique
from ingestion.decoder import collect, enrich_operation, operations_from_extrinsics, parse_events
from ingestion.explorer import ExplorerClient
from ingestion.models import BATCH_ALL_CALL, Module, Operation, StakingCall, ValidatorAssociation
from ingestion.prices import PriceSource, StaticPriceSource

log = logging.getLogger(__name__)

# every address when the explorer is queried without an account filter
ALL_ACCOUNTS = ""

LookupJob = Tuple[str, Union[StakingCall, str]]


def operations_to_validators(ops: Sequence[Operation]) -> List[ValidatorAssociation]:
    """
    Nominator to validator pairs from operations with a resolved validator.
    Ordered by block so that a later nomination overrides an earlier one on upsert.
    """
    ordered = sorted(ops, key=lambda op: (op.block_number, op.extrinsic_index))
    return [a for a in (op.to_association() for op in ordered) if a is not None]


class StakingPipeline:
    def __init__(
        self,
        client: ExplorerClient,
        operations,
        validators,
        prices: PriceSource,
        settings: Optional[PipelineSettings] = None,
    ):
        self.client = client
        self.operations = operations
        self.validators = validators
        self.prices = prices
        self.settings = settings or PipelineSettings()

    @property
    def concurrency(self) -> Optional[int]:
        return self.settings.concurrency

    async def run(self) -> Optional[List[Operation]]:
        """
        Run every stage once. Returns the new, fully resolved operations, or
        None when a top level dependency (store, price) is unavailable.
        """
        price_task = asyncio.create_task(self.fetch_price())
        try:
            return await self._run(price_task)
        except Exception:
            log.exception("staking pipeline aborted")
            return None
        finally:
            if not price_task.done():
                price_task.cancel()

    async def _run(self, price_task: "asyncio.Task[Optional[Decimal]]") -> Optional[List[Operation]]:
        candidates = await self.fetch_by_kind()
        log.info("fetched %d staking candidates", len(candidates))

        fresh = await self.dedup(candidates)
        ops = await self.enrich(fresh)
        log.info("%d of %d new candidates enriched", len(ops), len(fresh))

        ops = await self.merge_batches(ops)

        _, price = await asyncio.gather(self.derive_validators(ops), price_task)
        if price is None:
            log.error("no %s/%s price available, dropping run",
                      self.settings.primary_token, self.settings.secondary_token)
            return None
        self.apply_price(ops, price)

        await self.fill_missing_nominators(ops)
        return await self.resolve(ops)

    # ---- stage 1 ----

    async def fetch_by_kind(self) -> List[Operation]:
        async def fetch(call: StakingCall) -> Optional[List[Operation]]:
            records = await asyncio.to_thread(
                self.client.extrinsics, ALL_ACCOUNTS, Module.STAKING, call, page=0, row=self.settings.rows
            )
            if records is None:
                return None
            return operations_from_extrinsics(records, call, self.settings.ss58_format)

        per_kind = await fan_out(list(StakingCall), fetch, concurrency=self.concurrency, label="extrinsics query")
        return [op for ops in per_kind for op in ops]

    # ---- stage 2 ----

    async def dedup(self, candidates: List[Operation]) -> List[Operation]:
        candidates = unique(candidates, key=lambda op: op.extrinsic_index)
        if not candidates:
            return []
        return await asyncio.to_thread(self.operations.get_not_existing_operations, candidates)

    # ---- stage 3 ----

    async def enrich(self, ops: List[Operation]) -> List[Operation]:
        async def enrich_one(op: Operation) -> Optional[Operation]:
            records = await asyncio.to_thread(self.client.extrinsic_events, op.extrinsic_index)
            if records is None:
                return None
            events = parse_events(records, params_encoded=True)
            enriched = collect([enrich_operation(op, events, self.settings.ss58_format)], "enrichment")
            return enriched[0] if enriched else None

        return await fan_out(ops, enrich_one, concurrency=self.concurrency, label="extrinsic detail")

    # ---- stage 4 ----

    async def merge_batches(self, ops: List[Operation]) -> List[Operation]:
        try:
            records = await asyncio.to_thread(
                self.client.batch_all, ALL_ACCOUNTS, page=self.settings.batch_page, row=self.settings.rows
            )
        except Exception as e:
            log.warning("batch_all query failed: %s", e)
            return ops
        try:
            batches = operations_from_extrinsics(records, BATCH_ALL_CALL, self.settings.ss58_format)
        except ValueError as e:
            log.warning("batch_all records could not be decoded: %s", e)
            return ops
        seen = {op.extrinsic_index for op in ops}
        batches = [b for b in unique(batches, key=lambda op: op.extrinsic_index) if b.extrinsic_index not in seen]
        batches = await self.dedup(batches)
        log.info("merged %d new batch_all operations", len(batches))
        return ops + batches

    # ---- stage 5 ----

    async def derive_validators(self, ops: List[Operation]) -> int:
        associations = operations_to_validators(ops)
        if not associations:
            return 0
        try:
            return await asyncio.to_thread(self.validators.import_or_update_validators, associations)
        except Exception as e:
            log.warning("validator upsert failed: %s", e)
            return 0

    # ---- stage 6 ----

    async def fetch_price(self) -> Optional[Decimal]:
        try:
            price = await asyncio.to_thread(
                self.prices.get_usd_price, self.settings.primary_token, self.settings.secondary_token
            )
        except Exception as e:
            log.warning("price lookup failed: %s", e)
            return None
        return Decimal(str(price)) if price is not None else None

    @staticmethod
    def apply_price(ops: List[Operation], price: Decimal) -> None:
        # one current quote for every operation, not the price at its block
        for op in ops:
            op.usd_value = op.quantity * price

    # ---- stage 7 ----

    async def fill_missing_nominators(self, ops: List[Operation]) -> int:
        nominators = unique(op.from_wallet for op in ops)
        if not nominators:
            return 0
        try:
            missing = await asyncio.to_thread(self.validators.get_not_existing_nominators, nominators)
        except Exception as e:
            log.warning("nominator lookup failed: %s", e)
            return 0

        jobs: List[LookupJob] = []
        for nominator in missing:
            jobs.append((nominator, BATCH_ALL_CALL))
            jobs.append((nominator, StakingCall.NOMINATE))

        async def lookup(job: LookupJob) -> Optional[List[Operation]]:
            nominator, call = job
            if call == BATCH_ALL_CALL:
                records = await asyncio.to_thread(self.client.batch_all, nominator, page=0, row=1)
            else:
                records = await asyncio.to_thread(
                    self.client.extrinsics, nominator, Module.STAKING, call, page=0, row=1
                )
            if records is None:
                return None
            return operations_from_extrinsics(records, call, self.settings.ss58_format)

        found = await fan_out(jobs, lookup, concurrency=self.concurrency, label="nominator lookup")
        associations = operations_to_validators([op for ops_ in found for op in ops_])
        if not associations:
            return 0
        log.info("found validators for %d of %d unknown nominators",
                 len({a.nominator for a in associations}), len(missing))
        try:
            return await asyncio.to_thread(self.validators.import_or_update_validators, associations)
        except Exception as e:
            log.warning("validator upsert failed: %s", e)
            return 0

    # ---- stage 8 ----

    async def resolve(self, ops: List[Operation]) -> List[Operation]:
        async def resolve_one(op: Operation) -> Operation:
            try:
                assoc = await asyncio.to_thread(self.validators.get_validator_by_nominator, op.from_wallet)
            except Exception as e:
                log.warning("validator lookup failed for %s: %s", op.from_wallet, e)
                assoc = None
            if assoc is not None:
                op.to_wallet = assoc.validator
            return op

        resolved = await fan_out(ops, resolve_one, concurrency=self.concurrency, label="validator lookup")
        for op in resolved:
            op.set_hash()
        out = unique(resolved, key=lambda op: op.hash)
        if len(out) != len(resolved):
            log.warning("dropped %d operations with duplicate hashes", len(resolved) - len(out))
        return out


async def run_staking_pipeline(
    settings: Settings,
    *,
    client: Optional[ExplorerClient] = None,
    storage=None,
    prices: Optional[PriceSource] = None,
) -> Optional[List[Operation]]:
    """Build the default collaborators from settings and run one reconciliation."""
    from storage.manager import storage_from_settings

    if storage is None:
        storage = storage_from_settings(settings.db)
        storage.setup()
    if prices is None:
        prices = StaticPriceSource(settings.price.usd) if settings.price.usd is not None else storage
    if client is None:
        client = ExplorerClient.from_settings(settings.explorer)

    pipeline = StakingPipeline(client, storage, storage, prices, settings.pipeline)
    return await pipeline.run()


__all__ = [
    "StakingPipeline",
    "run_staking_pipeline",
    "operations_to_validators",
]
