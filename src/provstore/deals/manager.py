"""Deal lifecycle orchestration.

Each deal's monitoring (inclusion, then provider sealing) runs as its own
asyncio task and reports its outcome on a result queue. The registry is the
only shared state: every change to one deal happens under that deal's lock
as a read, modify and write of a fresh snapshot, so different deals proceed
in parallel and a cancelled task never leaves a half-applied update.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Awaitable, Callable

from ..core import defaults
from ..core.config import ProvstoreConfig, get_config
from ..core.exceptions import (
    InvalidTransition,
    MalformedInput,
    NotFound,
    ProviderRejected,
    ProvstoreError,
    RetryBudgetExhausted,
    TransientNetworkError,
    VerificationFailed,
)
from ..core.log import short_cid
from ..core.workers import WorkerPool
from ..archive.piece import PieceCommitment
from ..optimizer.models import DealParameters
from ..proofs.models import Proof
from ..proofs.possession import verify_possession_proof
from .interfaces import (
    DealRegistry,
    InclusionReceipt,
    LedgerClient,
    ProviderDealStatus,
    ProviderTransport,
)
from .models import LIVE_STATES, Deal, DealState
from .retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class MonitorResult:
    """Outcome reported by a deal's monitoring task."""

    deal_id: str
    state: DealState
    error: str | None = None


@dataclass
class VerificationResult:
    deal_id: str
    verified: bool
    proof: Proof | None = None
    reason: str = ""
    state: DealState | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "verified": self.verified,
            "proof": self.proof.to_dict() if self.proof else None,
            "reason": self.reason,
            "state": self.state.value if self.state else None,
        }


@dataclass
class _Stats:
    proposed: int = 0
    activated: int = 0
    failed: int = 0
    verifications: int = 0
    verification_failures: int = 0
    renewals: int = 0
    expired: int = 0


class DealManager:
    """Runs replica deals from proposal to expiry.

    Args:
        ledger: Settlement-layer client.
        transport: Provider network client.
        registry: Durable deal store.
        signing_key: Key handed to the ledger client for submissions.
        config: Tunables; defaults to the process config.
        clock: Source of the current time (UTC).
        sleep: Awaitable used for backoff waits.
        pool: Worker pool for proof verification.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        transport: ProviderTransport,
        registry: DealRegistry,
        *,
        signing_key: Any = None,
        config: ProvstoreConfig | None = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        pool: WorkerPool | None = None,
        rng: random.Random | None = None,
    ):
        self.ledger = ledger
        self.transport = transport
        self.registry = registry
        self.config = config or get_config()
        self._signing_key = signing_key
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._pool = pool or WorkerPool(self.config.worker_pool_size, self.config.worker_pool_kind)
        self._owns_pool = pool is None
        self.retry_policy = RetryPolicy.from_config(self.config)

        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._known: set[str] = set()
        self._completed: dict[str, MonitorResult] = {}
        self.results: asyncio.Queue[MonitorResult] = asyncio.Queue()
        self._stats = _Stats()

    # -------------------------------------------------------------------------
    # Registry access
    # -------------------------------------------------------------------------

    def _lock(self, deal_id: str) -> asyncio.Lock:
        lock = self._locks.get(deal_id)
        if lock is None:
            lock = self._locks[deal_id] = asyncio.Lock()
        return lock

    async def _load(self, deal_id: str) -> Deal:
        deal = await self.registry.get(deal_id)
        if deal is None:
            raise NotFound(f"Unknown deal {deal_id}", {"deal_id": deal_id})
        return deal

    async def _mutate(self, deal_id: str, change: Callable[[Deal], None]) -> Deal:
        """Apply ``change`` to a fresh snapshot and persist it under the deal's lock."""
        async with self._lock(deal_id):
            deal = await self._load(deal_id)
            change(deal)
            await asyncio.shield(self.registry.put(deal))
            return deal

    async def _transition(
        self,
        deal_id: str,
        to_state: DealState,
        cause: str,
        details: dict[str, Any] | None = None,
        update: Callable[[Deal], None] | None = None,
    ) -> Deal:
        def change(deal: Deal) -> None:
            if update is not None:
                update(deal)
            deal.transition(to_state, self._clock(), cause, details)

        deal = await self._mutate(deal_id, change)
        logger.info(
            f"Deal {deal_id} -> {to_state.value} ({cause})",
            extra={"deal_id": deal_id, "state": to_state.value},
        )
        if to_state == DealState.FAILED:
            self._stats.failed += 1
        elif to_state == DealState.ACTIVE:
            self._stats.activated += 1
        elif to_state == DealState.EXPIRED:
            self._stats.expired += 1
        return deal

    async def _fail(self, deal_id: str, error: BaseException, cause: str) -> Deal | None:
        """Record a terminal failure unless the deal is already terminal."""
        details = error.to_dict() if isinstance(error, ProvstoreError) else {"error": repr(error)}
        try:
            return await self._transition(deal_id, DealState.FAILED, cause, details)
        except InvalidTransition:
            logger.debug(f"Deal {deal_id} already terminal, not recording {cause}")
            return None

    async def network_call(self, what: str, fn: Callable[[], Awaitable[Any]], timeout: float | None = None) -> Any:
        return await call_with_retry(
            fn, self.retry_policy, what=what, sleep=self._sleep, rng=self._rng, timeout=timeout
        )

    @property
    def pool(self) -> WorkerPool:
        return self._pool

    def now(self) -> datetime:
        return self._clock()

    async def get_deal(self, deal_id: str) -> Deal:
        return await self._load(deal_id)

    async def deals_for_dataset(self, dataset_id: str) -> list[Deal]:
        return await self.registry.list_by_dataset(dataset_id)

    # -------------------------------------------------------------------------
    # Proposal
    # -------------------------------------------------------------------------

    async def _current_epoch(self) -> int:
        height = await self.network_call(
            "read chain height", lambda: self.ledger.read_contract_state("chain", "height")
        )
        return int(height)

    async def find_replica(self, params: DealParameters) -> Deal | None:
        """The non-terminal deal holding this (dataset, provider, replica) slot, if any."""
        for deal in await self.registry.list_by_dataset(params.dataset_id):
            if (
                deal.provider == params.provider
                and deal.params.replica_index == params.replica_index
                and not deal.is_terminal
            ):
                return deal
        return None

    async def _draft(self, params: DealParameters, piece: PieceCommitment | None) -> tuple[Deal, bool]:
        slot = f"{params.dataset_id}/{params.provider}/{params.replica_index}"
        async with self._lock(slot):
            existing = await self.find_replica(params)
            if existing is not None:
                return existing, False
            deal = Deal(
                deal_id=uuid.uuid4().hex,
                params=params,
                piece_root=piece.root.hex() if piece else None,
            )
            deal.record(self._clock(), "drafted", {"provider": params.provider, "replica": params.replica_index})
            async with self._lock(deal.deal_id):
                await self.registry.put(deal)
        self._known.add(deal.deal_id)
        return deal, True

    async def create_deal(self, params: DealParameters, piece: PieceCommitment | None = None) -> Deal:
        """Record a DRAFTED deal for ``params``. Nothing is sent anywhere.

        A replica slot holds at most one live deal: if a non-terminal deal
        already exists for the same dataset, provider and replica index it
        is returned instead.
        """
        deal, _ = await self._draft(params, piece)
        return deal

    async def propose_deal(
        self,
        params: DealParameters,
        piece: PieceCommitment | None = None,
        data: bytes | None = None,
        monitor: bool = True,
    ) -> Deal:
        """Draft a deal, propose it to the provider and publish it to the ledger.

        If ``data`` is given it is transferred to the provider first.
        Returns the deal in PROPOSED state, or FAILED if any step of the
        proposal raised an engine error (provider refusal, exhausted retry
        budget, unknown provider). Inclusion and sealing are then tracked by
        a background task.

        Proposing a replica slot that already has a live deal returns that
        deal unchanged.
        """
        deal, created = await self._draft(params, piece)
        deal_id = deal.deal_id
        if not created:
            logger.info(
                f"Replica {params.replica_index} of {params.dataset_id} with {params.provider} "
                f"already held by deal {deal_id} ({deal.state.value})"
            )
            return deal

        try:
            if data is not None:
                await self.network_call(
                    f"transfer piece for {deal_id} to {params.provider}",
                    lambda: self.transport.push_data(params.provider_address, params.piece_cid, data),
                )
            ack = await self.network_call(
                f"propose deal {deal_id} to {params.provider}",
                lambda: self.transport.propose_deal(params.provider_address, params, deal_id),
            )
            if not ack.accepted:
                raise ProviderRejected(
                    f"Provider {params.provider} rejected deal: {ack.message}",
                    {"provider": params.provider},
                )
            start_epoch = await self._current_epoch() + defaults.DEAL_START_OFFSET_EPOCHS
            payload = {
                "method": "PublishStorageDeals",
                "deal_id": deal_id,
                "piece_cid": params.piece_cid,
                "piece_size": params.padded_size,
                "provider": params.provider,
                "start_epoch": start_epoch,
                "end_epoch": start_epoch + params.duration_epochs,
                "price_per_epoch": str(params.price_per_epoch),
                "verified": params.verified,
            }
            tx_ref = await self.network_call(
                f"submit proposal for {deal_id}",
                lambda: self.ledger.submit_transaction(payload, self._signing_key),
            )
        except ProvstoreError as e:
            await self._fail(deal_id, e, "proposal failed")
            return await self._load(deal_id)
        except Exception as e:
            logger.exception(f"Unexpected error proposing deal {deal_id}")
            await self._fail(deal_id, e, "proposal error")
            raise

        def mark_proposed(d: Deal) -> None:
            d.proposed_at = self._clock()
            d.transaction_ref = tx_ref

        deal = await self._transition(deal_id, DealState.PROPOSED, "proposal submitted", {"tx": tx_ref}, mark_proposed)
        self._stats.proposed += 1
        logger.info(f"Proposed deal {deal_id} for piece {short_cid(params.piece_cid)} with {params.provider}")
        if monitor:
            self.start_monitor(deal_id)
        return deal

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def start_monitor(self, deal_id: str) -> asyncio.Task:
        """Start (or return the running) monitoring task for ``deal_id``."""
        task = self._tasks.get(deal_id)
        if task is not None and not task.done():
            return task
        self._known.add(deal_id)
        task = asyncio.create_task(self._monitor(deal_id), name=f"deal-monitor-{deal_id}")
        self._tasks[deal_id] = task
        return task

    async def cancel_monitor(self, deal_id: str) -> None:
        """Stop watching a deal. Its last recorded state is left as is."""
        task = self._tasks.pop(deal_id, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _monitor(self, deal_id: str) -> None:
        result: MonitorResult | None = None
        try:
            deal = await self._load(deal_id)
            if deal.state == DealState.PROPOSED:
                deal = await self._await_inclusion(deal)
            if deal.state == DealState.PUBLISHING:
                deal = await self._poll_until_active(deal)
            result = MonitorResult(deal_id, deal.state)
        except asyncio.CancelledError:
            logger.debug(f"Monitoring of deal {deal_id} cancelled")
            raise
        except (ProvstoreError, TimeoutError) as e:
            failed = await self._fail(deal_id, e, _failure_cause(e))
            state = failed.state if failed else (await self._load(deal_id)).state
            result = MonitorResult(deal_id, state, str(e) or type(e).__name__)
        except Exception as e:
            logger.exception(f"Unexpected error monitoring deal {deal_id}")
            failed = await self._fail(deal_id, e, "monitor error")
            state = failed.state if failed else (await self._load(deal_id)).state
            result = MonitorResult(deal_id, state, repr(e))
        finally:
            if result is not None:
                self._tasks.pop(deal_id, None)
                await self.results.put(result)

    async def _await_inclusion(self, deal: Deal) -> Deal:
        timeout = self.config.inclusion_timeout
        receipt: InclusionReceipt = await self.network_call(
            f"await inclusion of {deal.transaction_ref}",
            lambda: self.ledger.await_inclusion(deal.transaction_ref, timeout),
            timeout=timeout + self.config.call_timeout,
        )
        if not receipt.success:
            raise ProviderRejected(
                f"Proposal transaction rejected: {receipt.message or receipt.exit_code}",
                {"tx": receipt.tx_ref, "exit_code": receipt.exit_code},
            )
        return await self.on_inclusion(deal.deal_id, receipt)

    async def on_inclusion(self, deal_id: str, receipt: InclusionReceipt) -> Deal:
        """Apply an inclusion report. Repeated reports of the same transaction are no-ops."""

        def change(deal: Deal) -> None:
            if deal.state != DealState.PROPOSED:
                return
            if receipt.tx_ref != deal.transaction_ref:
                raise InvalidTransition(deal_id, deal.state.value, DealState.PUBLISHING.value)
            deal.chain_deal_id = receipt.chain_deal_id
            deal.transition(
                DealState.PUBLISHING,
                self._clock(),
                "transaction included",
                {"height": receipt.height, "chain_deal_id": receipt.chain_deal_id},
            )

        async with self._lock(deal_id):
            deal = await self._load(deal_id)
            if deal.state != DealState.PROPOSED:
                logger.debug(f"Duplicate inclusion report for deal {deal_id} ignored ({deal.state.value})")
                return deal
            change(deal)
            await asyncio.shield(self.registry.put(deal))
        logger.info(f"Deal {deal_id} -> publishing at height {receipt.height}", extra={"deal_id": deal_id})
        return deal

    def _poll_delay(self, attempt: int) -> float:
        delay = min(self.config.poll_base_delay * (2**attempt), self.config.poll_max_delay)
        return delay * (1.0 - self.config.retry_jitter * self._rng.random())

    async def _poll_until_active(self, deal: Deal) -> Deal:
        deal_id = deal.deal_id
        addr = deal.params.provider_address
        for attempt in range(self.config.max_status_polls):
            status = await self.network_call(
                f"poll status of {deal_id}", lambda: self.transport.poll_status(addr, deal_id)
            )
            if status.status == ProviderDealStatus.ACTIVE:
                return await self._activate(deal_id)
            if status.status in (ProviderDealStatus.REJECTED, ProviderDealStatus.FAILED):
                raise ProviderRejected(
                    f"Provider reported {status.status.value}: {status.message}",
                    {"provider": deal.provider, "status": status.status.value},
                )
            delay = self._poll_delay(attempt)
            logger.debug(f"Deal {deal_id} provider status {status.status.value}; next poll in {delay:.1f}s")
            await self._sleep(delay)
        raise ProviderRejected(
            f"Deal not sealed after {self.config.max_status_polls} polls",
            {"provider": deal.provider, "polls": self.config.max_status_polls},
        )

    async def _activate(self, deal_id: str) -> Deal:
        def mark_active(d: Deal) -> None:
            now = self._clock()
            d.activated_at = now
            d.expires_at = now + timedelta(seconds=d.params.duration_epochs * defaults.EPOCH_SECONDS)

        return await self._transition(deal_id, DealState.ACTIVE, "sealing confirmed", update=mark_active)

    async def wait_for(self, deal_ids: list[str], timeout: float | None = None) -> dict[str, MonitorResult]:
        """Collect monitoring results for ``deal_ids`` from the result queue."""
        pending = set(deal_ids)
        out = {d: self._completed[d] for d in deal_ids if d in self._completed}
        pending -= out.keys()

        async def drain() -> None:
            while pending:
                result = await self.results.get()
                self._completed[result.deal_id] = result
                if result.deal_id in pending:
                    out[result.deal_id] = result
                    pending.discard(result.deal_id)

        await asyncio.wait_for(drain(), timeout=timeout)
        return out

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    async def _challenge_seed(self) -> bytes:
        beacon = await self.network_call(
            "read randomness beacon",
            lambda: self.ledger.read_contract_state(self.config.randomness_address, "beacon"),
        )
        try:
            seed = bytes.fromhex(beacon) if isinstance(beacon, str) else bytes(beacon)
        except (TypeError, ValueError) as e:
            raise MalformedInput(f"Unreadable randomness beacon: {beacon!r}") from e
        if not seed:
            raise MalformedInput("Empty randomness beacon")
        return seed

    async def verify_deal(self, deal_id: str) -> VerificationResult:
        """Challenge the provider and check its possession proof.

        ``last_verified_at`` moves only on success. After
        ``max_verify_failures`` consecutive failures the deal becomes FAILED.
        """
        deal = await self._load(deal_id)
        if deal.state not in LIVE_STATES:
            return VerificationResult(deal_id, False, reason=f"deal is {deal.state.value}", state=deal.state)
        if not deal.piece_root:
            return VerificationResult(deal_id, False, reason="no piece commitment recorded", state=deal.state)

        self._stats.verifications += 1
        commitment = PieceCommitment(
            root=bytes.fromhex(deal.piece_root),
            raw_size=deal.params.raw_size,
            padded_size=deal.params.padded_size,
        )
        count = self.config.challenge_count
        proof: Proof | None = None
        reason = ""
        try:
            seed = await self._challenge_seed()
            proof = await self.network_call(
                f"request possession proof for {deal_id}",
                lambda: self.transport.request_possession_proof(
                    deal.params.provider_address, deal.piece_cid, seed, count
                ),
            )
            ok = await self._pool.run(verify_possession_proof, proof, commitment, seed, count)
            if not ok:
                reason = "proof did not verify"
        except (TransientNetworkError, NotFound, ProviderRejected, MalformedInput) as e:
            ok = False
            reason = e.message

        if ok:
            def mark_verified(d: Deal) -> None:
                d.last_verified_at = self._clock()
                d.consecutive_failures = 0
                d.record(d.last_verified_at, "possession verified")

            deal = await self._mutate(deal_id, mark_verified)
            logger.info(f"Deal {deal_id} possession verified", extra={"deal_id": deal_id})
            return VerificationResult(deal_id, True, proof, state=deal.state)

        self._stats.verification_failures += 1
        limit = self.config.max_verify_failures

        def mark_failed(d: Deal) -> None:
            d.consecutive_failures += 1
            d.record(self._clock(), "possession check failed", {"reason": reason, "count": d.consecutive_failures})
            if d.consecutive_failures >= limit and not d.is_terminal:
                error = VerificationFailed(f"Verification failed {d.consecutive_failures} times in a row")
                d.transition(DealState.FAILED, self._clock(), "verification failed", error.to_dict())

        deal = await self._mutate(deal_id, mark_failed)
        if deal.state == DealState.FAILED:
            self._stats.failed += 1
            logger.warning(f"Deal {deal_id} failed after {deal.consecutive_failures} failed verifications")
        else:
            logger.warning(f"Deal {deal_id} verification failed ({deal.consecutive_failures}/{limit}): {reason}")
        return VerificationResult(deal_id, False, proof, reason=reason, state=deal.state)

    # -------------------------------------------------------------------------
    # Renewal and expiry
    # -------------------------------------------------------------------------

    async def set_auto_renew(self, deal_id: str, enabled: bool = True) -> Deal:
        def change(d: Deal) -> None:
            d.renew_on_expiry = enabled
            d.record(self._clock(), "auto-renew " + ("enabled" if enabled else "disabled"))

        return await self._mutate(deal_id, change)

    async def renew_deal(self, deal_id: str, extra_epochs: int) -> Deal:
        """Extend a live deal by ``extra_epochs`` and move it to RENEWED.

        The extension is published to the ledger first; if that fails the
        deal is left untouched and the error propagates.
        """
        if extra_epochs <= 0:
            raise ValueError("extra_epochs must be positive")
        deal = await self._load(deal_id)
        if deal.state not in LIVE_STATES:
            raise InvalidTransition(deal_id, deal.state.value, DealState.RENEWED.value)

        payload = {
            "method": "ExtendDeal",
            "deal_id": deal_id,
            "chain_deal_id": deal.chain_deal_id,
            "extra_epochs": extra_epochs,
        }
        tx_ref = await self.network_call(
            f"submit renewal for {deal_id}", lambda: self.ledger.submit_transaction(payload, self._signing_key)
        )
        timeout = self.config.inclusion_timeout
        receipt = await self.network_call(
            f"await renewal inclusion {tx_ref}",
            lambda: self.ledger.await_inclusion(tx_ref, timeout),
            timeout=timeout + self.config.call_timeout,
        )
        if not receipt.success:
            raise ProviderRejected(f"Renewal transaction rejected: {receipt.message}", {"tx": tx_ref})

        def extend(d: Deal) -> None:
            base = d.expires_at or self._clock()
            d.expires_at = base + timedelta(seconds=extra_epochs * defaults.EPOCH_SECONDS)

        deal = await self._transition(
            deal_id, DealState.RENEWED, "renewed", {"tx": tx_ref, "extra_epochs": extra_epochs}, extend
        )
        self._stats.renewals += 1
        return deal

    async def check_expiry(self, deal_id: str) -> Deal:
        """Move a live deal to EXPIRING or EXPIRED based on the clock.

        A deal flagged ``renew_on_expiry`` is renewed for its original duration
        when it enters the expiry window; otherwise it lapses at ``expires_at``.
        """
        deal = await self._load(deal_id)
        if deal.is_terminal or deal.expires_at is None:
            return deal
        now = self._clock()
        window = timedelta(seconds=self.config.expiry_window)

        if deal.state in (DealState.ACTIVE, DealState.RENEWED) and now >= deal.expires_at - window:
            deal = await self._transition(
                deal_id, DealState.EXPIRING, "entered expiry window", {"expires_at": deal.expires_at.isoformat()}
            )
        if deal.state == DealState.EXPIRING:
            if deal.renew_on_expiry:
                try:
                    return await self.renew_deal(deal_id, deal.params.duration_epochs)
                except (TransientNetworkError, ProviderRejected) as e:
                    logger.warning(f"Automatic renewal of {deal_id} failed: {e}")
            if now >= deal.expires_at:
                deal = await self._transition(deal_id, DealState.EXPIRED, "lapsed without renewal")
        return deal

    async def check_deal_validity(self, deal_id: str) -> dict[str, Any]:
        """Read the deal's on-chain record and report whether it is live."""
        deal = await self._load(deal_id)
        if deal.chain_deal_id is None:
            return {"deal_id": deal_id, "on_chain": False, "active": False}
        state = await self.network_call(
            f"read market state for {deal_id}",
            lambda: self.ledger.read_contract_state("market", f"deal:{deal.chain_deal_id}"),
        )
        height = await self._current_epoch()
        if not state:
            return {"deal_id": deal_id, "on_chain": False, "active": False}
        started = int(state.get("sector_start_epoch", -1)) > 0
        ended = height >= int(state.get("end_epoch", 0))
        slashed = int(state.get("slash_epoch", -1)) > 0
        return {
            "deal_id": deal_id,
            "chain_deal_id": deal.chain_deal_id,
            "on_chain": True,
            "started": started,
            "ended": ended,
            "slashed": slashed,
            "active": started and not ended and not slashed,
            "height": height,
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def known_deals(self) -> list[str]:
        return sorted(self._known)

    async def resume(self, dataset_ids: list[str]) -> list[str]:
        """Reload deals for ``dataset_ids`` and restart monitoring of in-flight ones."""
        resumed = []
        for dataset_id in dataset_ids:
            for deal in await self.registry.list_by_dataset(dataset_id):
                self._known.add(deal.deal_id)
                if deal.state in (DealState.PROPOSED, DealState.PUBLISHING):
                    self.start_monitor(deal.deal_id)
                    resumed.append(deal.deal_id)
        return resumed

    async def stop(self) -> None:
        """Cancel every monitoring task and release the worker pool."""
        for deal_id in list(self._tasks):
            await self.cancel_monitor(deal_id)
        if self._owns_pool:
            self._pool.shutdown(wait=False)

    def get_stats(self) -> dict[str, Any]:
        return {
            "proposed": self._stats.proposed,
            "activated": self._stats.activated,
            "failed": self._stats.failed,
            "verifications": self._stats.verifications,
            "verification_failures": self._stats.verification_failures,
            "renewals": self._stats.renewals,
            "expired": self._stats.expired,
            "monitoring": len(self._tasks),
            "known": len(self._known),
        }


def _failure_cause(error: BaseException) -> str:
    if isinstance(error, ProviderRejected):
        return "provider rejected"
    if isinstance(error, RetryBudgetExhausted):
        return "retry budget exhausted"
    if isinstance(error, TimeoutError):
        return "inclusion timeout"
    return type(error).__name__
