"""In-process ledger and provider network.

Used by the test suite and the demo, and handy for dry runs: the simulated
providers really hold the piece bytes and answer possession challenges from
them, so a provider that drops or corrupts its data fails verification the
same way a remote one would. Faults (transient errors, rejections, lost
inclusions) are injected per provider or per transaction method.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..addressing.cid import ContentId
from ..core.exceptions import NotFound, TransientNetworkError
from ..optimizer.models import DealParameters, StorageProvider
from ..proofs.models import Proof
from ..proofs.possession import PossessionProver
from ..proofs.signing import canonical_json, generate_keypair, public_key_bytes, sign_data
from ..deals.interfaces import InclusionReceipt, ProviderAck, ProviderDealStatus, ProviderStatus

logger = logging.getLogger(__name__)

GENESIS_HEIGHT = 1000


@dataclass
class _Transaction:
    tx_ref: str
    payload: dict[str, Any]
    signature: bytes | None = None
    receipt: InclusionReceipt | None = None


class SimulatedLedger:
    """A single-node ledger that includes transactions on request.

    Args:
        inclusion_delay: Seconds ``await_inclusion`` waits before a
            transaction lands.
        include: When False, nothing is ever included and every
            ``await_inclusion`` times out.
    """

    def __init__(self, inclusion_delay: float = 0.0, include: bool = True, randomness_address: str = "f00"):
        self.inclusion_delay = inclusion_delay
        self.include = include
        self.randomness_address = randomness_address
        self.height = GENESIS_HEIGHT
        self.transactions: dict[str, _Transaction] = {}
        self.market: dict[int, dict[str, Any]] = {}
        self.contract_state: dict[str, dict[str, Any]] = {}
        self.rejected_methods: set[str] = set()
        self.submit_failures = 0
        self._next_deal_id = 1
        self._beacon_round = 0

    # -------------------------------------------------------------------------
    # Fault injection
    # -------------------------------------------------------------------------

    def fail_submissions(self, count: int) -> None:
        """Make the next ``count`` submissions raise a transient error."""
        self.submit_failures = count

    def reject_method(self, method: str) -> None:
        """Include transactions of ``method`` with a non-zero exit code."""
        self.rejected_methods.add(method)

    def advance(self, epochs: int) -> int:
        self.height += epochs
        return self.height

    # -------------------------------------------------------------------------
    # LedgerClient
    # -------------------------------------------------------------------------

    async def submit_transaction(self, payload: dict[str, Any], key: Any) -> str:
        if self.submit_failures > 0:
            self.submit_failures -= 1
            raise TransientNetworkError("ledger node unavailable")
        message = canonical_json(payload)
        tx_ref = "tx-" + hashlib.sha256(message + len(self.transactions).to_bytes(8, "big")).hexdigest()[:32]
        signature = sign_data(message, key) if key is not None else None
        self.transactions[tx_ref] = _Transaction(tx_ref, dict(payload), signature)
        logger.debug(f"Ledger accepted {payload.get('method')} as {tx_ref}")
        return tx_ref

    async def await_inclusion(self, tx_ref: str, timeout: float) -> InclusionReceipt:
        tx = self.transactions.get(tx_ref)
        if tx is None:
            raise NotFound(f"Unknown transaction {tx_ref}")
        if tx.receipt is not None:
            return tx.receipt
        if not self.include:
            await asyncio.sleep(timeout)
            raise TimeoutError(f"{tx_ref} not included within {timeout}s")
        if self.inclusion_delay > timeout:
            await asyncio.sleep(timeout)
            raise TimeoutError(f"{tx_ref} not included within {timeout}s")
        if self.inclusion_delay:
            await asyncio.sleep(self.inclusion_delay)
        if tx.receipt is None:
            tx.receipt = self._include(tx)
        return tx.receipt

    def _include(self, tx: _Transaction) -> InclusionReceipt:
        self.height += 1
        method = tx.payload.get("method", "")
        if method in self.rejected_methods:
            return InclusionReceipt(tx.tx_ref, self.height, success=False, exit_code=16, message=f"{method} rejected")

        if method == "PublishStorageDeals":
            chain_deal_id = self._next_deal_id
            self._next_deal_id += 1
            self.market[chain_deal_id] = {
                "piece_cid": tx.payload.get("piece_cid"),
                "provider": tx.payload.get("provider"),
                "sector_start_epoch": int(tx.payload.get("start_epoch", self.height)),
                "end_epoch": int(tx.payload.get("end_epoch", self.height)),
                "slash_epoch": -1,
            }
            return InclusionReceipt(tx.tx_ref, self.height, chain_deal_id=chain_deal_id)

        if method == "ExtendDeal":
            record = self.market.get(tx.payload.get("chain_deal_id"))
            if record is not None:
                record["end_epoch"] += int(tx.payload.get("extra_epochs", 0))
        return InclusionReceipt(tx.tx_ref, self.height)

    def slash(self, chain_deal_id: int) -> None:
        self.market[chain_deal_id]["slash_epoch"] = self.height

    async def read_contract_state(self, address: str, query: str) -> Any:
        if address == "chain" and query == "height":
            return self.height
        if address == self.randomness_address and query == "beacon":
            self._beacon_round += 1
            entry = f"{self.height}:{self._beacon_round}".encode()
            return hashlib.sha256(b"beacon:" + entry).hexdigest()
        if address == "market" and query.startswith("deal:"):
            record = self.market.get(int(query.split(":", 1)[1]))
            return dict(record) if record else None
        state = self.contract_state.get(address)
        if state is None or query not in state:
            raise NotFound(f"No state {query!r} at {address}")
        return state[query]


@dataclass
class SimulatedProvider:
    """One provider's storage and behaviour switches."""

    address: str
    provider_id: str = ""
    prover: PossessionProver = field(default_factory=PossessionProver)
    key: Any = None
    deals: dict[str, dict[str, Any]] = field(default_factory=dict)
    reject_proposals: bool = False
    unreachable: bool = False
    transient_failures: int = 0
    seal_after_polls: int = 1
    fail_sealing: bool = False
    corrupt_data: bool = False
    forge_proofs: bool = False

    def __post_init__(self):
        if self.key is None:
            self.key, _ = generate_keypair()

    @property
    def public_key(self) -> bytes:
        return public_key_bytes(self.key)


class SimulatedProviderNetwork:
    """Provider transport backed by :class:`SimulatedProvider` instances."""

    def __init__(self, providers: Iterable[SimulatedProvider] = (), latency: float = 0.0):
        self.providers: dict[str, SimulatedProvider] = {p.address: p for p in providers}
        self.latency = latency
        self.calls: list[tuple[str, str]] = []

    @classmethod
    def from_catalog(cls, catalog: Iterable[StorageProvider], latency: float = 0.0) -> SimulatedProviderNetwork:
        return cls((SimulatedProvider(p.address, p.provider_id) for p in catalog), latency)

    def provider(self, address: str) -> SimulatedProvider:
        try:
            return self.providers[address]
        except KeyError:
            raise NotFound(f"No provider at {address}") from None

    def by_id(self, provider_id: str) -> SimulatedProvider:
        for p in self.providers.values():
            if p.provider_id == provider_id:
                return p
        raise NotFound(f"No provider {provider_id}")

    async def _reach(self, address: str, op: str) -> SimulatedProvider:
        self.calls.append((address, op))
        if self.latency:
            await asyncio.sleep(self.latency)
        p = self.provider(address)
        if p.unreachable:
            raise TransientNetworkError(f"{address} unreachable")
        if p.transient_failures > 0:
            p.transient_failures -= 1
            raise TransientNetworkError(f"{address} connection reset")
        return p

    async def push_data(self, provider_addr: str, piece_cid: str, data: bytes) -> None:
        p = await self._reach(provider_addr, "push")
        commitment = p.prover.store(data)
        if str(commitment.cid) != piece_cid:
            p.prover.drop(commitment.cid)
            logger.warning(f"{provider_addr} received data that does not commit to {piece_cid}")

    async def propose_deal(self, provider_addr: str, params: DealParameters, deal_id: str) -> ProviderAck:
        p = await self._reach(provider_addr, "propose")
        if p.reject_proposals:
            return ProviderAck(False, "provider is not accepting deals")
        if not p.prover.holds(ContentId.parse(params.piece_cid)):
            return ProviderAck(False, "piece data not received")
        if deal_id not in p.deals:
            p.deals[deal_id] = {"piece_cid": params.piece_cid, "polls": 0}
        return ProviderAck(True, proposal_ref=f"{p.provider_id or provider_addr}/{deal_id}")

    async def poll_status(self, provider_addr: str, deal_id: str) -> ProviderStatus:
        p = await self._reach(provider_addr, "poll")
        record = p.deals.get(deal_id)
        if record is None:
            return ProviderStatus(ProviderDealStatus.UNKNOWN)
        if p.fail_sealing:
            return ProviderStatus(ProviderDealStatus.FAILED, "sealing failed")
        record["polls"] += 1
        if record["polls"] >= p.seal_after_polls:
            return ProviderStatus(ProviderDealStatus.ACTIVE)
        return ProviderStatus(ProviderDealStatus.SEALING, extra={"polls": record["polls"]})

    async def fetch_data(
        self, provider_addr: str, piece_cid: str, byte_range: tuple[int, int] | None = None
    ) -> bytes:
        p = await self._reach(provider_addr, "fetch")
        data = p.prover.data(ContentId.parse(piece_cid))
        if p.corrupt_data and data:
            data = bytes([data[0] ^ 0xFF]) + data[1:]
        if byte_range is not None:
            start, end = byte_range
            data = data[start:end]
        return data

    async def request_possession_proof(
        self, provider_addr: str, piece_cid: str, challenge_seed: bytes, count: int
    ) -> Proof:
        p = await self._reach(provider_addr, "prove")
        proof = p.prover.prove(ContentId.parse(piece_cid), challenge_seed, count)
        if p.forge_proofs and proof.samples:
            sample = proof.samples[0]
            sample.leaf_value = bytes([sample.leaf_value[0] ^ 0x01]) + sample.leaf_value[1:]
        proof.sign(p.key)
        # Proofs cross the wire as JSON.
        return Proof.from_dict(proof.to_dict())
