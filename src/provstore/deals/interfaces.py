"""Interfaces the deal manager depends on but does not implement.

Concrete clients live in :mod:`provstore.transport`; any object with these
coroutine methods works, which is how tests and the simulated network plug in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from ..optimizer.models import DealParameters
from ..proofs.models import Proof
from .models import Deal


@dataclass
class InclusionReceipt:
    """What the ledger reports once a transaction lands in a block."""

    tx_ref: str
    height: int
    success: bool = True
    chain_deal_id: int | None = None
    exit_code: int = 0
    message: str = ""


@dataclass
class ProviderAck:
    accepted: bool
    message: str = ""
    proposal_ref: str | None = None


class ProviderDealStatus(StrEnum):
    """Provider-side view of a deal."""

    UNKNOWN = "unknown"
    ACCEPTED = "accepted"
    SEALING = "sealing"
    ACTIVE = "active"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class ProviderStatus:
    status: ProviderDealStatus
    message: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class LedgerClient(Protocol):
    """Settlement-layer client. Inclusion may be reported more than once."""

    async def submit_transaction(self, payload: dict[str, Any], key: Any) -> str:
        """Sign and submit ``payload``; returns a transaction reference."""
        ...

    async def await_inclusion(self, tx_ref: str, timeout: float) -> InclusionReceipt:
        """Wait until ``tx_ref`` is included. Raises TimeoutError after ``timeout``."""
        ...

    async def read_contract_state(self, address: str, query: str) -> Any:
        ...


@runtime_checkable
class ProviderTransport(Protocol):
    """Network access to storage providers. Treated as unreliable."""

    async def push_data(self, provider_addr: str, piece_cid: str, data: bytes) -> None:
        """Transfer piece bytes to the provider ahead of the proposal."""
        ...

    async def propose_deal(self, provider_addr: str, params: DealParameters, deal_id: str) -> ProviderAck:
        ...

    async def poll_status(self, provider_addr: str, deal_id: str) -> ProviderStatus:
        ...

    async def fetch_data(
        self, provider_addr: str, piece_cid: str, byte_range: tuple[int, int] | None = None
    ) -> bytes:
        ...

    async def request_possession_proof(
        self, provider_addr: str, piece_cid: str, challenge_seed: bytes, count: int
    ) -> Proof:
        ...


@runtime_checkable
class DealRegistry(Protocol):
    """Durable key-value store of deal records keyed by ``deal_id``."""

    async def get(self, deal_id: str) -> Deal | None:
        ...

    async def put(self, deal: Deal) -> None:
        ...

    async def list_by_dataset(self, dataset_id: str) -> list[Deal]:
        ...
