"""Deal records, lifecycle states and the append-only audit trail."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from ..core.exceptions import InvalidTransition
from ..optimizer.models import DealParameters


class DealState(StrEnum):
    """Lifecycle state of one replica deal."""

    DRAFTED = "drafted"  # parameters computed, nothing submitted
    PROPOSED = "proposed"  # proposal transaction submitted
    PUBLISHING = "publishing"  # on chain, waiting for sealing
    ACTIVE = "active"
    EXPIRING = "expiring"
    RENEWED = "renewed"  # live again under a later expiry
    EXPIRED = "expired"
    FAILED = "failed"


TRANSITIONS: dict[DealState, frozenset[DealState]] = {
    DealState.DRAFTED: frozenset({DealState.PROPOSED, DealState.FAILED}),
    DealState.PROPOSED: frozenset({DealState.PUBLISHING, DealState.FAILED}),
    DealState.PUBLISHING: frozenset({DealState.ACTIVE, DealState.FAILED}),
    DealState.ACTIVE: frozenset({DealState.EXPIRING, DealState.RENEWED, DealState.FAILED}),
    DealState.EXPIRING: frozenset({DealState.RENEWED, DealState.EXPIRED, DealState.FAILED}),
    DealState.RENEWED: frozenset({DealState.EXPIRING, DealState.RENEWED, DealState.FAILED}),
    DealState.EXPIRED: frozenset(),
    DealState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({DealState.EXPIRED, DealState.FAILED})
LIVE_STATES = frozenset({DealState.ACTIVE, DealState.EXPIRING, DealState.RENEWED})


def can_transition(from_state: DealState, to_state: DealState) -> bool:
    return to_state in TRANSITIONS[from_state]


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


@dataclass(frozen=True)
class AuditEntry:
    """One recorded transition."""

    at: datetime
    from_state: DealState | None
    to_state: DealState
    cause: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "at": self.at.isoformat(),
            "from_state": self.from_state.value if self.from_state else None,
            "to_state": self.to_state.value,
            "cause": self.cause,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AuditEntry:
        return cls(
            at=_parse_dt(d["at"]),
            from_state=DealState(d["from_state"]) if d.get("from_state") else None,
            to_state=DealState(d["to_state"]),
            cause=d.get("cause", ""),
            details=d.get("details", {}),
        )


@dataclass
class Deal:
    """One replica deal, owned by the deal manager.

    Only :meth:`transition` changes ``state``, and every change appends to
    ``audit``; entries are never rewritten.
    """

    deal_id: str
    params: DealParameters
    state: DealState = DealState.DRAFTED
    proposed_at: datetime | None = None
    activated_at: datetime | None = None
    expires_at: datetime | None = None
    last_verified_at: datetime | None = None
    transaction_ref: str | None = None
    chain_deal_id: int | None = None
    piece_root: str | None = None  # hex commitment root, for possession checks
    consecutive_failures: int = 0
    renew_on_expiry: bool = False
    audit: list[AuditEntry] = field(default_factory=list)

    @property
    def dataset_id(self) -> str:
        return self.params.dataset_id

    @property
    def piece_cid(self) -> str:
        return self.params.piece_cid

    @property
    def provider(self) -> str:
        return self.params.provider

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES

    def transition(
        self,
        to_state: DealState,
        at: datetime,
        cause: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        if not can_transition(self.state, to_state):
            raise InvalidTransition(self.deal_id, self.state.value, to_state.value)
        entry = AuditEntry(at=at, from_state=self.state, to_state=to_state, cause=cause, details=details or {})
        self.audit.append(entry)
        self.state = to_state
        return entry

    def record(self, at: datetime, cause: str, details: dict[str, Any] | None = None) -> AuditEntry:
        """Append a non-transition event (e.g. a verification result)."""
        entry = AuditEntry(at=at, from_state=self.state, to_state=self.state, cause=cause, details=details or {})
        self.audit.append(entry)
        return entry

    def to_dict(self) -> dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "params": self.params.to_dict(),
            "state": self.state.value,
            "proposed_at": _iso(self.proposed_at),
            "activated_at": _iso(self.activated_at),
            "expires_at": _iso(self.expires_at),
            "last_verified_at": _iso(self.last_verified_at),
            "transaction_ref": self.transaction_ref,
            "chain_deal_id": self.chain_deal_id,
            "piece_root": self.piece_root,
            "consecutive_failures": self.consecutive_failures,
            "renew_on_expiry": self.renew_on_expiry,
            "audit": [e.to_dict() for e in self.audit],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Deal:
        return cls(
            deal_id=d["deal_id"],
            params=DealParameters.from_dict(d["params"]),
            state=DealState(d["state"]),
            proposed_at=_parse_dt(d.get("proposed_at")),
            activated_at=_parse_dt(d.get("activated_at")),
            expires_at=_parse_dt(d.get("expires_at")),
            last_verified_at=_parse_dt(d.get("last_verified_at")),
            transaction_ref=d.get("transaction_ref"),
            chain_deal_id=d.get("chain_deal_id"),
            piece_root=d.get("piece_root"),
            consecutive_failures=d.get("consecutive_failures", 0),
            renew_on_expiry=d.get("renew_on_expiry", False),
            audit=[AuditEntry.from_dict(e) for e in d.get("audit", [])],
        )

    def copy(self) -> Deal:
        """Independent snapshot, so callers never hold the manager's live record."""
        return Deal.from_dict(self.to_dict())
