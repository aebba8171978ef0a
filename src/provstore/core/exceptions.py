"""Exception taxonomy for provstore.

Every failure surfaced by the engine is one of these. Policy and input errors
are raised to the caller; network and provider errors are retried or recorded
as deal state transitions by the deal manager.
"""

from __future__ import annotations

from typing import Any


class ProvstoreError(Exception):
    """Base exception for all provstore errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message, "details": self.details}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


# =============================================================================
# INPUT AND POLICY ERRORS
# =============================================================================


class MalformedInput(ProvstoreError):
    """Bad source files, paths or encoded data. Never retried."""

    pass


class EmptyInput(MalformedInput):
    """Empty payload rejected by the configured empty-input policy."""

    pass


class PayloadTooLarge(ProvstoreError):
    """Payload exceeds the largest supported sector size."""

    pass


class BudgetInfeasible(ProvstoreError):
    """No provider combination meets the replica count within the budget."""

    pass


class ConfigError(ProvstoreError):
    """Invalid configuration value."""

    pass


# =============================================================================
# DATA INTEGRITY ERRORS
# =============================================================================


class NotFound(ProvstoreError):
    """Requested path, block or deal does not exist."""

    pass


class CorruptArchive(ProvstoreError):
    """Archive is missing referenced blocks or block bytes do not match their CID."""

    pass


# =============================================================================
# NETWORK AND PROVIDER ERRORS
# =============================================================================


class TransientNetworkError(ProvstoreError):
    """Network call failed in a way that may succeed on retry."""

    pass


class RetryBudgetExhausted(TransientNetworkError):
    """All retry attempts for a network call failed."""

    def __init__(self, message: str, attempts: int, last_error: BaseException | None = None):
        super().__init__(message, {"attempts": attempts, "last_error": str(last_error) if last_error else None})
        self.attempts = attempts
        self.last_error = last_error


class ProviderRejected(ProvstoreError):
    """Provider refused or dropped the deal. Terminal for that deal."""

    pass


class VerificationFailed(ProvstoreError):
    """A possession or inclusion proof did not verify. Terminal for that deal."""

    pass


class InvalidTransition(ProvstoreError):
    """Attempted a deal state transition the lifecycle does not allow."""

    def __init__(self, deal_id: str, from_state: str, to_state: str):
        super().__init__(
            f"Deal {deal_id} cannot move from {from_state} to {to_state}",
            {"deal_id": deal_id, "from": from_state, "to": to_state},
        )
        self.deal_id = deal_id
        self.from_state = from_state
        self.to_state = to_state
