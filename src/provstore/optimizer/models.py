"""Provider catalog entries and the deal parameters the optimizer produces."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from ..core import defaults


@dataclass(frozen=True)
class StorageProvider:
    """One storage provider as listed in the catalog.

    Prices are attoFIL per GiB per epoch. ``reliability`` is the provider's
    historical success rate in ``[0, 1]``.
    """

    provider_id: str
    address: str
    price_per_gib_epoch: int
    verified_price_per_gib_epoch: int | None = None
    region: str = ""
    reliability: float = 1.0
    min_piece_size: int = 256
    max_piece_size: int = 32 * defaults.GIB
    active: bool = True

    def price_for(self, verified: bool) -> int | None:
        """Per-GiB epoch price for the deal type, or None if not offered."""
        if verified:
            return self.verified_price_per_gib_epoch
        return self.price_per_gib_epoch

    def accepts(self, padded_size: int, verified: bool = False) -> bool:
        return (
            self.active
            and self.min_piece_size <= padded_size <= self.max_piece_size
            and self.price_for(verified) is not None
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> StorageProvider:
        return cls(
            provider_id=d["provider_id"],
            address=d.get("address", ""),
            price_per_gib_epoch=int(d["price_per_gib_epoch"]),
            verified_price_per_gib_epoch=(
                int(d["verified_price_per_gib_epoch"])
                if d.get("verified_price_per_gib_epoch") is not None
                else None
            ),
            region=d.get("region", ""),
            reliability=float(d.get("reliability", 1.0)),
            min_piece_size=int(d.get("min_piece_size", 256)),
            max_piece_size=int(d.get("max_piece_size", 32 * defaults.GIB)),
            active=bool(d.get("active", True)),
        )


@dataclass(frozen=True)
class DealParameters:
    """Terms for one replica deal. Immutable once proposed."""

    dataset_id: str
    piece_cid: str
    raw_size: int
    padded_size: int
    provider: str
    provider_address: str
    price_per_epoch: int
    duration_epochs: int
    verified: bool
    replication_factor: int
    replica_index: int = 0

    @property
    def total_cost(self) -> int:
        """Total attoFIL over the whole duration."""
        return self.price_per_epoch * self.duration_epochs

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["total_cost"] = str(self.total_cost)
        d["price_per_epoch"] = str(self.price_per_epoch)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> DealParameters:
        return cls(
            dataset_id=d["dataset_id"],
            piece_cid=d["piece_cid"],
            raw_size=int(d["raw_size"]),
            padded_size=int(d["padded_size"]),
            provider=d["provider"],
            provider_address=d.get("provider_address", ""),
            price_per_epoch=int(d["price_per_epoch"]),
            duration_epochs=int(d["duration_epochs"]),
            verified=bool(d["verified"]),
            replication_factor=int(d["replication_factor"]),
            replica_index=int(d.get("replica_index", 0)),
        )
