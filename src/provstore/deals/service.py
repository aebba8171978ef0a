"""Caller-facing API: store a dataset, inspect, verify and renew its deals."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Iterable

from ..archive.builder import build_archive
from ..archive.car import parse_archive, serialize_archive
from ..archive.extract import extract_file
from ..archive.models import Archive
from ..archive.piece import PieceCommitment, piece_commitment
from ..core.exceptions import CorruptArchive, NotFound
from ..core.log import short_cid
from ..optimizer.models import DealParameters, StorageProvider
from ..optimizer.optimize import optimize
from .manager import DealManager, VerificationResult
from .models import Deal

logger = logging.getLogger(__name__)


@dataclass
class PreparedDataset:
    """Archive, serialized bytes and commitment for one dataset version."""

    archive: Archive
    car_bytes: bytes
    commitment: PieceCommitment

    @property
    def root(self) -> str:
        return str(self.archive.root)


def _seal(archive: Archive) -> PreparedDataset:
    car_bytes = serialize_archive(archive)
    return PreparedDataset(archive, car_bytes, piece_commitment(car_bytes))


class StorageService:
    """Entry point used by the surrounding application.

    Archive building and commitment run on the manager's worker pool;
    prepared datasets are cached by root CID, so storing the same content
    twice reuses the earlier work.
    """

    def __init__(self, manager: DealManager, catalog: Iterable[StorageProvider]):
        self.manager = manager
        self.catalog = list(catalog)
        self._prepared: dict[str, PreparedDataset] = {}

    @property
    def config(self):
        return self.manager.config

    async def prepare(self, paths: str | Path | Iterable[str | Path]) -> PreparedDataset:
        """Build (or fetch from cache) the archive and piece commitment for ``paths``."""
        if isinstance(paths, (str, Path)):
            paths = [paths]
        path_list = [str(p) for p in paths]
        archive = await self.manager.pool.run(build_archive, path_list, self.config.chunk_size, self.config.fanout)
        cached = self._prepared.get(str(archive.root))
        if cached is not None:
            logger.debug(f"Dataset {short_cid(archive.root)} already prepared")
            return cached
        prepared = await self.manager.pool.run(_seal, archive)
        self._prepared[prepared.root] = prepared
        logger.info(
            f"Prepared dataset {short_cid(prepared.root)}: {len(prepared.car_bytes)} bytes, "
            f"piece {short_cid(prepared.commitment.cid)}"
        )
        return prepared

    async def store_dataset(
        self,
        paths: str | Path | Iterable[str | Path],
        budget_fil: Decimal | int | float | str,
        min_replicas: int,
        *,
        dataset_id: str | None = None,
        duration_epochs: int | None = None,
        verified: bool = False,
        max_replicas: int | None = None,
    ) -> list[DealParameters]:
        """Archive ``paths``, choose providers within budget and propose one deal per replica.

        Raises MalformedInput, PayloadTooLarge or BudgetInfeasible before
        anything is sent. Deals that a provider refuses come back FAILED in
        the registry; they are not retried here.

        Every replica proposal runs to completion before the first unexpected
        error, if any, is re-raised. Proposing the same dataset again reuses
        replica slots that still hold a live deal.
        """
        prepared = await self.prepare(paths)
        dataset_id = dataset_id or prepared.root
        plan = optimize(
            len(prepared.car_bytes),
            budget_fil,
            min_replicas,
            self.catalog,
            durations=[duration_epochs] if duration_epochs else None,
            max_replicas=max_replicas,
            verified=verified,
            dataset_id=dataset_id,
            piece_cid=str(prepared.commitment.cid),
            padded_size=prepared.commitment.padded_size,
        )

        outcomes = await asyncio.gather(
            *(self.manager.propose_deal(p, prepared.commitment, prepared.car_bytes) for p in plan),
            return_exceptions=True,
        )
        errors = [o for o in outcomes if isinstance(o, BaseException)]
        for error in errors:
            logger.error(f"Proposal for dataset {short_cid(dataset_id)} raised {error!r}")
        if errors:
            raise errors[0]
        return plan

    async def get_deal_status(self, deal_id: str) -> Deal:
        return await self.manager.get_deal(deal_id)

    async def get_deals(self, dataset_id: str) -> list[Deal]:
        return await self.manager.deals_for_dataset(dataset_id)

    async def verify_deal(self, deal_id: str) -> VerificationResult:
        return await self.manager.verify_deal(deal_id)

    async def renew_deal(self, deal_id: str, extra_epochs: int) -> Deal:
        return await self.manager.renew_deal(deal_id, extra_epochs)

    async def retrieve_dataset(self, deal_id: str, path: str | None = None) -> Archive | bytes:
        """Fetch a deal's piece from its provider and check it against the commitment.

        Returns the parsed archive, or one file's bytes if ``path`` is given.
        Raises CorruptArchive if the provider returns data that does not
        match what was stored.
        """
        deal = await self.manager.get_deal(deal_id)
        if not deal.piece_root:
            raise NotFound(f"Deal {deal_id} has no recorded piece commitment")
        data = await self.manager.network_call(
            f"fetch piece for {deal_id}",
            lambda: self.manager.transport.fetch_data(deal.params.provider_address, deal.piece_cid, None),
        )
        commitment = await self.manager.pool.run(piece_commitment, data)
        if commitment.root.hex() != deal.piece_root or len(data) != deal.params.raw_size:
            raise CorruptArchive(
                f"Data from {deal.provider} does not match piece {deal.piece_cid}",
                {"deal_id": deal_id, "provider": deal.provider},
            )
        archive = parse_archive(data)
        if path is None:
            return archive
        return extract_file(archive, path)
