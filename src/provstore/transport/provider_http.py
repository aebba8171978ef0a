"""HTTP provider transport.

Each provider address is the base URL of its deal endpoint::

    PUT  {addr}/pieces/{piece_cid}          piece bytes
    POST {addr}/deals                       {"deal_id", "params"}
    GET  {addr}/deals/{deal_id}             {"status", "message"}
    GET  {addr}/pieces/{piece_cid}          piece bytes (Range supported)
    POST {addr}/pieces/{piece_cid}/prove    {"seed", "count"} -> proof JSON
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from ..core.config import get_config
from ..core.exceptions import MalformedInput, NotFound, ProviderRejected, TransientNetworkError
from ..optimizer.models import DealParameters
from ..proofs.models import Proof
from ..deals.interfaces import ProviderAck, ProviderDealStatus, ProviderStatus

logger = logging.getLogger(__name__)


class HttpProviderTransport:
    """ProviderTransport that speaks JSON over HTTP to each provider."""

    def __init__(self, timeout: float | None = None, session: aiohttp.ClientSession | None = None):
        self.timeout = timeout or get_config().call_timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> HttpProviderTransport:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        raw: bool = False,
    ) -> Any:
        session = await self._get_session()
        try:
            async with session.request(
                method,
                url,
                json=json,
                data=data,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status >= 500 or resp.status == 429:
                    raise TransientNetworkError(f"{method} {url}: HTTP {resp.status}")
                if resp.status == 404:
                    raise NotFound(f"{method} {url}: not found")
                if resp.status >= 400:
                    raise ProviderRejected(
                        f"{method} {url}: HTTP {resp.status}", {"body": (await resp.text())[:500]}
                    )
                if raw:
                    return await resp.read()
                if resp.content_length == 0:
                    return None
                return await resp.json()
        except aiohttp.ClientResponseError as e:
            raise MalformedInput(f"{method} {url}: bad response: {e}") from e
        except aiohttp.ClientError as e:
            raise TransientNetworkError(f"{method} {url}: connection error: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"{method} {url}: request timeout") from e

    @staticmethod
    def _url(provider_addr: str, *parts: str) -> str:
        return "/".join([provider_addr.rstrip("/"), *parts])

    async def push_data(self, provider_addr: str, piece_cid: str, data: bytes) -> None:
        await self._request(
            "PUT",
            self._url(provider_addr, "pieces", piece_cid),
            data=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        logger.debug(f"Pushed {len(data)} bytes of {piece_cid} to {provider_addr}")

    async def propose_deal(self, provider_addr: str, params: DealParameters, deal_id: str) -> ProviderAck:
        try:
            body = await self._request(
                "POST", self._url(provider_addr, "deals"), json={"deal_id": deal_id, "params": params.to_dict()}
            )
        except ProviderRejected as e:
            return ProviderAck(False, e.message)
        body = body or {}
        return ProviderAck(
            accepted=bool(body.get("accepted", False)),
            message=body.get("message", ""),
            proposal_ref=body.get("proposal_ref"),
        )

    async def poll_status(self, provider_addr: str, deal_id: str) -> ProviderStatus:
        try:
            body = await self._request("GET", self._url(provider_addr, "deals", deal_id))
        except NotFound:
            return ProviderStatus(ProviderDealStatus.UNKNOWN)
        body = body or {}
        try:
            status = ProviderDealStatus(body.get("status", "unknown"))
        except ValueError:
            status = ProviderDealStatus.UNKNOWN
        extra = {k: v for k, v in body.items() if k not in ("status", "message")}
        return ProviderStatus(status, body.get("message", ""), extra)

    async def fetch_data(
        self, provider_addr: str, piece_cid: str, byte_range: tuple[int, int] | None = None
    ) -> bytes:
        headers = None
        if byte_range is not None:
            start, end = byte_range
            headers = {"Range": f"bytes={start}-{end - 1}"}
        return await self._request("GET", self._url(provider_addr, "pieces", piece_cid), headers=headers, raw=True)

    async def request_possession_proof(
        self, provider_addr: str, piece_cid: str, challenge_seed: bytes, count: int
    ) -> Proof:
        body = await self._request(
            "POST",
            self._url(provider_addr, "pieces", piece_cid, "prove"),
            json={"seed": challenge_seed.hex(), "count": count},
        )
        try:
            return Proof.from_dict(body)
        except (KeyError, ValueError, TypeError) as e:
            raise MalformedInput(f"Provider {provider_addr} returned an unreadable proof: {e}") from e
