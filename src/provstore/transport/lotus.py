"""JSON-RPC ledger client for a Lotus-compatible node.

Only the handful of calls the deal manager needs are wrapped. Connection
problems, timeouts and 5xx responses surface as TransientNetworkError so
the manager's retry policy applies; JSON-RPC error objects are permanent
and raised as ProvstoreError.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
import logging
from typing import Any

import aiohttp
import cbor2

from ..core.config import ProvstoreConfig, get_config
from ..core.exceptions import NotFound, ProvstoreError, TransientNetworkError
from ..deals.interfaces import InclusionReceipt
from ..proofs.signing import canonical_json, public_key_bytes, sign_data

logger = logging.getLogger(__name__)

MARKET_ACTOR = "f05"

# Storage market actor method numbers.
METHOD_NUMBERS = {
    "PublishStorageDeals": 4,
    "ExtendDeal": 8,
}

WAIT_CONFIDENCE = 5


class LotusLedgerClient:
    """LedgerClient over HTTP JSON-RPC.

    Args:
        url: RPC endpoint, e.g. ``http://127.0.0.1:1234/rpc/v1``.
        token: Bearer token with sign permission, if the node requires one.
        wallet: Sending address for messages.
        timeout: Per-request timeout in seconds (``StateWaitMsg`` uses the
            caller's inclusion timeout instead).
    """

    def __init__(
        self,
        url: str,
        token: str | None = None,
        wallet: str = "",
        timeout: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.url = url
        self.token = token
        self.wallet = wallet
        self.timeout = timeout or get_config().call_timeout
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    @classmethod
    def from_config(cls, config: ProvstoreConfig | None = None, wallet: str = "") -> LotusLedgerClient:
        config = config or get_config()
        return cls(config.ledger_rpc_url, config.ledger_token, wallet, config.call_timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> LotusLedgerClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def call(self, method: str, *params: Any, timeout: float | None = None) -> Any:
        """Invoke ``Filecoin.<method>`` and return its ``result``."""
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": f"Filecoin.{method}", "params": list(params)}
        session = await self._get_session()
        try:
            async with session.post(
                self.url,
                json=body,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=timeout or self.timeout),
            ) as resp:
                if resp.status >= 500:
                    raise TransientNetworkError(f"{method}: node returned HTTP {resp.status}")
                if resp.status != 200:
                    raise ProvstoreError(
                        f"{method}: node returned HTTP {resp.status}", {"body": (await resp.text())[:500]}
                    )
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise TransientNetworkError(f"{method}: connection error: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"{method}: request timeout") from e

        if data.get("error"):
            error = data["error"]
            raise ProvstoreError(f"{method}: {error.get('message', 'RPC error')}", {"code": error.get("code")})
        return data.get("result")

    # -------------------------------------------------------------------------
    # LedgerClient
    # -------------------------------------------------------------------------

    async def submit_transaction(self, payload: dict[str, Any], key: Any) -> str:
        method = payload.get("method", "")
        if method not in METHOD_NUMBERS:
            raise ProvstoreError(f"Unsupported ledger method {method!r}")
        params: dict[str, Any] = {"payload": payload}
        if key is not None:
            message = canonical_json(payload)
            params["signature"] = sign_data(message, key).hex()
            params["signer"] = public_key_bytes(key).hex()
        message = {
            "To": MARKET_ACTOR,
            "From": self.wallet,
            "Value": "0",
            "Method": METHOD_NUMBERS[method],
            "Params": base64.b64encode(canonical_json(params)).decode("ascii"),
        }
        signed = await self.call("MpoolPushMessage", message, None)
        tx_ref = signed["CID"]["/"]
        logger.debug(f"Pushed {method} as {tx_ref}")
        return tx_ref

    async def await_inclusion(self, tx_ref: str, timeout: float) -> InclusionReceipt:
        try:
            lookup = await asyncio.wait_for(
                self.call("StateWaitMsg", {"/": tx_ref}, WAIT_CONFIDENCE, timeout=timeout),
                timeout=timeout,
            )
        except TransientNetworkError as e:
            if isinstance(e.__cause__, asyncio.TimeoutError):
                raise TimeoutError(f"{tx_ref} not included within {timeout}s") from e
            raise
        receipt = lookup.get("Receipt") or {}
        exit_code = int(receipt.get("ExitCode", 0))
        return InclusionReceipt(
            tx_ref=tx_ref,
            height=int(lookup.get("Height", 0)),
            success=exit_code == 0,
            chain_deal_id=_first_deal_id(receipt.get("Return")) if exit_code == 0 else None,
            exit_code=exit_code,
        )

    async def read_contract_state(self, address: str, query: str) -> Any:
        if address == "chain" and query == "height":
            head = await self.call("ChainHead")
            return int(head["Height"])
        if query == "beacon":
            head = await self.call("ChainHead")
            entry = await self.call("StateGetBeaconEntry", int(head["Height"]))
            return base64.b64decode(entry["Data"]).hex()
        if address == "market" and query.startswith("deal:"):
            chain_deal_id = int(query.split(":", 1)[1])
            try:
                record = await self.call("StateMarketStorageDeal", chain_deal_id, None)
            except ProvstoreError as e:
                if isinstance(e, TransientNetworkError):
                    raise
                return None
            proposal, state = record.get("Proposal", {}), record.get("State", {})
            return {
                "piece_cid": (proposal.get("PieceCID") or {}).get("/"),
                "provider": proposal.get("Provider"),
                "end_epoch": int(proposal.get("EndEpoch", 0)),
                "sector_start_epoch": int(state.get("SectorStartEpoch", -1)),
                "slash_epoch": int(state.get("SlashEpoch", -1)),
            }
        actor = await self.call("StateReadState", address, None)
        state = (actor or {}).get("State") or {}
        if query not in state:
            raise NotFound(f"No state {query!r} at {address}")
        return state[query]


def _first_deal_id(encoded: str | None) -> int | None:
    """Deal id from a PublishStorageDeals return value (CBOR ``[[ids...], bitfield]``)."""
    if not encoded:
        return None
    try:
        value = cbor2.loads(base64.b64decode(encoded))
    except (cbor2.CBORDecodeError, ValueError):
        logger.warning("Could not decode PublishStorageDeals return value")
        return None
    while isinstance(value, list) and value:
        value = value[0]
    return value if isinstance(value, int) else None
