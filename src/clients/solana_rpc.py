"""Solana JSON-RPC client: the reads the bundler needs before building.

Thin by intent: account data, blockhash, slot, balances, token supply and
lookup table read-back. Transient HTTP failures are retried a couple of
times; anything left over surfaces as TransportError. An absent account is
not an error here, callers get None and decide (usually via RetryPolicy).
"""

from __future__ import annotations

import asyncio
import base64
import itertools

import httpx
from loguru import logger
from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.bundler.errors import TransportError
from src.clients.rate_limiter import RateLimiter
from src.programs.address_lookup_table import decode_lookup_table

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]

# getTokenAccountBalance on a missing account is a JSON-RPC error, not a null.
_MISSING_ACCOUNT_CODES = frozenset({-32602})


class SolanaRpcClient:
    """Rate-limited async JSON-RPC client."""

    def __init__(
        self,
        rpc_url: str,
        *,
        max_rps: float = 10.0,
        commitment: str = "confirmed",
        timeout: float = 30.0,
    ) -> None:
        self._url = rpc_url
        self._commitment = commitment
        self._rate_limiter = RateLimiter(max_rps)
        self._client = httpx.AsyncClient(timeout=timeout, headers={"Content-Type": "application/json"})
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list | None = None) -> dict:
        """One JSON-RPC round trip. Returns the full response body."""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}

        for attempt in range(MAX_RETRIES + 1):
            await self._rate_limiter.acquire()
            try:
                response = await self._client.post(self._url, json=payload)
                if response.status_code == 429 or response.status_code >= 500:
                    if attempt < MAX_RETRIES:
                        logger.debug(f"[RPC] {method} HTTP {response.status_code}, retrying")
                        await asyncio.sleep(RETRY_DELAYS[attempt])
                        continue
                    raise TransportError(f"{method}: HTTP {response.status_code}")
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                raise TransportError(
                    f"{method}: HTTP {e.response.status_code}: {e.response.text[:200]}"
                ) from e
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    logger.debug(f"[RPC] {method} {type(e).__name__}, retry in {RETRY_DELAYS[attempt]}s")
                    await asyncio.sleep(RETRY_DELAYS[attempt])
                    continue
                raise TransportError(f"{method} failed after {MAX_RETRIES + 1} attempts: {e}") from e
            except httpx.RequestError as e:
                raise TransportError(f"{method} failed: {e}") from e
        raise TransportError(f"{method}: max retries exceeded")

    async def _result(self, method: str, params: list | None = None):
        data = await self._call(method, params)
        if "error" in data:
            error = data["error"]
            raise TransportError(
                f"{method}: RPC error {error.get('code', '?')}: {error.get('message', error)}"
            )
        return data.get("result")

    # ─── Accounts ────────────────────────────────────────────────────

    async def get_account(self, address: Pubkey) -> bytes | None:
        """Raw account data, or None when the account does not exist."""
        result = await self._result(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self._commitment}],
        )
        value = (result or {}).get("value")
        if not value:
            return None
        return base64.b64decode(value["data"][0])

    async def get_balance(self, address: Pubkey) -> int:
        result = await self._result("getBalance", [str(address), {"commitment": self._commitment}])
        return int(result["value"])

    async def get_token_balance(self, token_account: Pubkey) -> int | None:
        """Raw token amount held, or None when the token account does not exist."""
        data = await self._call(
            "getTokenAccountBalance", [str(token_account), {"commitment": self._commitment}]
        )
        if "error" in data:
            error = data["error"]
            if error.get("code") in _MISSING_ACCOUNT_CODES:
                return None
            raise TransportError(
                f"getTokenAccountBalance: RPC error {error.get('code', '?')}: {error.get('message', error)}"
            )
        return int(data["result"]["value"]["amount"])

    async def get_token_supply(self, mint: Pubkey) -> int:
        result = await self._result("getTokenSupply", [str(mint), {"commitment": self._commitment}])
        return int(result["value"]["amount"])

    async def get_address_lookup_table(self, address: Pubkey) -> AddressLookupTableAccount | None:
        raw = await self.get_account(address)
        if raw is None:
            return None
        table = decode_lookup_table(address, raw)
        if table is None:
            logger.warning(f"[RPC] {address} exists but is not a lookup table ({len(raw)} bytes)")
        return table

    # ─── Cluster ─────────────────────────────────────────────────────

    async def get_latest_blockhash(self, commitment: str = "finalized") -> Hash:
        result = await self._result("getLatestBlockhash", [{"commitment": commitment}])
        return Hash.from_string(result["value"]["blockhash"])

    async def get_slot(self, commitment: str = "finalized") -> int:
        result = await self._result("getSlot", [{"commitment": commitment}])
        return int(result)

    async def close(self) -> None:
        await self._client.aclose()
