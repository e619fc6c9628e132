"""Jito block engine client: sendBundle and bundle status read-back.

Bundles are all-or-nothing: up to 5 base64-encoded transactions that land
together in one slot or not at all. The relay is paid through a plain SOL
transfer to one of its tip accounts inside the bundle itself.
"""

from __future__ import annotations

import asyncio
import itertools

import httpx
from loguru import logger

from src.bundler.errors import TransportError

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]

BUNDLES_PATH = "/api/v1/bundles"

# 8 static Jito tip accounts, these never change
JITO_TIP_ACCOUNTS: tuple[str, ...] = (
    "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
    "HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe",
    "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
    "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
    "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
    "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
    "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
    "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
)


class BlockEngineError(TransportError):
    """The relay answered with a JSON-RPC error. ``message`` is its text verbatim."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class BlockEngineClient:
    def __init__(self, block_engine_url: str, *, timeout: float = 15.0) -> None:
        self._url = block_engine_url.rstrip("/") + BUNDLES_PATH
        self._client = httpx.AsyncClient(timeout=timeout, headers={"Content-Type": "application/json"})
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list):
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self._client.post(self._url, json=payload)
                if response.status_code == 429 and attempt < MAX_RETRIES:
                    logger.debug(f"[JITO] {method} rate limited, retry in {RETRY_DELAYS[attempt]}s")
                    await asyncio.sleep(RETRY_DELAYS[attempt])
                    continue
                data = response.json()
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    logger.debug(f"[JITO] {method} {type(e).__name__}, retry in {RETRY_DELAYS[attempt]}s")
                    await asyncio.sleep(RETRY_DELAYS[attempt])
                    continue
                raise TransportError(f"{method} failed after {MAX_RETRIES + 1} attempts: {e}") from e
            except httpx.RequestError as e:
                raise TransportError(f"{method} failed: {e}") from e
            except ValueError as e:
                raise TransportError(
                    f"{method}: HTTP {response.status_code}, non-JSON body: {response.text[:200]}"
                ) from e

            if not isinstance(data, dict):
                raise TransportError(
                    f"{method}: HTTP {response.status_code}, unexpected body: {str(data)[:200]}"
                )
            if "error" in data:
                error = data["error"]
                if isinstance(error, dict):
                    raise BlockEngineError(str(error.get("message", error)), code=error.get("code"))
                raise BlockEngineError(str(error))
            if response.status_code != 200:
                raise TransportError(f"{method}: HTTP {response.status_code}")
            return data.get("result")

        raise TransportError(f"{method}: max retries exceeded")

    async def send_bundle(self, encoded_transactions: list[str]) -> str:
        """Submit base64 transactions as one bundle. Returns the bundle id.

        Not retried once the relay has answered: a second send of the same
        bundle would race the first.
        """
        result = await self._call("sendBundle", [encoded_transactions, {"encoding": "base64"}])
        if not result:
            raise TransportError("sendBundle: empty result")
        logger.info(f"[JITO] Bundle sent: {result} ({len(encoded_transactions)} txs)")
        return str(result)

    async def get_inflight_bundle_statuses(self, bundle_ids: list[str]) -> dict[str, str]:
        """Map bundle id -> Invalid | Pending | Failed | Landed (last ~5 minutes only)."""
        result = await self._call("getInflightBundleStatuses", [bundle_ids])
        statuses: dict[str, str] = {}
        for entry in (result or {}).get("value", []) or []:
            statuses[entry["bundle_id"]] = entry.get("status", "Invalid")
        return statuses

    async def close(self) -> None:
        await self._client.aclose()
