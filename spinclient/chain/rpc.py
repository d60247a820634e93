"""Async JSON-RPC 2.0 transport over httpx."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import httpx

from spinclient.core.errors import RpcError

logger = logging.getLogger(__name__)


class RpcClient:
    """Minimal async JSON-RPC client for an Ethereum node or wallet endpoint.

    Usage::

        async with RpcClient("http://localhost:8545") as rpc:
            chain_id = int(await rpc.request("eth_chainId"), 16)

    Transport errors and HTTP 5xx responses are retried with exponential
    back-off. JSON-RPC error objects are never retried and surface as
    ``RpcError`` carrying the node's code and data.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 0.5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._max_retries = max(1, max_retries)
        self._base_delay = base_delay
        self._ids = itertools.count(1)
        self._client = client or httpx.AsyncClient(
            headers={"Content-Type": "application/json", "User-Agent": "spinclient/0.1.0"},
            timeout=httpx.Timeout(timeout),
        )

    # ── Context manager ──────────────────────────────────────────────

    async def __aenter__(self) -> RpcClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ── Requests ─────────────────────────────────────────────────────

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """Send one JSON-RPC request and return its ``result`` member."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        last_exc: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                resp = await self._client.post(self.url, json=payload)
            except httpx.RequestError as exc:
                last_exc = exc
                if attempt < self._max_retries - 1:
                    await self._backoff(method, attempt, exc)
                continue

            if resp.status_code >= 500 and attempt < self._max_retries - 1:
                last_exc = RpcError(f"HTTP {resp.status_code}")
                await self._backoff(method, attempt, last_exc)
                continue

            try:
                resp.raise_for_status()
                body = resp.json()
            except httpx.HTTPStatusError as exc:
                raise RpcError(f"{method} failed: HTTP {resp.status_code}") from exc
            except ValueError as exc:
                raise RpcError(f"{method} returned a non-JSON response") from exc

            error = body.get("error")
            if error:
                raise RpcError(
                    f"{method} failed: {error.get('message', 'unknown error')}",
                    code=error.get("code"),
                    data=error.get("data"),
                )
            return body.get("result")

        raise RpcError(f"{method} failed after {self._max_retries} attempts: {last_exc}")

    async def _backoff(self, method: str, attempt: int, exc: Exception) -> None:
        delay = self._base_delay * (2 ** attempt)
        logger.warning(
            "Transient error in %s (attempt %d/%d), retrying in %.1fs: %s",
            method, attempt + 1, self._max_retries, delay, exc,
        )
        await asyncio.sleep(delay)
