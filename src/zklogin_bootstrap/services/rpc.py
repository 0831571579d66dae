# src/zklogin_bootstrap/services/rpc.py
"""Sui JSON-RPC client.

Only the calls the session lifecycle needs: balances for display, the current
epoch for expiry checks, and dry-run / execution of signed transactions.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import httpx

from zklogin_bootstrap.core.errors import RpcError
from zklogin_bootstrap.core.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_EXECUTE_REQUEST_TYPE = "WaitForLocalExecution"


class SuiRpcClient:
    """Direct JSON-RPC client for a Sui fullnode."""

    def __init__(
        self,
        rpc_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url or settings.effective_rpc_url
        self._timeout = timeout_seconds or settings.rpc_timeout_seconds
        self._transport = transport
        self._ids = itertools.count(1)
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout),
                    transport=self._transport,
                )
        return self._client

    async def call(self, method: str, params: list[Any]) -> Any:
        """Execute a raw RPC call and return its ``result``.

        Raises:
            RpcError: on transport failure, non-2xx status or an RPC error object.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        client = await self._ensure_client()
        try:
            response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as exc:
            raise RpcError(f"RPC request {method} failed: {exc}") from exc

        if not response.is_success:
            raise RpcError(f"RPC request {method} failed with HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise RpcError(f"RPC response for {method} is not JSON") from exc

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            message = error.get("message", "RPC error") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            logger.error("RPC error from %s: %s", method, message)
            raise RpcError(message, code=code)

        return body.get("result") if isinstance(body, dict) else None

    # ===== Balance Operations =====

    async def get_all_balances(self, address: str) -> list[dict[str, Any]]:
        """Return every coin balance owned by ``address``."""
        result = await self.call("suix_getAllBalances", [address])
        return list(result or [])

    # ===== Epoch Operations =====

    async def get_current_epoch(self) -> int:
        """Return the chain's current epoch number."""
        result = await self.call("suix_getLatestSuiSystemState", [])
        try:
            return int(result["epoch"])
        except (TypeError, KeyError, ValueError) as exc:
            raise RpcError("System state response does not contain an epoch") from exc

    # ===== Transaction Operations =====

    async def dry_run_transaction_block(self, tx_bytes: str) -> dict[str, Any]:
        """Simulate ``tx_bytes`` without committing."""
        return await self.call("sui_dryRunTransactionBlock", [tx_bytes])

    async def execute_transaction_block(
        self,
        tx_bytes: str,
        signatures: list[str],
        options: dict[str, bool] | None = None,
        request_type: str = DEFAULT_EXECUTE_REQUEST_TYPE,
    ) -> dict[str, Any]:
        """Submit signed transaction bytes."""
        return await self.call(
            "sui_executeTransactionBlock",
            [tx_bytes, signatures, options or {}, request_type],
        )

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
