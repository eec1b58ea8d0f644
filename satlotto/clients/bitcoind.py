from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import requests

from ..errors import BlockNotAvailable, ChainOracleError
from .base import ChainOracle

# bitcoind error code for "Block height out of range"
RPC_INVALID_PARAMETER = -8


@dataclass(frozen=True)
class BitcoindClientConfig:
    url: str
    username: str = ""
    password: str = field(default="", repr=False)
    timeout_seconds: int = 10


class BitcoindChainOracle(ChainOracle):
    """Chain oracle backed by bitcoind's JSON-RPC interface."""

    def __init__(
        self,
        config: BitcoindClientConfig,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        if config.username:
            self._session.auth = (config.username, config.password)
        self._ids = itertools.count(1)
        self._logger = logger or logging.getLogger("satlotto.clients.bitcoind")

    async def get_block_count(self) -> int:
        result = await asyncio.to_thread(self._call, "getblockcount", ())
        return int(result)

    async def get_block_hash(self, height: int) -> str:
        if height < 0:
            raise ValueError("block height must not be negative")
        try:
            result = await asyncio.to_thread(self._call, "getblockhash", (height,))
        except _RpcError as exc:
            if exc.code == RPC_INVALID_PARAMETER:
                raise BlockNotAvailable(height) from exc
            raise ChainOracleError(str(exc)) from exc
        if not isinstance(result, str) or len(result) != 64:
            raise ChainOracleError(f"getblockhash returned malformed hash for {height}")
        return result

    async def close(self) -> None:
        self._session.close()

    def _call(self, method: str, params: Sequence[Any]) -> Any:
        payload = {
            "jsonrpc": "1.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }
        try:
            resp = self._session.post(self._config.url, json=payload, timeout=self._config.timeout_seconds)
        except requests.RequestException as exc:
            raise ChainOracleError(f"bitcoind {method} failed: {exc}") from exc

        # bitcoind answers RPC-level errors with HTTP 404/500 and a JSON body.
        try:
            data = resp.json()
        except ValueError as exc:
            raise ChainOracleError(f"bitcoind {method} returned HTTP {resp.status_code}") from exc

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            raise _RpcError(method, int(error.get("code", 0)), str(error.get("message", "")))
        if not resp.ok:
            raise ChainOracleError(f"bitcoind {method} returned HTTP {resp.status_code}")
        self._logger.debug("bitcoind %s%s -> %s", method, tuple(params), data.get("result"))
        return data.get("result")


class _RpcError(ChainOracleError):
    def __init__(self, method: str, code: int, message: str) -> None:
        self.method = method
        self.code = code
        super().__init__(f"bitcoind {method} error {code}: {message}")
