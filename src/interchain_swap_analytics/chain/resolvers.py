"""Per-chain block timestamp resolvers.

Each chain family talks to its RPC differently:

- ``IndexedChainResolver``: web3 client against an indexing provider (Alchemy),
  reading the block's ``timestamp`` field.
- ``StarknetResolver``: raw JSON-RPC ``starknet_getBlockWithTxs`` with a decimal
  ``{"block_number": n}`` parameter object.
- ``EthJsonRpcResolver``: raw JSON-RPC ``eth_getBlockByNumber`` with a hex block
  number, returning a hex timestamp.
- ``UnsupportedChainResolver``: always unresolved.

Every variant makes at most one attempt per call, bounds it with a timeout,
and absorbs network and decoding failures into ``None``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import BlockNotFound
from web3.providers import AsyncHTTPProvider

from interchain_swap_analytics.chain.timestamps import (
    DEFAULT_DISPLAY_UTC_OFFSET,
    epoch_to_display_time,
)

logger = logging.getLogger(__name__)

DEFAULT_RPC_TIMEOUT_SECONDS = 15.0


class ChainFamily(str, Enum):
    """Wire-protocol family a chain's resolver belongs to."""

    INDEXED = "indexed"
    STARKNET = "starknet"
    ETH_JSON_RPC = "eth_json_rpc"
    UNSUPPORTED = "unsupported"


class RpcResponseError(Exception):
    """Raised when a JSON-RPC endpoint answers with an error object."""


class BlockTimeResolver(ABC):
    """Resolves block numbers of one chain into display-offset timestamps."""

    family: ClassVar[ChainFamily]

    def __init__(
        self,
        chain_id: str,
        *,
        timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS,
        utc_offset: timedelta = DEFAULT_DISPLAY_UTC_OFFSET,
    ) -> None:
        self.chain_id = chain_id
        self._timeout = timeout_seconds
        self._utc_offset = utc_offset

    async def resolve_block_time(self, block_number: int | None) -> datetime | None:
        """Return the block's creation time, or None if it cannot be resolved."""
        if not block_number:
            return None

        try:
            seconds = await asyncio.wait_for(
                self._fetch_block_timestamp(int(block_number)),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.warning(
                "Timed out after %.1fs fetching block %s for chain %s",
                self._timeout,
                block_number,
                self.chain_id,
            )
            return None
        except Exception as e:
            logger.warning("Error fetching block %s for chain %s: %s", block_number, self.chain_id, e)
            return None

        if not seconds:
            logger.info("Block %s not found for chain %s", block_number, self.chain_id)
            return None

        try:
            return epoch_to_display_time(seconds, self._utc_offset)
        except (ValueError, OverflowError, OSError) as e:
            logger.warning(
                "Invalid timestamp %r for block %s on chain %s: %s",
                seconds,
                block_number,
                self.chain_id,
                e,
            )
            return None

    @abstractmethod
    async def _fetch_block_timestamp(self, block_number: int) -> int | None:
        """Fetch the block's epoch-seconds timestamp; None if the block is unknown."""

    async def aclose(self) -> None:
        """Release network resources held by the resolver."""
        return None


class IndexedChainResolver(BlockTimeResolver):
    """EVM chains served by an indexing provider, queried through web3."""

    family = ChainFamily.INDEXED

    def __init__(
        self,
        chain_id: str,
        rpc_url: str,
        *,
        web3: AsyncWeb3[Any] | None = None,
        timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS,
        utc_offset: timedelta = DEFAULT_DISPLAY_UTC_OFFSET,
    ) -> None:
        super().__init__(chain_id, timeout_seconds=timeout_seconds, utc_offset=utc_offset)
        self._rpc_url = rpc_url
        self._w3 = web3 or AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout_seconds)})
        )

    async def _fetch_block_timestamp(self, block_number: int) -> int | None:
        try:
            block = await self._w3.eth.get_block(block_number)
        except BlockNotFound:
            return None
        if not block:
            return None
        timestamp = block.get("timestamp")
        return int(timestamp) if timestamp is not None else None

    async def aclose(self) -> None:
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if not callable(disconnect):
            return
        try:
            result = disconnect()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning("Failed to close RPC provider session for %s: %s", self.chain_id, e)


class _JsonRpcResolver(BlockTimeResolver):
    """Shared aiohttp transport for raw JSON-RPC resolvers."""

    def __init__(
        self,
        chain_id: str,
        rpc_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS,
        utc_offset: timedelta = DEFAULT_DISPLAY_UTC_OFFSET,
    ) -> None:
        super().__init__(chain_id, timeout_seconds=timeout_seconds, utc_offset=utc_offset)
        self._rpc_url = rpc_url
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
            self._owns_session = True
        return self._session

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        session = self._get_session()
        async with session.post(self._rpc_url, json=payload) as response:
            response.raise_for_status()
            data = await response.json(content_type=None)
        if not isinstance(data, dict):
            raise RpcResponseError(f"{method} returned a non-object response")
        if data.get("error"):
            raise RpcResponseError(f"{method} failed: {data['error']}")
        return data.get("result")

    async def aclose(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


class StarknetResolver(_JsonRpcResolver):
    """Starknet: block number sent as a decimal ``block_number`` object."""

    family = ChainFamily.STARKNET

    async def _fetch_block_timestamp(self, block_number: int) -> int | None:
        result = await self._call("starknet_getBlockWithTxs", [{"block_number": block_number}])
        if not result or not result.get("timestamp"):
            return None
        return int(result["timestamp"])


class EthJsonRpcResolver(_JsonRpcResolver):
    """EVM JSON-RPC: hex-encoded block number in, hex timestamp out."""

    family = ChainFamily.ETH_JSON_RPC

    async def _fetch_block_timestamp(self, block_number: int) -> int | None:
        result = await self._call("eth_getBlockByNumber", [hex(block_number), False])
        if not result or not result.get("timestamp"):
            return None
        return int(result["timestamp"], 16)


class UnsupportedChainResolver(BlockTimeResolver):
    """Fallback for chains without a configured resolver."""

    family = ChainFamily.UNSUPPORTED

    async def resolve_block_time(self, block_number: int | None) -> datetime | None:
        logger.info("Chain %s not supported for timestamp fetching (block %s)", self.chain_id, block_number)
        return None

    async def _fetch_block_timestamp(self, block_number: int) -> int | None:  # noqa: ARG002
        return None
