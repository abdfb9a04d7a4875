"""Chain-id dispatch for block timestamp resolution.

Callers resolve through ``ChainTimestampResolver.resolve_block_time`` and never
branch on chain names; adding a chain means registering another resolver.
Resolved block times are optionally cached in Redis since blocks are immutable.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from redis.asyncio import Redis

from interchain_swap_analytics.chain.resolvers import (
    DEFAULT_RPC_TIMEOUT_SECONDS,
    BlockTimeResolver,
    ChainFamily,
    EthJsonRpcResolver,
    IndexedChainResolver,
    StarknetResolver,
    UnsupportedChainResolver,
)
from interchain_swap_analytics.config import ChainRpcSettings

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_CACHE_TTL_SECONDS = 7 * 24 * 3600
DEFAULT_CACHE_KEY_PREFIX = "swap_analytics:blocktime:"

# Chain id -> resolver family for every chain this service knows how to resolve.
KNOWN_CHAINS: dict[str, ChainFamily] = {
    "ethereum_sepolia": ChainFamily.INDEXED,
    "arbitrum_sepolia": ChainFamily.INDEXED,
    "base_sepolia": ChainFamily.INDEXED,
    "starknet_sepolia": ChainFamily.STARKNET,
    "monad_testnet": ChainFamily.ETH_JSON_RPC,
    "hyperliquid_testnet": ChainFamily.ETH_JSON_RPC,
}


class ChainTimestampResolver:
    """Dispatches block lookups to the resolver registered for each chain."""

    def __init__(
        self,
        resolvers: Iterable[BlockTimeResolver] = (),
        *,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_BLOCK_CACHE_TTL_SECONDS,
        key_prefix: str = DEFAULT_CACHE_KEY_PREFIX,
    ) -> None:
        self._resolvers: dict[str, BlockTimeResolver] = {}
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._key_prefix = key_prefix
        for resolver in resolvers:
            self.register(resolver)

    def register(self, resolver: BlockTimeResolver) -> None:
        if resolver.chain_id in self._resolvers:
            logger.warning("Replacing resolver for chain %s", resolver.chain_id)
        self._resolvers[resolver.chain_id] = resolver

    @property
    def chains(self) -> list[str]:
        return sorted(self._resolvers)

    def resolver_for(self, chain_id: str) -> BlockTimeResolver:
        resolver = self._resolvers.get(chain_id)
        if resolver is None:
            return UnsupportedChainResolver(chain_id)
        return resolver

    def _cache_key(self, chain_id: str, block_number: int) -> str:
        return f"{self._key_prefix}{chain_id}:{block_number}"

    async def _get_cached(self, chain_id: str, block_number: int) -> datetime | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(self._cache_key(chain_id, block_number))
            if value is None:
                return None
            if isinstance(value, bytes):
                value = value.decode()
            return datetime.fromisoformat(str(value))
        except Exception as e:
            logger.warning("Cache get failed for %s block %s: %s", chain_id, block_number, e)
            return None

    async def _set_cached(self, chain_id: str, block_number: int, value: datetime) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(
                self._cache_key(chain_id, block_number),
                value.isoformat(),
                ex=self._cache_ttl,
            )
        except Exception as e:
            logger.warning("Cache set failed for %s block %s: %s", chain_id, block_number, e)

    async def resolve_block_time(self, chain_id: str, block_number: int | None) -> datetime | None:
        """Resolve ``block_number`` on ``chain_id``; None when unresolvable."""
        if not block_number:
            return None

        cached = await self._get_cached(chain_id, block_number)
        if cached is not None:
            return cached

        resolved = await self.resolver_for(chain_id).resolve_block_time(block_number)
        if resolved is not None:
            await self._set_cached(chain_id, block_number, resolved)
        return resolved

    async def aclose(self) -> None:
        for resolver in self._resolvers.values():
            await resolver.aclose()
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning("Failed to close Redis client: %s", e)
            self._redis = None


def _with_token(base_url: str, token: str) -> str:
    return f"{base_url}{token}"


def build_chain_resolver(
    settings: ChainRpcSettings,
    *,
    redis: Redis | None = None,
    cache_ttl_seconds: int = DEFAULT_BLOCK_CACHE_TTL_SECONDS,
) -> ChainTimestampResolver:
    """Build the resolver registry for every chain configured in ``settings``."""
    token = settings.token()
    timeout = settings.timeout_seconds or DEFAULT_RPC_TIMEOUT_SECONDS
    offset = timedelta(minutes=settings.display_utc_offset_minutes)

    resolvers: list[BlockTimeResolver] = []
    if token:
        for chain_id, base_url in (
            ("ethereum_sepolia", settings.ethereum_sepolia_url),
            ("arbitrum_sepolia", settings.arbitrum_sepolia_url),
            ("base_sepolia", settings.base_sepolia_url),
        ):
            resolvers.append(
                IndexedChainResolver(
                    chain_id,
                    _with_token(base_url, token),
                    timeout_seconds=timeout,
                    utc_offset=offset,
                )
            )
    else:
        logger.warning("ALCHEMY_TOKEN not set; indexed EVM chains are unsupported")

    if settings.starknet_sepolia_url:
        resolvers.append(
            StarknetResolver(
                "starknet_sepolia",
                _with_token(settings.starknet_sepolia_url, token),
                timeout_seconds=timeout,
                utc_offset=offset,
            )
        )
    if settings.monad_testnet_url:
        resolvers.append(
            EthJsonRpcResolver(
                "monad_testnet",
                _with_token(settings.monad_testnet_url, token),
                timeout_seconds=timeout,
                utc_offset=offset,
            )
        )
    resolvers.append(
        EthJsonRpcResolver(
            "hyperliquid_testnet",
            settings.hyperliquid_testnet_url,
            timeout_seconds=timeout,
            utc_offset=offset,
        )
    )

    registry = ChainTimestampResolver(resolvers, redis=redis, cache_ttl_seconds=cache_ttl_seconds)
    logger.info("Block timestamp resolvers configured for: %s", ", ".join(registry.chains))
    return registry
