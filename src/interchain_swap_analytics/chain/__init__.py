"""Chain layer - block timestamp resolution over chain RPCs."""

from interchain_swap_analytics.chain.registry import (
    KNOWN_CHAINS,
    ChainTimestampResolver,
    build_chain_resolver,
)
from interchain_swap_analytics.chain.resolvers import (
    BlockTimeResolver,
    ChainFamily,
    EthJsonRpcResolver,
    IndexedChainResolver,
    StarknetResolver,
    UnsupportedChainResolver,
)
from interchain_swap_analytics.chain.timestamps import epoch_to_display_time

__all__ = [
    "KNOWN_CHAINS",
    "BlockTimeResolver",
    "ChainFamily",
    "ChainTimestampResolver",
    "EthJsonRpcResolver",
    "IndexedChainResolver",
    "StarknetResolver",
    "UnsupportedChainResolver",
    "build_chain_resolver",
    "epoch_to_display_time",
]
