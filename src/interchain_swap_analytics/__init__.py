"""Interchain Swap Analytics.

Mirrors completed cross-chain swap orders into an analytics store, backfills
block timestamps from chain RPCs, and reports per-stage timing statistics.
"""

__version__ = "0.1.0"
