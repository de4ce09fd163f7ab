"""
dexswap: compile, route and submit single-hop swaps on Solana DEX venues.
"""
from .compiler import SwapRequest, SwapTransactionCompiler, TransactionSkeleton
from .config import TradeConfig, load_config
from .constants import RelayProvider, RelayRegion, SwapDirection, Venue
from .errors import (
    DexSwapError,
    InvalidParameter,
    PoolDiscoveryUnavailable,
    PoolNotFound,
    QuoteComputationFailed,
    RelayConfigurationMissing,
    SubmissionFailed,
)
from .listing_cache import ListingCache, PoolRecord
from .pool_resolver import PoolResolver, ResolvedPool
from .relay import RelayPreferences, RelayRouter, RelaySelection
from .trader import RoutedSwap, SwapTrader

__version__ = "0.1.0"
