"""
Pool resolution: pick the best pool for a (target, quote) pair from a venue listing,
then fall back to the venue's on-chain discovery strategies.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Sequence

from .constants import SwapDirection, Venue
from .errors import PoolNotFound
from .listing_cache import ListingCache, ListingFetcher, PoolRecord
from .utils import get_terminal_colors, short_address

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

# A fallback strategy receives (target_mint, quote_mint) and returns a pool address or None
FallbackStrategy = Callable[[str, str], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class ResolvedPool:
    """Pool chosen for one swap call. Never cached."""
    pool_address: str
    asset_mint_in: str
    asset_mint_out: str
    venue_metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def for_direction(self, direction: SwapDirection, target_mint: str, quote_mint: str) -> "ResolvedPool":
        """Orient the pool so ``asset_mint_in`` is what the caller spends."""
        if SwapDirection(direction) == SwapDirection.BUY:
            mint_in, mint_out = quote_mint, target_mint
        else:
            mint_in, mint_out = target_mint, quote_mint
        return ResolvedPool(self.pool_address, mint_in, mint_out, dict(self.venue_metadata))


def pool_score(record: PoolRecord, target_mint: str) -> float:
    """Target-side reserve when the venue reports one, else the pool's liquidity/TVL."""
    target_reserve = record.reserve_a if record.asset_mint_a == target_mint else record.reserve_b
    return target_reserve if target_reserve > 0 else record.liquidity_or_tvl


def resolve(snapshot: Iterable[PoolRecord], target_asset: str, quote_asset: str) -> Optional[ResolvedPool]:
    """
    Select the best pool for a pair from a listing snapshot.
    
    Only exact unordered mint-pair matches are candidates. The highest score wins;
    on equal scores the first candidate in snapshot order is kept.
    
    Args:
        snapshot: Venue listing snapshot
        target_asset: Mint being bought or sold
        quote_asset: Quote mint (WSOL)
    
    Returns:
        ResolvedPool oriented as a buy (quote in, target out), or None if nothing matches
    """
    best: Optional[PoolRecord] = None
    best_score = 0.0
    for record in snapshot:
        if not record.has_mints(target_asset, quote_asset):
            continue
        score = pool_score(record, target_asset)
        if best is None or score > best_score:
            best, best_score = record, score
    
    if best is None:
        return None
    
    metadata = dict(best.metadata)
    metadata.update({
        'asset_mint_a': best.asset_mint_a,
        'asset_mint_b': best.asset_mint_b,
        'score': best_score,
        'source': 'listing',
    })
    return ResolvedPool(
        pool_address=best.pool_address,
        asset_mint_in=quote_asset,
        asset_mint_out=target_asset,
        venue_metadata=metadata,
    )


class PoolResolver:
    """Resolves pools through the shared listing cache and per-venue fallbacks."""
    
    def __init__(self, cache: ListingCache):
        self.cache = cache
    
    async def resolve_pool(
        self,
        venue: Venue,
        listing_key: str,
        fetch: ListingFetcher,
        target_mint: str,
        quote_mint: str,
        fallbacks: Sequence[FallbackStrategy] = ()
    ) -> ResolvedPool:
        """
        Resolve the pool for a pair on one venue.
        
        Fallback strategies run in the given order only when the snapshot yields
        nothing; the first one returning an address wins.
        
        Args:
            venue: Venue to resolve on
            listing_key: Cache key (pair key or venue-wide key)
            fetch: Listing fetcher used on cache miss
            target_mint: Mint being traded
            quote_mint: Quote mint (WSOL)
            fallbacks: Ordered fallback strategies
        
        Returns:
            ResolvedPool oriented as a buy
        
        Raises:
            PoolDiscoveryUnavailable: If the listing cannot be fetched
            PoolNotFound: If neither the snapshot nor any fallback finds a pool
        """
        snapshot = await self.cache.get_listings(venue, listing_key, fetch)
        resolved = resolve(snapshot, target_mint, quote_mint)
        if resolved is not None:
            logger.info(
                f"{colors['GREEN']}Resolved {Venue(venue).value} pool{colors['RESET']} "
                f"{resolved.pool_address} for {short_address(target_mint)} "
                f"(score {resolved.venue_metadata.get('score', 0):.4f})"
            )
            return resolved
        
        logger.debug(f"No {Venue(venue).value} listing match among {len(snapshot)} pools, trying {len(fallbacks)} fallbacks")
        for index, strategy in enumerate(fallbacks, 1):
            address = await strategy(target_mint, quote_mint)
            if address:
                logger.info(
                    f"{colors['YELLOW']}Resolved {Venue(venue).value} pool via fallback #{index}{colors['RESET']}: {address}"
                )
                return ResolvedPool(
                    pool_address=str(address),
                    asset_mint_in=quote_mint,
                    asset_mint_out=target_mint,
                    venue_metadata={'source': f'fallback_{index}'},
                )
        
        logger.error(f"{colors['RED']}{Venue(venue).value} pool for {short_address(target_mint)} not found{colors['RESET']}")
        raise PoolNotFound(Venue(venue).value, target_mint, quote_mint)
