"""
Two-tier (memory + disk) TTL cache for venue pool listings.

Snapshots are immutable and replaced wholesale on refresh. Concurrent refreshes of
the same key race without a lock: the last writer wins and nothing is corrupted,
at worst one redundant network round-trip is spent.
"""
import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .constants import DEFAULT_CACHE_DIR, DEFAULT_CACHE_TTL_MS, Venue
from .errors import PoolDiscoveryUnavailable
from .utils import get_terminal_colors, short_address

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

VENUE_WIDE_KEY = "all"


@dataclass(frozen=True)
class PoolRecord:
    """One venue-reported pool, normalized to a common shape."""
    pool_address: str
    asset_mint_a: str
    asset_mint_b: str
    reserve_a: float = 0.0
    reserve_b: float = 0.0
    liquidity_or_tvl: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def has_mints(self, x: str, y: str) -> bool:
        """True if the pool's unordered mint pair is exactly {x, y}."""
        return (self.asset_mint_a == x and self.asset_mint_b == y) or \
               (self.asset_mint_a == y and self.asset_mint_b == x)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolRecord":
        if not isinstance(data, dict):
            raise ValueError(f"Pool record must be an object, got {type(data).__name__}")
        return cls(
            pool_address=str(data['pool_address']),
            asset_mint_a=str(data['asset_mint_a']),
            asset_mint_b=str(data['asset_mint_b']),
            reserve_a=float(data.get('reserve_a', 0.0)),
            reserve_b=float(data.get('reserve_b', 0.0)),
            liquidity_or_tvl=float(data.get('liquidity_or_tvl', 0.0)),
            metadata=dict(data.get('metadata') or {}),
        )


Snapshot = Tuple[PoolRecord, ...]
ListingFetcher = Callable[[], Awaitable[List[PoolRecord]]]


def pair_key(a: str, b: str) -> str:
    """Order-independent cache key for a mint pair: ``key(a, b) == key(b, a)``."""
    x, y = sorted((str(a), str(b)))
    return f"{x}-{y}"


@dataclass
class CacheEntry:
    snapshot: Snapshot
    fetched_at: float


class ListingCache:
    """
    Venue listing cache shared by every pool resolution in the process.
    
    Constructed once at startup and injected into the resolver; tests can pass
    an isolated instance (or a pre-seeded one) instead.
    """
    
    def __init__(
        self,
        ttl_ms: Optional[int] = None,
        cache_dir: Optional[str] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize listing cache.
        
        Args:
            ttl_ms: Entry time-to-live in milliseconds. Invalid or non-positive values use the 5 minute default.
            cache_dir: Directory for the on-disk tier (default: ``.cache`` in the working directory)
            clock: Time source in seconds, injectable for tests
        """
        self.ttl_seconds = self._resolve_ttl_ms(ttl_ms) / 1000.0
        self.cache_dir = Path(cache_dir or DEFAULT_CACHE_DIR).resolve()
        self._clock = clock
        self._memory: Dict[str, CacheEntry] = {}
    
    @staticmethod
    def _resolve_ttl_ms(ttl_ms: Optional[int]) -> int:
        try:
            value = float(ttl_ms) if ttl_ms is not None else 0.0
        except (TypeError, ValueError):
            value = 0.0
        if value != value or value <= 0 or value == float('inf'):
            return DEFAULT_CACHE_TTL_MS
        return int(value)
    
    @staticmethod
    def _entry_key(venue: Venue, key: str) -> str:
        return f"{Venue(venue).value}:{key}"
    
    def cache_file(self, venue: Venue, key: str) -> Path:
        """On-disk location for a venue/pair snapshot."""
        return self.cache_dir / f"{Venue(venue).value.lower()}_pools_{key}.json"
    
    def _is_fresh(self, fetched_at: float, now: float) -> bool:
        return now - fetched_at < self.ttl_seconds
    
    async def get_listings(self, venue: Venue, key: str, fetch: ListingFetcher) -> Snapshot:
        """
        Return the listing snapshot for a venue and pair key.
        
        Lookup order: memory tier, disk tier (by file mtime), network fetch.
        
        Args:
            venue: Venue the listing belongs to
            key: Pair key from ``pair_key()`` or ``VENUE_WIDE_KEY``
            fetch: Coroutine function performing the network fetch
        
        Returns:
            Immutable snapshot (tuple of PoolRecord)
        
        Raises:
            PoolDiscoveryUnavailable: If the network fetch fails
        """
        now = self._clock()
        entry_key = self._entry_key(venue, key)
        
        mem = self._memory.get(entry_key)
        if mem is not None and self._is_fresh(mem.fetched_at, now) and mem.snapshot:
            logger.debug(f"{colors['DIM']}Listing cache hit (memory): {entry_key}{colors['RESET']}")
            return mem.snapshot
        
        disk = self._read_disk(venue, key, now)
        if disk is not None:
            snapshot, written_at = disk
            logger.debug(f"{colors['DIM']}Listing cache hit (disk): {entry_key}{colors['RESET']}")
            # Keep the original write time so promotion never extends the entry lifetime
            self._memory[entry_key] = CacheEntry(snapshot=snapshot, fetched_at=written_at)
            return snapshot
        
        logger.debug(f"Fetching {colors['CYAN']}{Venue(venue).value}{colors['RESET']} listings for {short_address(key, 20)}")
        try:
            records = await fetch()
        except PoolDiscoveryUnavailable:
            raise
        except Exception as e:
            logger.error(f"{colors['RED']}{Venue(venue).value} listing fetch failed: {e}{colors['RESET']}")
            raise PoolDiscoveryUnavailable(Venue(venue).value, f"listing fetch failed: {e}") from e
        
        snapshot: Snapshot = tuple(records)
        self._memory[entry_key] = CacheEntry(snapshot=snapshot, fetched_at=now)
        self._write_disk(venue, key, snapshot)
        return snapshot
    
    def _read_disk(self, venue: Venue, key: str, now: float) -> Optional[Tuple[Snapshot, float]]:
        path = self.cache_file(venue, key)
        try:
            if not path.exists():
                return None
            written_at = path.stat().st_mtime
            if not self._is_fresh(written_at, now):
                return None
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, list):
                logger.debug(f"Ignoring non-array disk cache at {path}")
                return None
            return tuple(PoolRecord.from_dict(item) for item in data), written_at
        except (OSError, ValueError, KeyError, TypeError) as e:
            # Corrupt or unreadable payloads are a cache miss
            logger.debug(f"Disk cache read failed for {path}: {e}")
            return None
    
    def _write_disk(self, venue: Venue, key: str, snapshot: Snapshot) -> None:
        path = self.cache_file(venue, key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(f".{os.getpid()}.tmp")
            with open(tmp, 'w', encoding='utf-8') as f:
                json.dump([asdict(record) for record in snapshot], f)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Disk cache write failed for {path}: {e}")
    
    def invalidate(self, venue: Venue, key: str) -> None:
        """Drop the memory-tier entry for a key (the disk tier simply expires)."""
        self._memory.pop(self._entry_key(venue, key), None)
