"""
HTTP client for venue pool-listing endpoints.

Each venue returns pools in its own shape; this module owns the mapping of those
shapes into PoolRecord. Errors are raised to the listing cache, which wraps them
as PoolDiscoveryUnavailable. No retries here.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .constants import (
    DAMM_V1_SEARCH_URL,
    DAMM_V2_POOLS_URL,
    DLMM_PAIRS_URL,
    RAYDIUM_POOLS_BY_MINT_URL,
)
from .listing_cache import PoolRecord

logger = logging.getLogger(__name__)

DAMM_PAGE_SIZE = 300
RAYDIUM_PAGE_SIZE = 100


def _as_float(value: Any) -> float:
    """Parse a numeric field that venues send as number, string or null."""
    if value is None:
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if result == result else 0.0


def _unwrap_items(payload: Any, *keys: str) -> List[Any]:
    """Return the record list from ``payload`` or ``payload[key]`` for the first matching key."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
            if isinstance(value, dict):
                nested = _unwrap_items(value, *keys)
                if nested:
                    return nested
    return []


class VenueApiClient:
    """Client for the public Meteora and Raydium pool listing APIs."""
    
    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize venue API client.
        
        Args:
            timeout: Request timeout in seconds. Keep it no shorter than the caller's overall deadline.
            client: Optional pre-configured httpx client (tests inject one)
        """
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)
    
    async def _get_json(self, url: str, params: Any = None) -> Any:
        response = await self.client.get(url, params=params)
        response.raise_for_status()
        return response.json()
    
    # ------------------------------------------------------------------ #
    # Meteora DAMM v1
    # ------------------------------------------------------------------ #
    async def fetch_damm_v1_pools(self, token_mint: str, other_mint: str) -> List[PoolRecord]:
        """Search DAMM v1 dynamic pools containing both mints (single request)."""
        params = [
            ('page', 0),
            ('size', DAMM_PAGE_SIZE),
            ('pool_type', 'dynamic'),
            ('include_token_mints', token_mint),
            ('include_token_mints', other_mint),
        ]
        payload = await self._get_json(DAMM_V1_SEARCH_URL, params=params)
        records = list(self._map_damm_v1(_unwrap_items(payload, 'data')))
        logger.debug(f"DAMM v1 search returned {len(records)} pools")
        return records
    
    @staticmethod
    def _map_damm_v1(items: Iterable[Any]) -> Iterable[PoolRecord]:
        for it in items:
            if not isinstance(it, dict):
                continue
            mints = it.get('pool_token_mints')
            address = it.get('pool_address')
            if not address or not isinstance(mints, list) or len(mints) != 2:
                continue
            # Token-side USD value is the venue's best per-side depth figure
            usd = it.get('pool_token_usd_amounts') or []
            yield PoolRecord(
                pool_address=str(address),
                asset_mint_a=str(mints[0]),
                asset_mint_b=str(mints[1]),
                reserve_a=_as_float(usd[0] if len(usd) > 0 else None),
                reserve_b=_as_float(usd[1] if len(usd) > 1 else None),
                liquidity_or_tvl=_as_float(it.get('pool_tvl')),
            )
    
    # ------------------------------------------------------------------ #
    # Meteora DAMM v2
    # ------------------------------------------------------------------ #
    async def _query_damm_v2(self, params: Dict[str, Any]) -> List[Any]:
        query = {k: v for k, v in params.items() if v not in (None, '')}
        payload = await self._get_json(DAMM_V2_POOLS_URL, params=query)
        return _unwrap_items(payload, 'data')
    
    async def fetch_damm_v2_pools(self, token_mint: str, other_mint: str) -> List[PoolRecord]:
        """
        Fetch DAMM v2 pools for a pair.
        
        The API filters on field-specific mints, so both orders are queried
        concurrently and merged, deduplicated by pool address.
        """
        a_then_b, b_then_a = await asyncio.gather(
            self._query_damm_v2({'token_a_mint': token_mint, 'token_b_mint': other_mint, 'limit': DAMM_PAGE_SIZE}),
            self._query_damm_v2({'token_a_mint': other_mint, 'token_b_mint': token_mint, 'limit': DAMM_PAGE_SIZE}),
        )
        merged: Dict[str, PoolRecord] = {}
        for record in self._map_damm_v2(list(a_then_b) + list(b_then_a)):
            # dict keeps the first position and the latest value, same as a Map
            merged[record.pool_address] = record
        records = list(merged.values())
        logger.debug(f"DAMM v2 query returned {len(records)} pools")
        return records
    
    @staticmethod
    def _map_damm_v2(items: Iterable[Any]) -> Iterable[PoolRecord]:
        for it in items:
            if not isinstance(it, dict):
                continue
            address = it.get('pool_address')
            mint_a = it.get('token_a_mint')
            mint_b = it.get('token_b_mint')
            if not address or not mint_a or not mint_b:
                continue
            tvl = it.get('tvl')
            if tvl is None:
                tvl = it.get('liquidity')
            yield PoolRecord(
                pool_address=str(address),
                asset_mint_a=str(mint_a),
                asset_mint_b=str(mint_b),
                reserve_a=_as_float(it.get('token_a_amount')),
                reserve_b=_as_float(it.get('token_b_amount')),
                liquidity_or_tvl=_as_float(tvl),
            )
    
    # ------------------------------------------------------------------ #
    # Meteora DLMM
    # ------------------------------------------------------------------ #
    async def fetch_dlmm_pairs(self) -> List[PoolRecord]:
        """Fetch every DLMM pair (venue-wide listing, ~100k entries)."""
        payload = await self._get_json(DLMM_PAIRS_URL)
        records = list(self._map_dlmm(_unwrap_items(payload, 'data', 'rows')))
        logger.debug(f"DLMM pair/all returned {len(records)} pairs")
        return records
    
    @staticmethod
    def _map_dlmm(items: Iterable[Any]) -> Iterable[PoolRecord]:
        for it in items:
            if not isinstance(it, dict):
                continue
            address = it.get('address')
            mint_x = it.get('mint_x')
            mint_y = it.get('mint_y')
            if not address or not mint_x or not mint_y:
                continue
            yield PoolRecord(
                pool_address=str(address),
                asset_mint_a=str(mint_x),
                asset_mint_b=str(mint_y),
                reserve_a=_as_float(it.get('reserve_x_amount')),
                reserve_b=_as_float(it.get('reserve_y_amount')),
                liquidity_or_tvl=_as_float(it.get('liquidity')),
            )
    
    # ------------------------------------------------------------------ #
    # Raydium CLMM
    # ------------------------------------------------------------------ #
    async def fetch_raydium_clmm_pools(self, token_mint: str, other_mint: str) -> List[PoolRecord]:
        """Fetch concentrated-liquidity Raydium pools for a pair."""
        params = {
            'mint1': token_mint,
            'mint2': other_mint,
            'poolType': 'concentrated',
            'poolSortField': 'default',
            'sortType': 'desc',
            'pageSize': RAYDIUM_PAGE_SIZE,
            'page': 1,
        }
        payload = await self._get_json(RAYDIUM_POOLS_BY_MINT_URL, params=params)
        records = list(self._map_raydium_clmm(_unwrap_items(payload, 'data', 'items')))
        logger.debug(f"Raydium CLMM query returned {len(records)} pools")
        return records
    
    @staticmethod
    def _map_raydium_clmm(items: Iterable[Any]) -> Iterable[PoolRecord]:
        for it in items:
            if not isinstance(it, dict) or it.get('type') != 'Concentrated':
                continue
            mint_a = (it.get('mintA') or {}).get('address')
            mint_b = (it.get('mintB') or {}).get('address')
            address = it.get('id')
            if not address or not mint_a or not mint_b:
                continue
            config = it.get('config') or {}
            yield PoolRecord(
                pool_address=str(address),
                asset_mint_a=str(mint_a),
                asset_mint_b=str(mint_b),
                reserve_a=_as_float(it.get('mintAmountA')),
                reserve_b=_as_float(it.get('mintAmountB')),
                liquidity_or_tvl=_as_float(it.get('tvl')),
                metadata={
                    'decimals_a': (it.get('mintA') or {}).get('decimals'),
                    'decimals_b': (it.get('mintB') or {}).get('decimals'),
                    'trade_fee_rate': config.get('tradeFeeRate'),
                },
            )
    
    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
