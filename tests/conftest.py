"""
Pytest configuration and fixtures for dexswap tests.
"""
import random
import time

import pytest
from unittest.mock import AsyncMock, MagicMock
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from dexswap.compiler import TransactionSkeleton
from dexswap.instructions import build_compute_budget_instructions
from dexswap.listing_cache import ListingCache, PoolRecord
from dexswap.relay import RelayRouter


class FakeClock:
    """Adjustable clock anchored at real time (the disk tier compares against file mtimes)."""
    
    def __init__(self):
        self.offset = 0.0
    
    def advance(self, seconds: float):
        self.offset += seconds
    
    def __call__(self) -> float:
        return time.time() + self.offset


@pytest.fixture
def mock_keypair():
    """Create a keypair for testing."""
    return Keypair()


@pytest.fixture
def payer(mock_keypair):
    """Fee payer pubkey of mock_keypair."""
    return mock_keypair.pubkey()


@pytest.fixture
def sol_mint():
    """Wrapped SOL mint address."""
    return "So11111111111111111111111111111111111111112"


@pytest.fixture
def usdc_mint():
    """USDC mint address."""
    return "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def bonk_mint():
    """BONK mint address."""
    return "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


@pytest.fixture
def mock_ledger():
    """Create a mock LedgerTransport for testing."""
    ledger = AsyncMock()
    ledger.fetch_mint_decimals.return_value = 6
    ledger.fetch_token_program.return_value = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
    return ledger


@pytest.fixture
def mock_api():
    """Create a mock VenueApiClient for testing."""
    return AsyncMock()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def listing_cache(tmp_path, clock):
    """Isolated listing cache writing into a temp directory."""
    return ListingCache(ttl_ms=60_000, cache_dir=str(tmp_path / "cache"), clock=clock)


@pytest.fixture
def seeded_router():
    """Relay router with a deterministic random source."""
    return RelayRouter(rng=random.Random(42))


@pytest.fixture
def make_record():
    """Factory for PoolRecord instances."""
    def _make(address, mint_a, mint_b, reserve_a=0.0, reserve_b=0.0, tvl=0.0):
        return PoolRecord(
            pool_address=address,
            asset_mint_a=mint_a,
            asset_mint_b=mint_b,
            reserve_a=reserve_a,
            reserve_b=reserve_b,
            liquidity_or_tvl=tvl,
        )
    return _make


@pytest.fixture
def skeleton(payer):
    """Compiled skeleton with a one-instruction swap section."""
    swap_ix = MagicMock(name="swap_ix")
    return TransactionSkeleton(
        payer=payer,
        compute_budget=build_compute_budget_instructions(0.0001),
        swap=[swap_ix],
    )
