"""
Error taxonomy for pool discovery, quoting and relay routing.
"""
from typing import Optional


class DexSwapError(Exception):
    """Base class for all errors raised by the swap core."""


class InvalidParameter(DexSwapError, ValueError):
    """A caller-supplied value is out of range or malformed. Never retried."""


class PoolDiscoveryUnavailable(DexSwapError):
    """No cache tier has usable data and the venue listing fetch failed."""

    def __init__(self, venue: str, message: str):
        super().__init__(f"{venue}: {message}")
        self.venue = venue


class PoolNotFound(DexSwapError):
    """The venue has no pool for the requested pair after every fallback."""

    def __init__(self, venue: str, target_mint: str, quote_mint: str):
        super().__init__(f"{venue} pool for {target_mint}-{quote_mint} not found")
        self.venue = venue
        self.target_mint = target_mint
        self.quote_mint = quote_mint


class QuoteComputationFailed(DexSwapError):
    """Venue-side math rejected the swap (zero liquidity, inactive pool, ...)."""


class RelayConfigurationMissing(DexSwapError):
    """An accelerated relay was selected but has no tip addresses configured."""

    def __init__(self, provider: str, message: Optional[str] = None):
        super().__init__(message or f"No tip addresses configured for relay provider {provider}")
        self.provider = provider


class SubmissionFailed(DexSwapError):
    """A submission backend rejected the transaction. Not retried."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
