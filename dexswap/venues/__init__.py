"""
Venue adapters and the venue registry.
"""
from typing import Dict, Optional, Type

from ..constants import Venue
from ..ledger import LedgerTransport
from ..venue_api import VenueApiClient
from .base import SwapContext, SwapQuote, VenueAdapter, VenueSwap
from .damm_v1 import MeteoraDammV1Adapter
from .damm_v2 import MeteoraDammV2Adapter
from .dbc import MeteoraDbcAdapter
from .dlmm import MeteoraDlmmAdapter
from .raydium_clmm import RaydiumClmmAdapter

VENUE_ADAPTERS: Dict[Venue, Type[VenueAdapter]] = {
    Venue.METEORA_DAMM_V1: MeteoraDammV1Adapter,
    Venue.METEORA_DAMM_V2: MeteoraDammV2Adapter,
    Venue.METEORA_DLMM: MeteoraDlmmAdapter,
    Venue.METEORA_DBC: MeteoraDbcAdapter,
    Venue.RAYDIUM_CLMM: RaydiumClmmAdapter,
}


def build_adapter(venue: Venue, ledger: LedgerTransport, api: Optional[VenueApiClient] = None) -> VenueAdapter:
    """
    Create the adapter for a venue.
    
    Raises:
        ValueError: If the venue is unknown
    """
    adapter_cls = VENUE_ADAPTERS.get(Venue.parse(venue))
    if adapter_cls is None:
        raise ValueError(f"Unsupported venue: {venue}")
    return adapter_cls(ledger, api)


__all__ = [
    'VENUE_ADAPTERS',
    'build_adapter',
    'SwapContext',
    'SwapQuote',
    'VenueAdapter',
    'VenueSwap',
    'MeteoraDammV1Adapter',
    'MeteoraDammV2Adapter',
    'MeteoraDbcAdapter',
    'MeteoraDlmmAdapter',
    'RaydiumClmmAdapter',
]
