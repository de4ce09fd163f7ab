"""
SwapTrader: the facade tying pool resolution, compilation, relay routing and submission together.
"""
import logging
import math
from dataclasses import dataclass
from typing import Optional, Union

import httpx
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .compiler import SwapRequest, SwapTransactionCompiler, TransactionSkeleton
from .config import TradeConfig
from .constants import WSOL_MINT, RelayProvider, SwapDirection, Venue
from .errors import InvalidParameter
from .ledger import LedgerTransport, to_pubkey
from .listing_cache import ListingCache
from .pool_resolver import PoolResolver, ResolvedPool
from .relay import RelayPreferences, RelayRouter, RelaySelection
from .senders import build_sender
from .utils import get_terminal_colors
from .venue_api import VenueApiClient
from .venues.base import SwapQuote

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


@dataclass
class RoutedSwap:
    """A compiled swap with its relay decision, ready to sign and send."""
    skeleton: TransactionSkeleton
    relay_selection: RelaySelection
    quote: Optional[SwapQuote] = None
    pool: Optional[ResolvedPool] = None

    @property
    def transaction_skeleton(self) -> TransactionSkeleton:
        return self.skeleton


def normalize_slippage_percent(slippage_percent: float) -> float:
    """Percent in [0, 100] (clamped) -> fraction in [0, 1]. Non-finite input is rejected."""
    try:
        value = float(slippage_percent)
    except (TypeError, ValueError) as e:
        raise InvalidParameter(f"Invalid slippage: {slippage_percent!r}") from e
    if not math.isfinite(value):
        raise InvalidParameter(f"Invalid slippage: {slippage_percent!r}")
    return max(0.0, min(100.0, value)) / 100


class SwapTrader:
    """
    Swap facade over the compiler and relay router.
    
    Owns one listing cache for its lifetime; every call reuses it.
    """
    
    def __init__(
        self,
        config: Optional[TradeConfig] = None,
        ledger: Optional[LedgerTransport] = None,
        api: Optional[VenueApiClient] = None,
        cache: Optional[ListingCache] = None,
        router: Optional[RelayRouter] = None,
        compiler: Optional[SwapTransactionCompiler] = None,
        relay_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize trader.
        
        Args:
            config: Runtime configuration (defaults when omitted)
            ledger: Ledger transport (built from ``config.rpc_url`` when omitted)
            api: Venue listing client
            cache: Listing cache shared by all resolutions
            router: Relay router (inject one with a seeded rng for deterministic tests)
            compiler: Pre-built compiler, mostly for tests
            relay_client: httpx client reused by relay senders
        """
        self.config = config or TradeConfig()
        self.ledger = ledger or LedgerTransport(self.config.rpc_url)
        self.api = api or VenueApiClient(timeout=self.config.http_timeout_seconds)
        self.cache = cache or ListingCache(ttl_ms=self.config.cache_ttl_ms, cache_dir=self.config.cache_dir)
        self.resolver = PoolResolver(self.cache)
        self.compiler = compiler or SwapTransactionCompiler(self.ledger, self.resolver, self.api)
        self.router = router or RelayRouter(tip_addresses=self.config.tip_addresses)
        self.relay_client = relay_client
    
    def default_preferences(self) -> RelayPreferences:
        """Relay preferences from configuration."""
        return RelayPreferences(
            tip_amount_sol=self.config.tip_amount_sol,
            provider=self.config.relay_provider,
            region=self.config.relay_region,
            anti_front_running=self.config.anti_front_running,
        )
    
    async def compile_and_route(
        self,
        venue: Union[Venue, str],
        direction: Union[SwapDirection, str],
        mint: Union[Pubkey, str],
        amount: float,
        slippage: float,
        relay_preferences: Optional[RelayPreferences] = None,
        payer: Optional[Pubkey] = None,
        priority_fee_sol: Optional[float] = None,
        compute_unit_limit: Optional[int] = None,
        pool_address: Optional[Union[Pubkey, str]] = None
    ) -> RoutedSwap:
        """
        Compile a swap and pick its relay backend.
        
        Args:
            venue: Venue to trade on
            direction: ``buy`` (SOL in) or ``sell`` (token in)
            mint: Target token mint
            amount: SOL to spend (buy) or tokens to sell, human units
            slippage: Tolerance as a fraction in [0, 1]
            relay_preferences: Tip/provider/region wishes (configuration defaults when omitted)
            payer: Fee payer and token owner
            priority_fee_sol: Priority fee override in SOL
            compute_unit_limit: Optional explicit compute-unit limit
            pool_address: Skip pool resolution and trade on this pool
        
        Returns:
            RoutedSwap with skeleton, relay selection, quote and pool
        """
        if payer is None:
            raise InvalidParameter("A fee payer is required")
        request = SwapRequest(
            venue=venue,
            direction=direction,
            mint=str(to_pubkey(mint)),
            amount=amount,
            slippage=slippage,
            payer=payer,
            priority_fee_sol=self.config.priority_fee_sol if priority_fee_sol is None else priority_fee_sol,
            compute_unit_limit=self.config.compute_unit_limit if compute_unit_limit is None else compute_unit_limit,
            quote_mint=WSOL_MINT,
            pool_address=str(to_pubkey(pool_address)) if pool_address else None,
        )
        skeleton = await self.compiler.compile(request)
        selection = self.router.route(skeleton, relay_preferences or self.default_preferences())
        return RoutedSwap(skeleton=skeleton, relay_selection=selection, quote=skeleton.quote, pool=skeleton.pool)
    
    async def buy(self, venue: Union[Venue, str], wallet: Keypair, mint: Union[Pubkey, str], amount: float,
                  slippage: float, send: bool = True, **kwargs) -> Union[str, RoutedSwap]:
        """
        Buy ``mint`` with ``amount`` SOL.
        
        Args:
            slippage: Tolerance in percent, clamped to [0, 100]
            send: Sign and submit when true, otherwise return the RoutedSwap
            kwargs: priority_fee_sol, tip_amount_sol, relay_provider, relay_region,
                anti_front_running, pool_address, compute_unit_limit, skip_preflight
        """
        return await self._trade(venue, SwapDirection.BUY, wallet, mint, amount, slippage, send, **kwargs)
    
    async def sell(self, venue: Union[Venue, str], wallet: Keypair, mint: Union[Pubkey, str], amount: float,
                   slippage: float, send: bool = True, **kwargs) -> Union[str, RoutedSwap]:
        """Sell ``amount`` tokens of ``mint`` for SOL. Same arguments as ``buy``."""
        return await self._trade(venue, SwapDirection.SELL, wallet, mint, amount, slippage, send, **kwargs)
    
    async def _trade(
        self,
        venue: Union[Venue, str],
        direction: SwapDirection,
        wallet: Keypair,
        mint: Union[Pubkey, str],
        amount: float,
        slippage: float,
        send: bool,
        priority_fee_sol: Optional[float] = None,
        tip_amount_sol: Optional[float] = None,
        relay_provider: Optional[Union[RelayProvider, str]] = None,
        relay_region: Optional[str] = None,
        anti_front_running: Optional[bool] = None,
        pool_address: Optional[Union[Pubkey, str]] = None,
        compute_unit_limit: Optional[int] = None,
        skip_preflight: bool = False
    ) -> Union[str, RoutedSwap]:
        defaults = self.default_preferences()
        preferences = RelayPreferences(
            tip_amount_sol=defaults.tip_amount_sol if tip_amount_sol is None else tip_amount_sol,
            provider=relay_provider or defaults.provider,
            region=relay_region or defaults.region,
            anti_front_running=defaults.anti_front_running if anti_front_running is None else anti_front_running,
        )
        routed = await self.compile_and_route(
            venue,
            direction,
            mint,
            amount,
            normalize_slippage_percent(slippage),
            relay_preferences=preferences,
            payer=wallet.pubkey(),
            priority_fee_sol=priority_fee_sol,
            compute_unit_limit=compute_unit_limit,
            pool_address=pool_address,
        )
        if not send:
            return routed
        return await self.send(routed, wallet, skip_preflight=skip_preflight,
                               priority_fee_sol=priority_fee_sol)
    
    async def send(
        self,
        routed: RoutedSwap,
        wallet: Keypair,
        skip_preflight: bool = False,
        priority_fee_sol: Optional[float] = None
    ) -> str:
        """
        Sign a routed swap with a fresh blockhash and submit it once through its backend.
        
        Returns:
            Transaction signature
        """
        blockhash = await self.ledger.get_latest_blockhash()
        transaction = routed.skeleton.to_transaction(blockhash)
        selection = routed.relay_selection
        sender = build_sender(
            selection,
            self.ledger,
            api_keys=self.config.relay_api_keys,
            client=self.relay_client,
            timeout=self.config.http_timeout_seconds,
        )
        try:
            signature = await sender.submit(
                transaction,
                wallet,
                self.config.priority_fee_sol if priority_fee_sol is None else priority_fee_sol,
                selection.tip_amount_sol,
                skip_preflight=skip_preflight,
                provider_metadata=selection.provider_metadata,
            )
        finally:
            # Only close relay clients this call created
            if selection.provider != RelayProvider.STANDARD and self.relay_client is None:
                await sender.close()
        logger.info(f"{colors['GREEN']}Transaction sent{colors['RESET']}: {signature}")
        return signature
    
    async def close(self):
        """Close network clients."""
        await self.api.close()
        await self.ledger.close()
