"""
Swap transaction compiler: compute budget, optional tip, venue swap, in that order.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .constants import DEFAULT_PRIORITY_FEE_SOL, WSOL_MINT, SwapDirection, Venue
from .errors import InvalidParameter
from .instructions import build_compute_budget_instructions
from .ledger import LedgerTransport, to_pubkey
from .pool_resolver import PoolResolver, ResolvedPool
from .utils import get_terminal_colors, short_address
from .venue_api import VenueApiClient
from .venues import VenueAdapter, build_adapter
from .venues.base import SwapQuote

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


@dataclass
class SwapRequest:
    """One swap to compile. ``slippage`` is a fraction in [0, 1]."""
    venue: Venue
    direction: SwapDirection
    mint: str
    amount: float
    slippage: float
    payer: Pubkey
    priority_fee_sol: float = DEFAULT_PRIORITY_FEE_SOL
    compute_unit_limit: Optional[int] = None
    quote_mint: str = WSOL_MINT
    pool_address: Optional[str] = None


@dataclass
class TransactionSkeleton:
    """
    Ordered, unsigned instruction sections of a swap transaction.
    
    Sections are concatenated as compute budget, tip (at most one), swap.
    """
    payer: Pubkey
    compute_budget: List[Instruction] = field(default_factory=list)
    tip: List[Instruction] = field(default_factory=list)
    swap: List[Instruction] = field(default_factory=list)
    quote: Optional[SwapQuote] = None
    pool: Optional[ResolvedPool] = None

    @property
    def instructions(self) -> List[Instruction]:
        return list(self.compute_budget) + list(self.tip) + list(self.swap)

    def set_tip(self, instruction: Instruction) -> None:
        """Install the tip instruction, replacing any previous one."""
        self.tip = [instruction]

    def to_message(self, blockhash: Hash) -> Message:
        return Message.new_with_blockhash(self.instructions, self.payer, blockhash)

    def to_transaction(self, blockhash: Hash) -> Transaction:
        """Unsigned legacy transaction for ``blockhash``."""
        return Transaction.new_unsigned(self.to_message(blockhash))

    def to_signed_transaction(self, signer: Keypair, blockhash: Hash) -> Transaction:
        if signer.pubkey() != self.payer:
            raise InvalidParameter(f"Signer {signer.pubkey()} is not the fee payer {self.payer}")
        return Transaction([signer], self.to_message(blockhash), blockhash)


def validate_slippage(slippage: float) -> float:
    """Accept a fraction in [0, 1] (both ends included)."""
    try:
        value = float(slippage)
    except (TypeError, ValueError) as e:
        raise InvalidParameter(f"Slippage must be a number, got {slippage!r}") from e
    if not math.isfinite(value) or value < 0 or value > 1:
        raise InvalidParameter(f"Slippage must be between 0 and 1, got {slippage}")
    return value


class SwapTransactionCompiler:
    """Resolves the pool, asks the venue adapter for a quote and assembles the skeleton."""
    
    def __init__(
        self,
        ledger: LedgerTransport,
        resolver: PoolResolver,
        api: Optional[VenueApiClient] = None,
        adapters: Optional[Dict[Venue, VenueAdapter]] = None
    ):
        """
        Initialize compiler.
        
        Args:
            ledger: Ledger transport used by venue adapters
            resolver: Pool resolver wrapping the shared listing cache
            api: Venue listing client
            adapters: Pre-built adapters by venue (built lazily otherwise)
        """
        self.ledger = ledger
        self.resolver = resolver
        self.api = api
        self._adapters: Dict[Venue, VenueAdapter] = dict(adapters or {})
    
    def adapter_for(self, venue: Venue) -> VenueAdapter:
        venue = Venue.parse(venue)
        adapter = self._adapters.get(venue)
        if adapter is None:
            adapter = build_adapter(venue, self.ledger, self.api)
            self._adapters[venue] = adapter
        return adapter
    
    async def compile(self, request: SwapRequest) -> TransactionSkeleton:
        """
        Compile a swap request into a transaction skeleton (no tip).
        
        Args:
            request: Swap request
        
        Returns:
            TransactionSkeleton with compute budget and swap sections
        
        Raises:
            InvalidParameter: On out-of-range slippage or malformed addresses
            PoolDiscoveryUnavailable: If the venue listing cannot be fetched
            PoolNotFound: If no pool exists for the pair
            QuoteComputationFailed: If the venue rejects the swap
        """
        slippage = validate_slippage(request.slippage)
        try:
            direction = SwapDirection.parse(request.direction)
            venue = Venue.parse(request.venue)
        except ValueError as e:
            raise InvalidParameter(str(e)) from e
        mint = str(to_pubkey(request.mint))
        adapter = self.adapter_for(venue)
        
        if request.pool_address:
            pool = ResolvedPool(
                pool_address=str(to_pubkey(request.pool_address)),
                asset_mint_in=request.quote_mint,
                asset_mint_out=mint,
                venue_metadata={'source': 'explicit'},
            )
            logger.info(f"Using explicit {colors['CYAN']}{venue.value}{colors['RESET']} pool {pool.pool_address}")
        else:
            pool = await adapter.resolve_pool(self.resolver, mint, request.quote_mint)
        pool = pool.for_direction(direction, mint, request.quote_mint)
        
        if direction == SwapDirection.BUY:
            venue_swap = await adapter.quote_buy(pool, request.amount, slippage, request.payer)
        else:
            venue_swap = await adapter.quote_sell(pool, request.amount, slippage, request.payer)
        
        skeleton = TransactionSkeleton(
            payer=request.payer,
            compute_budget=build_compute_budget_instructions(request.priority_fee_sol, request.compute_unit_limit),
            swap=list(venue_swap.instructions),
            quote=venue_swap.quote,
            pool=venue_swap.pool,
        )
        logger.debug(
            f"Compiled {venue.value} {direction.value} for {short_address(mint)}: "
            f"{len(skeleton.compute_budget)} compute-budget + {len(skeleton.swap)} swap instructions"
        )
        return skeleton
