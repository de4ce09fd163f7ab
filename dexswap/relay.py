"""
Relay provider router: picks a submission backend, region and tip for a compiled swap.
"""
import logging
import math
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .amounts import sol_to_lamports
from .compiler import TransactionSkeleton
from .constants import (
    HIGH_TIP_PROVIDER,
    HIGH_TIP_THRESHOLD_SOL,
    LOW_TIP_PROVIDER,
    RELAY_MIN_TIP_SOL,
    RELAY_REGIONS,
    RELAY_TIP_ADDRESSES,
    RelayProvider,
    RelayRegion,
)
from .errors import InvalidParameter, RelayConfigurationMissing
from .instructions import build_tip_instruction
from .ledger import to_pubkey
from .utils import get_terminal_colors, short_address

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

# Read-only account that asks the Jito block engine not to bundle the tx behind a front-runner
JITO_DONT_FRONT_ACCOUNT = "jitodontfront111111111111111111111111111111"


@dataclass
class RelayPreferences:
    """Caller's relay wishes. Everything is optional; the tip defaults to none."""
    tip_amount_sol: float = 0.0
    provider: Optional[Union[RelayProvider, str]] = None
    region: Optional[Union[RelayRegion, str]] = None
    anti_front_running: bool = False


@dataclass(frozen=True)
class RelaySelection:
    """Chosen backend for one call. Never cached."""
    provider: RelayProvider
    region: Optional[RelayRegion] = None
    endpoint: Optional[str] = None
    tip_address: Optional[str] = None
    tip_amount_sol: float = 0.0
    anti_front_running: bool = False
    degraded_from: Optional[RelayProvider] = None
    
    @property
    def tip_lamports(self) -> int:
        return sol_to_lamports(self.tip_amount_sol)
    
    @property
    def has_tip(self) -> bool:
        return self.tip_address is not None and self.tip_amount_sol > 0
    
    @property
    def provider_metadata(self) -> Dict[str, Any]:
        return {
            'provider': self.provider.value,
            'region': self.region.value if self.region else None,
            'endpoint': self.endpoint,
            'tip_address': self.tip_address,
            'anti_front_running': self.anti_front_running,
        }


class RelayRouter:
    """
    Selects a relay backend from the tip size and explicit overrides.
    
    Rules, in order: no tip means the standard RPC path; an explicit provider is
    honoured when a tip is present; otherwise tips at or above the threshold go to
    the high-tip provider and smaller tips to the low-tip provider. The region is
    the requested one when the provider serves it, else a random one. The tip is
    raised to the provider minimum and sent to a random tip address.
    """
    
    def __init__(
        self,
        tip_addresses: Optional[Dict[RelayProvider, List[str]]] = None,
        regions: Optional[Dict[RelayProvider, Dict[RelayRegion, str]]] = None,
        min_tips: Optional[Dict[RelayProvider, float]] = None,
        rng: Optional[random.Random] = None,
        high_tip_threshold_sol: float = HIGH_TIP_THRESHOLD_SOL
    ):
        """
        Initialize relay router.
        
        Args:
            tip_addresses: Per-provider tip address overrides (merged over the defaults)
            regions: Per-provider region endpoint tables
            min_tips: Per-provider minimum tip in SOL
            rng: Random source for region and tip-address choice (inject a seeded one in tests)
            high_tip_threshold_sol: Inclusive boundary between low- and high-tip providers
        """
        self.tip_addresses: Dict[RelayProvider, List[str]] = dict(RELAY_TIP_ADDRESSES)
        self.tip_addresses.update(tip_addresses or {})
        self.regions = regions if regions is not None else RELAY_REGIONS
        self.min_tips = min_tips if min_tips is not None else RELAY_MIN_TIP_SOL
        self.rng = rng or random.Random()
        self.high_tip_threshold_sol = high_tip_threshold_sol
    
    def choose_provider(self, preferences: RelayPreferences) -> RelayProvider:
        """
        Pick the submission backend for a tip.
        
        Raises:
            InvalidParameter: If the tip is not a finite number or the explicit provider is unknown
        """
        tip = preferences.tip_amount_sol
        if tip is not None and not (isinstance(tip, (int, float)) and math.isfinite(tip)):
            raise InvalidParameter(f"Tip amount must be a finite number, got {tip!r}")
        if tip is None or not tip > 0:
            return RelayProvider.STANDARD
        if preferences.provider:
            try:
                return RelayProvider.parse(preferences.provider)
            except ValueError as e:
                raise InvalidParameter(str(e)) from e
        if preferences.tip_amount_sol >= self.high_tip_threshold_sol:
            return HIGH_TIP_PROVIDER
        return LOW_TIP_PROVIDER
    
    def choose_region(self, provider: RelayProvider, requested: Optional[Union[RelayRegion, str]]):
        """Return (region, endpoint) for a provider."""
        table = self.regions.get(provider) or {}
        if not table:
            raise RelayConfigurationMissing(provider.value, f"No regions configured for relay provider {provider.value}")
        if requested:
            wanted = str(requested.value if isinstance(requested, RelayRegion) else requested).strip().lower()
            for region, endpoint in table.items():
                if region.value.lower() == wanted:
                    return region, endpoint
            logger.warning(
                f"{colors['YELLOW']}Region {requested!r} not served by {provider.value}, choosing at random{colors['RESET']}"
            )
        region = self.rng.choice(list(table.keys()))
        return region, table[region]
    
    def _select_accelerated(self, provider: RelayProvider, preferences: RelayPreferences) -> RelaySelection:
        addresses = self.tip_addresses.get(provider) or []
        if not addresses:
            raise RelayConfigurationMissing(provider.value)
        region, endpoint = self.choose_region(provider, preferences.region)
        tip = max(float(preferences.tip_amount_sol), float(self.min_tips.get(provider, 0.0)))
        return RelaySelection(
            provider=provider,
            region=region,
            endpoint=endpoint,
            tip_address=self.rng.choice(addresses),
            tip_amount_sol=tip,
            anti_front_running=preferences.anti_front_running,
        )
    
    def select(self, preferences: Optional[RelayPreferences] = None) -> RelaySelection:
        """
        Choose provider, region, tip address and tip amount.
        
        A provider with no tip addresses degrades to the standard path instead of failing.
        """
        preferences = preferences or RelayPreferences()
        provider = self.choose_provider(preferences)
        if provider == RelayProvider.STANDARD:
            logger.debug("No tip requested, using standard RPC submission")
            return RelaySelection(provider=RelayProvider.STANDARD, anti_front_running=preferences.anti_front_running)
        
        try:
            selection = self._select_accelerated(provider, preferences)
        except RelayConfigurationMissing as e:
            logger.warning(f"{colors['RED']}{e}; falling back to standard submission{colors['RESET']}")
            return RelaySelection(
                provider=RelayProvider.STANDARD,
                anti_front_running=preferences.anti_front_running,
                degraded_from=provider,
            )
        
        logger.info(
            f"Relay: {colors['CYAN']}{selection.provider.value}{colors['RESET']} "
            f"region={selection.region.value if selection.region else '-'} "
            f"tip={colors['YELLOW']}{selection.tip_amount_sol:.6f} SOL{colors['RESET']} "
            f"-> {short_address(selection.tip_address)}"
        )
        return selection
    
    def tip_instruction(self, payer: Pubkey, selection: RelaySelection) -> Instruction:
        ix = build_tip_instruction(payer, to_pubkey(selection.tip_address), selection.tip_lamports)
        if selection.anti_front_running and selection.provider == RelayProvider.JITO:
            accounts = list(ix.accounts) + [
                AccountMeta(Pubkey.from_string(JITO_DONT_FRONT_ACCOUNT), is_signer=False, is_writable=False)
            ]
            ix = Instruction(program_id=ix.program_id, data=ix.data, accounts=accounts)
        return ix
    
    def attach(self, skeleton: TransactionSkeleton, selection: RelaySelection) -> TransactionSkeleton:
        """Insert the tip between the compute-budget and swap sections (no-op without a tip)."""
        if selection.has_tip:
            skeleton.set_tip(self.tip_instruction(skeleton.payer, selection))
        return skeleton
    
    def route(self, skeleton: TransactionSkeleton, preferences: Optional[RelayPreferences] = None) -> RelaySelection:
        selection = self.select(preferences)
        self.attach(skeleton, selection)
        return selection
