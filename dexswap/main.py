"""
Main entry point for the swap CLI.
"""
import logging
import sys
from typing import Optional

import base58
from solders.keypair import Keypair

from .config import load_config
from .errors import DexSwapError
from .relay import RelayPreferences
from .trader import SwapTrader, normalize_slippage_percent
from .utils import get_terminal_colors

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('dexswap.log')
    ]
)
logger = logging.getLogger(__name__)
colors = get_terminal_colors()


def load_wallet(private_key_str: Optional[str]) -> Optional[Keypair]:
    """Load wallet from a base58 private key."""
    if not private_key_str:
        logger.warning("No wallet private key provided")
        return None
    
    try:
        key_bytes = base58.b58decode(private_key_str)
        return Keypair.from_bytes(key_bytes)
    except ValueError as e:
        logger.error(f"Error loading wallet: {e}")
        return None


async def main(
    venue: str,
    direction: str,
    mint: str,
    amount: float,
    slippage: float,
    tip: Optional[float] = None,
    priority_fee: Optional[float] = None,
    relay: Optional[str] = None,
    region: Optional[str] = None,
    pool: Optional[str] = None,
    anti_front_running: bool = False,
    send: bool = False
) -> int:
    """
    Compile (and optionally send) one swap.
    
    Args:
        slippage: Tolerance in percent (0-100)
        send: Submit the transaction; otherwise only print the compiled plan
    
    Returns:
        Process exit code
    """
    config = load_config()
    wallet = load_wallet(config.wallet_private_key)
    if wallet is None:
        logger.error("Wallet required: set WALLET_PRIVATE_KEY in .env")
        return 1
    
    trader = SwapTrader(config)
    preferences = RelayPreferences(
        tip_amount_sol=config.tip_amount_sol if tip is None else tip,
        provider=relay or config.relay_provider,
        region=region or config.relay_region,
        anti_front_running=anti_front_running or config.anti_front_running,
    )
    
    logger.info(f"Starting swap: {colors['CYAN']}{venue}{colors['RESET']} {direction} {amount} of {mint}")
    try:
        routed = await trader.compile_and_route(
            venue,
            direction,
            mint,
            amount,
            normalize_slippage_percent(slippage),
            relay_preferences=preferences,
            payer=wallet.pubkey(),
            priority_fee_sol=priority_fee,
            pool_address=pool,
        )
        quote = routed.quote
        selection = routed.relay_selection
        logger.info(f"Pool: {routed.pool.pool_address if routed.pool else '-'}")
        if quote is not None:
            bound = quote.maximum_amount_in if quote.exact_out else quote.minimum_amount_out
            logger.info(
                f"Quote: in={colors['GREEN']}{quote.amount_in}{colors['RESET']} "
                f"expected_out={colors['GREEN']}{quote.expected_amount_out}{colors['RESET']} "
                f"{'max_in' if quote.exact_out else 'min_out'}={colors['YELLOW']}{bound}{colors['RESET']} "
                f"slippage={quote.slippage_applied}"
            )
        logger.info(
            f"Relay: {selection.provider.value} region={selection.region.value if selection.region else '-'} "
            f"tip={selection.tip_amount_sol} SOL, {len(routed.skeleton.instructions)} instructions"
        )
        
        if not send:
            logger.info("Dry run complete (pass --send to submit)")
            return 0
        
        signature = await trader.send(routed, wallet, priority_fee_sol=priority_fee)
        logger.info(f"{colors['GREEN']}Signature: {signature}{colors['RESET']}")
        return 0
    except DexSwapError as e:
        logger.error(f"{colors['RED']}Swap failed: {e}{colors['RESET']}")
        return 1
    finally:
        await trader.close()
