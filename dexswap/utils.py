"""
Utility functions shared across the swap compiler and relay router.
"""
import sys
from typing import Dict


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.
    
    Returns empty strings if output is not a TTY (e.g., redirected to file),
    so log files stay free of escape codes.
    
    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Amounts and counts
        'CYAN': '\033[96m' if use_color else '',    # Venues, pools, mints, providers
        'YELLOW': '\033[93m' if use_color else '',  # Slippage, tips, fee bounds
        'RED': '\033[91m' if use_color else '',     # Failures and degraded paths
        'DIM': '\033[90m' if use_color else '',     # Cache traffic and other low-importance logs
        'RESET': '\033[0m' if use_color else ''
    }


def short_address(address: str, size: int = 8) -> str:
    """Shorten a base58 address for log output (``abcdefgh...``)."""
    address = str(address)
    if len(address) <= size:
        return address
    return f"{address[:size]}..."
