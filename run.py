#!/usr/bin/env python3
"""
Simple launcher script for the swap CLI.
"""
import argparse
import sys
from dexswap.main import main
import asyncio

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Solana DEX swap compiler')
    parser.add_argument(
        '--venue',
        required=True,
        help='Venue: METEORA_DAMM_V1, METEORA_DAMM_V2, METEORA_DLMM, METEORA_DBC or RAYDIUM_CLMM'
    )
    parser.add_argument('--direction', required=True, choices=['buy', 'sell'], help='buy (SOL in) or sell (token in)')
    parser.add_argument('--mint', required=True, help='Target token mint address')
    parser.add_argument('--amount', required=True, type=float, help='SOL to spend (buy) or tokens to sell')
    parser.add_argument('--slippage', type=float, default=1.0, help='Slippage tolerance in percent (default: 1)')
    parser.add_argument('--tip', type=float, default=None, help='Relay tip in SOL (0 = standard RPC)')
    parser.add_argument('--priority-fee', type=float, default=None, help='Priority fee in SOL')
    parser.add_argument('--relay', default=None, help='Relay provider: jito, nozomi or 0slot')
    parser.add_argument('--region', default=None, help='Relay region, e.g. ny, amsterdam, frankfurt')
    parser.add_argument('--pool', default=None, help='Trade on this pool instead of resolving one')
    parser.add_argument('--anti-front-running', action='store_true', help='Ask the relay for front-running protection')
    parser.add_argument('--send', action='store_true', help='Sign and submit (default: dry run)')
    
    args = parser.parse_args()
    
    try:
        code = asyncio.run(main(
            venue=args.venue,
            direction=args.direction,
            mint=args.mint,
            amount=args.amount,
            slippage=args.slippage,
            tip=args.tip,
            priority_fee=args.priority_fee,
            relay=args.relay,
            region=args.region,
            pool=args.pool,
            anti_front_running=args.anti_front_running,
            send=args.send
        ))
        sys.exit(code)
    except KeyboardInterrupt:
        print("\nStopped by user")
        sys.exit(0)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
