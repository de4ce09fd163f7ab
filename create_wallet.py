#!/usr/bin/env python3
"""
Create a new Solana wallet for signing swaps.
⚠️ IMPORTANT: Save the private key securely!
"""

import base58
from solders.keypair import Keypair

# Create a new wallet
keypair = Keypair()

# Private key in base58 format (WALLET_PRIVATE_KEY in .env)
private_key_base58 = base58.b58encode(bytes(keypair)).decode('utf-8')
public_key = str(keypair.pubkey())

print("=" * 60)
print("NEW SWAP WALLET")
print("=" * 60)
print(f"\nPublic address: {public_key}")
print(f"\nPrivate key (base58): {private_key_base58}")
print("\n" + "=" * 60)
print("⚠️  Next steps:")
print("1. Add the private key to .env as WALLET_PRIVATE_KEY")
print("2. Fund the address with SOL (swaps, fees and relay tips)")
print("3. Dry-run first: python run.py --venue METEORA_DLMM --direction buy --mint <MINT> --amount 0.01")
print("4. NEVER publish the private key!")
print("=" * 60)
