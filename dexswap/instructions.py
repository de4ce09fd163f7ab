"""
Instruction builders shared by the compiler and venue adapters: compute budget,
tips, associated token accounts and wrapped SOL.
"""
import hashlib
import struct
from typing import Iterable, List, Optional

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from .amounts import sol_to_lamports
from .constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    DEFAULT_COMPUTE_UNITS,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WSOL_MINT,
)
from .errors import InvalidParameter

MICRO_LAMPORTS_PER_LAMPORT = 1_000_000

# Associated token program: CreateIdempotent
ATA_CREATE_IDEMPOTENT = 1
# SPL token program instruction tags
TOKEN_CLOSE_ACCOUNT = 9
TOKEN_SYNC_NATIVE = 17

WSOL_MINT_PUBKEY = Pubkey.from_string(WSOL_MINT)


def anchor_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>"), the Anchor instruction selector."""
    return hashlib.sha256(f"global:{name}".encode('utf-8')).digest()[:8]


def anchor_account_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("account:<Name>"), the Anchor account type tag."""
    return hashlib.sha256(f"account:{name}".encode('utf-8')).digest()[:8]


def anchor_data(name: str, *u64_args: int) -> bytes:
    """Anchor instruction data: discriminator followed by little-endian u64 arguments."""
    return anchor_discriminator(name) + b''.join(struct.pack('<Q', int(v)) for v in u64_args)


def compute_unit_price_micro_lamports(priority_fee_sol: float, compute_units: int = DEFAULT_COMPUTE_UNITS) -> int:
    """
    Price per compute unit (micro-lamports) that spends ``priority_fee_sol`` over ``compute_units``.
    
    Args:
        priority_fee_sol: Total priority fee in SOL
        compute_units: Assumed compute-unit budget of the transaction
    
    Returns:
        Micro-lamports per compute unit (floored)
    """
    if compute_units <= 0:
        raise InvalidParameter(f"Compute unit budget must be positive, got {compute_units}")
    lamports = sol_to_lamports(priority_fee_sol)
    return (lamports * MICRO_LAMPORTS_PER_LAMPORT) // compute_units


def build_compute_budget_instructions(
    priority_fee_sol: float,
    compute_unit_limit: Optional[int] = None
) -> List[Instruction]:
    """
    Compute-budget section of a transaction.
    
    Emits a single SetComputeUnitPrice by default. When ``compute_unit_limit`` is
    set, a SetComputeUnitLimit precedes it and the price is spread over that limit.
    """
    units = compute_unit_limit if compute_unit_limit else DEFAULT_COMPUTE_UNITS
    price = compute_unit_price_micro_lamports(priority_fee_sol, units)
    instructions: List[Instruction] = []
    if compute_unit_limit:
        instructions.append(set_compute_unit_limit(int(compute_unit_limit)))
    instructions.append(set_compute_unit_price(price))
    return instructions


def build_tip_instruction(payer: Pubkey, tip_address: Pubkey, lamports: int) -> Instruction:
    """System transfer of the tip from the fee payer to a relay tip account."""
    return transfer(TransferParams(from_pubkey=payer, to_pubkey=tip_address, lamports=int(lamports)))


def is_compute_budget_instruction(ix: Instruction) -> bool:
    return ix.program_id == COMPUTE_BUDGET_PROGRAM_ID


def strip_compute_budget(instructions: Iterable[Instruction]) -> List[Instruction]:
    """Drop compute-budget instructions; the compiler owns that section."""
    return [ix for ix in instructions if not is_compute_budget_instruction(ix)]


def get_associated_token_address(owner: Pubkey, mint: Pubkey, token_program: Pubkey = TOKEN_PROGRAM_ID) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID
    )
    return address


def create_associated_token_account_idempotent(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID
) -> Instruction:
    """CreateIdempotent: succeeds whether or not the ATA already exists."""
    ata = get_associated_token_address(owner, mint, token_program)
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=token_program, is_signer=False, is_writable=False),
    ]
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        data=bytes([ATA_CREATE_IDEMPOTENT]),
        accounts=accounts
    )


def wrap_sol_instructions(owner: Pubkey, lamports: int) -> List[Instruction]:
    """
    Wrap native SOL into the owner's WSOL account.
    
    Creates the WSOL ATA (idempotent), transfers ``lamports`` into it and syncs
    the token balance.
    """
    wsol_ata = get_associated_token_address(owner, WSOL_MINT_PUBKEY)
    sync_native = Instruction(
        program_id=TOKEN_PROGRAM_ID,
        data=bytes([TOKEN_SYNC_NATIVE]),
        accounts=[AccountMeta(pubkey=wsol_ata, is_signer=False, is_writable=True)]
    )
    return [
        create_associated_token_account_idempotent(owner, owner, WSOL_MINT_PUBKEY),
        transfer(TransferParams(from_pubkey=owner, to_pubkey=wsol_ata, lamports=int(lamports))),
        sync_native,
    ]


def close_wsol_instruction(owner: Pubkey) -> Instruction:
    """Close the owner's WSOL account, returning the lamports as native SOL."""
    wsol_ata = get_associated_token_address(owner, WSOL_MINT_PUBKEY)
    return Instruction(
        program_id=TOKEN_PROGRAM_ID,
        data=bytes([TOKEN_CLOSE_ACCOUNT]),
        accounts=[
            AccountMeta(pubkey=wsol_ata, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
        ]
    )
