"""
Ledger transport: the narrow slice of Solana RPC the swap core needs.

Transport errors are surfaced unchanged. Nothing here retries; the caller decides
whether to retry the whole operation.
"""
import logging
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import base58
from solders.hash import Hash
from solders.pubkey import Pubkey
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed, Processed
from solana.rpc.types import MemcmpOpts, TxOpts

from .errors import InvalidParameter

logger = logging.getLogger(__name__)

AddressLike = Union[str, Pubkey]

# SPL mint layout: mint_authority option (36) + supply u64 (8) + decimals u8
MINT_SUPPLY_OFFSET = 36
MINT_DECIMALS_OFFSET = 44
# SPL token account layout: mint (32) + owner (32) + amount u64
TOKEN_ACCOUNT_AMOUNT_OFFSET = 64

ACTIVATION_BY_SLOT = 0
ACTIVATION_BY_TIMESTAMP = 1


def to_pubkey(address: AddressLike) -> Pubkey:
    """Coerce a base58 string or Pubkey to Pubkey, raising InvalidParameter on malformed input."""
    if isinstance(address, Pubkey):
        return address
    try:
        return Pubkey.from_string(str(address))
    except ValueError as e:
        raise InvalidParameter(f"Invalid address: {address!r}") from e


def read_token_amount(data: Optional[bytes]) -> int:
    """Read the ``amount`` field of an SPL token account (0 when missing)."""
    if not data or len(data) < TOKEN_ACCOUNT_AMOUNT_OFFSET + 8:
        return 0
    return int.from_bytes(data[TOKEN_ACCOUNT_AMOUNT_OFFSET:TOKEN_ACCOUNT_AMOUNT_OFFSET + 8], 'little')


def read_mint_supply(data: Optional[bytes]) -> int:
    """Read the ``supply`` field of an SPL mint account (0 when missing)."""
    if not data or len(data) < MINT_SUPPLY_OFFSET + 8:
        return 0
    return int.from_bytes(data[MINT_SUPPLY_OFFSET:MINT_SUPPLY_OFFSET + 8], 'little')


class LedgerTransport:
    """Async Solana RPC wrapper exposing account state, slot/time and mint decimals."""
    
    def __init__(
        self,
        rpc_url: str,
        client: Optional[AsyncClient] = None,
        clock: Callable[[], float] = time.time
    ):
        self.rpc_url = rpc_url
        self.client = client or AsyncClient(rpc_url)
        self._clock = clock
        # Mint decimals never change once a mint is initialized
        self._decimals_cache: Dict[str, int] = {}
        self._token_program_cache: Dict[str, Pubkey] = {}
    
    async def fetch_account_state(self, address: AddressLike) -> Optional[bytes]:
        """
        Fetch raw account data.
        
        Args:
            address: Account address
        
        Returns:
            Account data bytes, or None if the account does not exist
        """
        pubkey = to_pubkey(address)
        resp = await self.client.get_account_info(pubkey, commitment=Confirmed, encoding="base64")
        if resp.value is None:
            logger.debug(f"Account {pubkey} not found")
            return None
        return bytes(resp.value.data)
    
    async def fetch_multiple_account_states(self, addresses: Sequence[AddressLike]) -> List[Optional[bytes]]:
        """Fetch several accounts in one round-trip, preserving input order."""
        if not addresses:
            return []
        pubkeys = [to_pubkey(a) for a in addresses]
        resp = await self.client.get_multiple_accounts(pubkeys, commitment=Confirmed, encoding="base64")
        return [bytes(acc.data) if acc is not None else None for acc in resp.value]
    
    async def fetch_current_slot(self) -> int:
        resp = await self.client.get_slot(commitment=Processed)
        logger.debug(f"Current slot: {resp.value}")
        return int(resp.value)
    
    async def fetch_current_slot_or_timestamp(self, activation_type: int = ACTIVATION_BY_SLOT) -> int:
        """
        Current activation point for a pool.
        
        Args:
            activation_type: 0 for slot-based activation, anything else for unix timestamp
        
        Returns:
            Current slot or current unix timestamp (seconds)
        """
        if activation_type == ACTIVATION_BY_SLOT:
            return await self.fetch_current_slot()
        return int(self._clock())
    
    async def fetch_mint_decimals(self, mint: AddressLike) -> int:
        """
        Decimal count of an SPL (or Token-2022) mint.
        
        Raises:
            InvalidParameter: If the mint account does not exist or is not a mint
        """
        key = str(mint)
        cached = self._decimals_cache.get(key)
        if cached is not None:
            return cached
        data = await self.fetch_account_state(mint)
        if data is None or len(data) <= MINT_DECIMALS_OFFSET:
            raise InvalidParameter(f"Mint account {key} not found or malformed")
        decimals = data[MINT_DECIMALS_OFFSET]
        self._decimals_cache[key] = decimals
        return decimals
    
    async def fetch_token_program(self, mint: AddressLike) -> Pubkey:
        """
        Owning token program of a mint (SPL Token or Token-2022).
        
        Raises:
            InvalidParameter: If the mint account does not exist
        """
        key = str(mint)
        cached = self._token_program_cache.get(key)
        if cached is not None:
            return cached
        resp = await self.client.get_account_info(to_pubkey(mint), commitment=Confirmed, encoding="base64")
        if resp.value is None:
            raise InvalidParameter(f"Mint account {key} not found")
        owner = resp.value.owner
        self._token_program_cache[key] = owner
        return owner
    
    async def scan_program_accounts(
        self,
        program_id: Pubkey,
        data_size: Optional[int] = None,
        memcmp: Sequence[Tuple[int, bytes]] = ()
    ) -> List[Tuple[str, bytes]]:
        """
        Scan all accounts owned by a program.
        
        Args:
            program_id: Owning program
            data_size: Optional exact account size filter
            memcmp: (offset, raw bytes) filters, all of which must match
        
        Returns:
            List of (address, data) tuples in RPC order
        """
        filters: List[Union[int, MemcmpOpts]] = []
        if data_size is not None:
            filters.append(data_size)
        for offset, raw in memcmp:
            filters.append(MemcmpOpts(offset=offset, bytes=base58.b58encode(bytes(raw)).decode('utf-8')))
        resp = await self.client.get_program_accounts(
            program_id,
            commitment=Confirmed,
            encoding="base64",
            filters=filters or None
        )
        return [(str(keyed.pubkey), bytes(keyed.account.data)) for keyed in resp.value]
    
    async def get_latest_blockhash(self) -> Hash:
        resp = await self.client.get_latest_blockhash(commitment=Confirmed)
        return resp.value.blockhash
    
    async def send_raw_transaction(self, raw_tx: bytes, skip_preflight: bool = False) -> str:
        """Send a signed, serialized transaction through the RPC node. No retries."""
        opts = TxOpts(
            skip_preflight=skip_preflight,
            preflight_commitment=Processed,
            max_retries=0
        )
        resp = await self.client.send_raw_transaction(raw_tx, opts=opts)
        sig = str(resp.value)
        logger.debug(f"Transaction sent via RPC: {sig}")
        return sig
    
    async def close(self):
        """Close RPC client."""
        await self.client.close()
