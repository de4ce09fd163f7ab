"""
Process-wide constant tables: venue identifiers, program ids, relay regions and tip addresses.
"""
from enum import Enum
from typing import Dict, List

from solders.pubkey import Pubkey


class Venue(str, Enum):
    """Liquidity venues a swap can be routed through."""
    METEORA_DAMM_V1 = "METEORA_DAMM_V1"
    METEORA_DAMM_V2 = "METEORA_DAMM_V2"
    METEORA_DLMM = "METEORA_DLMM"
    METEORA_DBC = "METEORA_DBC"
    RAYDIUM_CLMM = "RAYDIUM_CLMM"

    @classmethod
    def parse(cls, value: str) -> "Venue":
        """Parse a venue identifier case-insensitively (``meteora-dlmm`` == ``METEORA_DLMM``)."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().upper().replace('-', '_')
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unsupported venue: {value}") from None


class SwapDirection(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, value: str) -> "SwapDirection":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported direction: {value}") from None


class RelayProvider(str, Enum):
    """Transaction submission paths. Everything except STANDARD needs a tip."""
    STANDARD = "standard"
    JITO = "jito"
    NOZOMI = "nozomi"
    ZERO_SLOT = "0slot"

    @classmethod
    def parse(cls, value: str) -> "RelayProvider":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        aliases = {'zero_slot': '0slot', 'zeroslot': '0slot', 'rpc': 'standard'}
        try:
            return cls(aliases.get(normalized, normalized))
        except ValueError:
            raise ValueError(f"Unsupported relay provider: {value}") from None


class RelayRegion(str, Enum):
    NY = "ny"
    AMSTERDAM = "amsterdam"
    FRANKFURT = "frankfurt"
    TOKYO = "tokyo"
    SLC = "slc"
    LA = "la"


# Native currency
SOL_DECIMALS = 9
WSOL_MINT = "So11111111111111111111111111111111111111112"

# Programs
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
TOKEN_2022_PROGRAM_ID = Pubkey.from_string("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")

METEORA_DAMM_V1_PROGRAM_ID = Pubkey.from_string("Eo7WjKq67rjJQSZxS6z3YkapzY3eMj6Xy8X5EQVn5UaB")
METEORA_VAULT_PROGRAM_ID = Pubkey.from_string("24Uqj9JCLxUeoC3hGfh5W3s9FM9uCHDS2SG3LYwBpyTi")
METEORA_DAMM_V2_PROGRAM_ID = Pubkey.from_string("cpamdpZCGKUy5JxQXB4dcpGPiikHawvSWAd6mEn1sGG")
METEORA_DBC_PROGRAM_ID = Pubkey.from_string("dbcij3LWUppWqq96dh6gJWwBifmcGfLSB5D4DuSMaqN")
METEORA_DLMM_PROGRAM_ID = Pubkey.from_string("LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo")
RAYDIUM_CLMM_PROGRAM_ID = Pubkey.from_string("CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK")

# Venue listing endpoints
DAMM_V1_SEARCH_URL = "https://damm-api.meteora.ag/pools/search"
DAMM_V2_POOLS_URL = "https://dammv2-api.meteora.ag/pools"
DLMM_PAIRS_URL = "https://dlmm-api.meteora.ag/pair/all"
RAYDIUM_POOLS_BY_MINT_URL = "https://api-v3.raydium.io/pools/info/mint"

# Listing cache
DEFAULT_CACHE_TTL_MS = 5 * 60 * 1000
DEFAULT_CACHE_DIR = ".cache"

# Compute budget
DEFAULT_PRIORITY_FEE_SOL = 0.0001
DEFAULT_COMPUTE_UNITS = 200_000

# Relay routing
HIGH_TIP_THRESHOLD_SOL = 0.001
HIGH_TIP_PROVIDER = RelayProvider.NOZOMI
LOW_TIP_PROVIDER = RelayProvider.JITO

RELAY_MIN_TIP_SOL: Dict[RelayProvider, float] = {
    RelayProvider.STANDARD: 0.0,
    RelayProvider.JITO: 0.0001,
    RelayProvider.NOZOMI: 0.001,
    RelayProvider.ZERO_SLOT: 0.001,
}

RELAY_REGIONS: Dict[RelayProvider, Dict[RelayRegion, str]] = {
    RelayProvider.JITO: {
        RelayRegion.NY: "https://ny.mainnet.block-engine.jito.wtf/api/v1/transactions",
        RelayRegion.AMSTERDAM: "https://amsterdam.mainnet.block-engine.jito.wtf/api/v1/transactions",
        RelayRegion.FRANKFURT: "https://frankfurt.mainnet.block-engine.jito.wtf/api/v1/transactions",
        RelayRegion.TOKYO: "https://tokyo.mainnet.block-engine.jito.wtf/api/v1/transactions",
        RelayRegion.SLC: "https://slc.mainnet.block-engine.jito.wtf/api/v1/transactions",
    },
    RelayProvider.NOZOMI: {
        RelayRegion.NY: "https://ewr1.nozomi.temporal.xyz/",
        RelayRegion.AMSTERDAM: "https://ams1.nozomi.temporal.xyz/",
        RelayRegion.FRANKFURT: "https://fra2.nozomi.temporal.xyz/",
        RelayRegion.TOKYO: "https://tyo1.nozomi.temporal.xyz/",
    },
    RelayProvider.ZERO_SLOT: {
        RelayRegion.NY: "https://ny.0slot.trade",
        RelayRegion.AMSTERDAM: "https://ams.0slot.trade",
        RelayRegion.FRANKFURT: "https://de.0slot.trade",
        RelayRegion.LA: "https://la.0slot.trade",
    },
}

RELAY_TIP_ADDRESSES: Dict[RelayProvider, List[str]] = {
    RelayProvider.JITO: [
        "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
        "HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe",
        "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
        "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
        "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
        "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
        "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
        "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
    ],
    RelayProvider.NOZOMI: [
        "TEMPaMeCRFAS9EKF53Jd6KpHxgL47uWLcpFArU1Fanq",
        "noz3jAjPiHuBPqiSPkkugaJDkJscPuRhYnSpbi8UvC4",
        "noz3str9KXfpKknefHji8L1mPgimezaiUyCHYMDv1GE",
        "noz6uoYCDijhu1V7cutCpwxNiSovEwLdRHPwmgCGDNo",
        "noz9EPNcT7WH6Sou3sr3GGjHQYVkN3DNirpbvDkv9YJ",
        "nozc5yT15LazbLTFVZzoNZCwjh3yUtW86LoUyqsBu4L",
    ],
    RelayProvider.ZERO_SLOT: [
        "Eb2KpSC8uMt9GmzyAEm5Eb1AAAgTjRaXWFjKyFXHZxF3",
        "FCjUJZ1qozm1e8romw216qyfQMaaWKxWsuySnumVCCNe",
        "ENxTEjSQ1YabmUpXAdCgevnHQ9MHdLv8tzFiuiYJqa13",
        "6rYLG55Q9RpsPGvqdPNJs4z5WTxJVatMB8zV3WJhs5EK",
        "Cix2bHfqPcKcM233mzxbLk14kSggUUiz2A87fJtGivXr",
    ],
}
