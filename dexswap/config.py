"""
Configuration loading from .env, environment variables and config.json.
"""
import json
import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import dotenv

from .constants import (
    DEFAULT_CACHE_DIR,
    DEFAULT_CACHE_TTL_MS,
    DEFAULT_PRIORITY_FEE_SOL,
    RelayProvider,
)

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent


@dataclass
class TradeConfig:
    """Runtime knobs for the swap compiler, listing cache and relay router."""
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS
    cache_dir: str = DEFAULT_CACHE_DIR
    priority_fee_sol: float = DEFAULT_PRIORITY_FEE_SOL
    tip_amount_sol: float = 0.0
    relay_provider: Optional[str] = None
    relay_region: Optional[str] = None
    anti_front_running: bool = False
    compute_unit_limit: Optional[int] = None
    http_timeout_seconds: float = 30.0
    wallet_private_key: Optional[str] = None
    tip_addresses: Dict[RelayProvider, List[str]] = field(default_factory=dict)
    relay_api_keys: Dict[RelayProvider, str] = field(default_factory=dict)


def resolve_cache_ttl_ms(value: Optional[str]) -> int:
    """
    Parse the cache TTL override.
    
    Non-numeric, non-finite and non-positive values fall back to the default
    instead of disabling the cache.
    """
    if value is None or str(value).strip() == '':
        return DEFAULT_CACHE_TTL_MS
    try:
        ttl = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid PAIRS_CACHE_TTL_MS={value!r}, using default {DEFAULT_CACHE_TTL_MS}ms")
        return DEFAULT_CACHE_TTL_MS
    if ttl != ttl or ttl in (float('inf'), float('-inf')) or ttl <= 0:
        logger.warning(f"Non-positive PAIRS_CACHE_TTL_MS={value!r}, using default {DEFAULT_CACHE_TTL_MS}ms")
        return DEFAULT_CACHE_TTL_MS
    return int(ttl)


def _coerce_float(name: str, raw, default: Optional[float]) -> Optional[float]:
    """Convert ``raw`` to a finite float, warning and returning ``default`` when it is not one."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default
    if not math.isfinite(value):
        logger.warning(f"Non-finite {name}={raw!r}, using default {default}")
        return default
    return value


def _coerce_int(name: str, raw, default: Optional[int]) -> Optional[int]:
    """Convert ``raw`` to an int, warning and returning ``default`` when it is not one."""
    if isinstance(raw, bool):
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return _coerce_float(name, raw, default)


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return None
    return _coerce_int(name, raw, None)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, '')
    return [item.strip() for item in raw.split(',') if item.strip()]


def load_config(env_path: Optional[Path] = None, config_path: Optional[Path] = None) -> TradeConfig:
    """Load configuration from .env, the environment and config.json (in that order of precedence: json last)."""
    env_path = env_path or PROJECT_ROOT / '.env'
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    else:
        logger.debug(f".env file not found at {env_path}")
    
    config = TradeConfig(
        rpc_url=os.getenv('RPC_URL', 'https://api.mainnet-beta.solana.com'),
        cache_ttl_ms=resolve_cache_ttl_ms(os.getenv('PAIRS_CACHE_TTL_MS')),
        cache_dir=os.getenv('PAIRS_CACHE_DIR', DEFAULT_CACHE_DIR),
        priority_fee_sol=_env_float('PRIORITY_FEE_SOL', DEFAULT_PRIORITY_FEE_SOL),
        tip_amount_sol=_env_float('TIP_AMOUNT_SOL', 0.0),
        relay_provider=os.getenv('RELAY_PROVIDER') or None,
        relay_region=os.getenv('RELAY_REGION') or None,
        anti_front_running=_env_bool('ANTI_FRONT_RUNNING'),
        compute_unit_limit=_env_int('COMPUTE_UNIT_LIMIT'),
        http_timeout_seconds=_env_float('HTTP_TIMEOUT_SECONDS', 30.0),
        wallet_private_key=os.getenv('WALLET_PRIVATE_KEY') or None,
    )
    
    for provider, env_name in (
        (RelayProvider.JITO, 'JITO_TIP_ADDRESSES'),
        (RelayProvider.NOZOMI, 'NOZOMI_TIP_ADDRESSES'),
        (RelayProvider.ZERO_SLOT, 'ZERO_SLOT_TIP_ADDRESSES'),
    ):
        addresses = _env_list(env_name)
        if addresses:
            config.tip_addresses[provider] = addresses
    
    for provider, env_name in (
        (RelayProvider.JITO, 'JITO_API_KEY'),
        (RelayProvider.NOZOMI, 'NOZOMI_API_KEY'),
        (RelayProvider.ZERO_SLOT, 'ZERO_SLOT_API_KEY'),
    ):
        key = os.getenv(env_name)
        if key:
            config.relay_api_keys[provider] = key
    
    config_path = config_path or PROJECT_ROOT / 'config.json'
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                overrides = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable config.json at {config_path}: {e}")
            overrides = {}
        _apply_json_overrides(config, overrides)
    
    return config


def _json_section(overrides: dict, name: str) -> dict:
    section = overrides.get(name, {})
    if not isinstance(section, dict):
        logger.warning(f"config.json section '{name}' must be an object, ignoring")
        return {}
    return section


def _apply_json_overrides(config: TradeConfig, overrides: dict) -> None:
    """
    Apply config.json values on top of the environment.
    
    Invalid values log a warning and keep whatever the environment (or default) set.
    """
    if not isinstance(overrides, dict):
        logger.warning("config.json must contain an object, ignoring")
        return
    trading = _json_section(overrides, 'trading')
    if 'priority_fee_sol' in trading:
        config.priority_fee_sol = _coerce_float(
            'trading.priority_fee_sol', trading['priority_fee_sol'], config.priority_fee_sol
        )
    if 'tip_amount_sol' in trading:
        config.tip_amount_sol = _coerce_float(
            'trading.tip_amount_sol', trading['tip_amount_sol'], config.tip_amount_sol
        )
    if 'compute_unit_limit' in trading:
        config.compute_unit_limit = _coerce_int(
            'trading.compute_unit_limit', trading['compute_unit_limit'], config.compute_unit_limit
        )
    
    relay = _json_section(overrides, 'relay')
    if relay.get('provider'):
        config.relay_provider = str(relay['provider'])
    if relay.get('region'):
        config.relay_region = str(relay['region'])
    if 'anti_front_running' in relay:
        config.anti_front_running = bool(relay['anti_front_running'])
    tip_addresses = relay.get('tip_addresses') or {}
    if not isinstance(tip_addresses, dict):
        logger.warning("config.json relay.tip_addresses must be an object, ignoring")
        tip_addresses = {}
    for name, addresses in tip_addresses.items():
        try:
            provider = RelayProvider.parse(name)
        except ValueError:
            logger.warning(f"Unknown relay provider in config.json tip_addresses: {name}")
            continue
        if not isinstance(addresses, list):
            logger.warning(f"config.json tip_addresses.{name} must be a list, ignoring")
            continue
        config.tip_addresses[provider] = [str(a) for a in addresses]
    
    cache = _json_section(overrides, 'cache')
    if 'ttl_ms' in cache:
        config.cache_ttl_ms = resolve_cache_ttl_ms(str(cache['ttl_ms']))
    if cache.get('dir'):
        config.cache_dir = str(cache['dir'])
