"""
Tests for config.py
"""
import json

import pytest

from dexswap.config import load_config, resolve_cache_ttl_ms
from dexswap.constants import DEFAULT_CACHE_TTL_MS, DEFAULT_PRIORITY_FEE_SOL, RelayProvider

ENV_VARS = [
    'RPC_URL', 'PAIRS_CACHE_TTL_MS', 'PAIRS_CACHE_DIR', 'PRIORITY_FEE_SOL', 'TIP_AMOUNT_SOL',
    'RELAY_PROVIDER', 'RELAY_REGION', 'ANTI_FRONT_RUNNING', 'COMPUTE_UNIT_LIMIT',
    'HTTP_TIMEOUT_SECONDS', 'WALLET_PRIVATE_KEY', 'JITO_TIP_ADDRESSES', 'NOZOMI_TIP_ADDRESSES',
    'ZERO_SLOT_TIP_ADDRESSES', 'JITO_API_KEY', 'NOZOMI_API_KEY', 'ZERO_SLOT_API_KEY',
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestResolveCacheTtl:
    """Tests for the cache TTL override."""
    
    @pytest.mark.parametrize("raw", [None, "", "abc", "0", "-100", "nan", "inf"])
    def test_invalid_values_use_default(self, raw):
        """Test unusable values fall back to the default TTL."""
        assert resolve_cache_ttl_ms(raw) == DEFAULT_CACHE_TTL_MS
    
    def test_valid_value(self):
        """Test a positive value is used as-is."""
        assert resolve_cache_ttl_ms("1500") == 1500


class TestLoadConfig:
    """Tests for load_config."""
    
    def test_defaults(self, clean_env, tmp_path):
        """Test defaults when no .env, environment or config.json is present."""
        config = load_config(env_path=tmp_path / '.env', config_path=tmp_path / 'config.json')
        assert config.cache_ttl_ms == DEFAULT_CACHE_TTL_MS
        assert config.priority_fee_sol == DEFAULT_PRIORITY_FEE_SOL
        assert config.tip_amount_sol == 0.0
        assert config.relay_provider is None
        assert config.compute_unit_limit is None
    
    def test_environment(self, clean_env, tmp_path):
        """Test environment variables are read."""
        clean_env.setenv('RPC_URL', 'https://rpc.example')
        clean_env.setenv('PAIRS_CACHE_TTL_MS', '2000')
        clean_env.setenv('TIP_AMOUNT_SOL', '0.002')
        clean_env.setenv('ANTI_FRONT_RUNNING', 'true')
        clean_env.setenv('COMPUTE_UNIT_LIMIT', 'lots')
        clean_env.setenv('JITO_TIP_ADDRESSES', 'A, B,')
        clean_env.setenv('NOZOMI_API_KEY', 'secret')
        
        config = load_config(env_path=tmp_path / '.env', config_path=tmp_path / 'config.json')
        
        assert config.rpc_url == 'https://rpc.example'
        assert config.cache_ttl_ms == 2000
        assert config.tip_amount_sol == 0.002
        assert config.anti_front_running is True
        assert config.compute_unit_limit is None
        assert config.tip_addresses[RelayProvider.JITO] == ['A', 'B']
        assert config.relay_api_keys[RelayProvider.NOZOMI] == 'secret'
    
    def test_dotenv_file(self, clean_env, tmp_path):
        """Test values are loaded from a .env file."""
        env_file = tmp_path / '.env'
        env_file.write_text("PRIORITY_FEE_SOL=0.0005\nRELAY_REGION=ny\n")
        
        config = load_config(env_path=env_file, config_path=tmp_path / 'config.json')
        
        assert config.priority_fee_sol == 0.0005
        assert config.relay_region == 'ny'
    
    def test_config_json_overrides(self, clean_env, tmp_path):
        """Test config.json sections override the environment."""
        clean_env.setenv('TIP_AMOUNT_SOL', '0.001')
        config_file = tmp_path / 'config.json'
        config_file.write_text(json.dumps({
            'trading': {'tip_amount_sol': 0.003, 'compute_unit_limit': 250000},
            'relay': {'provider': 'jito', 'tip_addresses': {'nozomi': ['X'], 'pigeon': ['Y']}},
            'cache': {'ttl_ms': -1, 'dir': str(tmp_path / 'c')},
        }))
        
        config = load_config(env_path=tmp_path / '.env', config_path=config_file)
        
        assert config.tip_amount_sol == 0.003
        assert config.compute_unit_limit == 250000
        assert config.relay_provider == 'jito'
        assert config.tip_addresses == {RelayProvider.NOZOMI: ['X']}
        assert config.cache_ttl_ms == DEFAULT_CACHE_TTL_MS
        assert config.cache_dir == str(tmp_path / 'c')
    
    def test_unreadable_config_json_ignored(self, clean_env, tmp_path):
        """Test a broken config.json is ignored."""
        config_file = tmp_path / 'config.json'
        config_file.write_text("{broken")
        config = load_config(env_path=tmp_path / '.env', config_path=config_file)
        assert config.tip_amount_sol == 0.0
    
    def test_invalid_json_values_keep_defaults(self, clean_env, tmp_path):
        """Test bad config.json values warn and keep the default instead of raising."""
        config_file = tmp_path / 'config.json'
        config_file.write_text(json.dumps({
            'trading': {'priority_fee_sol': 'abc', 'tip_amount_sol': None, 'compute_unit_limit': 'many'},
        }))
        
        config = load_config(env_path=tmp_path / '.env', config_path=config_file)
        
        assert config.priority_fee_sol == DEFAULT_PRIORITY_FEE_SOL
        assert config.tip_amount_sol == 0.0
        assert config.compute_unit_limit is None
    
    def test_invalid_json_value_keeps_environment(self, clean_env, tmp_path):
        """Test a bad config.json value leaves the environment's value in place."""
        clean_env.setenv('TIP_AMOUNT_SOL', '0.002')
        config_file = tmp_path / 'config.json'
        config_file.write_text(json.dumps({'trading': {'tip_amount_sol': 'NaN'}}))
        
        config = load_config(env_path=tmp_path / '.env', config_path=config_file)
        
        assert config.tip_amount_sol == 0.002
    
    def test_non_object_sections_ignored(self, clean_env, tmp_path):
        """Test sections that are not objects are skipped."""
        config_file = tmp_path / 'config.json'
        config_file.write_text(json.dumps({
            'trading': [1, 2],
            'relay': 'jito',
            'cache': {'dir': str(tmp_path / 'c')},
        }))
        
        config = load_config(env_path=tmp_path / '.env', config_path=config_file)
        
        assert config.priority_fee_sol == DEFAULT_PRIORITY_FEE_SOL
        assert config.relay_provider is None
        assert config.cache_dir == str(tmp_path / 'c')
