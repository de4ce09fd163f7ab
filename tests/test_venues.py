"""
Tests for the venue adapters.
"""
import struct
from dataclasses import replace

import pytest
from unittest.mock import AsyncMock, patch
from solders.pubkey import Pubkey

from dexswap.constants import (
    METEORA_DAMM_V1_PROGRAM_ID,
    METEORA_DLMM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    SwapDirection,
    Venue,
)
from dexswap.errors import QuoteComputationFailed
from dexswap.instructions import WSOL_MINT_PUBKEY, anchor_data
from dexswap.listing_cache import VENUE_WIDE_KEY
from dexswap.pool_resolver import ResolvedPool
from dexswap.venues import (
    MeteoraDammV1Adapter,
    MeteoraDammV2Adapter,
    MeteoraDbcAdapter,
    MeteoraDlmmAdapter,
    RaydiumClmmAdapter,
    build_adapter,
)
from dexswap.venues import damm_v1, dbc, raydium_clmm
from dexswap.venues.base import SwapContext
from dexswap.venues.curve_math import FEE_DENOMINATOR, Q64, sqrt_price_at_tick, swap_within_range, trade_fee
from dexswap.venues.damm_v2 import COLLECT_FEE_ONLY_B, DammV2PoolState
from dexswap.venues.dlmm import (
    LB_PAIR_SIZE,
    TOKEN_X_MINT,
    TOKEN_Y_MINT,
    BinAmounts,
    LbPairState,
    bin_array_index,
    derive_permissionless_pair,
    swap_through_bins,
)
from dexswap.venues.raydium_clmm import ClmmPoolState, tick_array_start_index


def _key(seed: int) -> Pubkey:
    return Pubkey.from_bytes(bytes([seed]) * 32)


def _put(buf: bytearray, offset: int, raw: bytes):
    buf[offset:offset + len(raw)] = raw


def _lb_pair(token_x: Pubkey, token_y: Pubkey, active_id: int = 0, base_factor: int = 0) -> LbPairState:
    return LbPairState(
        address=_key(50),
        token_x_mint=token_x,
        token_y_mint=token_y,
        reserve_x=_key(51),
        reserve_y=_key(52),
        oracle=_key(53),
        token_x_program=TOKEN_PROGRAM_ID,
        token_y_program=TOKEN_PROGRAM_ID,
        active_id=active_id,
        bin_step=1,
        min_bin_id=-1000,
        max_bin_id=1000,
        status=0,
        activation_type=0,
        activation_point=0,
        base_factor=base_factor,
        base_fee_power_factor=0,
        variable_fee_control=0,
        volatility_accumulator=0,
    )


def _context(pool: ResolvedPool, direction: SwapDirection, payer: Pubkey, amount_in: int, slippage: float = 0.01):
    return SwapContext(
        pool=pool,
        direction=direction,
        payer=payer,
        mint_in=Pubkey.from_string(pool.asset_mint_in),
        mint_out=Pubkey.from_string(pool.asset_mint_out),
        amount_in=amount_in,
        slippage=slippage,
    )


class TestRegistry:
    """Tests for the venue registry."""
    
    def test_build_adapter(self, mock_ledger, mock_api):
        """Test every venue id maps to its adapter."""
        assert isinstance(build_adapter(Venue.METEORA_DAMM_V1, mock_ledger, mock_api), MeteoraDammV1Adapter)
        assert isinstance(build_adapter("meteora-dlmm", mock_ledger, mock_api), MeteoraDlmmAdapter)
        assert isinstance(build_adapter("RAYDIUM_CLMM", mock_ledger, mock_api), RaydiumClmmAdapter)
    
    def test_unknown_venue(self, mock_ledger):
        """Test unknown venues raise ValueError."""
        with pytest.raises(ValueError, match="Unsupported venue"):
            build_adapter("ORCA", mock_ledger)


class TestMeteoraDammV1:
    """Tests for the DAMM v1 adapter against synthetic account data."""
    
    TOKEN = _key(7)
    
    @pytest.fixture
    def accounts(self):
        pool = bytearray(damm_v1.POOL_MIN_SIZE)
        _put(pool, damm_v1.POOL_TOKEN_A_MINT, bytes(self.TOKEN))
        _put(pool, damm_v1.POOL_TOKEN_B_MINT, bytes(WSOL_MINT_PUBKEY))
        _put(pool, damm_v1.POOL_A_VAULT, bytes(_key(11)))
        _put(pool, damm_v1.POOL_B_VAULT, bytes(_key(12)))
        _put(pool, damm_v1.POOL_A_VAULT_LP, bytes(_key(13)))
        _put(pool, damm_v1.POOL_B_VAULT_LP, bytes(_key(14)))
        pool[damm_v1.POOL_ENABLED] = 1
        _put(pool, damm_v1.POOL_FEES, struct.pack('<QQ', 25, 10_000))
        
        def vault(total, token_vault, lp_mint):
            data = bytearray(damm_v1.VAULT_MIN_SIZE)
            _put(data, damm_v1.VAULT_TOTAL_AMOUNT, struct.pack('<Q', total))
            _put(data, damm_v1.VAULT_TOKEN_VAULT, bytes(token_vault))
            _put(data, damm_v1.VAULT_LP_MINT, bytes(lp_mint))
            return bytes(data)
        
        def token_account(amount):
            data = bytearray(72)
            _put(data, 64, struct.pack('<Q', amount))
            return bytes(data)
        
        def mint(supply):
            data = bytearray(82)
            _put(data, 36, struct.pack('<Q', supply))
            return bytes(data)
        
        return {
            'pool': bytes(pool),
            'vaults': [
                vault(10 ** 12, _key(21), _key(31)),
                vault(100 * 10 ** 9, _key(22), _key(32)),
                token_account(500),
                token_account(500),
            ],
            'lp_mints': [mint(500), mint(1_000)],
        }
    
    @pytest.fixture
    def adapter(self, mock_ledger, mock_api, accounts):
        mock_ledger.fetch_account_state.return_value = accounts['pool']
        mock_ledger.fetch_multiple_account_states.side_effect = [accounts['vaults'], accounts['lp_mints']]
        return MeteoraDammV1Adapter(mock_ledger, mock_api)
    
    @pytest.fixture
    def pool(self):
        return ResolvedPool(str(_key(1)), str(WSOL_MINT_PUBKEY), str(self.TOKEN))
    
    @pytest.mark.asyncio
    async def test_quote_buy(self, adapter, pool, payer):
        """Test a buy quote uses vault-share reserves, input fee and whole-percent slippage."""
        swap = await adapter.quote_buy(pool, 1.0, 0.01, payer)
        
        reserve_a = 10 ** 12
        reserve_b = 100 * 10 ** 9 * 500 // 1_000
        fee = trade_fee(10 ** 9, 25, 10_000)
        expected = (10 ** 9 - fee) * reserve_a // (reserve_b + 10 ** 9 - fee)
        assert swap.quote.amount_in == 10 ** 9
        assert swap.quote.expected_amount_out == expected
        assert swap.quote.slippage_applied == 1
        assert swap.quote.minimum_amount_out == expected * 99 // 100
        assert swap.pool.asset_mint_in == str(WSOL_MINT_PUBKEY)
    
    @pytest.mark.asyncio
    async def test_buy_instruction_framing(self, adapter, pool, payer):
        """Test buy framing: output ATA, WSOL wrap, swap, WSOL close."""
        swap = await adapter.quote_buy(pool, 1.0, 0.01, payer)
        
        program_ids = [ix.program_id for ix in swap.instructions]
        assert len(swap.instructions) == 6
        assert program_ids[4] == METEORA_DAMM_V1_PROGRAM_ID
        assert bytes(swap.instructions[4].data) == anchor_data(
            "swap", swap.quote.amount_in, swap.quote.minimum_amount_out
        )
        assert bytes(swap.instructions[-1].data) == bytes([9])
    
    @pytest.mark.asyncio
    async def test_sell_uses_token_decimals(self, adapter, mock_ledger, pool, payer):
        """Test sells convert with the token's decimals and skip the wrap."""
        mock_ledger.fetch_mint_decimals.return_value = 6
        
        swap = await adapter.quote_sell(pool, 250.0, 0.05, payer)
        
        assert swap.quote.amount_in == 250_000_000
        assert swap.quote.slippage_applied == 5
        assert swap.pool.asset_mint_in == str(self.TOKEN)
        assert len(swap.instructions) == 3
    
    @pytest.mark.asyncio
    async def test_disabled_pool(self, adapter, mock_ledger, accounts, pool, payer):
        """Test disabled pools cannot be quoted."""
        data = bytearray(accounts['pool'])
        data[damm_v1.POOL_ENABLED] = 0
        mock_ledger.fetch_account_state.return_value = bytes(data)
        
        with pytest.raises(QuoteComputationFailed, match="disabled"):
            await adapter.quote_buy(pool, 1.0, 0.01, payer)
    
    @pytest.mark.asyncio
    async def test_wrong_pair(self, adapter, payer):
        """Test a pool that does not hold the pair is rejected."""
        pool = ResolvedPool(str(_key(1)), str(WSOL_MINT_PUBKEY), str(_key(8)))
        with pytest.raises(QuoteComputationFailed):
            await adapter.quote_buy(pool, 1.0, 0.01, payer)
    
    @pytest.mark.asyncio
    async def test_zero_amount(self, adapter, pool, payer):
        """Test a zero amount is rejected before quoting."""
        with pytest.raises(ValueError):
            await adapter.quote_buy(pool, 0, 0.01, payer)


class TestMeteoraDammV2:
    """Tests for DAMM v2 fee placement."""
    
    TOKEN = _key(9)
    
    def _state(self, collect_fee_mode: int, activation_point: int = 0) -> DammV2PoolState:
        return DammV2PoolState(
            address=_key(60),
            token_a_mint=self.TOKEN,
            token_b_mint=WSOL_MINT_PUBKEY,
            token_a_vault=_key(61),
            token_b_vault=_key(62),
            token_a_program=TOKEN_PROGRAM_ID,
            token_b_program=TOKEN_PROGRAM_ID,
            liquidity=10 ** 18,
            sqrt_price=Q64,
            sqrt_min_price=Q64 // 4,
            sqrt_max_price=Q64 * 4,
            activation_point=activation_point,
            activation_type=0,
            pool_status=0,
            collect_fee_mode=collect_fee_mode,
            cliff_fee_numerator=10_000_000,
            fee_scheduler_mode=0,
            number_of_period=0,
            period_frequency=0,
            reduction_factor=0,
        )
    
    @pytest.fixture
    def adapter(self, mock_ledger, mock_api):
        mock_ledger.fetch_current_slot_or_timestamp.return_value = 100
        return MeteoraDammV2Adapter(mock_ledger, mock_api)
    
    @pytest.fixture
    def buy_ctx(self, payer):
        pool = ResolvedPool(str(_key(60)), str(WSOL_MINT_PUBKEY), str(self.TOKEN))
        return _context(pool, SwapDirection.BUY, payer, 1_000_000, slippage=0.0125)
    
    @pytest.mark.asyncio
    async def test_only_b_mode_charges_input(self, adapter, buy_ctx):
        """Test only-B mode takes the fee from a token B input."""
        quote = await adapter.compute_quote(self._state(COLLECT_FEE_ONLY_B), buy_ctx)
        assert quote.fee_amount == trade_fee(1_000_000, 10_000_000, FEE_DENOMINATOR)
        assert quote.slippage_applied == 1.25
        assert quote.minimum_amount_out < quote.expected_amount_out
    
    @pytest.mark.asyncio
    async def test_both_mode_charges_output(self, adapter, buy_ctx):
        """Test the default mode takes the fee from the output."""
        quote = await adapter.compute_quote(self._state(0), buy_ctx)
        gross = quote.expected_amount_out + quote.fee_amount
        assert quote.fee_amount == trade_fee(gross, 10_000_000, FEE_DENOMINATOR)
    
    @pytest.mark.asyncio
    async def test_inactive_pool(self, adapter, buy_ctx):
        """Test quoting before activation fails."""
        with pytest.raises(QuoteComputationFailed, match="not active"):
            await adapter.compute_quote(self._state(0, activation_point=1_000), buy_ctx)


class TestMeteoraDlmm:
    """Tests for DLMM discovery, bin traversal and exact-out sells."""
    
    TOKEN = _key(5)
    
    @pytest.fixture
    def adapter(self, mock_ledger, mock_api):
        mock_ledger.fetch_current_slot_or_timestamp.return_value = 100
        return MeteoraDlmmAdapter(mock_ledger, mock_api)
    
    def test_listing_is_venue_wide(self, adapter, sol_mint, bonk_mint):
        """Test DLMM caches one listing for all pairs."""
        assert adapter.listing_key(bonk_mint, sol_mint) == VENUE_WIDE_KEY
    
    def test_bin_array_index(self):
        """Test bin array indexes floor towards negative infinity."""
        assert bin_array_index(0) == 0
        assert bin_array_index(69) == 0
        assert bin_array_index(70) == 1
        assert bin_array_index(-1) == -1
    
    @pytest.mark.asyncio
    async def test_permissionless_pair_tries_both_orders(self, adapter, mock_ledger, sol_mint, bonk_mint):
        """Test the derived pair lookup falls through to the reversed mint order."""
        mock_ledger.fetch_account_state.side_effect = [None, b"pair"]
        
        address = await adapter.find_permissionless_pair(bonk_mint, sol_mint)
        
        expected = derive_permissionless_pair(Pubkey.from_string(sol_mint), Pubkey.from_string(bonk_mint))
        assert address == str(expected)
        assert mock_ledger.fetch_account_state.await_count == 2
    
    @pytest.mark.asyncio
    async def test_scan_matches_mints(self, adapter, mock_ledger, sol_mint, bonk_mint):
        """Test the program scan returns the pair holding both mints."""
        data = bytearray(LB_PAIR_SIZE)
        _put(data, TOKEN_X_MINT, bytes(Pubkey.from_string(bonk_mint)))
        _put(data, TOKEN_Y_MINT, bytes(Pubkey.from_string(sol_mint)))
        mock_ledger.scan_program_accounts.return_value = [("Other", bytes(LB_PAIR_SIZE)), ("Match", bytes(data))]
        
        assert await adapter.scan_pairs(bonk_mint, sol_mint) == "Match"
        mock_ledger.scan_program_accounts.assert_awaited_once_with(METEORA_DLMM_PROGRAM_ID, data_size=LB_PAIR_SIZE)
    
    @pytest.mark.asyncio
    async def test_scan_failure_returns_none(self, adapter, mock_ledger, sol_mint, bonk_mint):
        """Test a failed scan is logged and treated as no match."""
        mock_ledger.scan_program_accounts.side_effect = RuntimeError("getProgramAccounts disabled")
        assert await adapter.scan_pairs(bonk_mint, sol_mint) is None
    
    def test_swap_through_bins_crosses_arrays(self):
        """Test X in drains Y downwards across a bin array boundary."""
        pair = _lb_pair(self.TOKEN, WSOL_MINT_PUBKEY)
        bins = {
            0: BinAmounts(amount_x=0, amount_y=1_000, price=Q64),
            -1: BinAmounts(amount_x=0, amount_y=1_000, price=Q64),
        }
        out, fee, touched = swap_through_bins(pair, bins, 1_500, swap_for_y=True)
        assert out == 1_500
        assert fee == 0
        assert touched == [0, -1]
    
    def test_swap_through_bins_insufficient(self):
        """Test inputs beyond the loaded bins fail."""
        pair = _lb_pair(self.TOKEN, WSOL_MINT_PUBKEY)
        bins = {0: BinAmounts(amount_x=0, amount_y=1_000, price=Q64)}
        with pytest.raises(QuoteComputationFailed, match="Insufficient DLMM liquidity"):
            swap_through_bins(pair, bins, 5_000, swap_for_y=True)
    
    def test_variable_fee_grows_per_bin_crossed(self):
        """Test the volatility accumulator is re-accumulated for every bin the swap crosses."""
        pair = replace(
            _lb_pair(self.TOKEN, WSOL_MINT_PUBKEY),
            variable_fee_control=1_000_000,
            max_volatility_accumulator=350_000,
        )
        bins = {
            bin_id: BinAmounts(amount_x=0, amount_y=10 ** 9, price=Q64)
            for bin_id in (0, -1, -2)
        }

        static_out, static_fee, _ = swap_through_bins(pair, bins, 2_500_000_000, swap_for_y=True)
        out, fee, _ = swap_through_bins(pair, bins, 2_500_000_000, swap_for_y=True, current_timestamp=1_000)

        assert (static_out, static_fee) == (2_500_000_000, 0)
        # Bin 0 is the reference (no variable fee), bin -1 pays 1000 / 1e9, bin -2 pays 4000 / 1e9
        assert fee == 1_001 + 2_000
        assert out == 2_499_996_999
        assert pair.volatility_accumulator == 0

    def test_volatility_reference_decay(self):
        """Test the reference decays inside the decay window and resets after it."""
        pair = replace(
            _lb_pair(self.TOKEN, WSOL_MINT_PUBKEY, active_id=7),
            volatility_accumulator=20_000,
            reduction_factor=5_000,
            filter_period=30,
            decay_period=600,
            last_update_timestamp=1_000,
            index_reference=3,
        )

        pair.update_references(1_010)
        assert (pair.index_reference, pair.volatility_reference) == (3, 0)

        pair.update_references(1_100)
        assert (pair.index_reference, pair.volatility_reference) == (7, 10_000)

        pair.update_references(2_000)
        assert pair.volatility_reference == 0

    def test_total_fee_rate(self):
        """Test the base fee is base_factor * bin_step * 10."""
        pair = _lb_pair(self.TOKEN, WSOL_MINT_PUBKEY, base_factor=10_000)
        assert pair.total_fee_rate() == 100_000
    
    @pytest.mark.asyncio
    async def test_buy_uses_bps_minimum(self, adapter, payer):
        """Test buys bound the output with a basis-point minimum."""
        pair = _lb_pair(self.TOKEN, WSOL_MINT_PUBKEY)
        pool = ResolvedPool(str(pair.address), str(WSOL_MINT_PUBKEY), str(self.TOKEN))
        ctx = _context(pool, SwapDirection.BUY, payer, 500)
        bins = {0: BinAmounts(amount_x=1_000, amount_y=1_000, price=Q64)}
        
        with patch.object(adapter, 'load_bins', AsyncMock(return_value=bins)):
            quote = await adapter.compute_quote(pair, ctx)
        
        assert quote.expected_amount_out == 500
        assert quote.slippage_applied == 100
        assert quote.minimum_amount_out == 495
        assert not quote.exact_out
    
    @pytest.mark.asyncio
    async def test_sell_is_exact_out(self, adapter, payer):
        """Test sells request the quoted output and cap the input at the caller's amount."""
        pair = _lb_pair(self.TOKEN, WSOL_MINT_PUBKEY)
        pool = ResolvedPool(str(pair.address), str(self.TOKEN), str(WSOL_MINT_PUBKEY))
        ctx = _context(pool, SwapDirection.SELL, payer, 700)
        bins = {0: BinAmounts(amount_x=0, amount_y=1_000, price=Q64)}
        
        with patch.object(adapter, 'load_bins', AsyncMock(return_value=bins)):
            quote = await adapter.compute_quote(pair, ctx)
        instructions = await adapter.build_swap_instructions(pair, ctx, quote)
        
        assert quote.exact_out
        assert quote.maximum_amount_in == 700
        assert quote.minimum_amount_out is None
        assert pool.venue_metadata['bin_array_indexes'] == [0]
        assert bytes(instructions[0].data) == anchor_data("swap_exact_out", 700, quote.expected_amount_out)
    
    @pytest.mark.asyncio
    async def test_disabled_pair(self, adapter, payer):
        """Test disabled pairs cannot be quoted."""
        pair = _lb_pair(self.TOKEN, WSOL_MINT_PUBKEY)
        pair.status = 1
        pool = ResolvedPool(str(pair.address), str(WSOL_MINT_PUBKEY), str(self.TOKEN))
        with pytest.raises(QuoteComputationFailed, match="disabled"):
            await adapter.compute_quote(pair, _context(pool, SwapDirection.BUY, payer, 10))


class TestRaydiumClmm:
    """Tests for the Raydium CLMM adapter."""
    
    TOKEN = _key(3)
    
    def _state(self, liquidity: int) -> ClmmPoolState:
        return ClmmPoolState(
            address=_key(70),
            amm_config=_key(71),
            token_mint_0=WSOL_MINT_PUBKEY,
            token_mint_1=self.TOKEN,
            token_vault_0=_key(72),
            token_vault_1=_key(73),
            observation=_key(74),
            decimals_0=9,
            decimals_1=6,
            tick_spacing=10,
            liquidity=liquidity,
            sqrt_price_x64=Q64,
            tick_current=0,
            trade_fee_rate=2_500,
        )
    
    @staticmethod
    def _tick_array(start: int, ticks: dict) -> bytes:
        """Tick array account with ``{tick: liquidity_net}`` initialized."""
        data = bytearray(raydium_clmm.TICK_ARRAY_MIN_SIZE)
        _put(data, raydium_clmm.TICK_ARRAY_START_INDEX, struct.pack('<i', start))
        for slot, (tick, net) in enumerate(sorted(ticks.items())):
            base = raydium_clmm.TICK_ARRAY_TICKS + slot * raydium_clmm.TICK_STATE_SIZE
            _put(data, base, struct.pack('<i', tick))
            _put(data, base + raydium_clmm.TICK_LIQUIDITY_NET, net.to_bytes(16, 'little', signed=True))
            _put(data, base + raydium_clmm.TICK_LIQUIDITY_GROSS, abs(net).to_bytes(16, 'little'))
        return bytes(data)
    
    def test_tick_array_start_index(self):
        """Test start indexes floor to multiples of spacing * 60."""
        assert tick_array_start_index(0, 10) == 0
        assert tick_array_start_index(599, 10) == 0
        assert tick_array_start_index(-1, 10) == -600
    
    def test_decode_tick_array_skips_uninitialized(self):
        """Test only ticks with gross liquidity are returned, with signed net liquidity."""
        data = self._tick_array(0, {100: 5_000, 200: -7_000})
        assert raydium_clmm.decode_tick_array(data) == {100: 5_000, 200: -7_000}
    
    def test_walk_bound_covers_loaded_arrays(self, mock_ledger, mock_api):
        """Test the walk stops at the far edge of the third tick array."""
        adapter = RaydiumClmmAdapter(mock_ledger, mock_api)
        state = self._state(1)
        assert adapter.tick_array_starts(state, True) == [0, -600, -1200]
        assert adapter.walk_bound(state, True) == -1200
        assert adapter.tick_array_starts(state, False) == [0, 600, 1200]
        assert adapter.walk_bound(state, False) == 1800
    
    @pytest.mark.asyncio
    async def test_quote_applies_fee_and_fraction_slippage(self, mock_ledger, mock_api, payer):
        """Test the input fee and fractional minimum output."""
        mock_ledger.fetch_multiple_account_states.return_value = [None, None, None]
        adapter = RaydiumClmmAdapter(mock_ledger, mock_api)
        pool = ResolvedPool(str(_key(70)), str(WSOL_MINT_PUBKEY), str(self.TOKEN))
        ctx = _context(pool, SwapDirection.BUY, payer, 1_000_000, slippage=0.02)
        
        quote = await adapter.compute_quote(self._state(10 ** 18), ctx)
        
        assert quote.fee_amount == 2_500
        assert quote.slippage_applied == 0.02
        assert quote.minimum_amount_out == quote.expected_amount_out * 98 // 100
        requested = mock_ledger.fetch_multiple_account_states.await_args.args[0]
        assert requested == adapter.tick_arrays(self._state(10 ** 18), True)
    
    @pytest.mark.asyncio
    async def test_quote_crosses_initialized_tick(self, mock_ledger, mock_api, payer):
        """Test liquidity added at a crossed tick changes the quote."""
        liquidity = 10 ** 12
        amount_in = 10 ** 10
        mock_ledger.fetch_multiple_account_states.return_value = [
            self._tick_array(0, {100: liquidity}), None, None
        ]
        adapter = RaydiumClmmAdapter(mock_ledger, mock_api)
        pool = ResolvedPool(str(_key(70)), str(self.TOKEN), str(WSOL_MINT_PUBKEY))
        ctx = _context(pool, SwapDirection.SELL, payer, amount_in, slippage=0.01)
        
        quote = await adapter.compute_quote(self._state(liquidity), ctx)
        
        net_in = amount_in - trade_fee(amount_in, 2_500, 1_000_000)
        tick_price = sqrt_price_at_tick(100)
        consumed, first_out, price = swap_within_range(Q64, tick_price, liquidity, net_in, False)
        assert price == tick_price
        _, second_out, _ = swap_within_range(
            tick_price, sqrt_price_at_tick(1800), 2 * liquidity, net_in - consumed, False
        )
        assert quote.expected_amount_out == first_out + second_out
        _, single_range_out, _ = swap_within_range(Q64, sqrt_price_at_tick(1800), liquidity, net_in, False)
        assert quote.expected_amount_out > single_range_out
        assert mock_ledger.fetch_multiple_account_states.await_count == 1
    
    @pytest.mark.asyncio
    async def test_quote_beyond_loaded_ticks_fails(self, mock_ledger, mock_api, payer):
        """Test a swap too large for the loaded tick arrays is rejected instead of under-quoted."""
        liquidity = 10 ** 9
        mock_ledger.fetch_multiple_account_states.return_value = [None, None, None]
        adapter = RaydiumClmmAdapter(mock_ledger, mock_api)
        pool = ResolvedPool(str(_key(70)), str(self.TOKEN), str(WSOL_MINT_PUBKEY))
        ctx = _context(pool, SwapDirection.SELL, payer, 10 * liquidity)
        
        with pytest.raises(QuoteComputationFailed, match="Insufficient liquidity"):
            await adapter.compute_quote(self._state(liquidity), ctx)
    
    @pytest.mark.asyncio
    async def test_no_liquidity(self, mock_ledger, mock_api, payer):
        """Test pools without in-range liquidity or initialized ticks are rejected."""
        mock_ledger.fetch_multiple_account_states.return_value = [None, None, None]
        adapter = RaydiumClmmAdapter(mock_ledger, mock_api)
        pool = ResolvedPool(str(_key(70)), str(WSOL_MINT_PUBKEY), str(self.TOKEN))
        with pytest.raises(QuoteComputationFailed, match="no active liquidity"):
            await adapter.compute_quote(self._state(0), _context(pool, SwapDirection.BUY, payer, 10))
    
    @pytest.mark.asyncio
    async def test_input_decimals_from_pool(self, mock_ledger, mock_api):
        """Test sell decimals come from the pool state, not an RPC call."""
        adapter = RaydiumClmmAdapter(mock_ledger, mock_api)
        pool = ResolvedPool(str(_key(70)), str(self.TOKEN), str(WSOL_MINT_PUBKEY))
        assert await adapter.input_decimals(self._state(1), pool) == 6
        mock_ledger.fetch_mint_decimals.assert_not_awaited()


class TestMeteoraDbc:
    """Tests for the bonding-curve adapter."""
    
    TOKEN = _key(4)
    
    @pytest.fixture
    def adapter(self, mock_ledger, mock_api):
        return MeteoraDbcAdapter(mock_ledger, mock_api)
    
    def _pool_data(self, migrated: int = 0) -> bytes:
        data = bytearray(dbc.POOL_MIN_SIZE)
        _put(data, dbc.POOL_CONFIG, bytes(_key(80)))
        _put(data, dbc.POOL_BASE_MINT, bytes(self.TOKEN))
        _put(data, dbc.POOL_BASE_RESERVE, struct.pack('<QQ', 1_000, 25))
        data[dbc.POOL_IS_MIGRATED] = migrated
        return bytes(data)
    
    def _config_data(self) -> bytes:
        data = bytearray(dbc.CONFIG_MIN_SIZE)
        _put(data, dbc.CONFIG_QUOTE_MINT, bytes(WSOL_MINT_PUBKEY))
        _put(data, dbc.CONFIG_SQRT_START_PRICE, (Q64 // 2).to_bytes(16, 'little'))
        _put(data, dbc.CONFIG_CURVE, (Q64 * 2).to_bytes(16, 'little') + (10 ** 12).to_bytes(16, 'little'))
        return bytes(data)
    
    @pytest.mark.asyncio
    async def test_fetch_listings_scans_base_mint(self, adapter, mock_ledger):
        """Test the scan filters on the pool discriminator and base mint."""
        mock_ledger.scan_program_accounts.return_value = [("DbcPool", self._pool_data())]
        mock_ledger.fetch_multiple_account_states.return_value = [self._config_data()]
        
        records = await adapter.fetch_listings(str(self.TOKEN), str(WSOL_MINT_PUBKEY))
        
        memcmp = mock_ledger.scan_program_accounts.await_args.kwargs['memcmp']
        assert memcmp[0] == (0, dbc.VIRTUAL_POOL_DISCRIMINATOR)
        assert memcmp[1] == (dbc.POOL_BASE_MINT, bytes(self.TOKEN))
        assert len(records) == 1
        assert records[0].has_mints(str(self.TOKEN), str(WSOL_MINT_PUBKEY))
        assert records[0].reserve_b == 25.0
    
    def test_decode_curve(self):
        """Test the curve starts at the configured start price."""
        curve = dbc.decode_curve(self._config_data())
        assert curve == [(Q64 // 2, Q64 * 2, 10 ** 12)]
    
    @pytest.mark.asyncio
    async def test_migrated_pool_rejected(self, adapter, mock_ledger, payer):
        """Test migrated pools cannot be quoted."""
        mock_ledger.fetch_account_state.side_effect = [self._pool_data(migrated=1), self._config_data()]
        pool = ResolvedPool(str(_key(81)), str(WSOL_MINT_PUBKEY), str(self.TOKEN))
        
        with pytest.raises(QuoteComputationFailed, match="migrated"):
            await adapter.quote_buy(pool, 0.5, 0.01, payer)
