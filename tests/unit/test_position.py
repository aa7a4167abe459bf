"""Tests for positions: amount math, on-chain reads and projections."""

import base64
import json
from decimal import Decimal
from fractions import Fraction

import pytest
from eth_abi import decode, encode

from uniswap_automation.constants import Q128
from uniswap_automation.errors import InvalidTickError, MissingPositionLiquidityError
from uniswap_automation.position import (
    BasicPositionInfo,
    Position,
    PositionDetails,
    get_all_positions_details,
    get_collectable_token_amounts,
    get_position,
    get_position_at_price,
    get_position_from_basic_info,
    get_position_ids_by_owner,
    get_rebalanced_position,
    get_token_svg,
    is_position_in_range,
    view_collectable_token_amounts,
)
from tests.helpers import CHAIN_ID, EOA, WBTC, WETH, make_pool, register_pool, register_token
from tests.helpers.constants import NPM_ADDRESS, WBTC_WETH_3000_POOL
from tests.helpers.factories import positions_output

POSITION_ID = 4


def _register_position(provider, tick_lower=257400, tick_upper=257640, liquidity=1000, **kwargs):
    """Serve a WBTC/WETH 0.3% position, its tokens and its pool."""
    output = positions_output(
        WBTC.address, WETH.address, 3000, tick_lower, tick_upper, liquidity, **kwargs
    )
    provider.on_call(NPM_ADDRESS, "positions(uint256)", lambda data, tx, overrides: output)
    provider.returns(NPM_ADDRESS, "ownerOf(uint256)", ["address"], [EOA])
    register_token(provider, WBTC)
    register_token(provider, WETH)
    register_pool(provider, make_pool())


class TestPositionAmounts:
    """Tests for liquidity and amount calculations."""

    def test_single_sided_token0(self):
        """10 WBTC above the current price mints exactly the expected liquidity."""
        position = Position.from_amount0(make_pool(), 258060, 258120, 10**9, use_full_precision=False)
        assert position.liquidity == 133959413978504760
        assert position.amount0.quotient == 999999999
        assert position.amount1.quotient == 0
        assert position.mint_amounts == (10**9, 0)

    def test_single_sided_token1(self):
        """10 WETH below the current price mints exactly the expected liquidity."""
        position = Position.from_amount1(make_pool(), 255240, 255300, 10**19)
        assert position.liquidity == 9551241229311572
        assert position.amount0.quotient == 0
        assert position.amount1.quotient == 9999999999999999576
        assert position.mint_amounts == (0, 9999999999999999577)

    def test_invalid_ticks_raise(self):
        """Ticks must be ordered and usable."""
        with pytest.raises(InvalidTickError):
            Position(make_pool(), 1, 258120, 258060)
        with pytest.raises(InvalidTickError):
            Position(make_pool(), 1, 258061, 258120)

    def test_mint_slippage_out_of_range(self):
        """Out-of-range mints tolerate no reduction of the single input."""
        position = Position.from_amount0(make_pool(), 258060, 258120, 10**9, use_full_precision=False)
        assert position.mint_amounts_with_slippage(Fraction(0)) == (10**9, 0)

    def test_slippage_lowers_minimums(self):
        """In-range minimum amounts shrink as slippage grows."""
        position = Position.from_amounts(
            make_pool(), 257400, 257640, 10**8, 10**19, use_full_precision=False
        )
        tight = position.mint_amounts_with_slippage(Fraction(1, 1000))
        loose = position.mint_amounts_with_slippage(Fraction(5, 100))
        desired = position.mint_amounts
        assert loose[0] <= tight[0] <= desired[0]
        assert loose[1] <= tight[1] <= desired[1]

        burn = position.burn_amounts_with_slippage(Fraction(5, 100))
        assert burn[0] <= position.amount0.quotient
        assert burn[1] <= position.amount1.quotient

    def test_in_range(self):
        """A position is in range while lower <= tick < upper."""
        pool = make_pool()
        assert is_position_in_range(Position(pool, 1, 257400, 257640))
        assert is_position_in_range(Position(pool, 1, 257520, 257580))
        assert not is_position_in_range(Position(pool, 1, 257460, 257520))


class TestProjections:
    """Tests for rebalance and price projections."""

    def setup_method(self):
        self.pool = make_pool(tick=0)
        self.position = Position(self.pool, 10**18, -600, 600)

    def _value_in_token1(self, position):
        return position.amount0.quotient + position.amount1.quotient

    def test_rebalanced_position_preserves_value(self):
        """Rebalancing at price 1 keeps the position's value."""
        rebalanced = get_rebalanced_position(self.position, -1200, 1200)
        assert rebalanced.tick_lower == -1200
        assert rebalanced.tick_upper == 1200
        before = self._value_in_token1(self.position)
        after = self._value_in_token1(rebalanced)
        assert after <= before + 2
        assert after / before > 0.999999

    def test_rebalance_out_of_range(self):
        """A range above the price holds token0 only."""
        rebalanced = get_rebalanced_position(self.position, 600, 1200)
        assert rebalanced.amount1.quotient == 0
        assert rebalanced.amount0.quotient > 0

    def test_position_at_price(self):
        """Moving the price above the range leaves only token1."""
        moved = get_position_at_price(self.position, Decimal(2))
        assert moved.liquidity == self.position.liquidity
        assert moved.amount0.quotient == 0
        assert moved.amount1.quotient > self.position.amount1.quotient


class TestPositionReads:
    """Tests for reading positions over RPC."""

    async def test_get_position(self, provider, w3):
        """positions() plus the pool state build a Position."""
        _register_position(provider)

        position = await get_position(CHAIN_ID, POSITION_ID, w3)

        assert position.pool == make_pool()
        assert position.liquidity == 1000
        assert (position.tick_lower, position.tick_upper) == (257400, 257640)

    async def test_position_from_basic_info_requires_liquidity(self, w3):
        """Basic info without liquidity cannot build a Position."""
        basic_info = BasicPositionInfo(WBTC, WETH, 3000, 257400, 257640)
        with pytest.raises(MissingPositionLiquidityError):
            await get_position_from_basic_info(basic_info, CHAIN_ID, w3)

    async def test_position_details(self, provider, w3):
        """PositionDetails carries owner, tokens and raw tokens owed."""
        _register_position(provider, tokens_owed0=11, tokens_owed1=22)

        details = await PositionDetails.from_position_id(CHAIN_ID, POSITION_ID, w3)

        assert details.token_id == POSITION_ID
        assert details.owner == EOA
        assert details.token0.symbol == "WBTC"
        assert details.fee == 3000
        assert details.liquidity == 1000
        assert details.tokens_owed0.quotient == 11
        assert details.tokens_owed1.quotient == 22
        assert details.basic_info.liquidity == 1000

    async def test_view_collectable_token_amounts(self, provider, w3):
        """Fees since the checkpoint are added to tokensOwed."""
        _register_position(
            provider,
            liquidity=1000,
            fee_growth_inside0_last=Q128,
            tokens_owed0=7,
        )
        provider.returns(WBTC_WETH_3000_POOL, "feeGrowthGlobal0X128()", ["uint256"], [10 * Q128])
        provider.returns(WBTC_WETH_3000_POOL, "feeGrowthGlobal1X128()", ["uint256"], [Q128])
        outside = {257400: (2 * Q128, 0), 257640: (3 * Q128, 0)}

        def ticks(data, tx, overrides):
            (tick,) = decode(["int24"], data[4:])
            outside0, outside1 = outside[tick]
            return encode(
                ["uint128", "int128", "uint256", "uint256", "int56", "uint160", "uint32", "bool"],
                [0, 0, outside0, outside1, 0, 0, 0, True],
            )

        provider.on_call(WBTC_WETH_3000_POOL, "ticks(int24)", ticks)

        amounts = await view_collectable_token_amounts(CHAIN_ID, POSITION_ID, w3)

        # inside0 = 10 - 2 - 3 = 5, minus last 1 = 4 per unit of liquidity
        assert amounts.token0_amount.quotient == 4 * 1000 + 7
        assert amounts.token1_amount.quotient == 1000
        assert amounts.token0_amount.currency == WBTC

    async def test_get_collectable_token_amounts(self, provider, w3):
        """collect() is simulated from the owner's address."""
        _register_position(provider)
        provider.returns(
            NPM_ADDRESS, "collect((uint256,address,uint128,uint128))", ["uint256", "uint256"], [5, 6]
        )

        amounts = await get_collectable_token_amounts(CHAIN_ID, POSITION_ID, w3)

        assert amounts.token0_amount.quotient == 5
        assert amounts.token1_amount.quotient == 6
        collect_tx = [
            tx for tx, _ in provider.calls_to(NPM_ADDRESS) if tx["data"].startswith("0xfc6f7865")
        ][0]
        assert collect_tx["from"].lower() == EOA.lower()

    async def test_position_ids_by_owner(self, provider, w3):
        """Ids are enumerated with tokenOfOwnerByIndex."""
        provider.returns(NPM_ADDRESS, "balanceOf(address)", ["uint256"], [3])

        def token_of_owner_by_index(data, tx, overrides):
            _, index = decode(["address", "uint256"], data[4:])
            return encode(["uint256"], [100 + index])

        provider.on_call(NPM_ADDRESS, "tokenOfOwnerByIndex(address,uint256)", token_of_owner_by_index)

        assert await get_position_ids_by_owner(EOA, CHAIN_ID, w3) == [100, 101, 102]

    async def test_all_positions_details(self, provider, w3):
        """Details are keyed by position id."""
        _register_position(provider)
        provider.returns(NPM_ADDRESS, "balanceOf(address)", ["uint256"], [1])
        provider.returns(NPM_ADDRESS, "tokenOfOwnerByIndex(address,uint256)", ["uint256"], [POSITION_ID])

        details = await get_all_positions_details(EOA, CHAIN_ID, w3)

        assert list(details) == [POSITION_ID]
        assert details[POSITION_ID].liquidity == 1000

    async def test_token_svg(self, provider, w3):
        """The image is extracted from the base64 JSON token URI."""
        metadata = {"name": "Uniswap - 0.3% - WBTC/WETH", "image": "data:image/svg+xml;base64,PHN2Zz4="}
        uri = "data:application/json;base64," + base64.b64encode(json.dumps(metadata).encode()).decode()
        provider.returns(NPM_ADDRESS, "tokenURI(uint256)", ["string"], [uri])

        assert await get_token_svg(CHAIN_ID, POSITION_ID, w3) == "data:image/svg+xml;base64,PHN2Zz4="
