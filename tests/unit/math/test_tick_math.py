"""Tests for TickMath, SqrtPriceMath and liquidity math."""

import pytest

from uniswap_automation.constants import MAX_SQRT_RATIO, MAX_TICK, MIN_SQRT_RATIO, MIN_TICK, Q96, Q128
from uniswap_automation.errors import InvalidTickError
from uniswap_automation.math import (
    amounts_for_liquidity,
    get_amount0_delta,
    get_amount1_delta,
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
    get_tokens_owed,
    max_liquidity_for_amounts,
    nearest_usable_tick,
    sub_in_256,
)


class TestGetSqrtRatioAtTick:
    """Tests for tick -> sqrtPriceX96."""

    def test_tick_zero_is_one(self):
        """Tick 0 is a price of exactly 1."""
        assert get_sqrt_ratio_at_tick(0) == Q96

    def test_bounds(self):
        """The tick bounds map onto the sqrt ratio bounds."""
        assert get_sqrt_ratio_at_tick(MIN_TICK) == MIN_SQRT_RATIO
        assert get_sqrt_ratio_at_tick(MAX_TICK) == MAX_SQRT_RATIO

    def test_out_of_bounds_raises(self):
        """Ticks outside [MIN_TICK, MAX_TICK] are rejected."""
        with pytest.raises(InvalidTickError):
            get_sqrt_ratio_at_tick(MIN_TICK - 1)
        with pytest.raises(InvalidTickError):
            get_sqrt_ratio_at_tick(MAX_TICK + 1)

    def test_strictly_increasing(self):
        """Higher ticks always have higher sqrt ratios."""
        ticks = [MIN_TICK, -500000, -60, -1, 0, 1, 60, 257520, 500000, MAX_TICK]
        ratios = [get_sqrt_ratio_at_tick(t) for t in ticks]
        assert ratios == sorted(ratios)
        assert len(set(ratios)) == len(ratios)

    def test_symmetry(self):
        """Ratios at +t and -t multiply to roughly 2**192."""
        for tick in (1, 60, 10000, 257520):
            product = get_sqrt_ratio_at_tick(tick) * get_sqrt_ratio_at_tick(-tick)
            assert abs(product - Q96 * Q96) / (Q96 * Q96) < 1e-12


class TestGetTickAtSqrtRatio:
    """Tests for sqrtPriceX96 -> tick."""

    def test_bounds(self):
        """The sqrt ratio bounds map back onto the tick bounds."""
        assert get_tick_at_sqrt_ratio(MIN_SQRT_RATIO) == MIN_TICK
        assert get_tick_at_sqrt_ratio(MAX_SQRT_RATIO - 1) == MAX_TICK - 1

    def test_round_trip(self):
        """A tick's own sqrt ratio maps back to the tick."""
        for tick in (MIN_TICK, -257520, -1, 0, 1, 255240, 258060, MAX_TICK - 1):
            assert get_tick_at_sqrt_ratio(get_sqrt_ratio_at_tick(tick)) == tick

    def test_rounds_down_between_ticks(self):
        """A ratio just below the next tick's ratio belongs to the lower tick."""
        ratio = get_sqrt_ratio_at_tick(100) - 1
        assert get_tick_at_sqrt_ratio(ratio) == 99

    def test_out_of_bounds_raises(self):
        """MAX_SQRT_RATIO itself is exclusive."""
        with pytest.raises(InvalidTickError):
            get_tick_at_sqrt_ratio(MAX_SQRT_RATIO)
        with pytest.raises(InvalidTickError):
            get_tick_at_sqrt_ratio(MIN_SQRT_RATIO - 1)


class TestNearestUsableTick:
    """Tests for snapping ticks onto a spacing grid."""

    def test_rounds_to_nearest(self):
        """Ticks round to the closest multiple."""
        assert nearest_usable_tick(14, 10) == 10
        assert nearest_usable_tick(16, 10) == 20
        assert nearest_usable_tick(-14, 10) == -10

    def test_halfway_rounds_up(self):
        """Halfway ticks round toward positive infinity."""
        assert nearest_usable_tick(5, 10) == 10
        assert nearest_usable_tick(-5, 10) == 0

    def test_stays_within_bounds(self):
        """Results beyond the tick bounds step back inside."""
        assert nearest_usable_tick(MIN_TICK, 60) == -887220
        assert nearest_usable_tick(MAX_TICK, 60) == 887220

    def test_invalid_spacing_raises(self):
        """Tick spacing must be positive."""
        with pytest.raises(InvalidTickError):
            nearest_usable_tick(0, 0)


class TestAmountDeltas:
    """Tests for SqrtPriceMath amount deltas."""

    def test_amount1_delta(self):
        """amount1 = L * (sqrtB - sqrtA)."""
        assert get_amount1_delta(Q96, 2 * Q96, Q96, False) == Q96
        assert get_amount1_delta(2 * Q96, Q96, Q96, False) == Q96

    def test_amount0_delta(self):
        """amount0 = L * (sqrtB - sqrtA) / (sqrtA * sqrtB)."""
        assert get_amount0_delta(Q96, 2 * Q96, Q96, False) == Q96 // 2

    def test_round_up_is_at_least_round_down(self):
        """Rounding up never yields less than rounding down, and differs by at most 1."""
        a, b = get_sqrt_ratio_at_tick(-60), get_sqrt_ratio_at_tick(60)
        liquidity = 123456789
        for delta in (get_amount0_delta, get_amount1_delta):
            down = delta(a, b, liquidity, False)
            up = delta(a, b, liquidity, True)
            assert 0 <= up - down <= 1


class TestLiquidityMath:
    """Tests for liquidity <-> amount conversions."""

    def setup_method(self):
        self.lower = get_sqrt_ratio_at_tick(-600)
        self.upper = get_sqrt_ratio_at_tick(600)

    def test_below_range_uses_amount0_only(self):
        """With the price below the range, amount1 does not constrain liquidity."""
        below = get_sqrt_ratio_at_tick(-1200)
        liquidity = max_liquidity_for_amounts(below, self.lower, self.upper, 10**18, 0, True)
        assert liquidity > 0
        assert liquidity == max_liquidity_for_amounts(below, self.lower, self.upper, 10**18, 10**30, True)

    def test_above_range_uses_amount1_only(self):
        """With the price above the range, amount0 does not constrain liquidity."""
        above = get_sqrt_ratio_at_tick(1200)
        liquidity = max_liquidity_for_amounts(above, self.lower, self.upper, 0, 10**18, True)
        assert liquidity > 0
        assert liquidity == max_liquidity_for_amounts(above, self.lower, self.upper, 10**30, 10**18, True)

    def test_in_range_takes_minimum(self):
        """In range, the scarcer token bounds liquidity."""
        liquidity = max_liquidity_for_amounts(Q96, self.lower, self.upper, 10**18, 10**18, True)
        scarce0 = max_liquidity_for_amounts(Q96, self.lower, self.upper, 10**15, 10**18, True)
        assert scarce0 < liquidity

    def test_amounts_for_liquidity_by_range(self):
        """Position amounts are single-sided outside the range."""
        liquidity = 10**18
        below = amounts_for_liquidity(
            get_sqrt_ratio_at_tick(-1200), -1200, -600, 600, self.lower, self.upper, liquidity, False
        )
        above = amounts_for_liquidity(
            get_sqrt_ratio_at_tick(1200), 1200, -600, 600, self.lower, self.upper, liquidity, False
        )
        inside = amounts_for_liquidity(Q96, 0, -600, 600, self.lower, self.upper, liquidity, False)
        assert below[0] > 0 and below[1] == 0
        assert above[0] == 0 and above[1] > 0
        assert inside[0] > 0 and inside[1] > 0

    def test_liquidity_round_trip_does_not_exceed_input(self):
        """Amounts backing the computed liquidity never exceed what was supplied."""
        liquidity = max_liquidity_for_amounts(Q96, self.lower, self.upper, 10**18, 10**18, True)
        amount0, amount1 = amounts_for_liquidity(
            Q96, 0, -600, 600, self.lower, self.upper, liquidity, False
        )
        assert amount0 <= 10**18
        assert amount1 <= 10**18


class TestFeeAccounting:
    """Tests for fee growth accounting."""

    def test_sub_in_256_wraps(self):
        """Subtraction wraps around uint256."""
        assert sub_in_256(0, 1) == (1 << 256) - 1
        assert sub_in_256(5, 3) == 2

    def test_tokens_owed(self):
        """Fees owed scale with liquidity."""
        owed = get_tokens_owed(0, Q128, 7, Q128, 3 * Q128)
        assert owed == (7, 14)

    def test_tokens_owed_across_overflow(self):
        """Fee growth that wrapped past 2**256 still yields the right delta."""
        last = (1 << 256) - Q128
        owed = get_tokens_owed(last, last, 5, Q128, 0)
        assert owed == (10, 5)
