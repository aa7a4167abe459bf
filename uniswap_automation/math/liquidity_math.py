"""Liquidity <-> token amount conversions and fee accounting.

Mirrors the v3-sdk helpers `maxLiquidityForAmounts` and
`PositionLibrary.getTokensOwed`.
"""

from __future__ import annotations

from uniswap_automation.constants import Q96, Q128
from uniswap_automation.math.sqrt_price_math import get_amount0_delta, get_amount1_delta

__all__ = [
    "max_liquidity_for_amount0_imprecise",
    "max_liquidity_for_amount0_precise",
    "max_liquidity_for_amount1",
    "max_liquidity_for_amounts",
    "amounts_for_liquidity",
    "sub_in_256",
    "get_tokens_owed",
]


def max_liquidity_for_amount0_imprecise(sqrt_ratio_a_x96: int, sqrt_ratio_b_x96: int, amount0: int) -> int:
    """Liquidity for amount0 with the intermediate rounding the periphery contracts use."""
    if sqrt_ratio_a_x96 > sqrt_ratio_b_x96:
        sqrt_ratio_a_x96, sqrt_ratio_b_x96 = sqrt_ratio_b_x96, sqrt_ratio_a_x96
    intermediate = sqrt_ratio_a_x96 * sqrt_ratio_b_x96 // Q96
    return amount0 * intermediate // (sqrt_ratio_b_x96 - sqrt_ratio_a_x96)


def max_liquidity_for_amount0_precise(sqrt_ratio_a_x96: int, sqrt_ratio_b_x96: int, amount0: int) -> int:
    """L = amount0 * sqrtA * sqrtB / (sqrtB - sqrtA), computed without intermediate rounding."""
    if sqrt_ratio_a_x96 > sqrt_ratio_b_x96:
        sqrt_ratio_a_x96, sqrt_ratio_b_x96 = sqrt_ratio_b_x96, sqrt_ratio_a_x96
    numerator = amount0 * sqrt_ratio_a_x96 * sqrt_ratio_b_x96
    denominator = Q96 * (sqrt_ratio_b_x96 - sqrt_ratio_a_x96)
    return numerator // denominator


def max_liquidity_for_amount1(sqrt_ratio_a_x96: int, sqrt_ratio_b_x96: int, amount1: int) -> int:
    """L = amount1 * Q96 / (sqrtB - sqrtA)"""
    if sqrt_ratio_a_x96 > sqrt_ratio_b_x96:
        sqrt_ratio_a_x96, sqrt_ratio_b_x96 = sqrt_ratio_b_x96, sqrt_ratio_a_x96
    return amount1 * Q96 // (sqrt_ratio_b_x96 - sqrt_ratio_a_x96)


def max_liquidity_for_amounts(
    sqrt_ratio_current_x96: int,
    sqrt_ratio_a_x96: int,
    sqrt_ratio_b_x96: int,
    amount0: int,
    amount1: int,
    use_full_precision: bool,
) -> int:
    """Maximum liquidity mintable from the given amounts at the current price.

    - Below range: only token0 constrains liquidity
    - Above range: only token1 constrains liquidity
    - In range: the smaller of both constraints
    """
    if sqrt_ratio_a_x96 > sqrt_ratio_b_x96:
        sqrt_ratio_a_x96, sqrt_ratio_b_x96 = sqrt_ratio_b_x96, sqrt_ratio_a_x96

    for_amount0 = (
        max_liquidity_for_amount0_precise if use_full_precision else max_liquidity_for_amount0_imprecise
    )

    if sqrt_ratio_current_x96 <= sqrt_ratio_a_x96:
        return for_amount0(sqrt_ratio_a_x96, sqrt_ratio_b_x96, amount0)
    if sqrt_ratio_current_x96 < sqrt_ratio_b_x96:
        liquidity0 = for_amount0(sqrt_ratio_current_x96, sqrt_ratio_b_x96, amount0)
        liquidity1 = max_liquidity_for_amount1(sqrt_ratio_a_x96, sqrt_ratio_current_x96, amount1)
        return min(liquidity0, liquidity1)
    return max_liquidity_for_amount1(sqrt_ratio_a_x96, sqrt_ratio_b_x96, amount1)


def amounts_for_liquidity(
    sqrt_ratio_current_x96: int,
    tick_current: int,
    tick_lower: int,
    tick_upper: int,
    sqrt_ratio_lower_x96: int,
    sqrt_ratio_upper_x96: int,
    liquidity: int,
    round_up: bool,
) -> tuple[int, int]:
    """Token amounts backing `liquidity` over [tick_lower, tick_upper).

    Range membership is decided on ticks, as the pool contract does.
    """
    if tick_current < tick_lower:
        return (
            get_amount0_delta(sqrt_ratio_lower_x96, sqrt_ratio_upper_x96, liquidity, round_up),
            0,
        )
    if tick_current < tick_upper:
        return (
            get_amount0_delta(sqrt_ratio_current_x96, sqrt_ratio_upper_x96, liquidity, round_up),
            get_amount1_delta(sqrt_ratio_lower_x96, sqrt_ratio_current_x96, liquidity, round_up),
        )
    return (
        0,
        get_amount1_delta(sqrt_ratio_lower_x96, sqrt_ratio_upper_x96, liquidity, round_up),
    )


def sub_in_256(x: int, y: int) -> int:
    """x - y with uint256 wrap-around."""
    return (x - y) % (1 << 256)


def get_tokens_owed(
    fee_growth_inside0_last_x128: int,
    fee_growth_inside1_last_x128: int,
    liquidity: int,
    fee_growth_inside0_x128: int,
    fee_growth_inside1_x128: int,
) -> tuple[int, int]:
    """Fees accrued since the position's last checkpoint."""
    tokens_owed0 = sub_in_256(fee_growth_inside0_x128, fee_growth_inside0_last_x128) * liquidity // Q128
    tokens_owed1 = sub_in_256(fee_growth_inside1_x128, fee_growth_inside1_last_x128) * liquidity // Q128
    return tokens_owed0, tokens_owed1
