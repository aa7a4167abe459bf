"""Exact Uniswap V3 integer math.

This package provides the primitives the position and price helpers build on:
- TickMath: tick <-> sqrtPriceX96 conversions
- SqrtPriceMath: token amount deltas between prices
- Liquidity math: liquidity <-> amounts, fee accounting
"""

from uniswap_automation.math.liquidity_math import (
    amounts_for_liquidity,
    get_tokens_owed,
    max_liquidity_for_amounts,
    sub_in_256,
)
from uniswap_automation.math.sqrt_price_math import get_amount0_delta, get_amount1_delta
from uniswap_automation.math.tick_math import (
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
    nearest_usable_tick,
)

__all__ = [
    "get_sqrt_ratio_at_tick",
    "get_tick_at_sqrt_ratio",
    "nearest_usable_tick",
    "get_amount0_delta",
    "get_amount1_delta",
    "max_liquidity_for_amounts",
    "amounts_for_liquidity",
    "get_tokens_owed",
    "sub_in_256",
]
