"""Usable-tick alignment and tick-to-liquidity lookups."""

from __future__ import annotations

from collections.abc import Mapping

from uniswap_automation.constants import MAX_TICK, MIN_TICK, TICK_SPACINGS
from uniswap_automation.errors import InvalidTickError
from uniswap_automation.math.tick_math import nearest_usable_tick
from uniswap_automation.price import Price, price_to_closest_tick, tick_to_price

# Sorted map from tick to the pool's active liquidity at that tick
TickToLiquidityMap = dict[int, int]


def get_tick_spacing(fee: int) -> int:
    """Tick spacing for a fee tier.

    Raises:
        InvalidTickError: If the fee tier is unknown
    """
    try:
        return TICK_SPACINGS[fee]
    except KeyError:
        raise InvalidTickError(f"Unknown fee tier: {fee}") from None


def price_to_closest_usable_tick(price: Price, fee: int) -> int:
    """Closest usable tick for a price, in either token direction."""
    tick = price_to_closest_tick(price)
    tick = max(tick, MIN_TICK)
    tick = min(tick, MAX_TICK)
    return nearest_usable_tick(tick, get_tick_spacing(fee))


def align_price_to_closest_usable_tick(price: Price, fee: int) -> Price:
    """Snap a price to the price of its closest usable tick."""
    return tick_to_price(price.base, price.quote, price_to_closest_usable_tick(price, fee))


def validate_usable_ticks(tick_lower: int, tick_upper: int, fee: int) -> None:
    """Check both ticks lie on the fee tier's tick grid.

    Raises:
        InvalidTickError: If either tick differs from its nearest usable tick
    """
    spacing = get_tick_spacing(fee)
    for tick in (tick_lower, tick_upper):
        if not MIN_TICK <= tick <= MAX_TICK or tick != nearest_usable_tick(tick, spacing):
            raise InvalidTickError("tickLower or tickUpper not valid")


def read_tick_to_liquidity_map(tick_to_liquidity_map: Mapping[int, int], tick: int) -> int:
    """Liquidity at `tick`.

    Falls back to the first entry at or above `tick`, then to 0.
    """
    if tick in tick_to_liquidity_map:
        return tick_to_liquidity_map[tick]
    for map_tick, liquidity in tick_to_liquidity_map.items():
        if map_tick >= tick:
            return liquidity
    return 0


__all__ = [
    "TickToLiquidityMap",
    "get_tick_spacing",
    "price_to_closest_usable_tick",
    "align_price_to_closest_usable_tick",
    "validate_usable_ticks",
    "read_tick_to_liquidity_map",
]
