"""Uniswap V3 TickMath, bit-exact with the Solidity library.

Reference:
https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/TickMath.sol
"""

from __future__ import annotations

from uniswap_automation.constants import MAX_SQRT_RATIO, MAX_TICK, MIN_SQRT_RATIO, MIN_TICK
from uniswap_automation.errors import InvalidTickError

__all__ = [
    "get_sqrt_ratio_at_tick",
    "get_tick_at_sqrt_ratio",
    "nearest_usable_tick",
]

_MAX_UINT256 = (1 << 256) - 1

# Multipliers for each set bit of |tick|: 2**128 / sqrt(1.0001)**(2**i)
_RATIO_MULTIPLIERS = (
    (0x2, 0xFFF97272373D413259A46990580E213A),
    (0x4, 0xFFF2E50F5F656932EF12357CF3C7FDCC),
    (0x8, 0xFFE5CACA7E10E4E61C3624EAA0941CD0),
    (0x10, 0xFFCB9843D60F6159C9DB58835C926644),
    (0x20, 0xFF973B41FA98C081472E6896DFB254C0),
    (0x40, 0xFF2EA16466C96A3843EC78B326B52861),
    (0x80, 0xFE5DEE046A99A2A811C461F1969C3053),
    (0x100, 0xFCBE86C7900A88AEDCFFC83B479AA3A4),
    (0x200, 0xF987A7253AC413176F2B074CF7815E54),
    (0x400, 0xF3392B0822B70005940C7A398E4B70F3),
    (0x800, 0xE7159475A2C29B7443B29C7FA6E889D9),
    (0x1000, 0xD097F3BDFD2022B8845AD8F792AA5825),
    (0x2000, 0xA9F746462D870FDF8A65DC1F90E061E5),
    (0x4000, 0x70D869A156D2A1B890BB3DF62BAF32F7),
    (0x8000, 0x31BE135F97D08FD981231505542FCFA6),
    (0x10000, 0x9AA508B5B7A84E1C677DE54F3E99BC9),
    (0x20000, 0x5D6AF8DEDB81196699C329225EE604),
    (0x40000, 0x2216E584F5FA1EA926041BEDFE98),
    (0x80000, 0x48A170391F7DC42444E8FA2),
)


def get_sqrt_ratio_at_tick(tick: int) -> int:
    """Calculate sqrt(1.0001^tick) * 2^96.

    Args:
        tick: Tick index in [MIN_TICK, MAX_TICK]

    Returns:
        sqrtPriceX96 as a Q64.96 integer, rounded up

    Raises:
        InvalidTickError: If tick is out of bounds
    """
    if not MIN_TICK <= tick <= MAX_TICK:
        raise InvalidTickError(f"Tick {tick} out of bounds [{MIN_TICK}, {MAX_TICK}]")

    abs_tick = abs(tick)
    ratio = 0xFFFCB933BD6FAD37AA2D162D1A594001 if abs_tick & 0x1 else 1 << 128
    for bit, multiplier in _RATIO_MULTIPLIERS:
        if abs_tick & bit:
            ratio = (ratio * multiplier) >> 128

    if tick > 0:
        ratio = _MAX_UINT256 // ratio

    # Q128.128 -> Q128.96, rounding up so getTickAtSqrtRatio round-trips
    return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)


def get_tick_at_sqrt_ratio(sqrt_ratio_x96: int) -> int:
    """Calculate the greatest tick whose sqrt ratio is <= the input.

    Args:
        sqrt_ratio_x96: sqrtPriceX96 in [MIN_SQRT_RATIO, MAX_SQRT_RATIO)

    Returns:
        Tick index

    Raises:
        InvalidTickError: If the ratio is out of bounds
    """
    if not MIN_SQRT_RATIO <= sqrt_ratio_x96 < MAX_SQRT_RATIO:
        raise InvalidTickError(f"sqrtRatioX96 {sqrt_ratio_x96} out of bounds")

    # get_sqrt_ratio_at_tick is strictly increasing, so bisect on it
    low, high = MIN_TICK, MAX_TICK
    while low < high:
        mid = (low + high + 1) // 2
        if get_sqrt_ratio_at_tick(mid) <= sqrt_ratio_x96:
            low = mid
        else:
            high = mid - 1
    return low


def nearest_usable_tick(tick: int, tick_spacing: int) -> int:
    """Round a tick to the nearest multiple of tick_spacing within bounds.

    Halfway ticks round toward positive infinity, as the SDK's Math.round does.
    """
    if tick_spacing <= 0:
        raise InvalidTickError("tick spacing must be positive")
    if not MIN_TICK <= tick <= MAX_TICK:
        raise InvalidTickError(f"Tick {tick} out of bounds [{MIN_TICK}, {MAX_TICK}]")

    rounded = ((2 * tick + tick_spacing) // (2 * tick_spacing)) * tick_spacing
    if rounded < MIN_TICK:
        return rounded + tick_spacing
    if rounded > MAX_TICK:
        return rounded - tick_spacing
    return rounded
