"""Prices between two tokens and their conversions to ticks and sqrt ratios.

A `Price` stores the raw exchange ratio: the amount of raw quote token worth
one raw base token, as numerator / denominator. Human-readable values are
obtained with `to_fixed`, which adjusts for both tokens' decimals.
"""

from __future__ import annotations

import decimal
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from math import isqrt

import httpx
import structlog

from uniswap_automation.chain import get_chain_info
from uniswap_automation.config import HelperConfig, get_config
from uniswap_automation.constants import MAX_SQRT_RATIO, MIN_SQRT_RATIO, Q96, Q192
from uniswap_automation.currency import CurrencyAmount, Token
from uniswap_automation.errors import InvalidAmountError, InvalidPriceError
from uniswap_automation.http_client import http_client
from uniswap_automation.math.sqrt_price_math import get_amount0_delta, get_amount1_delta
from uniswap_automation.math.tick_math import get_sqrt_ratio_at_tick, get_tick_at_sqrt_ratio

logger = structlog.get_logger()

# 2**192 has 58 digits; keep headroom for squares and square roots of it
PRICE_CONTEXT = decimal.Context(prec=120)

_PRICE_PATTERN = re.compile(r"^\d*\.?\d+$")


@dataclass(frozen=True, eq=False)
class Price:
    """Price of `base` denominated in `quote`."""

    base: Token
    quote: Token
    denominator: int
    numerator: int

    def __post_init__(self) -> None:
        if self.denominator == 0:
            raise InvalidPriceError("Price denominator must be non-zero")

    @property
    def as_fraction(self) -> Fraction:
        """Raw quote units per raw base unit."""
        return Fraction(self.numerator, self.denominator)

    @property
    def adjusted_for_decimals(self) -> Fraction:
        """Human quote units per human base unit."""
        return self.as_fraction * Fraction(10**self.base.decimals, 10**self.quote.decimals)

    def invert(self) -> Price:
        return Price(
            base=self.quote,
            quote=self.base,
            denominator=self.numerator,
            numerator=self.denominator,
        )

    def quote_amount(self, amount: CurrencyAmount) -> CurrencyAmount:
        """Convert an amount of the base token into the quote token, rounding down."""
        if amount.currency.wrapped != self.base:
            raise InvalidAmountError("Amount currency must be the price's base token")
        return CurrencyAmount(
            currency=self.quote,
            quotient=amount.quotient * self.numerator // self.denominator,
        )

    def to_fixed(self, decimal_places: int) -> str:
        """Format the decimal-adjusted price, rounding half up.

        Example: 1 WBTC = 10.234 WETH formats as "10.234000" with 6 places.
        """
        scaled = self.adjusted_for_decimals * 10**decimal_places
        quotient, remainder = divmod(scaled.numerator, scaled.denominator)
        if 2 * remainder >= scaled.denominator:
            quotient += 1
        digits = str(quotient)
        if decimal_places == 0:
            return digits
        digits = digits.rjust(decimal_places + 1, "0")
        return f"{digits[:-decimal_places]}.{digits[-decimal_places:]}"

    def to_decimal(self) -> Decimal:
        """Raw price as a Decimal."""
        with decimal.localcontext(PRICE_CONTEXT):
            return Decimal(self.numerator) / Decimal(self.denominator)

    def _check_comparable(self, other: Price) -> None:
        if self.base != other.base or self.quote != other.quote:
            raise InvalidPriceError("Prices must share base and quote tokens")

    def __lt__(self, other: Price) -> bool:
        self._check_comparable(other)
        return self.as_fraction < other.as_fraction

    def __gt__(self, other: Price) -> bool:
        self._check_comparable(other)
        return self.as_fraction > other.as_fraction

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Price):
            return False
        return (
            self.base == other.base
            and self.quote == other.quote
            and self.as_fraction == other.as_fraction
        )

    def __hash__(self) -> int:
        return hash((self.base, self.quote, self.as_fraction))


def encode_sqrt_ratio_x96(amount1: int, amount0: int) -> int:
    """sqrt(amount1 / amount0) as a Q64.96 number, rounded down."""
    return isqrt((amount1 << 192) // amount0)


def parse_price(base: Token, quote: Token, price: str) -> Price:
    """Parse a human price string, e.g. "10.23" meaning 1 base = 10.23 quote.

    Internally the price is the amount of raw quote worth one raw base:
    10.23 * 10**(quote.decimals - base.decimals).

    Raises:
        InvalidPriceError: If `price` is not a non-negative decimal number
    """
    if not _PRICE_PATTERN.match(price):
        raise InvalidPriceError("Invalid price string")

    whole, _, fraction = price.partition(".")
    without_decimals = int(whole + fraction)
    return Price(
        base=base,
        quote=quote,
        denominator=10 ** (len(fraction) + base.decimals),
        numerator=without_decimals * 10**quote.decimals,
    )


def tick_to_price(base: Token, quote: Token, tick: int) -> Price:
    """Price of `base` in `quote` at the given tick."""
    sqrt_ratio_x96 = get_sqrt_ratio_at_tick(tick)
    ratio_x192 = sqrt_ratio_x96 * sqrt_ratio_x96
    if base.sorts_before(quote):
        return Price(base=base, quote=quote, denominator=Q192, numerator=ratio_x192)
    return Price(base=base, quote=quote, denominator=ratio_x192, numerator=Q192)


def price_to_closest_tick(price: Price) -> int:
    """Greatest tick whose price does not exceed `price` in token1/token0 terms."""
    is_sorted = price.base.sorts_before(price.quote)
    if is_sorted:
        sqrt_ratio_x96 = encode_sqrt_ratio_x96(price.numerator, price.denominator)
    else:
        sqrt_ratio_x96 = encode_sqrt_ratio_x96(price.denominator, price.numerator)

    tick = get_tick_at_sqrt_ratio(sqrt_ratio_x96)
    next_tick_price = tick_to_price(price.base, price.quote, tick + 1)
    if is_sorted:
        if not price < next_tick_price:
            tick += 1
    elif not price > next_tick_price:
        tick += 1
    return tick


def price_to_sqrt_ratio_x96(raw_price: Decimal) -> int:
    """sqrt(raw_price) * 2**96, clamped to [MIN_SQRT_RATIO, MAX_SQRT_RATIO)."""
    with decimal.localcontext(PRICE_CONTEXT):
        root = (Decimal(raw_price) * Q192).sqrt()
        sqrt_ratio_x96 = int(root.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    if sqrt_ratio_x96 < MIN_SQRT_RATIO:
        return MIN_SQRT_RATIO
    if sqrt_ratio_x96 >= MAX_SQRT_RATIO:
        return MAX_SQRT_RATIO - 1
    return sqrt_ratio_x96


def get_raw_relative_price_from_token_value_proportion(
    tick_lower: int,
    tick_upper: int,
    token0_value_proportion: Decimal,
) -> Decimal:
    """Raw price of token0 in token1 at which token0 holds the given share of value.

    Args:
        tick_lower: Lower tick of the range
        tick_upper: Upper tick of the range
        token0_value_proportion: Share of position value held in token0, in [0, 1]

    Raises:
        InvalidAmountError: If the proportion is outside [0, 1]
    """
    p = Decimal(token0_value_proportion)
    if p < 0 or p > 1:
        raise InvalidAmountError(
            "Invalid token0ValueProportion: must be a value between 0 and 1, inclusive"
        )

    with decimal.localcontext(PRICE_CONTEXT):
        lower = Decimal(get_sqrt_ratio_at_tick(tick_lower)) / Q96
        upper = Decimal(get_sqrt_ratio_at_tick(tick_upper)) / Q96
        if p == 1:
            # All value in token0: price sits at the lower end of the range
            return lower * lower

        discriminant = upper * (-4 * p * lower * (p - 1) + upper * (1 - 2 * p) ** 2)
        sqrt_price = (upper - 2 * p * upper + discriminant.sqrt()) / (2 - 2 * p)
        return sqrt_price * sqrt_price


def get_token_value_proportion_from_price_ratio(
    tick_lower: int,
    tick_upper: int,
    price_ratio: Decimal,
) -> Decimal:
    """Share of position value held in token0 at the given token1/token0 raw price.

    Inverse of `get_raw_relative_price_from_token_value_proportion`.
    """
    with decimal.localcontext(PRICE_CONTEXT):
        price_ratio = Decimal(price_ratio)
        root = (price_ratio * Q96 * Q96).sqrt()
        sqrt_price_x96 = int(root.quantize(Decimal(1), rounding=ROUND_HALF_UP))

        tick = get_tick_at_sqrt_ratio(sqrt_price_x96)
        if tick < tick_lower:
            return Decimal(1)
        if tick >= tick_upper:
            return Decimal(0)

        sqrt_ratio_a_x96 = get_sqrt_ratio_at_tick(tick_lower)
        sqrt_ratio_b_x96 = get_sqrt_ratio_at_tick(tick_upper)
        amount0 = get_amount0_delta(sqrt_price_x96, sqrt_ratio_b_x96, Q96, False)
        amount1 = get_amount1_delta(sqrt_ratio_a_x96, sqrt_price_x96, Q96, False)
        value0 = Decimal(amount0) * price_ratio
        return value0 / (value0 + amount1)


def _coingecko_request(platform_id: str, addresses: str, config: HelperConfig) -> tuple[str, dict, dict]:
    url = f"{config.coingecko_api_base_url}/api/v3/simple/token_price/{platform_id}"
    params = {"contract_addresses": addresses, "vs_currencies": "usd"}
    headers = {"x-cg-pro-api-key": config.coingecko_api_key} if config.coingecko_api_key else {}
    return url, params, headers


async def get_token_usd_price_from_coingecko(
    token: Token,
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
) -> float:
    """Current USD price of a token, e.g. 0.999695 for USDC.

    Returns 0 when the token's chain has no Coingecko asset platform.
    """
    platform_id = get_chain_info(token.chain_id).coingecko_asset_platform_id
    if platform_id is None:
        return 0
    config = config or get_config()

    url, params, headers = _coingecko_request(platform_id, token.address, config)
    async with http_client(client, config) as http:
        response = await http.get(url, params=params, headers=headers)
        response.raise_for_status()
        data = response.json()

    logger.debug("coingecko_price_fetched", token=token.address, chain_id=token.chain_id)
    return float(data[token.address.lower()]["usd"])


async def get_token_usd_price_list_from_coingecko(
    tokens: list[Token],
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
) -> dict[str, float]:
    """Current USD prices for tokens on one chain, keyed by lowercase address."""
    if not tokens:
        return {}
    platform_id = get_chain_info(tokens[0].chain_id).coingecko_asset_platform_id
    if platform_id is None:
        return {}
    config = config or get_config()

    addresses = ",".join(token.address for token in tokens)
    url, params, headers = _coingecko_request(platform_id, addresses, config)
    async with http_client(client, config) as http:
        response = await http.get(url, params=params, headers=headers)
        response.raise_for_status()
        data = response.json()

    return {address: float(entry["usd"]) for address, entry in data.items()}


__all__ = [
    "PRICE_CONTEXT",
    "Price",
    "encode_sqrt_ratio_x96",
    "parse_price",
    "tick_to_price",
    "price_to_closest_tick",
    "price_to_sqrt_ratio_x96",
    "get_raw_relative_price_from_token_value_proportion",
    "get_token_value_proportion_from_price_ratio",
    "get_token_usd_price_from_coingecko",
    "get_token_usd_price_list_from_coingecko",
]
