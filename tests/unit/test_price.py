"""Tests for prices, tick alignment and USD price lookups."""

from decimal import Decimal

import httpx
import pytest

from uniswap_automation.chain import ChainId
from uniswap_automation.currency import CurrencyAmount, Token
from uniswap_automation.errors import InvalidAmountError, InvalidPriceError, InvalidTickError
from uniswap_automation.price import (
    Price,
    get_raw_relative_price_from_token_value_proportion,
    get_token_usd_price_from_coingecko,
    get_token_usd_price_list_from_coingecko,
    get_token_value_proportion_from_price_ratio,
    parse_price,
    price_to_closest_tick,
    price_to_sqrt_ratio_x96,
    tick_to_price,
)
from uniswap_automation.constants import MAX_SQRT_RATIO, MIN_SQRT_RATIO, Q96
from uniswap_automation.tick import (
    align_price_to_closest_usable_tick,
    get_tick_spacing,
    price_to_closest_usable_tick,
    read_tick_to_liquidity_map,
    validate_usable_ticks,
)
from tests.helpers import USDC, WBTC, WETH


class TestParsePrice:
    """Tests for parsing human-readable prices."""

    def test_to_fixed_round_trip(self):
        """A parsed price formats back to the same human value."""
        price = parse_price(WBTC, WETH, "10.234")
        assert price.to_fixed(6) == "10.234000"

    def test_raw_ratio_accounts_for_decimals(self):
        """The raw ratio is quote raw units per base raw unit."""
        price = parse_price(WBTC, WETH, "10.234")
        assert price.as_fraction == 102_340_000_000

    def test_quote_amount(self):
        """Quoting 10 WBTC at 10.234 gives 102.34 WETH."""
        price = parse_price(WBTC, WETH, "10.234")
        quoted = price.quote_amount(CurrencyAmount(WBTC, 10 * 10**8))
        assert quoted.currency == WETH
        assert quoted.to_exact() == "102.34"

    def test_quote_amount_rejects_wrong_currency(self):
        """Only amounts of the base token can be quoted."""
        price = parse_price(WBTC, WETH, "10.234")
        with pytest.raises(InvalidAmountError):
            price.quote_amount(CurrencyAmount(WETH, 10**18))

    def test_invert(self):
        """Inverting swaps the tokens and the ratio."""
        price = parse_price(WBTC, WETH, "20").invert()
        assert price.base == WETH
        assert price.quote == WBTC
        assert price.to_fixed(2) == "0.05"

    @pytest.mark.parametrize("text", ["", "abc", "-1", "1.2.3", "1e5"])
    def test_invalid_strings_raise(self, text):
        """Only non-negative decimal strings are accepted."""
        with pytest.raises(InvalidPriceError):
            parse_price(WBTC, WETH, text)

    def test_leading_dot(self):
        """A leading decimal point is accepted."""
        assert parse_price(WBTC, WETH, ".5").to_fixed(1) == "0.5"

    def test_to_fixed_rounds_half_up(self):
        """to_fixed rounds half up."""
        price = parse_price(USDC, WETH, "0.125")
        assert price.to_fixed(2) == "0.13"
        assert price.to_fixed(0) == "0"

    def test_compare_requires_same_tokens(self):
        """Prices with different token pairs cannot be ordered."""
        with pytest.raises(InvalidPriceError):
            _ = parse_price(WBTC, WETH, "1") < parse_price(WETH, WBTC, "1")

    def test_zero_denominator_raises(self):
        """A price cannot have a zero denominator."""
        with pytest.raises(InvalidPriceError):
            Price(base=WBTC, quote=WETH, denominator=0, numerator=1)


class TestTickAlignment:
    """Tests for snapping prices to usable ticks."""

    def test_align_limit_price(self):
        """10.234 WETH per WBTC snaps to the nearest 60-spaced tick."""
        aligned = align_price_to_closest_usable_tick(parse_price(WBTC, WETH, "10.234"), 3000)
        assert aligned.to_fixed(9) == "10.205039374"

    def test_align_sell_wbtc_price(self):
        """16.16 WETH per WBTC aligns to the top of [258060, 258120]."""
        aligned = align_price_to_closest_usable_tick(parse_price(WBTC, WETH, "16.16"), 3000)
        assert aligned.to_fixed(6) == "16.197527"
        assert price_to_closest_tick(aligned) == 258120

    def test_align_inverted_price(self):
        """Alignment works with the base token sorted after the quote."""
        aligned = align_price_to_closest_usable_tick(parse_price(WBTC, WETH, "12.12").invert(), 3000)
        assert aligned.to_fixed(6) == "0.082342"
        assert price_to_closest_tick(aligned) == 255240

    def test_aligned_price_is_stable(self):
        """Aligning an already aligned price is a no-op."""
        aligned = align_price_to_closest_usable_tick(parse_price(WBTC, WETH, "16.16"), 3000)
        assert align_price_to_closest_usable_tick(aligned, 3000) == aligned

    @pytest.mark.parametrize("tick", [-887272, -257520, -1, 0, 1, 255240, 258120, 887271])
    def test_tick_to_price_round_trip(self, tick):
        """A tick's own price maps back to the tick, for both token orders."""
        assert price_to_closest_tick(tick_to_price(WBTC, WETH, tick)) == tick
        assert price_to_closest_tick(tick_to_price(WETH, WBTC, tick)) == tick

    def test_closest_usable_tick_is_on_grid(self):
        """Usable ticks are multiples of the tick spacing."""
        tick = price_to_closest_usable_tick(parse_price(USDC, WETH, "0.0005"), 500)
        assert tick % get_tick_spacing(500) == 0

    def test_unknown_fee_tier_raises(self):
        """Fee tiers without a tick spacing are rejected."""
        with pytest.raises(InvalidTickError):
            get_tick_spacing(1234)

    def test_validate_usable_ticks(self):
        """Ticks off the grid are rejected."""
        validate_usable_ticks(-120, 120, 3000)
        with pytest.raises(InvalidTickError, match="tickLower or tickUpper not valid"):
            validate_usable_ticks(-119, 120, 3000)


class TestReadTickToLiquidityMap:
    """Tests for tick-to-liquidity lookups."""

    def test_exact_and_fallback_lookups(self):
        """Missing ticks fall back to the next tick at or above, then to 0."""
        liquidity_map = {-60: 10, 0: 20, 60: 30}
        assert read_tick_to_liquidity_map(liquidity_map, 0) == 20
        assert read_tick_to_liquidity_map(liquidity_map, 30) == 30
        assert read_tick_to_liquidity_map(liquidity_map, 120) == 0


class TestSqrtRatioConversions:
    """Tests for raw price <-> sqrt ratio conversions."""

    def test_price_one(self):
        """A raw price of 1 is exactly 2**96."""
        assert price_to_sqrt_ratio_x96(Decimal(1)) == Q96

    def test_clamped_to_bounds(self):
        """Extreme prices clamp to the sqrt ratio bounds."""
        assert price_to_sqrt_ratio_x96(Decimal("1e-60")) == MIN_SQRT_RATIO
        assert price_to_sqrt_ratio_x96(Decimal("1e60")) == MAX_SQRT_RATIO - 1


class TestTokenValueProportion:
    """Tests for the price at which token0 holds a share of position value."""

    def test_round_trip(self):
        """Proportion -> price -> proportion is stable inside the range."""
        for proportion in (Decimal("0.25"), Decimal("0.5"), Decimal("0.75")):
            price = get_raw_relative_price_from_token_value_proportion(-600, 600, proportion)
            back = get_token_value_proportion_from_price_ratio(-600, 600, price)
            assert abs(back - proportion) < Decimal("1e-9")

    def test_all_token0_is_lower_bound(self):
        """A proportion of 1 prices the pool at the lower end of the range."""
        price = get_raw_relative_price_from_token_value_proportion(-600, 600, Decimal(1))
        assert get_token_value_proportion_from_price_ratio(-600, 600, price) == 1

    def test_all_token1_is_upper_bound(self):
        """A proportion of 0 prices the pool at the upper end of the range."""
        price = get_raw_relative_price_from_token_value_proportion(-600, 600, Decimal(0))
        assert get_token_value_proportion_from_price_ratio(-600, 600, price) == 0

    def test_out_of_range_price(self):
        """Prices outside the range hold a single token."""
        assert get_token_value_proportion_from_price_ratio(-600, 600, Decimal("0.5")) == 1
        assert get_token_value_proportion_from_price_ratio(-600, 600, Decimal(2)) == 0

    @pytest.mark.parametrize("proportion", [Decimal("-0.1"), Decimal("1.5")])
    def test_invalid_proportion_raises(self, proportion):
        """Proportions outside [0, 1] are rejected."""
        with pytest.raises(InvalidAmountError, match="Invalid token0ValueProportion"):
            get_raw_relative_price_from_token_value_proportion(-600, 600, proportion)


class TestCoingecko:
    """Tests for Coingecko USD price lookups."""

    def _client(self, seen: list[httpx.Request]) -> httpx.AsyncClient:
        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    USDC.address.lower(): {"usd": 0.999695},
                    WETH.address.lower(): {"usd": 1850.5},
                },
            )

        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    async def test_single_token_price(self, config):
        """The price is read from the lowercase-address entry."""
        seen: list[httpx.Request] = []
        async with self._client(seen) as client:
            price = await get_token_usd_price_from_coingecko(USDC, client=client, config=config)

        assert price == pytest.approx(0.999695)
        assert seen[0].url.path == "/api/v3/simple/token_price/ethereum"
        assert seen[0].url.params["contract_addresses"] == USDC.address
        assert seen[0].url.params["vs_currencies"] == "usd"
        assert "x-cg-pro-api-key" not in seen[0].headers

    async def test_price_list(self, config):
        """Several tokens are priced in one request."""
        seen: list[httpx.Request] = []
        async with self._client(seen) as client:
            prices = await get_token_usd_price_list_from_coingecko(
                [USDC, WETH], client=client, config=config
            )

        assert len(seen) == 1
        assert seen[0].url.params["contract_addresses"] == f"{USDC.address},{WETH.address}"
        assert prices == {
            USDC.address.lower(): pytest.approx(0.999695),
            WETH.address.lower(): pytest.approx(1850.5),
        }

    async def test_empty_list_makes_no_request(self, config):
        """An empty token list returns an empty mapping."""
        seen: list[httpx.Request] = []
        async with self._client(seen) as client:
            prices = await get_token_usd_price_list_from_coingecko([], client=client, config=config)
        assert prices == {}
        assert seen == []

    async def test_chain_without_platform_returns_zero(self, config):
        """Chains without a Coingecko platform id are priced at 0."""
        seen: list[httpx.Request] = []
        goerli_weth = Token(
            chain_id=ChainId.GOERLI_TESTNET,
            address="0xB4FBF271143F4FBf7B91A5ded31805e42b2208d6",
            decimals=18,
        )
        async with self._client(seen) as client:
            price = await get_token_usd_price_from_coingecko(goerli_weth, client=client, config=config)
        assert price == 0
        assert seen == []
