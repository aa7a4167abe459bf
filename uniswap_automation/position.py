"""Uniswap V3 positions: on-chain reads, fee accounting and price projections."""

from __future__ import annotations

import asyncio
import base64
import decimal
import json
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction

import structlog
from web3 import AsyncWeb3
from web3.contract import AsyncContract

from uniswap_automation.abi import NONFUNGIBLE_POSITION_MANAGER_ABI
from uniswap_automation.automan import ReinvestResult, simulate_reinvest
from uniswap_automation.chain import get_chain_info
from uniswap_automation.constants import MAX_SQRT_RATIO, MAX_UINT128, MAX_UINT256, MIN_SQRT_RATIO
from uniswap_automation.currency import CurrencyAmount, Token, get_token
from uniswap_automation.errors import InvalidTickError, MissingPositionLiquidityError
from uniswap_automation.math.liquidity_math import (
    amounts_for_liquidity,
    get_tokens_owed,
    max_liquidity_for_amounts,
    sub_in_256,
)
from uniswap_automation.math.tick_math import get_sqrt_ratio_at_tick, get_tick_at_sqrt_ratio
from uniswap_automation.pool import (
    Pool,
    get_pool,
    get_pool_contract,
    get_pool_from_basic_position_info,
    get_pool_price,
)
from uniswap_automation.price import (
    PRICE_CONTEXT,
    encode_sqrt_ratio_x96,
    get_token_value_proportion_from_price_ratio,
    price_to_sqrt_ratio_x96,
)
from uniswap_automation.tick import validate_usable_ticks
from uniswap_automation.types import BlockIdentifier, checksum, to_block_identifier

logger = structlog.get_logger()

# Reinvest simulations use a deadline this far in the future
REINVEST_DEADLINE_SECONDS = 600


@dataclass(frozen=True)
class BasicPositionInfo:
    """Position fields from `NonfungiblePositionManager.positions`.

    `liquidity` is None when the caller only knows the range.
    """

    token0: Token
    token1: Token
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int | None = None


@dataclass(frozen=True)
class CollectableTokenAmounts:
    token0_amount: CurrencyAmount
    token1_amount: CurrencyAmount


def _pool_at_sqrt_ratio(pool: Pool, sqrt_ratio_x96: int) -> Pool:
    return Pool(
        token0=pool.token0,
        token1=pool.token1,
        fee=pool.fee,
        sqrt_price_x96=sqrt_ratio_x96,
        liquidity=pool.liquidity,
        tick_current=get_tick_at_sqrt_ratio(sqrt_ratio_x96),
    )


@dataclass(frozen=True)
class Position:
    """Liquidity over [tick_lower, tick_upper) of a pool."""

    pool: Pool
    liquidity: int
    tick_lower: int
    tick_upper: int

    def __post_init__(self) -> None:
        if self.tick_lower >= self.tick_upper:
            raise InvalidTickError("tickLower must be less than tickUpper")
        validate_usable_ticks(self.tick_lower, self.tick_upper, self.pool.fee)

    def _amounts(self, round_up: bool) -> tuple[int, int]:
        return amounts_for_liquidity(
            self.pool.sqrt_price_x96,
            self.pool.tick_current,
            self.tick_lower,
            self.tick_upper,
            get_sqrt_ratio_at_tick(self.tick_lower),
            get_sqrt_ratio_at_tick(self.tick_upper),
            self.liquidity,
            round_up,
        )

    @property
    def amount0(self) -> CurrencyAmount:
        """token0 withdrawn if all liquidity were burned now."""
        return CurrencyAmount(currency=self.pool.token0, quotient=self._amounts(False)[0])

    @property
    def amount1(self) -> CurrencyAmount:
        """token1 withdrawn if all liquidity were burned now."""
        return CurrencyAmount(currency=self.pool.token1, quotient=self._amounts(False)[1])

    @property
    def mint_amounts(self) -> tuple[int, int]:
        """Raw amounts required to mint this liquidity, rounded up."""
        return self._amounts(True)

    def _pools_with_slippage(self, slippage_tolerance: Fraction) -> tuple[Pool, Pool]:
        price = self.pool.token0_price.as_fraction
        price_lower = price * (1 - slippage_tolerance)
        price_upper = price * (1 + slippage_tolerance)

        sqrt_ratio_lower = encode_sqrt_ratio_x96(price_lower.numerator, price_lower.denominator)
        if sqrt_ratio_lower <= MIN_SQRT_RATIO:
            sqrt_ratio_lower = MIN_SQRT_RATIO + 1
        sqrt_ratio_upper = encode_sqrt_ratio_x96(price_upper.numerator, price_upper.denominator)
        if sqrt_ratio_upper >= MAX_SQRT_RATIO:
            sqrt_ratio_upper = MAX_SQRT_RATIO - 1

        return (
            _pool_at_sqrt_ratio(self.pool, sqrt_ratio_lower),
            _pool_at_sqrt_ratio(self.pool, sqrt_ratio_upper),
        )

    def mint_amounts_with_slippage(self, slippage_tolerance: Fraction) -> tuple[int, int]:
        """Minimum amounts for a mint that tolerates the pool price moving by `slippage_tolerance`."""
        pool_lower, pool_upper = self._pools_with_slippage(slippage_tolerance)
        amount0, amount1 = self.mint_amounts
        created = Position.from_amounts(
            self.pool, self.tick_lower, self.tick_upper, amount0, amount1, use_full_precision=False
        )
        amount0_min = Position(pool_upper, created.liquidity, self.tick_lower, self.tick_upper).mint_amounts[0]
        amount1_min = Position(pool_lower, created.liquidity, self.tick_lower, self.tick_upper).mint_amounts[1]
        return amount0_min, amount1_min

    def burn_amounts_with_slippage(self, slippage_tolerance: Fraction) -> tuple[int, int]:
        """Minimum amounts received when burning all liquidity under price slippage."""
        pool_lower, pool_upper = self._pools_with_slippage(slippage_tolerance)
        amount0_min = Position(pool_upper, self.liquidity, self.tick_lower, self.tick_upper).amount0.quotient
        amount1_min = Position(pool_lower, self.liquidity, self.tick_lower, self.tick_upper).amount1.quotient
        return amount0_min, amount1_min

    @classmethod
    def from_amounts(
        cls,
        pool: Pool,
        tick_lower: int,
        tick_upper: int,
        amount0: int,
        amount1: int,
        use_full_precision: bool,
    ) -> Position:
        """Largest position mintable from the given raw amounts."""
        liquidity = max_liquidity_for_amounts(
            pool.sqrt_price_x96,
            get_sqrt_ratio_at_tick(tick_lower),
            get_sqrt_ratio_at_tick(tick_upper),
            amount0,
            amount1,
            use_full_precision,
        )
        return cls(pool=pool, liquidity=liquidity, tick_lower=tick_lower, tick_upper=tick_upper)

    @classmethod
    def from_amount0(
        cls,
        pool: Pool,
        tick_lower: int,
        tick_upper: int,
        amount0: int,
        use_full_precision: bool,
    ) -> Position:
        return cls.from_amounts(pool, tick_lower, tick_upper, amount0, MAX_UINT256, use_full_precision)

    @classmethod
    def from_amount1(cls, pool: Pool, tick_lower: int, tick_upper: int, amount1: int) -> Position:
        # amount0 is unconstrained, so precision mode does not matter
        return cls.from_amounts(pool, tick_lower, tick_upper, MAX_UINT256, amount1, use_full_precision=True)


def get_npm(chain_id: int, w3: AsyncWeb3) -> AsyncContract:
    return w3.eth.contract(
        address=get_chain_info(chain_id).uniswap_v3_nonfungible_position_manager,
        abi=NONFUNGIBLE_POSITION_MANAGER_ABI,
    )


async def get_basic_position_info(
    chain_id: int,
    position_id: int,
    w3: AsyncWeb3,
    block_identifier: BlockIdentifier = "latest",
) -> BasicPositionInfo:
    npm = get_npm(chain_id, w3)
    info = await npm.functions.positions(position_id).call(block_identifier=block_identifier)
    token0, token1 = await asyncio.gather(
        get_token(info[2], chain_id, w3, block_identifier),
        get_token(info[3], chain_id, w3, block_identifier),
    )
    return BasicPositionInfo(
        token0=token0,
        token1=token1,
        fee=int(info[4]),
        tick_lower=int(info[5]),
        tick_upper=int(info[6]),
        liquidity=int(info[7]),
    )


async def get_position_from_basic_info(
    basic_info: BasicPositionInfo,
    chain_id: int,
    w3: AsyncWeb3,
    block_identifier: BlockIdentifier = "latest",
) -> Position:
    """Combine basic position info with the current pool state.

    Raises:
        MissingPositionLiquidityError: If `basic_info.liquidity` is None
    """
    if basic_info.liquidity is None:
        raise MissingPositionLiquidityError("Missing position liquidity info")
    pool = await get_pool_from_basic_position_info(basic_info, chain_id, w3, block_identifier)
    return Position(
        pool=pool,
        liquidity=basic_info.liquidity,
        tick_lower=basic_info.tick_lower,
        tick_upper=basic_info.tick_upper,
    )


async def get_position(
    chain_id: int,
    position_id: int,
    w3: AsyncWeb3,
    block_identifier: BlockIdentifier = "latest",
) -> Position:
    basic_info = await get_basic_position_info(chain_id, position_id, w3, block_identifier)
    pool = await get_pool(
        basic_info.token0, basic_info.token1, basic_info.fee, chain_id, w3, block_identifier
    )
    return Position(
        pool=pool,
        liquidity=basic_info.liquidity,
        tick_lower=basic_info.tick_lower,
        tick_upper=basic_info.tick_upper,
    )


async def get_collectable_token_amounts(
    chain_id: int,
    position_id: int,
    w3: AsyncWeb3,
    basic_info: BasicPositionInfo | None = None,
    block_identifier: BlockIdentifier = "latest",
) -> CollectableTokenAmounts:
    """Uncollected fees plus any withdrawn-but-uncollected liquidity.

    Simulates `collect` from the owner's address, so this costs an `ownerOf`
    round trip first.
    """
    if basic_info is None:
        basic_info = await get_basic_position_info(chain_id, position_id, w3, block_identifier)
    npm = get_npm(chain_id, w3)
    owner = await npm.functions.ownerOf(position_id).call(block_identifier=block_identifier)
    amount0, amount1 = await npm.functions.collect(
        (position_id, owner, MAX_UINT128, MAX_UINT128)
    ).call({"from": owner}, block_identifier=block_identifier)
    return CollectableTokenAmounts(
        token0_amount=CurrencyAmount(currency=basic_info.token0, quotient=int(amount0)),
        token1_amount=CurrencyAmount(currency=basic_info.token1, quotient=int(amount1)),
    )


async def view_collectable_token_amounts(
    chain_id: int,
    position_id: int,
    w3: AsyncWeb3,
    basic_info: BasicPositionInfo | None = None,
    block_identifier: BlockIdentifier = "latest",
) -> CollectableTokenAmounts:
    """Collectable amounts computed from pool fee growth; no `from` address needed.

    Fee growth inside the range follows Pool.sol:
    - price below range: lower.outside - upper.outside
    - price above range: upper.outside - lower.outside
    - in range: global - lower.outside - upper.outside
    All differences wrap around uint256.
    """
    if basic_info is None:
        basic_info = await get_basic_position_info(chain_id, position_id, w3, block_identifier)
    pool = get_pool_contract(basic_info.token0, basic_info.token1, basic_info.fee, chain_id, w3)
    slot0, fee_growth_global0, fee_growth_global1, lower, upper, position = await asyncio.gather(
        pool.functions.slot0().call(block_identifier=block_identifier),
        pool.functions.feeGrowthGlobal0X128().call(block_identifier=block_identifier),
        pool.functions.feeGrowthGlobal1X128().call(block_identifier=block_identifier),
        pool.functions.ticks(basic_info.tick_lower).call(block_identifier=block_identifier),
        pool.functions.ticks(basic_info.tick_upper).call(block_identifier=block_identifier),
        get_npm(chain_id, w3).functions.positions(position_id).call(block_identifier=block_identifier),
    )

    tick = int(slot0[1])
    lower_outside0, lower_outside1 = int(lower[2]), int(lower[3])
    upper_outside0, upper_outside1 = int(upper[2]), int(upper[3])
    if tick < basic_info.tick_lower:
        fee_growth_inside0 = sub_in_256(lower_outside0, upper_outside0)
        fee_growth_inside1 = sub_in_256(lower_outside1, upper_outside1)
    elif tick >= basic_info.tick_upper:
        fee_growth_inside0 = sub_in_256(upper_outside0, lower_outside0)
        fee_growth_inside1 = sub_in_256(upper_outside1, lower_outside1)
    else:
        fee_growth_inside0 = sub_in_256(sub_in_256(int(fee_growth_global0), lower_outside0), upper_outside0)
        fee_growth_inside1 = sub_in_256(sub_in_256(int(fee_growth_global1), lower_outside1), upper_outside1)

    owed0, owed1 = get_tokens_owed(
        int(position[8]),
        int(position[9]),
        int(position[7]),
        fee_growth_inside0,
        fee_growth_inside1,
    )
    return CollectableTokenAmounts(
        token0_amount=CurrencyAmount(currency=basic_info.token0, quotient=int(position[10]) + owed0),
        token1_amount=CurrencyAmount(currency=basic_info.token1, quotient=int(position[11]) + owed1),
    )


def is_position_in_range(position: Position) -> bool:
    return position.tick_lower <= position.pool.tick_current < position.tick_upper


async def get_position_ids_by_owner(owner: str, chain_id: int, w3: AsyncWeb3) -> list[int]:
    npm = get_npm(chain_id, w3)
    owner = checksum(owner)
    num_positions = await npm.functions.balanceOf(owner).call()
    position_ids = await asyncio.gather(
        *(npm.functions.tokenOfOwnerByIndex(owner, index).call() for index in range(num_positions))
    )
    return [int(position_id) for position_id in position_ids]


async def get_all_position_basic_info_by_owner(
    owner: str,
    chain_id: int,
    w3: AsyncWeb3,
) -> dict[int, BasicPositionInfo]:
    position_ids = await get_position_ids_by_owner(owner, chain_id, w3)
    infos = await asyncio.gather(
        *(get_basic_position_info(chain_id, position_id, w3) for position_id in position_ids)
    )
    return dict(zip(position_ids, infos))


async def get_token_svg(chain_id: int, position_id: int, w3: AsyncWeb3) -> str:
    """Image URL (usually an SVG data URI) of a position NFT."""
    uri = await get_npm(chain_id, w3).functions.tokenURI(position_id).call()
    metadata = json.loads(base64.b64decode(uri.removeprefix("data:application/json;base64,")))
    return metadata["image"]


def get_rebalanced_position(position: Position, new_tick_lower: int, new_tick_upper: int) -> Position:
    """Predict the position after a rebalance, assuming the pool price stays put.

    The position's equity, valued in token1, is split between the tokens in
    the proportion the new range requires at the current price.
    """
    with decimal.localcontext(PRICE_CONTEXT):
        price = get_pool_price(position.pool).to_decimal()
        equity = Decimal(position.amount0.quotient) * price + position.amount1.quotient
        token0_proportion = get_token_value_proportion_from_price_ratio(
            new_tick_lower, new_tick_upper, price
        )
        amount1 = (1 - token0_proportion) * equity
        amount0 = (equity - amount1) / price
        amount0 = int(amount0.quantize(Decimal(1), rounding=ROUND_HALF_UP))
        amount1 = int(amount1.quantize(Decimal(1), rounding=ROUND_HALF_UP))

    return Position.from_amounts(
        position.pool, new_tick_lower, new_tick_upper, amount0, amount1, use_full_precision=False
    )


def get_position_at_price(position: Position, new_price: Decimal) -> Position:
    """The same position in a pool whose raw token0 price is `new_price`."""
    pool = _pool_at_sqrt_ratio(position.pool, price_to_sqrt_ratio_x96(new_price))
    return Position(
        pool=pool,
        liquidity=position.liquidity,
        tick_lower=position.tick_lower,
        tick_upper=position.tick_upper,
    )


def project_rebalanced_position_at_price(
    position: Position,
    new_price: Decimal,
    new_tick_lower: int,
    new_tick_upper: int,
) -> Position:
    return get_rebalanced_position(
        get_position_at_price(position, new_price), new_tick_lower, new_tick_upper
    )


@dataclass(frozen=True)
class PositionDetails:
    """A position together with its owner, pool and uncollected-fee checkpoint.

    Attributes:
        token_id: Position NFT id
        owner: Current NFT owner
        pool: Pool state at the time of the read
        position: Position built from `pool`
        raw_tokens_owed0: `tokensOwed0` as stored by the NPM (excludes fees since the last checkpoint)
        raw_tokens_owed1: `tokensOwed1` as stored by the NPM
    """

    token_id: int
    owner: str
    pool: Pool
    position: Position
    raw_tokens_owed0: int
    raw_tokens_owed1: int

    @property
    def chain_id(self) -> int:
        return self.pool.chain_id

    @property
    def token0(self) -> Token:
        return self.pool.token0

    @property
    def token1(self) -> Token:
        return self.pool.token1

    @property
    def fee(self) -> int:
        return self.pool.fee

    @property
    def liquidity(self) -> int:
        return self.position.liquidity

    @property
    def tick_lower(self) -> int:
        return self.position.tick_lower

    @property
    def tick_upper(self) -> int:
        return self.position.tick_upper

    @property
    def tokens_owed0(self) -> CurrencyAmount:
        return CurrencyAmount(currency=self.token0, quotient=self.raw_tokens_owed0)

    @property
    def tokens_owed1(self) -> CurrencyAmount:
        return CurrencyAmount(currency=self.token1, quotient=self.raw_tokens_owed1)

    @property
    def basic_info(self) -> BasicPositionInfo:
        return BasicPositionInfo(
            token0=self.token0,
            token1=self.token1,
            fee=self.fee,
            tick_lower=self.tick_lower,
            tick_upper=self.tick_upper,
            liquidity=self.liquidity,
        )

    @classmethod
    async def from_position_id(
        cls,
        chain_id: int,
        position_id: int,
        w3: AsyncWeb3,
        block_identifier: BlockIdentifier = "latest",
    ) -> PositionDetails:
        """Read a position, its owner, its tokens and its pool."""
        npm = get_npm(chain_id, w3)
        owner, info = await asyncio.gather(
            npm.functions.ownerOf(position_id).call(block_identifier=block_identifier),
            npm.functions.positions(position_id).call(block_identifier=block_identifier),
        )
        token0, token1 = await asyncio.gather(
            get_token(info[2], chain_id, w3, block_identifier),
            get_token(info[3], chain_id, w3, block_identifier),
        )
        basic_info = BasicPositionInfo(
            token0=token0,
            token1=token1,
            fee=int(info[4]),
            tick_lower=int(info[5]),
            tick_upper=int(info[6]),
            liquidity=int(info[7]),
        )
        pool = await get_pool_from_basic_position_info(basic_info, chain_id, w3, block_identifier)
        return cls(
            token_id=position_id,
            owner=checksum(owner),
            pool=pool,
            position=Position(
                pool=pool,
                liquidity=basic_info.liquidity,
                tick_lower=basic_info.tick_lower,
                tick_upper=basic_info.tick_upper,
            ),
            raw_tokens_owed0=int(info[10]),
            raw_tokens_owed1=int(info[11]),
        )

    async def get_collectable_token_amounts(self, w3: AsyncWeb3) -> CollectableTokenAmounts:
        """Real-time collectable amounts, including fees since the last checkpoint."""
        return await view_collectable_token_amounts(self.chain_id, self.token_id, w3, self.basic_info)


async def get_all_positions_details(
    owner: str,
    chain_id: int,
    w3: AsyncWeb3,
) -> dict[int, PositionDetails]:
    position_ids = await get_position_ids_by_owner(owner, chain_id, w3)
    details = await asyncio.gather(
        *(PositionDetails.from_position_id(chain_id, position_id, w3) for position_id in position_ids)
    )
    logger.debug("positions_details_read", owner=owner, count=len(details))
    return dict(zip(position_ids, details))


async def get_reinvested_position(
    chain_id: int,
    position_id: int,
    w3: AsyncWeb3,
    block_number: int | None = None,
) -> ReinvestResult:
    """Predict the liquidity and amounts added by reinvesting the position's fees.

    No prior approval is needed: the owner's operator approval of Automan is
    forged with a state override.
    """
    owner = await get_npm(chain_id, w3).functions.ownerOf(position_id).call(
        block_identifier=to_block_identifier(block_number)
    )
    deadline = int(time.time()) + REINVEST_DEADLINE_SECONDS
    return await simulate_reinvest(
        chain_id, w3, owner, position_id, deadline, block_number=block_number
    )


__all__ = [
    "BasicPositionInfo",
    "CollectableTokenAmounts",
    "Position",
    "PositionDetails",
    "get_npm",
    "get_basic_position_info",
    "get_position_from_basic_info",
    "get_position",
    "get_collectable_token_amounts",
    "view_collectable_token_amounts",
    "is_position_in_range",
    "get_position_ids_by_owner",
    "get_all_position_basic_info_by_owner",
    "get_all_positions_details",
    "get_token_svg",
    "get_rebalanced_position",
    "get_position_at_price",
    "project_rebalanced_position_at_price",
    "get_reinvested_position",
]
