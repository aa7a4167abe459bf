"""Uniswap V3 pool address derivation, pool state reads and subgraph queries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
import structlog
from eth_abi import encode
from eth_utils import keccak, to_checksum_address
from pydantic import BaseModel, Field
from web3 import AsyncWeb3
from web3.contract import AsyncContract

from uniswap_automation.abi import UNISWAP_V3_POOL_ABI
from uniswap_automation.chain import get_chain_info
from uniswap_automation.config import HelperConfig
from uniswap_automation.constants import FEE_TIERS, POOL_INIT_CODE_HASH, Q192, TICK_SPACINGS
from uniswap_automation.currency import Token
from uniswap_automation.errors import PoolNotInitializedError, SubgraphError
from uniswap_automation.http_client import http_client, post_graphql
from uniswap_automation.math.tick_math import get_sqrt_ratio_at_tick
from uniswap_automation.price import Price
from uniswap_automation.types import BlockIdentifier, normalize_address

if TYPE_CHECKING:
    from uniswap_automation.position import BasicPositionInfo

logger = structlog.get_logger()

# Subgraph page size for tick queries
TICKS_PAGE_SIZE = 1000


def compute_pool_address(
    factory_address: str,
    token_a: Token | str,
    token_b: Token | str,
    fee: int,
) -> str:
    """Derive a pool address via CREATE2; token order does not matter.

    address = keccak256(0xff ++ factory ++ keccak256(abi.encode(token0, token1, fee)) ++ initCodeHash)[12:]
    """
    address_a = normalize_address(token_a.address if isinstance(token_a, Token) else token_a)
    address_b = normalize_address(token_b.address if isinstance(token_b, Token) else token_b)
    token0, token1 = sorted((address_a, address_b))

    salt = keccak(encode(["address", "address", "uint24"], [token0, token1, fee]))
    digest = keccak(
        b"\xff"
        + bytes.fromhex(normalize_address(factory_address)[2:])
        + salt
        + bytes.fromhex(POOL_INIT_CODE_HASH[2:])
    )
    return to_checksum_address(digest[12:])


@dataclass(frozen=True)
class Pool:
    """Snapshot of a pool's price and in-range liquidity.

    The two tokens may be passed in either order; they are stored sorted.
    """

    token0: Token
    token1: Token
    fee: int
    sqrt_price_x96: int
    liquidity: int
    tick_current: int

    def __post_init__(self) -> None:
        if not self.token0.sorts_before(self.token1):
            token0, token1 = self.token1, self.token0
            object.__setattr__(self, "token0", token0)
            object.__setattr__(self, "token1", token1)
        if self.fee not in TICK_SPACINGS:
            raise ValueError(f"Unknown fee tier: {self.fee}")
        if not (
            get_sqrt_ratio_at_tick(self.tick_current)
            <= self.sqrt_price_x96
            <= get_sqrt_ratio_at_tick(self.tick_current + 1)
        ):
            raise ValueError("sqrt price is not within the current tick")

    @property
    def chain_id(self) -> int:
        return self.token0.chain_id

    @property
    def tick_spacing(self) -> int:
        return TICK_SPACINGS[self.fee]

    @property
    def token0_price(self) -> Price:
        """Price of token0 in token1."""
        return Price(
            base=self.token0,
            quote=self.token1,
            denominator=Q192,
            numerator=self.sqrt_price_x96 * self.sqrt_price_x96,
        )

    @property
    def token1_price(self) -> Price:
        """Price of token1 in token0."""
        return Price(
            base=self.token1,
            quote=self.token0,
            denominator=self.sqrt_price_x96 * self.sqrt_price_x96,
            numerator=Q192,
        )

    def involves_token(self, token: Token) -> bool:
        return token == self.token0 or token == self.token1

    def price_of(self, token: Token) -> Price:
        if not self.involves_token(token):
            raise ValueError("Token is not in the pool")
        return self.token0_price if token == self.token0 else self.token1_price


def get_pool_contract(
    token_a: Token | str,
    token_b: Token | str,
    fee: int,
    chain_id: int,
    w3: AsyncWeb3,
) -> AsyncContract:
    address = compute_pool_address(get_chain_info(chain_id).uniswap_v3_factory, token_a, token_b, fee)
    return w3.eth.contract(address=address, abi=UNISWAP_V3_POOL_ABI)


async def _read_pool_state(
    contract: AsyncContract,
    block_identifier: BlockIdentifier,
) -> tuple[int, int, int]:
    """(sqrtPriceX96, tick, liquidity); fails if the pool does not exist."""
    slot0, liquidity = await asyncio.gather(
        contract.functions.slot0().call(block_identifier=block_identifier),
        contract.functions.liquidity().call(block_identifier=block_identifier),
    )
    return int(slot0[0]), int(slot0[1]), int(liquidity)


async def get_pool(
    token_a: Token,
    token_b: Token,
    fee: int,
    chain_id: int,
    w3: AsyncWeb3,
    block_identifier: BlockIdentifier = "latest",
) -> Pool:
    """Read an existing, initialized pool.

    Raises:
        PoolNotInitializedError: If the pool exists but has no price yet
    """
    contract = get_pool_contract(token_a, token_b, fee, chain_id, w3)
    sqrt_price_x96, tick, liquidity = await _read_pool_state(contract, block_identifier)
    if sqrt_price_x96 == 0:
        raise PoolNotInitializedError("Pool has been created but not yet initialized")

    logger.debug("pool_read", pool=contract.address, tick=tick, liquidity=liquidity)
    return Pool(
        token0=token_a,
        token1=token_b,
        fee=fee,
        sqrt_price_x96=sqrt_price_x96,
        liquidity=liquidity,
        tick_current=tick,
    )


async def get_pool_from_basic_position_info(
    basic_info: BasicPositionInfo,
    chain_id: int,
    w3: AsyncWeb3,
    block_identifier: BlockIdentifier = "latest",
) -> Pool:
    """Read the pool a position lives in."""
    contract = get_pool_contract(basic_info.token0, basic_info.token1, basic_info.fee, chain_id, w3)
    sqrt_price_x96, tick, liquidity = await _read_pool_state(contract, block_identifier)
    return Pool(
        token0=basic_info.token0,
        token1=basic_info.token1,
        fee=basic_info.fee,
        sqrt_price_x96=sqrt_price_x96,
        liquidity=liquidity,
        tick_current=tick,
    )


def get_pool_price(pool: Pool) -> Price:
    """Price of token0 denominated in token1."""
    return pool.token0_price


# --- Subgraph -----------------------------------------------------------------

FEE_TIER_DISTRIBUTION_QUERY = """
query FeeTierDistribution($token0: String!, $token1: String!) {
  _meta {
    block {
      number
    }
  }
  feeTierTVL: pools(
    orderBy: totalValueLockedToken0
    orderDirection: desc
    where: { token0: $token0, token1: $token1 }
  ) {
    feeTier
    totalValueLockedToken0
    totalValueLockedToken1
  }
}
"""

POOL_TICKS_QUERY = """
query PoolTicks($poolAddress: String!, $tickIdxGt: BigInt!, $first: Int!) {
  ticks(
    first: $first
    orderBy: tickIdx
    orderDirection: asc
    where: { poolAddress: $poolAddress, tickIdx_gt: $tickIdxGt }
  ) {
    tickIdx
    liquidityNet
  }
}
"""


class FeeTierTVL(BaseModel):
    """TVL of one fee tier of a token pair."""

    fee_tier: int = Field(alias="feeTier")
    total_value_locked_token0: float | None = Field(default=None, alias="totalValueLockedToken0")
    total_value_locked_token1: float | None = Field(default=None, alias="totalValueLockedToken1")

    model_config = {"populate_by_name": True}


class FeeTierDistributionData(BaseModel):
    fee_tier_tvl: list[FeeTierTVL] = Field(alias="feeTierTVL")

    model_config = {"populate_by_name": True}


class SubgraphTick(BaseModel):
    tick_idx: int = Field(alias="tickIdx")
    liquidity_net: int = Field(alias="liquidityNet")

    model_config = {"populate_by_name": True}


def _subgraph_url(chain_id: int) -> str:
    url = get_chain_info(chain_id).uniswap_subgraph_url
    if url is None:
        raise SubgraphError("Subgraph URL is not defined for the specified chain id")
    return url


async def get_fee_tier_distribution(
    chain_id: int,
    token_a: str,
    token_b: str,
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
) -> dict[int, float]:
    """TVL fraction per fee tier for a token pair.

    Returns:
        All four fee tiers mapped to their share of the pair's TVL; tiers without
        a pool map to 0. If the pair has no TVL at all, every tier maps to 0.
    """
    url = _subgraph_url(chain_id)
    token0, token1 = sorted((token_a.lower(), token_b.lower()))

    async with http_client(client, config) as http:
        data = await post_graphql(
            http,
            url,
            FEE_TIER_DISTRIBUTION_QUERY,
            {"token0": token0, "token1": token1},
            operation_name="FeeTierDistribution",
        )
    distribution = FeeTierDistributionData.model_validate(data)

    fee_tier_to_tvl: dict[int, float] = {}
    for entry in distribution.fee_tier_tvl:
        if entry.fee_tier not in TICK_SPACINGS:
            continue
        fee_tier_to_tvl[entry.fee_tier] = (entry.total_value_locked_token0 or 0) + (
            entry.total_value_locked_token1 or 0
        )

    total_tvl = sum(fee_tier_to_tvl.values())
    if total_tvl == 0:
        return {int(fee): 0.0 for fee in FEE_TIERS}
    return {int(fee): fee_tier_to_tvl.get(fee, 0.0) / total_tvl for fee in FEE_TIERS}


async def get_tick_to_liquidity_map_for_pool(
    chain_id: int,
    pool: Pool,
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
) -> dict[int, int]:
    """Active liquidity at every initialized tick of a pool, sorted by tick.

    Liquidity at a tick is the running sum of liquidityNet over all initialized
    ticks up to and including it.
    """
    url = _subgraph_url(chain_id)
    pool_address = compute_pool_address(
        get_chain_info(chain_id).uniswap_v3_factory, pool.token0, pool.token1, pool.fee
    ).lower()

    ticks: list[SubgraphTick] = []
    last_tick = -(1 << 31)
    async with http_client(client, config) as http:
        while True:
            data = await post_graphql(
                http,
                url,
                POOL_TICKS_QUERY,
                {"poolAddress": pool_address, "tickIdxGt": str(last_tick), "first": TICKS_PAGE_SIZE},
                operation_name="PoolTicks",
            )
            page = [SubgraphTick.model_validate(entry) for entry in data["ticks"]]
            ticks.extend(page)
            if len(page) < TICKS_PAGE_SIZE:
                break
            last_tick = page[-1].tick_idx

    logger.debug("pool_ticks_fetched", pool=pool_address, count=len(ticks))

    tick_to_liquidity: dict[int, int] = {}
    liquidity = 0
    for tick in sorted(ticks, key=lambda t: t.tick_idx):
        liquidity += tick.liquidity_net
        tick_to_liquidity[tick.tick_idx] = liquidity
    return tick_to_liquidity


__all__ = [
    "TICKS_PAGE_SIZE",
    "compute_pool_address",
    "Pool",
    "get_pool_contract",
    "get_pool",
    "get_pool_from_basic_position_info",
    "get_pool_price",
    "FeeTierTVL",
    "SubgraphTick",
    "get_fee_tier_distribution",
    "get_tick_to_liquidity_map_for_pool",
]
