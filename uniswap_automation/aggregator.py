"""Swap aggregator client and aggregator-assisted Automan estimates.

Requests to the aggregator go through a shared `RateLimiter`: at most one
in-flight request and a minimum gap between request starts.

Estimates compare a pool-only swap (Automan swaps through the position's own
pool) against routing the swap through the aggregator, and keep whichever
yields more.
"""

from __future__ import annotations

import asyncio
import time
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, Web3RPCError

from uniswap_automation.automan import (
    DecreaseLiquidityParams,
    MintParams,
    encode_optimal_swap_data,
    encode_swap_data,
    get_optimal_swap,
    simulate_decrease_liquidity_single,
    simulate_mint_optimal,
    simulate_rebalance,
    simulate_remove_liquidity,
)
from uniswap_automation.chain import get_chain_info
from uniswap_automation.config import HelperConfig, get_config
from uniswap_automation.currency import CurrencyAmount
from uniswap_automation.errors import TokenOrderError
from uniswap_automation.http_client import http_client
from uniswap_automation.overrides import get_token_overrides
from uniswap_automation.pool import compute_pool_address
from uniswap_automation.position import PositionDetails
from uniswap_automation.tick import validate_usable_ticks
from uniswap_automation.types import StateOverrides, checksum

logger = structlog.get_logger()

AGGREGATOR_API_VERSION = "v5.2"

# Mint and zap-out deadlines used for simulation
SIMULATION_DEADLINE_SECONDS = 86400

# Binary search bounds for the aggregator swap amount
MAX_SEARCH_ITERATIONS = 7
SEARCH_TOLERANCE_DIVISOR = 1000

# Simulation failures that make a probe count as worse rather than abort the search
_SIMULATION_ERRORS = (ContractLogicError, Web3RPCError)


class RateLimiter:
    """Bounds concurrent requests and spaces out request starts.

    Args:
        max_concurrent: Maximum number of requests in flight
        min_time: Minimum seconds between the start of consecutive requests
    """

    def __init__(self, max_concurrent: int = 1, min_time: float = 1.5):
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._start_lock = asyncio.Lock()
        self._min_time = min_time
        self._last_start: float | None = None

    async def _wait_for_start_slot(self) -> None:
        async with self._start_lock:
            if self._last_start is not None:
                wait = self._last_start + self._min_time - time.monotonic()
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_start = time.monotonic()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[None]:
        async with self._semaphore:
            await self._wait_for_start_slot()
            yield


# asyncio primitives bind to one event loop, so each loop gets its own limiter
_limiters: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, RateLimiter] = weakref.WeakKeyDictionary()


def get_limiter(config: HelperConfig | None = None) -> RateLimiter:
    """Shared aggregator limiter for the running event loop, created on first use."""
    loop = asyncio.get_running_loop()
    limiter = _limiters.get(loop)
    if limiter is None:
        config = config or get_config()
        limiter = RateLimiter(
            max_concurrent=config.aggregator_max_concurrent,
            min_time=config.aggregator_min_time_seconds,
        )
        _limiters[loop] = limiter
    return limiter


class AggregatorTx(BaseModel):
    """Ready-to-send swap transaction returned by the aggregator."""

    from_address: str = Field(alias="from")
    to: str
    data: str
    value: int = 0
    gas: int = 0
    gas_price: int = Field(default=0, alias="gasPrice")

    model_config = {"populate_by_name": True}


class AggregatorQuote(BaseModel):
    to_amount: int = Field(alias="toAmount")
    tx: AggregatorTx

    model_config = {"populate_by_name": True}


@dataclass(frozen=True)
class OptimalMintResult:
    """Simulated outcome of an Automan mint or rebalance.

    `swap_data` is empty when the swap goes through the pool itself.
    """

    amount0: int
    amount1: int
    liquidity: int
    swap_data: bytes = b""


@dataclass(frozen=True)
class ZapOutResult:
    amount: int
    swap_data: bytes = b""


def _api_url(chain_id: int, method: str, config: HelperConfig) -> str:
    return f"{config.aggregator_api_base_url}/swap/{AGGREGATOR_API_VERSION}/{chain_id}/{method}"


async def _request(
    chain_id: int,
    method: str,
    params: dict[str, Any],
    client: httpx.AsyncClient | None,
    config: HelperConfig | None,
    limiter: RateLimiter | None,
) -> dict[str, Any]:
    config = config or get_config()
    limiter = limiter or get_limiter(config)
    url = _api_url(chain_id, method, config)
    async with limiter.acquire():
        async with http_client(client, config) as http:
            try:
                response = await http.get(url, params=params, headers={"Accept": "application/json"})
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error("aggregator_request_failed", chain_id=chain_id, method=method, error=str(e))
                raise
            return response.json()


async def get_approve_target(
    chain_id: int,
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
    limiter: RateLimiter | None = None,
) -> str:
    """Address the aggregator router pulls input tokens through."""
    data = await _request(chain_id, "approve/spender", {}, client, config, limiter)
    return checksum(data["address"])


async def quote(
    chain_id: int,
    src: str,
    dst: str,
    amount: int,
    from_address: str,
    slippage: float,
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
    limiter: RateLimiter | None = None,
) -> AggregatorQuote:
    """Quote a swap and get the transaction that executes it.

    Args:
        chain_id: Chain id
        src: Token to sell
        dst: Token to buy
        amount: Raw amount of `src` to sell
        from_address: Address that will send the swap (must hold and approve `src`)
        slippage: Accepted slippage in percent, e.g. 0.5 for 0.5%
    """
    params = {
        "src": checksum(src),
        "dst": checksum(dst),
        "amount": str(amount),
        "from": checksum(from_address),
        "slippage": slippage,
        "disableEstimate": "true",
        "allowPartialFill": "false",
    }
    data = await _request(chain_id, "swap", params, client, config, limiter)
    return AggregatorQuote.model_validate(data)


def _deadline() -> int:
    return int(time.time()) + SIMULATION_DEADLINE_SECONDS


def _pool_address(chain_id: int, mint_params: MintParams) -> str:
    return compute_pool_address(
        get_chain_info(chain_id).uniswap_v3_factory,
        mint_params.token0,
        mint_params.token1,
        mint_params.fee,
    )


def _require_optimal_swap_router(chain_id: int) -> str:
    router = get_chain_info(chain_id).optimal_swap_router
    if router is None:
        raise ValueError(f"No optimal swap router on chain {chain_id}")
    return router


async def _optimal_mint_swap_data(
    chain_id: int,
    mint_params: MintParams,
    amount_in: int,
    zero_for_one: bool,
    approve_target: str,
    slippage: float,
    client: httpx.AsyncClient | None,
    config: HelperConfig | None,
    limiter: RateLimiter | None,
) -> tuple[AggregatorQuote, bytes]:
    """Quote `amount_in` through the aggregator and wrap it for the OptimalSwapRouter."""
    router = _require_optimal_swap_router(chain_id)
    token_in, token_out = (
        (mint_params.token0, mint_params.token1) if zero_for_one else (mint_params.token1, mint_params.token0)
    )
    swap_quote = await quote(
        chain_id, token_in, token_out, amount_in, router, slippage * 100, client, config, limiter
    )
    swap_data = encode_optimal_swap_data(
        chain_id,
        mint_params.token0,
        mint_params.token1,
        mint_params.fee,
        mint_params.tick_lower,
        mint_params.tick_upper,
        zero_for_one,
        approve_target,
        swap_quote.tx.to,
        swap_quote.tx.data,
    )
    return swap_quote, swap_data


async def _optimal_mint_pool(
    chain_id: int,
    w3: AsyncWeb3,
    from_address: str,
    mint_params: MintParams,
    overrides: StateOverrides | None,
) -> OptimalMintResult:
    result = await simulate_mint_optimal(
        chain_id, w3, from_address, mint_params, overrides=overrides
    )
    return OptimalMintResult(
        amount0=result.amount0,
        amount1=result.amount1,
        liquidity=result.liquidity,
    )


async def optimal_mint_router(
    chain_id: int,
    mint_params: MintParams,
    decimals_in: tuple[int, int],
    from_address: str,
    slippage: float,
    w3: AsyncWeb3,
    overrides: StateOverrides | None = None,
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
    limiter: RateLimiter | None = None,
) -> OptimalMintResult:
    """Best mint found by routing the balancing swap through the aggregator.

    1. Ask Automan how much the pool alone would swap (`getOptimalSwap`).
    2. Quote that amount; if the aggregator pays no more than the pool, return
       the pool-only mint.
    3. Otherwise binary search the swap amount over [0, min(2 * pool amount, balance)],
       one quote and one simulated mint per probe, for at most
       MAX_SEARCH_ITERATIONS probes or until the interval is narrower than
       1/SEARCH_TOLERANCE_DIVISOR of one whole output token.

    The best liquidity found never decreases between iterations. A probe whose
    simulation reverts counts as worse than the current best; the first probe
    at the pool-only amount is not guarded and its failure propagates.

    Args:
        decimals_in: Decimals of (token0, token1)
        slippage: Accepted slippage as a fraction, e.g. 0.005
    """
    optimal_swap = await get_optimal_swap(
        chain_id,
        w3,
        _pool_address(chain_id, mint_params),
        mint_params.tick_lower,
        mint_params.tick_upper,
        mint_params.amount0_desired,
        mint_params.amount1_desired,
    )
    zero_for_one = optimal_swap.zero_for_one
    approve_target = await get_approve_target(chain_id, client, config, limiter)

    async def probe(amount_in: int) -> OptimalMintResult:
        _, swap_data = await _optimal_mint_swap_data(
            chain_id, mint_params, amount_in, zero_for_one, approve_target, slippage,
            client, config, limiter,
        )
        result = await simulate_mint_optimal(
            chain_id, w3, from_address, mint_params, swap_data, overrides=overrides
        )
        return OptimalMintResult(
            amount0=result.amount0,
            amount1=result.amount1,
            liquidity=result.liquidity,
            swap_data=swap_data,
        )

    seed_quote, seed_swap_data = await _optimal_mint_swap_data(
        chain_id, mint_params, optimal_swap.amount_in, zero_for_one, approve_target, slippage,
        client, config, limiter,
    )
    if seed_quote.to_amount <= optimal_swap.amount_out:
        logger.debug(
            "aggregator_quote_not_better",
            chain_id=chain_id,
            aggregator_out=seed_quote.to_amount,
            pool_out=optimal_swap.amount_out,
        )
        return await _optimal_mint_pool(chain_id, w3, from_address, mint_params, overrides)

    seed = await simulate_mint_optimal(
        chain_id, w3, from_address, mint_params, seed_swap_data, overrides=overrides
    )
    best = OptimalMintResult(
        amount0=seed.amount0,
        amount1=seed.amount1,
        liquidity=seed.liquidity,
        swap_data=seed_swap_data,
    )
    best_amount_in = optimal_swap.amount_in

    balance_in = mint_params.amount0_desired if zero_for_one else mint_params.amount1_desired
    low, high = 0, min(2 * optimal_swap.amount_in, balance_in)
    tolerance = 10 ** decimals_in[1 if zero_for_one else 0] // SEARCH_TOLERANCE_DIVISOR

    for iteration in range(MAX_SEARCH_ITERATIONS):
        if high - low <= tolerance:
            break
        # Probe the midpoint of the wider side of the current best
        if best_amount_in - low >= high - best_amount_in:
            amount_in = (low + best_amount_in) // 2
        else:
            amount_in = (best_amount_in + high) // 2

        try:
            candidate = await probe(amount_in)
        except _SIMULATION_ERRORS as e:
            logger.debug("optimal_mint_probe_reverted", amount_in=amount_in, error=str(e))
            candidate = None

        if candidate is not None and candidate.liquidity > best.liquidity:
            # The optimum lies between the new best and the side it moved towards
            if amount_in < best_amount_in:
                high = best_amount_in
            else:
                low = best_amount_in
            best, best_amount_in = candidate, amount_in
        elif amount_in < best_amount_in:
            low = amount_in
        else:
            high = amount_in

        logger.debug(
            "optimal_mint_search_step",
            iteration=iteration,
            amount_in=amount_in,
            best_amount_in=best_amount_in,
            best_liquidity=best.liquidity,
        )

    return best


async def optimal_mint(
    chain_id: int,
    token0_amount: CurrencyAmount,
    token1_amount: CurrencyAmount,
    fee: int,
    tick_lower: int,
    tick_upper: int,
    from_address: str,
    slippage: float,
    w3: AsyncWeb3,
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
    limiter: RateLimiter | None = None,
) -> OptimalMintResult:
    """Estimate the liquidity Automan's `mintOptimal` yields for the given deposit.

    The pool-only swap is always evaluated; when the chain has an
    OptimalSwapRouter the aggregator route is evaluated too and the result with
    more liquidity wins (ties go to the pool).

    Raises:
        TokenOrderError: If token0_amount's token does not sort before token1_amount's
        InvalidTickError: If either tick is off the fee tier's tick grid
    """
    token0 = token0_amount.currency.wrapped
    token1 = token1_amount.currency.wrapped
    if not token0.sorts_before(token1):
        raise TokenOrderError("token0 must be sorted before token1")
    validate_usable_ticks(tick_lower, tick_upper, fee)

    mint_params = MintParams(
        token0=token0.address,
        token1=token1.address,
        fee=fee,
        tick_lower=tick_lower,
        tick_upper=tick_upper,
        amount0_desired=token0_amount.quotient,
        amount1_desired=token1_amount.quotient,
        amount0_min=0,
        amount1_min=0,
        recipient=from_address,
        deadline=_deadline(),
    )
    # Forge balances and allowances once; every simulation below reuses them
    overrides = await get_token_overrides(
        chain_id,
        w3,
        from_address,
        mint_params.token0,
        mint_params.token1,
        mint_params.amount0_desired,
        mint_params.amount1_desired,
    )

    if get_chain_info(chain_id).optimal_swap_router is None:
        return await _optimal_mint_pool(chain_id, w3, from_address, mint_params, overrides)

    pool_estimate, router_estimate = await asyncio.gather(
        _optimal_mint_pool(chain_id, w3, from_address, mint_params, overrides),
        optimal_mint_router(
            chain_id,
            mint_params,
            (token0.decimals, token1.decimals),
            from_address,
            slippage,
            w3,
            overrides,
            client,
            config,
            limiter,
        ),
    )
    if pool_estimate.liquidity >= router_estimate.liquidity:
        return pool_estimate
    return router_estimate


async def optimal_rebalance(
    chain_id: int,
    position_id: int,
    new_tick_lower: int,
    new_tick_upper: int,
    fee_bips: int,
    use_pool: bool,
    from_address: str,
    slippage: float,
    w3: AsyncWeb3,
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
    limiter: RateLimiter | None = None,
) -> OptimalMintResult:
    """Estimate a rebalance of an existing position into a new range.

    The position's withdrawable amounts are simulated first; the balancing swap
    goes through the pool when `use_pool` is set or aggregator swap data cannot
    be built.
    """
    position = await PositionDetails.from_position_id(chain_id, position_id, w3)
    validate_usable_ticks(new_tick_lower, new_tick_upper, position.fee)
    removed = await simulate_remove_liquidity(
        chain_id,
        w3,
        position.owner,
        DecreaseLiquidityParams(
            token_id=position.token_id,
            liquidity=position.liquidity,
            amount0_min=0,
            amount1_min=0,
            deadline=_deadline(),
        ),
        fee_bips,
        from_address=from_address,
    )
    mint_params = MintParams(
        token0=position.token0.address,
        token1=position.token1.address,
        fee=position.fee,
        tick_lower=new_tick_lower,
        tick_upper=new_tick_upper,
        amount0_desired=removed.amount0,
        amount1_desired=removed.amount1,
        amount0_min=0,
        amount1_min=0,
        # Ignored by Automan for rebalance
        recipient=from_address,
        deadline=_deadline(),
    )

    swap_data = b""
    if not use_pool:
        try:
            optimal_swap = await get_optimal_swap(
                chain_id,
                w3,
                _pool_address(chain_id, mint_params),
                new_tick_lower,
                new_tick_upper,
                mint_params.amount0_desired,
                mint_params.amount1_desired,
            )
            approve_target = await get_approve_target(chain_id, client, config, limiter)
            _, swap_data = await _optimal_mint_swap_data(
                chain_id, mint_params, optimal_swap.amount_in, optimal_swap.zero_for_one,
                approve_target, slippage, client, config, limiter,
            )
        except (httpx.HTTPError, ValueError, *_SIMULATION_ERRORS) as e:
            logger.warning("rebalance_swap_data_unavailable", position_id=position_id, error=str(e))
            swap_data = b""

    result = await simulate_rebalance(
        chain_id,
        w3,
        position.owner,
        mint_params,
        position_id,
        fee_bips,
        swap_data,
        from_address=from_address,
    )
    return OptimalMintResult(
        amount0=result.amount0,
        amount1=result.amount1,
        liquidity=result.liquidity,
        swap_data=swap_data,
    )


async def _zap_out_swap_data(
    chain_id: int,
    w3: AsyncWeb3,
    from_address: str,
    position: PositionDetails,
    fee_bips: int,
    zero_for_one: bool,
    slippage: float,
    client: httpx.AsyncClient | None,
    config: HelperConfig | None,
    limiter: RateLimiter | None,
) -> bytes:
    """Aggregator swap of the withdrawn input token, or b"" if it cannot be built."""
    try:
        removed = await simulate_remove_liquidity(
            chain_id,
            w3,
            position.owner,
            DecreaseLiquidityParams(
                token_id=position.token_id,
                liquidity=position.liquidity,
                amount0_min=0,
                amount1_min=0,
                deadline=_deadline(),
            ),
            fee_bips,
            from_address=from_address,
        )
        token_in, token_out = (
            (position.token0.address, position.token1.address)
            if zero_for_one
            else (position.token1.address, position.token0.address)
        )
        amount_in = removed.amount0 if zero_for_one else removed.amount1
        router_proxy = get_chain_info(chain_id).aperture_router_proxy
        if router_proxy is None:
            raise ValueError(f"No router proxy on chain {chain_id}")
        swap_quote = await quote(
            chain_id, token_in, token_out, amount_in, router_proxy, slippage * 100, client, config, limiter
        )
        approve_target = await get_approve_target(chain_id, client, config, limiter)
        return encode_swap_data(
            chain_id,
            swap_quote.tx.to,
            approve_target,
            token_in,
            token_out,
            amount_in,
            swap_quote.tx.data,
        )
    except (httpx.HTTPError, ValueError, *_SIMULATION_ERRORS) as e:
        logger.warning("zap_out_swap_data_unavailable", position_id=position.token_id, error=str(e))
        return b""


async def optimal_zap_out(
    chain_id: int,
    position_id: int,
    zero_for_one: bool,
    fee_bips: int,
    from_address: str,
    slippage: float,
    w3: AsyncWeb3,
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
    limiter: RateLimiter | None = None,
) -> ZapOutResult:
    """Estimate withdrawing a position entirely into one token.

    Args:
        zero_for_one: True to end up with token1, False for token0
        fee_bips: Share of position value paid as a fee, multiplied by 1e18
    """
    position = await PositionDetails.from_position_id(chain_id, position_id, w3)

    async def zap_out(swap_data: bytes) -> ZapOutResult:
        result = await simulate_decrease_liquidity_single(
            chain_id,
            w3,
            position.owner,
            DecreaseLiquidityParams(
                token_id=position.token_id,
                liquidity=position.liquidity,
                amount0_min=0,
                amount1_min=0,
                deadline=_deadline(),
            ),
            zero_for_one,
            fee_bips,
            swap_data,
            from_address=from_address,
        )
        return ZapOutResult(amount=result.amount, swap_data=swap_data)

    if get_chain_info(chain_id).aperture_router_proxy is None:
        return await zap_out(b"")

    async def router_zap_out() -> ZapOutResult:
        swap_data = await _zap_out_swap_data(
            chain_id, w3, from_address, position, fee_bips, zero_for_one, slippage,
            client, config, limiter,
        )
        return await zap_out(swap_data)

    pool_estimate, router_estimate = await asyncio.gather(zap_out(b""), router_zap_out())
    if pool_estimate.amount >= router_estimate.amount:
        return pool_estimate
    return router_estimate


__all__ = [
    "AGGREGATOR_API_VERSION",
    "MAX_SEARCH_ITERATIONS",
    "RateLimiter",
    "get_limiter",
    "AggregatorTx",
    "AggregatorQuote",
    "OptimalMintResult",
    "ZapOutResult",
    "get_approve_target",
    "quote",
    "optimal_mint",
    "optimal_mint_router",
    "optimal_rebalance",
    "optimal_zap_out",
]
