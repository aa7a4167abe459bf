"""Unsigned transactions for the NonfungiblePositionManager and Automan."""

from __future__ import annotations

from collections.abc import Mapping
from fractions import Fraction
from typing import Any

import structlog
from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, keccak
from hexbytes import HexBytes
from web3 import AsyncWeb3
from web3.types import TxParams

from uniswap_automation.automan import (
    MINT_PARAMS_TYPE,
    DecreaseLiquidityParams,
    MintParams,
    PermitInfo,
    get_automan_mint_optimal_calldata,
    get_automan_rebalance_call_info,
    get_automan_reinvest_call_info,
    get_automan_remove_liquidity_call_info,
)
from uniswap_automation.chain import get_chain_info
from uniswap_automation.constants import DEFAULT_FEE_BIPS, MAX_UINT128
from uniswap_automation.currency import CurrencyAmount
from uniswap_automation.errors import LimitOrderError, TokenOrderError
from uniswap_automation.pool import get_pool
from uniswap_automation.position import (
    Position,
    get_position,
    get_rebalanced_position,
    get_reinvested_position,
)
from uniswap_automation.price import Price, price_to_closest_tick
from uniswap_automation.tick import (
    align_price_to_closest_usable_tick,
    get_tick_spacing,
    validate_usable_ticks,
)
from uniswap_automation.types import checksum

logger = structlog.get_logger()

# mint((address,address,uint24,int24,int24,uint256,uint256,uint256,uint256,address,uint256))
MINT_SELECTOR = function_signature_to_4byte_selector(f"mint({MINT_PARAMS_TYPE})")

# multicall(bytes[])
MULTICALL_SELECTOR = function_signature_to_4byte_selector("multicall(bytes[])")

# refundETH()
REFUND_ETH_SELECTOR = function_signature_to_4byte_selector("refundETH()")

# collect((uint256,address,uint128,uint128))
COLLECT_SELECTOR = function_signature_to_4byte_selector("collect((uint256,address,uint128,uint128))")

# ERC-721 Transfer(address indexed from, address indexed to, uint256 indexed tokenId)
TRANSFER_TOPIC = keccak(text="Transfer(address,address,uint256)")


def _apply_slippage(amount: int, slippage_tolerance: Fraction) -> int:
    return int(amount * (1 - Fraction(slippage_tolerance)))


def _npm_calldata(calldatas: list[bytes]) -> str:
    if len(calldatas) == 1:
        return "0x" + calldatas[0].hex()
    return "0x" + (MULTICALL_SELECTOR + encode(["bytes[]"], [calldatas])).hex()


async def get_create_position_tx_for_limit_order(
    recipient: str,
    outer_limit_price: Price,
    input_amount: CurrencyAmount,
    pool_fee: int,
    deadline: int,
    chain_id: int,
    w3: AsyncWeb3,
) -> TxParams:
    """Mint a single-sided position that a limit order closes once fully converted.

    The position is one tick spacing wide with its outer edge at
    `outer_limit_price`, and holds only the input token. To sell ether,
    `outer_limit_price.base` is the WETH token while `input_amount` may be in
    either native ether or WETH; native input is wrapped by the NPM and any
    excess refunded in the same multicall.

    Args:
        recipient: Owner of the new position
        outer_limit_price: Price of the input token (base) in the output token (quote),
            already aligned to a usable tick
        input_amount: Amount of the input token to sell
        pool_fee: Fee tier of the pool to provide liquidity in
        deadline: Mint deadline in seconds since the Unix epoch
        chain_id: Chain id
        w3: Provider used to read the pool

    Raises:
        LimitOrderError: If the price is not aligned, or the position would not sit
            entirely beyond the current price in the selling direction
    """
    if align_price_to_closest_usable_tick(outer_limit_price, pool_fee) != outer_limit_price:
        raise LimitOrderError("Outer limit price not aligned")
    input_token = input_amount.currency.wrapped
    if input_token != outer_limit_price.base:
        raise LimitOrderError("Input currency must be the limit price's base token")

    tick_spacing = get_tick_spacing(pool_fee)
    zero_for_one = outer_limit_price.base.sorts_before(outer_limit_price.quote)
    outer_tick = price_to_closest_tick(outer_limit_price)
    tick_lower = outer_tick - tick_spacing if zero_for_one else outer_tick
    tick_upper = tick_lower + tick_spacing

    pool = await get_pool(
        outer_limit_price.base, outer_limit_price.quote, pool_fee, chain_id, w3
    )
    if (zero_for_one and pool.tick_current >= tick_lower) or (
        not zero_for_one and pool.tick_current < tick_upper
    ):
        raise LimitOrderError("Specified limit price lower than current price")

    if zero_for_one:
        position = Position.from_amount0(
            pool, tick_lower, tick_upper, input_amount.quotient, use_full_precision=False
        )
    else:
        position = Position.from_amount1(pool, tick_lower, tick_upper, input_amount.quotient)

    amount0_desired, amount1_desired = position.mint_amounts
    amount0_min, amount1_min = position.mint_amounts_with_slippage(Fraction(0))
    mint_params = MintParams(
        token0=pool.token0.address,
        token1=pool.token1.address,
        fee=pool_fee,
        tick_lower=tick_lower,
        tick_upper=tick_upper,
        amount0_desired=amount0_desired,
        amount1_desired=amount1_desired,
        amount0_min=amount0_min,
        amount1_min=amount1_min,
        recipient=recipient,
        deadline=deadline,
    )
    calldatas = [MINT_SELECTOR + encode([MINT_PARAMS_TYPE], [mint_params.as_tuple()])]

    value = 0
    if input_amount.currency.is_native:
        value = amount0_desired if pool.token0 == input_token else amount1_desired
        if value > 0:
            calldatas.append(REFUND_ETH_SELECTOR)

    logger.debug(
        "limit_order_tx_built",
        chain_id=chain_id,
        tick_lower=tick_lower,
        tick_upper=tick_upper,
        liquidity=position.liquidity,
    )
    return {
        "to": get_chain_info(chain_id).uniswap_v3_nonfungible_position_manager,
        "data": _npm_calldata(calldatas),
        "value": value,
    }


def get_mint_tx(
    chain_id: int,
    token0_amount: CurrencyAmount,
    token1_amount: CurrencyAmount,
    fee: int,
    tick_lower: int,
    tick_upper: int,
    recipient: str,
    deadline: int,
    amount0_min: int = 0,
    amount1_min: int = 0,
    swap_data: bytes | str = b"",
) -> TxParams:
    """Automan `mintOptimal` transaction; native ether input is sent as value.

    Raises:
        TokenOrderError: If token0_amount's token does not sort before token1_amount's
        InvalidTickError: If the ticks are not usable for the fee tier
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
        amount0_min=amount0_min,
        amount1_min=amount1_min,
        recipient=recipient,
        deadline=deadline,
    )
    value = 0
    if token0_amount.currency.is_native:
        value = token0_amount.quotient
    elif token1_amount.currency.is_native:
        value = token1_amount.quotient

    return {
        "from": checksum(recipient),
        "to": get_chain_info(chain_id).aperture_uniswap_v3_automan,
        "data": get_automan_mint_optimal_calldata(mint_params, swap_data),
        "value": value,
    }


async def get_rebalance_tx(
    chain_id: int,
    owner: str,
    existing_position_id: int,
    new_tick_lower: int,
    new_tick_upper: int,
    slippage_tolerance: Fraction,
    deadline: int,
    w3: AsyncWeb3,
    fee_bips: int = DEFAULT_FEE_BIPS,
    permit_info: PermitInfo | None = None,
    swap_data: bytes | str = b"",
    position: Position | None = None,
) -> TxParams:
    """Automan `rebalance` into a new range.

    Minimum amounts come from the predicted rebalanced position at the current
    price, less `slippage_tolerance`. Pass `position` to skip reading it.
    """
    if position is None:
        position = await get_position(chain_id, existing_position_id, w3)
    validate_usable_ticks(new_tick_lower, new_tick_upper, position.pool.fee)

    rebalanced = get_rebalanced_position(position, new_tick_lower, new_tick_upper)
    amount0_min, amount1_min = rebalanced.mint_amounts_with_slippage(Fraction(slippage_tolerance))
    mint_params = MintParams(
        token0=position.pool.token0.address,
        token1=position.pool.token1.address,
        fee=position.pool.fee,
        tick_lower=new_tick_lower,
        tick_upper=new_tick_upper,
        # Automan uses the withdrawn amounts
        amount0_desired=0,
        amount1_desired=0,
        amount0_min=amount0_min,
        amount1_min=amount1_min,
        recipient=owner,
        deadline=deadline,
    )
    call_info = get_automan_rebalance_call_info(
        mint_params, existing_position_id, fee_bips, permit_info, swap_data
    )
    return {
        "from": checksum(owner),
        "to": get_chain_info(chain_id).aperture_uniswap_v3_automan,
        "data": call_info.data,
    }


async def get_reinvest_tx(
    chain_id: int,
    owner: str,
    position_id: int,
    slippage_tolerance: Fraction,
    deadline: int,
    w3: AsyncWeb3,
    fee_bips: int = DEFAULT_FEE_BIPS,
    permit_info: PermitInfo | None = None,
) -> TxParams:
    """Automan `reinvest`; minimum amounts come from a simulated reinvest."""
    reinvested = await get_reinvested_position(chain_id, position_id, w3)
    call_info = get_automan_reinvest_call_info(
        position_id,
        deadline,
        amount0_min=_apply_slippage(reinvested.amount0, slippage_tolerance),
        amount1_min=_apply_slippage(reinvested.amount1, slippage_tolerance),
        fee_bips=fee_bips,
        permit_info=permit_info,
    )
    return {
        "from": checksum(owner),
        "to": get_chain_info(chain_id).aperture_uniswap_v3_automan,
        "data": call_info.data,
    }


async def get_remove_liquidity_tx(
    chain_id: int,
    owner: str,
    position_id: int,
    slippage_tolerance: Fraction,
    deadline: int,
    w3: AsyncWeb3,
    fee_bips: int = DEFAULT_FEE_BIPS,
    permit_info: PermitInfo | None = None,
    position: Position | None = None,
) -> TxParams:
    """Automan `removeLiquidity` of the whole position, collecting fees as well."""
    if position is None:
        position = await get_position(chain_id, position_id, w3)
    amount0_min, amount1_min = position.burn_amounts_with_slippage(Fraction(slippage_tolerance))
    call_info = get_automan_remove_liquidity_call_info(
        DecreaseLiquidityParams(
            token_id=position_id,
            liquidity=position.liquidity,
            amount0_min=amount0_min,
            amount1_min=amount1_min,
            deadline=deadline,
        ),
        fee_bips,
        permit_info,
    )
    return {
        "from": checksum(owner),
        "to": get_chain_info(chain_id).aperture_uniswap_v3_automan,
        "data": call_info.data,
    }


def get_collect_tx(chain_id: int, position_id: int, recipient: str) -> TxParams:
    """NPM `collect` of everything owed to the position."""
    data = COLLECT_SELECTOR + encode(
        ["(uint256,address,uint128,uint128)"],
        [(position_id, checksum(recipient), MAX_UINT128, MAX_UINT128)],
    )
    return {
        "from": checksum(recipient),
        "to": get_chain_info(chain_id).uniswap_v3_nonfungible_position_manager,
        "data": "0x" + data.hex(),
    }


def get_minted_position_id_from_tx_receipt(
    receipt: Mapping[str, Any],
    recipient: str,
    chain_id: int,
) -> int | None:
    """Position id minted to `recipient` in a transaction, or None.

    Looks for the NPM's ERC-721 Transfer from the zero address.
    """
    npm = get_chain_info(chain_id).uniswap_v3_nonfungible_position_manager.lower()
    recipient_bytes = bytes.fromhex(checksum(recipient)[2:])
    for log in receipt["logs"]:
        if log["address"].lower() != npm:
            continue
        topics = [bytes(HexBytes(topic)) for topic in log["topics"]]
        if len(topics) != 4 or topics[0] != TRANSFER_TOPIC:
            continue
        if int.from_bytes(topics[1], "big") == 0 and topics[2][-20:] == recipient_bytes:
            return int.from_bytes(topics[3], "big")
    return None


__all__ = [
    "MINT_SELECTOR",
    "MULTICALL_SELECTOR",
    "REFUND_ETH_SELECTOR",
    "TRANSFER_TOPIC",
    "get_create_position_tx_for_limit_order",
    "get_mint_tx",
    "get_rebalance_tx",
    "get_reinvest_tx",
    "get_remove_liquidity_tx",
    "get_collect_tx",
    "get_minted_position_id_from_tx_receipt",
]
