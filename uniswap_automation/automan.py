"""Automan calldata builders, result decoding and simulated calls.

Automan is the automation contract that mints, rebalances, reinvests and
withdraws Uniswap V3 positions on behalf of their owners. Calldata is encoded
with eth_abi against the function signatures below; simulations run the call
through `eth_call` with forged balances, allowances and approvals.
"""

from __future__ import annotations

from dataclasses import astuple, dataclass
from typing import Any

import structlog
from eth_abi import decode, encode
from eth_abi.packed import encode_packed
from eth_utils import function_signature_to_4byte_selector
from hexbytes import HexBytes
from web3 import AsyncWeb3
from web3.contract import AsyncContract

from uniswap_automation.abi import AUTOMAN_ABI
from uniswap_automation.chain import get_chain_info
from uniswap_automation.constants import DEFAULT_FEE_BIPS
from uniswap_automation.overrides import (
    get_automan_whitelist_overrides,
    get_npm_approval_overrides,
    get_token_overrides,
    merge_state_overrides,
    static_call_with_overrides,
)
from uniswap_automation.tick import validate_usable_ticks
from uniswap_automation.types import BlockIdentifier, StateOverrides, checksum

logger = structlog.get_logger()

# INonfungiblePositionManager.MintParams
MINT_PARAMS_TYPE = "(address,address,uint24,int24,int24,uint256,uint256,uint256,uint256,address,uint256)"

# INonfungiblePositionManager.IncreaseLiquidityParams
INCREASE_LIQUIDITY_PARAMS_TYPE = "(uint256,uint256,uint256,uint256,uint256,uint256)"

# INonfungiblePositionManager.DecreaseLiquidityParams
DECREASE_LIQUIDITY_PARAMS_TYPE = "(uint256,uint128,uint256,uint256,uint256)"

# Trailing arguments of every permit variant: deadline, v, r, s
PERMIT_TYPES = ["uint256", "uint8", "bytes32", "bytes32"]


@dataclass(frozen=True)
class MintParams:
    """INonfungiblePositionManager.MintParams"""

    token0: str
    token1: str
    fee: int
    tick_lower: int
    tick_upper: int
    amount0_desired: int
    amount1_desired: int
    amount0_min: int
    amount1_min: int
    recipient: str
    deadline: int

    def as_tuple(self) -> tuple:
        return (
            checksum(self.token0),
            checksum(self.token1),
            self.fee,
            self.tick_lower,
            self.tick_upper,
            self.amount0_desired,
            self.amount1_desired,
            self.amount0_min,
            self.amount1_min,
            checksum(self.recipient),
            self.deadline,
        )


@dataclass(frozen=True)
class IncreaseLiquidityParams:
    """INonfungiblePositionManager.IncreaseLiquidityParams"""

    token_id: int
    amount0_desired: int
    amount1_desired: int
    amount0_min: int
    amount1_min: int
    deadline: int

    def as_tuple(self) -> tuple:
        return astuple(self)


@dataclass(frozen=True)
class DecreaseLiquidityParams:
    """INonfungiblePositionManager.DecreaseLiquidityParams"""

    token_id: int
    liquidity: int
    amount0_min: int
    amount1_min: int
    deadline: int

    def as_tuple(self) -> tuple:
        return astuple(self)


@dataclass(frozen=True)
class PermitInfo:
    """Off-chain NPM permit signed by the position owner for Automan."""

    signature: str
    deadline: int


@dataclass(frozen=True)
class AutomanCallInfo:
    """A fully specified Automan call.

    Attributes:
        function_signature: Canonical signature, e.g. "reinvest((uint256,...),uint256,bytes)"
        params: Positional ABI arguments, structs as tuples
        data: 0x-prefixed calldata
    """

    function_signature: str
    params: tuple
    data: str

    @property
    def function_name(self) -> str:
        return self.function_signature.split("(", 1)[0]


@dataclass(frozen=True)
class MintOptimalResult:
    token_id: int
    liquidity: int
    amount0: int
    amount1: int


@dataclass(frozen=True)
class RebalanceResult:
    token_id: int
    liquidity: int
    amount0: int
    amount1: int


@dataclass(frozen=True)
class ReinvestResult:
    liquidity: int
    amount0: int
    amount1: int


@dataclass(frozen=True)
class DecreaseLiquidityResult:
    amount0: int
    amount1: int


@dataclass(frozen=True)
class DecreaseLiquiditySingleResult:
    amount: int


@dataclass(frozen=True)
class OptimalSwap:
    """Automan.getOptimalSwap output for a pool-only swap."""

    amount_in: int
    amount_out: int
    zero_for_one: bool
    sqrt_price_x96: int


# function name -> (output types, result class)
_OUTPUTS: dict[str, tuple[list[str], type]] = {
    "mintOptimal": (["uint256", "uint128", "uint256", "uint256"], MintOptimalResult),
    "rebalance": (["uint256", "uint128", "uint256", "uint256"], RebalanceResult),
    "reinvest": (["uint128", "uint256", "uint256"], ReinvestResult),
    "decreaseLiquidity": (["uint256", "uint256"], DecreaseLiquidityResult),
    "decreaseLiquiditySingle": (["uint256"], DecreaseLiquiditySingleResult),
    "removeLiquidity": (["uint256", "uint256"], DecreaseLiquidityResult),
}

# Input types of every supported signature, keyed by signature
_INPUTS: dict[str, list[str]] = {}


def _register(name: str, input_types: list[str]) -> str:
    signature = f"{name}({','.join(input_types)})"
    _INPUTS[signature] = input_types
    return signature


MINT_OPTIMAL_SIGNATURE = _register("mintOptimal", [MINT_PARAMS_TYPE, "bytes"])
REBALANCE_SIGNATURE = _register("rebalance", [MINT_PARAMS_TYPE, "uint256", "uint256", "bytes"])
REBALANCE_PERMIT_SIGNATURE = _register(
    "rebalance", [MINT_PARAMS_TYPE, "uint256", "uint256", "bytes", *PERMIT_TYPES]
)
REINVEST_SIGNATURE = _register("reinvest", [INCREASE_LIQUIDITY_PARAMS_TYPE, "uint256", "bytes"])
REINVEST_PERMIT_SIGNATURE = _register(
    "reinvest", [INCREASE_LIQUIDITY_PARAMS_TYPE, "uint256", "bytes", *PERMIT_TYPES]
)
DECREASE_LIQUIDITY_SIGNATURE = _register(
    "decreaseLiquidity", [DECREASE_LIQUIDITY_PARAMS_TYPE, "uint256"]
)
DECREASE_LIQUIDITY_PERMIT_SIGNATURE = _register(
    "decreaseLiquidity", [DECREASE_LIQUIDITY_PARAMS_TYPE, "uint256", *PERMIT_TYPES]
)
DECREASE_LIQUIDITY_SINGLE_SIGNATURE = _register(
    "decreaseLiquiditySingle", [DECREASE_LIQUIDITY_PARAMS_TYPE, "bool", "uint256", "bytes"]
)
DECREASE_LIQUIDITY_SINGLE_PERMIT_SIGNATURE = _register(
    "decreaseLiquiditySingle",
    [DECREASE_LIQUIDITY_PARAMS_TYPE, "bool", "uint256", "bytes", *PERMIT_TYPES],
)
REMOVE_LIQUIDITY_SIGNATURE = _register(
    "removeLiquidity", [DECREASE_LIQUIDITY_PARAMS_TYPE, "uint256"]
)
REMOVE_LIQUIDITY_PERMIT_SIGNATURE = _register(
    "removeLiquidity", [DECREASE_LIQUIDITY_PARAMS_TYPE, "uint256", *PERMIT_TYPES]
)

_SELECTOR_TO_SIGNATURE = {
    function_signature_to_4byte_selector(signature): signature for signature in _INPUTS
}


def _to_bytes(data: bytes | str) -> bytes:
    return bytes(HexBytes(data)) if data else b""


def encode_automan_call(function_signature: str, params: tuple) -> AutomanCallInfo:
    """Encode calldata for one of the supported Automan signatures."""
    input_types = _INPUTS[function_signature]
    data = function_signature_to_4byte_selector(function_signature) + encode(input_types, params)
    return AutomanCallInfo(
        function_signature=function_signature,
        params=params,
        data="0x" + data.hex(),
    )


def decode_automan_calldata(data: bytes | str) -> tuple[str, tuple]:
    """Recover (function_signature, params) from Automan calldata.

    Raises:
        ValueError: If the selector is not a supported Automan function
    """
    raw = _to_bytes(data)
    signature = _SELECTOR_TO_SIGNATURE.get(raw[:4])
    if signature is None:
        raise ValueError(f"Unknown Automan selector: 0x{raw[:4].hex()}")
    return signature, decode(_INPUTS[signature], raw[4:])


def decode_automan_result(function_signature: str, return_data: bytes | str) -> Any:
    """Decode the return data of an Automan call into its result dataclass."""
    name = function_signature.split("(", 1)[0]
    output_types, result_cls = _OUTPUTS[name]
    return result_cls(*decode(output_types, _to_bytes(return_data)))


def split_signature(signature: str | bytes) -> tuple[int, bytes, bytes]:
    """Split a 65-byte ECDSA signature into (v, r, s) with v in {27, 28}."""
    raw = bytes(HexBytes(signature))
    if len(raw) != 65:
        raise ValueError(f"Invalid signature length: {len(raw)}")
    v = raw[64]
    if v < 27:
        v += 27
    return v, raw[:32], raw[32:64]


def _permit_args(permit_info: PermitInfo) -> tuple:
    v, r, s = split_signature(permit_info.signature)
    return (permit_info.deadline, v, r, s)


def get_automan_contract(chain_id: int, w3: AsyncWeb3) -> AsyncContract:
    return w3.eth.contract(address=get_chain_info(chain_id).aperture_uniswap_v3_automan, abi=AUTOMAN_ABI)


def encode_swap_data(
    chain_id: int,
    router: str,
    approve_target: str,
    token_in: str,
    token_out: str,
    amount_in: int,
    data: bytes | str,
) -> bytes:
    """Swap data routed through the Aperture router proxy."""
    router_proxy = get_chain_info(chain_id).aperture_router_proxy
    if router_proxy is None:
        raise ValueError(f"No router proxy on chain {chain_id}")
    inner = encode_packed(
        ["address", "address", "address", "address", "uint256", "bytes"],
        [
            checksum(router),
            checksum(approve_target),
            checksum(token_in),
            checksum(token_out),
            amount_in,
            _to_bytes(data),
        ],
    )
    return encode_packed(["address", "bytes"], [router_proxy, inner])


def encode_optimal_swap_data(
    chain_id: int,
    token0: str,
    token1: str,
    fee: int,
    tick_lower: int,
    tick_upper: int,
    zero_for_one: bool,
    approve_target: str,
    router: str,
    data: bytes | str,
) -> bytes:
    """Swap data for the OptimalSwapRouter, which splits the swap between pool and aggregator."""
    optimal_swap_router = get_chain_info(chain_id).optimal_swap_router
    if optimal_swap_router is None:
        raise ValueError(f"No optimal swap router on chain {chain_id}")
    inner = encode_packed(
        ["address", "address", "uint24", "int24", "int24", "bool", "address", "address", "bytes"],
        [
            checksum(token0),
            checksum(token1),
            fee,
            tick_lower,
            tick_upper,
            zero_for_one,
            checksum(approve_target),
            checksum(router),
            _to_bytes(data),
        ],
    )
    return encode_packed(["address", "bytes"], [optimal_swap_router, inner])


def get_automan_mint_optimal_calldata(mint_params: MintParams, swap_data: bytes | str = b"") -> str:
    return encode_automan_call(
        MINT_OPTIMAL_SIGNATURE, (mint_params.as_tuple(), _to_bytes(swap_data))
    ).data


def get_automan_rebalance_call_info(
    mint_params: MintParams,
    existing_position_id: int,
    fee_bips: int = DEFAULT_FEE_BIPS,
    permit_info: PermitInfo | None = None,
    swap_data: bytes | str = b"",
) -> AutomanCallInfo:
    params = (mint_params.as_tuple(), existing_position_id, fee_bips, _to_bytes(swap_data))
    if permit_info is None:
        return encode_automan_call(REBALANCE_SIGNATURE, params)
    return encode_automan_call(REBALANCE_PERMIT_SIGNATURE, params + _permit_args(permit_info))


def get_automan_reinvest_call_info(
    position_id: int,
    deadline: int,
    amount0_min: int = 0,
    amount1_min: int = 0,
    fee_bips: int = DEFAULT_FEE_BIPS,
    permit_info: PermitInfo | None = None,
    swap_data: bytes | str = b"",
) -> AutomanCallInfo:
    # amount0Desired / amount1Desired are ignored by Automan
    increase_params = IncreaseLiquidityParams(
        token_id=position_id,
        amount0_desired=0,
        amount1_desired=0,
        amount0_min=amount0_min,
        amount1_min=amount1_min,
        deadline=deadline,
    )
    params = (increase_params.as_tuple(), fee_bips, _to_bytes(swap_data))
    if permit_info is None:
        return encode_automan_call(REINVEST_SIGNATURE, params)
    return encode_automan_call(REINVEST_PERMIT_SIGNATURE, params + _permit_args(permit_info))


def get_automan_decrease_liquidity_call_info(
    decrease_params: DecreaseLiquidityParams,
    fee_bips: int = DEFAULT_FEE_BIPS,
    permit_info: PermitInfo | None = None,
) -> AutomanCallInfo:
    params = (decrease_params.as_tuple(), fee_bips)
    if permit_info is None:
        return encode_automan_call(DECREASE_LIQUIDITY_SIGNATURE, params)
    return encode_automan_call(
        DECREASE_LIQUIDITY_PERMIT_SIGNATURE, params + _permit_args(permit_info)
    )


def get_automan_decrease_liquidity_single_call_info(
    decrease_params: DecreaseLiquidityParams,
    zero_for_one: bool,
    fee_bips: int = DEFAULT_FEE_BIPS,
    permit_info: PermitInfo | None = None,
    swap_data: bytes | str = b"",
) -> AutomanCallInfo:
    """Withdraw liquidity and swap everything into one token.

    zero_for_one=True ends up entirely in token1.
    """
    params = (decrease_params.as_tuple(), zero_for_one, fee_bips, _to_bytes(swap_data))
    if permit_info is None:
        return encode_automan_call(DECREASE_LIQUIDITY_SINGLE_SIGNATURE, params)
    return encode_automan_call(
        DECREASE_LIQUIDITY_SINGLE_PERMIT_SIGNATURE, params + _permit_args(permit_info)
    )


def get_automan_remove_liquidity_call_info(
    decrease_params: DecreaseLiquidityParams,
    fee_bips: int = DEFAULT_FEE_BIPS,
    permit_info: PermitInfo | None = None,
) -> AutomanCallInfo:
    params = (decrease_params.as_tuple(), fee_bips)
    if permit_info is None:
        return encode_automan_call(REMOVE_LIQUIDITY_SIGNATURE, params)
    return encode_automan_call(
        REMOVE_LIQUIDITY_PERMIT_SIGNATURE, params + _permit_args(permit_info)
    )


async def get_optimal_swap(
    chain_id: int,
    w3: AsyncWeb3,
    pool_address: str,
    tick_lower: int,
    tick_upper: int,
    amount0_desired: int,
    amount1_desired: int,
    block_identifier: BlockIdentifier = "latest",
) -> OptimalSwap:
    """Swap that balances the desired amounts for the range using the pool alone."""
    automan = get_automan_contract(chain_id, w3)
    amount_in, amount_out, zero_for_one, sqrt_price_x96 = await automan.functions.getOptimalSwap(
        checksum(pool_address), tick_lower, tick_upper, amount0_desired, amount1_desired
    ).call(block_identifier=block_identifier)
    return OptimalSwap(
        amount_in=int(amount_in),
        amount_out=int(amount_out),
        zero_for_one=bool(zero_for_one),
        sqrt_price_x96=int(sqrt_price_x96),
    )


def _router_whitelist_overrides(chain_id: int) -> StateOverrides:
    info = get_chain_info(chain_id)
    routers = [r for r in (info.aperture_router_proxy, info.optimal_swap_router) if r is not None]
    return merge_state_overrides(
        *(get_automan_whitelist_overrides(chain_id, router) for router in routers)
    )


async def _simulate(
    chain_id: int,
    w3: AsyncWeb3,
    from_address: str,
    call_info: AutomanCallInfo,
    overrides: StateOverrides,
    block_number: int | None,
) -> Any:
    tx = {
        "from": checksum(from_address),
        "to": get_chain_info(chain_id).aperture_uniswap_v3_automan,
        "data": call_info.data,
    }
    return_data = await static_call_with_overrides(tx, overrides, w3, block_number)
    result = decode_automan_result(call_info.function_signature, return_data)
    logger.debug("automan_call_simulated", function=call_info.function_name, chain_id=chain_id)
    return result


async def simulate_mint_optimal(
    chain_id: int,
    w3: AsyncWeb3,
    from_address: str,
    mint_params: MintParams,
    swap_data: bytes | str = b"",
    block_number: int | None = None,
    overrides: StateOverrides | None = None,
) -> MintOptimalResult:
    """Simulate `mintOptimal` with forged token balances and allowances.

    Pass precomputed token `overrides` to skip the access-list round trips.

    Raises:
        InvalidTickError: If the ticks are not usable for the fee tier (before any RPC)
    """
    validate_usable_ticks(mint_params.tick_lower, mint_params.tick_upper, mint_params.fee)
    call_info = encode_automan_call(
        MINT_OPTIMAL_SIGNATURE, (mint_params.as_tuple(), _to_bytes(swap_data))
    )
    if overrides is None:
        overrides = await get_token_overrides(
            chain_id,
            w3,
            from_address,
            mint_params.token0,
            mint_params.token1,
            mint_params.amount0_desired,
            mint_params.amount1_desired,
            block_number,
        )
    overrides = merge_state_overrides(_router_whitelist_overrides(chain_id), overrides)
    return await _simulate(chain_id, w3, from_address, call_info, overrides, block_number)


async def simulate_rebalance(
    chain_id: int,
    w3: AsyncWeb3,
    owner: str,
    mint_params: MintParams,
    existing_position_id: int,
    fee_bips: int = DEFAULT_FEE_BIPS,
    swap_data: bytes | str = b"",
    block_number: int | None = None,
    from_address: str | None = None,
) -> RebalanceResult:
    """Simulate `rebalance` with a forged Automan operator approval by `owner`.

    The call is sent from `from_address` (default: the owner), e.g. an automation
    executor acting on the owner's behalf.
    """
    validate_usable_ticks(mint_params.tick_lower, mint_params.tick_upper, mint_params.fee)
    call_info = get_automan_rebalance_call_info(
        mint_params, existing_position_id, fee_bips, swap_data=swap_data
    )
    overrides = merge_state_overrides(
        _router_whitelist_overrides(chain_id), get_npm_approval_overrides(chain_id, owner)
    )
    return await _simulate(chain_id, w3, from_address or owner, call_info, overrides, block_number)


async def simulate_reinvest(
    chain_id: int,
    w3: AsyncWeb3,
    owner: str,
    position_id: int,
    deadline: int,
    fee_bips: int = DEFAULT_FEE_BIPS,
    swap_data: bytes | str = b"",
    block_number: int | None = None,
    from_address: str | None = None,
) -> ReinvestResult:
    call_info = get_automan_reinvest_call_info(
        position_id, deadline, fee_bips=fee_bips, swap_data=swap_data
    )
    overrides = merge_state_overrides(
        _router_whitelist_overrides(chain_id), get_npm_approval_overrides(chain_id, owner)
    )
    return await _simulate(chain_id, w3, from_address or owner, call_info, overrides, block_number)


async def simulate_decrease_liquidity(
    chain_id: int,
    w3: AsyncWeb3,
    owner: str,
    decrease_params: DecreaseLiquidityParams,
    fee_bips: int = DEFAULT_FEE_BIPS,
    block_number: int | None = None,
    from_address: str | None = None,
) -> DecreaseLiquidityResult:
    call_info = get_automan_decrease_liquidity_call_info(decrease_params, fee_bips)
    overrides = get_npm_approval_overrides(chain_id, owner)
    return await _simulate(chain_id, w3, from_address or owner, call_info, overrides, block_number)


async def simulate_decrease_liquidity_single(
    chain_id: int,
    w3: AsyncWeb3,
    owner: str,
    decrease_params: DecreaseLiquidityParams,
    zero_for_one: bool,
    fee_bips: int = DEFAULT_FEE_BIPS,
    swap_data: bytes | str = b"",
    block_number: int | None = None,
    from_address: str | None = None,
) -> DecreaseLiquiditySingleResult:
    call_info = get_automan_decrease_liquidity_single_call_info(
        decrease_params, zero_for_one, fee_bips, swap_data=swap_data
    )
    overrides = merge_state_overrides(
        _router_whitelist_overrides(chain_id), get_npm_approval_overrides(chain_id, owner)
    )
    return await _simulate(chain_id, w3, from_address or owner, call_info, overrides, block_number)


async def simulate_remove_liquidity(
    chain_id: int,
    w3: AsyncWeb3,
    owner: str,
    decrease_params: DecreaseLiquidityParams,
    fee_bips: int = DEFAULT_FEE_BIPS,
    block_number: int | None = None,
    from_address: str | None = None,
) -> DecreaseLiquidityResult:
    call_info = get_automan_remove_liquidity_call_info(decrease_params, fee_bips)
    overrides = get_npm_approval_overrides(chain_id, owner)
    return await _simulate(chain_id, w3, from_address or owner, call_info, overrides, block_number)


__all__ = [
    "MintParams",
    "IncreaseLiquidityParams",
    "DecreaseLiquidityParams",
    "PermitInfo",
    "AutomanCallInfo",
    "MintOptimalResult",
    "RebalanceResult",
    "ReinvestResult",
    "DecreaseLiquidityResult",
    "DecreaseLiquiditySingleResult",
    "OptimalSwap",
    "MINT_OPTIMAL_SIGNATURE",
    "REBALANCE_SIGNATURE",
    "REBALANCE_PERMIT_SIGNATURE",
    "REINVEST_SIGNATURE",
    "REINVEST_PERMIT_SIGNATURE",
    "DECREASE_LIQUIDITY_SIGNATURE",
    "DECREASE_LIQUIDITY_PERMIT_SIGNATURE",
    "DECREASE_LIQUIDITY_SINGLE_SIGNATURE",
    "DECREASE_LIQUIDITY_SINGLE_PERMIT_SIGNATURE",
    "REMOVE_LIQUIDITY_SIGNATURE",
    "REMOVE_LIQUIDITY_PERMIT_SIGNATURE",
    "encode_automan_call",
    "decode_automan_calldata",
    "decode_automan_result",
    "split_signature",
    "get_automan_contract",
    "encode_swap_data",
    "encode_optimal_swap_data",
    "get_automan_mint_optimal_calldata",
    "get_automan_rebalance_call_info",
    "get_automan_reinvest_call_info",
    "get_automan_decrease_liquidity_call_info",
    "get_automan_decrease_liquidity_single_call_info",
    "get_automan_remove_liquidity_call_info",
    "get_optimal_swap",
    "simulate_mint_optimal",
    "simulate_rebalance",
    "simulate_reinvest",
    "simulate_decrease_liquidity",
    "simulate_decrease_liquidity_single",
    "simulate_remove_liquidity",
]
