"""Tests for Automan calldata, result decoding and simulations."""

from dataclasses import replace

import pytest
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector
from web3.exceptions import ContractLogicError

from uniswap_automation.automan import (
    DECREASE_LIQUIDITY_SINGLE_SIGNATURE,
    MINT_OPTIMAL_SIGNATURE,
    REBALANCE_PERMIT_SIGNATURE,
    REBALANCE_SIGNATURE,
    REINVEST_PERMIT_SIGNATURE,
    REINVEST_SIGNATURE,
    REMOVE_LIQUIDITY_SIGNATURE,
    DecreaseLiquidityParams,
    MintOptimalResult,
    MintParams,
    PermitInfo,
    ReinvestResult,
    decode_automan_calldata,
    decode_automan_result,
    encode_swap_data,
    get_automan_decrease_liquidity_single_call_info,
    get_automan_mint_optimal_calldata,
    get_automan_rebalance_call_info,
    get_automan_reinvest_call_info,
    get_automan_remove_liquidity_call_info,
    get_optimal_swap,
    simulate_mint_optimal,
    simulate_rebalance,
    simulate_reinvest,
    split_signature,
)
from uniswap_automation.chain import CHAIN_ID_TO_INFO, get_chain_info
from uniswap_automation.errors import InvalidTickError
from uniswap_automation.overrides import compute_operator_approval_slot
from tests.helpers import CHAIN_ID, DEADLINE, EOA, WBTC, WETH
from tests.helpers.constants import AUTOMAN_ADDRESS, NPM_ADDRESS, OTHER_EOA, WBTC_WETH_3000_POOL

SIGNATURE = "0x" + "aa" * 32 + "bb" * 32 + "1c"

MINT_PARAMS = MintParams(
    token0=WBTC.address,
    token1=WETH.address,
    fee=3000,
    tick_lower=257400,
    tick_upper=257640,
    amount0_desired=10**8,
    amount1_desired=10**19,
    amount0_min=0,
    amount1_min=0,
    recipient=EOA,
    deadline=DEADLINE,
)


def _result_handler(output_types, values, seen):
    def handler(data, tx, overrides):
        seen.append((data, tx, overrides))
        return encode(output_types, values)

    return handler


class TestSplitSignature:
    """Tests for splitting ECDSA signatures."""

    def test_split(self):
        """r, s and v are read from the 65-byte signature."""
        v, r, s = split_signature(SIGNATURE)
        assert v == 28
        assert r == bytes.fromhex("aa" * 32)
        assert s == bytes.fromhex("bb" * 32)

    def test_normalizes_recovery_id(self):
        """v of 0/1 is shifted to 27/28."""
        v, _, _ = split_signature("0x" + "aa" * 64 + "00")
        assert v == 27

    def test_invalid_length(self):
        """Signatures must be 65 bytes."""
        with pytest.raises(ValueError):
            split_signature("0x" + "aa" * 64)


class TestCalldata:
    """Tests for Automan calldata encoding and decoding."""

    def test_mint_optimal(self):
        """mintOptimal carries the mint params and swap data."""
        data = get_automan_mint_optimal_calldata(MINT_PARAMS, b"\x01\x02")
        signature, params = decode_automan_calldata(data)

        assert signature == MINT_OPTIMAL_SIGNATURE
        mint_tuple, swap_data = params
        assert mint_tuple[0] == WBTC.address.lower()
        assert mint_tuple[3:5] == (257400, 257640)
        assert mint_tuple[9] == EOA.lower()
        assert swap_data == b"\x01\x02"

    def test_rebalance_without_permit(self):
        """rebalance without a permit uses the short signature."""
        call_info = get_automan_rebalance_call_info(MINT_PARAMS, 42, fee_bips=5)
        assert call_info.function_signature == REBALANCE_SIGNATURE
        assert call_info.function_name == "rebalance"

        signature, params = decode_automan_calldata(call_info.data)
        assert signature == REBALANCE_SIGNATURE
        assert params[1:] == (42, 5, b"")

    def test_rebalance_with_permit(self):
        """A permit appends deadline, v, r and s."""
        permit = PermitInfo(signature=SIGNATURE, deadline=DEADLINE)
        call_info = get_automan_rebalance_call_info(MINT_PARAMS, 42, permit_info=permit)

        signature, params = decode_automan_calldata(call_info.data)
        assert signature == REBALANCE_PERMIT_SIGNATURE
        assert params[4:] == (DEADLINE, 28, bytes.fromhex("aa" * 32), bytes.fromhex("bb" * 32))

    def test_reinvest(self):
        """reinvest ignores desired amounts and carries the minimums."""
        call_info = get_automan_reinvest_call_info(7, DEADLINE, amount0_min=11, amount1_min=22)
        signature, params = decode_automan_calldata(call_info.data)
        assert signature == REINVEST_SIGNATURE
        assert params[0] == (7, 0, 0, 11, 22, DEADLINE)

        permit = PermitInfo(signature=SIGNATURE, deadline=DEADLINE)
        with_permit = get_automan_reinvest_call_info(7, DEADLINE, permit_info=permit)
        assert with_permit.function_signature == REINVEST_PERMIT_SIGNATURE

    def test_remove_liquidity(self):
        """removeLiquidity encodes the decrease params."""
        decrease = DecreaseLiquidityParams(7, 1000, 1, 2, DEADLINE)
        call_info = get_automan_remove_liquidity_call_info(decrease)
        signature, params = decode_automan_calldata(call_info.data)
        assert signature == REMOVE_LIQUIDITY_SIGNATURE
        assert params == ((7, 1000, 1, 2, DEADLINE), 0)

    def test_decrease_liquidity_single(self):
        """decreaseLiquiditySingle carries the swap direction."""
        decrease = DecreaseLiquidityParams(7, 1000, 0, 0, DEADLINE)
        call_info = get_automan_decrease_liquidity_single_call_info(decrease, zero_for_one=True)
        signature, params = decode_automan_calldata(call_info.data)
        assert signature == DECREASE_LIQUIDITY_SINGLE_SIGNATURE
        assert params[1] is True

    def test_selector(self):
        """Calldata starts with the 4-byte selector of the signature."""
        data = get_automan_mint_optimal_calldata(MINT_PARAMS)
        assert data[:10] == "0x" + function_signature_to_4byte_selector(MINT_OPTIMAL_SIGNATURE).hex()

    def test_unknown_selector(self):
        """Foreign calldata is rejected."""
        with pytest.raises(ValueError, match="Unknown Automan selector"):
            decode_automan_calldata("0xdeadbeef")

    def test_decode_result(self):
        """Return data decodes into the function's result type."""
        return_data = encode(["uint256", "uint128", "uint256", "uint256"], [1, 2, 3, 4])
        assert decode_automan_result(MINT_OPTIMAL_SIGNATURE, return_data) == MintOptimalResult(1, 2, 3, 4)


class TestSwapData:
    """Tests for router swap data."""

    def test_requires_router_proxy(self):
        """Chains without a router proxy cannot route aggregator swaps."""
        with pytest.raises(ValueError):
            encode_swap_data(CHAIN_ID, EOA, EOA, WBTC.address, WETH.address, 1, b"")

    def test_packed_layout(self, monkeypatch):
        """Swap data is the router proxy followed by the packed swap."""
        proxy = "0x" + "cd" * 20
        monkeypatch.setitem(
            CHAIN_ID_TO_INFO, CHAIN_ID, replace(get_chain_info(CHAIN_ID), aperture_router_proxy=proxy)
        )
        router = "0x" + "01" * 20
        approve_target = "0x" + "02" * 20

        data = encode_swap_data(CHAIN_ID, router, approve_target, WBTC.address, WETH.address, 5, b"\xff")

        assert data[:20] == bytes.fromhex("cd" * 20)
        assert data[20:40] == bytes.fromhex("01" * 20)
        assert data[40:60] == bytes.fromhex("02" * 20)
        assert data[60:80] == bytes.fromhex(WBTC.address[2:])
        assert data[80:100] == bytes.fromhex(WETH.address[2:])
        assert int.from_bytes(data[100:132], "big") == 5
        assert data[132:] == b"\xff"


class TestGetOptimalSwap:
    """Tests for Automan.getOptimalSwap."""

    async def test_reads_swap(self, provider, w3):
        """The pool-only swap is read from Automan."""
        seen = []
        provider.on_call(
            AUTOMAN_ADDRESS,
            "getOptimalSwap(address,int24,int24,uint256,uint256)",
            _result_handler(["uint256", "uint256", "bool", "uint160"], [100, 90, True, 2**96], seen),
        )

        swap = await get_optimal_swap(CHAIN_ID, w3, WBTC_WETH_3000_POOL, 257400, 257640, 10**8, 0)

        assert (swap.amount_in, swap.amount_out, swap.zero_for_one, swap.sqrt_price_x96) == (100, 90, True, 2**96)
        pool, tick_lower, tick_upper, amount0, amount1 = decode(
            ["address", "int24", "int24", "uint256", "uint256"], seen[0][0][4:]
        )
        assert pool == WBTC_WETH_3000_POOL.lower()
        assert (tick_lower, tick_upper, amount0, amount1) == (257400, 257640, 10**8, 0)


class TestSimulations:
    """Tests for simulated Automan calls."""

    async def test_mint_optimal_with_overrides(self, provider, w3):
        """Precomputed overrides are sent with the simulated mint."""
        seen = []
        provider.on_call(
            AUTOMAN_ADDRESS,
            MINT_OPTIMAL_SIGNATURE,
            _result_handler(["uint256", "uint128", "uint256", "uint256"], [9, 1000, 10**8, 10**19], seen),
        )
        overrides = {WBTC.address: {"stateDiff": {"0x" + "22" * 32: "0x" + "00" * 31 + "05"}}}

        result = await simulate_mint_optimal(CHAIN_ID, w3, EOA, MINT_PARAMS, overrides=overrides)

        assert result == MintOptimalResult(token_id=9, liquidity=1000, amount0=10**8, amount1=10**19)
        _, tx, sent = seen[0]
        assert tx["from"].lower() == EOA.lower()
        assert sent[WBTC.address]["stateDiff"] == overrides[WBTC.address]["stateDiff"]

    async def test_mint_optimal_discovers_overrides(self, provider, w3):
        """Without overrides, balances and allowances come from access lists."""
        for token in (WBTC.address, WETH.address):
            provider.on_access_list(
                token, "balanceOf(address)", [{"address": token, "storageKeys": ["0x" + "22" * 32]}]
            )
            provider.on_access_list(
                token, "allowance(address,address)", [{"address": token, "storageKeys": ["0x" + "33" * 32]}]
            )
        seen = []
        provider.on_call(
            AUTOMAN_ADDRESS,
            MINT_OPTIMAL_SIGNATURE,
            _result_handler(["uint256", "uint128", "uint256", "uint256"], [9, 1000, 1, 2], seen),
        )

        await simulate_mint_optimal(CHAIN_ID, w3, EOA, MINT_PARAMS)

        sent = seen[0][2]
        assert set(sent) == {WBTC.address, WETH.address}
        assert int(sent[WETH.address]["stateDiff"]["0x" + "22" * 32], 16) == 10**19

    async def test_mint_optimal_invalid_ticks(self, provider, w3):
        """Unusable ticks are rejected before any RPC."""
        bad = replace(MINT_PARAMS, tick_lower=257401)
        with pytest.raises(InvalidTickError):
            await simulate_mint_optimal(CHAIN_ID, w3, EOA, bad, overrides={})
        assert provider.requests == []

    async def test_rebalance_forges_owner_approval(self, provider, w3):
        """rebalance is simulated from the executor with the owner's approval forged."""
        seen = []
        provider.on_call(
            AUTOMAN_ADDRESS,
            REBALANCE_SIGNATURE,
            _result_handler(["uint256", "uint128", "uint256", "uint256"], [10, 500, 3, 4], seen),
        )

        result = await simulate_rebalance(CHAIN_ID, w3, EOA, MINT_PARAMS, 42, from_address=OTHER_EOA)

        assert result.token_id == 10
        assert result.liquidity == 500
        _, tx, sent = seen[0]
        assert tx["from"].lower() == OTHER_EOA.lower()
        slot = compute_operator_approval_slot(EOA, AUTOMAN_ADDRESS)
        assert slot in sent[NPM_ADDRESS]["stateDiff"]

    async def test_reinvest(self, provider, w3):
        """reinvest decodes into a ReinvestResult."""
        provider.returns(AUTOMAN_ADDRESS, REINVEST_SIGNATURE, ["uint128", "uint256", "uint256"], [77, 5, 6])

        result = await simulate_reinvest(CHAIN_ID, w3, EOA, 7, DEADLINE)

        assert result == ReinvestResult(liquidity=77, amount0=5, amount1=6)

    async def test_revert_propagates(self, provider, w3):
        """Simulation reverts surface as ContractLogicError."""
        provider.reverts(AUTOMAN_ADDRESS, REINVEST_SIGNATURE, "Not approved")

        with pytest.raises(ContractLogicError, match="Not approved"):
            await simulate_reinvest(CHAIN_ID, w3, EOA, 7, DEADLINE)
