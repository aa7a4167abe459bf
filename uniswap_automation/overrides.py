"""Simulating calls against forged state.

Balances, allowances and approvals the caller does not actually hold are
written into the relevant storage slots through `eth_call` state overrides:

- ERC-20 balance/allowance slots are discovered with `eth_createAccessList`
  against the real `balanceOf` / `allowance` reads.
- NPM operator approvals and the Automan router whitelist use their known
  storage layouts directly.

See https://github.com/dragonfly-xyz/useful-solidity-patterns/blob/main/patterns/eth_call-tricks/README.md#geth-overrides
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, keccak
from hexbytes import HexBytes
from web3 import AsyncWeb3

from uniswap_automation.chain import get_chain_info
from uniswap_automation.constants import AUTOMAN_ROUTER_WHITELIST_SLOT, NPM_OPERATOR_APPROVALS_SLOT
from uniswap_automation.errors import AccessListError
from uniswap_automation.types import StateOverrides, checksum, normalize_address, to_block_identifier

logger = structlog.get_logger()

# balanceOf(address)
BALANCE_OF_SELECTOR = function_signature_to_4byte_selector("balanceOf(address)")

# allowance(address,address)
ALLOWANCE_SELECTOR = function_signature_to_4byte_selector("allowance(address,address)")

# abi.encode(uint256(1)) / abi.encode(true)
_TRUE_WORD = "0x" + encode(["bool"], [True]).hex()


def _mapping_slot(key: str, slot: bytes) -> bytes:
    """keccak256(abi.encode(address key, bytes32 slot))"""
    return keccak(encode(["address", "bytes32"], [normalize_address(key), slot]))


def compute_operator_approval_slot(owner: str, spender: str) -> str:
    """Storage slot of `_operatorApprovals[owner][spender]` in the NPM.

    keccak256(abi.encode(spender, keccak256(abi.encode(owner, 5))))
    """
    inner = _mapping_slot(owner, NPM_OPERATOR_APPROVALS_SLOT.to_bytes(32, "big"))
    return "0x" + _mapping_slot(spender, inner).hex()


def get_npm_approval_overrides(chain_id: int, owner: str) -> StateOverrides:
    """Forge an NPM operator approval of Automan by `owner`."""
    info = get_chain_info(chain_id)
    slot = compute_operator_approval_slot(owner, info.aperture_uniswap_v3_automan)
    return {
        info.uniswap_v3_nonfungible_position_manager: {
            "stateDiff": {slot: _TRUE_WORD},
        },
    }


def get_automan_whitelist_overrides(chain_id: int, router: str) -> StateOverrides:
    """Force `router` into Automan's router whitelist mapping."""
    info = get_chain_info(chain_id)
    slot = _mapping_slot(router, AUTOMAN_ROUTER_WHITELIST_SLOT.to_bytes(32, "big"))
    return {
        info.aperture_uniswap_v3_automan: {
            "stateDiff": {"0x" + slot.hex(): _TRUE_WORD},
        },
    }


def merge_state_overrides(*overrides: StateOverrides) -> StateOverrides:
    """Combine overrides, merging stateDiff maps of the same address."""
    merged: StateOverrides = {}
    for override in overrides:
        for address, state in override.items():
            entry = merged.setdefault(checksum(address), {})
            if "stateDiff" in state:
                entry.setdefault("stateDiff", {}).update(state["stateDiff"])
    return merged


def _normalize_storage_key(key: Any) -> str:
    return "0x" + bytes(HexBytes(key)).hex().rjust(64, "0")


async def generate_access_list(
    tx: dict[str, Any],
    w3: AsyncWeb3,
    block_number: int | None = None,
) -> list[dict[str, Any]]:
    """Run `eth_createAccessList` for a transaction with zero gas price.

    Returns:
        [{"address": checksummed address, "storageKeys": [0x-prefixed 32-byte hex]}]
    """
    try:
        result = await w3.eth.create_access_list(
            {**tx, "gasPrice": 0},
            to_block_identifier(block_number),
        )
    except Exception as e:
        logger.error("access_list_generation_failed", to=tx.get("to"), error=str(e))
        raise

    return [
        {
            "address": checksum(entry["address"]),
            "storageKeys": [_normalize_storage_key(key) for key in entry["storageKeys"]],
        }
        for entry in result["accessList"]
    ]


def _token_storage_keys(access_list: list[dict[str, Any]], token: str) -> set[str]:
    entries = [
        entry for entry in access_list if entry["address"].lower() == token.lower()
    ]
    if len(entries) != 1:
        raise AccessListError("Invalid access list length")
    return set(entries[0]["storageKeys"])


async def get_erc20_overrides(
    token: str,
    owner: str,
    spender: str,
    amount: int,
    w3: AsyncWeb3,
    block_number: int | None = None,
) -> StateOverrides:
    """Overrides setting `owner`'s balance of and allowance to `spender` to `amount`.

    Proxy tokens also touch the slot holding their implementation address;
    that slot shows up in both access lists and is discarded.

    Raises:
        AccessListError: If either read does not resolve to exactly one slot
    """
    token = checksum(token)
    owner = checksum(owner)
    balance_of_data = BALANCE_OF_SELECTOR + encode(["address"], [owner])
    allowance_data = ALLOWANCE_SELECTOR + encode(["address", "address"], [owner, checksum(spender)])

    balance_of_list, allowance_list = await asyncio.gather(
        generate_access_list(
            {"from": owner, "to": token, "data": "0x" + balance_of_data.hex()}, w3, block_number
        ),
        generate_access_list(
            {"from": owner, "to": token, "data": "0x" + allowance_data.hex()}, w3, block_number
        ),
    )

    balance_keys = _token_storage_keys(balance_of_list, token)
    allowance_keys = _token_storage_keys(allowance_list, token)
    balance_slots = balance_keys - allowance_keys
    allowance_slots = allowance_keys - balance_keys
    if len(balance_slots) != 1 or len(allowance_slots) != 1:
        logger.warning(
            "unexpected_erc20_storage_layout",
            token=token,
            balance_keys=sorted(balance_keys),
            allowance_keys=sorted(allowance_keys),
        )
        raise AccessListError("Invalid storage key number")

    encoded_amount = "0x" + encode(["uint256"], [amount]).hex()
    return {
        token: {
            "stateDiff": {
                balance_slots.pop(): encoded_amount,
                allowance_slots.pop(): encoded_amount,
            },
        },
    }


async def get_token_overrides(
    chain_id: int,
    w3: AsyncWeb3,
    owner: str,
    token0: str,
    token1: str,
    amount0_desired: int,
    amount1_desired: int,
    block_number: int | None = None,
) -> StateOverrides:
    """Balance and Automan allowance overrides for both tokens of a mint.

    Native ether balances are not overridden.
    """
    automan = get_chain_info(chain_id).aperture_uniswap_v3_automan
    token0_overrides, token1_overrides = await asyncio.gather(
        get_erc20_overrides(token0, owner, automan, amount0_desired, w3, block_number),
        get_erc20_overrides(token1, owner, automan, amount1_desired, w3, block_number),
    )
    return merge_state_overrides(token0_overrides, token1_overrides)


async def static_call_with_overrides(
    tx: dict[str, Any],
    overrides: StateOverrides,
    w3: AsyncWeb3,
    block_number: int | None = None,
) -> bytes:
    """`eth_call` with state overrides; returns the raw return data.

    Reverts surface as web3's ContractLogicError.
    """
    return bytes(
        await w3.eth.call(tx, to_block_identifier(block_number), overrides)
    )


__all__ = [
    "BALANCE_OF_SELECTOR",
    "ALLOWANCE_SELECTOR",
    "compute_operator_approval_slot",
    "get_npm_approval_overrides",
    "get_automan_whitelist_overrides",
    "merge_state_overrides",
    "generate_access_list",
    "get_erc20_overrides",
    "get_token_overrides",
    "static_call_with_overrides",
]
