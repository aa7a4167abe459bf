"""Whether Automan may operate a position, and NPM permit typed data."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, Web3RPCError

from uniswap_automation.automan import PermitInfo, split_signature
from uniswap_automation.chain import get_chain_info
from uniswap_automation.position import get_npm

logger = structlog.get_logger()

# EIP-712 domain of NonfungiblePositionManager's ERC721Permit
PERMIT_DOMAIN_NAME = "Uniswap V3 Positions NFT-V1"
PERMIT_DOMAIN_VERSION = "1"

PERMIT_TYPES = {
    "Permit": [
        {"name": "spender", "type": "address"},
        {"name": "tokenId", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ],
}

_EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


@dataclass(frozen=True)
class PositionApprovalStatus:
    """Automan's authority over a position.

    `reason` is one of:
    - onChainPositionSpecificApproval: Automan is the position's approved address
    - onChainUserLevelApproval: Automan is an operator for all of the owner's positions
    - missingSignedPermission: no on-chain approval and no permit supplied
    - offChainPositionSpecificApproval: the supplied permit is valid
    - invalidSignedPermission: the supplied permit is rejected by the NPM
    """

    has_authority: bool
    reason: str
    error: Exception | None = field(default=None, compare=False)


@dataclass(frozen=True)
class PermitTypedData:
    """EIP-712 typed data approving Automan for one position until a deadline."""

    domain: dict[str, Any]
    types: dict[str, list[dict[str, str]]]
    value: dict[str, Any]

    def to_eip712_message(self) -> dict[str, Any]:
        """Full EIP-712 message, as accepted by `eth_signTypedData_v4` signers."""
        return {
            "types": {"EIP712Domain": _EIP712_DOMAIN_TYPE, **self.types},
            "primaryType": "Permit",
            "domain": self.domain,
            "message": self.value,
        }


async def check_position_approval_status(
    position_id: int,
    permit_info: PermitInfo | None,
    chain_id: int,
    w3: AsyncWeb3,
) -> PositionApprovalStatus:
    """Check on-chain approvals first, then validate `permit_info` by simulating `permit`."""
    info = get_chain_info(chain_id)
    automan = info.aperture_uniswap_v3_automan
    npm = get_npm(chain_id, w3)

    owner, approved = await asyncio.gather(
        npm.functions.ownerOf(position_id).call(),
        npm.functions.getApproved(position_id).call(),
    )
    if approved.lower() == automan.lower():
        return PositionApprovalStatus(has_authority=True, reason="onChainPositionSpecificApproval")

    if await npm.functions.isApprovedForAll(owner, automan).call():
        return PositionApprovalStatus(has_authority=True, reason="onChainUserLevelApproval")

    if permit_info is None:
        return PositionApprovalStatus(has_authority=False, reason="missingSignedPermission")

    try:
        v, r, s = split_signature(permit_info.signature)
        await npm.functions.permit(automan, position_id, permit_info.deadline, v, r, s).call()
    except (ContractLogicError, Web3RPCError, ValueError) as e:
        logger.info("permit_rejected", position_id=position_id, chain_id=chain_id, error=str(e))
        return PositionApprovalStatus(has_authority=False, reason="invalidSignedPermission", error=e)
    return PositionApprovalStatus(has_authority=True, reason="offChainPositionSpecificApproval")


async def generate_typed_data_for_permit(
    chain_id: int,
    position_id: int,
    deadline: int,
    w3: AsyncWeb3,
) -> PermitTypedData:
    """Typed data the position owner signs to let Automan operate the position.

    Args:
        chain_id: Chain id
        position_id: Position to approve
        deadline: Permit expiry in seconds since the Unix epoch
        w3: Provider used to read the position's current permit nonce
    """
    info = get_chain_info(chain_id)
    position = await get_npm(chain_id, w3).functions.positions(position_id).call()
    return PermitTypedData(
        domain={
            "name": PERMIT_DOMAIN_NAME,
            "version": PERMIT_DOMAIN_VERSION,
            "chainId": chain_id,
            "verifyingContract": info.uniswap_v3_nonfungible_position_manager,
        },
        types=PERMIT_TYPES,
        value={
            "spender": info.aperture_uniswap_v3_automan,
            "tokenId": position_id,
            "nonce": int(position[0]),
            "deadline": deadline,
        },
    )


__all__ = [
    "PERMIT_DOMAIN_NAME",
    "PERMIT_DOMAIN_VERSION",
    "PERMIT_TYPES",
    "PositionApprovalStatus",
    "PermitTypedData",
    "check_position_approval_status",
    "generate_typed_data_for_permit",
]
