"""UniswapV3 constants including fee tiers, tick bounds and fixed-point scales."""

from enum import IntEnum


class FeeAmount(IntEnum):
    """Pool fee tiers in Uniswap units (hundredths of a basis point).

    Fee = units / 1,000,000 (e.g., 3000 = 0.3%)
    """

    LOWEST = 100  # 0.01% - stable pairs
    LOW = 500  # 0.05% - stable pairs
    MEDIUM = 3000  # 0.30% - most pairs
    HIGH = 10000  # 1.00% - exotic pairs


FEE_TIERS = [FeeAmount.LOWEST, FeeAmount.LOW, FeeAmount.MEDIUM, FeeAmount.HIGH]

# Tick spacing per fee tier
TICK_SPACINGS = {
    FeeAmount.LOWEST: 1,
    FeeAmount.LOW: 10,
    FeeAmount.MEDIUM: 60,
    FeeAmount.HIGH: 200,
}

# Tick bounds (log base 1.0001 of 2**-128 and 2**128)
MIN_TICK = -887272
MAX_TICK = 887272

# sqrt(1.0001**MIN_TICK) * 2**96 and sqrt(1.0001**MAX_TICK) * 2**96
MIN_SQRT_RATIO = 4295128739
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

# Fixed-point scales
Q96 = 1 << 96
Q128 = 1 << 128
Q192 = 1 << 192

MAX_UINT128 = (1 << 128) - 1
MAX_UINT256 = (1 << 256) - 1

# keccak256 of the UniswapV3Pool creation code, used for CREATE2 address derivation
POOL_INIT_CODE_HASH = "0xe34f199b19b2b4f47f68442619d555527d244f78a3297ea89325f843f87b8b54"

# Storage slot of NonfungiblePositionManager's `_operatorApprovals` mapping
NPM_OPERATOR_APPROVALS_SLOT = 5

# Storage slot of Automan's router whitelist mapping
AUTOMAN_ROUTER_WHITELIST_SLOT = 3

# Default Automan fee (feeBips is a fraction of position value multiplied by 1e18)
DEFAULT_FEE_BIPS = 0

__all__ = [
    "FeeAmount",
    "FEE_TIERS",
    "TICK_SPACINGS",
    "MIN_TICK",
    "MAX_TICK",
    "MIN_SQRT_RATIO",
    "MAX_SQRT_RATIO",
    "Q96",
    "Q128",
    "Q192",
    "MAX_UINT128",
    "MAX_UINT256",
    "POOL_INIT_CODE_HASH",
    "NPM_OPERATOR_APPROVALS_SLOT",
    "AUTOMAN_ROUTER_WHITELIST_SLOT",
    "DEFAULT_FEE_BIPS",
]
