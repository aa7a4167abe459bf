"""Error classes for the automation helpers.

Validation errors subclass ValueError so callers can catch either.
RPC and HTTP failures are not wrapped: web3 and httpx exceptions reach the
caller unchanged.
"""


class AutomationHelperError(Exception):
    """Base error for automation helper operations."""

    pass


class UnsupportedChainError(AutomationHelperError, ValueError):
    """Chain id is not present in the chain registry."""

    pass


class InvalidTickError(AutomationHelperError, ValueError):
    """Tick is out of bounds or not aligned to the fee tier's spacing."""

    pass


class InvalidPriceError(AutomationHelperError, ValueError):
    """Price string or price ratio is malformed or out of range."""

    pass


class InvalidAmountError(AutomationHelperError, ValueError):
    """Currency amount or proportion is malformed or out of range."""

    pass


class TokenOrderError(AutomationHelperError, ValueError):
    """token0 must sort before token1."""

    pass


class PoolNotInitializedError(AutomationHelperError):
    """Pool exists but its price has not been initialized."""

    pass


class MissingPositionLiquidityError(AutomationHelperError, ValueError):
    """Basic position info carries no liquidity."""

    pass


class LimitOrderError(AutomationHelperError, ValueError):
    """Limit order price is misaligned or on the wrong side of the pool price."""

    pass


class AccessListError(AutomationHelperError):
    """eth_createAccessList returned an unexpected shape for an ERC-20 read."""

    pass


class SubgraphError(AutomationHelperError):
    """Subgraph is not configured for the chain or returned GraphQL errors."""

    pass


__all__ = [
    "AutomationHelperError",
    "UnsupportedChainError",
    "InvalidTickError",
    "InvalidPriceError",
    "InvalidAmountError",
    "TokenOrderError",
    "PoolNotInitializedError",
    "MissingPositionLiquidityError",
    "LimitOrderError",
    "AccessListError",
    "SubgraphError",
]
