"""Test helpers module for shared test utilities.

- constants: mainnet tokens, addresses and a far-future deadline
- factories: pools and ABI-encoded return values
- fake_provider: in-process JSON-RPC provider
"""

from tests.helpers.constants import CHAIN_ID, DEADLINE, EOA, USDC, WBTC, WETH
from tests.helpers.factories import make_pool, register_pool, register_token
from tests.helpers.fake_provider import FakeProvider, Revert, make_w3

__all__ = [
    # Constants
    "CHAIN_ID",
    "DEADLINE",
    "EOA",
    "USDC",
    "WBTC",
    "WETH",
    # Factories
    "make_pool",
    "register_pool",
    "register_token",
    # Provider
    "FakeProvider",
    "Revert",
    "make_w3",
]
