"""Uniswap V3 Automation Helpers - positions, pools and the Automan contract."""

from uniswap_automation.chain import ChainId, get_chain_info
from uniswap_automation.config import HelperConfig, get_config
from uniswap_automation.currency import CurrencyAmount, Token, get_native_currency, get_token
from uniswap_automation.pool import Pool, compute_pool_address, get_pool
from uniswap_automation.position import Position, PositionDetails, get_position
from uniswap_automation.price import Price, parse_price
from uniswap_automation.provider import get_public_provider

__version__ = "0.1.0"
__all__ = [
    "ChainId",
    "get_chain_info",
    "HelperConfig",
    "get_config",
    "CurrencyAmount",
    "Token",
    "get_native_currency",
    "get_token",
    "Pool",
    "compute_pool_address",
    "get_pool",
    "Position",
    "PositionDetails",
    "get_position",
    "Price",
    "parse_price",
    "get_public_provider",
    "__version__",
]
