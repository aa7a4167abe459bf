"""Public JSON-RPC provider factory."""

from __future__ import annotations

import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3

from uniswap_automation.chain import get_chain_info
from uniswap_automation.config import HelperConfig, get_config
from uniswap_automation.errors import UnsupportedChainError

logger = structlog.get_logger()

INFURA_URL_TEMPLATE = "https://{network}.infura.io/v3/{api_key}"


def get_rpc_url(chain_id: int, config: HelperConfig | None = None) -> str:
    """Resolve the RPC URL for a chain.

    An explicit RPC_URL_<CHAIN_ID> wins over the Infura endpoint.

    Raises:
        UnsupportedChainError: If no URL can be built for the chain
    """
    config = config or get_config()
    if chain_id in config.rpc_urls:
        return config.rpc_urls[chain_id]

    network = get_chain_info(chain_id).infura_network_id
    if network is None or config.infura_api_key is None:
        raise UnsupportedChainError(
            f"No RPC URL configured for chain {chain_id}; set RPC_URL_{chain_id} or INFURA_API_KEY"
        )
    return INFURA_URL_TEMPLATE.format(network=network, api_key=config.infura_api_key)


def get_public_provider(chain_id: int, config: HelperConfig | None = None) -> AsyncWeb3:
    """Create an async web3 instance for the specified chain.

    Args:
        chain_id: Chain id supported by the automation platform
        config: Optional config; defaults to the environment-derived one

    Returns:
        AsyncWeb3 over an HTTP provider
    """
    url = get_rpc_url(chain_id, config)
    logger.debug("public_provider_created", chain_id=chain_id)
    return AsyncWeb3(AsyncHTTPProvider(url))


__all__ = ["get_rpc_url", "get_public_provider"]
