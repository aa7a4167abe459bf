"""Chain registry: contract addresses and service endpoints per supported chain."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from eth_utils import to_checksum_address

from uniswap_automation.errors import UnsupportedChainError


class ChainId(IntEnum):
    """Chains supported by the automation platform."""

    ETHEREUM_MAINNET = 1
    GOERLI_TESTNET = 5
    ARBITRUM_MAINNET = 42161


@dataclass(frozen=True)
class WrappedNativeCurrency:
    """ERC-20 wrapper of a chain's native currency (e.g. WETH)."""

    address: str
    decimals: int
    symbol: str
    name: str


@dataclass(frozen=True)
class ChainInfo:
    """Per-chain addresses and endpoints.

    Attributes:
        uniswap_v3_factory: UniswapV3Factory address
        uniswap_v3_nonfungible_position_manager: NonfungiblePositionManager address
        aperture_uniswap_v3_automan: Automan address
        wrapped_native_currency: Wrapped native token (WETH)
        native_symbol: Symbol of the native currency
        aperture_router_proxy: Router proxy used for zap-out swaps, if deployed
        optimal_swap_router: OptimalSwapRouter used for aggregator-assisted mints, if deployed
        uniswap_subgraph_url: Uniswap V3 subgraph endpoint
        coingecko_asset_platform_id: See https://api.coingecko.com/api/v3/asset_platforms
        infura_network_id: Network name used by Infura URLs
    """

    uniswap_v3_factory: str
    uniswap_v3_nonfungible_position_manager: str
    aperture_uniswap_v3_automan: str
    wrapped_native_currency: WrappedNativeCurrency
    native_symbol: str = "ETH"
    aperture_router_proxy: str | None = None
    optimal_swap_router: str | None = None
    uniswap_subgraph_url: str | None = None
    coingecko_asset_platform_id: str | None = None
    infura_network_id: str | None = None


_UNISWAP_V3_FACTORY = to_checksum_address("0x1F98431c8aD98523631AE4a59f267346ea31F984")
_UNISWAP_V3_NPM = to_checksum_address("0xC36442b4a4522E871399CD717aBDD847Ab11FE88")
_AUTOMAN = to_checksum_address("0xE81df2Fc4f54D96e5f209e2D135f34E75725f34f")

CHAIN_ID_TO_INFO: dict[int, ChainInfo] = {
    ChainId.GOERLI_TESTNET: ChainInfo(
        uniswap_v3_factory=_UNISWAP_V3_FACTORY,
        uniswap_v3_nonfungible_position_manager=_UNISWAP_V3_NPM,
        aperture_uniswap_v3_automan=_AUTOMAN,
        wrapped_native_currency=WrappedNativeCurrency(
            address=to_checksum_address("0xB4FBF271143F4FBf7B91A5ded31805e42b2208d6"),
            decimals=18,
            symbol="WETH",
            name="WETH",
        ),
        uniswap_subgraph_url="https://api.thegraph.com/subgraphs/name/liqwiz/uniswap-v3-goerli",
        infura_network_id="goerli",
    ),
    ChainId.ETHEREUM_MAINNET: ChainInfo(
        uniswap_v3_factory=_UNISWAP_V3_FACTORY,
        uniswap_v3_nonfungible_position_manager=_UNISWAP_V3_NPM,
        # Placeholder: Automan is not deployed on mainnet yet.
        aperture_uniswap_v3_automan=_AUTOMAN,
        wrapped_native_currency=WrappedNativeCurrency(
            address=to_checksum_address("0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"),
            decimals=18,
            symbol="WETH",
            name="Wrapped Ether",
        ),
        uniswap_subgraph_url="https://api.thegraph.com/subgraphs/name/uniswap/uniswap-v3",
        coingecko_asset_platform_id="ethereum",
        infura_network_id="mainnet",
    ),
    ChainId.ARBITRUM_MAINNET: ChainInfo(
        uniswap_v3_factory=_UNISWAP_V3_FACTORY,
        uniswap_v3_nonfungible_position_manager=_UNISWAP_V3_NPM,
        # Placeholder: Automan is not deployed on Arbitrum yet.
        aperture_uniswap_v3_automan=_AUTOMAN,
        wrapped_native_currency=WrappedNativeCurrency(
            address=to_checksum_address("0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"),
            decimals=18,
            symbol="WETH",
            name="Wrapped Ether",
        ),
        uniswap_subgraph_url="https://api.thegraph.com/subgraphs/name/ianlapham/uniswap-arbitrum-one",
        coingecko_asset_platform_id="arbitrum-one",
        infura_network_id="arbitrum",
    ),
}


def get_chain_info(chain_id: int) -> ChainInfo:
    """Look up the registry entry for a chain.

    Raises:
        UnsupportedChainError: If the chain is not supported
    """
    try:
        return CHAIN_ID_TO_INFO[chain_id]
    except KeyError:
        raise UnsupportedChainError(f"Unsupported chain id: {chain_id}") from None


__all__ = [
    "ChainId",
    "ChainInfo",
    "WrappedNativeCurrency",
    "CHAIN_ID_TO_INFO",
    "get_chain_info",
]
