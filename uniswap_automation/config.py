"""Runtime configuration for the automation helpers."""

import os
from dataclasses import dataclass, field
from functools import lru_cache

DEFAULT_AGGREGATOR_API_BASE_URL = "https://1inch-api.aperture.finance"
DEFAULT_COINGECKO_API_BASE_URL = "https://api.coingecko.com"


@dataclass(frozen=True)
class HelperConfig:
    """Centralized configuration for RPC and HTTP helpers.

    Attributes:
        infura_api_key: Infura project id used by the public provider
        rpc_urls: Explicit RPC URL per chain id (overrides Infura)
        aggregator_api_base_url: Base URL of the swap aggregator API
        aggregator_min_time_seconds: Minimum gap between aggregator request starts
        aggregator_max_concurrent: Maximum number of in-flight aggregator requests
        coingecko_api_base_url: Base URL of the Coingecko API
        coingecko_api_key: Optional Coingecko Pro API key
        http_timeout_seconds: Timeout for subgraph, price and aggregator requests
    """

    infura_api_key: str | None = None
    rpc_urls: dict[int, str] = field(default_factory=dict)
    aggregator_api_base_url: str = DEFAULT_AGGREGATOR_API_BASE_URL
    aggregator_min_time_seconds: float = 1.5
    aggregator_max_concurrent: int = 1
    coingecko_api_base_url: str = DEFAULT_COINGECKO_API_BASE_URL
    coingecko_api_key: str | None = None
    http_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "HelperConfig":
        """Build a config from environment variables.

        Recognized variables:
        - INFURA_API_KEY
        - RPC_URL_<CHAIN_ID> (e.g. RPC_URL_42161)
        - AGGREGATOR_API_BASE_URL
        - AGGREGATOR_MIN_TIME_SECONDS
        - COINGECKO_API_KEY
        - HTTP_TIMEOUT_SECONDS
        """
        env = os.environ if environ is None else environ

        rpc_urls: dict[int, str] = {}
        for key, value in env.items():
            if key.startswith("RPC_URL_") and value:
                suffix = key.removeprefix("RPC_URL_")
                if suffix.isdigit():
                    rpc_urls[int(suffix)] = value

        return cls(
            infura_api_key=env.get("INFURA_API_KEY") or None,
            rpc_urls=rpc_urls,
            aggregator_api_base_url=env.get(
                "AGGREGATOR_API_BASE_URL", DEFAULT_AGGREGATOR_API_BASE_URL
            ),
            aggregator_min_time_seconds=float(env.get("AGGREGATOR_MIN_TIME_SECONDS", "1.5")),
            coingecko_api_key=env.get("COINGECKO_API_KEY") or None,
            http_timeout_seconds=float(env.get("HTTP_TIMEOUT_SECONDS", "30")),
        )


@lru_cache(maxsize=1)
def get_config() -> HelperConfig:
    """Process-wide configuration, read from the environment once."""
    return HelperConfig.from_env()


__all__ = ["HelperConfig", "get_config"]
