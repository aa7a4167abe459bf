"""Pytest configuration and fixtures."""

import logging
import os

import pytest
from web3 import AsyncWeb3

from uniswap_automation.config import HelperConfig
from uniswap_automation.logging_config import configure_logging
from tests.helpers.fake_provider import FakeProvider, make_w3

configure_logging(logging.WARNING)


@pytest.fixture
def provider() -> FakeProvider:
    """A fake mainnet JSON-RPC provider with no handlers registered."""
    return FakeProvider()


@pytest.fixture
def w3(provider: FakeProvider) -> AsyncWeb3:
    """AsyncWeb3 bound to the fake provider."""
    return make_w3(provider)


@pytest.fixture
def config() -> HelperConfig:
    """Configuration with fast aggregator throttling for tests."""
    return HelperConfig(
        aggregator_api_base_url="https://aggregator.test",
        aggregator_min_time_seconds=0.0,
        coingecko_api_base_url="https://coingecko.test",
        http_timeout_seconds=5.0,
    )


@pytest.fixture
def rpc_url() -> str:
    """Live JSON-RPC endpoint for integration tests."""
    url = os.environ.get("RPC_URL")
    if not url:
        pytest.skip("RPC_URL not set")
    return url
