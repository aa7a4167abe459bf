"""Tests for wallet activity queries."""

import json

import httpx
import pytest

from uniswap_automation.activity import ACTIVITY_API_URL, get_wallet_activities
from uniswap_automation.errors import SubgraphError
from tests.helpers.constants import OTHER_EOA


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWalletActivities:
    """Tests for the TransactionList query."""

    async def test_returns_portfolios(self):
        """The portfolios list is returned as-is."""
        bodies = []
        portfolios = [{"id": "p1", "assetActivities": [{"id": "a1", "type": "SWAP", "assetChanges": []}]}]

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == ACTIVITY_API_URL
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"portfolios": portfolios}})

        async with _client(handler) as client:
            result = await get_wallet_activities(OTHER_EOA, client=client, page=2)

        assert result == portfolios
        assert bodies[0]["operationName"] == "TransactionList"
        assert bodies[0]["variables"] == {"account": OTHER_EOA, "pageSize": 50, "page": 2}

    async def test_no_portfolios(self):
        """A null portfolios field yields an empty list."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"portfolios": None}})

        async with _client(handler) as client:
            assert await get_wallet_activities(OTHER_EOA, client=client) == []

    async def test_errors_raise(self):
        """GraphQL errors surface as SubgraphError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"message": "rate limited"}]})

        async with _client(handler) as client:
            with pytest.raises(SubgraphError):
                await get_wallet_activities(OTHER_EOA, client=client)
