"""Shared httpx client handling for the subgraph, price and aggregator helpers."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog

from uniswap_automation.config import HelperConfig, get_config
from uniswap_automation.errors import SubgraphError

logger = structlog.get_logger()


@asynccontextmanager
async def http_client(
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the caller's client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return

    config = config or get_config()
    async with httpx.AsyncClient(timeout=config.http_timeout_seconds) as owned:
        yield owned


async def post_graphql(
    client: httpx.AsyncClient,
    url: str,
    query: str,
    variables: dict[str, Any],
    operation_name: str | None = None,
) -> dict[str, Any]:
    """POST a GraphQL query and return its `data` object.

    Raises:
        httpx.HTTPStatusError: On a non-2xx response
        SubgraphError: If the response carries GraphQL errors or no data
    """
    body: dict[str, Any] = {"query": query, "variables": variables}
    if operation_name is not None:
        body["operationName"] = operation_name

    response = await client.post(url, json=body)
    response.raise_for_status()
    payload = response.json()

    if payload.get("errors"):
        logger.warning("graphql_query_failed", url=url, errors=payload["errors"])
        raise SubgraphError(f"GraphQL query failed: {payload['errors']}")
    if payload.get("data") is None:
        raise SubgraphError("GraphQL response has no data")
    return payload["data"]


__all__ = ["http_client", "post_graphql"]
