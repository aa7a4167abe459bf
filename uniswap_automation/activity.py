"""Wallet activity (transfers, approvals, swaps, liquidity changes) from Uniswap's GraphQL API."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from uniswap_automation.config import HelperConfig
from uniswap_automation.http_client import http_client, post_graphql

logger = structlog.get_logger()

ACTIVITY_API_URL = "https://uniswap-api-graphql.hyperfocal-dev.workers.dev/v1/graphql"

ACTIVITY_PAGE_SIZE = 50

TRANSACTION_LIST_QUERY = """
query TransactionList($account: String!, $pageSize: Int!, $page: Int!) {
  portfolios(ownerAddresses: [$account]) {
    id
    assetActivities(pageSize: $pageSize, page: $page) {
      id
      timestamp
      type
      chain
      transaction { id blockNumber hash status to from }
      assetChanges {
        __typename
        ... on TokenTransfer {
          id
          asset { id name symbol address decimals chain standard }
          tokenStandard
          quantity
          sender
          recipient
          direction
          transactedValue { currency value }
        }
        ... on NftTransfer {
          id
          asset { id name tokenId collection { id name } }
          nftStandard
          sender
          recipient
          direction
        }
        ... on TokenApproval {
          id
          asset { id name symbol address decimals chain }
          tokenStandard
          approvedAddress
          quantity
        }
        ... on NftApproval {
          id
          asset { id name tokenId collection { id name } }
          nftStandard
          approvedAddress
        }
        ... on NftApproveForAll {
          id
          asset { id name tokenId collection { id name } }
          nftStandard
          operatorAddress
          approved
        }
      }
    }
  }
}
"""


async def get_wallet_activities(
    address: str,
    client: httpx.AsyncClient | None = None,
    config: HelperConfig | None = None,
    page: int = 1,
) -> list[dict[str, Any]]:
    """Recent activities of a wallet, one page of 50.

    Returns:
        The raw `portfolios` list; each portfolio carries its `assetActivities`.
    """
    async with http_client(client, config) as http:
        data = await post_graphql(
            http,
            ACTIVITY_API_URL,
            TRANSACTION_LIST_QUERY,
            {"account": address, "pageSize": ACTIVITY_PAGE_SIZE, "page": page},
            operation_name="TransactionList",
        )
    portfolios = data.get("portfolios") or []
    logger.debug("wallet_activities_fetched", address=address, portfolios=len(portfolios))
    return portfolios


__all__ = ["ACTIVITY_API_URL", "TRANSACTION_LIST_QUERY", "get_wallet_activities"]
