"""Pools eligible for automation, loaded from subgraph-shaped JSON entries."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from uniswap_automation.currency import Token
from uniswap_automation.types import checksum


class WhitelistedTokenEntry(BaseModel):
    id: str
    decimals: int
    symbol: str | None = None
    name: str | None = None


class WhitelistedPoolEntry(BaseModel):
    """One pool as exported from the Uniswap subgraph; numbers may be strings."""

    id: str
    fee_tier: int = Field(alias="feeTier")
    token0: WhitelistedTokenEntry
    token1: WhitelistedTokenEntry

    model_config = {"populate_by_name": True}


@dataclass(frozen=True)
class WhitelistedPool:
    token0: Token
    token1: Token
    fee_tier: int


def _to_token(chain_id: int, entry: WhitelistedTokenEntry) -> Token:
    return Token(
        chain_id=chain_id,
        address=entry.id,
        decimals=entry.decimals,
        symbol=entry.symbol,
        name=entry.name,
    )


def get_whitelisted_pools(
    chain_id: int,
    json_entries: Iterable[Mapping[str, Any]],
) -> dict[str, WhitelistedPool]:
    """Whitelisted pools keyed by checksummed pool address.

    Raises:
        pydantic.ValidationError: If an entry is malformed
    """
    pools: dict[str, WhitelistedPool] = {}
    for raw in json_entries:
        entry = WhitelistedPoolEntry.model_validate(raw)
        pools[checksum(entry.id)] = WhitelistedPool(
            token0=_to_token(chain_id, entry.token0),
            token1=_to_token(chain_id, entry.token1),
            fee_tier=entry.fee_tier,
        )
    return pools


__all__ = [
    "WhitelistedTokenEntry",
    "WhitelistedPoolEntry",
    "WhitelistedPool",
    "get_whitelisted_pools",
]
