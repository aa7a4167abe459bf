"""Tokens, the native currency and raw currency amounts.

When a pool involves the wrapped native token (e.g. WETH), callers may choose
to provide either native ether or the ERC-20 wrapper. `get_native_currency`
represents the former; `get_token` with the wrapper's address the latter.
"""

from __future__ import annotations

import asyncio
import decimal
import re
from dataclasses import dataclass
from decimal import Decimal

import structlog
from web3 import AsyncWeb3

from uniswap_automation.abi import ERC20_ABI
from uniswap_automation.chain import get_chain_info
from uniswap_automation.errors import InvalidAmountError
from uniswap_automation.types import BlockIdentifier, checksum

logger = structlog.get_logger()

# Enough digits for any uint256 amount
_AMOUNT_CONTEXT = decimal.Context(prec=80)

_HUMAN_AMOUNT_PATTERN = re.compile(r"^(\d*)(?:\.(\d*))?$")


@dataclass(frozen=True, eq=False)
class Token:
    """An ERC-20 token on a specific chain.

    Equality and hashing use (chain_id, lowercase address) only.
    """

    chain_id: int
    address: str
    decimals: int
    symbol: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", checksum(self.address))
        if not 0 <= self.decimals < 256:
            raise InvalidAmountError(f"Invalid token decimals: {self.decimals}")

    @property
    def is_native(self) -> bool:
        return False

    @property
    def wrapped(self) -> Token:
        return self

    def sorts_before(self, other: Token) -> bool:
        """True if this token's address is numerically lower than `other`'s.

        Raises:
            ValueError: If both tokens share an address or live on different chains
        """
        if self.chain_id != other.chain_id:
            raise ValueError("Tokens are on different chains")
        if self.address.lower() == other.address.lower():
            raise ValueError("Tokens have the same address")
        return self.address.lower() < other.address.lower()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Token):
            return False
        return self.chain_id == other.chain_id and self.address.lower() == other.address.lower()

    def __hash__(self) -> int:
        return hash((self.chain_id, self.address.lower()))


@dataclass(frozen=True)
class NativeCurrency:
    """The chain's native currency (ether on all supported chains)."""

    chain_id: int
    decimals: int = 18
    symbol: str = "ETH"
    name: str = "Ether"

    @property
    def is_native(self) -> bool:
        return True

    @property
    def wrapped(self) -> Token:
        wrapped = get_chain_info(self.chain_id).wrapped_native_currency
        return Token(
            chain_id=self.chain_id,
            address=wrapped.address,
            decimals=wrapped.decimals,
            symbol=wrapped.symbol,
            name=wrapped.name,
        )


Currency = Token | NativeCurrency


@dataclass(frozen=True)
class CurrencyAmount:
    """A raw (smallest-unit) amount of a currency."""

    currency: Currency
    quotient: int

    def __post_init__(self) -> None:
        if self.quotient >= 1 << 256:
            raise InvalidAmountError(f"Amount {self.quotient} exceeds uint256")

    @classmethod
    def from_raw_amount(cls, currency: Currency, raw_amount: int | str) -> CurrencyAmount:
        return cls(currency=currency, quotient=int(raw_amount))

    @property
    def wrapped(self) -> CurrencyAmount:
        if not self.currency.is_native:
            return self
        return CurrencyAmount(currency=self.currency.wrapped, quotient=self.quotient)

    def to_decimal(self) -> Decimal:
        with decimal.localcontext(_AMOUNT_CONTEXT):
            return Decimal(self.quotient).scaleb(-self.currency.decimals)

    def to_exact(self) -> str:
        """Human-readable amount without trailing zeros, e.g. "1.5"."""
        with decimal.localcontext(_AMOUNT_CONTEXT):
            return format(self.to_decimal().normalize(), "f")


def get_native_currency(chain_id: int) -> NativeCurrency:
    info = get_chain_info(chain_id)
    return NativeCurrency(chain_id=chain_id, symbol=info.native_symbol)


async def get_token(
    token_address: str,
    chain_id: int,
    w3: AsyncWeb3,
    block_identifier: BlockIdentifier = "latest",
) -> Token:
    """Read an ERC-20 token's metadata.

    `decimals` is required; `symbol` and `name` are best-effort since some
    tokens (e.g. MKR) return bytes32 or nothing at all.
    """
    contract = w3.eth.contract(address=checksum(token_address), abi=ERC20_ABI)
    decimals, symbol, name = await asyncio.gather(
        contract.functions.decimals().call(block_identifier=block_identifier),
        contract.functions.symbol().call(block_identifier=block_identifier),
        contract.functions.name().call(block_identifier=block_identifier),
        return_exceptions=True,
    )
    if isinstance(decimals, BaseException):
        raise decimals

    metadata: dict[str, str | None] = {}
    for field_name, value in (("symbol", symbol), ("name", name)):
        if isinstance(value, BaseException):
            logger.warning(
                "token_metadata_unavailable",
                token=token_address,
                field=field_name,
                error=str(value),
            )
            metadata[field_name] = None
        else:
            metadata[field_name] = value

    return Token(
        chain_id=chain_id,
        address=token_address,
        decimals=int(decimals),
        symbol=metadata["symbol"],
        name=metadata["name"],
    )


def get_currency_amount(currency: Currency, human_amount: str) -> CurrencyAmount:
    """Parse a human-readable amount, e.g. "12.3456", into a raw amount.

    Raises:
        InvalidAmountError: If the string is not a non-negative decimal number or
            has more fractional digits than the currency's decimals
    """
    match = _HUMAN_AMOUNT_PATTERN.match(human_amount)
    if match is None or not (match.group(1) or match.group(2)):
        raise InvalidAmountError(f"Invalid amount string: {human_amount!r}")

    whole, fraction = match.group(1), match.group(2) or ""
    if len(fraction) > currency.decimals:
        raise InvalidAmountError(
            f"Amount {human_amount} exceeds {currency.decimals} decimals of precision"
        )

    raw = int((whole or "0") + fraction.ljust(currency.decimals, "0"))
    return CurrencyAmount(currency=currency, quotient=raw)


__all__ = [
    "Token",
    "NativeCurrency",
    "Currency",
    "CurrencyAmount",
    "get_native_currency",
    "get_token",
    "get_currency_amount",
]
