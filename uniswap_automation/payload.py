"""Request payloads for the automation service, serialised with camelCase keys."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from uniswap_automation.currency import CurrencyAmount
from uniswap_automation.price import Price


class TokenAmountCondition(BaseModel):
    """Triggers once the position holds none of token `zero_amount_token` (0 or 1)."""

    type: Literal["TokenAmount"] = "TokenAmount"
    zero_amount_token: int = Field(alias="zeroAmountToken", ge=0, le=1)

    model_config = {"populate_by_name": True}


class AccruedFeesCondition(BaseModel):
    """Triggers once uncollected fees reach a fraction of the principal."""

    type: Literal["AccruedFees"] = "AccruedFees"
    fee_to_principal_ratio_threshold: float = Field(alias="feeToPrincipalRatioThreshold")

    model_config = {"populate_by_name": True}


class TokenAmountPayload(BaseModel):
    address: str
    raw_amount: str = Field(alias="rawAmount")

    model_config = {"populate_by_name": True}


class LimitOrderCloseAction(BaseModel):
    type: Literal["LimitOrderClose"] = "LimitOrderClose"
    input_token_amount: TokenAmountPayload = Field(alias="inputTokenAmount")
    output_token_addr: str = Field(alias="outputTokenAddr")
    fee_tier: int = Field(alias="feeTier")
    max_gas_proportion: float = Field(alias="maxGasProportion")

    model_config = {"populate_by_name": True}


class ReinvestAction(BaseModel):
    type: Literal["Reinvest"] = "Reinvest"
    slippage: float
    max_gas_proportion: float = Field(alias="maxGasProportion")

    model_config = {"populate_by_name": True}


Condition = Annotated[TokenAmountCondition | AccruedFeesCondition, Field(discriminator="type")]
Action = Annotated[LimitOrderCloseAction | ReinvestAction, Field(discriminator="type")]


class Payload(BaseModel):
    """An automation request for one position.

    Use `model_dump(by_alias=True)` for the wire representation.
    """

    owner_addr: str = Field(alias="ownerAddr")
    chain_id: int = Field(alias="chainId")
    nft_id: str = Field(alias="nftId")
    condition: Condition
    action: Action

    model_config = {"populate_by_name": True}


def generate_limit_order_close_request_payload(
    owner_addr: str,
    chain_id: int,
    position_id: int,
    outer_limit_price: Price,
    input_amount: CurrencyAmount,
    fee_tier: int,
    max_gas_proportion: float,
) -> Payload:
    """Payload closing a limit order position once the input token is fully converted.

    Args:
        owner_addr: Position owner
        chain_id: Chain id
        position_id: Position id of the limit order
        outer_limit_price: Limit price, with the input token as base
        input_amount: Amount of the input token deposited
        fee_tier: Fee tier of the position's pool
        max_gas_proportion: Maximum share of the output that may be spent on gas
    """
    base = outer_limit_price.base
    quote = outer_limit_price.quote
    return Payload(
        owner_addr=owner_addr,
        chain_id=chain_id,
        nft_id=str(position_id),
        condition=TokenAmountCondition(zero_amount_token=0 if base.sorts_before(quote) else 1),
        action=LimitOrderCloseAction(
            input_token_amount=TokenAmountPayload(
                address=base.address, raw_amount=str(input_amount.quotient)
            ),
            output_token_addr=quote.address,
            fee_tier=fee_tier,
            max_gas_proportion=max_gas_proportion,
        ),
    )


def generate_auto_compound_request_payload(
    owner_addr: str,
    chain_id: int,
    position_id: int,
    fee_to_principal_ratio_threshold: float,
    slippage: float,
    max_gas_proportion: float,
) -> Payload:
    """Payload reinvesting accrued fees once they reach the given ratio of principal."""
    return Payload(
        owner_addr=owner_addr,
        chain_id=chain_id,
        nft_id=str(position_id),
        condition=AccruedFeesCondition(
            fee_to_principal_ratio_threshold=fee_to_principal_ratio_threshold
        ),
        action=ReinvestAction(slippage=slippage, max_gas_proportion=max_gas_proportion),
    )


__all__ = [
    "TokenAmountCondition",
    "AccruedFeesCondition",
    "TokenAmountPayload",
    "LimitOrderCloseAction",
    "ReinvestAction",
    "Payload",
    "generate_limit_order_close_request_payload",
    "generate_auto_compound_request_payload",
]
