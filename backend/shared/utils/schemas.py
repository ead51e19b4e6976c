"""
Shared Pydantic schemas used across the application.
"""

import re
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from shared.config.constants import Limits


# =============================================================================
# Common Types
# =============================================================================


# Legacy checkout sends the order id only inside "Pedido #<id>"
_LEGACY_ORDER_ID = re.compile(r"#\s*(\S+)")


# =============================================================================
# Payment Schemas
# =============================================================================


class GeneratePixRequest(BaseModel):
    """
    PIX creation body.

    Accepts {amount, orderId, orderData?, payer?} and the legacy
    {transaction_amount, description: "Pedido #<id>", orderData?}.
    """

    amount: Decimal | None = None
    order_id: str | int | None = Field(default=None, alias="orderId")
    order_data: dict[str, Any] | None = Field(default=None, alias="orderData")
    payer: dict[str, Any] | None = None

    # Legacy fields
    transaction_amount: Decimal | None = None
    description: str | None = Field(default=None, max_length=200)

    model_config = {"populate_by_name": True}

    def resolved_amount(self) -> Decimal | None:
        return self.amount if self.amount is not None else self.transaction_amount

    def resolved_order_id(self) -> str | None:
        if self.order_id is not None and str(self.order_id).strip():
            return str(self.order_id).strip()[: Limits.MAX_ORDER_ID_LENGTH]
        if self.description:
            match = _LEGACY_ORDER_ID.search(self.description)
            if match:
                return match.group(1)[: Limits.MAX_ORDER_ID_LENGTH]
        return None


class DevApproveResponse(BaseModel):
    ok: bool = True
    id: str
    status: str


class PrintOrderResponse(BaseModel):
    ok: bool = True
    proxied: Any = None


# =============================================================================
# Health
# =============================================================================


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    service: str
    environment: str
    database: str
    processor_configured: bool
    processor_circuit: dict[str, Any]
    fulfillment_configured: bool
    connections: int
