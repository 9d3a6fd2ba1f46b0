"""
models.py — Request and Response Models of the HTTP API

This module defines the payloads exchanged with the storefront, the buyer's browser
(reconciliation poller) and the payment gateway. Pydantic validates every incoming
payload before it reaches the reconciliation core.

Models:
    - CartItem: A product reference and quantity submitted at checkout.
    - CustomerDetails: Buyer, recipient and delivery fields of the checkout form.
    - NewOrderRequest: The complete checkout submission.
    - ConfirmPaymentRequest: The client's claimed outcome for the fallback endpoint.
    - OrderView: The read-only order representation returned to the poller.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .domain import Order


class CartItem(BaseModel):
    """
    Represents a single product line in the submitted cart.

    Attributes:
        productId (str): Catalog identifier of the product.
        quantity (int): Number of units. Must be greater than zero.
        variant (str | None): Optional variant label chosen by the buyer.
    """
    productId: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    variant: Optional[str] = None


class CustomerDetails(BaseModel):
    """
    Buyer contact data, optional distinct recipient, delivery selection and options.
    Only `name` and `phone` are mandatory.
    """
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=1, max_length=50)
    email: Optional[str] = Field(None, max_length=200)
    telegram: Optional[str] = Field(None, max_length=100)
    recipientName: Optional[str] = Field(None, max_length=200)
    recipientPhone: Optional[str] = Field(None, max_length=50)
    isRecipientSelf: bool = True
    isPickup: bool = False
    deliveryZone: Optional[str] = Field(None, max_length=100)
    deliveryAddress: Optional[str] = Field(None, max_length=500)
    deliveryDate: Optional[str] = Field(None, max_length=50)
    deliveryTime: Optional[str] = Field(None, max_length=50)
    cardText: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = Field(None, max_length=1000)
    promocode: Optional[str] = Field(None, max_length=50)
    askRecipientForDetails: bool = False
    deliverAnonymously: bool = False
    receiveMailings: bool = False


class NewOrderRequest(BaseModel):
    """
    Represents a checkout submission from the storefront.

    The amount is deliberately absent: it is computed on the server from the catalog.

    Attributes:
        items (List[CartItem]): Cart lines, at least one.
        customer (CustomerDetails): Checkout form data.
    """
    items: List[CartItem] = Field(..., min_length=1)
    customer: CustomerDetails


class ConfirmPaymentRequest(BaseModel):
    """Outcome the buyer's browser believes the payment had (success or fail page)."""
    outcome: Literal["success", "failure"]


class OrderItemView(BaseModel):
    productId: str
    name: str
    price: int
    quantity: int
    variant: Optional[str] = None
    path: Optional[str] = None


class OrderView(BaseModel):
    """Read-only order representation for the status endpoint and the poller."""
    orderId: str
    status: str
    amount: int
    currency: str
    items: List[OrderItemView]
    paymentId: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderView":
        return cls(
            orderId=order.id,
            status=order.status.value,
            amount=order.amount,
            currency=order.currency,
            items=[
                OrderItemView(
                    productId=item.product_id,
                    name=item.name,
                    price=item.price,
                    quantity=item.quantity,
                    variant=item.variant,
                    path=item.path,
                )
                for item in order.items
            ],
            paymentId=order.payment_id,
            createdAt=order.created_at,
            updatedAt=order.updated_at,
        )
