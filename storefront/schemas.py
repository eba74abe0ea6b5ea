"""
Pydantic schemas for request/response validation.

Field aliases follow the camelCase JSON the storefront UI sends; responses are
serialised by alias.
"""
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ── Checkout / Maksekeskus payments ──────────────────────────────────────────

class OrderItemIn(_CamelModel):
    id: str
    title: str = ""
    price: Union[str, float, int]
    quantity: int = Field(1, gt=0)


class OrderDataIn(_CamelModel):
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = Field(None, alias="postalCode")
    country: Optional[str] = None
    notes: Optional[str] = None
    user_id: Optional[str] = Field(None, alias="userId")
    parcel_terminal_id: Optional[str] = Field(None, alias="parcelTerminalId")
    items: List[OrderItemIn] = []


class CreatePaymentRequest(_CamelModel):
    order_data: Optional[OrderDataIn] = Field(None, alias="orderData")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")


class CreatePaymentResponse(BaseModel):
    success: bool = True
    order_id: str
    transaction_id: str
    payment_url: str
    redirect_url: str


class PaymentMethodOut(BaseModel):
    method: str
    name: str
    countries: List[str]
    min_amount: float
    max_amount: float


class PaymentMethodsResponse(BaseModel):
    success: bool = True
    methods: List[PaymentMethodOut]
    count: int


# ── Provider notifications ───────────────────────────────────────────────────

class MerchantData(BaseModel):
    """
    Correlation data attached to a Maksekeskus transaction at creation time
    and returned verbatim in every notification.
    """
    order_id: str = Field(..., min_length=1)
    customer_email: Optional[str] = None

    @field_validator("order_id", mode="before")
    @classmethod
    def _coerce_order_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class ProviderNotification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transaction: str = Field(..., min_length=1)
    status: str = ""
    amount: Decimal = Decimal("0")
    currency: str = "EUR"
    payment_method: str = "banklink"
    merchant_data: str = ""


class NotificationAck(BaseModel):
    status: str = "OK"
    error: Optional[str] = None


# ── Catalog sync ─────────────────────────────────────────────────────────────

class CatalogSyncRequest(_CamelModel):
    dry_run: bool = Field(False, alias="dryRun")
    batch_size: Optional[int] = Field(None, alias="batchSize", gt=0)
    force_resync: bool = Field(False, alias="forceResync")


class SyncError(_CamelModel):
    product_id: str = Field(..., alias="productId")
    error: str


class CatalogSyncResult(BaseModel):
    success: bool = False
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[SyncError] = []
    summary: str = ""


class ProductSyncRequest(_CamelModel):
    action: Optional[str] = None
    product_id: Optional[str] = Field(None, alias="productId")


class ProductSyncResponse(BaseModel):
    success: bool
    product_id: str
    stripe_product_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    error: Optional[str] = None


# ── Stripe Checkout ──────────────────────────────────────────────────────────

class CheckoutItem(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    currency: Optional[str] = None
    # Minor units, as the UI already multiplies by 100
    amount: Optional[float] = None
    quantity: Optional[float] = None


class CheckoutSessionRequest(BaseModel):
    items: Optional[List[CheckoutItem]] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutSessionResponse(_CamelModel):
    session_id: str = Field(..., alias="sessionId")
    url: Optional[str] = None


# ── Parcel terminals ─────────────────────────────────────────────────────────

class Terminal(BaseModel):
    id: str
    name: str
    city: str = ""
    address: str = ""
    country: str = ""
    description: Optional[str] = None


class TerminalsResponse(BaseModel):
    success: bool = True
    provider: str
    terminals: List[Terminal]
    count: int
    cached: bool


# ── Operational ──────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str = "ok"
    db: str = "ok"
