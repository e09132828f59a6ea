from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.entities import Cart, CartResult, PricePreview, Refund, Room, SyncRejection
from models import RefundMethod, RefundStatus


class CamelModel(BaseModel):
    """Python 端用 snake_case，傳輸格式用 camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============ Cart ============

class CartItemAdd(CamelModel):
    product_id: str = Field(min_length=1)
    variant_id: Optional[str] = None
    quantity: int = Field(ge=1)


class CartItemUpdate(CamelModel):
    quantity: int = Field(ge=1)


class CartSync(CamelModel):
    # 每一行不在這裡驗證：不合法的行逐筆回報，不會整批 422
    items: List[Any]


class CartItemResponse(CamelModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int


class SyncRejectionResponse(CamelModel):
    index: int
    product_id: Optional[Any] = None
    variant_id: Optional[Any] = None
    reason: str

    @classmethod
    def from_rejection(cls, rejection: SyncRejection) -> "SyncRejectionResponse":
        return cls(
            index=rejection.index,
            product_id=rejection.product_id,
            variant_id=rejection.variant_id,
            reason=rejection.reason,
        )


class CartResponse(CamelModel):
    owner_id: str
    items: List[CartItemResponse]
    total_items: int
    updated_at: datetime
    warnings: List[SyncRejectionResponse] = []

    @classmethod
    def from_cart(cls, cart: Cart, warnings: Optional[List[SyncRejection]] = None) -> "CartResponse":
        return cls(
            owner_id=cart.owner_id,
            items=[
                CartItemResponse(product_id=i.product_id, variant_id=i.variant_id, quantity=i.quantity)
                for i in cart.items.values()
            ],
            total_items=sum(i.quantity for i in cart.items.values()),
            updated_at=cart.updated_at,
            warnings=[SyncRejectionResponse.from_rejection(w) for w in warnings or []],
        )

    @classmethod
    def from_result(cls, result: CartResult) -> "CartResponse":
        return cls.from_cart(result.cart, result.warnings)


class PricePreviewResponse(CamelModel):
    subtotal: Decimal
    discount_percent: Decimal
    discount: Decimal
    total: Decimal
    offer_id: Optional[str] = None

    @classmethod
    def from_preview(cls, preview: PricePreview) -> "PricePreviewResponse":
        return cls(
            subtotal=preview.subtotal,
            discount_percent=preview.discount_percent,
            discount=preview.discount,
            total=preview.total,
            offer_id=preview.offer_id,
        )


# ============ Room ============

class OfferBind(CamelModel):
    offer_id: str = Field(min_length=1)
    discount_percent: Decimal = Field(ge=0, le=100)
    expires_at: Optional[datetime] = None


class OfferResponse(CamelModel):
    offer_id: str
    room_id: str
    discount_percent: Decimal
    expires_at: Optional[datetime] = None


class RoomResponse(CamelModel):
    room_id: str
    members: List[str]
    member_count: int
    offer: Optional[OfferResponse] = None
    created_at: datetime

    @classmethod
    def from_room(cls, room: Room) -> "RoomResponse":
        offer = None
        if room.offer is not None:
            offer = OfferResponse(
                offer_id=room.offer.offer_id,
                room_id=room.offer.room_id,
                discount_percent=room.offer.discount_percent,
                expires_at=room.offer.expires_at,
            )
        return cls(
            room_id=room.room_id,
            members=sorted(room.members),
            member_count=len(room.members),
            offer=offer,
            created_at=room.created_at,
        )


# ============ Refund ============

class RefundCreate(CamelModel):
    order_id: str = Field(min_length=1)
    return_id: Optional[str] = None
    amount: Decimal = Field(gt=0)
    reason: str = Field(min_length=1)
    method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT
    notes: Optional[str] = None
    # 訂單帳本回報的可退餘額
    refundable_remainder: Decimal = Field(ge=0)


class RefundProcess(CamelModel):
    status: RefundStatus
    transaction_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    refundable_remainder: Optional[Decimal] = Field(default=None, ge=0)


class RefundResponse(CamelModel):
    refund_id: str
    order_id: str
    return_id: Optional[str] = None
    amount: Decimal
    reason: str
    method: RefundMethod
    status: RefundStatus
    transaction_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    @classmethod
    def from_refund(cls, refund: Refund) -> "RefundResponse":
        return cls(
            refund_id=refund.refund_id,
            order_id=refund.order_id,
            return_id=refund.return_id,
            amount=refund.amount,
            reason=refund.reason,
            method=refund.method,
            status=refund.status,
            transaction_id=refund.transaction_id,
            rejection_reason=refund.rejection_reason,
            notes=refund.notes,
            created_at=refund.created_at,
            processed_at=refund.processed_at,
        )
