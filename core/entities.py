"""
記憶體中的 entity，供 manager 與 service 共用

Room 和連線只存在這裡。購物車和退款也會由 repository 轉成這些型別，
業務邏輯不會直接碰到 ORM 物件。
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional, Set

from models import RefundMethod, RefundStatus, utcnow


class ItemKey(NamedTuple):
    """購物車行的唯一鍵：同一商品、不同 variant 就是不同行"""
    product_id: str
    variant_id: Optional[str] = None


@dataclass
class Connection:
    connection_id: str
    transport: Any = None
    room_id: Optional[str] = None
    connected_at: datetime = field(default_factory=utcnow)


@dataclass
class Offer:
    offer_id: str
    room_id: str
    discount_percent: Decimal
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class Room:
    room_id: str
    members: Set[str] = field(default_factory=set)
    offer: Optional[Offer] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class CartItem:
    product_id: str
    variant_id: Optional[str]
    quantity: int

    @property
    def key(self) -> ItemKey:
        return ItemKey(self.product_id, self.variant_id)


@dataclass
class Cart:
    owner_id: str
    # dict 保留插入順序，即為行順序
    items: Dict[ItemKey, CartItem] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)

    def copy(self) -> "Cart":
        return Cart(
            owner_id=self.owner_id,
            items={key: CartItem(i.product_id, i.variant_id, i.quantity) for key, i in self.items.items()},
            updated_at=self.updated_at,
        )

    def quantities(self) -> Dict[ItemKey, int]:
        return {key: item.quantity for key, item in self.items.items()}


@dataclass
class SyncRejection:
    index: int
    product_id: Optional[str]
    variant_id: Optional[str]
    reason: str


@dataclass
class CartResult:
    cart: Cart
    warnings: List[SyncRejection] = field(default_factory=list)


@dataclass
class SyncResult(CartResult):
    accepted: List[ItemKey] = field(default_factory=list)

    @property
    def rejected(self) -> List[SyncRejection]:
        return self.warnings


@dataclass
class PricePreview:
    subtotal: Decimal
    discount_percent: Decimal
    discount: Decimal
    total: Decimal
    offer_id: Optional[str] = None


@dataclass
class Refund:
    refund_id: str
    order_id: str
    amount: Decimal
    reason: str
    method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT
    status: RefundStatus = RefundStatus.PENDING
    return_id: Optional[str] = None
    transaction_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
