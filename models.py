"""
ORM models

只存放會活過 process 的資料：購物車、退款、以及預覽用的價格表。
Room 和連線只存在記憶體中，不會寫進資料庫。
"""
import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """沒有時區的 datetime 視為 UTC；有時區的換算成 UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RefundStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RefundMethod(str, enum.Enum):
    ORIGINAL_PAYMENT = "ORIGINAL_PAYMENT"
    STORE_CREDIT = "STORE_CREDIT"
    BANK_TRANSFER = "BANK_TRANSFER"
    COINS = "COINS"


class CartRecord(Base):
    __tablename__ = "carts"

    owner_id = Column(String, primary_key=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    items = relationship(
        "CartItemRecord",
        back_populates="cart",
        order_by="CartItemRecord.position",
        cascade="all, delete-orphan",
    )


class CartItemRecord(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("owner_id", "product_id", "variant_id", name="uq_cart_item_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, ForeignKey("carts.owner_id", ondelete="CASCADE"), nullable=False)
    product_id = Column(String, nullable=False)
    variant_id = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    # 購物車內的行順序
    position = Column(Integer, nullable=False, default=0)

    cart = relationship("CartRecord", back_populates="items")


class RefundRecord(Base):
    __tablename__ = "refunds"

    id = Column(String, primary_key=True)
    order_id = Column(String, nullable=False, index=True)
    return_id = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(Text, nullable=False)
    method = Column(Enum(RefundMethod), nullable=False, default=RefundMethod.ORIGINAL_PAYMENT)
    status = Column(Enum(RefundStatus), nullable=False, default=RefundStatus.PENDING)
    transaction_id = Column(String, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)


class ProductPrice(Base):
    """商品單價；variant_id 為 NULL 的那一列是商品的基本價格"""
    __tablename__ = "product_prices"
    __table_args__ = (
        UniqueConstraint("product_id", "variant_id", name="uq_product_price_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String, nullable=False, index=True)
    variant_id = Column(String, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
