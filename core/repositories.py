"""
Repositories：唯一會碰資料庫的地方

Manager 只依賴下面的 Protocol，SQLAlchemy class 是正式環境的實作。
所有 method 都會 block，manager 透過 run_in_threadpool 呼叫。

寫入失敗時先 rollback，再拋出 PersistenceFailure；repository 不會重試。
"""
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Protocol
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.entities import Cart, CartItem, ItemKey, Refund
from core.exceptions import PersistenceFailure, ProductPriceNotFound, RefundNotFound
from database import transactional
from models import CartItemRecord, CartRecord, ProductPrice, RefundRecord

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class CartRepository(Protocol):
    def load(self, owner_id: str) -> Cart:
        ...

    def save(self, cart: Cart) -> None:
        ...


class RefundRepository(Protocol):
    def load(self, refund_id: str) -> Refund:
        ...

    def save(self, refund: Refund) -> None:
        ...

    def list_for_order(self, order_id: str) -> List[Refund]:
        ...


class PriceCatalog(Protocol):
    def prices_for(self, keys: Iterable[ItemKey]) -> Dict[ItemKey, Decimal]:
        ...


class SqlCartRepository:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def load(self, owner_id: str) -> Cart:
        """已存的購物車；owner 還沒有購物車時返回空的"""
        with self._session_factory() as db:
            record = db.get(CartRecord, owner_id)
            if record is None:
                return Cart(owner_id=owner_id)

            items = {}
            for row in record.items:
                item = CartItem(row.product_id, row.variant_id, row.quantity)
                items[item.key] = item
            return Cart(owner_id=owner_id, items=items, updated_at=record.updated_at)

    def save(self, cart: Cart) -> None:
        with self._session_factory() as db:
            try:
                self._write(db, cart)
            except SQLAlchemyError as e:
                raise PersistenceFailure(f"Failed to save cart {cart.owner_id}: {e}") from e

    @transactional
    def _write(self, db: Session, cart: Cart) -> None:
        record = db.get(CartRecord, cart.owner_id)
        if record is None:
            record = CartRecord(owner_id=cart.owner_id)
            db.add(record)

        # 先刪掉舊的行，重複使用的 key 才不會撞到 unique constraint
        record.items.clear()
        db.flush()

        for position, item in enumerate(cart.items.values()):
            record.items.append(
                CartItemRecord(
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    quantity=item.quantity,
                    position=position,
                )
            )
        record.updated_at = cart.updated_at


class SqlRefundRepository:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def load(self, refund_id: str) -> Refund:
        with self._session_factory() as db:
            record = db.get(RefundRecord, refund_id)
            if record is None:
                raise RefundNotFound(refund_id)
            return _refund_from_record(record)

    def list_for_order(self, order_id: str) -> List[Refund]:
        with self._session_factory() as db:
            rows = (
                db.query(RefundRecord)
                .filter(RefundRecord.order_id == order_id)
                .order_by(RefundRecord.created_at.desc())
                .all()
            )
            return [_refund_from_record(row) for row in rows]

    def save(self, refund: Refund) -> None:
        with self._session_factory() as db:
            try:
                self._write(db, refund)
            except SQLAlchemyError as e:
                raise PersistenceFailure(f"Failed to save refund {refund.refund_id}: {e}") from e

    @transactional
    def _write(self, db: Session, refund: Refund) -> None:
        db.merge(
            RefundRecord(
                id=refund.refund_id,
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
        )


def _refund_from_record(record: RefundRecord) -> Refund:
    return Refund(
        refund_id=record.id,
        order_id=record.order_id,
        return_id=record.return_id,
        amount=Decimal(record.amount),
        reason=record.reason,
        method=record.method,
        status=record.status,
        transaction_id=record.transaction_id,
        rejection_reason=record.rejection_reason,
        notes=record.notes,
        created_at=record.created_at,
        processed_at=record.processed_at,
    )


class SqlPriceCatalog:
    """
    從 product_prices 表讀取單價

    沒有自己價格的 variant 使用商品的基本價格（variant_id 為 NULL 的那一列）。
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def prices_for(self, keys: Iterable[ItemKey]) -> Dict[ItemKey, Decimal]:
        keys = list(keys)
        if not keys:
            return {}

        with self._session_factory() as db:
            rows = (
                db.query(ProductPrice)
                .filter(ProductPrice.product_id.in_({key.product_id for key in keys}))
                .all()
            )
            table = {(row.product_id, row.variant_id): Decimal(row.price) for row in rows}

        prices = {}
        for key in keys:
            price = table.get((key.product_id, key.variant_id))
            if price is None:
                price = table.get((key.product_id, None))
            if price is None:
                raise ProductPriceNotFound(key.product_id, key.variant_id)
            prices[key] = price
        return prices
