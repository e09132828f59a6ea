"""
Cart Manager：依序執行並寫入的購物車變更

職責：
1. 同一個 owner 一次只處理一個變更（避免 lost update）
2. 讀取 -> 套用純 reconciliation 函式 -> 寫入一次
3. 寫入成功後才返回結果

不同 owner 之間互不等待。
"""
from typing import Any, Callable, Iterable, Optional
import logging

from fastapi.concurrency import run_in_threadpool

from core.entities import Cart, CartResult, ItemKey, SyncResult
from core.exceptions import PersistenceFailure
from core.locks import KeyedLock
from core.repositories import CartRepository
from services import cart_reconciliation

logger = logging.getLogger(__name__)


class CartManager:
    """購物車變更協調器"""

    def __init__(self, repository: CartRepository, locks: Optional[KeyedLock] = None):
        self._repository = repository
        self._locks = locks or KeyedLock()

    async def get_cart(self, owner_id: str) -> Cart:
        return await run_in_threadpool(self._repository.load, owner_id)

    async def add_item(self, owner_id: str, product_id: str, variant_id: Optional[str], quantity: int) -> CartResult:
        return await self._apply(owner_id, cart_reconciliation.add_item, product_id, variant_id, quantity)

    async def update_item(self, owner_id: str, item_key: ItemKey, quantity: int) -> CartResult:
        return await self._apply(owner_id, cart_reconciliation.update_item, item_key, quantity)

    async def remove_item(self, owner_id: str, item_key: ItemKey) -> CartResult:
        return await self._apply(owner_id, cart_reconciliation.remove_item, item_key)

    async def clear_cart(self, owner_id: str) -> CartResult:
        return await self._apply(owner_id, cart_reconciliation.clear)

    async def sync(self, owner_id: str, incoming: Iterable[Any]) -> SyncResult:
        """
        同步 client 的購物車快照（見 cart_reconciliation.sync）

        不合法的行放在 result.rejected 回傳，不會讓整個呼叫失敗。
        """
        result = await self._apply(owner_id, cart_reconciliation.sync, list(incoming))
        logger.info(
            f"Synced cart {owner_id}: {len(result.accepted)} accepted, {len(result.rejected)} rejected"
        )
        return result

    async def _apply(self, owner_id: str, operation: Callable[..., Any], *args: Any) -> Any:
        """
        流程：
        1. 取得 owner 的 lock
        2. 讀取購物車
        3. 套用純函式（ValidationError / CartItemNotFound 直接往上拋，不寫入）
        4. 寫入一次

        異常：
            PersistenceFailure: 寫入失敗；`.result` 保存沒寫入的結果
        """
        async with self._locks.hold(owner_id):
            cart = await run_in_threadpool(self._repository.load, owner_id)
            outcome = operation(cart, *args)
            result = outcome if isinstance(outcome, CartResult) else CartResult(cart=outcome)

            try:
                await run_in_threadpool(self._repository.save, result.cart)
            except PersistenceFailure as e:
                logger.error(f"Cart {owner_id} was merged but not saved: {e}")
                raise PersistenceFailure(str(e), result=result) from e
            return result
