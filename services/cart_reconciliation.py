"""
Cart reconciliation service：購物車所有可能的變更

純函式。每個函式接收一個 Cart、返回新的 Cart，不會修改輸入，
寫入失敗時呼叫端手上的資料不受影響。Lock 和寫入由 CartManager 負責。

合併規則：
- add_item：同一個 key 的數量「相加」（重複點擊會累加）
- sync：client 有列出的 key，數量「取代」原本的值；沒列出的 key 維持不變
"""
from collections.abc import Mapping
from typing import Any, Iterable, Optional
import logging

from core.entities import Cart, CartItem, ItemKey, SyncRejection, SyncResult, utcnow
from core.exceptions import CartItemNotFound, ValidationError

logger = logging.getLogger(__name__)


def is_positive_int(value: Any) -> bool:
    # bool 是 int 的 subclass，True 不是數量
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def make_key(product_id: str, variant_id: Optional[str] = None) -> ItemKey:
    return ItemKey(product_id, variant_id or None)


def _check_quantity(quantity: Any) -> None:
    if not is_positive_int(quantity):
        raise ValidationError(f"quantity must be a positive integer, got {quantity!r}")


def _check_product_id(product_id: Any) -> None:
    if not isinstance(product_id, str) or not product_id.strip():
        raise ValidationError(f"product_id must be a non-empty string, got {product_id!r}")


def add_item(cart: Cart, product_id: str, variant_id: Optional[str], quantity: int) -> Cart:
    """
    新增某個商品 / variant 的數量

    購物車已有同一個 key -> 數量相加
    新的 key -> 加在最後一行

    異常：
        ValidationError: 數量不是正整數，或 product_id 為空
    """
    _check_product_id(product_id)
    _check_quantity(quantity)

    updated = cart.copy()
    key = make_key(product_id, variant_id)
    existing = updated.items.get(key)
    if existing:
        existing.quantity += quantity
    else:
        updated.items[key] = CartItem(key.product_id, key.variant_id, quantity)
    updated.updated_at = utcnow()
    return updated


def update_item(cart: Cart, item_key: ItemKey, quantity: int) -> Cart:
    """
    設定某一行的數量

    這裡不接受 0：移除一行請用 remove_item

    異常：
        ValidationError: 數量不是正整數
        CartItemNotFound: 沒有這一行
    """
    _check_quantity(quantity)
    if item_key not in cart.items:
        raise CartItemNotFound(item_key)

    updated = cart.copy()
    updated.items[item_key].quantity = quantity
    updated.updated_at = utcnow()
    return updated


def remove_item(cart: Cart, item_key: ItemKey) -> Cart:
    if item_key not in cart.items:
        raise CartItemNotFound(item_key)

    updated = cart.copy()
    del updated.items[item_key]
    updated.updated_at = utcnow()
    return updated


def clear(cart: Cart) -> Cart:
    return Cart(owner_id=cart.owner_id, items={}, updated_at=utcnow())


def total_quantity(cart: Cart) -> int:
    return sum(item.quantity for item in cart.items.values())


def _line_problem(line: Any) -> Optional[str]:
    if not isinstance(line, Mapping):
        return "line is not an object"
    product_id = line.get("product_id")
    if not isinstance(product_id, str) or not product_id.strip():
        return "missing product_id"
    variant_id = line.get("variant_id")
    if variant_id is not None and not isinstance(variant_id, str):
        return "variant_id must be a string"
    if not is_positive_int(line.get("quantity")):
        return f"quantity must be a positive integer, got {line.get('quantity')!r}"
    return None


def sync(cart: Cart, incoming: Iterable[Any]) -> SyncResult:
    """
    把 client 端的購物車快照合併進 server 的購物車

    流程（依序處理每一行）：
    1. 驗證；不合法的行略過並回報，其他行照常套用
    2. 購物車已有這個 key -> 取代數量
    3. 新的 key -> 加在最後

    `incoming` 沒列出的行不會被移除。

    參數：
        cart: server 的購物車
        incoming: 含 product_id、variant_id（可省略）、quantity 的 mapping

    返回：
        SyncResult：合併後的購物車、被接受的 key、被拒絕的行與原因

    範例：
        cart {(p1, None): 2}
        sync(cart, [{"product_id": "p1", "quantity": 5},
                    {"product_id": "p2", "variant_id": "v1", "quantity": 1}])
        -> {(p1, None): 5, (p2, v1): 1}
    """
    merged = cart.copy()
    accepted = []
    rejected = []

    for index, line in enumerate(incoming):
        problem = _line_problem(line)
        if problem:
            product_id = line.get("product_id") if isinstance(line, Mapping) else None
            variant_id = line.get("variant_id") if isinstance(line, Mapping) else None
            logger.warning(f"Skipping sync line {index} for cart {cart.owner_id}: {problem}")
            rejected.append(SyncRejection(index, product_id, variant_id, problem))
            continue

        key = make_key(line["product_id"], line.get("variant_id"))
        existing = merged.items.get(key)
        if existing:
            existing.quantity = line["quantity"]
        else:
            merged.items[key] = CartItem(key.product_id, key.variant_id, line["quantity"])
        accepted.append(key)

    if accepted:
        merged.updated_at = utcnow()
    return SyncResult(cart=merged, warnings=rejected, accepted=accepted)
