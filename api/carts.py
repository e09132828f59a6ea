"""
Cart API Endpoints

職責：
1. 讀取 / 新增 / 更新 / 移除 / 清空購物車行
2. 同步 client 端的購物車快照（逐行回報 warning，不會整批 422）
3. 結帳預覽，套用連線所在 Room 的 offer
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from api.deps import Services, get_services
from core.exceptions import (
    CartItemNotFound,
    PersistenceFailure,
    ProductPriceNotFound,
    ValidationError,
)
from schemas import CartItemAdd, CartItemUpdate, CartResponse, CartSync, PricePreviewResponse
from services.cart_reconciliation import make_key

router = APIRouter(prefix="/api/carts", tags=["carts"])
logger = logging.getLogger(__name__)


def _sync_line(raw: Any) -> Any:
    """傳輸格式的 camelCase 行 -> reconciliation 讀取的 snake_case mapping"""
    if not isinstance(raw, dict):
        return raw
    return {
        "product_id": raw.get("productId", raw.get("product_id")),
        "variant_id": raw.get("variantId", raw.get("variant_id")),
        "quantity": raw.get("quantity"),
    }


@router.get("/{owner_id}", response_model=CartResponse)
async def get_cart(owner_id: str, services: Services = Depends(get_services)):
    try:
        cart = await services.carts.get_cart(owner_id)
        return CartResponse.from_cart(cart)

    except Exception as e:
        logger.error(f"Failed to load cart: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{owner_id}/items", response_model=CartResponse)
async def add_item(owner_id: str, body: CartItemAdd, services: Services = Depends(get_services)):
    """
    新增商品（同一商品 + variant -> 數量相加）
    """
    try:
        result = await services.carts.add_item(owner_id, body.product_id, body.variant_id, body.quantity)
        return CartResponse.from_result(result)

    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PersistenceFailure:
        raise HTTPException(status_code=503, detail="Cart could not be saved, retry later")
    except Exception as e:
        logger.error(f"Failed to add cart item: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.patch("/{owner_id}/items/{product_id}", response_model=CartResponse)
async def update_item(
    owner_id: str,
    product_id: str,
    body: CartItemUpdate,
    variant_id: Optional[str] = Query(None),
    services: Services = Depends(get_services)
):
    """
    設定某一行的數量；數量 0 不是更新，請用 DELETE
    """
    try:
        result = await services.carts.update_item(owner_id, make_key(product_id, variant_id), body.quantity)
        return CartResponse.from_result(result)

    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CartItemNotFound:
        raise HTTPException(status_code=404, detail="Cart item not found")
    except PersistenceFailure:
        raise HTTPException(status_code=503, detail="Cart could not be saved, retry later")
    except Exception as e:
        logger.error(f"Failed to update cart item: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/{owner_id}/items/{product_id}", response_model=CartResponse)
async def remove_item(
    owner_id: str,
    product_id: str,
    variant_id: Optional[str] = Query(None),
    services: Services = Depends(get_services)
):
    try:
        result = await services.carts.remove_item(owner_id, make_key(product_id, variant_id))
        return CartResponse.from_result(result)

    except CartItemNotFound:
        raise HTTPException(status_code=404, detail="Cart item not found")
    except PersistenceFailure:
        raise HTTPException(status_code=503, detail="Cart could not be saved, retry later")
    except Exception as e:
        logger.error(f"Failed to remove cart item: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/{owner_id}", response_model=CartResponse)
async def clear_cart(owner_id: str, services: Services = Depends(get_services)):
    try:
        result = await services.carts.clear_cart(owner_id)
        return CartResponse.from_result(result)

    except PersistenceFailure:
        raise HTTPException(status_code=503, detail="Cart could not be saved, retry later")
    except Exception as e:
        logger.error(f"Failed to clear cart: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{owner_id}/sync", response_model=CartResponse)
async def sync_cart(owner_id: str, body: CartSync, services: Services = Depends(get_services)):
    """
    把訪客 / 離線購物車合併進 server 的購物車

    有列出的 key 採用 client 的數量，沒列出的 key 保留。
    不合法的行會被略過，並放在 `warnings` 回傳。
    """
    try:
        result = await services.carts.sync(owner_id, [_sync_line(raw) for raw in body.items])
        return CartResponse.from_result(result)

    except PersistenceFailure:
        raise HTTPException(status_code=503, detail="Cart could not be saved, retry later")
    except Exception as e:
        logger.error(f"Failed to sync cart: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{owner_id}/preview", response_model=PricePreviewResponse)
async def preview_cart(
    owner_id: str,
    connection_id: Optional[str] = Query(None, alias="connectionId"),
    services: Services = Depends(get_services)
):
    """
    結帳預覽：小計，以及連線可使用的 Room offer
    """
    try:
        cart = await services.carts.get_cart(owner_id)
        preview = await services.offers.preview_total(cart, connection_id)
        return PricePreviewResponse.from_preview(preview)

    except ProductPriceNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to preview cart: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
