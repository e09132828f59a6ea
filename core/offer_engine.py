"""
Offer Engine：結帳預覽金額，套用 Room 的折扣

只有連線是進行中 Room 的成員、且 offer 尚未過期時才有折扣。
其他情況都是原價小計，這是正常路徑，不是錯誤。
"""
from decimal import Decimal
from typing import Optional
import logging

from fastapi.concurrency import run_in_threadpool

from core.entities import Cart, PricePreview, utcnow
from core.repositories import PriceCatalog
from core.room_manager import RoomManager
from services.pricing import apply_discount, cart_subtotal, round_money

logger = logging.getLogger(__name__)


class OfferEngine:

    def __init__(self, rooms: RoomManager, catalog: PriceCatalog, decimals: int = 2, clock=utcnow):
        self._rooms = rooms
        self._catalog = catalog
        self._decimals = decimals
        self._clock = clock

    async def preview_total(self, cart: Cart, connection_id: Optional[str]) -> PricePreview:
        """
        幫連線計算購物車金額

        異常：
            ProductPriceNotFound: 某一行沒有價格
        """
        prices = await run_in_threadpool(self._catalog.prices_for, list(cart.items))
        subtotal = cart_subtotal(cart, prices, self._decimals)

        # 查完價格才解析 offer，成員狀態盡量是最新的
        offer = self._rooms.active_offer_for(connection_id, self._clock()) if connection_id else None
        if offer is None:
            zero = round_money(Decimal(0), self._decimals)
            return PricePreview(subtotal=subtotal, discount_percent=Decimal(0), discount=zero, total=subtotal)

        discount, total = apply_discount(subtotal, offer.discount_percent, self._decimals)
        logger.info(
            f"Preview for cart {cart.owner_id} via connection {connection_id}: "
            f"{subtotal} - {offer.discount_percent}% = {total} (offer {offer.offer_id})"
        )
        return PricePreview(
            subtotal=subtotal,
            discount_percent=offer.discount_percent,
            discount=discount,
            total=total,
            offer_id=offer.offer_id,
        )
