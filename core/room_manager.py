"""
Room Manager：管理直播購物 Room 的完整生命週期

職責：
1. 加入 / 離開 / 斷線（成員變更 + 廣播）
2. 第一個人加入時建立 Room，最後一個人離開時刪除
3. 綁定 / 清除 Room 的優惠（offer）
4. 回答「這個連線現在能用哪個 offer」

原則：
- 一個連線同時最多在一個 Room
- 每次變更都是一個同步步驟，觸發的廣播在同一步驟入列，狀態和 event 不會脫節
- Room 只存在記憶體，這裡不碰資料庫
"""
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import asyncio
import logging

from core.connection_registry import ConnectionRegistry
from core.entities import Offer, Room
from core.event_dispatcher import EventDispatcher
from core.exceptions import RoomNotFound, ValidationError
from models import as_utc, utcnow
from services.pricing import validate_discount_percent

logger = logging.getLogger(__name__)


class RoomManager:
    """Room 生命週期管理器"""

    def __init__(self, registry: ConnectionRegistry, dispatcher: EventDispatcher, clock=utcnow):
        self._registry = registry
        self._dispatcher = dispatcher
        self._clock = clock
        self._rooms: Dict[str, Room] = {}

    async def join(self, connection_id: str, room_id: str) -> Room:
        """
        讓連線加入 Room

        流程：
        1. 如果連線在另一個 Room，先離開（`left` 送給該 Room 剩下的成員）
        2. Room 不存在就建立
        3. 加入成員，廣播 `joined` 給所有成員（含自己），順序在步驟 1 的 `left` 之後

        參數：
            connection_id: 已註冊的連線
            room_id: 任意 id，不存在的 Room 會被建立

        返回：
            加入後的 Room

        異常：
            ConnectionNotFound: 連線未註冊
        """
        room, pending = self._apply_join(connection_id, room_id)
        await self._dispatcher.wait(pending)
        return room

    async def leave(self, connection_id: str, room_id: str) -> None:
        """
        讓連線離開 Room

        冪等：離開不在其中的 Room 不做任何事。
        最後一個成員離開時，Room 和它的 offer 一起刪除。
        """
        pending = self._remove_member(connection_id, room_id)
        await self._dispatcher.wait([pending])

    async def disconnect(self, connection_id: str) -> None:
        """
        處理連線中斷

        流程：
        1. 取消註冊（取得連線所在的 Room）
        2. 離開這些 Room
        3. 所有 `left` 送完之後，才丟棄連線的 socket

        步驟 3 掛在 delivery 本身，呼叫端的 task 中途被 cancel 也會依序完成。
        """
        room_ids = self._registry.unregister(connection_id)
        pending = [self._remove_member(connection_id, room_id) for room_id in room_ids]

        delivered = self._dispatcher.completion(pending)
        delivered.add_done_callback(lambda _: self._dispatcher.discard(connection_id))
        await asyncio.shield(delivered)

    async def bind_offer(self, room_id: str, offer: Offer) -> Room:
        """
        把 offer 綁到進行中的 Room（取代原本的 offer）

        異常：
            RoomNotFound: Room 不存在
            ValidationError: offer 屬於別的 Room，或折扣百分比不合法
        """
        room = self.get_room(room_id)
        if offer.room_id != room_id:
            raise ValidationError(f"Offer {offer.offer_id} is bound to room {offer.room_id}, not {room_id}")
        offer.discount_percent = validate_discount_percent(offer.discount_percent)
        offer.expires_at = as_utc(offer.expires_at)

        room.offer = offer
        logger.info(f"Offer {offer.offer_id} ({offer.discount_percent}%) bound to room {room_id}")
        pending = self._dispatcher.publish(
            room_id,
            "offer_bound",
            room.members,
            offerId=offer.offer_id,
            discountPercent=str(offer.discount_percent),
        )
        await self._dispatcher.wait([pending])
        return room

    async def clear_offer(self, room_id: str) -> Room:
        room = self.get_room(room_id)
        if room.offer is None:
            return room

        offer_id = room.offer.offer_id
        room.offer = None
        logger.info(f"Offer {offer_id} cleared from room {room_id}")
        pending = self._dispatcher.publish(room_id, "offer_cleared", room.members, offerId=offer_id)
        await self._dispatcher.wait([pending])
        return room

    def active_offer_for(self, connection_id: str, now: Optional[datetime] = None) -> Optional[Offer]:
        """
        連線現在可以使用的 offer

        以下情況返回 None：連線不在任何 Room、Room 已刪除、連線已不是成員、
        Room 沒有 offer、offer 已過期。
        """
        room_id = self._registry.room_of(connection_id)
        if room_id is None:
            return None

        room = self._rooms.get(room_id)
        if room is None or connection_id not in room.members or room.offer is None:
            return None

        if room.offer.is_expired(now or self._clock()):
            return None
        return room.offer

    def get_room(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    def room_ids(self) -> List[str]:
        return list(self._rooms)

    def _apply_join(self, connection_id: str, room_id: str) -> Tuple[Room, List[asyncio.Future]]:
        self._registry.get(connection_id)

        pending = []
        left = None
        previous = self._registry.room_of(connection_id)
        if previous is not None and previous != room_id:
            left = self._remove_member(connection_id, previous)
            pending.append(left)

        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id=room_id, created_at=self._clock())
            self._rooms[room_id] = room
            logger.info(f"Created room {room_id}")

        room.members.add(connection_id)
        self._registry.set_room(connection_id, room_id)
        logger.info(f"Connection {connection_id} joined room {room_id} ({len(room.members)} members)")

        pending.append(
            self._dispatcher.publish(room_id, "joined", room.members, after=left, connectionId=connection_id)
        )
        return room, pending

    def _remove_member(self, connection_id: str, room_id: str) -> Optional[asyncio.Future]:
        room = self._rooms.get(room_id)
        if room is None or connection_id not in room.members:
            return None

        room.members.discard(connection_id)
        if self._registry.room_of(connection_id) == room_id:
            self._registry.set_room(connection_id, None)
        logger.info(f"Connection {connection_id} left room {room_id}")

        if not room.members:
            del self._rooms[room_id]
            logger.info(f"Room {room_id} is empty, deleted")

        return self._dispatcher.publish(room_id, "left", room.members, connectionId=connection_id)


def make_offer(offer_id: str, room_id: str, discount_percent, expires_at: Optional[datetime] = None) -> Offer:
    """
    建立 Offer

    注意：
        - 折扣百分比轉成 Decimal 並檢查 0–100
        - 沒有時區的 expires_at 視為 UTC
    """
    return Offer(
        offer_id=offer_id,
        room_id=room_id,
        discount_percent=validate_discount_percent(discount_percent),
        expires_at=as_utc(expires_at),
    )
