"""
Connection Registry：追蹤目前的 transport 連線

職責：
1. 註冊 / 取消註冊連線
2. 記住每個連線在哪個 Room

沒有業務邏輯也不存資料庫：重啟後全部消失，client 重新連線後要自己再加入 Room。

所有 method 都是同步的，每次呼叫都是 event loop 上不會被打斷的一步。
只有 RoomManager 會改變連線所在的 Room。
"""
import logging
from typing import Any, Dict, Optional, Set

from core.entities import Connection
from core.exceptions import ConnectionNotFound

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Connection id -> Connection"""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def register(self, connection_id: str, transport: Any = None) -> Connection:
        existing = self._connections.get(connection_id)
        if existing is not None:
            logger.warning(f"Connection {connection_id} registered twice, keeping the first one")
            return existing

        connection = Connection(connection_id=connection_id, transport=transport)
        self._connections[connection_id] = connection
        logger.info(f"Connection {connection_id} registered")
        return connection

    def unregister(self, connection_id: str) -> Set[str]:
        """
        移除連線

        返回：
            連線所在的 room id（用來廣播 `left`）；未知的連線返回空 set
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return set()

        logger.info(f"Connection {connection_id} unregistered")
        return {connection.room_id} if connection.room_id is not None else set()

    def room_of(self, connection_id: str) -> Optional[str]:
        connection = self._connections.get(connection_id)
        return connection.room_id if connection else None

    def get(self, connection_id: str) -> Connection:
        connection = self._connections.get(connection_id)
        if connection is None:
            raise ConnectionNotFound(connection_id)
        return connection

    def is_registered(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def set_room(self, connection_id: str, room_id: Optional[str]) -> None:
        """記錄連線目前的 Room（只有 RoomManager 會呼叫）"""
        self.get(connection_id).room_id = room_id

    def __len__(self) -> int:
        return len(self._connections)
