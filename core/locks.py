"""
並發控制：同一個 entity 的 async 操作依序執行

用途：
- 購物車：同一個 owner 的 add / update / sync 不會互相覆蓋（lost update）
- 退款：同一筆 refund 只會被處理一次

注意：
- 所有 lock 都在 event loop 上，沒有跨 process 的鎖
- 沒有人持有或等待的 lock 會被移除，registry 不會隨 key 數量無限成長
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLock:
    """每個 key 一把 asyncio.Lock，需要時才建立"""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        """
        取得 `key` 的 lock

        使用範例：
            async with cart_locks.hold(owner_id):
                cart = load(owner_id)
                ...
                save(cart)

        注意：
            - 等待者依 FIFO 取得（asyncio.Lock 的行為）
            - 不可重入：同一個 task 不要重複持有同一個 key
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
