"""
Event Dispatcher：把 room event 送到成員的連線

規則：
1. 同一個 room 的 event 依發布順序送出（每個 room 一條 FIFO + 一個 worker task）
2. 不同 room 互不等待，除非發布時帶 `after=`
   （例如換房時，`joined B` 要等 `left A` 送完）
3. 發布是同步的：room 狀態變更和 event 入列在同一個 event loop step 完成
4. 等待中的 caller 被 cancel 不會中斷送出，送出由 worker 負責

Transport 只要有 `async send(connection_id, message)` 和
`discard(connection_id)`，序列化格式由 transport 決定。
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, List, Optional, Protocol

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send(self, connection_id: str, message: Dict[str, Any]) -> None:
        ...

    def discard(self, connection_id: str) -> None:
        ...


@dataclass
class _Delivery:
    message: Dict[str, Any]
    recipients: List[str]
    done: asyncio.Future
    after: Optional[asyncio.Future] = None


class EventDispatcher:
    """每個 room 依序 fan-out"""

    def __init__(self, transport: Transport):
        self.transport = transport
        self._queues: Dict[str, Deque[_Delivery]] = {}
        self._workers: Dict[str, asyncio.Task] = {}

    def publish(
        self,
        room_id: str,
        event: str,
        recipients: Iterable[str],
        after: Optional[asyncio.Future] = None,
        **payload: Any
    ) -> asyncio.Future:
        """
        把 `event` 排進 room 的佇列，送給 `recipients` 裡的每個連線

        參數：
            room_id: event 所屬的 room（決定用哪條 FIFO）
            event: event 名稱，例如 "joined"
            recipients: 發布當下的成員快照
            after: 必須先送完的另一個 delivery
            payload: 額外的訊息欄位

        返回：
            每個 recipient 都嘗試送過之後才完成的 Future
        """
        loop = asyncio.get_running_loop()
        done = loop.create_future()
        message = {"event": event, "roomId": room_id, **payload}
        delivery = _Delivery(message=message, recipients=sorted(recipients), done=done, after=after)

        self._queues.setdefault(room_id, deque()).append(delivery)
        if room_id not in self._workers:
            self._workers[room_id] = loop.create_task(self._drain(room_id))
        return done

    async def wait(self, pending: Iterable[Optional[asyncio.Future]]) -> None:
        """等 delivery 完成，但 caller 被 cancel 不會取消 delivery"""
        await asyncio.shield(self.completion(pending))

    def completion(self, pending: Iterable[Optional[asyncio.Future]]) -> asyncio.Future:
        return asyncio.gather(*[f for f in pending if f is not None])

    def discard(self, connection_id: str) -> None:
        self.transport.discard(connection_id)

    async def close(self) -> None:
        """停止所有 worker（shutdown 用）"""
        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    async def _drain(self, room_id: str) -> None:
        queue = self._queues[room_id]
        try:
            while queue:
                delivery = queue[0]
                if delivery.after is not None:
                    await asyncio.shield(delivery.after)
                await self._deliver(delivery)
                queue.popleft()
                if not delivery.done.done():
                    delivery.done.set_result(None)
        finally:
            del self._workers[room_id]
            for leftover in queue:
                if not leftover.done.done():
                    leftover.done.cancel()
            del self._queues[room_id]

    async def _deliver(self, delivery: _Delivery) -> None:
        for connection_id in delivery.recipients:
            try:
                await self.transport.send(connection_id, delivery.message)
            except Exception as e:
                # 單一連線失敗不影響同 room 的其他成員
                logger.warning(
                    f"Failed to send {delivery.message['event']} to {connection_id}: {e}"
                )
