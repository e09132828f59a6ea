"""
Refund Manager：退款申請與處理

職責：
1. 建立退款（PENDING），金額不可超過訂單可退餘額
2. 透過 RefundStateMachine 處理，同一筆退款一次只處理一個請求
3. 每次呼叫只寫入一次

可退餘額由呼叫端提供：每筆訂單累計退了多少屬於外部帳本。
金額在檢查前就轉成貨幣最小單位，存進資料庫的值和檢查時的值相同。
"""
from decimal import Decimal
from typing import Callable, List, Optional
from uuid import uuid4
import logging

from fastapi.concurrency import run_in_threadpool

from core.entities import Refund, utcnow
from core.exceptions import (
    AmountExceedsRefundable,
    PersistenceFailure,
    RefundsDisabled,
    ValidationError,
)
from core.locks import KeyedLock
from core.repositories import RefundRepository
from core.state_machine import RefundStateMachine
from models import RefundMethod, RefundStatus
from services.pricing import to_money

logger = logging.getLogger(__name__)


class RefundManager:
    """退款生命週期管理器"""

    def __init__(
        self,
        repository: RefundRepository,
        refunds_enabled: bool = True,
        locks: Optional[KeyedLock] = None,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
        decimals: int = 2
    ):
        self._repository = repository
        self._refunds_enabled = refunds_enabled
        self._locks = locks or KeyedLock()
        self._id_factory = id_factory
        self._decimals = decimals

    async def create(
        self,
        order_id: str,
        amount,
        reason: str,
        refundable_remainder,
        method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT,
        return_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Refund:
        """
        建立 PENDING 的退款申請

        異常：
            RefundsDisabled: 退款功能已關閉
            ValidationError: order / reason 為空、金額不大於 0、小數位數過多
            AmountExceedsRefundable: amount > refundable_remainder
            PersistenceFailure: 寫入失敗
        """
        if not self._refunds_enabled:
            raise RefundsDisabled("Refunds are currently disabled by the administrator")

        if not order_id or not order_id.strip():
            raise ValidationError("order_id is required")
        if not reason or not reason.strip():
            raise ValidationError("reason is required")

        amount = to_money(amount, "amount", self._decimals)
        remainder = to_money(refundable_remainder, "refundable_remainder", self._decimals)
        if amount <= 0:
            raise ValidationError(f"amount must be positive, got {amount}")
        _check_remainder(amount, remainder)

        refund = Refund(
            refund_id=self._id_factory(),
            order_id=order_id,
            return_id=return_id,
            amount=amount,
            reason=reason,
            method=RefundMethod(method),
            notes=notes,
            created_at=utcnow(),
        )
        await self._save(refund)
        logger.info(f"Refund {refund.refund_id} requested for order {order_id}: {amount} via {refund.method.value}")
        return refund

    async def process(
        self,
        refund_id: str,
        status: RefundStatus,
        transaction_id: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        notes: Optional[str] = None,
        refundable_remainder=None
    ) -> Refund:
        """
        核准或拒絕 PENDING 的退款

        流程：
        1. 鎖定這筆退款（兩個管理員同時按下：一個成功，另一個得到 InvalidStateTransition）
        2. 讀取
        3. 核准時，如果有提供最新的可退餘額就重新檢查金額
        4. 狀態轉換 + 寫入

        異常：
            RefundNotFound, InvalidStateTransition, ValidationError,
            AmountExceedsRefundable, PersistenceFailure
        """
        status = RefundStatus(status)
        remainder = None
        if refundable_remainder is not None:
            remainder = to_money(refundable_remainder, "refundable_remainder", self._decimals)

        async with self._locks.hold(refund_id):
            refund = await run_in_threadpool(self._repository.load, refund_id)

            if (
                status == RefundStatus.APPROVED
                and remainder is not None
                and refund.status == RefundStatus.PENDING
            ):
                _check_remainder(refund.amount, remainder)

            updated = RefundStateMachine.transition(
                refund,
                status,
                transaction_id=transaction_id,
                rejection_reason=rejection_reason,
                notes=notes,
            )
            await self._save(updated)

        logger.info(f"Refund {refund_id} {refund.status.value} -> {updated.status.value}")
        return updated

    async def get(self, refund_id: str) -> Refund:
        return await run_in_threadpool(self._repository.load, refund_id)

    async def list_for_order(self, order_id: str) -> List[Refund]:
        return await run_in_threadpool(self._repository.list_for_order, order_id)

    async def _save(self, refund: Refund) -> None:
        try:
            await run_in_threadpool(self._repository.save, refund)
        except PersistenceFailure as e:
            logger.error(f"Refund {refund.refund_id} was not saved: {e}")
            raise PersistenceFailure(str(e), result=refund) from e


def _check_remainder(amount: Decimal, remainder: Decimal) -> None:
    if amount > remainder:
        raise AmountExceedsRefundable(amount, remainder)
