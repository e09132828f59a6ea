"""
狀態機：所有退款狀態變更都經過這裡

Refund 狀態：
    PENDING -> APPROVED  （需要 transaction_id）
    PENDING -> REJECTED  （需要 rejection_reason）
    APPROVED / REJECTED 是終態

單向且只處理一次：已經結束的退款不能再處理。
"""
from dataclasses import replace
from datetime import datetime
from typing import Dict, Optional, Set

from core.entities import Refund, utcnow
from core.exceptions import InvalidStateTransition, ValidationError
from models import RefundStatus


class RefundStateMachine:
    """退款狀態轉換"""

    TRANSITIONS: Dict[RefundStatus, Set[RefundStatus]] = {
        RefundStatus.PENDING: {RefundStatus.APPROVED, RefundStatus.REJECTED},
        RefundStatus.APPROVED: set(),
        RefundStatus.REJECTED: set(),
    }

    @classmethod
    def can_transition(cls, current: RefundStatus, target: RefundStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_final(cls, status: RefundStatus) -> bool:
        return not cls.TRANSITIONS.get(status)

    @classmethod
    def transition(
        cls,
        refund: Refund,
        target: RefundStatus,
        transaction_id: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Refund:
        """
        把退款轉到 `target`

        先檢查狀態再檢查欄位：已經結束的退款不論送什麼都得到 InvalidStateTransition。

        參數：
            refund: 目前的退款（不會被修改）
            target: APPROVED 或 REJECTED
            transaction_id: 付款端的交易編號，APPROVED 必填
            rejection_reason: REJECTED 必填
            notes: 有提供時取代原本的備註

        返回：
            目標狀態的新 Refund

        異常：
            InvalidStateTransition: 退款已結束，或無法轉到目標狀態
            ValidationError: 缺少必要欄位
        """
        if not cls.can_transition(refund.status, target):
            raise InvalidStateTransition(
                f"Refund {refund.refund_id} cannot go from {refund.status.value} to {target.value}"
            )

        if target == RefundStatus.APPROVED and not _present(transaction_id):
            raise ValidationError("transaction_id is required to approve a refund")
        if target == RefundStatus.REJECTED and not _present(rejection_reason):
            raise ValidationError("rejection_reason is required to reject a refund")

        return replace(
            refund,
            status=target,
            transaction_id=transaction_id if target == RefundStatus.APPROVED else refund.transaction_id,
            rejection_reason=rejection_reason if target == RefundStatus.REJECTED else refund.rejection_reason,
            notes=notes if notes is not None else refund.notes,
            processed_at=now or utcnow(),
        )


def _present(value: Optional[str]) -> bool:
    return value is not None and bool(value.strip())
