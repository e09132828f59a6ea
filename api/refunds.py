"""
Refund API Endpoints

異常對應：
- ValidationError          -> 422
- AmountExceedsRefundable  -> 400
- RefundsDisabled          -> 403
- RefundNotFound           -> 404
- InvalidStateTransition   -> 409
- PersistenceFailure       -> 503
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from api.deps import Services, get_services
from core.exceptions import (
    AmountExceedsRefundable,
    InvalidStateTransition,
    PersistenceFailure,
    RefundNotFound,
    RefundsDisabled,
    ValidationError,
)
from schemas import RefundCreate, RefundProcess, RefundResponse

router = APIRouter(prefix="/api/refunds", tags=["refunds"])
logger = logging.getLogger(__name__)


@router.post("", response_model=RefundResponse, status_code=201)
async def create_refund(body: RefundCreate, services: Services = Depends(get_services)):
    """
    申請退款（建立為 PENDING）
    """
    try:
        refund = await services.refunds.create(
            order_id=body.order_id,
            amount=body.amount,
            reason=body.reason,
            refundable_remainder=body.refundable_remainder,
            method=body.method,
            return_id=body.return_id,
            notes=body.notes,
        )
        return RefundResponse.from_refund(refund)

    except RefundsDisabled as e:
        raise HTTPException(status_code=403, detail=str(e))
    except AmountExceedsRefundable as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PersistenceFailure:
        raise HTTPException(status_code=503, detail="Refund could not be saved, retry later")
    except Exception as e:
        logger.error(f"Failed to create refund: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{refund_id}/process", response_model=RefundResponse)
async def process_refund(refund_id: str, body: RefundProcess, services: Services = Depends(get_services)):
    """
    核准（需要 transactionId）或拒絕（需要 rejectionReason）

    每筆退款只會被處理一次，第二次呼叫得到 409。
    """
    try:
        refund = await services.refunds.process(
            refund_id,
            body.status,
            transaction_id=body.transaction_id,
            rejection_reason=body.rejection_reason,
            notes=body.notes,
            refundable_remainder=body.refundable_remainder,
        )
        return RefundResponse.from_refund(refund)

    except RefundNotFound:
        raise HTTPException(status_code=404, detail="Refund not found")
    except InvalidStateTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except AmountExceedsRefundable as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PersistenceFailure:
        raise HTTPException(status_code=503, detail="Refund could not be saved, retry later")
    except Exception as e:
        logger.error(f"Failed to process refund: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{refund_id}", response_model=RefundResponse)
async def get_refund(refund_id: str, services: Services = Depends(get_services)):
    try:
        return RefundResponse.from_refund(await services.refunds.get(refund_id))

    except RefundNotFound:
        raise HTTPException(status_code=404, detail="Refund not found")
    except Exception as e:
        logger.error(f"Failed to get refund: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("", response_model=List[RefundResponse])
async def list_refunds(order_id: str = Query(..., alias="orderId"), services: Services = Depends(get_services)):
    try:
        refunds = await services.refunds.list_for_order(order_id)
        return [RefundResponse.from_refund(r) for r in refunds]

    except Exception as e:
        logger.error(f"Failed to list refunds: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
