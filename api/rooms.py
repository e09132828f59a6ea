"""
Room API Endpoints

成員變更只走 WebSocket gateway；這個 router 負責查詢 Room 和管理 offer。
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
import logging

from api.deps import Services, get_services
from core.exceptions import RoomNotFound, ValidationError
from core.room_manager import make_offer
from schemas import OfferBind, RoomResponse

router = APIRouter(prefix="/api/rooms", tags=["rooms"])
logger = logging.getLogger(__name__)


@router.get("", response_model=List[RoomResponse])
def list_rooms(services: Services = Depends(get_services)):
    """
    列出進行中的 Room（至少有一個成員）
    """
    rooms = services.rooms
    return [RoomResponse.from_room(rooms.get_room(room_id)) for room_id in sorted(rooms.room_ids())]


@router.get("/{room_id}", response_model=RoomResponse)
def get_room(room_id: str, services: Services = Depends(get_services)):
    try:
        return RoomResponse.from_room(services.rooms.get_room(room_id))

    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")


@router.put("/{room_id}/offer", response_model=RoomResponse)
async def bind_offer(room_id: str, body: OfferBind, services: Services = Depends(get_services)):
    """
    把折扣綁到進行中的 Room

    Offer 的生命週期跟 Room 相同：最後一個成員離開，offer 也一起消失。
    沒有時區的 expiresAt 視為 UTC。
    """
    try:
        offer = make_offer(body.offer_id, room_id, body.discount_percent, body.expires_at)
        room = await services.rooms.bind_offer(room_id, offer)
        return RoomResponse.from_room(room)

    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to bind offer: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/{room_id}/offer", response_model=RoomResponse)
async def clear_offer(room_id: str, services: Services = Depends(get_services)):
    try:
        room = await services.rooms.clear_offer(room_id)
        return RoomResponse.from_room(room)

    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    except Exception as e:
        logger.error(f"Failed to clear offer: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
