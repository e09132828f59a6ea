"""
Service container

每個 application 一個，在 lifespan 中建立並放在 app.state，
每個 TestClient 都會拿到全新的 Room 和 lock。
"""
from dataclasses import dataclass

from fastapi import Request

from api.websocket import WebSocketTransport
from core.cart_manager import CartManager
from core.connection_registry import ConnectionRegistry
from core.event_dispatcher import EventDispatcher
from core.offer_engine import OfferEngine
from core.refund_manager import RefundManager
from core.repositories import SessionFactory, SqlCartRepository, SqlPriceCatalog, SqlRefundRepository
from core.room_manager import RoomManager
from database import Settings


@dataclass
class Services:
    registry: ConnectionRegistry
    transport: WebSocketTransport
    dispatcher: EventDispatcher
    rooms: RoomManager
    carts: CartManager
    offers: OfferEngine
    refunds: RefundManager


def build_services(session_factory: SessionFactory, settings: Settings) -> Services:
    registry = ConnectionRegistry()
    transport = WebSocketTransport()
    dispatcher = EventDispatcher(transport)
    rooms = RoomManager(registry, dispatcher)
    return Services(
        registry=registry,
        transport=transport,
        dispatcher=dispatcher,
        rooms=rooms,
        carts=CartManager(SqlCartRepository(session_factory)),
        offers=OfferEngine(rooms, SqlPriceCatalog(session_factory), decimals=settings.currency_decimals),
        refunds=RefundManager(
            SqlRefundRepository(session_factory),
            refunds_enabled=settings.refunds_enabled,
            decimals=settings.currency_decimals,
        ),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency：取得 service container"""
    return request.app.state.services
