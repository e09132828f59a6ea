import asyncio
import time
from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import models  # noqa: F401
from core.cart_manager import CartManager
from core.connection_registry import ConnectionRegistry
from core.entities import Cart
from core.event_dispatcher import EventDispatcher
from core.exceptions import PersistenceFailure, ProductPriceNotFound
from core.refund_manager import RefundManager
from core.repositories import SqlCartRepository, SqlRefundRepository
from core.room_manager import RoomManager
from database import Base, Settings, create_db_engine
from main import create_app


class RecordingTransport:
    """Transport double: remembers every send, in order"""

    def __init__(self):
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self.discarded: List[str] = []
        self.delivered = asyncio.Event()

    async def send(self, connection_id: str, message: Dict[str, Any]) -> None:
        self.sent.append((connection_id, message))
        self.delivered.set()

    def discard(self, connection_id: str) -> None:
        self.discarded.append(connection_id)

    def events_for(self, connection_id: str) -> List[Dict[str, Any]]:
        return [message for cid, message in self.sent if cid == connection_id]

    def event_names(self) -> List[Tuple[str, str, str]]:
        return [(message["event"], message["roomId"], cid) for cid, message in self.sent]


class InMemoryCartRepository:
    """Cart repository double; `fail_saves` makes every save fail"""

    def __init__(self, delay: float = 0.0):
        self.carts: Dict[str, Cart] = {}
        self.fail_saves = False
        self.delay = delay
        self.saves = 0

    def load(self, owner_id: str) -> Cart:
        if self.delay:
            time.sleep(self.delay)
        cart = self.carts.get(owner_id)
        return cart.copy() if cart else Cart(owner_id=owner_id)

    def save(self, cart: Cart) -> None:
        if self.fail_saves:
            raise PersistenceFailure(f"store unavailable for {cart.owner_id}")
        self.saves += 1
        self.carts[cart.owner_id] = cart.copy()


class StaticPriceCatalog:
    def __init__(self, prices: Dict[Tuple[str, Optional[str]], str]):
        self._prices = {key: Decimal(value) for key, value in prices.items()}

    def prices_for(self, keys):
        result = {}
        for key in keys:
            price = self._prices.get((key.product_id, key.variant_id), self._prices.get((key.product_id, None)))
            if price is None:
                raise ProductPriceNotFound(key.product_id, key.variant_id)
            result[key] = price
        return result


@pytest.fixture
def db_engine(tmp_path):
    # a file database: threadpool workers each get their own connection
    engine = create_db_engine(f"sqlite:///{tmp_path / 'live_shop_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def dispatcher(transport) -> EventDispatcher:
    return EventDispatcher(transport)


@pytest.fixture
def rooms(registry, dispatcher) -> RoomManager:
    return RoomManager(registry, dispatcher)


@pytest.fixture
def memory_carts() -> InMemoryCartRepository:
    return InMemoryCartRepository()


@pytest.fixture
def cart_repository(session_factory) -> SqlCartRepository:
    return SqlCartRepository(session_factory)


@pytest.fixture
def carts(cart_repository) -> CartManager:
    return CartManager(cart_repository)


@pytest.fixture
def refund_repository(session_factory) -> SqlRefundRepository:
    return SqlRefundRepository(session_factory)


@pytest.fixture
def refunds(refund_repository) -> RefundManager:
    return RefundManager(refund_repository)


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite://", refunds_enabled=True, currency_decimals=2)


@pytest.fixture
def client(db_engine, settings) -> Generator[TestClient, None, None]:
    app = create_app(db_engine=db_engine, settings=settings)
    with TestClient(app) as c:
        yield c
