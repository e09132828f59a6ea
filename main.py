from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from typing import Optional
import logging

import models  # noqa: F401  把資料表註冊到 Base.metadata
from database import Base, Settings, engine as default_engine, get_settings
from api import carts, refunds, rooms, websocket
from api.deps import build_services


def create_app(db_engine: Optional[Engine] = None, settings: Optional[Settings] = None) -> FastAPI:
    db_engine = db_engine or default_engine
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: 建立資料庫表和全新的記憶體 Room 狀態
        Base.metadata.create_all(bind=db_engine)
        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
        app.state.services = build_services(session_factory, settings)
        yield
        # Shutdown: 停止尚未送出的 Room event
        await app.state.services.dispatcher.close()

    app = FastAPI(
        title="Live Shop API",
        description="Live shopping rooms, cart sync, room offers and refunds",
        version="1.0.0",
        lifespan=lifespan
    )

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure this properly in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(carts.router)
    app.include_router(rooms.router)
    app.include_router(refunds.router)
    app.include_router(websocket.router)

    @app.get("/")
    def root():
        return {"message": "Live Shop API", "status": "ok"}

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
