from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, Session
from sqlalchemy.pool import StaticPool
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache, wraps
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    database_url: str = "sqlite:///./live_shop.db"
    refunds_enabled: bool = True
    # 退款與價格欄位是 Numeric(12, 2)
    currency_decimals: int = Field(default=2, ge=0, le=2)
    log_level: str = "INFO"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def create_db_engine(database_url: str) -> Engine:
    """
    依 URL 建立 Engine

    注意：
        - SQLite 需要 connect_args={"check_same_thread": False}
          （repository 在 threadpool 中執行，不在 event loop 的執行緒）
        - In-memory SQLite 另外需要 StaticPool，所有 session 才會看到同一個資料庫
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


engine = create_db_engine(settings.database_url)
Base = declarative_base()


def transactional(func):
    """
    Transaction decorator：確保資料庫操作的原子性

    使用方式：
        @transactional
        def save_cart(db: Session, cart):
            db.merge(...)
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - 異常會被重新拋出（讓上層處理）

    注意：
        - 第一個參數（或 `db` kwarg）必須是 Session
        - 支援 bound method：Session 可以排在 `self` 之後
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = None
        for arg in args[:2]:
            if isinstance(arg, Session):
                db = arg
                break
        if db is None and 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
