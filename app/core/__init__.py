"""Core package initialization."""
from app.core.config import settings
from app.core.database import Base, get_db, init_db, close_db
from app.core.redis import get_redis, close_redis
from app.core.cache import CacheManager

__all__ = ["settings", "Base", "get_db", "init_db", "close_db", "get_redis", "close_redis", "CacheManager"]
