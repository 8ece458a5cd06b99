"""
Core module - Configuration, database, Redis, scheduling, email and gateway clients.
"""

from tuitionpay.core.config import get_settings, settings
from tuitionpay.core.database import Base, close_db, get_db, init_db
from tuitionpay.core.redis import close_redis, get_redis_client, init_redis

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Redis
    "get_redis_client",
    "init_redis",
    "close_redis",
]
