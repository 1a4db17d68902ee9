"""Storage layer - Database schemas, repositories and run locks."""

from polymarket_copy_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from polymarket_copy_tracker.storage.locks import (
    RedisRunLockManager,
    RunLocker,
    RunLockManager,
    RunLockTimeoutError,
)
from polymarket_copy_tracker.storage.models import Base, CopyTradeModel, CopyTradeRunModel
from polymarket_copy_tracker.storage.repos import RunRepository, RunStore, open_run_store

__all__ = [
    "Base",
    "CopyTradeModel",
    "CopyTradeRunModel",
    "DatabaseManager",
    "RedisRunLockManager",
    "RunLockManager",
    "RunLockTimeoutError",
    "RunLocker",
    "RunRepository",
    "RunStore",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
    "open_run_store",
]
