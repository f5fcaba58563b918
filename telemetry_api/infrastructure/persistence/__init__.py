from .base import DurableStore, MessageLogQuery, ReadingStatistics
from .sql_store import SqlStore

__all__ = ["DurableStore", "MessageLogQuery", "ReadingStatistics", "SqlStore"]
