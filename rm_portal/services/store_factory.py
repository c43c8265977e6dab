from __future__ import annotations

from functools import lru_cache

from rm_portal.config import settings
from rm_portal.services.memory_record_store import InMemoryRecordStore
from rm_portal.services.record_store import RecordStore


@lru_cache(maxsize=1)
def get_record_store() -> RecordStore:
    backend = settings.record_store.strip().lower()
    if backend == 'sql':
        from rm_portal.db import engine
        from rm_portal.services.sql_record_store import SqlRecordStore

        return SqlRecordStore(engine)
    return InMemoryRecordStore()
