"""
Project Cache Store - Short-lived cache of project information

Module: persistence.cache_store
Date: 2025-11-28
Version: 0.1.0

Entries expire after max_age; an expired entry is removed on the read
that discovers it.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from ..core.constants import PROJECT_CACHE_COLLECTION, PROJECT_CACHE_MAX_AGE
from .config_store import check_config_value
from .document_store import Collection, DocumentStore


class ProjectCacheStore:
    """Cache of project information keyed by name"""

    def __init__(self, store: DocumentStore, max_age: timedelta = PROJECT_CACHE_MAX_AGE):
        self.logger = logging.getLogger("persistence.cache_store")
        self.store = store
        self.max_age = max_age

    async def _collection(self) -> Collection:
        await self.store.initialize()
        return self.store.get_collection(PROJECT_CACHE_COLLECTION)

    async def get(self, key: str) -> Optional[Any]:
        """Cached value, or None if absent or older than max_age"""
        collection = await self._collection()
        doc = collection.find_one(key=key)
        if doc is None:
            return None

        cached_at = datetime.fromisoformat(doc["cached_at"])
        if self.store.now() - cached_at > self.max_age:
            collection.remove(doc)
            self.logger.debug(f"Cache entry expired: {key}")
            return None
        return doc.get("value")

    async def set(self, key: str, value: Any) -> None:
        value = check_config_value(key, value)
        collection = await self._collection()
        cached_at = self.store.now().isoformat()

        existing = collection.find_one(key=key)
        if existing:
            existing["value"] = value
            existing["cached_at"] = cached_at
            collection.update(existing)
        else:
            collection.insert({"key": key, "value": value, "cached_at": cached_at})
