"""
Document Store - Embedded JSON document store with named collections

Module: persistence.document_store
Date: 2025-12-02
Version: 0.2.0

CHANGELOG:
[2025-12-02 v0.2.0] Lazy initialization and background tasks
  - Single shared initialization task for concurrent first callers
  - Periodic autosave decoupled from writes
  - TTL reaper per collection

[2025-11-28 v0.1.0] Initial implementation
  - Collections with unique constraints and hash indices
  - Atomic writes (temp file + rename), 0600 permissions
  - Automatic directory creation

ARCHITECTURE:
DocumentStore owns every collection and the file that backs them:
  - One JSON file holds all collections (including ones this package
    does not declare, which are preserved verbatim)
  - Mutations apply to memory only and mark the store dirty
  - The autosave task flushes dirty state every autosave_interval seconds
  - Collections with a TTL are swept by a reaper task and additionally
    hide stale documents on read

SECURITY NOTES:
- Store file is written with 0600 permissions
- A crash between a mutation and the next autosave loses that mutation
- Single writer process only; there is no cross-process locking
"""

import asyncio
import copy
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..core.constants import (
    AUDIT_LOG_COLLECTION,
    AUDIT_LOG_TTL,
    AUDIT_LOG_TTL_INTERVAL,
    CONFIG_COLLECTION,
    DEFAULT_AUTOSAVE_INTERVAL,
    PROJECT_CACHE_COLLECTION,
    SESSIONS_COLLECTION,
    SESSIONS_TTL,
    SESSIONS_TTL_INTERVAL,
    STORE_FORMAT_VERSION,
)


class StoreError(Exception):
    """Base document store error"""
    pass


class StoreIOError(StoreError):
    """File I/O error"""
    pass


class StoreFormatError(StoreError):
    """Store file is not a valid snapshot"""
    pass


class StoreNotInitializedError(StoreError):
    """Collection accessed before the store finished initializing"""
    pass


class UniqueConstraintError(StoreError):
    """Insert or update would duplicate a unique field"""
    pass


class DocumentNotFoundError(StoreError):
    """Update target is not part of the collection"""
    pass


@dataclass(frozen=True)
class CollectionSpec:
    """Declared shape of a collection"""
    name: str
    unique: Tuple[str, ...] = ()
    indices: Tuple[str, ...] = ()
    ttl: Optional[timedelta] = None
    ttl_interval: Optional[timedelta] = None


DEFAULT_COLLECTIONS: Tuple[CollectionSpec, ...] = (
    CollectionSpec(CONFIG_COLLECTION, unique=("key",), indices=("key",)),
    CollectionSpec(
        SESSIONS_COLLECTION,
        unique=("token",),
        indices=("token", "user_id"),
        ttl=SESSIONS_TTL,
        ttl_interval=SESSIONS_TTL_INTERVAL,
    ),
    CollectionSpec(PROJECT_CACHE_COLLECTION, unique=("key",), indices=("key",)),
    CollectionSpec(
        AUDIT_LOG_COLLECTION,
        indices=("action", "user_id"),
        ttl=AUDIT_LOG_TTL,
        ttl_interval=AUDIT_LOG_TTL_INTERVAL,
    ),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _index_key(value: Any) -> Any:
    """Hashable form of a field value"""
    try:
        hash(value)
        return value
    except TypeError:
        return json.dumps(value, sort_keys=True, default=str)


class Collection:
    """
    In-memory collection of JSON documents.

    Documents carry an integer `_id` and a `_meta` dict with `created`
    and `updated` epoch timestamps. Callers always receive copies; changes
    are committed with update().
    """

    def __init__(
        self,
        store: "DocumentStore",
        spec: CollectionSpec,
        documents: Optional[Iterable[Dict[str, Any]]] = None,
        next_id: int = 1,
    ):
        self.store = store
        self.spec = spec
        self.logger = logging.getLogger(f"persistence.collection.{spec.name}")
        self._docs: Dict[int, Dict[str, Any]] = {}
        self._next_id = next_id
        self._unique: Dict[str, Dict[Any, int]] = {f: {} for f in spec.unique}
        self._index: Dict[str, Dict[Any, Set[int]]] = {
            f: {} for f in spec.indices if f not in spec.unique
        }

        for doc in documents or []:
            doc_id = int(doc["_id"])
            self._docs[doc_id] = doc
            self._add_to_indices(doc_id, doc)
            self._next_id = max(self._next_id, doc_id + 1)

    @property
    def name(self) -> str:
        return self.spec.name

    def __len__(self) -> int:
        return len(self._docs)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a document

        Args:
            document: JSON-serializable dict (without `_id`)

        Returns:
            Copy of the stored document, including `_id` and `_meta`

        Raises:
            UniqueConstraintError: If a unique field value already exists
        """
        self.store.ensure_initialized()
        doc = copy.deepcopy(document)
        doc.pop("_id", None)
        self._check_unique(doc, exclude_id=None)

        now = self.store.now().timestamp()
        doc_id = self._next_id
        self._next_id += 1
        doc["_id"] = doc_id
        doc["_meta"] = {"created": now, "updated": now}

        self._docs[doc_id] = doc
        self._add_to_indices(doc_id, doc)
        self.store.mark_dirty()
        return copy.deepcopy(doc)

    def update(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace a stored document (matched by `_id`)

        Raises:
            DocumentNotFoundError: If `_id` is unknown
            UniqueConstraintError: If a unique field would collide
        """
        self.store.ensure_initialized()
        doc_id = document.get("_id")
        current = self._docs.get(doc_id)
        if current is None:
            raise DocumentNotFoundError(f"Document {doc_id} not in '{self.name}'")

        doc = copy.deepcopy(document)
        self._check_unique(doc, exclude_id=doc_id)

        meta = dict(current.get("_meta", {}))
        meta["updated"] = self.store.now().timestamp()
        doc["_meta"] = meta

        self._remove_from_indices(doc_id, current)
        self._docs[doc_id] = doc
        self._add_to_indices(doc_id, doc)
        self.store.mark_dirty()
        return copy.deepcopy(doc)

    def remove(self, document: Dict[str, Any]) -> bool:
        """Remove a document by `_id`; returns False if it was not present"""
        self.store.ensure_initialized()
        return self._remove_id(document.get("_id"))

    def remove_where(self, predicate: Callable[[Dict[str, Any]], bool]) -> int:
        """Remove every document matching predicate; returns the count"""
        self.store.ensure_initialized()
        doomed = [doc_id for doc_id, doc in self._docs.items() if predicate(doc)]
        for doc_id in doomed:
            self._remove_id(doc_id)
        return len(doomed)

    def reap_expired(self) -> int:
        """Remove documents older than the collection TTL"""
        self.store.ensure_initialized()
        if self.spec.ttl is None:
            return 0
        now = self.store.now().timestamp()
        removed = self.remove_where(lambda doc: self._is_stale(doc, now))
        if removed:
            self.logger.debug(f"TTL reaper removed {removed} documents")
        return removed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_one(self, **query: Any) -> Optional[Dict[str, Any]]:
        """First live document whose fields equal the query, or None"""
        matches = self._matches(query)
        return copy.deepcopy(matches[0]) if matches else None

    def find(
        self,
        predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
        **query: Any,
    ) -> List[Dict[str, Any]]:
        """All live documents matching query and predicate, in insertion order"""
        return [
            copy.deepcopy(doc)
            for doc in self._matches(query)
            if predicate is None or predicate(doc)
        ]

    def count(self, **query: Any) -> int:
        return len(self._matches(query))

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "next_id": self._next_id,
            "documents": [self._docs[i] for i in sorted(self._docs)],
        }

    @classmethod
    def from_snapshot(
        cls,
        store: "DocumentStore",
        spec: CollectionSpec,
        raw: Optional[Dict[str, Any]],
    ) -> "Collection":
        if not raw:
            return cls(store, spec)
        try:
            if not isinstance(raw.get("documents", []), list):
                raise TypeError("documents is not a list")
            return cls(
                store,
                spec,
                documents=raw.get("documents", []),
                next_id=int(raw.get("next_id", 1)),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StoreFormatError(f"Collection '{spec.name}' is malformed: {e}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _matches(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Live documents matching query; stale candidates seen on the way are removed"""
        self.store.ensure_initialized()
        now = self.store.now().timestamp()
        stale: List[int] = []
        matches: List[Dict[str, Any]] = []

        for doc_id in self._candidate_ids(query):
            doc = self._docs.get(doc_id)
            if doc is None:
                continue
            if self._is_stale(doc, now):
                stale.append(doc_id)
                continue
            if all(doc.get(k) == v for k, v in query.items()):
                matches.append(doc)

        for doc_id in stale:
            self._remove_id(doc_id)
        return matches

    def _candidate_ids(self, query: Dict[str, Any]) -> List[int]:
        for fld, value in query.items():
            if fld in self._unique:
                hit = self._unique[fld].get(_index_key(value))
                return [] if hit is None else [hit]
        for fld, value in query.items():
            if fld in self._index:
                return sorted(self._index[fld].get(_index_key(value), ()))
        return sorted(self._docs)

    def _is_stale(self, doc: Dict[str, Any], now: float) -> bool:
        if self.spec.ttl is None:
            return False
        meta = doc.get("_meta") or {}
        touched = meta.get("updated") or meta.get("created")
        if touched is None:
            return False
        return now - touched > self.spec.ttl.total_seconds()

    def _check_unique(self, doc: Dict[str, Any], exclude_id: Optional[int]) -> None:
        for fld, values in self._unique.items():
            value = doc.get(fld)
            if value is None:
                continue
            owner = values.get(_index_key(value))
            if owner is not None and owner != exclude_id:
                raise UniqueConstraintError(
                    f"Duplicate value for unique field '{fld}' in '{self.name}'"
                )

    def _add_to_indices(self, doc_id: int, doc: Dict[str, Any]) -> None:
        for fld, values in self._unique.items():
            if doc.get(fld) is not None:
                values[_index_key(doc[fld])] = doc_id
        for fld, buckets in self._index.items():
            if fld in doc:
                buckets.setdefault(_index_key(doc[fld]), set()).add(doc_id)

    def _remove_from_indices(self, doc_id: int, doc: Dict[str, Any]) -> None:
        for fld, values in self._unique.items():
            if doc.get(fld) is not None:
                values.pop(_index_key(doc[fld]), None)
        for fld, buckets in self._index.items():
            if fld in doc:
                key = _index_key(doc[fld])
                bucket = buckets.get(key)
                if bucket is not None:
                    bucket.discard(doc_id)
                    if not bucket:
                        del buckets[key]

    def _remove_id(self, doc_id: Any) -> bool:
        doc = self._docs.pop(doc_id, None)
        if doc is None:
            return False
        self._remove_from_indices(doc_id, doc)
        self.store.mark_dirty()
        return True


class DocumentStore:
    """
    Lazily-initialized, autosaving document store.

    Typical usage:
        store = DocumentStore("./data/nadmin.db")
        await store.initialize()
        sessions = store.get_collection("sessions")
        ...
        await store.close()
    """

    def __init__(
        self,
        file_path: str,
        collections: Iterable[CollectionSpec] = DEFAULT_COLLECTIONS,
        autosave_interval: float = DEFAULT_AUTOSAVE_INTERVAL,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize document store (no I/O happens until initialize())

        Args:
            file_path: Path of the JSON store file
            collections: Collections to create or restore
            autosave_interval: Seconds between autosave ticks
            clock: Returns the current aware UTC datetime (tests inject one)
        """
        self.logger = logging.getLogger("persistence.document_store")
        self.file_path = Path(file_path)
        self.specs: Dict[str, CollectionSpec] = {s.name: s for s in collections}
        self.autosave_interval = autosave_interval
        self._clock = clock or _utcnow

        self._collections: Dict[str, Collection] = {}
        self._foreign: Dict[str, Any] = {}
        self._initialized = False
        self._init_task: Optional[asyncio.Task] = None
        self._background: List[asyncio.Task] = []
        self._save_task: Optional[asyncio.Task] = None
        self._save_lock: Optional[asyncio.Lock] = None
        self._dirty = False

        self._io_lock = threading.Lock()
        self._snapshot_seq = 0
        self._written_seq = 0

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def dirty(self) -> bool:
        return self._dirty

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Load the store file and start background tasks (idempotent)

        Concurrent callers share one initialization task. A failed
        initialization is re-raised to every waiter and may be retried.

        Raises:
            StoreFormatError: If the file is not a valid snapshot
            StoreIOError: If the file cannot be read
        """
        if self._initialized:
            return

        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(
                self._initialize()
            )
        task = self._init_task
        await asyncio.shield(task)

    async def _initialize(self) -> None:
        try:
            loop = asyncio.get_running_loop()
            snapshot = await loop.run_in_executor(None, self._read_snapshot)
            self._restore(snapshot)
            self._save_lock = asyncio.Lock()
            self._dirty = False
            self._initialized = True
            self._start_background_tasks()
            self.logger.info(
                f"Store initialized at {self.file_path} "
                f"({len(self._collections)} collections)"
            )
        except StoreError as e:
            self.logger.error(f"Store initialization failed: {e}")
            raise
        finally:
            self._init_task = None

    async def close(self) -> None:
        """Stop background tasks, flush pending changes, release collections"""
        if self._init_task is not None:
            await asyncio.gather(self._init_task, return_exceptions=True)
        if not self._initialized:
            return

        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background = []

        if self._save_task is not None:
            await asyncio.gather(self._save_task, return_exceptions=True)
            self._save_task = None

        try:
            if self._dirty:
                await self.save()
        finally:
            self._initialized = False
            self._collections = {}
            self._foreign = {}
            self.logger.info(f"Store closed: {self.file_path}")

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def ensure_initialized(self) -> None:
        if not self._initialized:
            raise StoreNotInitializedError(
                f"Store {self.file_path} used before initialize() completed"
            )

    def get_collection(self, name: str) -> Collection:
        """
        Get a declared collection

        Raises:
            StoreNotInitializedError: If initialize() has not completed
            StoreError: If the collection was not declared
        """
        self.ensure_initialized()
        try:
            return self._collections[name]
        except KeyError:
            raise StoreError(f"Unknown collection '{name}'") from None

    def list_collections(self) -> List[str]:
        self.ensure_initialized()
        return sorted(self._collections)

    def mark_dirty(self) -> None:
        self._dirty = True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(self) -> None:
        """
        Flush the in-memory state to disk (atomic write)

        Raises:
            StoreNotInitializedError: If the store is not initialized
            StoreIOError: If the write fails
        """
        self.ensure_initialized()
        async with self._save_lock:
            self._snapshot_seq += 1
            seq = self._snapshot_seq
            payload = json.dumps(self._snapshot(), indent=2, default=str)
            self._dirty = False
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._write_atomic, payload, seq)
            except StoreIOError:
                self._dirty = True
                raise

    def schedule_save(self) -> None:
        """Request a prompt flush without waiting for it"""
        self.ensure_initialized()
        if self._save_task is not None and not self._save_task.done():
            return
        self._save_task = asyncio.get_running_loop().create_task(self._flush())

    async def _flush(self) -> None:
        try:
            await self.save()
        except StoreError as e:
            self.logger.error(f"Flush failed: {e}")

    def _snapshot(self) -> Dict[str, Any]:
        collections: Dict[str, Any] = dict(self._foreign)
        for name, collection in self._collections.items():
            collections[name] = collection.to_snapshot()
        return {
            "version": STORE_FORMAT_VERSION,
            "saved_at": self.now().isoformat(),
            "collections": collections,
        }

    def _restore(self, snapshot: Optional[Dict[str, Any]]) -> None:
        raw_collections = (snapshot or {}).get("collections", {})
        self._collections = {
            name: Collection.from_snapshot(self, spec, raw_collections.get(name))
            for name, spec in self.specs.items()
        }
        self._foreign = {
            name: raw for name, raw in raw_collections.items() if name not in self.specs
        }

    def _read_snapshot(self) -> Optional[Dict[str, Any]]:
        """
        Read the store file (runs in the executor)

        Returns:
            Parsed snapshot, or None if the file does not exist yet
        """
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreIOError(f"Cannot create {self.file_path.parent}: {e}")

        if not self.file_path.exists():
            self.logger.info(f"No store file yet, starting empty: {self.file_path}")
            return None

        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StoreFormatError(f"Invalid JSON in {self.file_path}: {e}")
        except OSError as e:
            raise StoreIOError(f"Failed to read {self.file_path}: {e}")

        if not isinstance(data, dict) or not isinstance(data.get("collections", {}), dict):
            raise StoreFormatError(f"Unexpected snapshot layout in {self.file_path}")
        return data

    def _write_atomic(self, payload: str, seq: int) -> None:
        """
        Atomic write: write to temp file, then rename (runs in the executor)

        Older snapshots that lose the race to a newer one are dropped.

        Raises:
            StoreIOError: If write fails
        """
        with self._io_lock:
            if seq <= self._written_seq:
                return
            temp_path = self.file_path.with_name(self.file_path.name + ".tmp")
            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                with open(temp_path, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                temp_path.replace(self.file_path)
                # rw-------
                self.file_path.chmod(0o600)
            except OSError as e:
                raise StoreIOError(f"Failed to write {self.file_path}: {e}")
            self._written_seq = seq

    def _start_background_tasks(self) -> None:
        loop = asyncio.get_running_loop()
        self._background.append(loop.create_task(self._autosave_loop()))
        for collection in self._collections.values():
            if collection.spec.ttl is not None:
                interval = collection.spec.ttl_interval or collection.spec.ttl
                self._background.append(
                    loop.create_task(self._reaper_loop(collection, interval))
                )

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self.autosave_interval)
            if self._dirty:
                await self._flush()

    async def _reaper_loop(self, collection: Collection, interval: timedelta) -> None:
        while True:
            await asyncio.sleep(interval.total_seconds())
            collection.reap_expired()


# ============================================================================
# Unit Tests
# ============================================================================

if __name__ == "__main__":
    import unittest
    import tempfile
    import shutil

    class TestDocumentStore(unittest.TestCase):
        """Test suite for DocumentStore"""

        def setUp(self):
            """Setup before each test"""
            self.test_dir = tempfile.mkdtemp()
            self.store_path = os.path.join(self.test_dir, "test.db")

        def tearDown(self):
            """Cleanup after each test"""
            if os.path.exists(self.test_dir):
                shutil.rmtree(self.test_dir)

        def test_save_and_reload(self):
            """Test a saved document survives a new store instance"""
            async def test():
                store = DocumentStore(self.store_path)
                await store.initialize()
                store.get_collection(CONFIG_COLLECTION).insert({"key": "a", "value": 1})
                await store.close()

                reopened = DocumentStore(self.store_path)
                await reopened.initialize()
                doc = reopened.get_collection(CONFIG_COLLECTION).find_one(key="a")
                self.assertEqual(doc["value"], 1)
                await reopened.close()

            asyncio.run(test())

        def test_file_permissions(self):
            """Test file has restrictive permissions"""
            async def test():
                store = DocumentStore(self.store_path)
                await store.initialize()
                await store.save()
                await store.close()

            asyncio.run(test())
            mode = os.stat(self.store_path).st_mode & 0o777
            self.assertEqual(mode, 0o600)

    unittest.main()
