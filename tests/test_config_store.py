"""
Config and Project Cache Store Tests

Module: tests.test_config_store
"""

import asyncio
import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from nadmin_core.core.constants import (
    ADMIN_PASSWORD_HASH_KEY,
    DEVELOPMENT_MODE_KEY,
    SESSION_DURATION_HOURS_KEY,
)
from nadmin_core.persistence import (
    ConfigStore,
    ConfigValueError,
    DocumentStore,
    ProjectCacheStore,
)


class FakeClock:
    """Controllable UTC clock"""

    def __init__(self):
        self.current = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class TestConfigStore(unittest.TestCase):
    """Key/value configuration"""

    def setUp(self):
        """Setup before each test"""
        self.test_dir = tempfile.mkdtemp()
        self.store_path = os.path.join(self.test_dir, "nadmin.db")

    def tearDown(self):
        """Cleanup after each test"""
        if os.path.exists(self.test_dir):
            shutil.rmtree(self.test_dir)

    def test_first_use_initializes_store(self):
        """Test config access initializes the store lazily"""
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            self.assertFalse(store.initialized)
            self.assertIsNone(await config.get("missing"))
            self.assertTrue(store.initialized)
            await store.close()

        asyncio.run(test())

    def test_set_get_roundtrip(self):
        """Test values of every JSON type come back unchanged"""
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            try:
                values = {
                    "string": "value",
                    "number": 42,
                    "float": 1.5,
                    "flag": False,
                    "list": [1, "two", None],
                    "object": {"nested": {"deep": [True]}},
                    "null": None,
                }
                for key, value in values.items():
                    await config.set(key, value)
                for key, value in values.items():
                    self.assertEqual(await config.get(key), value)
            finally:
                await store.close()

        asyncio.run(test())

    def test_set_is_upsert(self):
        """Test setting an existing key replaces the value"""
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            try:
                await config.set("theme", "dark")
                item = await config.set("theme", "light")
                self.assertEqual(item.value, "light")
                self.assertEqual(await config.get("theme"), "light")
                self.assertEqual(store.get_collection("config").count(key="theme"), 1)

                stored = await config.get_item("theme")
                self.assertEqual(stored.value, "light")
                self.assertEqual(stored.updated_at, item.updated_at)
                self.assertIsNone(await config.get_item("missing"))
            finally:
                await store.close()

        asyncio.run(test())

    def test_get_default_and_has(self):
        """Test default is returned only for absent keys"""
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            try:
                self.assertEqual(await config.get("absent", "fallback"), "fallback")
                await config.set("present", None)
                self.assertIsNone(await config.get("present", "fallback"))
                self.assertTrue(await config.has("present"))
                self.assertFalse(await config.has("absent"))
            finally:
                await store.close()

        asyncio.run(test())

    def test_delete(self):
        """Test delete reports whether the key existed"""
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            try:
                await config.set("temp", 1)
                self.assertTrue(await config.delete("temp"))
                self.assertIsNone(await config.get("temp"))
                self.assertFalse(await config.delete("temp"))
            finally:
                await store.close()

        asyncio.run(test())

    def test_known_keys_are_type_checked(self):
        """Test reserved keys reject values of the wrong type"""
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            try:
                with self.assertRaises(ConfigValueError):
                    await config.set(SESSION_DURATION_HOURS_KEY, "24")
                with self.assertRaises(ConfigValueError):
                    await config.set(SESSION_DURATION_HOURS_KEY, True)
                with self.assertRaises(ConfigValueError):
                    await config.set(ADMIN_PASSWORD_HASH_KEY, 123)
                with self.assertRaises(ConfigValueError):
                    await config.set(DEVELOPMENT_MODE_KEY, "false")

                await config.set(SESSION_DURATION_HOURS_KEY, 24)
                await config.set(DEVELOPMENT_MODE_KEY, False)
            finally:
                await store.close()

        asyncio.run(test())

    def test_non_serializable_value_rejected(self):
        """Test values that cannot be stored as JSON are rejected"""
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            try:
                with self.assertRaises(ConfigValueError):
                    await config.set("when", datetime.now())
                with self.assertRaises(ConfigValueError):
                    await config.set("", "value")
            finally:
                await store.close()

        asyncio.run(test())

    def test_is_development_mode(self):
        """Test development mode defaults to True"""
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            try:
                self.assertTrue(await config.is_development_mode())
                await config.set(DEVELOPMENT_MODE_KEY, False)
                self.assertFalse(await config.is_development_mode())
                await config.set(DEVELOPMENT_MODE_KEY, True)
                self.assertTrue(await config.is_development_mode())
            finally:
                await store.close()

        asyncio.run(test())

    def test_values_survive_restart(self):
        """Test config values persist across store instances"""
        async def test():
            store = DocumentStore(self.store_path)
            await ConfigStore(store).set("persisted", {"a": 1})
            await store.close()

            store = DocumentStore(self.store_path)
            try:
                self.assertEqual(await ConfigStore(store).get("persisted"), {"a": 1})
            finally:
                await store.close()

        asyncio.run(test())


    def test_value_reads_back_as_stored_on_disk(self):
        """Test values are kept in JSON form before and after a restart"""
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            item = await config.set("layout", {1: (1, 2)})
            self.assertEqual(item.value, {"1": [1, 2]})
            self.assertEqual(await config.get("layout"), {"1": [1, 2]})
            await store.close()

            store = DocumentStore(self.store_path)
            try:
                self.assertEqual(await ConfigStore(store).get("layout"), {"1": [1, 2]})
            finally:
                await store.close()

        asyncio.run(test())

    def test_non_finite_numbers_rejected(self):
        """Test NaN and infinity cannot be stored"""
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            try:
                with self.assertRaises(ConfigValueError):
                    await config.set("ratio", float("nan"))
                with self.assertRaises(ConfigValueError):
                    await config.set(SESSION_DURATION_HOURS_KEY, float("inf"))
            finally:
                await store.close()

        asyncio.run(test())


class TestProjectCacheStore(unittest.TestCase):
    """Short-lived project cache"""

    def setUp(self):
        """Setup before each test"""
        self.test_dir = tempfile.mkdtemp()
        self.store_path = os.path.join(self.test_dir, "nadmin.db")
        self.clock = FakeClock()

    def tearDown(self):
        """Cleanup after each test"""
        if os.path.exists(self.test_dir):
            shutil.rmtree(self.test_dir)

    def test_fresh_entry_returned(self):
        """Test entries are served within max age"""
        async def test():
            store = DocumentStore(self.store_path, clock=self.clock)
            cache = ProjectCacheStore(store)
            try:
                await cache.set("project", {"services": 3})
                self.clock.advance(minutes=4)
                self.assertEqual(await cache.get("project"), {"services": 3})
            finally:
                await store.close()

        asyncio.run(test())

    def test_stale_entry_expires(self):
        """Test entries older than max age are dropped"""
        async def test():
            store = DocumentStore(self.store_path, clock=self.clock)
            cache = ProjectCacheStore(store)
            try:
                await cache.set("project", {"services": 3})
                self.clock.advance(minutes=6)
                self.assertIsNone(await cache.get("project"))
                self.assertEqual(len(store.get_collection("projectCache")), 0)
            finally:
                await store.close()

        asyncio.run(test())

    def test_cached_value_in_json_form(self):
        """Test cached values read back the way they are persisted"""
        async def test():
            store = DocumentStore(self.store_path, clock=self.clock)
            cache = ProjectCacheStore(store)
            try:
                await cache.set("project", {"ports": (3000, 3021), 5: "five"})
                self.assertEqual(
                    await cache.get("project"), {"ports": [3000, 3021], "5": "five"}
                )
            finally:
                await store.close()

        asyncio.run(test())

    def test_set_refreshes_entry(self):
        """Test re-setting a key resets its age"""
        async def test():
            store = DocumentStore(self.store_path, clock=self.clock)
            cache = ProjectCacheStore(store, max_age=timedelta(seconds=30))
            try:
                await cache.set("project", 1)
                self.clock.advance(seconds=20)
                await cache.set("project", 2)
                self.clock.advance(seconds=20)
                self.assertEqual(await cache.get("project"), 2)
                self.assertIsNone(await cache.get("other"))
            finally:
                await store.close()

        asyncio.run(test())


if __name__ == "__main__":
    unittest.main()
