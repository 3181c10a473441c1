#!/usr/bin/env python3

import unittest
import sys
import os

# Add parent directory to path to import modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from index_naming import families_for
from index_cleaner import IndexCleaner
from rollover import RolloverEngine
from fake_store import FakeClock, FakeIndexStore

DAILY_INDICES = [
    "jaeger-span-2019-01-01",
    "jaeger-span-2019-01-02",
    "jaeger-service-2019-01-01",
    "jaeger-dependencies-2019-01-01",
]
STATIC_ARCHIVE = "jaeger-span-archive"
MAIN_ROLLOVER_OLD = ["jaeger-span-000001", "jaeger-service-000001", "jaeger-dependencies-000001"]
MAIN_ROLLOVER_CURRENT = ["jaeger-span-000002", "jaeger-service-000002", "jaeger-dependencies-000002"]
ARCHIVE_ROLLOVER_OLD = ["jaeger-span-archive-000001"]
ARCHIVE_ROLLOVER_CURRENT = ["jaeger-span-archive-000002"]


def with_prefix(prefix, names):
    return {f"{prefix}-{name}" if prefix else name for name in names}


class TestLifecycleIntegration(unittest.TestCase):
    """Integration test: bootstrap and roll every family, then clean with each mode"""

    def setUp(self):
        self.clock = FakeClock()
        self.store = FakeIndexStore(self.clock)
        self.engine = RolloverEngine(self.store, clock=self.clock)

    def populate(self, prefix=""):
        for name in with_prefix(prefix, DAILY_INDICES + [STATIC_ARCHIVE]):
            self.store.create_index(name)
        for archive in (True, False):
            for family in families_for(archive):
                self.engine.init(family, prefix)
            for family in families_for(archive):
                self.engine.rollover(family, prefix, {"max_age": "0s"})
        self.clock.advance(1)

    def run_scenario(self, prefix, include_rollover, include_archive, expected_deleted):
        self.populate(prefix)
        before = self.store.names()

        result = IndexCleaner(self.store, clock=self.clock).clean(prefix, 0, include_rollover, include_archive)

        self.assertTrue(result.success)
        self.assertEqual(set(result.deleted), with_prefix(prefix, expected_deleted))
        self.assertEqual(self.store.names(), before - with_prefix(prefix, expected_deleted))

    def test_populated_store_shape(self):
        """Test bootstrap and rollover produce the expected chain and aliases"""
        self.populate()

        expected = set(DAILY_INDICES + [STATIC_ARCHIVE] + MAIN_ROLLOVER_OLD + MAIN_ROLLOVER_CURRENT
                       + ARCHIVE_ROLLOVER_OLD + ARCHIVE_ROLLOVER_CURRENT)
        self.assertEqual(self.store.names(), expected)
        self.assertEqual(self.store.resolve_alias("jaeger-span-write"), "jaeger-span-000002")
        self.assertEqual(self.store.resolve_alias("jaeger-span-archive-write"), "jaeger-span-archive-000002")

    def test_remove_daily_indices(self):
        """Test default mode deletes only the dated main indices"""
        for prefix in ("", "tenant"):
            with self.subTest(prefix=prefix):
                self.setUp()
                self.run_scenario(prefix, False, False, DAILY_INDICES)

    def test_remove_rollover_indices(self):
        """Test rollover mode also deletes rolled-over main indices and keeps write targets and archives"""
        for prefix in ("", "tenant"):
            with self.subTest(prefix=prefix):
                self.setUp()
                self.run_scenario(prefix, True, False, DAILY_INDICES + MAIN_ROLLOVER_OLD)

    def test_remove_archive_indices(self):
        """Test archive mode deletes rolled-over archive indices and keeps the main chain"""
        for prefix in ("", "tenant"):
            with self.subTest(prefix=prefix):
                self.setUp()
                self.run_scenario(prefix, False, True, DAILY_INDICES + ARCHIVE_ROLLOVER_OLD)

    def test_remove_everything_historical(self):
        """Test both modes delete every non-current index including the superseded static archive"""
        self.run_scenario("", True, True, DAILY_INDICES + MAIN_ROLLOVER_OLD + ARCHIVE_ROLLOVER_OLD + [STATIC_ARCHIVE])

    def test_full_storage_large_window(self):
        """Test a populated store with a very large window deletes nothing"""
        self.populate()
        for include_rollover, include_archive in ((False, False), (True, False), (False, True)):
            result = IndexCleaner(self.store, clock=self.clock).clean("", 5000, include_rollover, include_archive)
            self.assertTrue(result.success)
            self.assertEqual(result.deleted_count, 0)

    def test_prefix_isolation(self):
        """Test a prefixed run never touches unprefixed or foreign-prefixed indices"""
        self.populate("")
        self.populate("tenant")
        self.populate("tenant-b")
        untouched = {name for name in self.store.names() if not name.startswith("tenant-jaeger-")}
        mark = len(self.store.calls)

        result = IndexCleaner(self.store, clock=self.clock).clean("tenant", 0, True, True)

        self.assertGreater(result.deleted_count, 0)
        self.assertTrue(all(name.startswith("tenant-jaeger-") for name in result.deleted))
        self.assertTrue(untouched <= self.store.names())
        calls = self.store.calls[mark:]
        self.assertEqual(calls[0], ("list_indices", "tenant-jaeger-*"))
        self.assertTrue(all(call[1].startswith("tenant-jaeger-") for call in calls if call[0] == "delete_index"))

    def test_prefixed_rollover_stays_in_scope(self):
        """Test init and rollover under a prefix only create prefixed names"""
        self.store.create_index("jaeger-span-000001")
        self.engine.init(families_for(False)[0], "tenant")

        created = [call[1] for call in self.store.calls if call[0] in ("create_index", "create_alias")][1:]
        self.assertTrue(all(name.startswith("tenant-jaeger-") for name in created))
        self.assertEqual(self.store.resolve_alias("tenant-jaeger-span-write"), "tenant-jaeger-span-000001")

    def test_protected_target_across_rollover(self):
        """Test the write target captured before a rollover is never deleted by the next clean"""
        self.populate()
        before = self.store.resolve_alias("jaeger-span-write")
        self.clock.advance(86400 * 30)

        protected = IndexCleaner(self.store, clock=self.clock).protected_indices("")
        self.assertIn(before, protected)
        result = IndexCleaner(self.store, clock=self.clock).clean("", 0, True, True)
        self.assertNotIn(before, result.deleted)

        self.engine.rollover(families_for(False)[0], "", {"max_age": "0s"})
        self.clock.advance(1)
        result = IndexCleaner(self.store, clock=self.clock).clean("", 0, True, True)
        self.assertEqual(result.deleted, [before])
        self.assertEqual(self.store.resolve_alias("jaeger-span-write"), "jaeger-span-000003")


if __name__ == '__main__':
    unittest.main()
