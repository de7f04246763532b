#!/usr/bin/env python3
"""
Tests for migrate.py — copy then link-back, mid-batch aborts, stale copies.
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fakes import (
    FakeCopier,
    blk_names,
    fixed_usage,
    make_config,
    make_layout,
    make_segments,
    usage_sequence,
)

from blockfile_archiver.migrate import LINK_TMP_SUFFIX, MigrationEngine
from blockfile_archiver.outcomes import AbortReason


class MigrateTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.blocks, self.archive = make_layout(self.root)
        self.files = make_segments(self.blocks, blk_names(10))
        self.contents = {p.name: p.read_bytes() for p in self.files}
        self.config = make_config(self.root, retain_count=7)

    def tearDown(self):
        self._tmp.cleanup()

    def engine(self, copier=None, usage=None, dry_run=False):
        return MigrationEngine(
            self.config,
            copier or FakeCopier(),
            usage_probe=usage or fixed_usage(10),
            dry_run=dry_run,
        )

    def assertMigrated(self, path):
        self.assertTrue(path.is_symlink(), f"{path} should be a symlink")
        target = Path(os.readlink(path))
        self.assertTrue(target.is_absolute())
        self.assertEqual(target, Path(os.path.abspath(self.archive)) / path.name)
        self.assertTrue(target.is_file())
        self.assertFalse(target.is_symlink())
        self.assertEqual(path.read_bytes(), self.contents[path.name])

    def assertUntouched(self, path):
        self.assertFalse(path.is_symlink(), f"{path} should still be a real file")
        self.assertTrue(path.is_file())
        self.assertEqual(path.read_bytes(), self.contents[path.name])
        self.assertFalse((self.archive / path.name).exists())


class TestSuccessfulMigration(MigrateTestCase):

    def test_archivable_files_become_links(self):
        result = self.engine().migrate(self.files[:3])

        self.assertTrue(result.ok)
        self.assertEqual(result.migrated, self.files[:3])
        for p in self.files[:3]:
            self.assertMigrated(p)
        for p in self.files[3:]:
            self.assertUntouched(p)

    def test_no_temp_links_left_behind(self):
        self.engine().migrate(self.files[:3])
        leftovers = [n for n in os.listdir(self.blocks) if n.endswith(LINK_TMP_SUFFIX)]
        self.assertEqual(leftovers, [])
        self.assertEqual(len(os.listdir(self.blocks)), 10)

    def test_files_processed_oldest_first(self):
        copier = FakeCopier()
        self.engine(copier=copier).migrate(self.files[:3])
        self.assertEqual(copier.calls, ["blk0.dat", "blk1.dat", "blk2.dat"])

    def test_empty_list_is_noop(self):
        result = self.engine().migrate([])
        self.assertTrue(result.ok)
        self.assertEqual(result.migrated, [])

    def test_stale_archive_copy_is_overwritten(self):
        stale = self.archive / "blk0.dat"
        stale.write_bytes(b"partial")

        with self.assertLogs("archiver.migrate", level="WARNING") as logs:
            result = self.engine().migrate(self.files[:1])

        self.assertTrue(result.ok)
        self.assertMigrated(self.files[0])
        self.assertEqual(stale.read_bytes(), self.contents["blk0.dat"])
        self.assertTrue(any("Stale archive copy" in line for line in logs.output))

    def test_dry_run_changes_nothing(self):
        copier = FakeCopier()
        result = self.engine(copier=copier, dry_run=True).migrate(self.files[:3])

        self.assertTrue(result.ok)
        self.assertEqual(result.migrated, self.files[:3])
        self.assertEqual(copier.calls, [])
        for p in self.files:
            self.assertUntouched(p)


class TestMigrationAborts(MigrateTestCase):

    def test_capacity_exhausted_mid_run(self):
        # ok for the first two files, full on the third
        usage = usage_sequence([50, 90, 98])
        result = self.engine(usage=usage).migrate(self.files[:5])

        self.assertEqual(result.abort.reason, AbortReason.INSUFFICIENT_SPACE_MID_RUN)
        self.assertEqual(result.abort.path, self.files[2])
        self.assertEqual(result.migrated, self.files[:2])
        for p in self.files[:2]:
            self.assertMigrated(p)
        for p in self.files[2:]:
            self.assertUntouched(p)

    def test_capacity_exhausted_before_first_file(self):
        copier = FakeCopier()
        result = self.engine(copier=copier, usage=fixed_usage(99)).migrate(self.files[:3])
        self.assertEqual(result.abort.reason, AbortReason.INSUFFICIENT_SPACE_MID_RUN)
        self.assertEqual(result.migrated, [])
        self.assertEqual(copier.calls, [])

    def test_copy_failure_leaves_original(self):
        copier = FakeCopier(mode="fail", fail_on=["blk1.dat"])
        result = self.engine(copier=copier).migrate(self.files[:3])

        self.assertEqual(result.abort.reason, AbortReason.COPY_FAILED)
        self.assertEqual(result.migrated, self.files[:1])
        self.assertMigrated(self.files[0])
        self.assertUntouched(self.files[1])
        self.assertUntouched(self.files[2])
        # batch stops at the failure
        self.assertEqual(copier.calls, ["blk0.dat", "blk1.dat"])

    def test_copy_reported_success_but_no_file(self):
        copier = FakeCopier(mode="phantom")
        result = self.engine(copier=copier).migrate(self.files[:3])

        self.assertEqual(result.abort.reason, AbortReason.DESTINATION_MISSING)
        self.assertEqual(result.migrated, [])
        self.assertUntouched(self.files[0])

    def test_symlink_swap_failure_keeps_original(self):
        with mock.patch("blockfile_archiver.migrate.os.replace",
                        side_effect=OSError("EXDEV")):
            result = self.engine().migrate(self.files[:2])

        self.assertEqual(result.abort.reason, AbortReason.SYMLINK_CREATION_FAILED)
        self.assertEqual(result.migrated, [])
        self.assertFalse(self.files[0].is_symlink())
        self.assertEqual(self.files[0].read_bytes(), self.contents["blk0.dat"])
        leftovers = [n for n in os.listdir(self.blocks) if n.endswith(LINK_TMP_SUFFIX)]
        self.assertEqual(leftovers, [])

    def test_symlink_postcondition_checked(self):
        with mock.patch("blockfile_archiver.migrate.os.replace"):
            result = self.engine().migrate(self.files[:1])
        self.assertEqual(result.abort.reason, AbortReason.SYMLINK_CREATION_FAILED)

    def test_usage_probe_error_mid_run(self):
        calls = {"n": 0}

        def flaky(path):
            calls["n"] += 1
            if calls["n"] > 1:
                raise OSError("statvfs failed")
            return 10

        result = self.engine(usage=flaky).migrate(self.files[:3])
        self.assertEqual(result.abort.reason, AbortReason.INSUFFICIENT_SPACE_MID_RUN)
        self.assertEqual(result.migrated, self.files[:1])
        self.assertMigrated(self.files[0])
        self.assertUntouched(self.files[1])

    def test_unreadable_archive_path_aborts(self):
        copier = FakeCopier()
        with mock.patch("blockfile_archiver.migrate.os.lstat",
                        side_effect=PermissionError("denied")):
            result = self.engine(copier=copier).migrate(self.files[:1])
        self.assertEqual(result.abort.reason, AbortReason.DESTINATION_CONFLICT)
        self.assertEqual(copier.calls, [])

    def test_destination_directory_conflict(self):
        (self.archive / "blk0.dat").mkdir()
        copier = FakeCopier()
        result = self.engine(copier=copier).migrate(self.files[:2])

        self.assertEqual(result.abort.reason, AbortReason.DESTINATION_CONFLICT)
        self.assertEqual(copier.calls, [])
        self.assertFalse(self.files[0].is_symlink())

    def test_fatal_reasons_are_not_benign(self):
        for reason in (AbortReason.INSUFFICIENT_SPACE_MID_RUN, AbortReason.COPY_FAILED,
                       AbortReason.DESTINATION_MISSING, AbortReason.SYMLINK_CREATION_FAILED):
            self.assertFalse(reason.benign)
            self.assertEqual(reason.exit_code, 2)


if __name__ == "__main__":
    unittest.main()
