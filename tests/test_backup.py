"""Tests for the backup operation."""

import json
import os
import re
import shutil
import threading
import unittest

from restoid.models.app import BackupTypeSet, SelectableApp
from restoid.operations.backup import BackupOperation
from restoid.operations.pipeline import OperationPipeline
from tests.fakes import FakeExecutor, make_services, result


SUMMARY_LINE = json.dumps({
    "message_type": "summary", "total_files_processed": 10, "total_bytes_processed": 500,
    "files_new": 3, "files_changed": 2, "data_added": 100, "total_duration": 12.5,
    "snapshot_id": "abc123def456",
})
STATUS_LINE = json.dumps({
    "message_type": "status", "percent_done": 0.5, "total_files": 10, "files_done": 5,
    "total_bytes": 500, "bytes_done": 250, "current_files": ["/data/data/org.example.app/db"],
})


def make_app(package_name="org.example.app", selected=True):
    return SelectableApp(
        display_name=package_name,
        package_name=package_name,
        version_name="3.1",
        version_code=31,
        apk_paths=[f"/data/app/~~abc==/{package_name}-1/base.apk"],
        is_selected=selected,
    )


class TestBackupOperation(unittest.TestCase):

    def setUp(self):
        self.executor = FakeExecutor()
        self.services = make_services(executor=self.executor)
        self.pipeline = OperationPipeline()
        self.file_lists = []

        self.executor.on(r"du -sb", result(stdout=["4096\t/data/data/org.example.app"]))
        self.executor.on(r"backup --files-from", self._backup)

    def tearDown(self):
        shutil.rmtree(self.services.config.home, ignore_errors=True)

    def _backup(self, command):
        file_list = re.search(r"--files-from (\S+)", command).group(1)
        with open(file_list) as f:
            self.file_lists.append(f.read().splitlines())
        return result(stdout=["not json", STATUS_LINE, SUMMARY_LINE])

    def run_backup(self, apps=None, types=None):
        op = BackupOperation(self.services, apps or [make_app()], types or BackupTypeSet())
        self.pipeline.run(op)
        return op, self.pipeline.progress.value

    def test_backup(self):
        op, final = self.run_backup()

        self.assertIsNone(final.error)
        self.assertTrue(final.is_finished)
        self.assertEqual(final.snapshot_id, "abc123def456")
        self.assertEqual(final.files_new, 3)
        self.assertEqual(final.files_changed, 2)
        self.assertEqual(final.data_added, 100)
        self.assertEqual(final.total_duration, 12.5)
        self.assertEqual(final.final_summary, "Added 100 B (3 new, 2 changed files) in 00:00:12.")

        # The sidecar is the first entry of the file list.
        files = self.file_lists[0]
        self.assertTrue(files[0].endswith("restoid.json"))
        self.assertEqual(files[1:], ["/data/app/~~abc==/org.example.app-1",
                                     "/data/data/org.example.app",
                                     "/data/user_de/0/org.example.app"])

        command = self.executor.matching(r"backup --files-from")[0]
        self.assertIn("--tag restoid --tag backup", command)
        self.assertIn("--exclude /data/data/org.example.app/cache", command)
        self.assertIn("--exclude /data/data/org.example.app/code_cache", command)

        stored = self.services.metadata_store.get("repo123", "abc123def456")
        self.assertEqual(list(stored.apps), ["org.example.app"])
        self.assertEqual(stored.apps["org.example.app"].size, 4096)
        self.assertEqual(stored.apps["org.example.app"].types, ["apk", "data", "user_de"])

        self.assertEqual(len(self.executor.matching(r"backup repo123 --json")), 1)
        self.assertFalse(os.path.exists(op.work_dir))
        # Snapshot cache refreshed after success.
        self.assertEqual(len(self.executor.matching(r"snapshots --json")), 1)

    def test_unselected_apps_are_ignored(self):
        _, final = self.run_backup(apps=[make_app(selected=False)])
        self.assertEqual(final.error, "No apps selected.")
        self.assertEqual(final.final_summary, "No apps were selected.")

    def test_no_types(self):
        types = BackupTypeSet(apk=False, data=False, device_protected_data=False)
        _, final = self.run_backup(types=types)
        self.assertEqual(final.error, "No backup types selected.")

    def test_missing_password(self):
        self.services.repositories.passwords.remove("/sdcard/repo")
        _, final = self.run_backup()
        self.assertEqual(final.error, "Password for repository not found.")
        self.assertEqual(final.final_summary, "Could not find the password.")
        self.assertEqual(self.executor.commands, [])

    def test_nothing_to_back_up(self):
        self.executor.on(r"\[ -e ", result(exit_code=1))
        op, final = self.run_backup()
        self.assertEqual(final.error,
                         "A fatal error occurred: No files found to back up for the selected apps.")
        self.assertFalse(os.path.exists(op.work_dir))
        self.assertEqual(self.executor.matching(r"backup --files-from"), [])

    def test_restic_failure(self):
        self.executor.on(r"backup --files-from",
                         result(exit_code=1, stderr=["Fatal: unable to open repository"]))
        op, final = self.run_backup()
        self.assertEqual(final.error, "A fatal error occurred: Fatal: unable to open repository")
        self.assertIsNone(self.services.metadata_store.get("repo123", "abc123def456"))
        self.assertFalse(os.path.exists(op.work_dir))

    def test_missing_summary_is_a_failure(self):
        self.executor.on(r"backup --files-from", result(stdout=[STATUS_LINE]))
        _, final = self.run_backup()
        self.assertEqual(final.error, "A fatal error occurred: Restic command failed with exit code 0.")

    def test_metadata_backup_failure_is_a_warning(self):
        self.executor.on(r"backup repo123", result(exit_code=1, stderr=["locked"]))
        _, final = self.run_backup()
        self.assertIsNone(final.error)
        self.assertIn("Warning: Metadata backup failed: locked", final.final_summary)
        self.assertIsNotNone(self.services.metadata_store.get("repo123", "abc123def456"))

    def test_cancel_during_metadata_backup(self):
        cancel = threading.Event()

        def cancel_now(command):
            cancel.set()
            return result()

        self.executor.on(r"backup repo123", cancel_now)
        op = BackupOperation(self.services, [make_app()], BackupTypeSet())
        self.pipeline.run(op, cancel)

        final = self.pipeline.progress.value
        self.assertEqual(final.error, "Operation cancelled.")
        self.assertEqual(self.executor.matching(r"forget --keep-last 5"), [])
        self.assertEqual(self.executor.matching(r"snapshots --json"), [])
        self.assertFalse(os.path.exists(op.work_dir))


if __name__ == '__main__':
    unittest.main()
