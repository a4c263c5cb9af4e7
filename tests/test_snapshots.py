"""Tests for snapshot lookup, package inference and snapshot details."""

import json
import shutil
import unittest

from restoid.errors import RestoidError
from restoid.models.app import BackupTypeSet, SelectableApp
from restoid.models.metadata import AppMetadata, RestoidMetadata
from restoid.models.snapshot import BackupDetail, SnapshotInfo
from restoid.operations.snapshots import (filter_owned, find_backed_up_items, find_by_partial_id,
                                          forget_snapshot, infer_package, is_downgrade,
                                          latest_metadata_snapshot, paths_for_restore,
                                          resolve_packages)
from tests.fakes import FakeExecutor, make_services, result


LEGACY_PATHS = (
    "/data/app/~~x1Y2==/org.example.app-Zz9==",
    "/data/data/org.example.app",
    "/data/user_de/0/org.example.app",
    "/storage/emulated/0/Android/obb/org.example.game",
    "/data/data/org.example.game",
)


def snapshot(snapshot_id="a1b2c3d4e5", paths=LEGACY_PATHS, tags=("restoid", "backup"),
             time="2024-05-01T10:00:00Z"):
    return SnapshotInfo(id=snapshot_id, time=time, tags=frozenset(tags), paths=tuple(paths))


def installed(package_name, version_code):
    return SelectableApp(display_name=package_name, package_name=package_name,
                         version_name=str(version_code), version_code=version_code,
                         apk_paths=[f"/data/app/{package_name}-1/base.apk"])


class TestLookup(unittest.TestCase):

    def test_partial_id(self):
        snapshots = [snapshot("ffff0000"), snapshot("a1b2c3d4e5")]
        self.assertEqual(find_by_partial_id(snapshots, "a1b2").id, "a1b2c3d4e5")
        self.assertIsNone(find_by_partial_id(snapshots, "beef"))
        self.assertIsNone(find_by_partial_id(snapshots, ""))

    def test_filter_owned(self):
        owned = snapshot("1")
        foreign = snapshot("2", tags=("backup",))
        metadata = snapshot("3", tags=("restoid", "metadata"))
        self.assertEqual(filter_owned([owned, foreign, metadata]), [owned])
        self.assertEqual(filter_owned([owned, foreign, metadata], "metadata"), [metadata])

    def test_latest_metadata_snapshot(self):
        older = snapshot("1", tags=("restoid", "metadata"), time="2024-01-01T00:00:00Z")
        newer = snapshot("2", tags=("restoid", "metadata"), time="2024-02-01T00:00:00Z")
        self.assertEqual(latest_metadata_snapshot([newer, snapshot("3"), older]), newer)
        self.assertIsNone(latest_metadata_snapshot([snapshot("3")]))


class TestPackageInference(unittest.TestCase):

    def test_infer_package(self):
        self.assertEqual(infer_package("/data/app/~~x1Y2==/org.example.app-Zz9=="), "org.example.app")
        self.assertEqual(infer_package("/data/app/org.example.old-1"), "org.example.old")
        self.assertEqual(infer_package("/storage/emulated/0/Android/media/org.example.m"),
                         "org.example.m")
        self.assertIsNone(infer_package("/data/data/org.example.app/files"))
        self.assertIsNone(infer_package("/sdcard/Download"))
        self.assertIsNone(infer_package("/data/app/~~x1Y2=="))

    def test_resolve_prefers_metadata(self):
        metadata = RestoidMetadata(apps={"org.only.this": AppMetadata(1, ["data"], 1, "1")})
        self.assertEqual(resolve_packages(snapshot(), metadata), ["org.only.this"])

    def test_resolve_from_paths(self):
        self.assertEqual(resolve_packages(snapshot(), None), ["org.example.app", "org.example.game"])
        self.assertEqual(resolve_packages(snapshot(), RestoidMetadata()),
                         ["org.example.app", "org.example.game"])

    def test_backed_up_items(self):
        self.assertEqual(find_backed_up_items(snapshot(), "org.example.app"),
                         ["APK", "Data", "Device Protected Data"])
        self.assertEqual(find_backed_up_items(snapshot(), "org.example.game"), ["OBB", "Data"])
        self.assertEqual(find_backed_up_items(snapshot(), "org.example.none"), ["Unknown items"])

    def test_package_prefix_is_not_a_match(self):
        snap = snapshot(paths=["/data/app/org.example.appendix-1"])
        self.assertEqual(find_backed_up_items(snap, "org.example.app"), ["Unknown items"])


class TestRestorePlanning(unittest.TestCase):

    def test_paths_for_restore(self):
        details = [BackupDetail(app=installed("org.example.app", 1))]
        types = BackupTypeSet(apk=True, data=True, device_protected_data=False)
        self.assertEqual(paths_for_restore(details, snapshot(), types),
                         ["/data/app/~~x1Y2==/org.example.app-Zz9==", "/data/data/org.example.app"])

    def test_paths_not_in_snapshot_are_skipped(self):
        details = [BackupDetail(app=installed("org.example.game", 1))]
        types = BackupTypeSet(apk=True, data=False, device_protected_data=True, obb=True)
        self.assertEqual(paths_for_restore(details, snapshot(), types),
                         ["/storage/emulated/0/Android/obb/org.example.game"])

    def test_is_downgrade(self):
        app = installed("a.b", 10)
        self.assertFalse(is_downgrade(5, None))
        self.assertFalse(is_downgrade(None, app))
        self.assertTrue(is_downgrade(9, app))
        self.assertFalse(is_downgrade(10, app))
        self.assertFalse(is_downgrade(11, app))


class TestSnapshotDetailsLoader(unittest.TestCase):

    def setUp(self):
        self.executor = FakeExecutor()
        self.services = make_services(executor=self.executor)
        self.snapshot_json = json.dumps([{
            "id": "a1b2c3d4e5", "time": "2024-05-01T10:00:00Z", "tags": ["restoid", "backup"],
            "paths": ["/data/data/org.example.big", "/data/data/org.example.small",
                      "/data/data/io.github.hddq.restoid"],
        }])
        self.executor.on(r"snapshots --json", result(stdout=[self.snapshot_json]))
        # Later rules take precedence.
        self.executor.on(r"pm path", result(exit_code=1))
        self.executor.on(r"pm path org\.example\.big",
                         result(stdout=["package:/data/app/org.example.big-1/base.apk"]))
        self.executor.on(r"dumpsys package org\.example\.big",
                         result(stdout=["    versionCode=20 minSdk=26", "    versionName=2.0"]))

    def tearDown(self):
        shutil.rmtree(self.services.config.home, ignore_errors=True)

    def test_details_sorted_by_size_without_own_package(self):
        self.services.metadata_store.save("repo123", "a1b2c3d4e5", RestoidMetadata(apps={
            "org.example.small": AppMetadata(10, ["data"], 1, "1.0"),
            "org.example.big": AppMetadata(500, ["data"], 10, "1.0"),
            "io.github.hddq.restoid": AppMetadata(999, ["data"], 1, "1.0"),
        }))

        snap, details = self.services.details_loader.load("a1b2")

        self.assertEqual(snap.id, "a1b2c3d4e5")
        self.assertEqual([d.package_name for d in details], ["org.example.big", "org.example.small"])
        big, small = details
        self.assertTrue(big.is_installed)
        self.assertTrue(big.is_downgrade)
        self.assertEqual(big.app.version_code, 20)
        self.assertEqual(big.backup_size, 500)
        self.assertFalse(small.is_installed)
        self.assertFalse(small.is_downgrade)
        self.assertEqual(small.backed_up_items, ["Data"])

    def test_details_without_metadata(self):
        _, details = self.services.details_loader.load("a1b2")
        # Equal (unknown) sizes sort by name.
        self.assertEqual([d.package_name for d in details], ["org.example.big", "org.example.small"])
        self.assertIsNone(details[0].version_code)
        self.assertFalse(details[0].is_downgrade)

    def test_unknown_snapshot(self):
        with self.assertRaises(RestoidError) as ctx:
            self.services.details_loader.load("ffff")
        self.assertEqual(str(ctx.exception), "Snapshot not found.")

    def test_missing_password(self):
        self.services.repositories.passwords.remove("/sdcard/repo")
        with self.assertRaises(RestoidError) as ctx:
            self.services.details_loader.load("a1b2")
        self.assertEqual(str(ctx.exception), "Repository, password, or repo ID not found")


class TestForgetSnapshot(unittest.TestCase):

    def setUp(self):
        self.executor = FakeExecutor()
        self.services = make_services(executor=self.executor)

    def tearDown(self):
        shutil.rmtree(self.services.config.home, ignore_errors=True)

    def test_forget_deletes_metadata_and_backs_up_store(self):
        store = self.services.metadata_store
        store.save("repo123", "deadbeef", RestoidMetadata())
        repo = self.services.repositories.selected

        warning = forget_snapshot(self.services.engine, store, repo, "secret", "deadbeef")

        self.assertIsNone(warning)
        self.assertIsNone(store.get("repo123", "deadbeef"))
        self.assertEqual(len(self.executor.matching(r"forget deadbeef")), 1)
        self.assertEqual(len(self.executor.matching(r"backup repo123 --json")), 1)

    def test_metadata_backup_failure_is_a_warning(self):
        self.executor.on(r"backup repo123", result(exit_code=1, stderr=["repository is locked"]))
        store = self.services.metadata_store
        store.save("repo123", "deadbeef", RestoidMetadata())

        warning = forget_snapshot(self.services.engine, store, self.services.repositories.selected,
                                  "secret", "deadbeef")

        self.assertEqual(warning, "Metadata backup failed: repository is locked")


if __name__ == '__main__':
    unittest.main()
