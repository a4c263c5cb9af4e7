"""Tests for package installer sessions."""

import os
import tempfile
import unittest

from restoid.device.installer import InstallSessionManager
from restoid.errors import CommitFailed, SessionCreateFailed, SplitWriteFailed
from tests.fakes import FakeExecutor, result


class TestInstallSessionManager(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.apks = []
        for name, size in (("base.apk", 10), ("split_config.en.apk", 3)):
            path = os.path.join(self.tmp.name, name)
            with open(path, 'wb') as f:
                f.write(b"x" * size)
            self.apks.append(path)

        self.executor = FakeExecutor()
        self.executor.on(r"pm install-create", result(stdout=["Success: created install session [1234]"]))
        self.executor.on(r"pm install-commit", result(stdout=["Success"]))
        self.installer = InstallSessionManager(self.executor)

    def tearDown(self):
        self.tmp.cleanup()

    def test_install(self):
        self.installer.install(self.apks)

        self.assertEqual(self.executor.commands[0], "pm install-create -r")
        writes = self.executor.matching(r"pm install-write")
        self.assertEqual(len(writes), 2)
        self.assertTrue(writes[0].startswith("pm install-write -S 10 1234 0_base.apk "))
        self.assertTrue(writes[1].startswith("pm install-write -S 3 1234 1_split_config.en.apk "))
        self.assertEqual(self.executor.commands[-1], "pm install-commit 1234")

    def test_downgrade_flag(self):
        self.installer.install(self.apks, allow_downgrade=True)
        self.assertEqual(self.executor.commands[0], "pm install-create -r -d")

    def test_create_failure(self):
        self.executor.on(r"pm install-create", result(exit_code=1, stderr=["Failure"]))
        with self.assertRaises(SessionCreateFailed):
            self.installer.install(self.apks)
        self.assertEqual(self.executor.matching(r"install-write"), [])

    def test_create_without_session_id(self):
        self.executor.on(r"pm install-create", result(stdout=["Success"]))
        with self.assertRaises(SessionCreateFailed):
            self.installer.create_session()

    def test_split_write_failure_abandons(self):
        self.executor.on(r"split_config", result(exit_code=1, stderr=["write failed"]))
        with self.assertRaises(SplitWriteFailed):
            self.installer.install(self.apks)
        self.assertEqual(self.executor.matching(r"pm install-abandon"), ["pm install-abandon 1234"])
        self.assertEqual(self.executor.matching(r"pm install-commit"), [])

    def test_unreadable_split_abandons(self):
        with self.assertRaises(SplitWriteFailed):
            self.installer.install(self.apks + [os.path.join(self.tmp.name, "missing.apk")])
        self.assertEqual(len(self.executor.matching(r"pm install-abandon")), 1)

    def test_commit_reports_failure_text(self):
        self.executor.on(r"pm install-commit",
                         result(stdout=["Failure [INSTALL_FAILED_VERSION_DOWNGRADE]"]))
        with self.assertRaises(CommitFailed) as ctx:
            self.installer.install(self.apks)
        self.assertEqual(str(ctx.exception),
                         "Install commit failed: Failure [INSTALL_FAILED_VERSION_DOWNGRADE]")


if __name__ == '__main__':
    unittest.main()
