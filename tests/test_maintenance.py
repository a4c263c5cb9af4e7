"""Tests for the maintenance operation."""

import os
import re
import shutil
import time
import unittest

from restoid.engine.executor import ShellExecutor
from restoid.models.state import EngineState
from restoid.operations.maintenance import MaintenanceOperation, MaintenanceOptions
from restoid.operations.pipeline import OperationPipeline
from restoid.workers.operation_worker import OperationWorker
from tests.fakes import FakeExecutor, make_services, result


def restic_subcommands(commands):
    found = []
    for command in commands:
        match = re.search(r" -r \S+ (\w+)", command)
        if match:
            found.append(match.group(1))
    return found


class TestMaintenanceOptions(unittest.TestCase):

    def test_task_order(self):
        options = MaintenanceOptions(check=True, prune=True, unlock=True, forget=True)
        self.assertEqual(options.tasks(), ["unlock", "forget", "prune", "check"])

    def test_from_dict_ignores_unknown_keys(self):
        options = MaintenanceOptions.from_dict({'prune': True, 'check': False, 'colour': 'red'})
        self.assertEqual(options.tasks(), ["prune"])


class TestMaintenanceOperation(unittest.TestCase):

    def setUp(self):
        self.executor = FakeExecutor()
        self.services = make_services(executor=self.executor)
        self.pipeline = OperationPipeline()

        self.executor.on(r" unlock$", result(stdout=["successfully removed 1 locks"]))
        self.executor.on(r" forget --keep", result(stdout=["remove 4 snapshots:"]))
        self.executor.on(r" prune$", result(stdout=["repacking", "done"]))
        self.executor.on(r" check", result(stdout=["no errors were found"]))

    def tearDown(self):
        shutil.rmtree(self.services.config.home, ignore_errors=True)

    def run_maintenance(self, **options):
        op = MaintenanceOperation(self.services, MaintenanceOptions(**options))
        self.pipeline.run(op)
        return op, self.pipeline.progress.value

    def test_all_tasks(self):
        _, final = self.run_maintenance(unlock=True, forget=True, prune=True, check=True,
                                        read_data=True, keep_last=3, keep_weekly=2)

        self.assertIsNone(final.error)
        self.assertEqual(final.final_summary, "\n\n".join([
            "Unlock: successfully removed 1 locks",
            "Forget: Removed 4 snapshot(s).",
            "Prune: repacking\ndone",
            "Check: no errors were found",
        ]))
        self.assertEqual(restic_subcommands(self.executor.commands),
                         ["unlock", "forget", "prune", "check", "snapshots"])

        forget = self.executor.matching(r" forget --keep")[0]
        self.assertIn("--keep-last 3 --keep-weekly 2 --tag restoid --tag backup", forget)
        self.assertNotIn("--keep-daily", forget)
        self.assertTrue(self.executor.matching(r"check --read-data$"))

    def test_failure_does_not_stop_later_tasks(self):
        self.executor.on(r" prune$", result(exit_code=1, stderr=["repository is already locked"]))

        _, final = self.run_maintenance(unlock=True, prune=True, check=True)

        self.assertEqual(final.error, "Maintenance task(s) failed: prune")
        self.assertIn("Prune failed: repository is already locked", final.final_summary)
        self.assertIn("Check: no errors were found", final.final_summary)
        # No snapshot refresh after a failed run.
        self.assertEqual(restic_subcommands(self.executor.commands), ["unlock", "prune", "check"])

    def test_forget_without_policy(self):
        _, final = self.run_maintenance(forget=True, check=False)
        self.assertEqual(final.error, "Maintenance task(s) failed: forget")
        self.assertIn("No 'keep' policy was specified", final.final_summary)

    def test_no_tasks(self):
        _, final = self.run_maintenance(check=False)
        self.assertEqual(final.error, "No maintenance tasks selected.")
        self.assertEqual(self.executor.commands, [])

    def test_check_only_does_not_refresh(self):
        _, final = self.run_maintenance()
        self.assertIsNone(final.error)
        self.assertEqual(restic_subcommands(self.executor.commands), ["check"])


SLOW_RESTIC = """#!/bin/sh
here=$(dirname "$0")
echo "$@" >> "$here/calls"
touch "$here/started"
sleep 30
echo done
"""


class TestMaintenanceCancellation(unittest.TestCase):

    def setUp(self):
        self.services = make_services(executor=ShellExecutor("sh"))
        self.bin_dir = os.path.join(self.services.config.home, "bin")
        os.makedirs(self.bin_dir)
        restic = os.path.join(self.bin_dir, "restic")
        with open(restic, 'w') as f:
            f.write(SLOW_RESTIC)
        os.chmod(restic, 0o755)
        self.services.engine.state.set(EngineState.installed(restic, "restic 0.16.4"))

        self.pipeline = OperationPipeline()
        self.worker = OperationWorker(self.pipeline)

    def tearDown(self):
        self.worker.shutdown()
        shutil.rmtree(self.services.config.home, ignore_errors=True)

    def wait_for_start(self):
        deadline = time.monotonic() + 10
        while not os.path.exists(os.path.join(self.bin_dir, "started")):
            self.assertLess(time.monotonic(), deadline, "restic never started")
            time.sleep(0.05)

    def test_cancel_kills_running_prune(self):
        started = time.monotonic()
        options = MaintenanceOptions(prune=True, check=False)
        future = self.worker.start(MaintenanceOperation(self.services, options))
        self.wait_for_start()

        self.assertTrue(self.worker.cancel())
        self.assertTrue(future.result(timeout=20))

        self.assertLess(time.monotonic() - started, 20)
        final = self.pipeline.progress.value
        self.assertEqual(final.error, "Operation cancelled.")
        self.assertEqual(final.final_summary, "Operation cancelled.")
        # Only the prune ran; no snapshot refresh after a cancelled run.
        with open(os.path.join(self.bin_dir, "calls")) as f:
            self.assertEqual(f.read().splitlines(), ["-r /sdcard/repo prune"])


if __name__ == '__main__':
    unittest.main()
