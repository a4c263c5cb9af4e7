"""Tests for maintenance output summaries."""

import unittest

from restoid.utils.maintenance_parser import summarize


class TestSummarize(unittest.TestCase):

    def test_prune_keeps_last_lines(self):
        output = "loading indexes...\n\nfinding data\nrepacking\nremoving 3 old packs\ndone\n"
        self.assertEqual(summarize("prune", output), "repacking\nremoving 3 old packs\ndone")

    def test_prune_empty(self):
        self.assertEqual(summarize("prune", ""), "Prune operation completed.")

    def test_forget_remove_count(self):
        output = "Applying Policy: keep 5 latest snapshots\nremove 2 snapshots:\nID Time\n"
        self.assertEqual(summarize("forget", output), "Removed 2 snapshot(s).")

    def test_forget_nothing_removed(self):
        output = "Applying Policy: keep 5 latest snapshots\nkeep 3 snapshots:\n"
        self.assertEqual(summarize("forget", output),
                         "No snapshots matched the policy to be removed.")

    def test_check(self):
        output = "using temporary cache\ncheck snapshots, trees and blobs\nno errors were found\n"
        self.assertEqual(summarize("check", output), "no errors were found")

    def test_check_falls_back_to_last_line(self):
        self.assertEqual(summarize("check", "step one\nstep two\n"), "step two")
        self.assertEqual(summarize("check", ""), "Check operation completed.")

    def test_unlock(self):
        self.assertEqual(summarize("unlock", "successfully removed 1 locks\n"),
                         "successfully removed 1 locks")
        self.assertEqual(summarize("unlock", ""), "Unlock operation finished.")

    def test_unknown_task_passes_through(self):
        self.assertEqual(summarize("stats", "raw"), "raw")


if __name__ == '__main__':
    unittest.main()
