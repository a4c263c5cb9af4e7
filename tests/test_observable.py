"""Tests for observable values and combined observables."""

import unittest

from restoid.utils.observable import Observable, combine


class TestObservable(unittest.TestCase):

    def test_subscribe_and_unsubscribe(self):
        value = Observable(1)
        seen = []
        unsubscribe = value.subscribe(seen.append)

        value.set(2)
        self.assertEqual(value.update(lambda v: v + 10), 12)
        unsubscribe()
        value.set(3)

        self.assertEqual(seen, [2, 12])
        self.assertEqual(value.value, 3)

    def test_failing_subscriber_does_not_block_others(self):
        value = Observable(0)
        seen = []

        def broken(_):
            raise RuntimeError("boom")

        value.subscribe(broken)
        value.subscribe(seen.append)
        value.set(5)
        self.assertEqual(seen, [5])


class TestCombine(unittest.TestCase):

    def test_recomputes_on_any_source_change(self):
        left = Observable(1)
        right = Observable(2)
        total = combine([left, right], lambda a, b: a + b)
        self.assertEqual(total.value, 3)

        left.set(10)
        self.assertEqual(total.value, 12)
        right.set(5)
        self.assertEqual(total.value, 15)

    def test_change_during_recompute_triggers_one_more_pass(self):
        source = Observable(0)
        calls = []

        def compute(value):
            calls.append(value)
            if value == 1 and len(calls) == 2:
                # A change published while recomputing is picked up afterwards.
                source.set(2)
            return value * 100

        derived = combine([source], compute)
        source.set(1)

        self.assertEqual(calls, [0, 1, 2])
        self.assertEqual(derived.value, 200)

    def test_close_stops_updates(self):
        source = Observable("a")
        derived = combine([source], str.upper)
        derived.close()
        source.set("b")
        self.assertEqual(derived.value, "A")


if __name__ == '__main__':
    unittest.main()
