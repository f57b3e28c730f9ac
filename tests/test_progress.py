import unittest

from app.pipeline.progress import InvalidStepTransition, StepTracker

NAMES = ["convert", "upload", "extract"]


def _statuses(tracker):
    return {step.name: step.status for step in tracker.snapshot()}


class StepTrackerTests(unittest.TestCase):
    def setUp(self):
        self.snapshots = []
        self.tracker = StepTracker(NAMES, observers=[self.snapshots.append])

    def test_happy_path_completes_every_step(self):
        for name in NAMES:
            self.tracker.start(name)
            self.tracker.complete(name)
        self.assertEqual(set(_statuses(self.tracker).values()), {"completed"})
        self.assertIsNone(self.tracker.current)
        self.assertIsNone(self.tracker.failed)
        self.assertEqual(len(self.snapshots), 6)

    def test_no_step_leaves_pending_after_an_error(self):
        self.tracker.start("convert")
        self.tracker.fail("convert")
        self.assertEqual(self.tracker.failed, "convert")
        with self.assertRaises(InvalidStepTransition):
            self.tracker.start("upload")
        with self.assertRaises(InvalidStepTransition):
            self.tracker.complete("upload")
        for snapshot in self.snapshots:
            self.assertEqual([step.status for step in snapshot[1:]], ["pending", "pending"])

    def test_steps_cannot_skip_ahead_or_overlap(self):
        with self.assertRaises(InvalidStepTransition):
            self.tracker.start("upload")
        self.tracker.start("convert")
        with self.assertRaises(InvalidStepTransition):
            self.tracker.start("convert")
        self.assertEqual(self.tracker.current, "convert")

    def test_completed_step_never_moves_back(self):
        self.tracker.start("convert")
        self.tracker.complete("convert")
        with self.assertRaises(InvalidStepTransition):
            self.tracker.fail("convert")
        self.assertEqual(_statuses(self.tracker)["convert"], "completed")

    def test_snapshots_are_immutable_copies(self):
        self.tracker.start("convert")
        first = self.snapshots[-1]
        self.tracker.complete("convert")
        self.assertEqual(first[0].status, "processing")
        with self.assertRaises(Exception):
            first[0].status = "error"

    def test_failing_observer_does_not_break_transitions(self):
        def broken(_snapshot):
            raise RuntimeError("observer bug")

        tracker = StepTracker(NAMES, observers=[broken, self.snapshots.append])
        tracker.start("convert")
        self.assertEqual(_statuses(tracker)["convert"], "processing")
        self.assertEqual(len(self.snapshots), 1)

    def test_duplicate_names_rejected(self):
        with self.assertRaises(ValueError):
            StepTracker(["a", "a"])


if __name__ == "__main__":
    unittest.main()
