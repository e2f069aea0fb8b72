import unittest
from concurrent.futures import Future

try:
    from PySide6.QtCore import QCoreApplication

    from ring_qt import QtFrameSource

    HAS_QT = True
except Exception:
    HAS_QT = False

from ring_engine import Position
from ring_movement import Rotate, Shift
from ring_session import PuzzleSession
from ring_settings import AnimationTimings

FAST_TIMINGS = AnimationTimings(rotate_s=0.01, shift_s=0.02, rotate_undo_s=0.005, shift_undo_s=0.01)


class _PolledGateway:
    def __init__(self, polls_until_done: int) -> None:
        self.polls_until_done = polls_until_done
        self.polls = 0
        self.future = Future()
        self.future.set_running_or_notify_cancel()

    @property
    def busy(self) -> bool:
        return not self.future.done()

    def poll(self) -> None:
        self.polls += 1
        if self.polls >= self.polls_until_done and not self.future.done():
            self.future.set_result(None)


@unittest.skipUnless(HAS_QT, "PySide6 is required for Qt integration tests")
class TestQtFrameSource(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.app = QCoreApplication.instance() or QCoreApplication([])

    def test_timer_plays_animated_move(self):
        frames = []
        session = PuzzleSession(timings=FAST_TIMINGS, frame_callback=lambda m, offset: frames.append(offset))
        source = QtFrameSource(session.driver, interval_ms=1)
        ticks = []
        source.frame_ticked.connect(ticks.append)
        session.toggle_marker(Position(0, 0))

        future = session.move(Rotate(0, True, 2))
        self.assertTrue(source.is_active())
        self.assertTrue(source.run_until(future, 2_000))
        self.assertEqual(session.grid.markers(), [Position(0, 2)])
        self.assertTrue(ticks)
        self.assertTrue(frames)
        self.assertFalse(source.is_active())

    def test_sequence_and_undo(self):
        session = PuzzleSession(timings=FAST_TIMINGS)
        source = QtFrameSource(session.driver, interval_ms=1)
        session.toggle_marker(Position(0, 0))

        played = session.play_moves([Shift(0, True, 1), Rotate(1, False, 1)])
        self.assertTrue(source.run_until(played, 2_000))
        self.assertEqual(session.grid.markers(), [Position(1, 11)])

        self.assertTrue(source.run_until(session.undo(), 2_000))
        self.assertEqual(session.grid.markers(), [Position(1, 0)])

    def test_polls_gateway_until_idle(self):
        session = PuzzleSession(timings=FAST_TIMINGS)
        gateway = _PolledGateway(polls_until_done=3)
        source = QtFrameSource(session.driver, interval_ms=1, gateway=gateway)
        self.assertTrue(source.run_until(gateway.future, 2_000))
        self.assertGreaterEqual(gateway.polls, 3)
        self.assertFalse(source.is_active())

    def test_run_until_times_out(self):
        session = PuzzleSession(timings=FAST_TIMINGS)
        source = QtFrameSource(session.driver, interval_ms=1)
        pending = Future()
        self.assertFalse(source.run_until(pending, 20))
        resolved = Future()
        resolved.set_result(True)
        self.assertTrue(source.run_until(resolved, 20))


if __name__ == "__main__":
    unittest.main()
