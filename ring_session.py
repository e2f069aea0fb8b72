"""A puzzle session: grid, scheduler, move history and solver in one place."""

from __future__ import annotations

from collections import deque
from concurrent.futures import Future
from typing import Iterable, Optional

from ring_animation import AnimationDriver
from ring_engine import Grid, Position
from ring_gateway import SolverGateway
from ring_movement import Move, MoveGroup, MoveHistory, combine, group_of, reverse
from ring_scheduler import AnimationMode, MoveFrameCallback, MoveScheduler
from ring_settings import DEFAULT_SETTINGS, DEFAULT_TIMINGS, AnimationTimings, RingSettings
from ring_solver import Solution
from ring_telemetry import TelemetrySink


def _done_future(value: object) -> Future:
    future: Future = Future()
    future.set_running_or_notify_cancel()
    future.set_result(value)
    return future


class PuzzleSession:
    """
    Front-end state around one grid.

    Outside planning, every accepted move goes straight onto the history.
    While planning (the front end has a ring or row "grabbed"), moves are
    played immediately but folded into one pending move, which `commit`
    records as a single history entry and `cancel` rewinds.
    """

    def __init__(
        self,
        settings: RingSettings = DEFAULT_SETTINGS,
        timings: AnimationTimings = DEFAULT_TIMINGS,
        driver: Optional[AnimationDriver] = None,
        gateway: Optional[SolverGateway] = None,
        animate: bool = True,
        telemetry_sink: Optional[TelemetrySink] = None,
        frame_callback: Optional[MoveFrameCallback] = None,
    ) -> None:
        self.settings = settings
        self.grid = Grid(settings)
        self.driver = driver if driver is not None else AnimationDriver()
        self.scheduler = MoveScheduler(
            self.grid,
            self.driver,
            timings=timings,
            frame_callback=frame_callback,
            telemetry_sink=telemetry_sink,
        )
        self.history = MoveHistory()
        self.gateway = gateway
        self.animate = animate
        self.last_solution: Optional[Solution] = None
        self.planning = False
        self._pending: Optional[Move] = None
        self._plan_group: Optional[MoveGroup] = None

    @property
    def busy(self) -> bool:
        return self.scheduler.busy

    @property
    def pending_move(self) -> Optional[Move]:
        return self._pending

    def _mode(self, undo: bool = False) -> AnimationMode:
        if not self.animate:
            return AnimationMode.NONE
        return AnimationMode.UNDO if undo else AnimationMode.NORMAL

    def toggle_marker(self, pos: Position) -> bool:
        return self.grid.toggle_marker(pos)

    def begin_plan(self) -> None:
        if self.planning:
            return
        self.planning = True
        self._pending = None
        self._plan_group = None

    def move(self, m: Move, mode: Optional[AnimationMode] = None) -> Optional[Future]:
        if self.planning and self._plan_group is not None and self._plan_group != group_of(m):
            self.commit()
            self.begin_plan()
        future = self.scheduler.submit(m, self._mode() if mode is None else mode)
        if future is None:
            return None
        if self.planning:
            self._pending = combine(self._pending, m, self.settings)
            self._plan_group = group_of(m)
        else:
            self.history.push(m)
        return future

    def commit(self) -> Optional[Move]:
        if not self.planning:
            return None
        pending = self._pending
        if self._plan_group is not None:
            self.history.push(pending)
        self.planning = False
        self._pending = None
        self._plan_group = None
        return pending

    def cancel(self) -> Future:
        pending = self._pending
        self.planning = False
        self._pending = None
        self._plan_group = None
        if pending is None:
            return _done_future(None)
        return self._submit_when_ready(reverse(pending), self._mode(undo=True))

    def undo(self) -> Future:
        if self.planning:
            return self.cancel()
        if not len(self.history):
            return _done_future(None)
        entry = self.history.pop()
        if entry is None:
            return _done_future(None)
        return self._submit_when_ready(reverse(entry), self._mode(undo=True))

    def _submit_when_ready(self, m: Move, mode: AnimationMode) -> Future:
        done: Future = Future()
        done.set_running_or_notify_cancel()

        def _start() -> None:
            # Runs from scheduler callbacks, so failures go to the future.
            try:
                inner = self.scheduler.submit(m, mode)
            except (IndexError, ValueError, TypeError) as exc:
                done.set_exception(exc)
                return
            if inner is None:
                done.set_exception(RuntimeError("scheduler busy after ready notification"))
                return
            inner.add_done_callback(lambda f: done.set_result(f.result()))

        self.scheduler.on_ready(_start)
        return done

    def play_moves(self, moves: Iterable[Move], mode: Optional[AnimationMode] = None) -> Future:
        """Play moves one after another; resolves with the number played."""
        queue = deque(moves)
        total = len(queue)
        play_mode = self._mode() if mode is None else mode
        done: Future = Future()
        done.set_running_or_notify_cancel()

        def _next(previous: Optional[Future] = None) -> None:
            if previous is not None:
                error = previous.exception()
                if error is not None:
                    done.set_exception(error)
                    return
                self.history.push(previous.result())
            if not queue:
                done.set_result(total)
                return
            step = self._submit_when_ready(queue.popleft(), play_mode)
            step.add_done_callback(_next)

        _next()
        return done

    def request_solution(self, max_turns: Optional[int] = None) -> Future:
        if self.gateway is None:
            raise RuntimeError("no solver gateway configured")
        future = self.gateway.solve(self.grid, max_turns)

        def _remember(f: Future) -> None:
            if f.exception() is None:
                self.last_solution = f.result()

        future.add_done_callback(_remember)
        return future

    def play_solution(self, mode: Optional[AnimationMode] = None) -> Optional[Future]:
        if self.last_solution is None:
            return None
        return self.play_moves(self.last_solution.moves, mode)
