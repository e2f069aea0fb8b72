"""Serialized, animated execution of moves against a grid."""

from __future__ import annotations

from collections import deque
from concurrent.futures import Future
from enum import Enum
from typing import Any, Callable, Deque, Optional

from ring_animation import Animation, AnimationDriver
from ring_engine import Grid
from ring_movement import Move, MoveRangeError, Rotate, describe_move, is_negative
from ring_settings import DEFAULT_TIMINGS, AnimationTimings
from ring_telemetry import (
    MoveDoneEvent,
    MoveDroppedEvent,
    MoveStartEvent,
    MoveStepEvent,
    TelemetrySink,
    emit_dataclass_event,
)

MoveFrameCallback = Callable[[Move, float], None]


class AnimationMode(Enum):
    NONE = "none"
    NORMAL = "normal"
    UNDO = "undo"


class SchedulerState(Enum):
    IDLE = "idle"
    ANIMATING = "animating"


class MoveScheduler:
    """
    Plays one move at a time against its grid.

    A move of `amount` steps is animated as `amount` back-to-back one-step
    animations; the grid is mutated once at the end of each step. Submitting
    while a move is playing is ignored. Callbacks registered with `on_ready`
    run in order once the scheduler is idle again, and draining stops as
    soon as one of them starts a new animated move.
    """

    def __init__(
        self,
        grid: Grid,
        driver: AnimationDriver,
        timings: AnimationTimings = DEFAULT_TIMINGS,
        frame_callback: Optional[MoveFrameCallback] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
    ) -> None:
        self.grid = grid
        self.timings = timings
        self.frame_callback = frame_callback
        self.telemetry_sink = telemetry_sink
        self._animation = Animation(driver, timings.rotate_s, self._on_frame, self._on_step_finished)
        self._current: Optional[Move] = None
        self._mode = AnimationMode.NONE
        self._remaining = 0
        self._future: Optional["Future[Move]"] = None
        self._ready_callbacks: Deque[Callable[[], Any]] = deque()

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.IDLE if self._current is None else SchedulerState.ANIMATING

    @property
    def busy(self) -> bool:
        return self._current is not None

    @property
    def current_move(self) -> Optional[Move]:
        return self._current

    @property
    def remaining_steps(self) -> int:
        return self._remaining

    @property
    def pending_callbacks(self) -> int:
        return len(self._ready_callbacks)

    def submit(self, m: Move, mode: AnimationMode = AnimationMode.NORMAL) -> Optional["Future[Move]"]:
        if m.amount < 1:
            raise MoveRangeError(f"move amount {m.amount} < 1")
        self.grid.check_move(m)
        if self._current is not None:
            emit_dataclass_event(
                self.telemetry_sink,
                "move_dropped",
                MoveDroppedEvent(
                    move=describe_move(m),
                    current_move=describe_move(self._current),
                    remaining_steps=self._remaining,
                ),
            )
            return None

        future: "Future[Move]" = Future()
        future.set_running_or_notify_cancel()
        if mode == AnimationMode.NONE:
            self.grid.apply(m)
            emit_dataclass_event(
                self.telemetry_sink,
                "move_done",
                MoveDoneEvent(move=describe_move(m), mode=mode.value, pending_callbacks=self.pending_callbacks),
            )
            future.set_result(m)
            return future

        duration_s = self.timings.duration_for(isinstance(m, Rotate), mode == AnimationMode.UNDO)
        self._current = m
        self._mode = mode
        self._remaining = m.amount
        self._future = future
        emit_dataclass_event(
            self.telemetry_sink,
            "move_start",
            MoveStartEvent(
                move=describe_move(m),
                mode=mode.value,
                steps=m.amount,
                duration_ms=int(duration_s * 1000 * m.amount),
            ),
        )
        self._animation.play(duration_s)
        return future

    def on_ready(self, callback: Callable[[], Any]) -> Any:
        if self._current is None:
            return callback()
        self._ready_callbacks.append(callback)
        return None

    def wait_until_ready(self) -> "Future[None]":
        future: "Future[None]" = Future()
        future.set_running_or_notify_cancel()
        self.on_ready(lambda: future.set_result(None))
        return future

    def _on_frame(self, progress: float) -> None:
        m = self._current
        if m is None:
            raise RuntimeError("animation frame without a current move")
        if self.frame_callback is None:
            return
        self.frame_callback(m, -progress if is_negative(m) else progress)

    def _on_step_finished(self) -> None:
        m = self._current
        if m is None:
            raise RuntimeError("animation finished without a current move")
        self.grid.apply_step(m)
        self._remaining -= 1
        emit_dataclass_event(
            self.telemetry_sink,
            "move_step",
            MoveStepEvent(move=describe_move(m), remaining_steps=self._remaining),
        )
        if self._remaining > 0:
            self._animation.play()
            return

        future = self._future
        mode = self._mode
        self._current = None
        self._future = None
        self._mode = AnimationMode.NONE
        emit_dataclass_event(
            self.telemetry_sink,
            "move_done",
            MoveDoneEvent(move=describe_move(m), mode=mode.value, pending_callbacks=self.pending_callbacks),
        )
        # Queued continuations go first; done-callbacks on the future run
        # synchronously and would otherwise jump the queue.
        self._drain_ready_callbacks()
        if future is not None:
            future.set_result(m)

    def _drain_ready_callbacks(self) -> None:
        while self._ready_callbacks and self._current is None:
            callback = self._ready_callbacks.popleft()
            callback()
