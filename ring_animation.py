"""Timed animations and the frame driver that plays them."""

from __future__ import annotations

from typing import Callable, List, Optional
import time

FrameCallback = Callable[[float], None]
FinishCallback = Callable[[], None]


def monotonic_ms() -> float:
    return time.perf_counter() * 1000.0


class AnimationDriver:
    """
    Plays scheduled animations once per frame.

    Something outside the driver owns the display refresh: it calls `tick`
    once per frame for as long as `has_pending()` is true. The Qt frame
    source does this with a timer; tests call `tick` directly with a fake
    clock.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock if clock is not None else monotonic_ms
        self._playing: List["Animation"] = []
        self.on_schedule: Optional[Callable[[], None]] = None

    def now(self) -> float:
        return self._clock()

    def schedule(self, animation: "Animation") -> None:
        if animation not in self._playing:
            self._playing.append(animation)
        if self.on_schedule is not None:
            self.on_schedule()

    def unschedule(self, animation: "Animation") -> None:
        if animation in self._playing:
            self._playing.remove(animation)

    def is_scheduled(self, animation: "Animation") -> bool:
        return animation in self._playing

    def has_pending(self) -> bool:
        return bool(self._playing)

    def tick(self, now_ms: Optional[float] = None) -> None:
        t = self.now() if now_ms is None else now_ms
        try:
            for animation in list(self._playing):
                if not animation.draw_frame(t):
                    self.unschedule(animation)
        except Exception:
            self._playing.clear()
            raise


class Animation:
    """An animation of fixed duration reporting progress in [0, 1]."""

    def __init__(
        self,
        driver: AnimationDriver,
        duration_s: float,
        on_frame: FrameCallback,
        on_finish: Optional[FinishCallback] = None,
    ) -> None:
        if duration_s <= 0:
            raise ValueError("duration_s must be positive")
        self.duration_s = duration_s
        self._driver = driver
        self._on_frame = on_frame
        self._on_finish = on_finish
        self._start_ms = 0.0
        self._replayed = False

    def is_playing(self) -> bool:
        return self._driver.is_scheduled(self)

    def play(self, duration_s: Optional[float] = None) -> None:
        if duration_s is not None:
            if duration_s <= 0:
                raise ValueError("duration_s must be positive")
            self.duration_s = duration_s
        self._start_ms = self._driver.now()
        self._replayed = True
        self._driver.schedule(self)

    def stop(self) -> None:
        self._driver.unschedule(self)
        if self._on_finish is not None:
            self._on_finish()

    def draw_frame(self, now_ms: float) -> bool:
        """Draw one frame; returns whether to keep playing on the next one."""
        amount = (now_ms - self._start_ms) / (self.duration_s * 1000.0)
        self._replayed = False
        try:
            self._on_frame(min(max(0.0, amount), 1.0))
        finally:
            if amount >= 1:
                if self._on_finish is not None:
                    self._on_finish()
        if amount >= 1:
            return self._replayed
        return True
