"""Puzzle dimensions, animation timings and runtime tunables."""

from __future__ import annotations

from dataclasses import dataclass

NUM_RINGS = 4
NUM_ANGLES = 12
MAX_TURNS = 3
FRAME_INTERVAL_MS = 16
TELEMETRY_ENV = "RING_TELEMETRY"
CACHE_ENV = "RING_SOLVER_CACHE"

RING_ROTATE_ANIMATION_S = 0.15
RING_SHIFT_ANIMATION_S = 0.3
RING_ROTATE_UNDO_ANIMATION_S = 0.075
RING_SHIFT_UNDO_ANIMATION_S = 0.15


@dataclass(frozen=True)
class RingSettings:
    num_rings: int = NUM_RINGS
    num_angles: int = NUM_ANGLES

    def __post_init__(self) -> None:
        if self.num_rings < 1:
            raise ValueError("num_rings must be at least 1")
        if self.num_angles < 2:
            raise ValueError("num_angles must be at least 2")
        if self.num_angles % 2 != 0:
            raise ValueError(f"num_angles must be even, got {self.num_angles}")

    @property
    def num_cells(self) -> int:
        return self.num_rings * self.num_angles

    @property
    def half_angles(self) -> int:
        return self.num_angles // 2

    @property
    def rotate_period(self) -> int:
        return self.num_angles

    @property
    def shift_period(self) -> int:
        return self.num_rings * 2


@dataclass(frozen=True)
class AnimationTimings:
    rotate_s: float = RING_ROTATE_ANIMATION_S
    shift_s: float = RING_SHIFT_ANIMATION_S
    rotate_undo_s: float = RING_ROTATE_UNDO_ANIMATION_S
    shift_undo_s: float = RING_SHIFT_UNDO_ANIMATION_S

    def __post_init__(self) -> None:
        for name in ("rotate_s", "shift_s", "rotate_undo_s", "shift_undo_s"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    def duration_for(self, is_rotate: bool, undo: bool) -> float:
        if is_rotate:
            return self.rotate_undo_s if undo else self.rotate_s
        return self.shift_undo_s if undo else self.shift_s


DEFAULT_SETTINGS = RingSettings()
DEFAULT_TIMINGS = AnimationTimings()
