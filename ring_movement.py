"""Move descriptors and the algebra over them (combine, reverse, simplify)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterator, List, Optional, Union

from ring_settings import DEFAULT_SETTINGS, RingSettings


class MoveRangeError(ValueError):
    """Raised when a move amount is not a positive step count."""


class IncompatibleMoveError(ValueError):
    """Raised when combining moves that act on different rings or rows."""


@dataclass(frozen=True)
class Rotate:
    ring: int
    clockwise: bool
    amount: int


@dataclass(frozen=True)
class Shift:
    row: int
    outward: bool
    amount: int


Move = Union[Rotate, Shift]


@dataclass(frozen=True)
class RingGroup:
    ring: int


@dataclass(frozen=True)
class RowGroup:
    row: int


MoveGroup = Union[RingGroup, RowGroup]


def group_of(m: Move) -> MoveGroup:
    if isinstance(m, Rotate):
        return RingGroup(m.ring)
    if isinstance(m, Shift):
        return RowGroup(m.row)
    raise TypeError(f"not a move: {m!r}")


def period(m: Move, settings: RingSettings = DEFAULT_SETTINGS) -> int:
    if isinstance(m, Rotate):
        return settings.rotate_period
    if isinstance(m, Shift):
        return settings.shift_period
    raise TypeError(f"not a move: {m!r}")


def is_negative(m: Move) -> bool:
    if isinstance(m, Rotate):
        return not m.clockwise
    if isinstance(m, Shift):
        return not m.outward
    raise TypeError(f"not a move: {m!r}")


def signed_amount(m: Move) -> int:
    return -m.amount if is_negative(m) else m.amount


def from_signed(group: MoveGroup, amount: int) -> Move:
    """Build a move from a signed step count; the sign becomes the direction."""
    if amount == 0:
        raise MoveRangeError("signed amount must be non-zero")
    if isinstance(group, RingGroup):
        return Rotate(group.ring, amount > 0, abs(amount))
    if isinstance(group, RowGroup):
        return Shift(group.row, amount > 0, abs(amount))
    raise TypeError(f"not a move group: {group!r}")


def reverse(m: Move) -> Move:
    if isinstance(m, Rotate):
        return replace(m, clockwise=not m.clockwise)
    if isinstance(m, Shift):
        return replace(m, outward=not m.outward)
    raise TypeError(f"not a move: {m!r}")


def simplify(m: Move, settings: RingSettings = DEFAULT_SETTINGS) -> Optional[Move]:
    """
    Reduce a move to the shortest path around its cycle.

    The amount is taken modulo the group's period; past half a period the
    direction flips so the result never exceeds half a turn. A whole number
    of turns has no net effect and yields None.
    """
    if m.amount <= 0:
        raise MoveRangeError(f"move amount {m.amount} must be positive")
    n = period(m, settings)
    amount = m.amount % n
    if amount == 0:
        return None
    if amount > n // 2:
        return replace(reverse(m), amount=n - amount)
    return replace(m, amount=amount)


def combine(
    m1: Optional[Move],
    m2: Move,
    settings: RingSettings = DEFAULT_SETTINGS,
) -> Optional[Move]:
    if m1 is None:
        return m2
    group = group_of(m1)
    if group != group_of(m2):
        raise IncompatibleMoveError(f"cannot combine {describe_move(m1)} with {describe_move(m2)}")
    amount = signed_amount(m1) + signed_amount(m2)
    if amount == 0:
        return None
    return simplify(from_signed(group, amount), settings)


def describe_move(m: Optional[Move]) -> str:
    if m is None:
        return "-"
    if isinstance(m, Rotate):
        direction = "cw" if m.clockwise else "ccw"
        return f"ring {m.ring} {direction} x{m.amount}"
    if isinstance(m, Shift):
        direction = "out" if m.outward else "in"
        return f"row {m.row} {direction} x{m.amount}"
    raise TypeError(f"not a move: {m!r}")


class MoveHistory:
    """Stack of applied moves; None entries record a net no-op."""

    def __init__(self) -> None:
        self._entries: List[Optional[Move]] = []

    def push(self, entry: Optional[Move]) -> None:
        self._entries.append(entry)

    def pop(self) -> Optional[Move]:
        if not self._entries:
            raise IndexError("pop from empty move history")
        return self._entries.pop()

    def peek(self) -> Optional[Move]:
        if not self._entries:
            raise IndexError("peek at empty move history")
        return self._entries[-1]

    def clear(self) -> None:
        self._entries.clear()

    def moves(self) -> List[Move]:
        return [m for m in self._entries if m is not None]

    def describe(self) -> str:
        if not self._entries:
            return "(no moves)"
        return ", ".join(describe_move(m) for m in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Optional[Move]]:
        return iter(self._entries)
