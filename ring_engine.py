"""Grid state and the two permutation primitives of the ring puzzle."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging

from ring_movement import Move, MoveRangeError, Rotate, Shift
from ring_settings import DEFAULT_SETTINGS, RingSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Position:
    r: int
    th: int


@dataclass
class Cell:
    has_marker: bool = False


class Grid:
    def __init__(self, settings: RingSettings = DEFAULT_SETTINGS) -> None:
        self.settings = settings
        self.num_rings = settings.num_rings
        self.num_angles = settings.num_angles
        self._cells: List[Cell] = [Cell() for _ in range(settings.num_cells)]

    @classmethod
    def from_ring_data(cls, data: Sequence[int], settings: RingSettings = DEFAULT_SETTINGS) -> "Grid":
        grid = cls(settings)
        grid.load_ring_data(data)
        return grid

    def _check_ring(self, r: int) -> None:
        if r < 0 or r >= self.num_rings:
            raise IndexError(f"ring index out of range: {r}")

    def _check_angle(self, th: int) -> None:
        if th < 0 or th >= self.num_angles:
            raise IndexError(f"angle index out of range: {th}")

    def cell(self, pos: Position) -> Cell:
        if pos.th < 0 or pos.th >= self.num_angles or pos.r < 0 or pos.r >= self.num_rings:
            raise IndexError(f"cell index out of range: (r={pos.r}, th={pos.th})")
        return self._cells[pos.th + pos.r * self.num_angles]

    def has_marker(self, pos: Position) -> bool:
        return self.cell(pos).has_marker

    def set_marker(self, pos: Position, value: bool = True) -> None:
        self.cell(pos).has_marker = value

    def toggle_marker(self, pos: Position) -> bool:
        cell = self.cell(pos)
        cell.has_marker = not cell.has_marker
        return cell.has_marker

    def clear_markers(self) -> None:
        for cell in self._cells:
            cell.has_marker = False

    def markers(self) -> List[Position]:
        return [
            Position(idx // self.num_angles, idx % self.num_angles)
            for idx, cell in enumerate(self._cells)
            if cell.has_marker
        ]

    def marker_count(self) -> int:
        return sum(1 for cell in self._cells if cell.has_marker)

    def rotate_ring(self, r: int, clockwise: bool = False) -> None:
        """Rotate ring `r` by one cell."""
        self._check_ring(r)
        logger.debug("Rotate ring %d %s", r, "clockwise" if clockwise else "anti-clockwise")
        start = r * self.num_angles
        step = 1
        end = (r + 1) * self.num_angles
        if clockwise:
            step = -step
            start, end = end + step, start + step
        arr = self._cells
        i = start
        while i != end - step:
            arr[i], arr[i + step] = arr[i + step], arr[i]
            i += step

    def shift_row(self, th: int, outward: bool = False) -> None:
        """Shift the diametral row through angle `th` by one cell."""
        self._check_angle(th)
        half = self.num_angles // 2
        if th >= half:
            self.shift_row(th - half, not outward)
            return
        logger.debug("Shift row %d %s", th, "outward" if outward else "inward")
        step = self.num_angles
        start = th
        end = th + self.num_angles * self.num_rings
        if outward:
            start += half
            end += half
        arr = self._cells
        i = start
        # The cycle runs out along one half-row and back in along the other;
        # landing on `end` means the walk crossed the outer rim.
        for _ in range(self.num_rings * 2 - 1):
            j = i + step
            if j == end:
                j -= half
                if outward:
                    j -= step
                step = -step
            arr[i], arr[j] = arr[j], arr[i]
            i = j

    def check_move(self, m: Move) -> None:
        if isinstance(m, Rotate):
            self._check_ring(m.ring)
        elif isinstance(m, Shift):
            self._check_angle(m.row)
        else:
            raise TypeError(f"not a move: {m!r}")

    def apply_step(self, m: Move) -> None:
        if isinstance(m, Rotate):
            self.rotate_ring(m.ring, m.clockwise)
        elif isinstance(m, Shift):
            self.shift_row(m.row, m.outward)
        else:
            raise TypeError(f"not a move: {m!r}")

    def apply(self, m: Move) -> None:
        if m.amount < 1:
            raise MoveRangeError(f"move amount {m.amount} < 1")
        for _ in range(m.amount):
            self.apply_step(m)

    def to_ring_data(self) -> List[int]:
        data = []
        for r in range(self.num_rings):
            subring = 0
            for th in range(self.num_angles):
                if self._cells[th + r * self.num_angles].has_marker:
                    subring |= 1 << th
            data.append(subring)
        return data

    def load_ring_data(self, data: Sequence[int]) -> None:
        if len(data) != self.num_rings:
            raise ValueError(f"expected {self.num_rings} rings, got {len(data)}")
        limit = 1 << self.num_angles
        for r, subring in enumerate(data):
            if not isinstance(subring, int) or subring < 0 or subring >= limit:
                raise ValueError(f"ring {r} data out of range: {subring!r}")
        for r, subring in enumerate(data):
            for th in range(self.num_angles):
                self._cells[th + r * self.num_angles].has_marker = bool(subring & (1 << th))

    def copy(self) -> "Grid":
        return Grid.from_ring_data(self.to_ring_data(), self.settings)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Grid):
            return NotImplemented
        return self.settings == other.settings and self.to_ring_data() == other.to_ring_data()

    def __repr__(self) -> str:
        return f"Grid(num_rings={self.num_rings}, num_angles={self.num_angles}, markers={self.marker_count()})"


def pretty_print(grid: Grid, highlight: Optional[Position] = None) -> str:
    """
    Text view of the grid, one line per ring.

    Ring 0 (innermost) is printed at the bottom so the picture reads like a
    cross-section from the rim down to the centre. `X` marks a marker and
    `.` an empty cell; the highlighted cell is bracketed.
    """
    width = max(2, len(str(grid.num_angles - 1)))
    label_width = len(f"r{grid.num_rings - 1}")

    def cell_text(pos: Position) -> str:
        mark = "X" if grid.has_marker(pos) else "."
        if highlight == pos:
            return f"[{mark}]".center(width + 1)
        return f" {mark} ".center(width + 1)

    header = " " * (label_width + 1) + "".join(f"{th:^{width + 1}d}" for th in range(grid.num_angles))
    lines = [header]
    for r in reversed(range(grid.num_rings)):
        cells = "".join(cell_text(Position(r, th)) for th in range(grid.num_angles))
        lines.append(f"{'r' + str(r):>{label_width}} {cells}")
    lines.append(f"Markers: {grid.marker_count()}")
    return "\n".join(lines)
