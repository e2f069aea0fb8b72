"""Reference solver backend: iterative deepening over ring and row moves."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Sequence, Tuple
import gzip
import os
import pickle
import time

from ring_movement import Move, Rotate, Shift
from ring_settings import CACHE_ENV, DEFAULT_SETTINGS, MAX_TURNS, RingSettings
from ring_telemetry import SearchEndEvent, SearchStartEvent, TelemetrySink, emit_dataclass_event

CACHE_VERSION = 1
CACHE_MAX_ENTRIES = 50_000
CACHE_GZIP_LEVEL = 1
MARKERS_PER_ACTION = 4

RingData = Tuple[int, ...]
CacheKey = Tuple[int, int, int, RingData]


@dataclass(frozen=True)
class Solution:
    moves: Tuple[Move, ...]
    result: RingData
    jump_rows: int
    hammerable_groups: int


@dataclass
class _SearchContext:
    settings: RingSettings
    nodes: int = 0


@dataclass
class SolveStats:
    nodes: int = 0
    elapsed_ms: int = 0
    turns: int = 0


def rotate_bits_left(value: int, n: int, width: int) -> int:
    n %= width
    mask = (1 << width) - 1
    return ((value << n) | (value >> (width - n))) & mask


def rotate_bits_right(value: int, n: int, width: int) -> int:
    return rotate_bits_left(value, width - (n % width), width)


def _zigzag(value: int, width: int) -> Iterator[Tuple[int, int]]:
    """Yield (rotated value, cumulative offset) for offsets 1, -1, 2, -2, ..."""
    amount = 0
    data = value
    while True:
        new_amount = -amount + (1 if amount <= 0 else 0)
        diff = new_amount - amount
        if diff > 0:
            data = rotate_bits_left(data, diff, width)
        else:
            data = rotate_bits_right(data, -diff, width)
        amount = new_amount
        yield data, amount


def pack_row(ring_data: Sequence[int], th: int, settings: RingSettings) -> int:
    """
    Pack the diametral line through `th` into 2 * num_rings bits in shift order.

    Bits 0..R-1 are (r, th) from the centre outwards, bits R..2R-1 are the
    opposite half-row from the rim back to the centre.
    """
    rings = settings.num_rings
    opposite = th + settings.half_angles
    row = 0
    for r in range(rings):
        subring = ring_data[r]
        if subring & (1 << th):
            row |= 1 << r
        if subring & (1 << opposite):
            row |= 1 << (2 * rings - 1 - r)
    return row


def unpack_row(ring_data: Sequence[int], th: int, row: int, settings: RingSettings) -> RingData:
    rings = settings.num_rings
    opposite = th + settings.half_angles
    out = list(ring_data)
    for r in range(rings):
        low = 1 if row & (1 << r) else 0
        high = 1 if row & (1 << (2 * rings - 1 - r)) else 0
        out[r] = (out[r] & ~(1 << th)) | (low << th)
        out[r] = (out[r] & ~(1 << opposite)) | (high << opposite)
    return tuple(out)


def _ring_rotations(ring_data: RingData, r: int, settings: RingSettings) -> Iterator[Tuple[RingData, Move]]:
    for subring, amount in _zigzag(ring_data[r], settings.num_angles):
        moved = ring_data[:r] + (subring,) + ring_data[r + 1 :]
        yield moved, Rotate(r, amount > 0, abs(amount))


def _row_shifts(ring_data: RingData, th: int, settings: RingSettings) -> Iterator[Tuple[RingData, Move]]:
    row = pack_row(ring_data, th, settings)
    for shifted, amount in _zigzag(row, settings.shift_period):
        yield unpack_row(ring_data, th, shifted, settings), Shift(th, amount > 0, abs(amount))


def iterate_movements(ring_data: RingData, settings: RingSettings) -> Iterator[Tuple[RingData, Move]]:
    """Enumerate single moves, nearest offsets first, interleaving groups."""
    rotators = [_ring_rotations(ring_data, r, settings) for r in range(settings.num_rings) if ring_data[r]]
    shifters = [
        _row_shifts(ring_data, th, settings)
        for th in range(settings.half_angles)
        if pack_row(ring_data, th, settings)
    ]
    for n in range(settings.num_angles):
        for rotator in rotators:
            yield next(rotator)
        if n < settings.shift_period:
            for shifter in shifters:
                yield next(shifter)


def evaluate(ring_data: Sequence[int], settings: RingSettings = DEFAULT_SETTINGS) -> Optional[Solution]:
    """
    Goal predicate: can every marker be cleared in the allowed actions?

    Markers in the outer half of the rings each need a jump along their
    angle; markers only in the inner half are cleared in adjacent pairs of
    angles. One action exists per four markers, rounded up.
    """
    width = settings.num_angles
    split = settings.num_rings // 2
    markers = sum(bin(subring).count("1") for subring in ring_data)
    outer = 0
    for subring in ring_data[split:]:
        outer |= subring
    inner = 0
    for subring in ring_data[:split]:
        inner |= subring
    inner &= ~outer
    actions = -(-markers // MARKERS_PER_ACTION)
    jump_rows = bin(outer).count("1")

    if inner and inner != (1 << width) - 1:
        # Start pairing at the beginning of a run so no group straddles the seam.
        trailing_ones = 0
        while inner & (1 << trailing_ones):
            trailing_ones += 1
        inner = rotate_bits_right(inner, trailing_ones, width)
    hammerable_groups = 0
    while inner:
        lowest = (inner & -inner).bit_length() - 1
        inner &= ~(0b11 << lowest)
        hammerable_groups += 1

    if hammerable_groups + jump_rows > actions:
        return None
    return Solution(moves=(), result=tuple(ring_data), jump_rows=jump_rows, hammerable_groups=hammerable_groups)


def _find_at_turn(ring_data: RingData, turn: int, context: _SearchContext) -> Optional[Solution]:
    context.nodes += 1
    if turn == 0:
        return evaluate(ring_data, context.settings)
    for moved, movement in iterate_movements(ring_data, context.settings):
        solution = _find_at_turn(moved, turn - 1, context)
        if solution is not None:
            return Solution(
                moves=(movement,) + solution.moves,
                result=solution.result,
                jump_rows=solution.jump_rows,
                hammerable_groups=solution.hammerable_groups,
            )
    return None


def find_solution(
    ring_data: Sequence[int],
    max_turns: int = MAX_TURNS,
    settings: RingSettings = DEFAULT_SETTINGS,
    telemetry_sink: Optional[TelemetrySink] = None,
    stats: Optional[SolveStats] = None,
) -> Optional[Solution]:
    if len(ring_data) != settings.num_rings:
        raise ValueError(f"expected {settings.num_rings} rings, got {len(ring_data)}")
    if max_turns < 0:
        raise ValueError("max_turns must be non-negative")
    start = time.perf_counter()
    data = tuple(int(x) for x in ring_data)
    emit_dataclass_event(telemetry_sink, "search_start", SearchStartEvent(ring_data=list(data), max_turns=max_turns))
    context = _SearchContext(settings=settings)
    solution: Optional[Solution] = None
    turns = 0
    for turn in range(max_turns + 1):
        turns = turn
        solution = _find_at_turn(data, turn, context)
        if solution is not None:
            break
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    if stats is not None:
        stats.nodes = context.nodes
        stats.elapsed_ms = elapsed_ms
        stats.turns = turns
    emit_dataclass_event(
        telemetry_sink,
        "search_end",
        SearchEndEvent(found=solution is not None, turns=turns, nodes=context.nodes, elapsed_ms=elapsed_ms),
    )
    return solution


def encode_move(m: Move) -> Dict[str, Any]:
    if isinstance(m, Rotate):
        return {"type": "ring", "r": m.ring, "amount": m.amount, "clockwise": m.clockwise}
    if isinstance(m, Shift):
        return {"type": "row", "th": m.row, "amount": m.amount, "outward": m.outward}
    raise TypeError(f"not a move: {m!r}")


def encode_solution(solution: Optional[Solution]) -> Optional[Dict[str, Any]]:
    if solution is None:
        return None
    return {
        "moves": [encode_move(m) for m in solution.moves],
        "result": list(solution.result),
        "jump_rows": solution.jump_rows,
        "hammerable_groups": solution.hammerable_groups,
    }


def cache_key(ring_data: Sequence[int], max_turns: int, settings: RingSettings) -> CacheKey:
    return (settings.num_rings, settings.num_angles, max_turns, tuple(int(x) for x in ring_data))


def solve_wire(
    ring_data: Sequence[int],
    max_turns: int = MAX_TURNS,
    settings: RingSettings = DEFAULT_SETTINGS,
    cache: Optional[Dict[CacheKey, Optional[Solution]]] = None,
    telemetry_sink: Optional[TelemetrySink] = None,
    on_cache_mutation: Optional[Callable[[], None]] = None,
) -> Dict[str, Any]:
    """Solve and answer in the gateway wire format."""
    key = cache_key(ring_data, max_turns, settings)
    if cache is not None and key in cache:
        return {"type": "done", "solution": encode_solution(cache[key])}
    solution = find_solution(ring_data, max_turns, settings, telemetry_sink=telemetry_sink)
    if cache is not None:
        cache[key] = solution
        _prune_cache(cache)
        if on_cache_mutation is not None:
            on_cache_mutation()
    return {"type": "done", "solution": encode_solution(solution)}


def default_cache_path() -> Path:
    override = os.environ.get(CACHE_ENV, "").strip()
    if override:
        return Path(override)
    return Path.home() / ".ring_solver_cache.pkl.gz"


def _prune_cache(cache: Dict[CacheKey, Optional[Solution]]) -> None:
    while len(cache) > CACHE_MAX_ENTRIES:
        cache.pop(next(iter(cache)))


def load_cache(path: Path) -> Dict[CacheKey, Optional[Solution]]:
    # Security: pickle is unsafe for untrusted files. Only load caches you trust.
    try:
        with gzip.open(path, "rb") as handle:
            raw = pickle.load(handle)
    except Exception:
        return {}

    if not isinstance(raw, dict):
        return {}
    if raw.get("version") != CACHE_VERSION:
        return {}
    raw_cache = raw.get("solutions")
    if not isinstance(raw_cache, dict):
        return {}

    cache: Dict[CacheKey, Optional[Solution]] = {}
    for key, entry in raw_cache.items():
        if not isinstance(key, tuple) or len(key) != 4:
            continue
        if not isinstance(key[3], tuple):
            continue
        if entry is not None and not isinstance(entry, Solution):
            continue
        cache[key] = entry
    _prune_cache(cache)
    return cache


def save_cache(cache: Dict[CacheKey, Optional[Solution]], path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": CACHE_VERSION,
            "solutions": cache,
        }
        tmp_path = path.with_name(path.name + ".tmp")
        with gzip.open(tmp_path, "wb", compresslevel=CACHE_GZIP_LEVEL) as handle:
            pickle.dump(data, handle, protocol=pickle.HIGHEST_PROTOCOL)
        tmp_path.replace(path)
    except OSError:
        return
