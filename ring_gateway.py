"""Asynchronous request/response boundary to the ring solver process."""

from __future__ import annotations

from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union
import multiprocessing as mp
import queue
import time

from ring_engine import Grid
from ring_movement import Move, MoveRangeError, Rotate, Shift, simplify
from ring_settings import DEFAULT_SETTINGS, MAX_TURNS, RingSettings
from ring_solver import CacheKey, Solution, load_cache, save_cache, solve_wire
from ring_telemetry import (
    SolveRequestEvent,
    SolveResultEvent,
    TelemetrySink,
    ThreadedTCPSink,
    emit_dataclass_event,
)

SOLVER_CLOSE_TIMEOUT_MS = 1_000
EVENT_QUEUE_SIZE = 64

Backend = Callable[
    [Sequence[int], int, RingSettings, Dict[CacheKey, Any], Optional[Callable[[], None]]],
    Mapping[str, Any],
]


class SolverError(Exception):
    """The solver failed or could not be reached."""


class SolverProtocolError(SolverError):
    """The solver answered with a payload that does not match the wire format."""


class SolverBusyError(RuntimeError):
    """A request is already in flight on this gateway."""


def _reference_backend(
    ring_data: Sequence[int],
    max_turns: int,
    settings: RingSettings,
    cache: Dict[CacheKey, Any],
    on_cache_mutation: Optional[Callable[[], None]] = None,
) -> Mapping[str, Any]:
    return solve_wire(ring_data, max_turns, settings, cache=cache, on_cache_mutation=on_cache_mutation)


BACKENDS: Dict[str, Backend] = {
    "reference": _reference_backend,
}


def encode_request(request_id: int, ring_data: Sequence[int], max_turns: int, settings: RingSettings) -> dict:
    return {
        "type": "solve",
        "request_id": int(request_id),
        "ring_data": [int(x) for x in ring_data],
        "max_turns": int(max_turns),
        "num_rings": settings.num_rings,
        "num_angles": settings.num_angles,
    }


def _require(payload: Mapping[str, Any], key: str, kind: type) -> Any:
    if key not in payload:
        raise SolverProtocolError(f"missing field {key!r}")
    value = payload[key]
    # bool is an int subclass; reject it where a count is expected.
    if kind is int and isinstance(value, bool):
        raise SolverProtocolError(f"field {key!r} must be int, got bool")
    if not isinstance(value, kind):
        raise SolverProtocolError(f"field {key!r} must be {kind.__name__}, got {type(value).__name__}")
    return value


def decode_move(payload: Any, settings: RingSettings = DEFAULT_SETTINGS) -> Optional[Move]:
    if not isinstance(payload, Mapping):
        raise SolverProtocolError(f"move must be an object, got {type(payload).__name__}")
    kind = payload.get("type")
    amount = _require(payload, "amount", int)
    move: Move
    if kind == "ring":
        r = _require(payload, "r", int)
        if r < 0 or r >= settings.num_rings:
            raise SolverProtocolError(f"ring index out of range: {r}")
        move = Rotate(r, _require(payload, "clockwise", bool), amount)
    elif kind == "row":
        th = _require(payload, "th", int)
        if th < 0 or th >= settings.num_angles:
            raise SolverProtocolError(f"row index out of range: {th}")
        move = Shift(th, _require(payload, "outward", bool), amount)
    else:
        raise SolverProtocolError(f"unknown move type {kind!r}")
    try:
        return simplify(move, settings)
    except MoveRangeError as exc:
        raise SolverProtocolError(str(exc)) from exc


def decode_response(payload: Any, settings: RingSettings = DEFAULT_SETTINGS) -> Optional[Solution]:
    """Turn a wire response into a Solution, None for "no solution", or raise."""
    if not isinstance(payload, Mapping):
        raise SolverProtocolError(f"response must be an object, got {type(payload).__name__}")
    kind = payload.get("type")
    if kind == "error":
        raise SolverError(str(payload.get("error", "unknown solver error")))
    if kind != "done":
        raise SolverProtocolError(f"unknown response type {kind!r}")
    if "solution" not in payload:
        raise SolverProtocolError("missing field 'solution'")
    raw = payload["solution"]
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise SolverProtocolError("solution must be an object or null")
    raw_moves = _require(raw, "moves", list)
    moves = []
    for raw_move in raw_moves:
        move = decode_move(raw_move, settings)
        if move is not None:
            moves.append(move)
    result = _require(raw, "result", list)
    if len(result) != settings.num_rings:
        raise SolverProtocolError(f"result must hold {settings.num_rings} rings, got {len(result)}")
    limit = 1 << settings.num_angles
    for subring in result:
        if isinstance(subring, bool) or not isinstance(subring, int) or subring < 0 or subring >= limit:
            raise SolverProtocolError(f"result ring out of range: {subring!r}")
    return Solution(
        moves=tuple(moves),
        result=tuple(result),
        jump_rows=_require(raw, "jump_rows", int),
        hammerable_groups=_require(raw, "hammerable_groups", int),
    )


def _solver_process_worker(
    commands: "mp.Queue[dict]",
    events: "mp.Queue[tuple]",
    backend_name: str,
    telemetry_endpoint: Optional[Tuple[str, int]],
) -> None:
    backend = BACKENDS.get(backend_name)
    cache: Dict[CacheKey, Any] = {}
    dirty = False
    telemetry_sink: Optional[ThreadedTCPSink] = None
    if telemetry_endpoint is not None:
        telemetry_sink = ThreadedTCPSink(telemetry_endpoint[0], telemetry_endpoint[1])

    def _mark_dirty() -> None:
        nonlocal dirty
        dirty = True

    def _put_event(event: tuple) -> None:
        try:
            events.put_nowait(event)
        except queue.Full:
            return

    try:
        while True:
            cmd = commands.get()
            cmd_type = cmd.get("type")
            if cmd_type == "shutdown":
                break
            if cmd_type == "load_cache":
                cache = load_cache(Path(cmd["path"]))
                dirty = False
                continue
            if cmd_type == "save_cache":
                if dirty:
                    save_cache(cache, Path(cmd["path"]))
                    dirty = False
                continue
            if cmd_type != "solve":
                continue
            request_id = int(cmd.get("request_id", 0))
            if backend is None:
                _put_event(("result", request_id, {"type": "error", "error": f"unknown backend {backend_name!r}"}))
                continue
            try:
                settings = RingSettings(int(cmd["num_rings"]), int(cmd["num_angles"]))
                payload = dict(backend(list(cmd["ring_data"]), int(cmd["max_turns"]), settings, cache, _mark_dirty))
            except Exception as exc:
                payload = {"type": "error", "error": f"{type(exc).__name__}: {exc}"}
            _put_event(("result", request_id, payload))
    finally:
        if telemetry_sink is not None:
            telemetry_sink.close()


class SolverGateway:
    """
    Owns the solver process and tracks the single request in flight.

    `solve` returns a future that resolves to a Solution, to None when the
    solver found nothing within its move budget, or to a SolverError. The
    future only changes inside `poll`, so callers decide when results land
    (once per frame from the Qt frame source, or via `wait`).
    """

    def __init__(
        self,
        settings: RingSettings = DEFAULT_SETTINGS,
        max_turns: int = MAX_TURNS,
        backend: str = "reference",
        telemetry_endpoint: Optional[Tuple[str, int]] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
        cache_path: Optional[Path] = None,
    ) -> None:
        self.settings = settings
        self.max_turns = max_turns
        self.backend = backend
        self.telemetry_sink = telemetry_sink
        self.cache_path = cache_path
        self._telemetry_endpoint = telemetry_endpoint
        self._command_queue: "mp.Queue[dict]" = mp.Queue()
        self._event_queue: "mp.Queue[tuple]" = mp.Queue(maxsize=EVENT_QUEUE_SIZE)
        self._process: Optional[mp.Process] = None
        self._next_request_id = 0
        self._active_request_id: Optional[int] = None
        self._active_future: Optional["Future[Optional[Solution]]"] = None
        self._closed = False

    @property
    def busy(self) -> bool:
        return self._active_request_id is not None

    def _ensure_process(self) -> bool:
        if self._closed:
            return False
        if self._process is not None and self._process.is_alive():
            return True
        if self._process is not None:
            self._process.join(timeout=0.05)
            self._process = None
        try:
            process = mp.Process(
                target=_solver_process_worker,
                args=(
                    self._command_queue,
                    self._event_queue,
                    self.backend,
                    self._telemetry_endpoint,
                ),
                name="ring-solver",
                daemon=True,
            )
            process.start()
        except Exception:
            self._process = None
            return False
        self._process = process
        if self.cache_path is not None:
            self._command_queue.put_nowait({"type": "load_cache", "path": str(self.cache_path)})
        return True

    def _send_command(self, cmd: dict) -> bool:
        if not self._ensure_process():
            return False
        try:
            self._command_queue.put_nowait(cmd)
            return True
        except queue.Full:
            try:
                self._command_queue.put(cmd, timeout=0.05)
                return True
            except Exception:
                return False

    def solve(
        self,
        source: Union[Grid, Sequence[int]],
        max_turns: Optional[int] = None,
    ) -> "Future[Optional[Solution]]":
        if self.busy:
            raise SolverBusyError("a solve request is already in flight")
        ring_data = source.to_ring_data() if isinstance(source, Grid) else [int(x) for x in source]
        if len(ring_data) != self.settings.num_rings:
            raise ValueError(f"expected {self.settings.num_rings} rings, got {len(ring_data)}")
        turns = self.max_turns if max_turns is None else max_turns
        self._next_request_id += 1
        request_id = self._next_request_id
        future: "Future[Optional[Solution]]" = Future()
        future.set_running_or_notify_cancel()
        emit_dataclass_event(
            self.telemetry_sink,
            "solve_request",
            SolveRequestEvent(request_id=request_id, ring_data=list(ring_data), max_turns=turns),
        )
        if not self._send_command(encode_request(request_id, ring_data, turns, self.settings)):
            self._finish(request_id, future, error=SolverError("Failed to start solver process"))
            return future
        self._active_request_id = request_id
        self._active_future = future
        return future

    def poll(self) -> None:
        while True:
            try:
                event = self._event_queue.get_nowait()
            except queue.Empty:
                break
            if not event or event[0] != "result" or len(event) != 3:
                continue
            _, request_id, payload = event
            if self._active_request_id != int(request_id) or self._active_future is None:
                continue
            future = self._active_future
            self._active_request_id = None
            self._active_future = None
            try:
                solution = decode_response(payload, self.settings)
            except SolverError as exc:
                self._finish(int(request_id), future, error=exc)
                continue
            self._finish(int(request_id), future, solution=solution)

    def _finish(
        self,
        request_id: int,
        future: "Future[Optional[Solution]]",
        solution: Optional[Solution] = None,
        error: Optional[SolverError] = None,
    ) -> None:
        if error is not None:
            outcome = "error"
        elif solution is None:
            outcome = "no_solution"
        else:
            outcome = "solution"
        emit_dataclass_event(
            self.telemetry_sink,
            "solve_result",
            SolveResultEvent(
                request_id=request_id,
                outcome=outcome,
                moves=0 if solution is None else len(solution.moves),
                error=None if error is None else str(error),
            ),
        )
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(solution)

    def wait(self, future: "Future[Any]", timeout_ms: int) -> bool:
        deadline = time.perf_counter() + (max(0, timeout_ms) / 1000.0)
        while time.perf_counter() < deadline:
            self.poll()
            if future.done():
                return True
            time.sleep(0.01)
        self.poll()
        return future.done()

    def shutdown(self, timeout_ms: int = SOLVER_CLOSE_TIMEOUT_MS) -> bool:
        future = self._active_future
        self._active_request_id = None
        self._active_future = None
        if future is not None and not future.done():
            future.set_exception(SolverError("solver shut down"))
        process = self._process
        if process is None:
            return True
        try:
            if self.cache_path is not None and process.is_alive():
                self._command_queue.put_nowait({"type": "save_cache", "path": str(self.cache_path)})
            self._command_queue.put_nowait({"type": "shutdown"})
        except queue.Full:
            pass
        process.join(timeout=max(0, timeout_ms) / 1000.0)
        if process.is_alive():
            process.terminate()
            process.join(timeout=0.25)
        stopped = not process.is_alive()
        self._process = None
        return stopped

    def close(self) -> None:
        self.shutdown(SOLVER_CLOSE_TIMEOUT_MS)
        self._closed = True
