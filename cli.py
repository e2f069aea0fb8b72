"""CLI for the rotating-ring puzzle and its solver."""

from __future__ import annotations

import argparse
import atexit
import os
import sys
from concurrent.futures import Future
from typing import List, Optional, Tuple

from ring_engine import Position, pretty_print
from ring_gateway import SOLVER_CLOSE_TIMEOUT_MS, SolverError, SolverGateway
from ring_movement import Move, Rotate, Shift, describe_move
from ring_session import PuzzleSession
from ring_settings import MAX_TURNS, NUM_ANGLES, NUM_RINGS, TELEMETRY_ENV, RingSettings
from ring_solver import default_cache_path
from ring_telemetry import parse_host_port, sink_from_env

SOLVE_TIMEOUT_MS = 60_000
ANIMATION_TIMEOUT_MS = 30_000

Command = Tuple[str, Tuple[int, ...]]


def print_help() -> None:
    print("Commands:")
    print("  m R TH     toggle the marker at ring R, angle TH")
    print("  r R N      rotate ring R by N cells (N>0 clockwise, N<0 anticlockwise)")
    print("  s TH N     shift the row through angle TH by N cells (N>0 outward, N<0 inward)")
    print("  u          undo the last move")
    print("  x          ask the solver for a solution")
    print("  p          play the last solution")
    print("  h          help, q quit")


def parse_markers(value: str) -> List[Position]:
    positions = []
    for chunk in value.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        r_raw, sep, th_raw = chunk.partition(":")
        if not sep:
            raise argparse.ArgumentTypeError(f"marker {chunk!r} must look like R:TH")
        try:
            positions.append(Position(int(r_raw), int(th_raw)))
        except ValueError:
            raise argparse.ArgumentTypeError(f"marker {chunk!r} must look like R:TH") from None
    return positions


def parse_command(raw: str) -> Optional[Command]:
    parts = raw.strip().lower().split()
    if not parts:
        return None
    name, args = parts[0], parts[1:]
    expected = {"m": 2, "r": 2, "s": 2, "u": 0, "x": 0, "p": 0, "h": 0, "q": 0}
    aliases = {"quit": "q", "help": "h", "undo": "u", "solve": "x", "play": "p"}
    name = aliases.get(name, name)
    if name not in expected or len(args) != expected[name]:
        return None
    try:
        values = tuple(int(a) for a in args)
    except ValueError:
        return None
    return name, values


def move_from_command(name: str, index: int, amount: int) -> Optional[Move]:
    if amount == 0:
        return None
    if name == "r":
        return Rotate(index, amount > 0, abs(amount))
    return Shift(index, amount > 0, abs(amount))


def read_command(prompt: str) -> Command:
    while True:
        try:
            raw = input(prompt)
        except EOFError:
            print()
            return "q", ()
        command = parse_command(raw)
        if command is not None:
            return command
        if raw.strip():
            print("Unknown command. Type h for help.")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Rotating-ring puzzle CLI")
    parser.add_argument("--rings", type=int, default=NUM_RINGS, help=f"number of rings (default: {NUM_RINGS})")
    parser.add_argument("--angles", type=int, default=NUM_ANGLES, help=f"cells per ring, even (default: {NUM_ANGLES})")
    parser.add_argument(
        "--max-turns",
        type=int,
        default=MAX_TURNS,
        help=f"solver move budget (default: {MAX_TURNS})",
    )
    parser.add_argument("--markers", type=parse_markers, default=[], help="initial markers as R:TH,R:TH,...")
    parser.add_argument("--animate", action="store_true", help="play moves through the Qt frame timer")
    parser.add_argument("--no-cache", action="store_true", help="do not load or save the solver cache")
    args = parser.parse_args(argv)

    try:
        settings = RingSettings(args.rings, args.angles)
    except ValueError as exc:
        print(f"Invalid puzzle shape: {exc}")
        return 2
    if args.max_turns < 0:
        print("--max-turns must be non-negative")
        return 2

    endpoint_raw = os.environ.get(TELEMETRY_ENV, "").strip()
    telemetry_sink = sink_from_env(endpoint_raw)
    if telemetry_sink is not None:
        atexit.register(telemetry_sink.close)
    gateway = SolverGateway(
        settings,
        max_turns=args.max_turns,
        telemetry_endpoint=parse_host_port(endpoint_raw) if endpoint_raw else None,
        telemetry_sink=telemetry_sink,
        cache_path=None if args.no_cache else default_cache_path(),
    )
    atexit.register(lambda: gateway.shutdown(SOLVER_CLOSE_TIMEOUT_MS))

    frame_source = None
    if args.animate:
        from PySide6.QtCore import QCoreApplication

        from ring_qt import QtFrameSource

        _app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])

    def _show_frame(m: Move, offset: float) -> None:
        sys.stdout.write(f"\r  {describe_move(m)} {offset:+.2f} ")
        sys.stdout.flush()

    session = PuzzleSession(
        settings,
        gateway=gateway,
        animate=args.animate,
        telemetry_sink=telemetry_sink,
        frame_callback=_show_frame if args.animate else None,
    )
    if args.animate:
        frame_source = QtFrameSource(session.driver, gateway=gateway)

    def _wait(future: Future, timeout_ms: int) -> bool:
        if frame_source is not None:
            done = frame_source.run_until(future, timeout_ms)
            sys.stdout.write("\r")
            return done
        return gateway.wait(future, timeout_ms)

    try:
        for pos in args.markers:
            session.toggle_marker(pos)
    except IndexError as exc:
        print(str(exc))
        return 2

    while True:
        print()
        print(pretty_print(session.grid))
        print(f"History: {session.history.describe()}")

        name, values = read_command("> ")
        if name == "q":
            return 0
        if name == "h":
            print_help()
            continue
        if name == "m":
            try:
                session.toggle_marker(Position(values[0], values[1]))
            except IndexError as exc:
                print(str(exc))
            continue
        if name in {"r", "s"}:
            move = move_from_command(name, values[0], values[1])
            if move is None:
                print("Amount must be non-zero.")
                continue
            try:
                future = session.move(move)
            except IndexError as exc:
                print(str(exc))
                continue
            if future is not None:
                _wait(future, ANIMATION_TIMEOUT_MS)
            continue
        if name == "u":
            if not len(session.history):
                print("Nothing to undo.")
                continue
            _wait(session.undo(), ANIMATION_TIMEOUT_MS)
            continue
        if name == "x":
            future = session.request_solution()
            if not _wait(future, SOLVE_TIMEOUT_MS):
                print("Solver timed out.")
                gateway.shutdown(0)
                continue
            try:
                solution = future.result()
            except SolverError as exc:
                print(f"Solver error: {exc}")
                continue
            if solution is None:
                print(f"No solution within {args.max_turns} moves.")
                continue
            moves = ", ".join(describe_move(m) for m in solution.moves) or "(already solved)"
            print(f"Solution: {moves}")
            print(f"Jump rows: {solution.jump_rows}, hammer groups: {solution.hammerable_groups}")
            continue
        if name == "p":
            future = session.play_solution()
            if future is None:
                print("No solution to play. Use x first.")
                continue
            _wait(future, ANIMATION_TIMEOUT_MS)
            continue


if __name__ == "__main__":
    raise SystemExit(main())
