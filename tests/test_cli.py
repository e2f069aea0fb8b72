import argparse
import os
import unittest
from concurrent.futures import Future
from io import StringIO
from pathlib import Path
from unittest.mock import patch

import cli
from ring_engine import Position
from ring_gateway import SolverError
from ring_movement import Rotate, Shift
from ring_session import PuzzleSession
from ring_settings import TELEMETRY_ENV
from ring_solver import Solution
from ring_telemetry import TelemetryEnvelope


class _CollectSink:
    def __init__(self) -> None:
        self.events: list[TelemetryEnvelope] = []

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self.events.append(envelope)

    def close(self) -> None:
        return


class _DummyGateway:
    outcome = None

    def __init__(self, settings, max_turns=3, telemetry_endpoint=None, telemetry_sink=None, cache_path=None) -> None:
        self.settings = settings
        self.telemetry_endpoint = telemetry_endpoint
        self.telemetry_sink = telemetry_sink
        self.max_turns = max_turns
        self.cache_path = cache_path
        self.solve_calls = []
        self.shutdown_calls = []
        self.busy = False

    def solve(self, source, max_turns=None):
        self.solve_calls.append((source.to_ring_data(), max_turns))
        future = Future()
        future.set_running_or_notify_cancel()
        if isinstance(self.outcome, Exception):
            future.set_exception(self.outcome)
        else:
            future.set_result(self.outcome)
        return future

    def wait(self, future, timeout_ms):
        return future.done()

    def poll(self):
        return

    def shutdown(self, timeout_ms=0):
        self.shutdown_calls.append(timeout_ms)
        return True


class TestCommandParsing(unittest.TestCase):
    def test_parse_command(self):
        self.assertEqual(cli.parse_command("r 0 3"), ("r", (0, 3)))
        self.assertEqual(cli.parse_command("  S 2 -1 "), ("s", (2, -1)))
        self.assertEqual(cli.parse_command("quit"), ("q", ()))
        self.assertEqual(cli.parse_command("solve"), ("x", ()))
        self.assertIsNone(cli.parse_command(""))
        self.assertIsNone(cli.parse_command("r 0"))
        self.assertIsNone(cli.parse_command("r a b"))
        self.assertIsNone(cli.parse_command("jump 1"))

    def test_move_from_command(self):
        self.assertEqual(cli.move_from_command("r", 1, -2), Rotate(1, False, 2))
        self.assertEqual(cli.move_from_command("s", 4, 3), Shift(4, True, 3))
        self.assertIsNone(cli.move_from_command("r", 0, 0))

    def test_parse_markers(self):
        self.assertEqual(cli.parse_markers("0:0, 3:11"), [Position(0, 0), Position(3, 11)])
        self.assertEqual(cli.parse_markers(""), [])
        with self.assertRaises(argparse.ArgumentTypeError):
            cli.parse_markers("1-2")
        with self.assertRaises(argparse.ArgumentTypeError):
            cli.parse_markers("a:b")

    def test_read_command_reprompts(self):
        with patch("builtins.input", side_effect=["", "bogus", "u"]), patch("sys.stdout", new=StringIO()) as out:
            self.assertEqual(cli.read_command("> "), ("u", ()))
        self.assertIn("Unknown command", out.getvalue())

    def test_read_command_eof_quits(self):
        with patch("builtins.input", side_effect=EOFError), patch("sys.stdout", new=StringIO()):
            self.assertEqual(cli.read_command("> "), ("q", ()))


class TestCLIMain(unittest.TestCase):
    def run_main(self, argv, inputs, outcome=None):
        sessions = []
        gateways = []

        def make_session(*args, **kwargs):
            session = PuzzleSession(*args, **kwargs)
            sessions.append(session)
            return session

        def make_gateway(*args, **kwargs):
            gateway = _DummyGateway(*args, **kwargs)
            gateway.outcome = outcome
            gateways.append(gateway)
            return gateway

        feed = iter(inputs)
        with (
            patch("builtins.input", side_effect=lambda _prompt="": next(feed)),
            patch.object(cli, "SolverGateway", side_effect=make_gateway),
            patch.object(cli, "PuzzleSession", side_effect=make_session),
            patch.object(cli, "default_cache_path", return_value=Path("/tmp/ring_cli_cache_test.pkl.gz")),
            patch("atexit.register", side_effect=lambda _fn: None),
            patch("sys.stdout", new=StringIO()) as out,
        ):
            rc = cli.main(argv)
        return rc, out.getvalue(), sessions, gateways

    def test_moves_and_undo(self):
        rc, output, sessions, _ = self.run_main(["--markers", "0:0"], ["r 0 2", "s 2 1", "u", "q"])
        self.assertEqual(rc, 0)
        session = sessions[0]
        self.assertEqual(session.grid.markers(), [Position(0, 2)])
        self.assertEqual(list(session.history), [Rotate(0, True, 2)])
        self.assertIn("History: ring 0 cw x2, row 2 out x1", output)

    def test_toggle_and_errors(self):
        rc, output, sessions, _ = self.run_main([], ["m 1 5", "m 9 0", "r 0 0", "u", "q"])
        self.assertEqual(rc, 0)
        self.assertEqual(sessions[0].grid.markers(), [Position(1, 5)])
        self.assertIn("out of range", output)
        self.assertIn("Amount must be non-zero.", output)
        self.assertIn("Nothing to undo.", output)

    def test_solve_and_play(self):
        solution = Solution(moves=(Rotate(0, True, 1),), result=(2, 4, 0, 0), jump_rows=0, hammerable_groups=1)
        rc, output, sessions, gateways = self.run_main(
            ["--markers", "0:0,1:2", "--max-turns", "2"],
            ["x", "p", "q"],
            outcome=solution,
        )
        self.assertEqual(rc, 0)
        self.assertIn("Solution: ring 0 cw x1", output)
        self.assertEqual(gateways[0].solve_calls, [([1, 4, 0, 0], None)])
        self.assertEqual(gateways[0].max_turns, 2)
        self.assertEqual(sessions[0].grid.to_ring_data(), [2, 4, 0, 0])

    def test_no_solution(self):
        rc, output, _, _ = self.run_main(["--markers", "0:0,1:2", "--max-turns", "0"], ["x", "p", "q"])
        self.assertEqual(rc, 0)
        self.assertIn("No solution within 0 moves.", output)
        self.assertIn("No solution to play.", output)

    def test_solver_error(self):
        rc, output, _, _ = self.run_main([], ["x", "q"], outcome=SolverError("Failed to start solver process"))
        self.assertEqual(rc, 0)
        self.assertIn("Solver error: Failed to start solver process", output)

    def test_no_cache_flag(self):
        _, _, _, gateways = self.run_main(["--no-cache"], ["q"])
        self.assertIsNone(gateways[0].cache_path)
        _, _, _, gateways = self.run_main([], ["q"])
        self.assertEqual(gateways[0].cache_path, Path("/tmp/ring_cli_cache_test.pkl.gz"))

    def test_telemetry_endpoint_feeds_session_and_gateway(self):
        sink = _CollectSink()
        with (
            patch.dict(os.environ, {TELEMETRY_ENV: "127.0.0.1:7007"}),
            patch.object(cli, "sink_from_env", return_value=sink) as make_sink,
        ):
            rc, _, sessions, gateways = self.run_main(["--markers", "0:0"], ["r 0 1", "q"])
        self.assertEqual(rc, 0)
        make_sink.assert_called_once_with("127.0.0.1:7007")
        self.assertIs(gateways[0].telemetry_sink, sink)
        self.assertEqual(gateways[0].telemetry_endpoint, ("127.0.0.1", 7007))
        self.assertIs(sessions[0].scheduler.telemetry_sink, sink)
        self.assertIn("move_done", [event.event for event in sink.events])

    def test_no_telemetry_without_endpoint(self):
        with patch.dict(os.environ, {TELEMETRY_ENV: ""}):
            _, _, sessions, gateways = self.run_main([], ["q"])
        self.assertIsNone(gateways[0].telemetry_sink)
        self.assertIsNone(sessions[0].scheduler.telemetry_sink)

    def test_invalid_shape(self):
        rc, output, _, _ = self.run_main(["--angles", "11"], [])
        self.assertEqual(rc, 2)
        self.assertIn("Invalid puzzle shape", output)
        rc, _, _, _ = self.run_main(["--max-turns", "-1"], [])
        self.assertEqual(rc, 2)

    def test_marker_out_of_range(self):
        rc, _, _, _ = self.run_main(["--markers", "4:0"], [])
        self.assertEqual(rc, 2)

    def test_other_shape(self):
        rc, output, sessions, _ = self.run_main(["--rings", "2", "--angles", "8", "--markers", "1:7"], ["r 1 1", "q"])
        self.assertEqual(rc, 0)
        self.assertEqual(sessions[0].grid.markers(), [Position(1, 0)])
        self.assertIn("r1", output)


if __name__ == "__main__":
    unittest.main()
