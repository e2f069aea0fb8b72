import json
import queue
import unittest

from ring_animation import AnimationDriver
from ring_engine import Grid
from ring_movement import Rotate
from ring_scheduler import AnimationMode, MoveScheduler
from ring_telemetry import (
    CallbackTelemetrySink,
    MoveStepEvent,
    NullTelemetrySink,
    QueueTelemetrySink,
    TelemetryEnvelope,
    emit_dataclass_event,
    emit_event,
    encode_envelope,
    parse_host_port,
    sink_from_env,
)


class _CollectSink:
    def __init__(self) -> None:
        self.events: list[TelemetryEnvelope] = []

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self.events.append(envelope)

    def close(self) -> None:
        return


class _BrokenSink:
    def emit(self, envelope: TelemetryEnvelope) -> None:
        raise OSError("sink down")

    def close(self) -> None:
        return


class TestTelemetry(unittest.TestCase):
    def test_scheduler_emits_move_events(self):
        sink = _CollectSink()
        scheduler = MoveScheduler(Grid(), AnimationDriver(clock=lambda: 0.0), telemetry_sink=sink)
        scheduler.submit(Rotate(1, False, 3), AnimationMode.NONE)
        self.assertEqual([event.event for event in sink.events], ["move_done"])
        self.assertEqual(sink.events[0].data, {"move": "ring 1 ccw x3", "mode": "none", "pending_callbacks": 0})

    def test_dataclass_payload(self):
        sink = _CollectSink()
        emit_dataclass_event(sink, "move_step", MoveStepEvent(move="row 0 out x1", remaining_steps=0))
        envelope = sink.events[0]
        self.assertEqual(envelope.event, "move_step")
        self.assertEqual(envelope.data, {"move": "row 0 out x1", "remaining_steps": 0})
        self.assertGreater(envelope.ts_ms, 0)

    def test_sink_failures_are_ignored(self):
        emit_event(_BrokenSink(), "noop", {"a": 1})
        emit_event(None, "noop", {"a": 1})
        emit_dataclass_event(None, "noop", MoveStepEvent(move="-", remaining_steps=0))

    def test_builtin_sinks(self):
        received = []
        emit_event(CallbackTelemetrySink(received.append), "x", {"n": 1})
        self.assertEqual(received[0].data, {"n": 1})

        q = queue.Queue()
        emit_event(QueueTelemetrySink(q), "y", {"n": 2})
        self.assertEqual(q.get_nowait().event, "y")

        emit_event(NullTelemetrySink(), "z", {})

    def test_encode_envelope_is_json_line(self):
        raw = encode_envelope(TelemetryEnvelope(event="solve_result", ts_ms=12, data={"outcome": "solution"}))
        self.assertTrue(raw.endswith(b"\n"))
        self.assertEqual(
            json.loads(raw.decode("utf-8")),
            {"event": "solve_result", "ts_ms": 12, "data": {"outcome": "solution"}},
        )

    def test_parse_host_port(self):
        self.assertEqual(parse_host_port("127.0.0.1:7007"), ("127.0.0.1", 7007))
        self.assertEqual(parse_host_port(" localhost:80 "), ("localhost", 80))
        for bad in ("", "localhost", ":80", "host:x", "host:0", "host:70000"):
            self.assertIsNone(parse_host_port(bad), bad)

    def test_sink_from_env_without_endpoint(self):
        self.assertIsNone(sink_from_env(None))
        self.assertIsNone(sink_from_env("not-an-endpoint"))


if __name__ == "__main__":
    unittest.main()
