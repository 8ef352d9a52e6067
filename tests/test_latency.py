from __future__ import annotations

import pytest

from callguard.core.latency import LatencyTrace, LatencyTracer


def test_milestones_are_recorded_once():
    tracer = LatencyTracer("s1")
    tracer.mark("stream_started")
    first = tracer.trace.stream_started
    tracer.mark("stream_started")

    assert first > 0
    assert tracer.trace.stream_started == first


def test_unknown_milestone():
    with pytest.raises(ValueError):
        LatencyTracer("s1").mark("first_coffee")


def test_deltas_only_for_recorded_pairs():
    trace = LatencyTrace(session_id="s1", stream_started=100.0, first_trigger=100.25, alert_dispatched=100.5)
    deltas = trace.deltas()

    assert deltas["start_to_first_trigger_ms"] == 250.0
    assert deltas["trigger_to_alert_ms"] == 250.0
    assert deltas["start_to_alert_ms"] == 500.0
    assert deltas["start_to_first_transcript_ms"] is None

    summary = trace.to_dict()
    assert "first_verdict" not in summary
    assert summary["session_id"] == "s1"
