from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum

from competency_engine.telemetry import TelemetryEvent, emit_event, register_listener, unregister_listener


class _Tier(Enum):
    GOLD = "gold"


def test_listeners_receive_sanitized_payload() -> None:
    received: list[TelemetryEvent] = []
    register_listener(received.append)

    emit_event("competency_sync_tick", at=datetime(2024, 6, 1, tzinfo=timezone.utc), tier=_Tier.GOLD, delivered=2)

    assert len(received) == 1
    event = received[0]
    assert event.name == "competency_sync_tick"
    assert event.payload == {"at": "2024-06-01T00:00:00+00:00", "tier": "gold", "delivered": 2}


def test_failing_listener_is_logged_not_raised(caplog) -> None:
    received: list[TelemetryEvent] = []

    def broken(event: TelemetryEvent) -> None:
        raise RuntimeError("listener down")

    register_listener(broken)
    register_listener(received.append)

    with caplog.at_level(logging.INFO, logger="competency.telemetry"):
        emit_event("competency_action_recorded", subject_id="rep-1")

    assert len(received) == 1
    assert "Telemetry listener failed" in caplog.text
    assert '"event": "competency_action_recorded"' in caplog.text


def test_unregistered_listener_stops_receiving() -> None:
    received: list[TelemetryEvent] = []
    register_listener(received.append)
    unregister_listener(received.append)

    emit_event("competency_tool_unlocked", tool="cost_calculator")
    assert received == []
