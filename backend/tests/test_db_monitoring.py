from __future__ import annotations

from sqlalchemy import create_engine, text

from competency_engine.db import monitoring


def test_instrument_engine_emits_pool_status(monkeypatch) -> None:
    emitted: list[tuple[str, dict[str, object]]] = []

    monkeypatch.setattr(monitoring, "_TELEMETRY_INTERVAL", 0)
    monkeypatch.setattr(monitoring, "emit_event", lambda name, **payload: emitted.append((name, payload)))

    engine = create_engine("sqlite:///:memory:", future=True)
    try:
        monitoring.instrument_engine(engine)
        monitoring.instrument_engine(engine)
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))

        assert emitted
        names = {name for name, _ in emitted}
        assert names == {"db_pool_status"}
        events = [payload["event"] for _, payload in emitted]
        # A second instrument call must not double the listeners.
        assert events.count("db_pool_connect") == 1

        snapshot = monitoring.get_pool_snapshot(engine)
        assert snapshot["connects"] == 1
        assert snapshot["checkouts"] >= 1
    finally:
        engine.dispose()


def test_pool_snapshot_shape() -> None:
    engine = create_engine("sqlite:///:memory:", future=True)
    try:
        snapshot = monitoring.get_pool_snapshot(engine)
        assert set(snapshot) == {"status", "connects", "checkouts", "checkins"}
        assert isinstance(snapshot["status"], str)
    finally:
        engine.dispose()
