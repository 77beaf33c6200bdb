from __future__ import annotations

import asyncio
import json

from scripts import competency_report


def test_build_report_renders_analytics(adapter) -> None:
    adapter.seed("rep-1", total_points=1200)
    payload = json.loads(asyncio.run(competency_report.build_report("rep-1", adapter, indent=0)))

    assert payload["snapshot"]["subject_id"] == "rep-1"
    assert payload["insights"]["level_progress"]["current"]["id"] == "developing"
    assert "development_plan" in payload


def test_main_returns_error_for_unknown_subject(monkeypatch, adapter) -> None:
    original = competency_report.build_report

    async def with_fake(subject_id: str, indent: int = 2) -> str:
        return await original(subject_id, adapter, indent=indent)

    monkeypatch.setattr(competency_report, "build_report", with_fake)
    assert competency_report.main(["ghost"]) == 1
