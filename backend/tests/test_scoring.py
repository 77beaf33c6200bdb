from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from competency_engine.models import ActionInput, CompetencyScores, CompetencySnapshot, ProfessionalLevel
from competency_engine.scoring import ScoringPolicy, ScoringRules, ToolGate


@pytest.fixture
def rules() -> ScoringRules:
    return ScoringRules()


def _snapshot(**scores: float) -> CompetencySnapshot:
    return CompetencySnapshot(
        subject_id="rep-1",
        baseline_scores=CompetencyScores(**scores),
        current_scores=CompetencyScores(**scores),
    )


def _record(rules: ScoringRules, action_type: str, category: str, impact: str = "medium"):
    action = ActionInput(type=action_type, category=category, impact=impact)
    return rules.build_action_record(action, at=datetime(2024, 5, 1, tzinfo=timezone.utc))


@pytest.mark.parametrize(
    "action_type, impact, expected",
    [
        ("customer_meeting", "medium", 100),
        ("deal_closure", "high", 750),
        ("prospect_qualification", "low", 60),
        ("roi_presentation", "critical", 400),
        ("case_study_development", "low", 320),
    ],
)
def test_points_follow_base_table_and_multiplier(rules, action_type, impact, expected) -> None:
    assert rules.points_for(action_type, impact) == expected


def test_unknown_action_type_uses_default_base(rules) -> None:
    assert rules.points_for("coffee_chat", "medium") == 50
    assert rules.points_for("coffee_chat", "low") == 40


def test_action_type_lookup_ignores_case_and_padding(rules) -> None:
    assert rules.points_for("  Customer_Meeting ", "medium") == 100


def test_points_round_half_up() -> None:
    policy = ScoringPolicy(base_points={"tiny": 5}, impact_multipliers={"low": 0.5, "medium": 1.0})
    assert ScoringRules(policy).points_for("tiny", "low") == 3


@pytest.mark.parametrize(
    "points, level_id",
    [(-5, "foundation"), (0, "foundation"), (999, "foundation"), (1000, "developing"), (2499, "developing"),
     (2500, "proficient"), (10000, "expert"), (20000, "master"), (250000, "master")],
)
def test_level_for_points_boundaries(rules, points, level_id) -> None:
    assert rules.level_for_points(points).id == level_id


def test_level_progress_mid_level(rules) -> None:
    progress = rules.level_progress(1500)
    assert progress.current.id == "developing"
    assert progress.next is not None and progress.next.id == "proficient"
    assert progress.points_to_next == 1000
    assert progress.points_in_level == 500
    assert progress.points_needed_for_level == 1500
    assert progress.percent == pytest.approx(100 * 500 / 1500)


def test_level_progress_terminal_level(rules) -> None:
    progress = rules.level_progress(25000)
    assert progress.current.id == "master"
    assert progress.next is None
    assert progress.percent == 100.0
    assert progress.points_to_next == 0


def test_score_conversion(rules) -> None:
    assert rules.score_delta_for(60) == 6.0
    assert rules.points_for_score_delta(4.01) == 41
    assert rules.points_for_score_delta(-3) == 0


def test_unlock_gates(rules) -> None:
    below = rules.evaluate_unlocks(CompetencyScores(value_communication=69.9))
    assert below == {"icp_analysis": True, "cost_calculator": False, "business_case_builder": False}

    at_threshold = rules.evaluate_unlocks(CompetencyScores(value_communication=70, sales_execution=70))
    assert at_threshold["cost_calculator"] is True
    assert at_threshold["business_case_builder"] is True


def test_unlocks_never_close_once_open(rules) -> None:
    unlocks = rules.evaluate_unlocks(CompetencyScores(value_communication=10), {"cost_calculator": True})
    assert unlocks["cost_calculator"] is True


def test_unknown_previous_unlocks_are_carried(rules) -> None:
    unlocks = rules.evaluate_unlocks(CompetencyScores(), {"legacy_tool": True})
    assert unlocks["legacy_tool"] is True


def test_apply_action_moves_axis_and_opens_gate(rules) -> None:
    snapshot = _snapshot(value_communication=65)
    record = _record(rules, "prospect_qualification", "value_communication", "low")

    updated = rules.apply_action(snapshot, record)

    assert record.points_awarded == 60
    assert updated.current_scores.value_communication == pytest.approx(71.0)
    assert updated.total_points == 60
    assert updated.tool_unlocks["cost_calculator"] is True
    assert updated.recent_actions[0].action_id == record.action_id
    assert updated.last_action_date == record.timestamp
    # The input snapshot is untouched.
    assert snapshot.total_points == 0
    assert snapshot.recent_actions == []


def test_apply_action_clamps_scores(rules) -> None:
    snapshot = _snapshot(sales_execution=98)
    updated = rules.apply_action(snapshot, _record(rules, "deal_closure", "sales_execution", "critical"))
    assert updated.current_scores.sales_execution == 100.0
    assert updated.total_points == 1000


def test_general_actions_award_points_without_moving_axes(rules) -> None:
    snapshot = _snapshot(customer_analysis=40, value_communication=40, sales_execution=40)
    updated = rules.apply_action(snapshot, _record(rules, "customer_meeting", "general"))
    assert updated.total_points == 100
    assert updated.current_scores == snapshot.current_scores


def test_recent_actions_are_trimmed_newest_first() -> None:
    rules = ScoringRules(ScoringPolicy(recent_action_retention=2))
    snapshot = _snapshot()
    records = [_record(rules, "customer_meeting", "customer_analysis") for _ in range(3)]
    for record in records:
        snapshot = rules.apply_action(snapshot, record)

    assert [record.action_id for record in snapshot.recent_actions] == [records[2].action_id, records[1].action_id]
    assert snapshot.total_points == 300


def test_apply_achievement_is_idempotent(rules) -> None:
    snapshot = rules.apply_achievement(_snapshot(), "first_meeting", 25)
    again = rules.apply_achievement(snapshot, "first_meeting", 25)

    assert snapshot.achievement_ids == ["first_meeting"]
    assert snapshot.total_points == 25
    assert again.total_points == 25
    assert again.achievement_ids == ["first_meeting"]


def test_assessment_lowering_scores_keeps_unlocks(rules) -> None:
    snapshot = rules.apply_assessment(_snapshot(), CompetencyScores(value_communication=80))
    assert snapshot.tool_unlocks["cost_calculator"] is True

    lowered = rules.apply_assessment(snapshot, CompetencyScores(value_communication=30))
    assert lowered.current_scores.value_communication == 30
    assert lowered.tool_unlocks["cost_calculator"] is True
    assert lowered.last_assessment_date is not None


def test_custom_gate_threshold() -> None:
    policy = ScoringPolicy(
        tool_gates=[ToolGate(tool="pitch_deck", label="Pitch Deck", axis="sales_execution", threshold=40)]
    )
    rules = ScoringRules(policy)
    assert rules.evaluate_unlocks(CompetencyScores(sales_execution=40)) == {"pitch_deck": True}


def test_policy_rejects_unsorted_levels() -> None:
    with pytest.raises(PydanticValidationError):
        ScoringPolicy(
            levels=[
                ProfessionalLevel(id="b", name="B", required_points=100),
                ProfessionalLevel(id="a", name="A", required_points=0),
            ]
        )


def test_policy_rejects_gate_on_unknown_axis() -> None:
    with pytest.raises(PydanticValidationError):
        ScoringPolicy(tool_gates=[ToolGate(tool="x", label="X", axis="charisma")])
