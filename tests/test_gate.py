from datetime import UTC, datetime, timedelta

from nudge_app.analytics.orchestrator import AnalysisOrchestrator
from nudge_app.analytics.results import AnalysisResult, ContextResult, RecommendedAction, Timing
from nudge_app.core.models import IssueModel
from nudge_app.delivery.gate import NotificationGate

NOW = datetime(2024, 6, 12, 14, tzinfo=UTC)

ISSUE = IssueModel(
    key="OPS-1",
    summary="Rotate credentials",
    status="In Progress",
    priority="Medium",
    issuetype="Task",
    created=NOW,
    updated=NOW,
    assignee="alice",
)


def _result(action_type="gentle_reminder", timing=None, should_notify=True, reason="ok"):
    return AnalysisResult(
        issue_key=ISSUE.key,
        staleness=AnalysisOrchestrator.neutral_staleness(ISSUE),
        deadline=AnalysisOrchestrator.neutral_deadline(ISSUE),
        context=ContextResult(ISSUE.key, 0.5, 0.5, 0.5),
        workload=AnalysisOrchestrator.neutral_workload(ISSUE, NOW, reason, should_notify),
        overall_score=0.5,
        action=RecommendedAction(type=action_type, urgency="medium", message="", timing=timing or Timing()),
        last_analyzed=NOW,
        recipient="alice",
    )


def test_no_action_is_suppressed():
    decision = NotificationGate().decide(_result("no_action", Timing(delay_reason="Quiet")), NOW)
    assert decision.action == "suppress"
    assert decision.reason == "Quiet"
    assert not decision.should_send


def test_workload_veto_suppresses():
    result = _result(timing=Timing(immediate=True), should_notify=False, reason="In cooldown period")
    decision = NotificationGate().decide(result, NOW)
    assert decision.action == "suppress"
    assert decision.reason == "In cooldown period"


def test_immediate_sends_now():
    assert NotificationGate().decide(_result(timing=Timing(immediate=True)), NOW).should_send


def test_future_optimal_time_schedules():
    later = NOW + timedelta(hours=3)
    decision = NotificationGate().decide(_result(timing=Timing(scheduled_for=later)), NOW)
    assert decision.action == "schedule"
    assert decision.scheduled_for == later


def test_past_or_missing_time_sends_now():
    gate = NotificationGate()
    assert gate.decide(_result(timing=Timing(scheduled_for=NOW)), NOW).should_send
    assert gate.decide(_result(timing=Timing()), NOW).should_send
