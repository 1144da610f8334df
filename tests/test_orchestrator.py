from datetime import UTC, date, datetime, timedelta

import pytest

from nudge_app.analytics.context import ContextAnalyzer
from nudge_app.analytics.deadline import DeadlineAnalyzer
from nudge_app.analytics.orchestrator import AnalysisOrchestrator, PerformanceMetrics, ScoreComponent, merge_scores
from nudge_app.analytics.results import ContextResult
from nudge_app.analytics.staleness import StalenessAnalyzer
from nudge_app.analytics.workload import WorkloadAnalyzer
from nudge_app.core.cache import AnalysisCache
from nudge_app.core.config import EngineConfiguration
from nudge_app.core.errors import CollaboratorError, ValidationError
from nudge_app.core.models import IssueModel, TeamActivity, UserActivity, UserPreferences
from nudge_app.core.notification_log import NotificationLog

NOW = datetime(2024, 6, 12, 14, tzinfo=UTC)


class FakeWorkloadSource:
    def __init__(self, user: UserActivity | None = None, team: TeamActivity | None = None):
        self.user = user or UserActivity("alice", open_issues=6, recently_completed=5, avg_resolution_days=3)
        self.team = team or TeamActivity("OPS", active_issues=10, average_age_days=5)

    def user_stats(self, user_id, now):
        return self.user

    def team_stats(self, project_key, now):
        return self.team


class FakeItemSource:
    def __init__(self, issues, failing_key=None):
        self.issues = {i.key: i for i in issues}
        self.failing_key = failing_key
        self.calls = []

    def get_items_by_ids(self, keys):
        keys = list(keys)
        self.calls.append(keys)
        if self.failing_key in keys:
            raise CollaboratorError("search failed")
        return {k: self.issues[k] for k in keys if k in self.issues}


class Exploding:
    def analyze(self, *args):
        raise RuntimeError("boom")


def _sample_issue(**overrides):
    data = dict(
        key="OPS-1",
        summary="Rotate credentials",
        status="In Progress",
        priority="Medium",
        issuetype="Task",
        created=NOW - timedelta(days=3),
        updated=NOW - timedelta(days=1),
        assignee="alice",
        project_key="OPS",
    )
    data.update(overrides)
    return IssueModel(**data)


def _orchestrator(config=None, source=None, **overrides):
    config = config or EngineConfiguration()
    parts = dict(
        staleness=StalenessAnalyzer(config.staleness, workload_source=source),
        deadline=DeadlineAnalyzer(config.deadline),
        context=ContextAnalyzer(config.context),
        workload=WorkloadAnalyzer(config.workload, NotificationLog(), source),
    )
    parts.update(overrides)
    return AnalysisOrchestrator(config, cache=AnalysisCache(clock=lambda: NOW), clock=lambda: NOW, **parts)


# ------------------ Score merging ------------------
def test_merge_scores_renormalizes_over_enabled_components():
    merged = merge_scores(
        [
            ScoreComponent("staleness", True, 0.3, 1.0),
            ScoreComponent("deadline", True, 0.4, 0.5),
            ScoreComponent("context", False, 0.2, 1.0),
            ScoreComponent("workload", True, 0.0, 1.0),
        ]
    )
    assert merged == pytest.approx(0.5 / 0.7)


def test_merge_scores_without_active_components_is_zero():
    assert merge_scores([ScoreComponent("staleness", False, 0.3, 1.0)]) == 0.0


def test_component_scoring_its_peers_mean_leaves_overall_unchanged():
    others = [
        ScoreComponent("staleness", True, 0.3, 0.8),
        ScoreComponent("deadline", True, 0.4, 0.2),
        ScoreComponent("workload", True, 0.1, 0.6),
    ]
    peers_mean = (0.3 * 0.8 + 0.4 * 0.2 + 0.1 * 0.6) / 0.8
    without = merge_scores(others + [ScoreComponent("context", False, 0.2, peers_mean)])
    with_context = merge_scores(others + [ScoreComponent("context", True, 0.2, peers_mean)])
    assert with_context == pytest.approx(without)
    nudged = merge_scores(others + [ScoreComponent("context", True, 0.2, peers_mean + 0.01)])
    assert nudged - without == pytest.approx(0.2 * 0.01)


class FixedContext:
    def __init__(self, score):
        self.score = score

    def analyze(self, issue):
        return ContextResult(issue.key, self.score, self.score, self.score)


def test_disabling_context_is_continuous_with_a_peer_mean_context_score():
    issue = _sample_issue(priority="High", due_date=date(2024, 6, 14), updated=NOW - timedelta(days=20))
    config = EngineConfiguration()
    config.general.enabled_components["context"] = False
    disabled = _orchestrator(config=config, source=FakeWorkloadSource()).analyze(issue, None, NOW)
    assert disabled.context.score == pytest.approx(config.context.default_weight)

    enabled = _orchestrator(source=FakeWorkloadSource(), context=FixedContext(disabled.overall_score)).analyze(
        issue, None, NOW
    )
    assert enabled.overall_score == pytest.approx(disabled.overall_score)


def test_overall_score_is_bounded():
    orchestrator = _orchestrator(source=FakeWorkloadSource())
    for issue in (
        _sample_issue(),
        _sample_issue(priority="Blocker", due_date=date(2024, 6, 1), updated=NOW - timedelta(days=90)),
        _sample_issue(priority="Lowest", updated=NOW),
    ):
        result = orchestrator.analyze(issue, None, NOW, use_cache=False)
        assert 0.0 <= result.overall_score <= 1.0


def test_parallel_and_sequential_runs_agree():
    issue = _sample_issue(priority="High", due_date=date(2024, 6, 14))
    parallel = _orchestrator(source=FakeWorkloadSource())
    sequential_config = EngineConfiguration()
    sequential_config.general.parallel_analyzers = False
    sequential = _orchestrator(config=sequential_config, source=FakeWorkloadSource())
    assert parallel.analyze(issue, None, NOW) == sequential.analyze(issue, None, NOW)


# ------------------ Scenarios ------------------
def test_overdue_blocker_gets_immediate_priority_alert():
    issue = _sample_issue(
        priority="Blocker",
        due_date=date(2024, 6, 11),
        created=NOW - timedelta(days=60),
        updated=NOW - timedelta(days=20),
    )
    result = _orchestrator(source=FakeWorkloadSource()).analyze(issue, None, NOW)
    assert result.deadline.urgency == "critical"
    assert result.staleness.is_stale
    assert result.workload.should_notify
    assert result.action.type == "priority_alert"
    assert result.action.urgency == "critical"
    assert result.action.timing.immediate
    assert result.action.next_steps[0] == "Immediate attention required"
    assert "OPS-1" in result.action.message


def test_overloaded_recipient_gets_no_action():
    user = UserActivity("alice", open_issues=20, recently_completed=1, avg_resolution_days=10, weekend_activity=4)
    issue = _sample_issue(priority="Low", summary="Tidy up README wording", updated=NOW - timedelta(days=2))
    result = _orchestrator(source=FakeWorkloadSource(user=user)).analyze(issue, None, NOW)
    assert not result.workload.should_notify
    assert result.workload.reason == "User is over capacity with critical stress levels - avoiding additional load"
    assert result.action.type == "no_action"
    assert result.action.timing.delay_reason == result.workload.reason
    assert result.overall_score < 0.4


def test_minimal_preference_suppresses_stale_medium_item():
    issue = _sample_issue(created=NOW - timedelta(days=40), updated=NOW - timedelta(days=30))
    prefs = UserPreferences(user_id="alice", notification_frequency="minimal")
    result = _orchestrator().analyze(issue, prefs, NOW)
    assert result.staleness.is_stale
    assert not result.workload.should_notify
    assert result.workload.reason.startswith("Minimal")
    assert result.action.type == "no_action"


def test_stale_item_gets_gentle_reminder_at_optimal_time():
    issue = _sample_issue(priority="Low", created=NOW - timedelta(days=30), updated=NOW - timedelta(days=12))
    result = _orchestrator().analyze(issue, None, NOW)
    assert result.action.type == "gentle_reminder"
    assert result.action.urgency == "medium"
    assert result.action.timing.scheduled_for == NOW
    assert "12 days" in result.action.message


# ------------------ Failure handling ------------------
def test_missing_item_is_rejected():
    with pytest.raises(ValidationError):
        _orchestrator().analyze(None)


def test_failing_analyzer_yields_neutral_value_and_error():
    orchestrator = _orchestrator(staleness=Exploding())
    result = orchestrator.analyze(_sample_issue(), None, NOW)
    assert result.staleness.level == "fresh"
    assert result.staleness.confidence == 0.0
    assert [(e.component, e.severity) for e in result.errors] == [("staleness", "medium")]
    assert "boom" in result.errors[0].message


def test_failing_workload_analyzer_never_notifies():
    result = _orchestrator(workload=Exploding()).analyze(_sample_issue(), None, NOW)
    assert not result.workload.should_notify
    assert result.workload.reason.startswith("Workload analysis unavailable")


def test_disabled_workload_component_lets_assigned_items_notify():
    config = EngineConfiguration()
    config.general.enabled_components["workload"] = False
    result = _orchestrator(config=config).analyze(_sample_issue(), None, NOW)
    assert result.workload.should_notify
    assert result.workload.reason == "Workload analysis disabled"
    unassigned = _orchestrator(config=config).analyze(_sample_issue(assignee=None), None, NOW)
    assert not unassigned.workload.should_notify


# ------------------ Cache and metrics ------------------
def test_second_full_analysis_is_served_from_cache():
    orchestrator = _orchestrator()
    first = orchestrator.analyze(_sample_issue(), None, NOW)
    second = orchestrator.analyze(_sample_issue(), None, NOW + timedelta(minutes=5))
    assert second is first
    assert orchestrator.metrics.cache_hits == 1
    assert orchestrator.metrics.analyses == 1


def test_partial_analysis_bypasses_cache():
    orchestrator = _orchestrator()
    orchestrator.analyze(_sample_issue(), None, NOW, components=("staleness",))
    assert orchestrator.cache.stats()["size"] == 0


def test_performance_metrics_snapshot():
    metrics = PerformanceMetrics()
    metrics.record(10.0, success=True)
    metrics.record(30.0, success=False)
    metrics.record_cache_hit()
    snap = metrics.snapshot()
    assert snap["analyses"] == 2
    assert snap["average_ms"] == pytest.approx(20.0)
    assert (snap["min_ms"], snap["max_ms"]) == (10.0, 30.0)
    assert snap["error_rate"] == pytest.approx(0.1)
    assert snap["cache_hit_rate"] == pytest.approx(1 / 3)


# ------------------ Batch ------------------
def test_batch_collects_partial_failures():
    config = EngineConfiguration()
    config.general.batch_size = 2
    issues = [_sample_issue(key=k) for k in ("A-1", "A-2", "BAD-1", "A-3")]
    source = FakeItemSource(issues, failing_key="BAD-1")
    batch = _orchestrator(config=config).batch_analyze(
        ["A-1", "A-2", "A-1", "BAD-1", "A-3", "A-4"], source, lambda user_id: None, now=NOW
    )
    assert batch.total_issues == 5
    assert sorted(batch.results) == ["A-1", "A-2"]
    assert source.calls == [["A-1", "A-2"], ["BAD-1", "A-3"], ["A-4"]]
    errors = {e.issue_key: e for e in batch.errors}
    assert errors["BAD-1"].severity == "high"
    assert errors["A-3"].component == "api"
    assert errors["A-4"].message == "Item not found"
    assert batch.processing_time >= 0


def test_batch_reports_cache_hits():
    orchestrator = _orchestrator()
    source = FakeItemSource([_sample_issue(key="A-1")])
    orchestrator.batch_analyze(["A-1"], source, lambda user_id: None, now=NOW)
    again = orchestrator.batch_analyze(["A-1"], source, lambda user_id: None, now=NOW)
    assert again.cache_hits == 1


def test_batch_analysis_types():
    orchestrator = _orchestrator()
    source = FakeItemSource([_sample_issue(key="A-1", due_date=date(2024, 6, 11))])
    batch = orchestrator.batch_analyze(["A-1"], source, lambda user_id: None, analysis_type="staleness_only", now=NOW)
    result = batch.results["A-1"]
    # deadline analysis skipped, so the overdue date is not seen
    assert result.deadline.days_until_due is None
    assert result.overall_score == pytest.approx(result.staleness.score)
    with pytest.raises(ValidationError):
        orchestrator.batch_analyze(["A-1"], source, lambda user_id: None, analysis_type="everything")


def test_analyze_issues_returns_results_and_errors():
    orchestrator = _orchestrator()

    def preferences(user_id):
        if user_id == "bob":
            raise CollaboratorError("preferences offline")
        return None

    results, errors = orchestrator.analyze_issues(
        [_sample_issue(key="A-1"), _sample_issue(key="A-2", assignee="bob")], preferences, NOW
    )
    assert [r.issue_key for r in results] == ["A-1"]
    assert [e.issue_key for e in errors] == ["A-2"]
