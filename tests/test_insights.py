from dataclasses import replace
from datetime import UTC, date, datetime

import pytest

from nudge_app.analytics.insights import attention_buckets, generate_insights, project_analytics, results_to_dataframe
from nudge_app.analytics.orchestrator import AnalysisOrchestrator
from nudge_app.analytics.results import (
    AnalysisResult,
    ContextResult,
    DeadlineResult,
    RecommendedAction,
    UserWorkload,
)
from nudge_app.core.models import IssueModel

NOW = datetime(2024, 6, 12, 14, tzinfo=UTC)


def _result(key, score, urgency="low", stale=False, overdue=False, capacity="optimal", recipient="alice", priority=0.5):
    issue = IssueModel(
        key=key, summary=key, status="Open", priority="Medium", issuetype="Task", created=NOW, updated=NOW, assignee=recipient
    )
    staleness = replace(
        AnalysisOrchestrator.neutral_staleness(issue), is_stale=stale, level="stale" if stale else "fresh"
    )
    deadline = DeadlineResult(key, due_date=date(2024, 6, 1), days_until_due=-8) if overdue else DeadlineResult(key)
    workload = AnalysisOrchestrator.neutral_workload(issue, NOW, "ok", True)
    workload = replace(workload, user=UserWorkload(workload.user.user_id, capacity=capacity))
    return AnalysisResult(
        issue_key=key,
        staleness=staleness,
        deadline=deadline,
        context=ContextResult(key, priority, 0.5, 0.5),
        workload=workload,
        overall_score=score,
        action=RecommendedAction(type="gentle_reminder", urgency=urgency, message=""),
        last_analyzed=NOW,
        recipient=recipient,
    )


def test_attention_buckets_are_exclusive_and_sorted():
    results = [
        _result("A", 0.5, urgency="critical"),
        _result("B", 0.85),
        _result("C", 0.65),
        _result("D", 0.3, urgency="high"),
        _result("E", 0.45),
        _result("F", 0.2),
    ]
    buckets = attention_buckets(results)
    assert [r.issue_key for r in buckets["high_priority"]] == ["B", "A"]
    assert [r.issue_key for r in buckets["medium"]] == ["C", "D"]
    assert [r.issue_key for r in buckets["upcoming"]] == ["E"]


def test_attention_buckets_empty():
    assert attention_buckets([]) == {"high_priority": [], "medium": [], "upcoming": []}
    assert results_to_dataframe([]).empty


def test_generate_insights():
    results = [
        _result("A", 0.9, urgency="critical", stale=True, overdue=True),
        _result("B", 0.5, stale=True),
        _result("C", 0.1),
    ]
    insights = generate_insights(results)
    assert insights["total_analyzed"] == 3
    assert insights["average_score"] == pytest.approx(0.5)
    assert insights["critical_count"] == 1
    assert insights["recommendations"] == [
        "1 issues need immediate attention",
        "High number of stale issues detected - consider team review",
        "1 overdue issues need timeline review",
    ]
    assert generate_insights([])["total_analyzed"] == 0


def test_project_analytics():
    results = [
        _result("A", 0.9, stale=True, overdue=True, capacity="over_capacity", recipient="alice", priority=1.0),
        _result("B", 0.5, stale=True, capacity="over_capacity", recipient="alice", priority=0.9),
        _result("C", 0.2, capacity="under", recipient="bob"),
        _result("D", 0.2, capacity="optimal", recipient=None),
    ]
    analytics = project_analytics(results)
    assert analytics["overview"] == {
        "total_issues": 4,
        "stale_issues": 2,
        "overdue_issues": 1,
        "high_priority_issues": 2,
    }
    assert analytics["trends"]["staleness_distribution"] == {"fresh": 2, "stale": 2}
    assert analytics["recommendations"] == [
        "Consider implementing regular issue review sessions",
        "Review project timelines and resource allocation",
        "High concentration of priority issues - consider sprint planning review",
    ]
    team = analytics["team_insights"]
    assert team["overloaded_users"] == ["alice"]
    assert team["underutilized_users"] == ["bob"]
    assert team["collaboration_score"] == 1.0


def test_project_analytics_empty():
    analytics = project_analytics([])
    assert analytics["overview"]["total_issues"] == 0
    assert analytics["recommendations"] == []
