from datetime import UTC, date, datetime, timedelta

import pytest

from nudge_app.core.errors import CollaboratorError, ConfigurationError, NudgeError
from nudge_app.core.models import IssueModel, UserPreferences
from nudge_app.core.preferences import InMemoryPreferenceStore
from nudge_app.delivery.channels import InAppChannel
from nudge_app.delivery.models import Notification
from nudge_app.engine import NudgeEngine

NOW = datetime(2024, 6, 12, 14, tzinfo=UTC)  # Wednesday
FRIDAY_EVENING = datetime(2024, 6, 14, 18, 30, tzinfo=UTC)
MONDAY_MORNING = datetime(2024, 6, 17, 9, tzinfo=UTC)


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


OVERDUE_BLOCKER = _sample_issue(
    key="OPS-1",
    priority="Blocker",
    due_date=date(2024, 6, 11),
    created=NOW - timedelta(days=60),
    updated=NOW - timedelta(days=20),
)
CRITICAL_DUE_TOMORROW = _sample_issue(key="OPS-2", priority="Critical", due_date=date(2024, 6, 13), assignee="bob")
STALE_MEDIUM = _sample_issue(
    key="OPS-3", created=NOW - timedelta(days=40), updated=NOW - timedelta(days=30), assignee="carol"
)
CALM = _sample_issue(key="OPS-4", priority="Low", updated=NOW, assignee="dave")
STALE_LOW = _sample_issue(
    key="OPS-5", priority="Low", created=NOW - timedelta(days=30), updated=NOW - timedelta(days=12)
)


class FakeDataSource:
    def __init__(self, issues):
        self.issues = {i.key: i for i in issues}
        self.queries = []

    def get_item(self, key):
        return self.issues[key]

    def search_items(self, jql, max_results=None):
        self.queries.append(jql)
        return list(self.issues.values())[:max_results]

    def get_items_by_ids(self, keys):
        return {k: self.issues[k] for k in keys if k in self.issues}


class BrokenPreferenceStore:
    def get_preferences(self, user_id):
        raise CollaboratorError("preference service down")


def _engine(issues=(), clock=NOW, **kwargs):
    kwargs.setdefault("channels", [InAppChannel()])
    return NudgeEngine(data_source=FakeDataSource(issues), clock=lambda: clock, **kwargs)


# ------------------ Attention ------------------
def test_find_issues_needing_attention_buckets():
    engine = _engine([OVERDUE_BLOCKER, CRITICAL_DUE_TOMORROW, STALE_MEDIUM, CALM])
    found = engine.find_issues_needing_attention(project_key="OPS", now=NOW)
    assert [r.issue_key for r in found["high_priority"]] == ["OPS-1"]
    assert [r.issue_key for r in found["medium"]] == ["OPS-2"]
    assert [r.issue_key for r in found["upcoming"]] == ["OPS-3"]
    insights = found["insights"]
    assert insights["total_analyzed"] == 4
    assert insights["critical_count"] == 1
    assert "1 issues need immediate attention" in insights["recommendations"]
    assert "1 overdue issues need timeline review" in insights["recommendations"]
    assert 'project = "OPS"' in engine.data_source.queries[0]


def test_attention_search_requires_data_source():
    engine = NudgeEngine(clock=lambda: NOW)
    with pytest.raises(NudgeError):
        engine.find_issues_needing_attention("OPS")
    with pytest.raises(NudgeError):
        engine.batch_analyze(["OPS-1"])


def test_project_analytics_overview():
    engine = _engine([OVERDUE_BLOCKER, CRITICAL_DUE_TOMORROW, STALE_MEDIUM, CALM])
    analytics = engine.get_project_analytics("OPS", now=NOW)
    overview = analytics["overview"]
    assert overview["total_issues"] == 4
    assert overview["overdue_issues"] == 1
    assert overview["stale_issues"] == 2
    assert overview["high_priority_issues"] == 2
    assert "Review project timelines and resource allocation" in analytics["recommendations"]
    assert sum(analytics["trends"]["staleness_distribution"].values()) == 4


def test_batch_analyze_through_engine():
    engine = _engine([OVERDUE_BLOCKER, CALM])
    batch = engine.batch_analyze(["OPS-1", "OPS-4", "OPS-404"], now=NOW)
    assert sorted(batch.results) == ["OPS-1", "OPS-4"]
    assert [e.issue_key for e in batch.errors] == ["OPS-404"]


def test_broken_preference_store_falls_back_to_defaults():
    engine = _engine(preference_store=BrokenPreferenceStore())
    assert engine.preferences_for("alice") is None
    result = engine.analyze_issue(OVERDUE_BLOCKER, now=NOW)
    assert result.action.type == "priority_alert"


# ------------------ Dispatch ------------------
def test_dispatch_delivers_then_cooldown_holds_next_nudge():
    inbox = InAppChannel()
    engine = _engine(channels=[inbox])
    outcome = engine.dispatch(engine.analyze_issue(OVERDUE_BLOCKER, now=NOW), NOW)
    assert outcome.status == "delivered"
    assert outcome.notification_id == "OPS-1-priority_alert-20240612"
    assert inbox.outbox[0]["priority"] == "urgent"

    follow_up = engine.analyze_issue(_sample_issue(key="OPS-9"), now=NOW + timedelta(minutes=10))
    assert not follow_up.workload.should_notify
    assert "cooldown" in follow_up.workload.reason


def test_dispatch_same_day_is_deduplicated():
    engine = _engine()
    result = engine.analyze_issue(OVERDUE_BLOCKER, now=NOW)
    assert engine.dispatch(result, NOW).status == "delivered"
    assert engine.dispatch(result, NOW).status == "duplicate"


def test_no_action_is_suppressed():
    engine = _engine()
    outcome = engine.dispatch(engine.analyze_issue(CALM, now=NOW), NOW)
    assert outcome.status == "suppressed"
    assert not outcome.success


def test_disabled_notification_type_is_suppressed():
    store = InMemoryPreferenceStore()
    store.set_preferences(UserPreferences(user_id="alice", enabled_notification_types=("deadline_warning",)))
    engine = _engine(preference_store=store)
    outcome = engine.dispatch(engine.analyze_issue(STALE_LOW, now=NOW), NOW)
    assert outcome.status == "suppressed"
    assert "stale_reminder" in outcome.error


def test_after_hours_reminder_is_scheduled_and_released():
    inbox = InAppChannel()
    engine = _engine(channels=[inbox], clock=FRIDAY_EVENING)
    result = engine.analyze_issue(STALE_LOW, now=FRIDAY_EVENING)
    assert result.action.type == "gentle_reminder"
    outcome = engine.dispatch(result, FRIDAY_EVENING)
    assert outcome.status == "scheduled"
    assert outcome.scheduled_for == MONDAY_MORNING
    assert inbox.outbox == []
    assert engine.process_all_queues(MONDAY_MORNING) == {"alice": 1}
    assert len(inbox.outbox) == 1
    stats = engine.delivery_statistics("alice", now=MONDAY_MORNING)
    assert stats["successful_deliveries"] == 1


def test_deliver_notification_uses_stored_preferences():
    inbox = InAppChannel()
    engine = _engine(channels=[inbox])
    notification = Notification(
        id="OPS-1-manual",
        issue_key="OPS-1",
        user_id="alice",
        type="priority_alert",
        priority="high",
        title="Check OPS-1",
        message="Deploy is blocked",
        created_at=NOW,
    )
    outcome = engine.deliver_notification(notification, now=NOW)
    assert outcome.status == "delivered"
    assert outcome.channel == "in-app"
    assert inbox.outbox[0]["title"] == "Check OPS-1"


def test_record_user_response_through_engine():
    engine = _engine()
    outcome = engine.dispatch(engine.analyze_issue(OVERDUE_BLOCKER, now=NOW), NOW)
    assert engine.record_user_response(outcome.notification_id, "actioned", NOW)
    assert engine.delivery.history["OPS-1"].effectiveness_score == 1.0
    assert not engine.record_user_response("missing", "acknowledged", NOW)


def _blockers_for_alice(count):
    return [
        _sample_issue(
            key=f"OPS-{10 + i}",
            priority="Blocker",
            due_date=date(2024, 6, 11),
            created=NOW - timedelta(days=60),
            updated=NOW - timedelta(days=20),
        )
        for i in range(count)
    ]


def _dispatch_attention(engine):
    found = engine.find_issues_needing_attention(project_key="OPS", now=NOW)
    return [engine.dispatch(r, NOW) for r in found["high_priority"]]


def test_cycle_for_one_recipient_respects_cooldown():
    inbox = InAppChannel()
    engine = _engine(_blockers_for_alice(6), channels=[inbox])
    outcomes = _dispatch_attention(engine)
    assert [o.status for o in outcomes] == ["delivered"] + ["suppressed"] * 5
    assert all("cooldown" in o.error for o in outcomes[1:])
    assert len(inbox.outbox) == 1


def test_cycle_for_one_recipient_respects_daily_cap():
    inbox = InAppChannel()
    engine = _engine(_blockers_for_alice(6), channels=[inbox])
    engine.update_configuration({"workload": {"cooldown_periods": {"moderate": 0}}})
    outcomes = _dispatch_attention(engine)
    assert [o.status for o in outcomes] == ["delivered"] * 3 + ["suppressed"] * 3
    assert outcomes[-1].error == "Daily notification limit reached (3)"
    assert len(inbox.outbox) == 3


def test_scheduled_releases_recheck_cooldown():
    inbox = InAppChannel()
    second = _sample_issue(
        key="OPS-6", priority="Low", created=NOW - timedelta(days=30), updated=NOW - timedelta(days=12)
    )
    engine = _engine(channels=[inbox], clock=FRIDAY_EVENING)
    outcomes = [
        engine.dispatch(engine.analyze_issue(issue, now=FRIDAY_EVENING), FRIDAY_EVENING) for issue in (STALE_LOW, second)
    ]
    assert [o.status for o in outcomes] == ["scheduled", "scheduled"]
    assert engine.process_all_queues(MONDAY_MORNING) == {"alice": 2}
    assert len(inbox.outbox) == 1
    statuses = sorted(n.status for n in engine.delivery.notifications.values())
    assert statuses == ["delivered", "suppressed"]


# ------------------ Configuration ------------------
def test_invalid_update_keeps_previous_configuration():
    engine = _engine()
    with pytest.raises(ConfigurationError):
        engine.update_configuration({"general": {"batch_size": 0}})
    assert engine.get_configuration().general.batch_size == 50
    with pytest.raises(ConfigurationError):
        engine.update_configuration({"general": {"no_such_option": 1}})


def test_valid_update_applies_and_clears_cache():
    engine = _engine()
    engine.analyze_issue(OVERDUE_BLOCKER, now=NOW)
    assert engine.cache_stats()["size"] == 1
    updated = engine.update_configuration(
        {"general": {"cache_ttl_minutes": 30}, "workload": {"notification_limits": {"daily": 1}}}
    )
    assert updated.general.cache_ttl_minutes == 30
    assert engine.cache_stats()["size"] == 0
    assert engine.workload.config.notification_limits.daily == 1
    # returned configuration is a copy
    updated.general.batch_size = 7
    assert engine.get_configuration().general.batch_size == 50


def test_weights_update_changes_merged_score():
    engine = _engine()
    before = engine.analyze_issue(CALM, now=NOW).overall_score
    engine.update_configuration({"general": {"weights": {"staleness": 0.0, "deadline": 0.0, "context": 1.0, "workload": 0.0}}})
    after = engine.analyze_issue(CALM, now=NOW)
    assert after.overall_score == pytest.approx(after.context.score)
    assert after.overall_score != before


def test_performance_metrics_and_windows():
    engine = _engine()
    engine.analyze_issue(CALM, now=NOW)
    engine.analyze_issue(CALM, now=NOW)
    metrics = engine.performance_metrics()
    assert metrics["analyses"] == 1
    assert metrics["cache_hit_rate"] == pytest.approx(0.5)
    windows = engine.predict_notification_windows("alice", now=NOW)
    assert len(windows["windows"]) == 10


def test_closed_items_are_skipped_by_attention_search():
    closed = _sample_issue(key="OPS-7", status="Resolved", priority="Blocker", due_date=date(2024, 6, 1))
    engine = _engine([closed, CALM])
    analytics = engine.get_project_analytics("OPS", now=NOW)
    assert analytics["overview"]["total_issues"] == 1
