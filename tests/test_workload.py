from datetime import UTC, datetime, timedelta

import pytest

from nudge_app.analytics.workload import WorkloadAnalyzer
from nudge_app.core.config import WorkloadConfig
from nudge_app.core.models import IssueModel, QuietHours, TeamActivity, UserActivity, UserPreferences
from nudge_app.core.notification_log import NotificationLog

NOW = datetime(2024, 6, 12, 14, tzinfo=UTC)  # Wednesday afternoon
FRIDAY_EVENING = datetime(2024, 6, 14, 18, 30, tzinfo=UTC)
MONDAY_MORNING = datetime(2024, 6, 17, 9, tzinfo=UTC)


class FakeSource:
    def __init__(self, user: UserActivity | None = None, team: TeamActivity | None = None):
        self.user = user
        self.team = team

    def user_stats(self, user_id, now):
        return self.user or UserActivity(user_id=user_id)

    def team_stats(self, project_key, now):
        return self.team or TeamActivity(project_key=project_key)


def _sample_issue(**overrides):
    data = dict(
        key="WEB-9",
        summary="Polish settings page",
        status="In Progress",
        priority="Medium",
        issuetype="Task",
        created=NOW - timedelta(days=10),
        updated=NOW - timedelta(days=2),
        assignee="alice",
        project_key="WEB",
    )
    data.update(overrides)
    return IssueModel(**data)


def _analyzer(source=None, log=None):
    return WorkloadAnalyzer(WorkloadConfig(), log or NotificationLog(), source)


@pytest.mark.parametrize(
    "open_issues, completed, avg_days, expected",
    [
        (2, 5, 2.0, "under"),
        (6, 5, 2.0, "optimal"),
        (12, 2, 2.0, "near_capacity"),
        (20, 1, 10.0, "over_capacity"),
    ],
)
def test_capacity_tiers(open_issues, completed, avg_days, expected):
    assert _analyzer().classify_capacity(open_issues, completed, avg_days) == expected


def test_stress_bands():
    analyzer = _analyzer()
    assert analyzer.stress_indicators(UserActivity("u", rapid_status_changes=2)).level == "low"
    assert analyzer.stress_indicators(UserActivity("u", late_night_activity=2)).level == "moderate"
    assert analyzer.stress_indicators(UserActivity("u", weekend_activity=2)).level == "high"
    assert analyzer.stress_indicators(UserActivity("u", weekend_activity=4)).level == "critical"


def test_team_capacity_tiers():
    analyzer = _analyzer()
    assert analyzer.classify_team_capacity(10, 5) == "healthy"
    assert analyzer.classify_team_capacity(60, 5) == "busy"
    assert analyzer.classify_team_capacity(120, 5) == "overloaded"
    assert analyzer.classify_team_capacity(120, 40) == "critical"


@pytest.mark.parametrize(
    "user",
    [
        UserActivity("alice"),
        UserActivity("alice", open_issues=20, avg_resolution_days=10, weekend_activity=5),
        UserActivity("alice", open_issues=6, recently_completed=5),
    ],
)
@pytest.mark.parametrize("priority", ["Blocker", "Medium", "Lowest"])
def test_disabled_preference_always_blocks(user, priority):
    analyzer = _analyzer(FakeSource(user=user))
    prefs = UserPreferences(user_id="alice", notification_frequency="disabled")
    impact = analyzer.analyze(_sample_issue(priority=priority), prefs, NOW)
    assert not impact.should_notify
    assert "disabled" in impact.reason


def test_over_capacity_with_critical_stress_blocks():
    user = UserActivity("alice", open_issues=20, recently_completed=1, avg_resolution_days=10, weekend_activity=4)
    impact = _analyzer(FakeSource(user=user)).analyze(_sample_issue(), None, NOW)
    assert impact.user.capacity == "over_capacity"
    assert impact.user.stress.level == "critical"
    assert not impact.should_notify
    assert "capacity" in impact.reason and "stress" in impact.reason


def test_cooldown_blocks_second_nudge():
    log = NotificationLog()
    analyzer = _analyzer(log=log)
    first = analyzer.analyze(_sample_issue(), None, NOW)
    assert first.should_notify
    log.record("alice", "WEB-9", NOW)
    later = NOW + timedelta(hours=1)
    second = analyzer.analyze(_sample_issue(key="WEB-10"), None, later)
    assert not second.should_notify
    assert "cooldown" in second.reason.lower()
    # cooldown for "moderate" is four hours
    assert analyzer.analyze(_sample_issue(key="WEB-10"), None, NOW + timedelta(hours=5)).should_notify


def test_daily_cap_reported_before_cooldown():
    log = NotificationLog()
    for hours in (20, 10, 1):
        log.record("alice", f"WEB-{hours}", NOW - timedelta(hours=hours))
    impact = _analyzer(log=log).analyze(_sample_issue(), None, NOW)
    assert not impact.should_notify
    assert "Daily" in impact.reason


def test_team_critical_only_lets_urgent_items_through():
    team = TeamActivity("WEB", active_issues=150, average_age_days=45)
    analyzer = _analyzer(FakeSource(team=team))
    assert not analyzer.analyze(_sample_issue(priority="Medium"), None, NOW).should_notify
    assert analyzer.analyze(_sample_issue(priority="Critical"), None, NOW).should_notify


def test_minimal_preference_only_urgent():
    analyzer = _analyzer()
    prefs = UserPreferences(user_id="alice", notification_frequency="minimal")
    medium = analyzer.analyze(_sample_issue(priority="Medium"), prefs, NOW)
    blocker = analyzer.analyze(_sample_issue(priority="Blocker"), prefs, NOW)
    assert not medium.should_notify
    assert "Minimal" in medium.reason
    assert blocker.should_notify


def test_gentle_preference_holds_for_over_capacity():
    user = UserActivity("alice", open_issues=20, recently_completed=1, avg_resolution_days=10)
    prefs = UserPreferences(user_id="alice", notification_frequency="gentle")
    impact = _analyzer(FakeSource(user=user)).analyze(_sample_issue(), prefs, NOW)
    assert not impact.should_notify


def test_unassigned_item_never_notifies():
    impact = _analyzer().analyze(_sample_issue(assignee=None), None, NOW)
    assert not impact.should_notify
    assert impact.reason == "Item has no assignee"


def test_frequency_score_decays():
    analyzer = _analyzer()
    assert analyzer.frequency_score(0, None, "moderate", NOW) == 1.0
    recent = analyzer.frequency_score(2, NOW - timedelta(hours=1), "moderate", NOW)
    assert recent == pytest.approx(0.4)
    assert analyzer.frequency_score(0, None, "minimal", NOW) == pytest.approx(0.3)


def test_optimal_time_is_now_inside_working_hours():
    impact = _analyzer().analyze(_sample_issue(), None, NOW)
    assert impact.optimal_time == NOW


def test_roll_forward_skips_weekend():
    prefs = UserPreferences(user_id="alice")
    assert _analyzer().roll_forward(FRIDAY_EVENING, prefs) == MONDAY_MORNING


def test_roll_forward_honours_quiet_hours():
    prefs = UserPreferences(
        user_id="alice", quiet_hours=QuietHours(start="12:00", end="15:00", respect_weekends=False)
    )
    assert _analyzer().roll_forward(NOW, prefs) == datetime(2024, 6, 12, 15, tzinfo=UTC)


def test_high_stress_delays_deferred_send():
    user = UserActivity("alice", weekend_activity=2)
    analyzer = _analyzer(FakeSource(user=user))
    impact = analyzer.analyze(_sample_issue(), None, FRIDAY_EVENING)
    assert impact.user.stress.level == "high"
    assert impact.optimal_time == MONDAY_MORNING + timedelta(hours=2)


def test_cooldown_pushes_optimal_time():
    log = NotificationLog()
    log.record("alice", "WEB-1", NOW - timedelta(hours=2))
    impact = _analyzer(log=log).analyze(_sample_issue(), None, NOW)
    assert impact.optimal_time == NOW + timedelta(hours=2)


def test_cooldown_ending_after_hours_rolls_to_next_morning():
    log = NotificationLog()
    log.record("alice", "WEB-1", NOW - timedelta(hours=1))
    impact = _analyzer(log=log).analyze(_sample_issue(), None, NOW)
    assert impact.optimal_time == datetime(2024, 6, 13, 9, tzinfo=UTC)


def test_predict_notification_windows():
    result = _analyzer().predict_notification_windows("alice", None, NOW, days=7)
    # Wed, Thu, Fri, Mon, Tue
    assert len(result["windows"]) == 10
    assert len(result["best_times"]) == 4
    assert all(w.score in (0.8, 0.5) for w in result["windows"])
