"""Workload analysis: recipient capacity, stress, notification budget and timing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from typing import Protocol

import pytz

from nudge_app.core.config import WorkloadConfig
from nudge_app.core.models import IssueModel, QuietHours, TeamActivity, UserActivity, UserPreferences
from nudge_app.core.notification_log import NotificationLog
from nudge_app.core.status import is_urgent_priority

from .results import NotificationFrequency, StressIndicators, TeamWorkload, UserWorkload, WorkloadImpact

logger = logging.getLogger(__name__)

MAX_ROLL_FORWARD_STEPS = 60


class WorkloadSource(Protocol):
    """Where recipient and team activity numbers come from (Jira, a fake, a warehouse)."""

    def user_stats(self, user_id: str, now: datetime) -> UserActivity: ...

    def team_stats(self, project_key: str, now: datetime) -> TeamActivity: ...


@dataclass(slots=True, frozen=True)
class NotificationWindow:
    start: datetime
    end: datetime
    score: float


def _parse_hhmm(value: str) -> time:
    hour, _, minute = str(value).partition(":")
    return time(int(hour) % 24, int(minute or 0))


class WorkloadAnalyzer:
    def __init__(
        self,
        config: WorkloadConfig,
        notification_log: NotificationLog,
        source: WorkloadSource | None = None,
    ):
        self.config = config
        self.log = notification_log
        self.source = source

    # ------------------ Public API ------------------
    def analyze(self, issue: IssueModel, prefs: UserPreferences | None, now: datetime) -> WorkloadImpact:
        recipient = issue.recipient_id
        if not recipient:
            return self.unassigned_impact(issue, now)
        prefs = prefs or UserPreferences(user_id=recipient)
        user = self.user_workload(recipient, prefs, now)
        team = self.team_workload(issue.project_key, now)
        frequency = self.notification_frequency(recipient, issue.key, prefs, now)
        should_notify, reason = self.should_notify(user, team, frequency, issue, now)
        optimal = self.optimal_notification_time(user, prefs, frequency, now)
        return WorkloadImpact(
            issue_key=issue.key,
            user=user,
            team=team,
            frequency=frequency,
            optimal_time=optimal,
            should_notify=should_notify,
            reason=reason,
        )

    def unassigned_impact(self, issue: IssueModel, now: datetime) -> WorkloadImpact:
        return WorkloadImpact(
            issue_key=issue.key,
            user=UserWorkload(user_id="unassigned"),
            team=TeamWorkload(project_key=issue.project_key),
            frequency=NotificationFrequency(frequency_score=0.0),
            optimal_time=now,
            should_notify=False,
            reason="Item has no assignee",
        )

    def user_workload(self, user_id: str, prefs: UserPreferences, now: datetime) -> UserWorkload:
        activity = self.source.user_stats(user_id, now) if self.source else UserActivity(user_id=user_id)
        return UserWorkload(
            user_id=user_id,
            open_issues=activity.open_issues,
            recently_completed=activity.recently_completed,
            avg_resolution_days=activity.avg_resolution_days,
            capacity=self.classify_capacity(
                activity.open_issues, activity.recently_completed, activity.avg_resolution_days
            ),
            stress=self.stress_indicators(activity),
            working_hours=prefs.working_hours,
        )

    def team_workload(self, project_key: str | None, now: datetime) -> TeamWorkload:
        if not project_key or self.source is None:
            return TeamWorkload(project_key=project_key)
        activity = self.source.team_stats(project_key, now)
        return TeamWorkload(
            project_key=project_key,
            active_issues=activity.active_issues,
            average_age_days=activity.average_age_days,
            capacity=self.classify_team_capacity(activity.active_issues, activity.average_age_days),
            distribution_balance=activity.distribution_balance,
            collaboration_score=activity.collaboration_score,
        )

    # ------------------ Classification ------------------
    def classify_capacity(self, open_issues: int, recently_completed: int, avg_resolution_days: float) -> str:
        ct = self.config.capacity_thresholds
        slow, very_slow = self.config.slow_resolution_days
        few, many = self.config.completion_bounds
        points = 0
        if open_issues > ct.over_capacity:
            points += 3
        elif open_issues > ct.near_capacity:
            points += 2
        elif open_issues > ct.optimal:
            points += 1
        if avg_resolution_days > very_slow:
            points += 2
        elif avg_resolution_days > slow:
            points += 1
        if recently_completed < few:
            points += 1
        elif recently_completed > many:
            points -= 1
        if points >= 5:
            return "over_capacity"
        if points >= 3:
            return "near_capacity"
        if points <= 0:
            return "under"
        return "optimal"

    def stress_indicators(self, activity: UserActivity) -> StressIndicators:
        score = (
            activity.rapid_status_changes
            + activity.late_night_activity * 2
            + activity.weekend_activity * 3
            + activity.delayed_responses
        )
        bands = self.config.stress_bands
        if score >= bands.critical:
            level = "critical"
        elif score >= bands.high:
            level = "high"
        elif score >= bands.moderate:
            level = "moderate"
        else:
            level = "low"
        return StressIndicators(
            rapid_status_changes=activity.rapid_status_changes,
            late_night_activity=activity.late_night_activity,
            weekend_activity=activity.weekend_activity,
            delayed_responses=activity.delayed_responses,
            level=level,
        )

    def classify_team_capacity(self, active_issues: int, average_age_days: float) -> str:
        busy_issues, overloaded_issues = self.config.team_active_issue_steps
        old, very_old = self.config.team_age_steps
        points = 0
        if active_issues > overloaded_issues:
            points += 2
        elif active_issues > busy_issues:
            points += 1
        if average_age_days > very_old:
            points += 2
        elif average_age_days > old:
            points += 1
        if points >= 4:
            return "critical"
        if points >= 2:
            return "overloaded"
        if points >= 1:
            return "busy"
        return "healthy"

    # ------------------ Notification budget ------------------
    def notification_frequency(
        self, recipient: str, issue_key: str, prefs: UserPreferences, now: datetime
    ) -> NotificationFrequency:
        preference = prefs.notification_frequency
        recent = self.log.daily_count(recipient, now)
        last = self.log.last_sent(recipient)
        return NotificationFrequency(
            recent_notifications=recent,
            weekly_notifications=self.log.weekly_count(recipient, now),
            issue_notifications=self.log.issue_count(recipient, issue_key, now),
            last_notification=last,
            preference=preference,
            frequency_score=self.frequency_score(recent, last, preference, now),
            cooldown_hours=float(self.config.cooldown_periods.get(preference, 0)),
        )

    def frequency_score(self, recent: int, last: datetime | None, preference: str, now: datetime) -> float:
        """1.0 for a rested recipient, decaying with today's volume and the recency of the last send."""
        score = 1.0 - recent * 0.15
        if last is not None:
            hours_since = (now - last).total_seconds() / 3600.0
            if hours_since < 4:
                score -= 0.3
            elif hours_since < 12:
                score -= 0.15
        score *= self.config.preference_multipliers.get(preference, 1.0)
        return max(0.0, min(1.0, score))

    def cooldown_remaining(self, frequency: NotificationFrequency, now: datetime) -> float:
        if frequency.last_notification is None or frequency.cooldown_hours <= 0:
            return 0.0
        elapsed = (now - frequency.last_notification).total_seconds() / 3600.0
        return max(0.0, frequency.cooldown_hours - elapsed)

    def budget_hold(self, frequency: NotificationFrequency, issue_key: str, now: datetime) -> str | None:
        """Reason the daily/weekly/per-item caps or the cooldown hold a nudge, else None."""
        limits = self.config.notification_limits
        if frequency.recent_notifications >= limits.daily:
            return f"Daily notification limit reached ({limits.daily})"
        if frequency.weekly_notifications >= limits.weekly:
            return f"Weekly notification limit reached ({limits.weekly})"
        if frequency.issue_notifications >= limits.per_issue:
            return f"Per-item notification limit reached for {issue_key}"
        remaining = self.cooldown_remaining(frequency, now)
        if remaining > 0:
            return f"In cooldown period ({remaining:.1f} hours remaining)"
        return None

    def send_hold(self, recipient: str, issue_key: str, prefs: UserPreferences, now: datetime) -> str | None:
        """Re-check the live send log right before a nudge goes out.

        Analysis results for one recipient are often computed together, before
        any of them is delivered, so their ``should_notify`` cannot see each other.
        """
        frequency = self.notification_frequency(recipient, issue_key, prefs, now)
        if frequency.preference == "disabled":
            return "User has disabled notifications"
        return self.budget_hold(frequency, issue_key, now)

    def should_notify(
        self,
        user: UserWorkload,
        team: TeamWorkload,
        frequency: NotificationFrequency,
        issue: IssueModel,
        now: datetime,
    ) -> tuple[bool, str]:
        """Go/no-go for a nudge to this recipient, with the reason either way.

        Checks run in a fixed order and the first failing one supplies the
        reason: disabled preference, capacity+stress, daily/weekly/per-item
        caps, cooldown, team overload, then the preference tier policy.
        """
        urgent = is_urgent_priority(issue.priority)
        preference = frequency.preference

        if preference == "disabled":
            return False, "User has disabled notifications"
        if user.capacity == "over_capacity" and user.stress.level == "critical":
            return False, "User is over capacity with critical stress levels - avoiding additional load"
        held = self.budget_hold(frequency, issue.key, now)
        if held:
            return False, held
        if team.capacity == "critical" and not urgent:
            return False, "Team is at critical capacity - only Blocker/Critical items notify"
        if preference == "minimal" and not urgent:
            return False, "Minimal notification preference only allows Blocker/Critical items"
        if preference == "gentle" and user.capacity == "over_capacity":
            return False, "User is over capacity - gentle preference holds the nudge"
        if preference == "moderate" and user.stress.level == "critical":
            return False, "User stress level is critical - moderate preference holds the nudge"

        reasons = []
        if urgent:
            reasons.append("High priority issue")
        if user.capacity == "optimal":
            reasons.append("User has optimal capacity")
        if preference in ("moderate", "gentle"):
            reasons.append("User preferences allow notification")
        return True, ", ".join(reasons) if reasons else "Conditions favorable for gentle nudge"

    # ------------------ Timing ------------------
    def can_send_immediately(self, frequency: NotificationFrequency) -> bool:
        return (
            frequency.frequency_score > 0.5
            and frequency.recent_notifications < self.config.notification_limits.daily
        )

    def optimal_notification_time(
        self,
        user: UserWorkload,
        prefs: UserPreferences,
        frequency: NotificationFrequency,
        now: datetime,
    ) -> datetime:
        remaining = self.cooldown_remaining(frequency, now)
        if remaining <= 0 and self.can_send_immediately(frequency) and self.is_open(now, prefs):
            return now
        start = now + timedelta(hours=remaining) if remaining > 0 else now
        candidate = self.roll_forward(start, prefs)
        if user.stress.level == "high":
            candidate += timedelta(hours=self.config.stress_delay_hours)
        return candidate

    def is_open(self, when: datetime, prefs: UserPreferences) -> bool:
        """True when ``when`` is inside the working window and outside quiet hours."""
        return self.roll_forward(when, prefs) == when

    def roll_forward(self, when: datetime, prefs: UserPreferences) -> datetime:
        """Earliest instant at or after ``when`` inside working hours and outside quiet hours.

        Non-working days are skipped whole; a candidate in quiet hours jumps to
        the end of the quiet period and is checked again.
        """
        hours = prefs.working_hours
        tz = pytz.timezone(hours.timezone)
        candidate = when
        for _ in range(MAX_ROLL_FORWARD_STEPS):
            local = candidate.astimezone(tz)
            if local.weekday() not in hours.working_days or local.hour >= hours.end:
                next_day = local.date() + timedelta(days=1)
                candidate = tz.localize(datetime.combine(next_day, time(hours.start)))
                continue
            if local.hour < hours.start:
                candidate = tz.localize(datetime.combine(local.date(), time(hours.start)))
                continue
            quiet_end = self._quiet_until(candidate, prefs.quiet_hours)
            if quiet_end is not None:
                candidate = quiet_end
                continue
            return candidate.astimezone(UTC)
        logger.warning("No open notification window found for %s; using %s", prefs.user_id, candidate)
        return candidate.astimezone(UTC)

    def _quiet_until(self, when: datetime, quiet: QuietHours) -> datetime | None:
        if not quiet.enabled:
            return None
        tz = pytz.timezone(quiet.timezone)
        local = when.astimezone(tz)
        if quiet.respect_weekends and local.weekday() >= 5:
            return tz.localize(datetime.combine(local.date() + timedelta(days=1), time(0)))
        start, end = _parse_hhmm(quiet.start), _parse_hhmm(quiet.end)
        now_t = local.time()
        if start == end:
            return None
        if start < end:
            if start <= now_t < end:
                return tz.localize(datetime.combine(local.date(), end))
            return None
        # Window wraps past midnight, e.g. 18:00-09:00
        if now_t >= start:
            return tz.localize(datetime.combine(local.date() + timedelta(days=1), end))
        if now_t < end:
            return tz.localize(datetime.combine(local.date(), end))
        return None

    def predict_notification_windows(
        self, user_id: str, prefs: UserPreferences | None, now: datetime, days: int = 7
    ) -> dict[str, list]:
        """Candidate send windows for the next ``days`` days.

        Each working day gets a two-hour morning window (score 0.8) and a
        post-lunch window (score 0.5). Morning starts are listed as best
        times only while the recipient's stress is low.
        """
        prefs = prefs or UserPreferences(user_id=user_id)
        user = self.user_workload(user_id, prefs, now)
        hours = prefs.working_hours
        tz = pytz.timezone(hours.timezone)
        today = now.astimezone(tz).date()
        windows: list[NotificationWindow] = []
        best: list[datetime] = []
        for offset in range(days):
            day = today + timedelta(days=offset)
            if day.weekday() not in hours.working_days:
                continue
            morning = tz.localize(datetime.combine(day, time(hours.start)))
            windows.append(NotificationWindow(morning, morning + timedelta(hours=2), 0.8))
            afternoon_hour = min(hours.start + 4, max(hours.end - 2, hours.start))
            afternoon = tz.localize(datetime.combine(day, time(afternoon_hour)))
            windows.append(NotificationWindow(afternoon, afternoon + timedelta(hours=1), 0.5))
            if user.stress.level == "low" and morning >= now:
                best.append(morning)
        return {"windows": windows, "best_times": best}
