"""Deadline analysis: due dates, release dates and SLA breach risk."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta

from nudge_app.core.config import DeadlineConfig, SLAConfig, normalize_priority_name
from nudge_app.core.models import IssueModel

from .business_time import BusinessCalendar
from .results import DeadlineResult, SLAStatus, TimeRemaining

logger = logging.getLogger(__name__)


def sla_health(percent_remaining: float) -> str:
    """Health tier for the fraction of the SLA window still left.

    >>> sla_health(0.25), sla_health(0.10), sla_health(0.0)
    ('warning', 'critical', 'breached')
    """
    if percent_remaining <= 0:
        return "breached"
    if percent_remaining <= 0.10:
        return "critical"
    if percent_remaining <= 0.25:
        return "warning"
    return "safe"


def step_points(days: float | None, steps: Sequence[tuple[float, float]]) -> float:
    """Points for the first ``(max_days, points)`` step that ``days`` falls under."""
    if days is None:
        return 0.0
    for max_days, points in steps:
        if days <= max_days:
            return float(points)
    return 0.0


class DeadlineAnalyzer:
    def __init__(self, config: DeadlineConfig):
        self.config = config
        self.calendar = BusinessCalendar.from_config(config.holidays, config.business_hours)

    def reconfigure(self, config: DeadlineConfig) -> None:
        self.config = config
        self.calendar = BusinessCalendar.from_config(config.holidays, config.business_hours)

    # ------------------ Analysis ------------------
    def analyze(self, issue: IssueModel, now: datetime) -> DeadlineResult:
        today = self.calendar.today(now)
        days_until_due = self.days_until(today, issue.due_date)
        release_dates = issue.release_dates
        release_date = release_dates[0] if release_dates else None
        days_until_release = self.days_until(today, release_date)
        sla = self.sla_status(issue, now)
        points = self.urgency_points(days_until_due, days_until_release, sla, issue.priority)
        return DeadlineResult(
            issue_key=issue.key,
            due_date=issue.due_date,
            days_until_due=days_until_due,
            has_fix_version=bool(issue.fix_versions),
            release_date=release_date,
            days_until_release=days_until_release,
            sla=sla,
            urgency_points=points,
            urgency=self.urgency_for(points),
            time_remaining=self.time_remaining(issue.due_date, now),
        )

    def days_until(self, today: date, target: date | None) -> int | None:
        if target is None:
            return None
        if self.config.business_days_only:
            business = self.calendar.business_days_between(today, target)
            # a date that passed over a weekend or holiday is still overdue
            return min(business, -1) if target < today else business
        return self.calendar.calendar_days_between(today, target)

    # ------------------ SLA ------------------
    def applicable_slas(self, issue: IssueModel) -> list[SLAConfig]:
        priority = normalize_priority_name(issue.priority)
        return [
            sla
            for sla in self.config.sla_configurations
            if (not sla.priorities or priority in sla.priorities)
            and (not sla.issue_types or issue.issuetype in sla.issue_types)
        ]

    def sla_deadline(self, created: datetime, sla: SLAConfig) -> datetime:
        if sla.business_hours_only:
            return self.calendar.add_business_hours(created, sla.time_limit_hours)
        return created + timedelta(hours=sla.time_limit_hours)

    def sla_status(self, issue: IssueModel, now: datetime) -> SLAStatus:
        slas = self.applicable_slas(issue)
        if not slas or issue.created is None:
            return SLAStatus()
        primary = min(slas, key=lambda s: s.time_limit_hours)
        deadline = self.sla_deadline(issue.created, primary)
        if primary.business_hours_only and self.config.business_days_only:
            to_breach = self.calendar.business_hours_between(now, deadline)
        else:
            to_breach = (deadline - now).total_seconds() / 3600.0
        percent = to_breach / primary.time_limit_hours
        return SLAStatus(
            health=sla_health(percent),
            name=primary.name,
            type=primary.type,
            deadline=deadline,
            time_limit_hours=primary.time_limit_hours,
            time_to_breach_hours=to_breach,
            percent_remaining=percent,
        )

    # ------------------ Urgency ------------------
    def urgency_points(
        self,
        days_until_due: int | None,
        days_until_release: int | None,
        sla: SLAStatus,
        priority: str | None,
    ) -> float:
        points = step_points(days_until_due, self.config.due_date_points)
        points += step_points(days_until_release, self.config.release_points)
        points += self.config.sla_points.get(sla.health, 0.0)
        multiplier = self.config.priority_multipliers.get(normalize_priority_name(priority), 1.0)
        return points * multiplier

    def urgency_for(self, points: float) -> str:
        t = self.config.urgency_thresholds
        if points >= t.critical:
            return "critical"
        if points >= t.high:
            return "high"
        if points >= t.medium:
            return "medium"
        return "low"

    def urgency_score(self, urgency: str) -> float:
        return float(self.config.urgency_scores.get(urgency, 0.0))

    def time_remaining(self, due: date | None, now: datetime) -> TimeRemaining | None:
        """Breakdown of time left until the end of the due date (zero once overdue)."""
        if due is None:
            return None
        tz = self.calendar.tz
        due_end = tz.localize(datetime.combine(due + timedelta(days=1), time(0)))
        delta = due_end - now
        seconds = max(0.0, delta.total_seconds())
        business = self.calendar.business_days_between(self.calendar.today(now), due)
        return TimeRemaining(
            days=int(seconds // 86400),
            hours=int((seconds % 86400) // 3600),
            business_days=max(0, business),
        )

    def find_issues_needing_attention(
        self, issues: Iterable[IssueModel], now: datetime
    ) -> dict[str, list[IssueModel]]:
        """Bucket issues by deadline urgency; low-urgency items with a near due/release date are "upcoming"."""
        buckets: dict[str, list[IssueModel]] = {"critical": [], "high": [], "medium": [], "upcoming": []}
        for issue in issues:
            result = self.analyze(issue, now)
            if result.urgency != "low":
                buckets[result.urgency].append(issue)
                continue
            due_soon = result.days_until_due is not None and result.days_until_due <= self.config.upcoming_due_days
            release_soon = (
                result.days_until_release is not None
                and result.days_until_release <= self.config.upcoming_release_days
            )
            if due_soon or release_soon:
                buckets["upcoming"].append(issue)
        return buckets

    def warning_threshold(self, urgency: str) -> float:
        thresholds = self.config.warning_thresholds
        return getattr(thresholds, urgency, thresholds.low)

    # ------------------ Configuration helpers ------------------
    def add_sla(self, sla: SLAConfig) -> None:
        self.config.sla_configurations.append(sla)

    def remove_sla(self, name: str) -> None:
        self.config.sla_configurations = [s for s in self.config.sla_configurations if s.name != name]

    def add_holidays(self, holidays: Iterable[str]) -> None:
        merged = list(dict.fromkeys([*self.config.holidays, *holidays]))
        self.config.holidays = tuple(merged)
        self.calendar = BusinessCalendar.from_config(self.config.holidays, self.config.business_hours)
