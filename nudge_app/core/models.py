"""Domain data models for Jira issues and the people receiving nudges."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from .config import TIMEZONE


@dataclass(slots=True, frozen=True)
class CommentModel:
    author: str | None
    created: datetime | None
    body: str | None = None


@dataclass(slots=True, frozen=True)
class WorklogModel:
    author: str | None
    created: datetime | None
    time_spent_seconds: int = 0


@dataclass(slots=True, frozen=True)
class HistoryItemModel:
    author: str | None
    created: datetime | None
    field: str | None
    items: tuple[dict, ...] = ()

    @property
    def is_status_change(self) -> bool:
        if self.field == "status":
            return True
        return any(isinstance(it, dict) and it.get("field") == "status" for it in self.items)


@dataclass(slots=True, frozen=True)
class VersionModel:
    name: str
    release_date: date | None = None


@dataclass(slots=True, frozen=True)
class IssueModel:
    """Read-only snapshot of one tracker item.

    ``comments``, ``worklogs`` and ``histories`` are ``None`` when the data
    was not fetched, and an empty tuple when it was fetched and is empty.
    Analyzers treat the two cases differently.
    """

    key: str
    summary: str | None
    status: str | None
    priority: str | None
    issuetype: str | None
    created: datetime | None
    updated: datetime | None
    assignee: str | None = None
    assignee_id: str | None = None
    reporter: str | None = None
    project_key: str | None = None
    project_name: str | None = None
    description: str | None = None
    due_date: date | None = None
    resolution_date: datetime | None = None
    fix_versions: tuple[VersionModel, ...] = ()
    labels: tuple[str, ...] = ()
    components: tuple[str, ...] = ()
    story_points: float | None = None
    comments: tuple[CommentModel, ...] | None = None
    worklogs: tuple[WorklogModel, ...] | None = None
    histories: tuple[HistoryItemModel, ...] | None = None
    priority_value: int | None = None

    @property
    def recipient_id(self) -> str | None:
        return self.assignee_id or self.assignee

    @property
    def text(self) -> str:
        return f"{self.summary or ''} {self.description or ''}"

    @property
    def release_dates(self) -> list[date]:
        return sorted(v.release_date for v in self.fix_versions if v.release_date is not None)


@dataclass(slots=True)
class QuietHours:
    enabled: bool = True
    start: str = "18:00"  # HH:MM
    end: str = "09:00"
    timezone: str = TIMEZONE
    respect_weekends: bool = True


@dataclass(slots=True)
class WorkingHours:
    start: int = 9
    end: int = 17
    timezone: str = TIMEZONE
    # Monday == 0, as in ``datetime.weekday``
    working_days: tuple[int, ...] = (0, 1, 2, 3, 4)


@dataclass(slots=True)
class UserPreferences:
    user_id: str
    notification_frequency: str = "moderate"  # gentle | moderate | minimal | disabled
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    working_hours: WorkingHours = field(default_factory=WorkingHours)
    stale_days_threshold: int = 7
    deadline_warning_days: int = 3
    enabled_notification_types: tuple[str, ...] = (
        "stale_reminder",
        "deadline_warning",
        "priority_alert",
        "workload_optimization",
    )
    preferred_channels: tuple[str, ...] = ("in-app",)
    email: str | None = None
    webhook_url: str | None = None


@dataclass(slots=True, frozen=True)
class UserActivity:
    """Raw workload signals for one recipient, as reported by a workload source."""

    user_id: str
    open_issues: int = 0
    recently_completed: int = 0
    avg_resolution_days: float = 0.0
    recently_updated: int = 0
    rapid_status_changes: int = 0
    late_night_activity: int = 0
    weekend_activity: int = 0
    delayed_responses: int = 0


@dataclass(slots=True, frozen=True)
class TeamActivity:
    project_key: str
    active_issues: int = 0
    average_age_days: float = 0.0
    distribution_balance: float = 1.0
    collaboration_score: float = 1.0
    recent_issue_updates: int = 0
