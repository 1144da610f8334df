"""Result records produced by the analyzers and the orchestrator.

All records are frozen: a result may sit in the shared cache and be handed
to several callers at once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from nudge_app.core.models import WorkingHours

ACTION_TYPES = ("priority_alert", "deadline_notification", "gentle_reminder", "workload_suggestion", "no_action")
SLA_HEALTH = ("none", "safe", "warning", "critical", "breached")
CAPACITY_TIERS = ("under", "optimal", "near_capacity", "over_capacity")
STRESS_LEVELS = ("low", "moderate", "high", "critical")
TEAM_CAPACITY_TIERS = ("healthy", "busy", "overloaded", "critical")


# ------------------ Staleness ------------------
@dataclass(slots=True, frozen=True)
class StalenessFactors:
    recent_comments: bool = False
    recent_worklogs: bool = False
    recent_status_changes: bool = False
    assignee_activity: float = 0.0
    project_activity: float = 0.0


@dataclass(slots=True, frozen=True)
class StalenessResult:
    issue_key: str
    days_since_update: float | None
    days_since_comment: float | None
    days_since_worklog: float | None
    inactivity_days: float
    adjusted_days: float
    level: str
    is_stale: bool
    score: float
    confidence: float
    factors: StalenessFactors = field(default_factory=StalenessFactors)


# ------------------ Deadline ------------------
@dataclass(slots=True, frozen=True)
class SLAStatus:
    health: str = "none"
    name: str | None = None
    type: str | None = None
    deadline: datetime | None = None
    time_limit_hours: float | None = None
    time_to_breach_hours: float | None = None
    percent_remaining: float | None = None

    @property
    def has_sla(self) -> bool:
        return self.health != "none"


@dataclass(slots=True, frozen=True)
class TimeRemaining:
    days: int
    hours: int
    business_days: int


@dataclass(slots=True, frozen=True)
class DeadlineResult:
    issue_key: str
    due_date: date | None = None
    days_until_due: int | None = None
    has_fix_version: bool = False
    release_date: date | None = None
    days_until_release: int | None = None
    sla: SLAStatus = field(default_factory=SLAStatus)
    urgency_points: float = 0.0
    urgency: str = "low"
    time_remaining: TimeRemaining | None = None

    @property
    def has_due_date(self) -> bool:
        return self.due_date is not None

    @property
    def is_overdue(self) -> bool:
        return self.days_until_due is not None and self.days_until_due < 0


# ------------------ Context ------------------
@dataclass(slots=True, frozen=True)
class BusinessImpact:
    customer_facing: bool = False
    revenue_impact: str = "none"  # none | low | medium | high | critical
    blocking: bool = False
    dependent_issues: int = 0
    user_impact_score: float = 0.0


@dataclass(slots=True, frozen=True)
class TechnicalComplexity:
    estimated_effort: float = 0.0
    required_skills: tuple[str, ...] = ()
    component_complexity: str = "simple"  # simple | moderate | complex | architectural
    testing_requirements: str = "minimal"  # minimal | standard | extensive | critical


@dataclass(slots=True, frozen=True)
class StakeholderVisibility:
    executive: bool = False
    customer: bool = False
    partner: bool = False
    community: bool = False
    score: float = 0.0


@dataclass(slots=True, frozen=True)
class ContextualFactors:
    blocking: bool = False
    security: bool = False
    performance_critical: bool = False
    external_dependency: bool = False
    specialized_skill: bool = False
    epic_member: bool = False
    epic_priority: int | None = None


@dataclass(slots=True, frozen=True)
class ContextResult:
    issue_key: str
    priority_score: float
    type_score: float
    project_score: float
    business_impact: BusinessImpact = field(default_factory=BusinessImpact)
    technical_complexity: TechnicalComplexity = field(default_factory=TechnicalComplexity)
    visibility: StakeholderVisibility = field(default_factory=StakeholderVisibility)
    factors: ContextualFactors = field(default_factory=ContextualFactors)

    @property
    def score(self) -> float:
        return (self.priority_score + self.type_score + self.project_score) / 3.0


# ------------------ Workload ------------------
@dataclass(slots=True, frozen=True)
class StressIndicators:
    rapid_status_changes: int = 0
    late_night_activity: int = 0
    weekend_activity: int = 0
    delayed_responses: int = 0
    level: str = "low"


@dataclass(slots=True, frozen=True)
class UserWorkload:
    user_id: str
    open_issues: int = 0
    recently_completed: int = 0
    avg_resolution_days: float = 0.0
    capacity: str = "under"
    stress: StressIndicators = field(default_factory=StressIndicators)
    working_hours: WorkingHours = field(default_factory=WorkingHours)


@dataclass(slots=True, frozen=True)
class TeamWorkload:
    project_key: str | None
    active_issues: int = 0
    average_age_days: float = 0.0
    capacity: str = "healthy"
    distribution_balance: float = 1.0
    collaboration_score: float = 1.0


@dataclass(slots=True, frozen=True)
class NotificationFrequency:
    recent_notifications: int = 0
    weekly_notifications: int = 0
    issue_notifications: int = 0
    last_notification: datetime | None = None
    preference: str = "moderate"
    frequency_score: float = 1.0
    cooldown_hours: float = 0.0


@dataclass(slots=True, frozen=True)
class WorkloadImpact:
    issue_key: str
    user: UserWorkload
    team: TeamWorkload
    frequency: NotificationFrequency
    optimal_time: datetime
    should_notify: bool
    reason: str


# ------------------ Merged ------------------
@dataclass(slots=True, frozen=True)
class Timing:
    immediate: bool = False
    scheduled_for: datetime | None = None
    delay_reason: str | None = None


@dataclass(slots=True, frozen=True)
class RecommendedAction:
    type: str
    urgency: str
    message: str
    next_steps: tuple[str, ...] = ()
    timing: Timing = field(default_factory=Timing)


@dataclass(slots=True, frozen=True)
class AnalysisError:
    issue_key: str | None
    component: str  # staleness | deadline | context | workload | api | cache
    message: str
    severity: str = "medium"  # low | medium | high


@dataclass(slots=True, frozen=True)
class AnalysisResult:
    issue_key: str
    staleness: StalenessResult
    deadline: DeadlineResult
    context: ContextResult
    workload: WorkloadImpact
    overall_score: float
    action: RecommendedAction
    last_analyzed: datetime
    recipient: str | None = None
    errors: tuple[AnalysisError, ...] = ()


@dataclass(slots=True)
class BatchResult:
    results: dict[str, AnalysisResult] = field(default_factory=dict)
    errors: list[AnalysisError] = field(default_factory=list)
    processing_time: float = 0.0
    total_issues: int = 0
    cache_hits: int = 0
