"""Central configuration: constants, tunable dataclasses, merging and validation."""

from __future__ import annotations

import copy
import dataclasses
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError
from .keywords import ContextKeywords

TIMEZONE = "UTC"

# Story points live in a custom field on most Jira Cloud sites
FIELD_IDS = {
    "story_points": "customfield_10016",
}

JIRA_FETCH_BASE_FIELDS = [
    "summary",
    "description",
    "created",
    "updated",
    "duedate",
    "assignee",
    "reporter",
    "priority",
    "status",
    "resolution",
    "resolutiondate",
    "issuetype",
    "project",
    "labels",
    "components",
    "fixVersions",
    "comment",
    "worklog",
    FIELD_IDS["story_points"],
]

# Search embeds only the first page of comments; refetch truncated ones so the
# last-comment signal is accurate.
FULL_COMMENT_HYDRATION = False
COMMENT_HYDRATION_MAX_WORKERS = 8
COMMENT_HYDRATION_MIN_PARALLEL = 4  # below this, stay sequential to reduce overhead

# Window (days) used when deriving recipient and team activity from Jira
WORKLOAD_LOOKBACK_DAYS = 30
STRESS_WINDOW_DAYS = 7

# =============================================================================
# Workflow Status Configuration
# =============================================================================
TERMINAL_STATUSES: frozenset[str] = frozenset({"Done", "Cancelled", "Duplicate", "Resolved", "Closed"})

STATUS_ALIASES: dict[str, str] = {
    "to do": "To Do",
    "todo": "To Do",
    "open": "To Do",
    "new": "To Do",
    "in progress": "In Progress",
    "inprogress": "In Progress",
    "in-progress": "In Progress",
    "in review": "In Review",
    "review": "In Review",
    "blocked": "Blocked",
    "cancelled": "Cancelled",
    "canceled": "Cancelled",
    "done": "Done",
    "resolved": "Resolved",
    "closed": "Closed",
    "complete": "Done",
    "completed": "Done",
    "duplicate": "Duplicate",
}

# =============================================================================
# Priority Configuration
# =============================================================================
# "Lowest" must precede "Low": map_priority matches on prefix.
PRIORITY_MAPPING = {
    "Blocker": 5,
    "Critical": 4,
    "High": 3,
    "Medium": 2,
    "Lowest": 0,
    "Low": 1,
    "Undefined": 0,
}

URGENT_PRIORITIES: frozenset[str] = frozenset({"Blocker", "Critical"})

PRIORITY_ALIASES: dict[str, str] = {
    "blocker": "Blocker",
    "critical": "Critical",
    "highest": "Critical",
    "high": "High",
    "medium": "Medium",
    "low": "Low",
    "lowest": "Lowest",
    "undefined": "Undefined",
    "none": "Undefined",
    "5": "Blocker",
    "4": "Critical",
    "3": "High",
    "2": "Medium",
    "1": "Low",
    "0": "Undefined",
}


def normalize_priority_name(priority: str | None) -> str:
    """Normalize a priority name to its canonical form.

    Handles "(migrated)" suffixes, case and whitespace variations and legacy
    numeric ids. Unknown names are returned cleaned but otherwise untouched.
    """
    if priority is None:
        return "Undefined"
    cleaned = str(priority).strip()
    if not cleaned:
        return "Undefined"
    cleaned = re.sub(r"\s*\(migrated\)\s*$", "", cleaned, flags=re.IGNORECASE).strip()
    lookup_key = cleaned.lower()
    if lookup_key in PRIORITY_ALIASES:
        return PRIORITY_ALIASES[lookup_key]
    return cleaned


# =============================================================================
# Analyzer configuration
# =============================================================================
STALENESS_LEVELS: Sequence[str] = ("fresh", "aging", "stale", "very_stale", "abandoned")
URGENCY_LEVELS: Sequence[str] = ("low", "medium", "high", "critical")
NOTIFICATION_PREFERENCES: Sequence[str] = ("gentle", "moderate", "minimal", "disabled")


@dataclass(slots=True)
class StalenessThresholds:
    # Adjusted days of inactivity; each is the upper bound of its level.
    fresh: float = 2
    aging: float = 5
    stale: float = 10
    very_stale: float = 20
    # Adjusted days at which the staleness score saturates at 1.0.
    abandoned: float = 45


@dataclass(slots=True)
class RecencyWeights:
    last_update: float = 0.4
    last_comment: float = 0.3
    last_worklog: float = 0.2


@dataclass(slots=True)
class StalenessConfig:
    thresholds: StalenessThresholds = field(default_factory=StalenessThresholds)
    weights: RecencyWeights = field(default_factory=RecencyWeights)
    issue_type_multipliers: dict[str, float] = field(
        default_factory=lambda: {
            "Epic": 1.5,
            "Story": 1.0,
            "Task": 1.0,
            "Bug": 0.7,
            "Sub-task": 0.8,
            "Spike": 1.2,
        }
    )
    priority_multipliers: dict[str, float] = field(
        default_factory=lambda: {
            "Blocker": 0.3,
            "Critical": 0.5,
            "High": 0.8,
            "Medium": 1.0,
            "Low": 1.3,
            "Lowest": 1.5,
        }
    )
    recent_comment_days: float = 3
    recent_worklog_days: float = 7
    recent_status_change_days: float = 5
    max_activity_adjustment: float = 5


@dataclass(slots=True)
class SLAConfig:
    name: str
    type: str = "resolution"  # response | resolution | custom
    priorities: tuple[str, ...] = ()
    issue_types: tuple[str, ...] = ()
    time_limit_hours: float = 24
    business_hours_only: bool = True


@dataclass(slots=True)
class BusinessHours:
    start: int = 9
    end: int = 17
    timezone: str = TIMEZONE


@dataclass(slots=True)
class UrgencyThresholds:
    critical: float = 8
    high: float = 5
    medium: float = 2


@dataclass(slots=True)
class WarningThresholds:
    critical: float = 1
    high: float = 3
    medium: float = 7
    low: float = 14


@dataclass(slots=True)
class DeadlineConfig:
    business_days_only: bool = True
    holidays: tuple[str, ...] = ("2024-01-01", "2024-07-04", "2024-11-28", "2024-11-29", "2024-12-25")
    sla_configurations: list[SLAConfig] = field(
        default_factory=lambda: [
            SLAConfig(
                name="Critical Bug Response",
                type="response",
                priorities=("Blocker", "Critical"),
                issue_types=("Bug",),
                time_limit_hours=4,
                business_hours_only=True,
            ),
            SLAConfig(
                name="Standard Resolution",
                type="resolution",
                priorities=("Medium", "High"),
                issue_types=("Story", "Task"),
                time_limit_hours=120,
                business_hours_only=True,
            ),
        ]
    )
    business_hours: BusinessHours = field(default_factory=BusinessHours)
    # (max days remaining, points) steps, first match wins.
    due_date_points: tuple[tuple[float, float], ...] = ((0, 6), (1, 4), (3, 2), (7, 1))
    release_points: tuple[tuple[float, float], ...] = ((0, 3), (2, 2), (7, 1))
    sla_points: dict[str, float] = field(default_factory=lambda: {"breached": 4, "critical": 3, "warning": 2})
    priority_multipliers: dict[str, float] = field(
        default_factory=lambda: {
            "Blocker": 1.5,
            "Critical": 1.4,
            "High": 1.2,
            "Medium": 1.0,
            "Low": 0.8,
            "Lowest": 0.6,
        }
    )
    urgency_thresholds: UrgencyThresholds = field(default_factory=UrgencyThresholds)
    warning_thresholds: WarningThresholds = field(default_factory=WarningThresholds)
    urgency_scores: dict[str, float] = field(
        default_factory=lambda: {"low": 0.1, "medium": 0.4, "high": 0.8, "critical": 1.0}
    )
    upcoming_due_days: float = 7
    upcoming_release_days: float = 14


@dataclass(slots=True)
class ContextModifiers:
    security: float = 1.3
    customer_facing: float = 1.2
    blocking: float = 1.5
    bug_severe: float = 1.4
    bug_performance: float = 1.2
    bug_cosmetic: float = 0.8
    story_integration: float = 1.3
    story_high_effort: float = 1.2
    story_high_effort_points: float = 8
    epic: float = 1.5
    project_core: float = 1.3
    project_customer: float = 1.2
    project_internal: float = 0.9


@dataclass(slots=True)
class ContextConfig:
    priority_weights: dict[str, float] = field(
        default_factory=lambda: {
            "Blocker": 1.0,
            "Critical": 0.9,
            "High": 0.7,
            "Medium": 0.5,
            "Low": 0.3,
            "Lowest": 0.1,
        }
    )
    issue_type_weights: dict[str, float] = field(
        default_factory=lambda: {
            "Epic": 0.9,
            "Bug": 0.8,
            "Story": 0.6,
            "Task": 0.5,
            "Sub-task": 0.4,
            "Spike": 0.3,
        }
    )
    project_importance_weights: dict[str, float] = field(
        default_factory=lambda: {"CORE": 1.0, "CUST": 0.9, "INT": 0.6, "TEST": 0.3}
    )
    default_weight: float = 0.5
    modifiers: ContextModifiers = field(default_factory=ContextModifiers)
    keywords: ContextKeywords = field(default_factory=ContextKeywords)
    base_effort: dict[str, float] = field(
        default_factory=lambda: {"Epic": 20, "Story": 5, "Task": 3, "Bug": 2, "Sub-task": 1}
    )


@dataclass(slots=True)
class CapacityThresholds:
    # Open issue counts adding 1/2/3 capacity points.
    optimal: int = 5
    near_capacity: int = 10
    over_capacity: int = 15


@dataclass(slots=True)
class StressBands:
    moderate: int = 3
    high: int = 6
    critical: int = 10


@dataclass(slots=True)
class NotificationLimits:
    daily: int = 3
    weekly: int = 15
    per_issue: int = 2


@dataclass(slots=True)
class WorkloadConfig:
    capacity_thresholds: CapacityThresholds = field(default_factory=CapacityThresholds)
    slow_resolution_days: tuple[float, float] = (5, 8)
    completion_bounds: tuple[int, int] = (3, 8)
    stress_bands: StressBands = field(default_factory=StressBands)
    team_active_issue_steps: tuple[int, int] = (50, 100)
    team_age_steps: tuple[float, float] = (15, 30)
    notification_limits: NotificationLimits = field(default_factory=NotificationLimits)
    cooldown_periods: dict[str, float] = field(
        default_factory=lambda: {"gentle": 8, "moderate": 4, "minimal": 24, "disabled": 0}
    )
    preference_multipliers: dict[str, float] = field(
        default_factory=lambda: {"disabled": 0.0, "minimal": 0.3, "gentle": 0.7, "moderate": 1.0}
    )
    stress_delay_hours: float = 2


@dataclass(slots=True)
class GeneralConfig:
    enabled_components: dict[str, bool] = field(
        default_factory=lambda: {"staleness": True, "deadline": True, "context": True, "workload": True}
    )
    weights: dict[str, float] = field(
        default_factory=lambda: {"staleness": 0.3, "deadline": 0.4, "context": 0.2, "workload": 0.1}
    )
    cache_ttl_minutes: float = 120
    batch_size: int = 50
    max_workers: int = 8
    parallel_analyzers: bool = True
    max_results: int = 500


@dataclass(slots=True)
class DeliveryConfig:
    retry_intervals_minutes: tuple[float, ...] = (5, 15, 30, 60)
    max_retry_attempts: int = 4
    snooze_minutes: float = 60
    default_channel: str = "in-app"
    # finished notifications and delivery attempts older than this are forgotten
    retention_days: int = 30
    channel_priority_bonus: dict[str, dict[str, float]] = field(
        default_factory=lambda: {
            "urgent": {"modal": 20},
            "high": {"banner": 15},
            "medium": {"in-app": 10},
            "low": {"email": 5},
        }
    )


@dataclass(slots=True)
class EngineConfiguration:
    staleness: StalenessConfig = field(default_factory=StalenessConfig)
    deadline: DeadlineConfig = field(default_factory=DeadlineConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    workload: WorkloadConfig = field(default_factory=WorkloadConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)


def default_configuration() -> EngineConfiguration:
    return EngineConfiguration()


# =============================================================================
# Merge / validation / loading
# =============================================================================
# Lists whose items are records rather than scalars
_LIST_ITEM_TYPES: dict[str, type] = {"sla_configurations": SLAConfig}


def _coerce(current: Any, incoming: Any, path: str) -> Any:
    if dataclasses.is_dataclass(current) and not isinstance(current, type):
        if not isinstance(incoming, Mapping):
            raise ConfigurationError(f"{path}: expected a mapping")
        return _merge_dataclass(current, incoming, path)
    if isinstance(current, dict):
        if not isinstance(incoming, Mapping):
            raise ConfigurationError(f"{path}: expected a mapping")
        merged = dict(current)
        sample = next(iter(current.values()), None)
        for key, value in incoming.items():
            if key in merged:
                merged[key] = _coerce(merged[key], value, f"{path}.{key}")
            elif dataclasses.is_dataclass(sample) and isinstance(value, Mapping):
                merged[key] = type(sample)(**value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged
    if isinstance(current, (list, tuple)):
        if not isinstance(incoming, (list, tuple)):
            raise ConfigurationError(f"{path}: expected a sequence")
        leaf = path.rsplit(".", 1)[-1]
        item_type = _LIST_ITEM_TYPES.get(leaf)
        items = []
        for value in incoming:
            if item_type is not None and isinstance(value, Mapping):
                value = dict(value)
                for seq_key in ("priorities", "issue_types"):
                    if seq_key in value:
                        value[seq_key] = tuple(value[seq_key])
                items.append(item_type(**value))
            elif isinstance(value, list):
                items.append(tuple(value))
            else:
                items.append(value)
        return type(current)(items)
    return incoming


def _merge_dataclass(obj: Any, partial: Mapping[str, Any], path: str) -> Any:
    names = {f.name for f in dataclasses.fields(obj)}
    changes: dict[str, Any] = {}
    for key, value in partial.items():
        if key not in names:
            raise ConfigurationError(f"Unknown configuration key: {path}.{key}".lstrip("."))
        changes[key] = _coerce(getattr(obj, key), value, f"{path}.{key}")
    return dataclasses.replace(obj, **changes)


def merge_configuration(base: EngineConfiguration, partial: Mapping[str, Any] | None) -> EngineConfiguration:
    """Return a copy of ``base`` with the nested ``partial`` dict applied."""
    result = copy.deepcopy(base)
    if not partial:
        return result
    return _merge_dataclass(result, partial, "")


def _strictly_increasing(values: Sequence[float]) -> bool:
    return all(a < b for a, b in zip(values, values[1:]))


def validate_configuration(config: EngineConfiguration) -> list[str]:
    """Return every problem found in ``config`` (empty list when valid)."""
    problems: list[str] = []

    t = config.staleness.thresholds
    ladder = [t.fresh, t.aging, t.stale, t.very_stale, t.abandoned]
    names = ["fresh", "aging", "stale", "very_stale", "abandoned"]
    for (lo_name, lo), (hi_name, hi) in zip(zip(names, ladder), zip(names[1:], ladder[1:])):
        if lo >= hi:
            problems.append(f"Staleness {lo_name} threshold must be less than {hi_name} threshold")
    if t.fresh < 0:
        problems.append("Staleness fresh threshold must be non-negative")
    w = config.staleness.weights
    if min(w.last_update, w.last_comment, w.last_worklog) < 0 or w.last_update <= 0:
        problems.append("Staleness recency weights must be non-negative and last_update must be positive")

    wt = config.deadline.warning_thresholds
    if not _strictly_increasing([wt.critical, wt.high, wt.medium, wt.low]):
        problems.append("Deadline warning thresholds must increase from critical to low")
    ut = config.deadline.urgency_thresholds
    if not _strictly_increasing([ut.medium, ut.high, ut.critical]):
        problems.append("Deadline urgency thresholds must increase from medium to critical")
    bh = config.deadline.business_hours
    if not (0 <= bh.start < bh.end <= 24):
        problems.append("Business hours must satisfy 0 <= start < end <= 24")
    for sla in config.deadline.sla_configurations:
        if sla.time_limit_hours <= 0:
            problems.append(f"SLA '{sla.name}' time limit must be positive")
    for holiday in config.deadline.holidays:
        if not re.fullmatch(r"\d{4}-\d{2}-\d{2}", str(holiday)):
            problems.append(f"Holiday '{holiday}' must be an ISO date (YYYY-MM-DD)")

    ct = config.workload.capacity_thresholds
    if ct.optimal >= ct.near_capacity:
        problems.append("Optimal capacity must be less than near capacity threshold")
    if ct.near_capacity >= ct.over_capacity:
        problems.append("Near capacity must be less than over capacity threshold")
    sb = config.workload.stress_bands
    if not _strictly_increasing([sb.moderate, sb.high, sb.critical]):
        problems.append("Stress bands must increase from moderate to critical")
    limits = config.workload.notification_limits
    if limits.daily <= 0 or limits.weekly < limits.daily or limits.per_issue <= 0:
        problems.append("Notification limits must be positive and weekly >= daily")
    for pref, hours in config.workload.cooldown_periods.items():
        if hours < 0:
            problems.append(f"Cooldown period for '{pref}' must be non-negative")

    general = config.general
    if general.batch_size <= 0 or general.batch_size > 200:
        problems.append("Issue analysis batch size must be between 1 and 200")
    if general.max_workers <= 0:
        problems.append("max_workers must be positive")
    if any(v < 0 for v in general.weights.values()):
        problems.append("Analyzer weights must be non-negative")
    enabled_weight = sum(
        general.weights.get(name, 0.0) for name, on in general.enabled_components.items() if on
    )
    if enabled_weight <= 0:
        problems.append("At least one enabled analyzer must carry a positive weight")
    if general.cache_ttl_minutes < 0:
        problems.append("Cache TTL must be non-negative")

    delivery = config.delivery
    if not delivery.retry_intervals_minutes:
        problems.append("Retry intervals must not be empty")
    if delivery.max_retry_attempts < 0:
        problems.append("max_retry_attempts must be non-negative")
    if delivery.snooze_minutes <= 0:
        problems.append("Snooze minutes must be positive")
    if delivery.retention_days < 1:
        problems.append("Retention days must be at least 1")
    return problems


def build_configuration(
    partial: Mapping[str, Any] | None = None, base: EngineConfiguration | None = None
) -> EngineConfiguration:
    """Merge ``partial`` over ``base`` (defaults when omitted) and validate."""
    merged = merge_configuration(base or default_configuration(), partial)
    problems = validate_configuration(merged)
    if problems:
        raise ConfigurationError(problems)
    return merged


def load_configuration(path: str | Path | None = None) -> EngineConfiguration:
    """Load a YAML override file on top of the defaults.

    A missing file yields the defaults, mirroring how column sets fall back
    when no ``columns.yaml`` is present.
    """
    if path is None:
        return default_configuration()
    yaml_path = Path(path)
    if not yaml_path.exists():
        return default_configuration()
    try:
        data = yaml.safe_load(yaml_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {yaml_path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{yaml_path}: top-level YAML value must be a mapping")
    return build_configuration(data)
