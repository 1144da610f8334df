"""AnalysisOrchestrator: runs the four analyzers, merges scores, picks an action."""

from __future__ import annotations

import logging
import threading
import time as _time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from nudge_app.core.cache import AnalysisCache
from nudge_app.core.config import EngineConfiguration
from nudge_app.core.errors import NudgeError, ValidationError
from nudge_app.core.models import IssueModel, UserPreferences

from .context import ContextAnalyzer
from .deadline import DeadlineAnalyzer
from .results import (
    AnalysisError,
    AnalysisResult,
    BatchResult,
    ContextResult,
    DeadlineResult,
    NotificationFrequency,
    RecommendedAction,
    StalenessResult,
    TeamWorkload,
    Timing,
    UserWorkload,
    WorkloadImpact,
)
from .staleness import StalenessAnalyzer
from .workload import WorkloadAnalyzer

logger = logging.getLogger(__name__)

COMPONENTS = ("staleness", "deadline", "context", "workload")
ANALYSIS_TYPES: dict[str, tuple[str, ...]] = {
    "full": COMPONENTS,
    "staleness_only": ("staleness",),
    "deadlines_only": ("deadline",),
    "workload_only": ("workload",),
}

NEXT_STEPS: dict[str, tuple[str, ...]] = {
    "priority_alert": ("Immediate attention required", "Review and prioritize", "Consider escalation"),
    "deadline_notification": ("Review progress", "Update status", "Check dependencies"),
    "gentle_reminder": ("Quick status update", "Review and comment"),
    "workload_suggestion": ("Consider when convenient", "Review in next planning session"),
    "no_action": (),
}


class ItemSource(Protocol):
    def get_items_by_ids(self, keys: Iterable[str]) -> dict[str, IssueModel]: ...


PreferenceLookup = Callable[[str], "UserPreferences | None"]


@dataclass(slots=True, frozen=True)
class ScoreComponent:
    name: str
    enabled: bool
    weight: float
    score: float


def merge_scores(components: Iterable[ScoreComponent]) -> float:
    """Weighted mean over enabled components; weights renormalize to sum to 1."""
    active = [c for c in components if c.enabled and c.weight > 0]
    total = sum(c.weight for c in active)
    if total <= 0:
        return 0.0
    merged = sum(c.score * c.weight for c in active) / total
    return max(0.0, min(1.0, merged))


@dataclass(slots=True)
class PerformanceMetrics:
    analyses: int = 0
    average_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    error_rate: float = 0.0
    cache_hits: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, elapsed_ms: float, success: bool) -> None:
        with self._lock:
            if self.analyses == 0:
                self.average_ms = self.min_ms = self.max_ms = elapsed_ms
            else:
                self.average_ms = (self.average_ms * self.analyses + elapsed_ms) / (self.analyses + 1)
                self.min_ms = min(self.min_ms, elapsed_ms)
                self.max_ms = max(self.max_ms, elapsed_ms)
            self.analyses += 1
            # Exponential moving average of failures
            self.error_rate = self.error_rate * 0.9 + 0.1 if not success else self.error_rate * 0.99

    def record_cache_hit(self) -> None:
        with self._lock:
            self.cache_hits += 1

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            lookups = self.analyses + self.cache_hits
            return {
                "analyses": self.analyses,
                "average_ms": self.average_ms,
                "min_ms": self.min_ms,
                "max_ms": self.max_ms,
                "error_rate": self.error_rate,
                "cache_hit_rate": self.cache_hits / lookups if lookups else 0.0,
            }


class AnalysisOrchestrator:
    def __init__(
        self,
        config: EngineConfiguration,
        staleness: StalenessAnalyzer,
        deadline: DeadlineAnalyzer,
        context: ContextAnalyzer,
        workload: WorkloadAnalyzer,
        cache: AnalysisCache,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.staleness = staleness
        self.deadline = deadline
        self.context = context
        self.workload = workload
        self.cache = cache
        self.clock = clock or (lambda: datetime.now(UTC))
        self.metrics = PerformanceMetrics()

    # ------------------ Neutral defaults ------------------
    @staticmethod
    def neutral_staleness(issue: IssueModel) -> StalenessResult:
        return StalenessResult(
            issue_key=issue.key,
            days_since_update=None,
            days_since_comment=None,
            days_since_worklog=None,
            inactivity_days=0.0,
            adjusted_days=0.0,
            level="fresh",
            is_stale=False,
            score=0.0,
            confidence=0.0,
        )

    @staticmethod
    def neutral_deadline(issue: IssueModel) -> DeadlineResult:
        return DeadlineResult(issue_key=issue.key)

    def neutral_context(self, issue: IssueModel) -> ContextResult:
        mid = self.config.context.default_weight
        return ContextResult(issue_key=issue.key, priority_score=mid, type_score=mid, project_score=mid)

    @staticmethod
    def neutral_workload(issue: IssueModel, now: datetime, reason: str, should_notify: bool) -> WorkloadImpact:
        recipient = issue.recipient_id
        return WorkloadImpact(
            issue_key=issue.key,
            user=UserWorkload(user_id=recipient or "unassigned", capacity="optimal"),
            team=TeamWorkload(project_key=issue.project_key),
            frequency=NotificationFrequency(),
            optimal_time=now,
            should_notify=should_notify and recipient is not None,
            reason=reason if recipient is not None else "Item has no assignee",
        )

    # ------------------ Single item ------------------
    def analyze(
        self,
        issue: IssueModel | None,
        prefs: UserPreferences | None = None,
        now: datetime | None = None,
        *,
        components: Iterable[str] | None = None,
        use_cache: bool = True,
    ) -> AnalysisResult:
        if issue is None or not getattr(issue, "key", None):
            raise ValidationError("Cannot analyze an item without a key")
        now = now or self.clock()
        selected = tuple(components) if components is not None else COMPONENTS
        full_run = set(selected) == set(COMPONENTS)
        if use_cache and full_run:
            cached = self.cache.get(issue.key, now)
            if cached is not None:
                logger.debug("Analysis cache hit for %s", issue.key)
                self.metrics.record_cache_hit()
                return cached

        started = _time.perf_counter()
        enabled = {
            name: bool(self.config.general.enabled_components.get(name, False)) and name in selected
            for name in COMPONENTS
        }
        outputs, errors = self._run_components(issue, prefs, now, enabled)
        result = self._assemble(issue, outputs, enabled, errors, now)
        self.metrics.record((_time.perf_counter() - started) * 1000.0, success=not errors)
        if full_run:
            self.cache.put(issue.key, result, recipient=issue.recipient_id, now=now)
        return result

    def _run_components(
        self,
        issue: IssueModel,
        prefs: UserPreferences | None,
        now: datetime,
        enabled: Mapping[str, bool],
    ) -> tuple[dict[str, Any], list[AnalysisError]]:
        tasks: dict[str, Callable[[], Any]] = {
            "staleness": lambda: self.staleness.analyze(issue, now),
            "deadline": lambda: self.deadline.analyze(issue, now),
            "context": lambda: self.context.analyze(issue),
            "workload": lambda: self.workload.analyze(issue, prefs, now),
        }
        neutral: dict[str, Callable[[str], Any]] = {
            "staleness": lambda reason: self.neutral_staleness(issue),
            "deadline": lambda reason: self.neutral_deadline(issue),
            "context": lambda reason: self.neutral_context(issue),
            "workload": lambda reason: self.neutral_workload(
                issue, now, reason, should_notify=reason == "Workload analysis disabled"
            ),
        }
        outputs: dict[str, Any] = {}
        errors: list[AnalysisError] = []
        active = [name for name in COMPONENTS if enabled[name]]
        for name in COMPONENTS:
            if not enabled[name]:
                outputs[name] = neutral[name](f"{name.capitalize()} analysis disabled")

        def _guarded(name: str):
            try:
                return tasks[name](), None
            except Exception as exc:
                logger.warning("%s analysis failed for %s: %s", name, issue.key, exc)
                return None, exc

        if self.config.general.parallel_analyzers and len(active) > 1:
            with ThreadPoolExecutor(max_workers=len(active)) as pool:
                futures = {name: pool.submit(_guarded, name) for name in active}
                pairs = {name: fut.result() for name, fut in futures.items()}
        else:
            pairs = {name: _guarded(name) for name in active}

        for name in active:
            value, exc = pairs[name]
            if exc is None:
                outputs[name] = value
                continue
            severity = "high" if isinstance(exc, NudgeError) else "medium"
            errors.append(AnalysisError(issue_key=issue.key, component=name, message=str(exc), severity=severity))
            outputs[name] = neutral[name](f"{name.capitalize()} analysis unavailable: {exc}")
        return outputs, errors

    def _assemble(
        self,
        issue: IssueModel,
        outputs: Mapping[str, Any],
        enabled: Mapping[str, bool],
        errors: list[AnalysisError],
        now: datetime,
    ) -> AnalysisResult:
        staleness: StalenessResult = outputs["staleness"]
        deadline: DeadlineResult = outputs["deadline"]
        context: ContextResult = outputs["context"]
        workload: WorkloadImpact = outputs["workload"]
        weights = self.config.general.weights
        scores = {
            "staleness": staleness.score,
            "deadline": self.deadline.urgency_score(deadline.urgency),
            "context": context.score,
            "workload": 0.6 if workload.should_notify else 0.3,
        }
        overall = merge_scores(
            ScoreComponent(name, enabled[name], float(weights.get(name, 0.0)), scores[name]) for name in COMPONENTS
        )
        return AnalysisResult(
            issue_key=issue.key,
            staleness=staleness,
            deadline=deadline,
            context=context,
            workload=workload,
            overall_score=overall,
            action=self.recommend_action(issue, staleness, deadline, workload, overall),
            last_analyzed=now,
            recipient=issue.recipient_id,
            errors=tuple(errors),
        )

    # ------------------ Action ------------------
    def recommend_action(
        self,
        issue: IssueModel,
        staleness: StalenessResult,
        deadline: DeadlineResult,
        workload: WorkloadImpact,
        overall: float,
    ) -> RecommendedAction:
        """First matching rule wins; see NEXT_STEPS for the suggested follow-ups per type."""
        if deadline.urgency == "critical" or overall >= 0.9:
            action_type, urgency = "priority_alert", "critical"
        elif deadline.urgency == "high" or overall >= 0.7:
            action_type, urgency = "deadline_notification", "high"
        elif staleness.is_stale and workload.should_notify:
            action_type, urgency = "gentle_reminder", "medium"
        elif workload.should_notify and overall >= 0.4:
            action_type, urgency = "workload_suggestion", "low"
        else:
            action_type, urgency = "no_action", "low"

        delay_reason = None if workload.should_notify else workload.reason
        if action_type == "no_action":
            timing = Timing(delay_reason=delay_reason or "No action recommended")
        elif urgency in ("critical", "high"):
            timing = Timing(immediate=True, delay_reason=delay_reason)
        elif delay_reason is not None:
            timing = Timing(delay_reason=delay_reason)
        else:
            timing = Timing(scheduled_for=workload.optimal_time)
        return RecommendedAction(
            type=action_type,
            urgency=urgency,
            message=self.action_message(issue, staleness, deadline, action_type),
            next_steps=NEXT_STEPS[action_type],
            timing=timing,
        )

    @staticmethod
    def action_message(
        issue: IssueModel, staleness: StalenessResult, deadline: DeadlineResult, action_type: str
    ) -> str:
        key, summary = issue.key, issue.summary or ""
        if action_type == "priority_alert":
            due = ""
            if deadline.has_due_date:
                days = deadline.days_until_due or 0
                due = f" Due in {days} days." if days > 0 else " Due now."
            return f'{key}: "{summary}" requires immediate attention.{due}'
        if action_type == "deadline_notification":
            if deadline.has_due_date:
                return f'{key}: "{summary}" is approaching its deadline. Due in {deadline.days_until_due} days.'
            return f'{key}: "{summary}" is approaching its deadline. Timeline needs review.'
        if action_type == "gentle_reminder":
            days = round(staleness.days_since_update or 0)
            return f'{key}: "{summary}" could use a quick check-in. It has been {days} days since the last update.'
        if action_type == "workload_suggestion":
            return f'{key}: "{summary}" might benefit from your attention when you have a moment.'
        return f"{key}: No immediate action needed."

    # ------------------ Batch ------------------
    def batch_analyze(
        self,
        issue_keys: Iterable[str],
        source: ItemSource,
        preferences: PreferenceLookup,
        *,
        analysis_type: str = "full",
        now: datetime | None = None,
    ) -> BatchResult:
        """Analyze many items in fixed-size chunks, collecting per-item errors.

        A failing fetch marks every key of that chunk with an ``api`` error; a
        missing key gets its own error. Neither aborts the batch.
        """
        if analysis_type not in ANALYSIS_TYPES:
            raise ValidationError(f"Unknown analysis type: {analysis_type}")
        now = now or self.clock()
        started = _time.perf_counter()
        keys = list(dict.fromkeys(k for k in issue_keys if k))
        batch = BatchResult(total_issues=len(keys))
        size = self.config.general.batch_size
        components = ANALYSIS_TYPES[analysis_type]
        hits_before = self.cache.hits

        for offset in range(0, len(keys), size):
            chunk = keys[offset : offset + size]
            try:
                items = source.get_items_by_ids(chunk)
            except Exception as exc:
                logger.warning("Fetching batch chunk of %s items failed: %s", len(chunk), exc)
                batch.errors.extend(
                    AnalysisError(issue_key=k, component="api", message=str(exc), severity="high") for k in chunk
                )
                continue
            for key in chunk:
                if key not in items:
                    batch.errors.append(
                        AnalysisError(issue_key=key, component="api", message="Item not found", severity="medium")
                    )
            present = [items[k] for k in chunk if k in items]
            for key, outcome in self._analyze_many(present, preferences, now, components):
                if isinstance(outcome, AnalysisResult):
                    batch.results[key] = outcome
                    batch.errors.extend(outcome.errors)
                else:
                    batch.errors.append(outcome)

        batch.cache_hits = self.cache.hits - hits_before
        batch.processing_time = _time.perf_counter() - started
        logger.info(
            "Batch analysis (%s): %s analyzed, %s errors in %.2fs",
            analysis_type,
            len(batch.results),
            len(batch.errors),
            batch.processing_time,
        )
        return batch

    def analyze_issues(
        self,
        issues: Iterable[IssueModel],
        preferences: PreferenceLookup,
        now: datetime | None = None,
    ) -> tuple[list[AnalysisResult], list[AnalysisError]]:
        now = now or self.clock()
        results: list[AnalysisResult] = []
        errors: list[AnalysisError] = []
        for _, outcome in self._analyze_many(list(issues), preferences, now, COMPONENTS):
            if isinstance(outcome, AnalysisResult):
                results.append(outcome)
            else:
                errors.append(outcome)
        return results, errors

    def _analyze_many(self, issues: list[IssueModel], preferences: PreferenceLookup, now, components):
        def _task(issue: IssueModel):
            try:
                prefs = preferences(issue.recipient_id) if issue.recipient_id else None
                return issue.key, self.analyze(issue, prefs, now, components=components)
            except Exception as exc:
                logger.warning("Analysis failed for %s: %s", issue.key, exc)
                return issue.key, AnalysisError(issue_key=issue.key, component="api", message=str(exc), severity="high")

        if not issues:
            return []
        workers = min(self.config.general.max_workers, len(issues))
        if workers <= 1:
            return [_task(i) for i in issues]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(_task, issues))
