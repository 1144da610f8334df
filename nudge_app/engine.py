"""NudgeEngine: the driver-facing facade over analysis, gating and delivery."""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol

from nudge_app.analytics.context import ContextAnalyzer
from nudge_app.analytics.deadline import DeadlineAnalyzer
from nudge_app.analytics.insights import attention_buckets, generate_insights, project_analytics
from nudge_app.analytics.orchestrator import AnalysisOrchestrator
from nudge_app.analytics.results import AnalysisResult, BatchResult
from nudge_app.analytics.staleness import StalenessAnalyzer
from nudge_app.analytics.workload import WorkloadAnalyzer, WorkloadSource
from nudge_app.core.cache import AnalysisCache
from nudge_app.core.config import EngineConfiguration, build_configuration, default_configuration
from nudge_app.core.errors import CollaboratorError, NudgeError
from nudge_app.core.jira_client import JiraAPI
from nudge_app.core.models import IssueModel, UserPreferences
from nudge_app.core.notification_log import NotificationLog
from nudge_app.core.preferences import InMemoryPreferenceStore, PreferenceStore
from nudge_app.core.service import IssueService, JiraWorkloadSource, attention_jql
from nudge_app.core.status import is_terminal_status
from nudge_app.delivery.channels import Channel, default_channels
from nudge_app.delivery.gate import NotificationGate
from nudge_app.delivery.manager import DeliveryManager
from nudge_app.delivery.models import DeliveryOutcome, Notification

logger = logging.getLogger(__name__)

NOTIFICATION_PRIORITY = {"critical": "urgent", "high": "high", "medium": "medium", "low": "low"}
NOTIFICATION_TYPES = {
    "priority_alert": "priority_alert",
    "deadline_notification": "deadline_warning",
    "gentle_reminder": "stale_reminder",
    "workload_suggestion": "workload_optimization",
}
TITLES = {
    "priority_alert": "Needs attention now",
    "deadline_notification": "Deadline approaching",
    "gentle_reminder": "Quick check-in",
    "workload_suggestion": "When you have a moment",
}


class ItemDataSource(Protocol):
    def get_item(self, key: str) -> IssueModel: ...

    def search_items(self, jql: str, max_results: int | None = None) -> list[IssueModel]: ...

    def get_items_by_ids(self, keys: Iterable[str]) -> dict[str, IssueModel]: ...


class NudgeEngine:
    def __init__(
        self,
        config: EngineConfiguration | None = None,
        *,
        data_source: ItemDataSource | None = None,
        preference_store: PreferenceStore | None = None,
        workload_source: WorkloadSource | None = None,
        channels: Iterable[Channel] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or default_configuration()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.data_source = data_source
        self.preferences = preference_store or InMemoryPreferenceStore()
        self.notification_log = NotificationLog()
        self.cache = AnalysisCache(self.config.general.cache_ttl_minutes, clock=self.clock)

        self.staleness = StalenessAnalyzer(self.config.staleness, workload_source)
        self.deadline = DeadlineAnalyzer(self.config.deadline)
        self.context = ContextAnalyzer(self.config.context)
        self.workload = WorkloadAnalyzer(self.config.workload, self.notification_log, workload_source)
        self.orchestrator = AnalysisOrchestrator(
            self.config,
            self.staleness,
            self.deadline,
            self.context,
            self.workload,
            self.cache,
            clock=self.clock,
        )
        self.gate = NotificationGate()
        self.delivery = DeliveryManager(
            self.config.delivery,
            default_channels() if channels is None else channels,
            notification_log=self.notification_log,
            cache=self.cache,
            clock=self.clock,
            send_hold=self.send_hold,
        )
        self._config_lock = threading.Lock()

    @classmethod
    def from_jira(
        cls, server: str, email: str, token: str, config: EngineConfiguration | None = None, **kwargs: Any
    ) -> NudgeEngine:
        config = config or default_configuration()
        service = IssueService(JiraAPI(server, email, token), max_workers=config.general.max_workers)
        kwargs.setdefault("workload_source", JiraWorkloadSource(service))
        return cls(config, data_source=service, **kwargs)

    # ------------------ Analysis ------------------
    def preferences_for(self, user_id: str | None) -> UserPreferences | None:
        if not user_id:
            return None
        try:
            return self.preferences.get_preferences(user_id)
        except CollaboratorError as exc:
            logger.warning("Preference lookup failed for %s, using defaults: %s", user_id, exc)
            return None

    def analyze_issue(
        self,
        issue: IssueModel,
        prefs: UserPreferences | None = None,
        now: datetime | None = None,
        *,
        use_cache: bool = True,
    ) -> AnalysisResult:
        if prefs is None and issue is not None:
            prefs = self.preferences_for(issue.recipient_id)
        return self.orchestrator.analyze(issue, prefs, now, use_cache=use_cache)

    def _require_source(self) -> ItemDataSource:
        if self.data_source is None:
            raise NudgeError("No item data source configured")
        return self.data_source

    def batch_analyze(
        self, issue_keys: Iterable[str], analysis_type: str = "full", now: datetime | None = None
    ) -> BatchResult:
        return self.orchestrator.batch_analyze(
            issue_keys,
            self._require_source(),
            self.preferences_for,
            analysis_type=analysis_type,
            now=now,
        )

    def _analyze_search(self, jql: str, max_results: int | None, now: datetime | None) -> list[AnalysisResult]:
        items = self._require_source().search_items(jql, max_results=max_results or self.config.general.max_results)
        items = [i for i in items if not is_terminal_status(i.status)]
        results, errors = self.orchestrator.analyze_issues(items, self.preferences_for, now)
        if errors:
            logger.warning("%s of %s items could not be analyzed", len(errors), len(items))
        return results

    def find_issues_needing_attention(
        self,
        project_key: str | None = None,
        assignee: str | None = None,
        max_results: int | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        results = self._analyze_search(attention_jql(project_key, assignee), max_results, now)
        buckets: dict[str, Any] = attention_buckets(results)
        buckets["insights"] = generate_insights(results)
        return buckets

    def get_project_analytics(
        self, project_key: str, max_results: int = 1000, now: datetime | None = None
    ) -> dict[str, Any]:
        results = self._analyze_search(attention_jql(project_key), max_results, now)
        return project_analytics(results)

    def predict_notification_windows(self, user_id: str, days: int = 7, now: datetime | None = None) -> dict:
        return self.workload.predict_notification_windows(
            user_id, self.preferences_for(user_id), now or self.clock(), days=days
        )

    # ------------------ Delivery ------------------
    def notification_from_analysis(self, result: AnalysisResult, title_prefix: str = "") -> Notification | None:
        """Seed notification for a recommended action; ``None`` when nothing should be sent.

        The id is stable per item, action type and day so repeated cycles
        on the same day deduplicate.
        """
        action = result.action
        if action.type == "no_action" or not result.recipient:
            return None
        return Notification(
            id=f"{result.issue_key}-{action.type}-{result.last_analyzed:%Y%m%d}",
            issue_key=result.issue_key,
            user_id=result.recipient,
            type=NOTIFICATION_TYPES[action.type],
            priority=NOTIFICATION_PRIORITY.get(action.urgency, "low"),
            title=f"{title_prefix}{TITLES[action.type]}: {result.issue_key}",
            message=action.message,
            created_at=result.last_analyzed,
            scheduled_for=action.timing.scheduled_for,
            next_steps=action.next_steps,
        )

    def dispatch(self, result: AnalysisResult, now: datetime | None = None) -> DeliveryOutcome:
        """Gate an analysis result and hand it to delivery: send now, schedule, or suppress."""
        now = now or self.clock()
        decision = self.gate.decide(result, now)
        notification = self.notification_from_analysis(result)
        if decision.action == "suppress" or notification is None:
            reason = decision.reason or "Nothing to deliver"
            logger.debug("Suppressed nudge for %s: %s", result.issue_key, reason)
            return DeliveryOutcome(result.issue_key, False, "suppressed", error=reason)
        prefs = self.preferences_for(notification.user_id) or UserPreferences(user_id=notification.user_id)
        enabled_types = prefs.enabled_notification_types
        if enabled_types and notification.type not in enabled_types:
            return DeliveryOutcome(
                notification.id, False, "suppressed", error=f"{notification.type} notifications are turned off"
            )
        if decision.action == "schedule":
            return self.delivery.schedule(notification, prefs, decision.scheduled_for)
        if self.delivery.is_active(notification.id):
            # reports the duplicate
            return self.delivery.deliver(notification, prefs, now)
        held = self.send_hold(notification, prefs, now)
        if held:
            logger.debug("Held nudge %s: %s", notification.id, held)
            return DeliveryOutcome(notification.id, False, "suppressed", error=held)
        return self.delivery.deliver(notification, prefs, now)

    def send_hold(self, notification: Notification, prefs: UserPreferences, now: datetime) -> str | None:
        """Live cap and cooldown check for the recipient, made at send time rather than analysis time."""
        return self.workload.send_hold(notification.user_id, notification.issue_key, prefs, now)

    def deliver_notification(
        self, notification: Notification, prefs: UserPreferences | None = None, now: datetime | None = None
    ) -> DeliveryOutcome:
        if prefs is None and notification is not None:
            prefs = self.preferences_for(notification.user_id) or UserPreferences(user_id=notification.user_id)
        return self.delivery.deliver(notification, prefs, now)

    def process_delivery_queue(self, user_id: str, now: datetime | None = None) -> int:
        return self.delivery.process_delivery_queue(user_id, now)

    def process_all_queues(self, now: datetime | None = None) -> dict[str, int]:
        return {user_id: self.delivery.process_delivery_queue(user_id, now) for user_id in list(self.delivery.queues)}

    def record_user_response(self, notification_id: str, response: str, timestamp: datetime | None = None) -> bool:
        return self.delivery.record_response(notification_id, response, timestamp)

    def delivery_statistics(self, user_id: str, days: int = 30, now: datetime | None = None) -> dict:
        return self.delivery.delivery_statistics(user_id, days, now)

    # ------------------ Configuration ------------------
    def update_configuration(self, partial: Mapping[str, Any]) -> EngineConfiguration:
        """Merge, validate and apply ``partial`` to every component; raises ``ConfigurationError``."""
        with self._config_lock:
            config = build_configuration(partial, base=self.config)
            self.config = config
            self.staleness.config = config.staleness
            self.deadline.reconfigure(config.deadline)
            self.context.config = config.context
            self.workload.config = config.workload
            self.orchestrator.config = config
            self.delivery.reconfigure(config.delivery)
            self.cache.set_ttl(config.general.cache_ttl_minutes)
            self.cache.clear()
        logger.info("Configuration updated: %s", ", ".join(sorted(partial)) or "no changes")
        return self.get_configuration()

    def get_configuration(self) -> EngineConfiguration:
        return copy.deepcopy(self.config)

    # ------------------ Cache / metrics ------------------
    def cache_stats(self) -> dict[str, float]:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def performance_metrics(self) -> dict[str, float]:
        return self.orchestrator.metrics.snapshot()
