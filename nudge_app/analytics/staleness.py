"""Staleness analysis: how long an item has gone without meaningful activity."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from nudge_app.core.config import StalenessConfig, normalize_priority_name
from nudge_app.core.errors import CollaboratorError
from nudge_app.core.models import IssueModel

from .results import StalenessFactors, StalenessResult
from .workload import WorkloadSource

logger = logging.getLogger(__name__)

STALE_LEVELS = frozenset({"stale", "very_stale", "abandoned"})
DEFAULT_ACTIVITY = 0.6


def days_between(earlier: datetime | None, now: datetime) -> float | None:
    if earlier is None:
        return None
    return max(0.0, (now - earlier).total_seconds() / 86400.0)


class StalenessAnalyzer:
    def __init__(self, config: StalenessConfig, workload_source: WorkloadSource | None = None):
        self.config = config
        self.workload_source = workload_source

    def analyze(self, issue: IssueModel, now: datetime) -> StalenessResult:
        since_created = days_between(issue.created, now)
        since_update = days_between(issue.updated or issue.created, now)
        since_comment = self._gap((c.created for c in issue.comments or ()), issue.comments, since_created, now)
        since_worklog = self._gap((w.created for w in issue.worklogs or ()), issue.worklogs, since_created, now)

        inactivity = self.inactivity_days(since_update, since_comment, since_worklog)
        factors = self.factors(issue, now)
        adjusted = max(0.0, self.apply_multipliers(inactivity, issue) + self.activity_adjustment(factors))
        level = self.level_for(adjusted)
        return StalenessResult(
            issue_key=issue.key,
            days_since_update=since_update,
            days_since_comment=since_comment,
            days_since_worklog=since_worklog,
            inactivity_days=inactivity,
            adjusted_days=adjusted,
            level=level,
            is_stale=level in STALE_LEVELS,
            score=max(0.0, min(1.0, adjusted / self.config.thresholds.abandoned)),
            confidence=self.confidence(issue, factors, since_created),
            factors=factors,
        )

    @staticmethod
    def _gap(stamps: Iterable[datetime | None], block, since_created: float | None, now: datetime) -> float | None:
        """Days since the latest entry; ``None`` when the block was never fetched.

        A fetched but empty block counts from item creation.
        """
        if block is None:
            return None
        latest = max((s for s in stamps if s is not None), default=None)
        if latest is None:
            return since_created
        return days_between(latest, now)

    def inactivity_days(
        self, since_update: float | None, since_comment: float | None, since_worklog: float | None
    ) -> float:
        """Weighted mean of the recency gaps that are actually known."""
        w = self.config.weights
        pairs = [
            (since_update, w.last_update),
            (since_comment, w.last_comment),
            (since_worklog, w.last_worklog),
        ]
        known = [(gap, weight) for gap, weight in pairs if gap is not None and weight > 0]
        total_weight = sum(weight for _, weight in known)
        if not total_weight:
            return 0.0
        return sum(gap * weight for gap, weight in known) / total_weight

    def apply_multipliers(self, inactivity: float, issue: IssueModel) -> float:
        type_mult = self.config.issue_type_multipliers.get(issue.issuetype or "", 1.0)
        priority_mult = self.config.priority_multipliers.get(normalize_priority_name(issue.priority), 1.0)
        divisor = type_mult * priority_mult
        return inactivity / divisor if divisor > 0 else inactivity

    def level_for(self, adjusted_days: float) -> str:
        t = self.config.thresholds
        if adjusted_days <= t.fresh:
            return "fresh"
        if adjusted_days <= t.aging:
            return "aging"
        if adjusted_days <= t.stale:
            return "stale"
        if adjusted_days <= t.very_stale:
            return "very_stale"
        return "abandoned"

    # ------------------ Factors ------------------
    def factors(self, issue: IssueModel, now: datetime) -> StalenessFactors:
        cfg = self.config
        recent_comments = any(
            c.created is not None and days_between(c.created, now) <= cfg.recent_comment_days
            for c in issue.comments or ()
        )
        recent_worklogs = any(
            w.created is not None and days_between(w.created, now) <= cfg.recent_worklog_days
            for w in issue.worklogs or ()
        )
        recent_status = any(
            h.is_status_change and h.created is not None and days_between(h.created, now) <= cfg.recent_status_change_days
            for h in issue.histories or ()
        )
        assignee_activity, project_activity = self._activity_scores(issue, now)
        return StalenessFactors(
            recent_comments=recent_comments,
            recent_worklogs=recent_worklogs,
            recent_status_changes=recent_status,
            assignee_activity=assignee_activity,
            project_activity=project_activity,
        )

    def _activity_scores(self, issue: IssueModel, now: datetime) -> tuple[float, float]:
        recipient = issue.recipient_id
        assignee = DEFAULT_ACTIVITY if recipient else 0.0
        project = DEFAULT_ACTIVITY
        if self.workload_source is None:
            return assignee, project
        try:
            if recipient:
                stats = self.workload_source.user_stats(recipient, now)
                if stats.open_issues:
                    assignee = min(1.0, stats.recently_updated / stats.open_issues)
            if issue.project_key:
                team = self.workload_source.team_stats(issue.project_key, now)
                if team.active_issues:
                    project = min(1.0, team.recent_issue_updates / team.active_issues)
        except CollaboratorError as exc:
            logger.warning("Activity lookup failed for %s, using defaults: %s", issue.key, exc)
        return assignee, project

    def activity_adjustment(self, factors: StalenessFactors) -> float:
        """Days added to (or taken off) the inactivity estimate; bounded by the configured cap."""
        adjustment = 0.0
        if factors.recent_comments:
            adjustment -= 2
        if factors.recent_worklogs:
            adjustment -= 3
        if factors.recent_status_changes:
            adjustment -= 1
        if factors.assignee_activity > 0.7:
            adjustment -= 1
        if factors.project_activity < 0.3:
            adjustment += 1
        cap = self.config.max_activity_adjustment
        return max(-cap, min(cap, adjustment))

    def confidence(self, issue: IssueModel, factors: StalenessFactors, since_created: float | None) -> float:
        confidence = 0.5
        if factors.recent_comments or factors.recent_worklogs:
            confidence += 0.2
        if since_created is not None and since_created > 30:
            confidence += 0.1
        if factors.assignee_activity > 0.1:
            confidence += 0.2
        if issue.comments is None:
            confidence -= 0.15
        if issue.worklogs is None:
            confidence -= 0.1
        return max(0.1, min(1.0, confidence))
