"""IssueService: the item data source, plus Jira-derived workload statistics."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta
from typing import Any

import pandas as pd
import pytz

from nudge_app.analytics.aggregations.assignee import aggregate_by_assignee, distribution_balance
from nudge_app.analytics.metrics.activity import add_off_hours_activity, add_weighted_activity
from nudge_app.analytics.metrics.aging import add_aging_metrics, mean_days

from .config import (
    COMMENT_HYDRATION_MAX_WORKERS,
    COMMENT_HYDRATION_MIN_PARALLEL,
    FULL_COMMENT_HYDRATION,
    JIRA_FETCH_BASE_FIELDS,
    STRESS_WINDOW_DAYS,
    TIMEZONE,
    WORKLOAD_LOOKBACK_DAYS,
)
from .errors import CollaboratorError, ValidationError
from .jira_client import JiraAPI
from .mappers import issues_to_dataframe, map_issue
from .models import IssueModel, TeamActivity, UserActivity

logger = logging.getLogger(__name__)

DEFAULT_FIELDS: Sequence[str] = tuple(JIRA_FETCH_BASE_FIELDS)
DEFAULT_EXPAND: Sequence[str] = ("changelog",)
KEY_CHUNK_SIZE = 50
RAPID_STATUS_CHANGES = 3  # status transitions per issue within the stress window


def _quote(value: str) -> str:
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


def attention_jql(project_key: str | None = None, assignee: str | None = None) -> str:
    """Open items, least recently updated first."""
    clauses = ["status not in (Done, Resolved, Closed)"]
    if project_key:
        clauses.append(f"project = {_quote(project_key)}")
    if assignee:
        clauses.append(f"assignee = {_quote(assignee)}")
    return " AND ".join(clauses) + " ORDER BY updated ASC, priority DESC"


class IssueService:
    def __init__(self, api: JiraAPI, *, max_workers: int = COMMENT_HYDRATION_MAX_WORKERS):
        self.api = api
        self.max_workers = max_workers
        self._tz = pytz.timezone(TIMEZONE)

    # ------------------ Item Data Source ------------------
    def get_item(self, key: str) -> IssueModel:
        if not key:
            raise ValidationError("Issue key is required")
        raw = self.api.fetch_issue_raw(key)
        if not raw:
            raise CollaboratorError(f"Issue {key} not found", issue_key=key)
        return map_issue(raw)

    def search_raw(self, jql: str, max_results: int | None = None) -> list[dict[str, Any]]:
        raw = self.api.search_enhanced(
            jql,
            fields=list(DEFAULT_FIELDS),
            expand=list(DEFAULT_EXPAND),
            max_results=max_results,
        )
        self._inflate_truncated_comments(raw, force_all=FULL_COMMENT_HYDRATION)
        return raw

    def search_items(self, jql: str, max_results: int | None = None) -> list[IssueModel]:
        return [map_issue(r) for r in self.search_raw(jql, max_results=max_results)]

    def get_items_by_ids(self, keys: Iterable[str]) -> dict[str, IssueModel]:
        """Fetch many issues by key; keys Jira does not return are simply absent.

        Keys are queried in chunks of ``KEY_CHUNK_SIZE`` on a small thread pool.
        A failing chunk raises ``CollaboratorError`` for the whole call.
        """
        unique = list(dict.fromkeys(k for k in keys if k))
        if not unique:
            return {}
        chunks = [unique[i : i + KEY_CHUNK_SIZE] for i in range(0, len(unique), KEY_CHUNK_SIZE)]

        def _task(chunk: list[str]) -> list[IssueModel]:
            jql = f"key in ({', '.join(chunk)})"
            return self.search_items(jql, max_results=len(chunk))

        found: dict[str, IssueModel] = {}
        if len(chunks) == 1:
            for issue in _task(chunks[0]):
                found[issue.key] = issue
            return found
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(chunks))) as pool:
            futures = [pool.submit(_task, c) for c in chunks]
            for fut in as_completed(futures):
                for issue in fut.result():
                    found[issue.key] = issue
        return found

    def search_dataframe(self, jql: str, max_results: int | None = None) -> pd.DataFrame:
        raw = self.search_raw(jql, max_results=max_results)
        if not raw:
            return pd.DataFrame()
        return issues_to_dataframe(map_issue(r) for r in raw)

    # ------------------ Internal Comment Inflation ------------------
    def _inflate_truncated_comments(self, raw_issues: list[dict[str, Any]], *, force_all: bool = False) -> None:
        """Replace truncated comment arrays with full lists (in-place).

        Jira search results embed only the first page of comments but report
        the total via ``fields.comment.total``; the single-issue fetch returns
        the full set.
        """
        if not raw_issues:
            return
        work: list[dict[str, Any]] = []
        for issue in raw_issues:
            comment_block = (issue.get("fields") or {}).get("comment") or {}
            comments_list = comment_block.get("comments") or []
            total = comment_block.get("total")
            if force_all or (isinstance(total, int) and total > len(comments_list)):
                work.append(issue)
        if not work:
            return
        if len(work) < COMMENT_HYDRATION_MIN_PARALLEL:
            for issue in work:
                self._hydrate_single_issue(issue)
            return
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self._hydrate_single_issue, iss) for iss in work]
            for fut in as_completed(futures):
                fut.result()

    def _hydrate_single_issue(self, issue: dict[str, Any]) -> None:
        key = issue.get("key")
        if not key:
            return
        fields = issue.setdefault("fields", {})
        comment_block = fields.get("comment") or {}
        comments_list = comment_block.get("comments") or []
        try:
            detail = self.api.fetch_issue_raw(key)
        except CollaboratorError as exc:
            logger.warning("Failed to hydrate issue %s: %s", key, exc)
            return
        full_comments = ((detail.get("fields") or {}).get("comment") or {}).get("comments") or []
        if full_comments and len(full_comments) >= len(comments_list):
            comment_block["comments"] = full_comments
            comment_block["total"] = len(full_comments)
            fields["comment"] = comment_block
            logger.debug("Hydrated %s comments: %s -> %s", key, len(comments_list), len(full_comments))


class JiraWorkloadSource:
    """Recipient and team workload statistics computed from live Jira data."""

    def __init__(
        self,
        service: IssueService,
        *,
        lookback_days: int = WORKLOAD_LOOKBACK_DAYS,
        stress_window_days: int = STRESS_WINDOW_DAYS,
    ):
        self.service = service
        self.lookback_days = lookback_days
        self.stress_window_days = stress_window_days

    def user_stats(self, user_id: str, now: datetime, tz_name: str = TIMEZONE) -> UserActivity:
        who = _quote(user_id)
        open_df = self.service.search_dataframe(f"assignee = {who} AND statusCategory != Done")
        done_df = self.service.search_dataframe(
            f"assignee = {who} AND statusCategory = Done AND resolved >= -{self.lookback_days}d"
        )
        if open_df.empty and done_df.empty:
            return UserActivity(user_id=user_id)

        start = now - timedelta(days=self.stress_window_days)
        rapid = late = weekend = delayed = recently_updated = 0
        if not open_df.empty:
            enriched = add_aging_metrics(open_df, now=now)
            enriched = add_weighted_activity(enriched, start=start, end=now)
            enriched = add_off_hours_activity(enriched, start=start, end=now, tz_name=tz_name)
            rapid = int((enriched["status_changes"] >= RAPID_STATUS_CHANGES).sum())
            late = int(enriched["late_night_events"].sum())
            weekend = int(enriched["weekend_events"].sum())
            delayed = int((enriched["days_since_update"] > self.stress_window_days).sum())
            recently_updated = int((enriched["days_since_update"] <= self.stress_window_days).sum())

        avg_resolution = 0.0
        if not done_df.empty:
            avg_resolution = mean_days(add_aging_metrics(done_df, now=now), "time_to_resolution_days")

        return UserActivity(
            user_id=user_id,
            open_issues=len(open_df),
            recently_completed=len(done_df),
            avg_resolution_days=avg_resolution,
            recently_updated=recently_updated,
            rapid_status_changes=rapid,
            late_night_activity=late,
            weekend_activity=weekend,
            delayed_responses=delayed,
        )

    def team_stats(self, project_key: str, now: datetime) -> TeamActivity:
        df = self.service.search_dataframe(f"project = {_quote(project_key)} AND statusCategory != Done")
        if df.empty:
            return TeamActivity(project_key=project_key)
        enriched = add_aging_metrics(df, now=now)
        enriched = add_weighted_activity(enriched, start=now - timedelta(days=1), end=now)
        by_assignee = aggregate_by_assignee(enriched)

        def _authors(comments) -> int:
            if not isinstance(comments, list):
                return 0
            return len({c.get("author") for c in comments if isinstance(c, dict) and c.get("author")})

        commented = enriched["comments"].apply(_authors)
        discussed = commented[commented > 0]
        collaboration = float((discussed >= 2).mean()) if len(discussed) else 1.0
        return TeamActivity(
            project_key=project_key,
            active_issues=len(enriched),
            average_age_days=mean_days(enriched, "days_open"),
            distribution_balance=distribution_balance(by_assignee),
            collaboration_score=collaboration,
            recent_issue_updates=int((enriched["days_since_update"] <= 1).sum()),
        )
