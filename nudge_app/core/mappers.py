"""Mapping raw Jira issue JSON into IssueModel instances and DataFrames."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Any

import pandas as pd

from .config import FIELD_IDS, PRIORITY_MAPPING, normalize_priority_name
from .models import CommentModel, HistoryItemModel, IssueModel, VersionModel, WorklogModel
from .status import normalize_workflow_status


def map_priority(p: str | None) -> int:
    if not p:
        return -99
    for k, v in PRIORITY_MAPPING.items():
        if p.startswith(k):
            return v
    return -99


def parse_dt(val):
    if not val:
        return None
    ts = pd.to_datetime(val, utc=True, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    return ts.to_pydatetime()


def parse_date(val) -> date | None:
    if not val:
        return None
    ts = pd.to_datetime(val, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    return ts.date()


def _flatten_text(value: Any) -> str | None:
    """Collapse an Atlassian Document Format tree (REST v3) to plain text."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    parts: list[str] = []

    def walk(node: Any):
        if isinstance(node, dict):
            text = node.get("text")
            if isinstance(text, str):
                parts.append(text)
            for child in node.get("content") or []:
                walk(child)
        elif isinstance(node, list):
            for item in node:
                walk(item)

    walk(value)
    return " ".join(" ".join(parts).split()) or None


def _name(block: Any, key: str = "name") -> str | None:
    if isinstance(block, dict):
        value = block.get(key)
        return value if isinstance(value, str) else None
    return None


def _map_comments(fields: dict[str, Any]) -> tuple[CommentModel, ...] | None:
    block = fields.get("comment")
    if not isinstance(block, dict):
        return None
    return tuple(
        CommentModel(
            author=_name(c.get("author"), "displayName"),
            created=parse_dt(c.get("created")),
            body=_flatten_text(c.get("body")),
        )
        for c in block.get("comments") or []
    )


def _map_worklogs(fields: dict[str, Any]) -> tuple[WorklogModel, ...] | None:
    block = fields.get("worklog")
    if not isinstance(block, dict):
        return None
    return tuple(
        WorklogModel(
            author=_name(w.get("author"), "displayName") or _name(w.get("author"), "accountId"),
            created=parse_dt(w.get("started") or w.get("created")),
            time_spent_seconds=int(w.get("timeSpentSeconds") or 0),
        )
        for w in block.get("worklogs") or []
    )


def _map_histories(raw: dict[str, Any]) -> tuple[HistoryItemModel, ...] | None:
    changelog = raw.get("changelog")
    if not isinstance(changelog, dict):
        return None
    histories = []
    for h in changelog.get("histories") or []:
        items = h.get("items") or []
        first_field = items[0].get("field") if items else None
        histories.append(
            HistoryItemModel(
                author=_name(h.get("author"), "displayName"),
                created=parse_dt(h.get("created")),
                field=first_field,
                items=tuple(items),
            )
        )
    return tuple(histories)


def map_issue(raw: dict[str, Any]) -> IssueModel:
    fields = raw.get("fields", {}) or {}
    assignee = fields.get("assignee") or {}
    project = fields.get("project") or {}
    priority = normalize_priority_name(_name(fields.get("priority"))) if fields.get("priority") else None
    story_points = fields.get(FIELD_IDS["story_points"]) if FIELD_IDS.get("story_points") else None
    versions = tuple(
        VersionModel(name=v.get("name") or "", release_date=parse_date(v.get("releaseDate")))
        for v in fields.get("fixVersions") or []
        if isinstance(v, dict)
    )
    return IssueModel(
        key=raw.get("key"),
        summary=fields.get("summary"),
        status=normalize_workflow_status(_name(fields.get("status"))),
        priority=priority,
        issuetype=_name(fields.get("issuetype")),
        created=parse_dt(fields.get("created")),
        updated=parse_dt(fields.get("updated")),
        assignee=_name(assignee, "displayName"),
        assignee_id=_name(assignee, "accountId"),
        reporter=_name(fields.get("reporter"), "displayName"),
        project_key=_name(project, "key"),
        project_name=_name(project, "name"),
        description=_flatten_text(fields.get("description")),
        due_date=parse_date(fields.get("duedate")),
        resolution_date=parse_dt(fields.get("resolutiondate")),
        fix_versions=versions,
        labels=tuple(fields.get("labels", []) or []),
        components=tuple(c.get("name") for c in fields.get("components") or [] if isinstance(c, dict)),
        story_points=float(story_points) if isinstance(story_points, (int, float)) else None,
        comments=_map_comments(fields),
        worklogs=_map_worklogs(fields),
        histories=_map_histories(raw),
        priority_value=map_priority(priority),
    )


def issues_to_dataframe(issues: Iterable[IssueModel]) -> pd.DataFrame:
    rows = []
    for i in issues:
        rows.append(
            {
                "key": i.key,
                "summary": i.summary,
                "created": i.created,
                "updated": i.updated,
                "assignee": i.assignee or "Unassigned",
                "assignee_id": i.assignee_id,
                "reporter": i.reporter or "Unknown",
                "priority": i.priority or "None",
                "priority_value": i.priority_value,
                "status": i.status,
                "issuetype": i.issuetype,
                "project_key": i.project_key,
                "due_date": i.due_date,
                "resolution_date": i.resolution_date,
                "labels": list(i.labels),
                "comments": [{"author": c.author, "created": c.created} for c in i.comments or ()],
                "histories": [
                    {"author": h.author, "created": h.created, "items": list(h.items)} for h in i.histories or ()
                ],
            }
        )
    return pd.DataFrame(rows)
