from datetime import UTC, datetime

import pytest

from nudge_app.core.errors import CollaboratorError, ValidationError
from nudge_app.core.jira_client import JiraAPI
from nudge_app.core.service import IssueService, JiraWorkloadSource, attention_jql

NOW = datetime(2024, 6, 12, 14, tzinfo=UTC)


def _raw(key, assignee, created, updated, comments=(), histories=(), resolved=None):
    return {
        "key": key,
        "fields": {
            "summary": f"Work item {key}",
            "created": created,
            "updated": updated,
            "assignee": {"displayName": assignee, "accountId": assignee},
            "priority": {"name": "Medium"},
            "status": {"name": "Done" if resolved else "In Progress"},
            "issuetype": {"name": "Task"},
            "project": {"key": "OPS", "name": "Operations"},
            "resolutiondate": resolved,
            "comment": {
                "comments": [{"author": {"displayName": a}, "created": ts} for a, ts in comments],
                "total": len(comments),
            },
        },
        "changelog": {
            "histories": [
                {"author": {"displayName": assignee}, "created": ts, "items": [{"field": "status"}]}
                for ts in histories
            ]
        },
    }


ISSUES = {
    "OPS-1": _raw(
        "OPS-1",
        "alice",
        "2024-06-01T00:00:00.000+0000",
        "2024-06-11T10:00:00.000+0000",
        comments=[("Bob", "2024-06-08T23:30:00.000+0000"), ("Carol", "2024-06-10T10:00:00.000+0000")],
        histories=["2024-06-06T10:00:00.000+0000", "2024-06-07T10:00:00.000+0000", "2024-06-10T10:00:00.000+0000"],
    ),
    "OPS-2": _raw("OPS-2", "alice", "2024-05-01T00:00:00.000+0000", "2024-05-20T00:00:00.000+0000"),
    "OPS-3": _raw(
        "OPS-3",
        "alice",
        "2024-06-01T00:00:00.000+0000",
        "2024-06-05T00:00:00.000+0000",
        resolved="2024-06-05T00:00:00.000+0000",
    ),
    "OPS-4": _raw(
        "OPS-4",
        "bob",
        "2024-06-11T14:00:00.000+0000",
        "2024-06-12T08:00:00.000+0000",
        comments=[("Dan", "2024-06-12T07:00:00.000+0000")],
    ),
}

ROUTES = {
    'assignee = "alice" AND statusCategory != Done': ["OPS-1", "OPS-2"],
    'assignee = "alice" AND statusCategory = Done': ["OPS-3"],
    'project = "OPS" AND statusCategory != Done': ["OPS-1", "OPS-4"],
}


class DummyAPI(JiraAPI):
    def __init__(self, issues=None):
        self.server = "https://example.atlassian.net"
        self.issues = ISSUES if issues is None else issues
        self.queries = []

    def search_enhanced(self, jql, fields=None, expand=None, max_results=None, page_size=100):
        self.queries.append(jql)
        if jql.startswith("key in ("):
            keys = jql[len("key in (") : -1].split(", ")
            return [self.issues[k] for k in keys if k in self.issues]
        for needle, keys in ROUTES.items():
            if needle in jql:
                return [self.issues[k] for k in keys if k in self.issues]
        return []

    def fetch_issue_raw(self, issue_key):
        return self.issues.get(issue_key, {})


def test_attention_jql():
    assert attention_jql() == "status not in (Done, Resolved, Closed) ORDER BY updated ASC, priority DESC"
    jql = attention_jql("OPS", 'o"brien')
    assert 'project = "OPS"' in jql
    assert 'assignee = "o\\"brien"' in jql


def test_get_item_maps_issue():
    issue = IssueService(DummyAPI()).get_item("OPS-1")
    assert issue.key == "OPS-1"
    assert issue.recipient_id == "alice"
    assert len(issue.comments) == 2
    assert len(issue.histories) == 3


def test_get_item_errors():
    service = IssueService(DummyAPI())
    with pytest.raises(ValidationError):
        service.get_item("")
    with pytest.raises(CollaboratorError):
        service.get_item("OPS-404")


def test_get_items_by_ids_skips_missing_keys():
    api = DummyAPI()
    found = IssueService(api).get_items_by_ids(["OPS-1", "OPS-4", "OPS-404", "OPS-1"])
    assert sorted(found) == ["OPS-1", "OPS-4"]
    assert api.queries == ["key in (OPS-1, OPS-4, OPS-404)"]


def test_get_items_by_ids_chunks_large_requests():
    issues = {f"BIG-{i}": _raw(f"BIG-{i}", "alice", "2024-06-01T00:00:00.000+0000", "2024-06-02T00:00:00.000+0000") for i in range(120)}
    api = DummyAPI(issues)
    found = IssueService(api, max_workers=2).get_items_by_ids(list(issues))
    assert len(found) == 120
    assert len(api.queries) == 3


def test_search_dataframe_empty():
    assert IssueService(DummyAPI()).search_dataframe("project = NONE").empty


def test_user_stats_from_jira():
    stats = JiraWorkloadSource(IssueService(DummyAPI())).user_stats("alice", NOW)
    assert stats.open_issues == 2
    assert stats.recently_completed == 1
    assert stats.avg_resolution_days == pytest.approx(4.0)
    assert stats.recently_updated == 1
    assert stats.rapid_status_changes == 1
    # Saturday 23:30 comment counts as both late-night and weekend
    assert stats.late_night_activity == 1
    assert stats.weekend_activity == 1
    assert stats.delayed_responses == 1


def test_user_stats_without_issues():
    stats = JiraWorkloadSource(IssueService(DummyAPI())).user_stats("nobody", NOW)
    assert stats.open_issues == 0
    assert stats.avg_resolution_days == 0.0


def test_team_stats_from_jira():
    stats = JiraWorkloadSource(IssueService(DummyAPI())).team_stats("OPS", NOW)
    assert stats.active_issues == 2
    assert stats.average_age_days == pytest.approx((11 + 14 / 24 + 1.0) / 2)
    assert stats.distribution_balance == pytest.approx(1.0)
    # OPS-1 has two commenters, OPS-4 only one
    assert stats.collaboration_score == pytest.approx(0.5)
    assert stats.recent_issue_updates == 1
