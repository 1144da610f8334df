"""Aggregations over a set of analysis results (attention buckets, project analytics)."""

from __future__ import annotations

from collections.abc import Iterable

import pandas as pd

from .results import AnalysisResult

HIGH_SCORE = 0.8
MEDIUM_SCORE = 0.6
UPCOMING_SCORE = 0.4


def results_to_dataframe(results: Iterable[AnalysisResult]) -> pd.DataFrame:
    rows = [
        {
            "key": r.issue_key,
            "recipient": r.recipient or "Unassigned",
            "overall_score": r.overall_score,
            "staleness_level": r.staleness.level,
            "is_stale": r.staleness.is_stale,
            "deadline_urgency": r.deadline.urgency,
            "is_overdue": r.deadline.is_overdue,
            "priority_score": r.context.priority_score,
            "capacity": r.workload.user.capacity,
            "collaboration_score": r.workload.team.collaboration_score,
            "action_type": r.action.type,
            "action_urgency": r.action.urgency,
        }
        for r in results
    ]
    columns = [
        "key",
        "recipient",
        "overall_score",
        "staleness_level",
        "is_stale",
        "deadline_urgency",
        "is_overdue",
        "priority_score",
        "capacity",
        "collaboration_score",
        "action_type",
        "action_urgency",
    ]
    return pd.DataFrame(rows, columns=columns)


def attention_buckets(results: Iterable[AnalysisResult]) -> dict[str, list[AnalysisResult]]:
    """Split results into high_priority / medium / upcoming, each sorted by score descending.

    An item lands in the first bucket it qualifies for; items below the
    upcoming score are left out.
    """
    by_key = {r.issue_key: r for r in results}
    buckets: dict[str, list[AnalysisResult]] = {"high_priority": [], "medium": [], "upcoming": []}
    df = results_to_dataframe(by_key.values())
    if df.empty:
        return buckets
    high = (df["overall_score"] >= HIGH_SCORE) | (df["action_urgency"] == "critical")
    medium = ~high & ((df["overall_score"] >= MEDIUM_SCORE) | (df["action_urgency"] == "high"))
    upcoming = ~high & ~medium & (df["overall_score"] >= UPCOMING_SCORE)
    for name, mask in (("high_priority", high), ("medium", medium), ("upcoming", upcoming)):
        ordered = df[mask].sort_values("overall_score", ascending=False, kind="stable")
        buckets[name] = [by_key[k] for k in ordered["key"]]
    return buckets


def generate_insights(results: Iterable[AnalysisResult]) -> dict:
    df = results_to_dataframe(results)
    total = len(df)
    if total == 0:
        return {"total_analyzed": 0, "average_score": 0.0, "critical_count": 0, "recommendations": []}
    critical = int((df["action_urgency"] == "critical").sum())
    stale = int(df["is_stale"].sum())
    overdue = int(df["is_overdue"].sum())
    recommendations = []
    if critical:
        recommendations.append(f"{critical} issues need immediate attention")
    if stale > total * 0.3:
        recommendations.append("High number of stale issues detected - consider team review")
    if overdue:
        recommendations.append(f"{overdue} overdue issues need timeline review")
    return {
        "total_analyzed": total,
        "average_score": float(df["overall_score"].mean()),
        "critical_count": critical,
        "recommendations": recommendations,
    }


def _distribution(series: pd.Series) -> dict[str, int]:
    return {str(k): int(v) for k, v in series.value_counts().items()}


def team_insights(df: pd.DataFrame) -> dict:
    """Recipients whose items report them near/over capacity or under-used, and mean collaboration."""
    if df.empty:
        return {"overloaded_users": [], "underutilized_users": [], "collaboration_score": 0.0}
    people = df[df["recipient"] != "Unassigned"].drop_duplicates("recipient")
    overloaded = people.loc[people["capacity"].isin(["near_capacity", "over_capacity"]), "recipient"]
    under = people.loc[people["capacity"] == "under", "recipient"]
    return {
        "overloaded_users": sorted(overloaded.tolist()),
        "underutilized_users": sorted(under.tolist()),
        "collaboration_score": round(float(df["collaboration_score"].mean()), 4),
    }


def project_analytics(results: Iterable[AnalysisResult]) -> dict:
    df = results_to_dataframe(results)
    total = len(df)
    overview = {
        "total_issues": total,
        "stale_issues": int(df["is_stale"].sum()) if total else 0,
        "overdue_issues": int(df["is_overdue"].sum()) if total else 0,
        "high_priority_issues": int((df["priority_score"] > 0.7).sum()) if total else 0,
    }
    trends = {
        "staleness_distribution": _distribution(df["staleness_level"]),
        "urgency_distribution": _distribution(df["action_urgency"]),
        "workload_distribution": _distribution(df["capacity"]),
    }
    recommendations = []
    if total:
        if overview["stale_issues"] / total > 0.4:
            recommendations.append("Consider implementing regular issue review sessions")
        if overview["overdue_issues"] > 0:
            recommendations.append("Review project timelines and resource allocation")
        if overview["high_priority_issues"] / total > 0.3:
            recommendations.append("High concentration of priority issues - consider sprint planning review")
    return {
        "overview": overview,
        "trends": trends,
        "recommendations": recommendations,
        "team_insights": team_insights(df),
    }
