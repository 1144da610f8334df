"""Assignee-based aggregations."""

from __future__ import annotations

import pandas as pd


def aggregate_by_assignee(df: pd.DataFrame, limit: int = 200) -> pd.DataFrame:
    if df.empty:
        return df
    out = df.copy()
    out["total_activity_in_range"] = (
        out.get("comments_in_range", 0) + out.get("status_changes", 0) + out.get("other_changes", 0)
    )
    agg = (
        out.groupby("assignee", dropna=False)
        .agg(
            issues=("key", "count"),
            activity_sum=("total_activity_in_range", "sum"),
        )
        .sort_values(by=["issues", "activity_sum"], ascending=False)
        .head(limit)
    )
    return agg.reset_index()


def distribution_balance(agg: pd.DataFrame) -> float:
    """1.0 when issues are spread evenly across assignees, falling toward 0 as they concentrate.

    Computed as ``1 - coefficient of variation`` of per-assignee issue counts,
    ignoring the "Unassigned" bucket.
    """
    if agg.empty or "issues" not in agg.columns:
        return 1.0
    counts = agg.loc[agg["assignee"] != "Unassigned", "issues"].astype(float)
    if len(counts) <= 1 or counts.mean() == 0:
        return 1.0
    cv = counts.std(ddof=0) / counts.mean()
    return float(max(0.0, min(1.0, 1.0 - cv)))
