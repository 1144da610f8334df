"""Activity metrics: in-window comment/status counts and off-hours patterns."""

from __future__ import annotations

import pandas as pd
import pytz

LATE_NIGHT_HOURS = (22, 6)  # [start, end) wrapping past midnight


def normalize_timestamp(value, target_tz) -> pd.Timestamp | None:
    """Normalize a timestamp-like value into `target_tz`.

    Returns None when the input cannot be parsed.
    """
    if value is None or value == "":
        return None
    ts = pd.to_datetime(value, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    try:
        if getattr(ts, "tzinfo", None) is None:
            ts = ts.tz_localize(pytz.UTC)
        return ts.tz_convert(target_tz)
    except (TypeError, ValueError):
        return None


def within_range(ts, start_local, end_local, *, tzinfo):
    normalized = normalize_timestamp(ts, tzinfo)
    if normalized is None:
        return False
    return (normalized >= start_local) and (normalized <= end_local)


def _bounds(start, end):
    range_start = pd.to_datetime(start, errors="coerce")
    range_end = pd.to_datetime(end, errors="coerce")
    if range_start is None or pd.isna(range_start) or range_end is None or pd.isna(range_end):
        return None
    if getattr(range_start, "tzinfo", None) is None:
        range_start = range_start.tz_localize(pytz.UTC)
    if getattr(range_end, "tzinfo", None) is None:
        range_end = range_end.tz_localize(pytz.UTC)
    target_tz = range_start.tz
    return range_start, range_end.tz_convert(target_tz), target_tz


def _is_status_history(h: dict) -> bool:
    items = h.get("items") or []
    return any(isinstance(it, dict) and it.get("field") == "status" for it in items)


def add_weighted_activity(
    df: pd.DataFrame,
    start,
    end,
    w_comment: float = 2.0,
    w_status: float = 0.5,
    w_other: float = 0.5,
) -> pd.DataFrame:
    if df.empty:
        return df
    out = df.copy()
    bounds = _bounds(start, end)
    if bounds is None:
        return out
    range_start, range_end, target_tz = bounds

    def comment_count(comments):
        if not isinstance(comments, list):
            return 0
        return sum(
            1
            for c in comments
            if isinstance(c, dict) and within_range(c.get("created"), range_start, range_end, tzinfo=target_tz)
        )

    def history_counts(histories):
        status_changes = 0
        other_changes = 0
        if not isinstance(histories, list):
            return status_changes, other_changes
        for h in histories:
            if not isinstance(h, dict):
                continue
            if not within_range(h.get("created"), range_start, range_end, tzinfo=target_tz):
                continue
            if _is_status_history(h):
                status_changes += 1
            else:
                other_changes += 1
        return status_changes, other_changes

    comments = out["comments"] if "comments" in out.columns else pd.Series([[]] * len(out), index=out.index)
    histories = out["histories"] if "histories" in out.columns else pd.Series([[]] * len(out), index=out.index)
    out["comments_in_range"] = comments.apply(comment_count)
    hist = histories.apply(history_counts)
    out["status_changes"] = hist.apply(lambda t: t[0])
    out["other_changes"] = hist.apply(lambda t: t[1])
    out["activity_score_weighted"] = (
        out["comments_in_range"] * w_comment + out["status_changes"] * w_status + out["other_changes"] * w_other
    )
    return out


def add_off_hours_activity(df: pd.DataFrame, start, end, tz_name: str = "UTC") -> pd.DataFrame:
    """Count comment/history events in the window that fell late at night or on weekends.

    Hours and weekdays are evaluated in ``tz_name`` (the recipient's local time).
    """
    if df.empty:
        return df
    out = df.copy()
    bounds = _bounds(start, end)
    if bounds is None:
        return out
    range_start, range_end, _ = bounds
    local_tz = pytz.timezone(tz_name)
    late_start, late_end = LATE_NIGHT_HOURS

    def counts(row):
        late = weekend = 0
        events = []
        for column in ("comments", "histories"):
            value = row.get(column)
            if isinstance(value, list):
                events.extend(value)
        for event in events:
            if not isinstance(event, dict):
                continue
            ts = normalize_timestamp(event.get("created"), local_tz)
            if ts is None or ts < range_start or ts > range_end:
                continue
            if ts.hour >= late_start or ts.hour < late_end:
                late += 1
            if ts.weekday() >= 5:
                weekend += 1
        return late, weekend

    pairs = out.apply(counts, axis=1)
    out["late_night_events"] = pairs.apply(lambda t: t[0])
    out["weekend_events"] = pairs.apply(lambda t: t[1])
    return out
