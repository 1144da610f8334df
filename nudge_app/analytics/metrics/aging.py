"""Aging metrics computation (pure functions)."""

from __future__ import annotations

from datetime import datetime

import pandas as pd
import pytz

from nudge_app.core.config import TIMEZONE


def add_aging_metrics(df: pd.DataFrame, now: datetime | None = None) -> pd.DataFrame:
    if df.empty:
        return df
    out = df.copy()
    tz = pytz.timezone(TIMEZONE)
    now = now.astimezone(tz) if now is not None else datetime.now(tz=tz)
    out["created_dt"] = pd.to_datetime(out["created"], utc=True, errors="coerce").dt.tz_convert(tz)
    out["updated_dt"] = pd.to_datetime(out["updated"], utc=True, errors="coerce").dt.tz_convert(tz)
    out["days_open"] = (now - out["created_dt"]).dt.total_seconds() / 86400.0
    out["days_since_update"] = (now - out["updated_dt"]).dt.total_seconds() / 86400.0
    if "resolution_date" in out.columns:
        out["resolution_dt"] = pd.to_datetime(out["resolution_date"], utc=True, errors="coerce").dt.tz_convert(tz)
        out["time_to_resolution_days"] = (out["resolution_dt"] - out["created_dt"]).dt.total_seconds() / 86400.0
    return out


def mean_days(df: pd.DataFrame, column: str) -> float:
    """Mean of a day-valued column, 0.0 when the column is missing or empty."""
    if df.empty or column not in df.columns:
        return 0.0
    value = pd.to_numeric(df[column], errors="coerce").mean()
    return 0.0 if pd.isna(value) else float(value)
