"""NotificationGate: turns an AnalysisResult into send-now / schedule / suppress."""

from __future__ import annotations

from datetime import datetime

from nudge_app.analytics.results import AnalysisResult

from .models import GateDecision


class NotificationGate:
    """Reads only ``action.timing`` and ``workload.should_notify``; holds no policy of its own."""

    def decide(self, result: AnalysisResult, now: datetime) -> GateDecision:
        action = result.action
        timing = action.timing
        if action.type == "no_action":
            return GateDecision("suppress", reason=timing.delay_reason or "No action recommended")
        if not result.workload.should_notify:
            return GateDecision("suppress", reason=timing.delay_reason or result.workload.reason)
        if timing.immediate:
            return GateDecision("send_now")
        if timing.scheduled_for is not None and timing.scheduled_for > now:
            return GateDecision("schedule", scheduled_for=timing.scheduled_for)
        return GateDecision("send_now")
