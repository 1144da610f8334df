"""Convenience launcher: one analyze-and-deliver cycle for a Jira project.

Usage:
  JIRA_SERVER=... JIRA_EMAIL=... JIRA_API_TOKEN=... python run_nudges.py PROJECT [--config nudges.yaml]

Reads credentials from the environment (``JIRA_TOKEN`` is accepted as an
alias for ``JIRA_API_TOKEN``), optionally overlays a YAML configuration file,
then gates every item that needs attention and delivers or schedules the
resulting nudges. Due retries from earlier cycles are processed first.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

from nudge_app.core.config import load_configuration
from nudge_app.core.errors import NudgeError
from nudge_app.engine import NudgeEngine

logger = logging.getLogger("run_nudges")


def _credentials() -> tuple[str | None, str | None, str | None]:
    server = os.environ.get("JIRA_SERVER")
    email = os.environ.get("JIRA_EMAIL")
    token = os.environ.get("JIRA_API_TOKEN") or os.environ.get("JIRA_TOKEN")
    return server, email, token


def run_cycle(engine: NudgeEngine, project_key: str, assignee: str | None = None) -> dict[str, int]:
    processed = sum(engine.process_all_queues().values())
    attention = engine.find_issues_needing_attention(project_key=project_key, assignee=assignee)
    counts = {"retries_processed": processed, "delivered": 0, "scheduled": 0, "suppressed": 0, "queued": 0}
    for bucket in ("high_priority", "medium", "upcoming"):
        for result in attention[bucket]:
            outcome = engine.dispatch(result)
            if outcome.status == "delivered":
                counts["delivered"] += 1
            elif outcome.status == "scheduled":
                counts["scheduled"] += 1
            elif outcome.status == "retry_queued":
                counts["queued"] += 1
            else:
                counts["suppressed"] += 1
    for line in attention["insights"]["recommendations"]:
        logger.info("Insight: %s", line)
    return counts


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one gentle-nudge cycle for a Jira project.")
    parser.add_argument("project", help="Jira project key")
    parser.add_argument("--assignee", help="limit to one assignee")
    parser.add_argument("--config", help="YAML configuration overrides")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    server, email, token = _credentials()
    if not (server and email and token):
        logger.error("Jira credentials not found; set JIRA_SERVER, JIRA_EMAIL and JIRA_API_TOKEN")
        return 2
    try:
        engine = NudgeEngine.from_jira(server, email, token, config=load_configuration(args.config))
        counts = run_cycle(engine, args.project, args.assignee)
    except NudgeError as exc:
        logger.error("Nudge cycle failed: %s", exc)
        return 1
    logger.info("Cycle complete: %s", ", ".join(f"{k}={v}" for k, v in counts.items()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
