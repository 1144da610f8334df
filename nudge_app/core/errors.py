"""Exception taxonomy shared by the analysis and delivery layers."""

from __future__ import annotations

from collections.abc import Sequence


class NudgeError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(NudgeError):
    """A call was made with a fundamentally invalid argument (e.g. no item)."""


class ConfigurationError(NudgeError):
    """A configuration update failed validation.

    ``problems`` lists every violation found so callers can surface all of
    them at once instead of fixing one per round trip.
    """

    def __init__(self, problems: Sequence[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class CollaboratorError(NudgeError):
    """An external collaborator (Jira, preference store, channel) failed."""

    def __init__(self, message: str, *, component: str = "api", issue_key: str | None = None):
        super().__init__(message)
        self.component = component
        self.issue_key = issue_key
