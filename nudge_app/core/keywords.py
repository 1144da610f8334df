"""Keyword tables driving the context heuristics.

Every heuristic in the context analyzer is a lookup against one of these
tables, so a deployment can retune detection (through YAML or
``update_configuration``) without touching analyzer code.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass(slots=True)
class KeywordTable:
    """Case-insensitive substring match over item text and labels."""

    keywords: tuple[str, ...] = ()
    label_markers: tuple[str, ...] = ()

    def matches_text(self, text: str) -> bool:
        lowered = text.lower()
        return any(k.lower() in lowered for k in self.keywords)

    def matches_labels(self, labels: Iterable[str]) -> bool:
        if not self.label_markers:
            return False
        for label in labels:
            lowered = str(label).lower()
            if any(m.lower() in lowered for m in self.label_markers):
                return True
        return False

    def matches(self, text: str, labels: Iterable[str] = ()) -> bool:
        return self.matches_text(text) or self.matches_labels(labels)


def _table(*keywords: str, labels: tuple[str, ...] = ()) -> KeywordTable:
    return KeywordTable(keywords=tuple(keywords), label_markers=labels)


@dataclass(slots=True)
class ContextKeywords:
    security: KeywordTable = field(
        default_factory=lambda: _table(
            "security",
            "vulnerability",
            "exploit",
            "authentication",
            "authorization",
            "encryption",
            "ssl",
            "tls",
            "xss",
            "csrf",
            "injection",
            "breach",
            labels=("security",),
        )
    )
    customer_facing: KeywordTable = field(
        default_factory=lambda: _table(
            "customer",
            "user interface",
            "frontend",
            "user experience",
            "website",
            "mobile",
            "dashboard",
            "portal",
            labels=("customer",),
        )
    )
    blocking: KeywordTable = field(
        default_factory=lambda: _table("blocking", "blocker", labels=("blocking", "blocker"))
    )
    performance: KeywordTable = field(
        default_factory=lambda: _table(
            "performance",
            "slow",
            "timeout",
            "latency",
            "speed",
            "optimization",
            "memory",
            "cpu",
            "database",
            "query",
            "cache",
        )
    )
    external_dependency: KeywordTable = field(
        default_factory=lambda: _table(
            "third party",
            "third-party",
            "external",
            "api",
            "integration",
            "vendor",
            "partner",
            "dependency",
            "library",
            "framework",
        )
    )
    specialized_skill: KeywordTable = field(
        default_factory=lambda: _table(
            "machine learning",
            "blockchain",
            "devops",
            "infrastructure",
            "algorithm",
            "data science",
            "analytics",
            "architecture",
        )
    )
    bug_severe: KeywordTable = field(default_factory=lambda: _table("crash", "critical", "blocker", "data loss"))
    bug_performance: KeywordTable = field(default_factory=lambda: _table("performance", "slow"))
    bug_cosmetic: KeywordTable = field(default_factory=lambda: _table("cosmetic", "typo", "alignment"))
    story_integration: KeywordTable = field(default_factory=lambda: _table("integration", "api"))
    project_core: KeywordTable = field(default_factory=lambda: _table("core", "platform"))
    project_customer: KeywordTable = field(default_factory=lambda: _table("customer", "client"))
    project_internal: KeywordTable = field(default_factory=lambda: _table("internal", "tool"))
    effort_complex: KeywordTable = field(default_factory=lambda: _table("complex", "architecture", "migration"))
    effort_simple: KeywordTable = field(default_factory=lambda: _table("simple", "quick", "minor"))
    component_architectural: KeywordTable = field(default_factory=lambda: _table("architecture", "system-wide"))
    component_complex: KeywordTable = field(default_factory=lambda: _table("integration", "complex"))
    testing_critical: KeywordTable = field(default_factory=lambda: _table("critical", "data loss"))
    testing_extensive: KeywordTable = field(default_factory=lambda: _table("integration", "api", "migration"))
    executive: KeywordTable = field(
        default_factory=lambda: _table("executive", "ceo", "strategic", labels=("executive",))
    )
    partner: KeywordTable = field(default_factory=lambda: _table("partner", "integration", labels=("partner",)))
    community: KeywordTable = field(
        default_factory=lambda: _table("community", "open source", labels=("community",))
    )
    # Checked in order; first match wins.
    revenue_tiers: dict[str, KeywordTable] = field(
        default_factory=lambda: {
            "critical": _table("payment", "billing", "revenue", "checkout", "invoice"),
            "high": _table("customer", "sales"),
            "medium": _table("feature", "enhancement"),
            "low": _table("internal", "tool"),
        }
    )
    skills: dict[str, KeywordTable] = field(
        default_factory=lambda: {
            "Frontend Development": _table("frontend", "react", "css"),
            "Backend Development": _table("backend", "api", "server"),
            "Database": _table("database", "sql", "schema"),
            "DevOps": _table("devops", "deployment", "infrastructure", "pipeline"),
            "Security": _table("security", "authentication"),
            "Design": _table("design", "ux"),
        }
    )
