"""Context analysis: business, technical and visibility importance of an item.

Every heuristic is a lookup against the keyword tables in ``ContextConfig``;
swap the tables to retune detection for another domain.
"""

from __future__ import annotations

from collections.abc import Iterable

from nudge_app.core.config import PRIORITY_MAPPING, ContextConfig, normalize_priority_name
from nudge_app.core.models import IssueModel

from .results import (
    BusinessImpact,
    ContextResult,
    ContextualFactors,
    StakeholderVisibility,
    TechnicalComplexity,
)

USER_IMPACT_PRIORITY_BOOST = {
    "Blocker": 0.4,
    "Critical": 0.3,
    "High": 0.2,
    "Medium": 0.1,
    "Low": 0.0,
    "Lowest": -0.1,
}
VISIBILITY_WEIGHTS = {"executive": 0.4, "customer": 0.3, "partner": 0.2, "community": 0.1}
EPIC_MEMBER_TYPES = frozenset({"Story", "Task"})


def _cap(value: float) -> float:
    return max(0.0, min(1.0, value))


class ContextAnalyzer:
    def __init__(self, config: ContextConfig):
        self.config = config

    @property
    def keywords(self):
        return self.config.keywords

    def analyze(self, issue: IssueModel) -> ContextResult:
        priority = normalize_priority_name(issue.priority)
        text = issue.text
        labels = issue.labels
        kw = self.keywords

        security = kw.security.matches(text, labels)
        customer = kw.customer_facing.matches(text, labels)
        blocking = priority == "Blocker" or kw.blocking.matches(text, labels)

        impact = BusinessImpact(
            customer_facing=customer,
            revenue_impact=self.revenue_impact(text),
            blocking=blocking,
            dependent_issues=self.dependent_issues(issue, blocking),
            user_impact_score=self.user_impact(issue, priority, customer),
        )
        epic_member = issue.issuetype in EPIC_MEMBER_TYPES
        return ContextResult(
            issue_key=issue.key,
            priority_score=self.priority_score(priority, security, customer, blocking),
            type_score=self.type_score(issue),
            project_score=self.project_score(issue),
            business_impact=impact,
            technical_complexity=self.technical_complexity(issue, security),
            visibility=self.visibility(text, labels, customer),
            factors=ContextualFactors(
                blocking=blocking,
                security=security,
                performance_critical=kw.performance.matches_text(text),
                external_dependency=kw.external_dependency.matches_text(text),
                specialized_skill=kw.specialized_skill.matches_text(text),
                epic_member=epic_member,
                # The item's own priority stands in for the parent epic's.
                epic_priority=PRIORITY_MAPPING.get(priority, 2) if epic_member else None,
            ),
        )

    # ------------------ Scores ------------------
    def priority_score(self, priority: str, security: bool, customer: bool, blocking: bool) -> float:
        base = self.config.priority_weights.get(priority, self.config.default_weight)
        mods = self.config.modifiers
        modifier = 1.0
        if security:
            modifier *= mods.security
        if customer:
            modifier *= mods.customer_facing
        if blocking:
            modifier *= mods.blocking
        return _cap(base * modifier)

    def type_score(self, issue: IssueModel) -> float:
        issue_type = issue.issuetype or ""
        base = self.config.issue_type_weights.get(issue_type, self.config.default_weight)
        mods = self.config.modifiers
        kw = self.keywords
        summary = issue.summary or ""
        modifier = 1.0
        if issue_type == "Bug":
            if kw.bug_severe.matches_text(summary):
                modifier *= mods.bug_severe
            elif kw.bug_performance.matches_text(summary):
                modifier *= mods.bug_performance
            elif kw.bug_cosmetic.matches_text(summary):
                modifier *= mods.bug_cosmetic
        elif issue_type == "Story":
            if kw.story_integration.matches_text(issue.description or ""):
                modifier *= mods.story_integration
            if issue.story_points is not None and issue.story_points > mods.story_high_effort_points:
                modifier *= mods.story_high_effort
        elif issue_type == "Epic":
            modifier *= mods.epic
        return _cap(base * modifier)

    def project_score(self, issue: IssueModel) -> float:
        base = self.config.project_importance_weights.get(issue.project_key or "", self.config.default_weight)
        name = issue.project_name or ""
        mods = self.config.modifiers
        kw = self.keywords
        modifier = 1.0
        if kw.project_core.matches_text(name):
            modifier *= mods.project_core
        if kw.project_customer.matches_text(name):
            modifier *= mods.project_customer
        if kw.project_internal.matches_text(name):
            modifier *= mods.project_internal
        return _cap(base * modifier)

    # ------------------ Sub-analyses ------------------
    def revenue_impact(self, text: str) -> str:
        for tier, table in self.keywords.revenue_tiers.items():
            if table.matches_text(text):
                return tier
        return "none"

    def user_impact(self, issue: IssueModel, priority: str, customer: bool) -> float:
        impact = 0.5
        if issue.issuetype == "Bug":
            impact += 0.2
        impact += USER_IMPACT_PRIORITY_BOOST.get(priority, 0.0)
        if customer:
            impact += 0.2
        return _cap(impact)

    def dependent_issues(self, issue: IssueModel, blocking: bool) -> int:
        if issue.issuetype == "Epic":
            return 5
        return 2 if blocking else 0

    def technical_complexity(self, issue: IssueModel, security: bool) -> TechnicalComplexity:
        text = issue.text
        kw = self.keywords
        return TechnicalComplexity(
            estimated_effort=self.estimate_effort(issue),
            required_skills=tuple(name for name, table in kw.skills.items() if table.matches_text(text)),
            component_complexity=self.component_complexity(text, len(issue.components)),
            testing_requirements=self.testing_requirements(issue, security),
        )

    def estimate_effort(self, issue: IssueModel) -> float:
        if issue.story_points:
            return float(issue.story_points)
        effort = self.config.base_effort.get(issue.issuetype or "", 3)
        text = issue.text
        if self.keywords.effort_complex.matches_text(text):
            effort *= 1.5
        if self.keywords.effort_simple.matches_text(text):
            effort *= 0.7
        return float(round(effort))

    def component_complexity(self, text: str, component_count: int) -> str:
        kw = self.keywords
        if kw.component_architectural.matches_text(text) or component_count > 3:
            return "architectural"
        if kw.component_complex.matches_text(text) or component_count > 1:
            return "complex"
        if component_count == 1:
            return "moderate"
        return "simple"

    def testing_requirements(self, issue: IssueModel, security: bool) -> str:
        text = issue.text
        kw = self.keywords
        if security or kw.testing_critical.matches_text(text):
            return "critical"
        if kw.testing_extensive.matches_text(text):
            return "extensive"
        if issue.issuetype == "Bug":
            return "standard"
        return "minimal"

    def visibility(self, text: str, labels: Iterable[str], customer: bool) -> StakeholderVisibility:
        kw = self.keywords
        labels = tuple(labels)
        flags = {
            "executive": kw.executive.matches(text, labels),
            "customer": customer,
            "partner": kw.partner.matches(text, labels),
            "community": kw.community.matches(text, labels),
        }
        score = sum(VISIBILITY_WEIGHTS[name] for name, on in flags.items() if on)
        return StakeholderVisibility(score=round(score, 4), **flags)

    def find_high_context_issues(self, issues: Iterable[IssueModel]) -> dict[str, list[IssueModel]]:
        buckets: dict[str, list[IssueModel]] = {
            "high_business": [],
            "high_technical": [],
            "high_visibility": [],
            "blocking": [],
        }
        for issue in issues:
            result = self.analyze(issue)
            if result.business_impact.revenue_impact in ("high", "critical"):
                buckets["high_business"].append(issue)
            if (
                result.technical_complexity.component_complexity == "architectural"
                or result.technical_complexity.testing_requirements == "critical"
            ):
                buckets["high_technical"].append(issue)
            if result.visibility.score > 0.3:
                buckets["high_visibility"].append(issue)
            if result.factors.blocking:
                buckets["blocking"].append(issue)
        return buckets
