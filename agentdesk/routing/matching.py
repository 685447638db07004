"""Score installed agents against a conversation analysis."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..agents.schemas import Agent
from .schemas import AgentMatch, AnalysisResult, ScoreBreakdown
from .settings import RoutingSettings

ESCALATION_CATEGORY = "management"
TECHNICAL_CATEGORY = "technical"
MULTILINGUAL_CATEGORY = "multilingual"
TRANSLATION_CAPABILITY = "translation"

_NAME_TOKEN = re.compile(r"[a-z]{3,}")


@dataclass(frozen=True)
class AgentCandidate:
    """An installed agent plus the live figures the engine scores on."""

    agent: Agent
    success_rate: Optional[float] = None
    open_conversations: int = 0


@dataclass
class MatchingEngine:
    settings: RoutingSettings = field(default_factory=RoutingSettings)

    def rank(self, analysis: AnalysisResult, candidates: Iterable[AgentCandidate]) -> List[AgentMatch]:
        """Return the best matches, highest score first.

        Agents at the concurrency ceiling or under the minimum score are left
        out. Equal scores are ordered by agent id.
        """

        matches: List[AgentMatch] = []
        for candidate in candidates:
            if not candidate.agent.is_active:
                continue
            if candidate.open_conversations >= self.settings.concurrency_ceiling:
                continue
            breakdown = self.score(analysis, candidate)
            total = round(breakdown.total, 2)
            if total < self.settings.min_match_threshold:
                continue
            matches.append(
                AgentMatch(
                    agent=candidate.agent,
                    score=total,
                    breakdown=breakdown,
                    reasons=self.match_reasons(breakdown),
                )
            )
        matches.sort(key=lambda m: (-m.score, m.agent.id))
        return matches[: self.settings.max_candidates]

    def score(self, analysis: AnalysisResult, candidate: AgentCandidate) -> ScoreBreakdown:
        agent = candidate.agent
        return ScoreBreakdown(
            category_match=self.category_score(analysis.categories, agent),
            capability_match=self.capability_score(analysis.keywords, agent),
            priority_match=self.priority_score(analysis.urgency, agent),
            language_match=self.language_score(analysis.language, agent),
            performance_bonus=self.performance_score(candidate.success_rate),
            availability_factor=self.availability_score(candidate.open_conversations),
        )

    # ------------------------------------------------------------------
    # Sub-scores

    def category_score(self, categories: List[str], agent: Agent) -> float:
        if not categories:
            return 0.0
        terms = {agent.category, *agent.capabilities}
        matched = sum(1 for category in categories if category in terms)
        if not matched:
            return 0.0
        s = self.settings
        value = s.category_weight * matched / len(categories)
        value += s.category_extra_match_bonus * (matched - 1)
        return min(s.category_weight, value)

    def capability_score(self, keywords: dict, agent: Agent) -> float:
        if not keywords:
            return self.settings.capability_no_keywords
        terms = set(agent.capabilities) | set(_NAME_TOKEN.findall(agent.name.lower()))
        matched = sum(
            1 for keyword in keywords if any(keyword in term or term in keyword for term in terms)
        )
        return self.settings.capability_weight * matched / len(keywords)

    def priority_score(self, urgency: str, agent: Agent) -> float:
        s = self.settings
        if urgency == "critical":
            return s.urgency_critical_match if agent.category == ESCALATION_CATEGORY else s.urgency_critical_other
        if urgency == "high":
            if agent.category in (ESCALATION_CATEGORY, TECHNICAL_CATEGORY):
                return s.urgency_high_match
            return s.urgency_high_other
        if urgency == "medium":
            return s.urgency_medium
        return s.urgency_low

    def language_score(self, language: str, agent: Agent) -> float:
        s = self.settings
        if language == s.default_language:
            return s.language_default
        if agent.category == MULTILINGUAL_CATEGORY:
            return s.language_multilingual
        if TRANSLATION_CAPABILITY in agent.capabilities:
            return s.language_translation
        return s.language_other

    def performance_score(self, success_rate: Optional[float]) -> float:
        s = self.settings
        rate = s.default_success_rate if success_rate is None else success_rate
        if rate >= 90:
            return s.performance_excellent
        if rate >= 80:
            return s.performance_good
        if rate >= 70:
            return s.performance_fair
        return 0.0

    def availability_score(self, open_conversations: int) -> float:
        if open_conversations <= 2:
            return self.settings.availability_idle
        if open_conversations <= 5:
            return self.settings.availability_busy
        return 0.0

    @staticmethod
    def match_reasons(breakdown: ScoreBreakdown) -> List[str]:
        reasons = []
        if breakdown.category_match > 20:
            reasons.append("Strong category match")
        if breakdown.capability_match > 15:
            reasons.append("High capability alignment")
        if breakdown.priority_match > 15:
            reasons.append("Priority level match")
        if breakdown.language_match > 15:
            reasons.append("Language compatibility")
        if breakdown.performance_bonus > 10:
            reasons.append("Excellent performance record")
        if breakdown.availability_factor > 5:
            reasons.append("Agent available")
        return reasons
