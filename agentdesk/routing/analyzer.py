"""Deterministic content analysis of inbound customer messages."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .schemas import AnalysisResult

_CATEGORY_PATTERNS = {
    "technical": re.compile(
        r"\b(?:errors?|bugs?|not working|broken|issues?|problems?|troubleshoot\w*|crash\w*|"
        r"freez\w*|servers?|down|outage|log ?in|can'?t|cannot)\b",
        re.I,
    ),
    "billing": re.compile(
        r"\b(?:bill\w*|payments?|charge[sd]?|refunds?|subscriptions?|pricing|invoices?|money|costs?)\b",
        re.I,
    ),
    "sales": re.compile(
        r"\b(?:buy|purchas\w*|demo|trial|pricing|upgrade|features?|products?|quotes?|sales)\b",
        re.I,
    ),
    "onboarding": re.compile(
        r"\b(?:new|get(?:ting)? started|set ?up|how to|tutorial|guide|first time|sign(?:ed)? up)\b",
        re.I,
    ),
    "management": re.compile(
        r"\b(?:manager|supervisor|escalat\w*|urgent|emergency|complaint|unsatisfied)\b",
        re.I,
    ),
}

_URGENT_PATTERN = re.compile(
    r"\b(urgent\w*|emergency|critical|asap|immediately|right now|down|outage|broken|stuck|blocking)\b",
    re.I,
)
_SOFT_URGENCY_PATTERN = re.compile(r"\b(?:soon|quickly|waiting|today|as soon as)\b", re.I)
_COMPLAINT_PATTERN = re.compile(
    r"\b(?:still|again|not working|unacceptable|terrible|frustrat\w*|complain\w*|ridiculous|worst)\b",
    re.I,
)

_POSITIVE_PATTERN = re.compile(
    r"\b(?:thanks|thank|amazing|great|excellent|wonderful|fantastic|happy|love|appreciate)\b", re.I
)
_NEGATIVE_PATTERN = re.compile(
    r"\b(?:angry|frustrated|terrible|awful|bad|horrible|hate|disappointed|upset|unacceptable|worst|annoyed)\b",
    re.I,
)

_TECHNICAL_TERMS = re.compile(
    r"\b(?:api|integration|database|server|configuration|authentication|webhook|ssl|dns|sso)\b", re.I
)

_LANGUAGE_MARKERS = {
    "es": (
        re.compile(r"[ñ¿¡]", re.I),
        re.compile(r"\b(?:hola|gracias|por favor|ayuda|necesito|cuenta|tengo|problema)\b", re.I),
    ),
    "fr": (
        re.compile(r"[çèêàœ]", re.I),
        re.compile(r"\b(?:bonjour|merci|s'il vous plaît|aide|compte|besoin|je suis)\b", re.I),
    ),
    "de": (
        re.compile(r"[äöüß]", re.I),
        re.compile(r"\b(?:danke|bitte|hilfe|konto|brauche|ich habe)\b", re.I),
    ),
    "pt": (
        re.compile(r"[ãõ]", re.I),
        re.compile(r"\b(?:obrigad[oa]|olá|ajuda|preciso|conta|minha)\b", re.I),
    ),
}

_WORD_PATTERN = re.compile(r"\b\w{4,}\b")

_STOPWORDS = frozenset(
    """
    about after again also been before being could does doing down from have having here
    into just like more most much need only other over please really same some such than
    that their them then there these they this those through very want was were what when
    where which while will with would your yours help hello thanks thank
    """.split()
)


@dataclass
class ContentAnalyzer:
    """Classify a conversation from its inbound message texts.

    Pure and side-effect free: the same texts always produce the same result.
    """

    default_language: str = "en"
    max_keywords: int = 10

    def analyse(
        self, texts: Sequence[str], *, previous_conversations: Optional[int] = None
    ) -> AnalysisResult:
        messages = [t for t in texts if t and t.strip()]
        content = " ".join(messages)
        language = self._language(content)
        categories = self._categories(content)
        if language != self.default_language:
            categories.append("multilingual")
        return AnalysisResult(
            categories=categories,
            urgency=self._urgency(content, messages),
            language=language,
            sentiment=self._sentiment(content),
            keywords=self._keywords(content),
            complexity=self._complexity(content),
            customer_type=self._customer_type(previous_conversations),
            message_count=len(messages),
        )

    def _categories(self, content: str) -> List[str]:
        return [name for name, pattern in _CATEGORY_PATTERNS.items() if pattern.search(content)]

    def _urgency(self, content: str, messages: Sequence[str]) -> str:
        urgent_terms = {m.group(1).lower() for m in _URGENT_PATTERN.finditer(content)}
        complaints = sum(1 for message in messages if _COMPLAINT_PATTERN.search(message))
        repeated_complaints = complaints >= 2
        long_thread = len(messages) > 3
        if urgent_terms and (len(urgent_terms) >= 2 or long_thread or repeated_complaints):
            return "critical"
        if urgent_terms or repeated_complaints:
            return "high"
        if _SOFT_URGENCY_PATTERN.search(content) or long_thread:
            return "medium"
        return "low"

    def _language(self, content: str) -> str:
        best = self.default_language
        best_hits = 0
        for language, (characters, words) in _LANGUAGE_MARKERS.items():
            hits = len(characters.findall(content)) + len(words.findall(content))
            if hits > best_hits:
                best, best_hits = language, hits
        return best

    def _sentiment(self, content: str) -> str:
        positive = len(_POSITIVE_PATTERN.findall(content))
        negative = len(_NEGATIVE_PATTERN.findall(content))
        if negative > positive:
            return "negative"
        if positive > negative:
            return "positive"
        return "neutral"

    def _keywords(self, content: str) -> Dict[str, int]:
        words = [w for w in _WORD_PATTERN.findall(content.lower()) if w not in _STOPWORDS and not w.isdigit()]
        counts = Counter(words)
        # Counter keeps first-seen order, so equal counts stay in reading order.
        ranked = sorted(counts.items(), key=lambda item: -item[1])
        return dict(ranked[: self.max_keywords])

    def _complexity(self, content: str) -> str:
        word_count = len(content.split())
        technical_terms = len(_TECHNICAL_TERMS.findall(content))
        if word_count > 200 or technical_terms > 3:
            return "high"
        if word_count > 50 or technical_terms > 0:
            return "medium"
        return "low"

    @staticmethod
    def _customer_type(previous_conversations: Optional[int]) -> str:
        if previous_conversations is None or previous_conversations <= 1:
            return "new"
        if previous_conversations > 10:
            return "vip"
        return "existing"
