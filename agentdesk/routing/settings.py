"""Tunable thresholds and sub-score weights for routing."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from datetime import timedelta


@dataclass(frozen=True)
class RoutingSettings:
    min_match_threshold: float = 30.0
    max_candidates: int = 3
    concurrency_ceiling: int = 10
    message_window: int = 10
    recency_window_minutes: int = 60
    low_confidence_ceiling: float = 40.0
    stale_after_hours: int = 24
    default_success_rate: float = 70.0
    default_language: str = "en"

    # Sub-score weights.
    category_weight: float = 40.0
    category_extra_match_bonus: float = 5.0
    capability_weight: float = 25.0
    capability_no_keywords: float = 20.0
    urgency_critical_match: float = 30.0
    urgency_critical_other: float = 10.0
    urgency_high_match: float = 20.0
    urgency_high_other: float = 15.0
    urgency_medium: float = 15.0
    urgency_low: float = 10.0
    language_default: float = 15.0
    language_multilingual: float = 25.0
    language_translation: float = 15.0
    language_other: float = 5.0
    performance_excellent: float = 15.0
    performance_good: float = 10.0
    performance_fair: float = 5.0
    availability_idle: float = 10.0
    availability_busy: float = 5.0

    # Routing confidence contributions.
    confidence_base: float = 50.0
    confidence_categories: float = 20.0
    confidence_urgency: float = 15.0
    confidence_keywords: float = 10.0
    confidence_negative_sentiment: float = 5.0

    @property
    def recency_window(self) -> timedelta:
        return timedelta(minutes=self.recency_window_minutes)

    @property
    def stale_after(self) -> timedelta:
        return timedelta(hours=self.stale_after_hours)

    @classmethod
    def from_env(cls) -> "RoutingSettings":
        """Build settings from ``ROUTING_<FIELD>`` environment variables."""

        overrides = {}
        for item in fields(cls):
            raw = os.getenv(f"ROUTING_{item.name.upper()}")
            if raw is None:
                continue
            default = item.default
            if isinstance(default, bool):
                overrides[item.name] = raw.lower() == "true"
            elif isinstance(default, int):
                overrides[item.name] = int(raw)
            elif isinstance(default, float):
                overrides[item.name] = float(raw)
            else:
                overrides[item.name] = raw
        return cls(**overrides)
