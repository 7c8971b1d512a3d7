"""Deterministic weekly recommendation rules."""

from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class WeeklySignals:
    detection_rate: float
    critical_alerts: int
    average_bot_score: float
    total_analyses: int


@dataclass(frozen=True)
class Rule:
    name: str
    applies: Callable[[WeeklySignals], bool]
    message: str


RULES = (
    Rule(
        "detection_rate",
        lambda s: s.detection_rate > 0.2,
        "High bot detection rate detected. Consider reviewing campaign requirements "
        "and promoter vetting process.",
    ),
    Rule(
        "critical_alerts",
        lambda s: s.critical_alerts > 5,
        "Multiple critical alerts this week. Implement stricter monitoring thresholds.",
    ),
    Rule(
        "average_score",
        lambda s: s.average_bot_score > 30,
        "Average bot confidence score is elevated. Consider enhancing detection algorithms.",
    ),
    Rule(
        "volume",
        lambda s: s.total_analyses > 1000,
        "High analysis volume detected. Consider scaling infrastructure for better performance.",
    ),
)

DEFAULT_RECOMMENDATION = "System performing within normal parameters. Continue monitoring."


def recommend(signals: WeeklySignals) -> list[str]:
    """Messages of every rule that applies, in rule order."""
    messages = [rule.message for rule in RULES if rule.applies(signals)]
    return messages or [DEFAULT_RECOMMENDATION]
