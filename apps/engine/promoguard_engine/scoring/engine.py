"""Composite bot score from independent additive heuristics."""

import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

from promoguard_engine.schemas.analysis import HeuristicFinding, MetricsSnapshot
from promoguard_engine.schemas.samples import EngagementSample
from promoguard_engine.scoring import heuristics
from promoguard_engine.scoring.config import ScoringConfig

logger = logging.getLogger(__name__)

MAX_SCORE = 100
NO_FINDINGS_REASON = "No suspicious patterns detected"
NO_SAMPLES_REASON = "No valid samples to analyze"


@dataclass(frozen=True)
class ScoreCard:
    bot_score: int
    findings: list[HeuristicFinding] = field(default_factory=list)
    metrics: MetricsSnapshot = field(default_factory=MetricsSnapshot)
    samples_analyzed: int = 0

    @property
    def reason(self) -> str:
        if not self.samples_analyzed:
            return NO_SAMPLES_REASON
        if not self.findings:
            return NO_FINDINGS_REASON
        return "; ".join(f.render() for f in self.findings)


class ScoreEngine:
    """Deterministic score engine. Holds no state besides its config."""

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()

    def _score_once(self, samples: Sequence[EngagementSample]) -> ScoreCard:
        posts = heuristics.group_by_post(samples)
        ratio, ratio_findings = heuristics.ratio_heuristic(posts, self.config)
        spike, spike_findings = heuristics.spike_heuristic(posts, self.config)
        timing, timing_findings = heuristics.timing_heuristic(posts, self.config)
        velocity, velocity_findings = heuristics.velocity_heuristic(posts, self.config)
        platform, platform_findings = heuristics.platform_heuristic(posts, self.config)

        findings = ratio_findings + spike_findings + timing_findings + velocity_findings + platform_findings
        total = sum(f.points for f in findings)
        return ScoreCard(
            bot_score=min(MAX_SCORE, total),
            findings=findings,
            metrics=MetricsSnapshot(
                ratio=ratio,
                spike=spike,
                timing=timing,
                velocity=velocity,
                platform=platform,
            ),
            samples_analyzed=len(samples),
        )

    def score(self, samples: Sequence[EngagementSample]) -> ScoreCard:
        """Score an ordered sample set for one (promoter, campaign) key.

        Heuristics run in a fixed order so the reason text is stable. A
        prefix's total is the sum of every triggered contribution, capped at
        100. The set is scored once per distinct observation time and the
        highest-scoring prefix wins, latest on ties, so a later sample can
        never retract points earned earlier in the same evaluation. The card
        carries that prefix's findings and metrics.
        """
        if not samples:
            return ScoreCard(bot_score=0)

        ordered = sorted(samples, key=lambda s: (s.observed_at, s.post_id))
        best = None
        for end in range(1, len(ordered) + 1):
            if end < len(ordered) and ordered[end].observed_at == ordered[end - 1].observed_at:
                continue
            card = self._score_once(ordered[:end])
            if best is None or card.bot_score >= best.bot_score:
                best = card

        for finding in best.findings:
            logger.debug(
                "Heuristic triggered",
                extra={"category": finding.category.value, "code": finding.code, "points": finding.points},
            )
        return replace(best, samples_analyzed=len(ordered))
