"""Score engine output schemas.

The metrics snapshot is a closed set of per-heuristic variants, each tagged
with a ``category`` literal, so consumers can match on the variant type
instead of probing optional keys.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from promoguard_engine.schemas.samples import Platform


class ActionTier(str, Enum):
    """Resolved action for a bot score."""

    NONE = "none"
    MONITOR = "monitor"
    WARNING = "warning"
    BAN = "ban"


class HeuristicCategory(str, Enum):
    RATIO = "ratio"
    SPIKE = "spike"
    TIMING = "timing"
    VELOCITY = "velocity"
    PLATFORM = "platform"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class RatioMetrics(_Frozen):
    """Cumulative engagement ratios over the latest snapshot of each post."""

    category: Literal["ratio"] = "ratio"
    total_views: int = 0
    total_likes: int = 0
    total_comments: int = 0
    total_shares: int = 0
    view_like_ratio: float = 0.0
    view_comment_ratio: float = 0.0
    zero_engagement: bool = False


class SpikeMetrics(_Frozen):
    category: Literal["spike"] = "spike"
    spike_detected: bool = False
    spike_percentage: Optional[float] = None
    pairs_compared: int = 0


class TimingMetrics(_Frozen):
    category: Literal["timing"] = "timing"
    intervals: int = 0
    mean_interval_seconds: Optional[float] = None
    coefficient_of_variation: Optional[float] = None
    regular: bool = False


class VelocityMetrics(_Frozen):
    category: Literal["velocity"] = "velocity"
    max_view_velocity: float = 0.0
    max_like_velocity: float = 0.0
    max_comment_velocity: float = 0.0
    avg_views_per_minute: float = 0.0
    low_engagement_pairs: int = 0
    negative_delta_pairs: int = 0


class PlatformRate(_Frozen):
    platform: Platform
    samples: int
    avg_views: float
    avg_likes: float
    avg_comments: float
    like_rate: float
    comment_rate: float
    shortfall: bool = False


class PlatformMetrics(_Frozen):
    category: Literal["platform"] = "platform"
    rates: list[PlatformRate] = Field(default_factory=list)


HeuristicMetrics = Annotated[
    Union[RatioMetrics, SpikeMetrics, TimingMetrics, VelocityMetrics, PlatformMetrics],
    Field(discriminator="category"),
]


class MetricsSnapshot(_Frozen):
    """One variant per heuristic category."""

    ratio: RatioMetrics = Field(default_factory=RatioMetrics)
    spike: SpikeMetrics = Field(default_factory=SpikeMetrics)
    timing: TimingMetrics = Field(default_factory=TimingMetrics)
    velocity: VelocityMetrics = Field(default_factory=VelocityMetrics)
    platform: PlatformMetrics = Field(default_factory=PlatformMetrics)

    def variants(self) -> list[HeuristicMetrics]:
        return [self.ratio, self.spike, self.timing, self.velocity, self.platform]


class HeuristicFinding(_Frozen):
    """A triggered heuristic and the points it contributed."""

    category: HeuristicCategory
    code: str
    description: str
    points: int = Field(..., ge=0)

    def render(self) -> str:
        return f"{self.description} (+{self.points})"


class BotAnalysis(_Frozen):
    """Score engine output for one (promoter, campaign) evaluation."""

    analysis_id: str
    promoter_id: str
    campaign_id: str
    evaluated_at: datetime
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    samples_analyzed: int = 0
    platforms: list[Platform] = Field(default_factory=list)
    bot_score: int = Field(..., ge=0, le=100)
    action: ActionTier
    reason: str
    findings: list[HeuristicFinding] = Field(default_factory=list)
    metrics: MetricsSnapshot = Field(default_factory=MetricsSnapshot)


class ActionResult(_Frozen):
    """Outcome of attempting to execute the resolved action."""

    analysis_id: str
    promoter_id: str
    campaign_id: str
    action: ActionTier
    executed: bool
    timestamp: datetime
    suspicious_patterns: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class AnalysisLog(_Frozen):
    """History entry returned by ``get_history``."""

    recorded_at: datetime
    promoter_id: str
    campaign_id: str
    analysis: BotAnalysis
    action_result: ActionResult
    processing_ms: float = 0.0
