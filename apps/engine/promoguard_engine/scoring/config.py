"""Score engine configuration.

Point values are tunable defaults, not business rules. Operators retune them
through ``Settings`` without touching the heuristics.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from promoguard_engine.schemas.samples import Platform


class PlatformBaseline(BaseModel):
    """Minimum engagement expected from a post with meaningful reach."""

    model_config = ConfigDict(frozen=True)

    min_avg_views: float = Field(..., ge=0)
    min_like_rate: Optional[float] = None
    min_comment_rate: Optional[float] = None
    penalty: int = Field(..., ge=0)


def default_baselines() -> dict[Platform, PlatformBaseline]:
    return {
        Platform.TIKTOK: PlatformBaseline(min_avg_views=1000, min_like_rate=0.02, penalty=8),
        Platform.INSTAGRAM: PlatformBaseline(min_avg_views=500, min_comment_rate=0.005, penalty=7),
    }


class ScoringConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Thresholds
    view_like_ratio: float = Field(10.0, gt=0)
    view_comment_ratio: float = Field(100.0, gt=0)
    spike_percentage: float = Field(500.0, gt=0)
    spike_time_window_seconds: int = Field(300, gt=0)
    analysis_window_seconds: int = Field(600, gt=0)
    timing_cv_threshold: float = Field(0.05, ge=0)
    timing_min_intervals: int = Field(3, ge=2)
    velocity_view_rate: float = 10.0
    velocity_like_rate: float = 0.1
    velocity_comment_rate: float = 0.01

    # Penalties
    view_like_penalty: int = Field(30, ge=0)
    view_comment_penalty: int = Field(25, ge=0)
    zero_engagement_penalty: int = Field(60, ge=0)
    spike_base_penalty: int = Field(45, ge=0)
    spike_max_penalty: int = Field(60, ge=0)
    timing_penalty: int = Field(15, ge=0)
    velocity_pair_penalty: int = Field(10, ge=0)
    negative_delta_penalty: int = Field(5, ge=0)
    velocity_cap: int = Field(25, ge=0)

    platform_baselines: dict[Platform, PlatformBaseline] = Field(default_factory=default_baselines)
