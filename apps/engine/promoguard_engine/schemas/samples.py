"""Engagement sample schema."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from promoguard_engine.utils.clock import to_naive_utc


class Platform(str, Enum):
    """Supported social platforms."""

    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"


class EngagementSample(BaseModel):
    """One engagement measurement for a promoter's post. Immutable."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    platform: Platform
    promoter_id: str = Field(..., min_length=1, alias="promoterId")
    campaign_id: str = Field(..., min_length=1, alias="campaignId")
    post_id: str = Field(..., min_length=1, alias="postId")
    view_count: int = Field(..., ge=0, alias="viewCount")
    like_count: int = Field(..., ge=0, alias="likeCount")
    comment_count: int = Field(..., ge=0, alias="commentCount")
    share_count: int = Field(0, ge=0, alias="shareCount")
    observed_at: datetime = Field(..., alias="observedAt")

    @field_validator("observed_at")
    @classmethod
    def _normalize_observed_at(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @property
    def identity(self) -> tuple[str, datetime]:
        """Deduplication identity within a (promoter, campaign) key."""
        return (self.post_id, self.observed_at)
