"""Engagement sample model."""

from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint

from promoguard_engine.db.base import Base


class EngagementSampleRecord(Base):
    """Engagement measurement retained for the analysis lookback."""

    __tablename__ = "engagement_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    platform = Column(String(32), nullable=False)
    promoter_id = Column(String(255), nullable=False)
    campaign_id = Column(String(255), nullable=False)
    post_id = Column(String(255), nullable=False)
    view_count = Column(Integer, nullable=False)
    like_count = Column(Integer, nullable=False)
    comment_count = Column(Integer, nullable=False)
    share_count = Column(Integer, default=0, nullable=False)
    observed_at = Column(DateTime, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint(
            "promoter_id", "campaign_id", "post_id", "observed_at",
            name="uq_engagement_samples_identity",
        ),
        Index("ix_engagement_samples_key_observed", "promoter_id", "campaign_id", "observed_at"),
    )
