"""Builders shared by the test modules."""

import uuid
from datetime import datetime, timedelta

from promoguard_engine.schemas.analysis import ActionTier, BotAnalysis, HeuristicCategory, HeuristicFinding
from promoguard_engine.schemas.samples import EngagementSample, Platform

START = datetime(2024, 3, 4, 10, 0, 0)  # a Monday


class FakeClock:
    """Controllable clock; call it to read the time."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_sample(
    views: int,
    likes: int,
    comments: int,
    at: datetime,
    post_id: str = "post-1",
    platform: Platform = Platform.TIKTOK,
    promoter_id: str = "promoter-1",
    campaign_id: str = "campaign-1",
) -> EngagementSample:
    return EngagementSample(
        platform=platform,
        promoter_id=promoter_id,
        campaign_id=campaign_id,
        post_id=post_id,
        view_count=views,
        like_count=likes,
        comment_count=comments,
        observed_at=at,
    )


def bot_samples(start: datetime = START, **kwargs) -> list[EngagementSample]:
    """1000 -> 7000 views in two minutes with almost no engagement."""
    return [
        make_sample(1000, 5, 0, start, **kwargs),
        make_sample(7000, 8, 0, start + timedelta(minutes=2), **kwargs),
    ]


def normal_samples(start: datetime = START, **kwargs) -> list[EngagementSample]:
    """Organic growth: likes about 15% and comments about 2% of views, irregular intervals."""
    offsets = [0, 70, 190, 260, 420]
    views = [100, 150, 210, 260, 330]
    return [
        make_sample(v, int(v * 0.15), int(v * 0.02), start + timedelta(seconds=o), **kwargs)
        for v, o in zip(views, offsets)
    ]


def make_analysis(
    action: ActionTier,
    bot_score: int,
    at: datetime = START,
    promoter_id: str = "promoter-1",
    campaign_id: str = "campaign-1",
    platforms: tuple = (Platform.TIKTOK,),
) -> BotAnalysis:
    findings = []
    if bot_score:
        findings.append(
            HeuristicFinding(
                category=HeuristicCategory.RATIO,
                code="view_like_ratio",
                description="View/like ratio 40.0 exceeds 10",
                points=bot_score,
            )
        )
    return BotAnalysis(
        analysis_id=uuid.uuid4().hex,
        promoter_id=promoter_id,
        campaign_id=campaign_id,
        evaluated_at=at,
        samples_analyzed=2,
        platforms=list(platforms),
        bot_score=bot_score,
        action=action,
        reason="; ".join(f.render() for f in findings) or "No suspicious patterns detected",
        findings=findings,
    )
