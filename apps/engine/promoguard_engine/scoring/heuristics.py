"""Bot-pattern heuristics.

Each heuristic is a pure function of an ordered sample list and the scoring
config, returning its metrics variant and the findings it triggered. Findings
only ever add points.
"""

import statistics
from collections import defaultdict
from typing import Iterable

from promoguard_engine.schemas.analysis import (
    HeuristicCategory,
    HeuristicFinding,
    PlatformMetrics,
    PlatformRate,
    RatioMetrics,
    SpikeMetrics,
    TimingMetrics,
    VelocityMetrics,
)
from promoguard_engine.schemas.samples import EngagementSample, Platform
from promoguard_engine.scoring.config import ScoringConfig

Findings = list[HeuristicFinding]


def group_by_post(samples: Iterable[EngagementSample]) -> dict[str, list[EngagementSample]]:
    """Per-post sample series, each in observation order."""
    posts: dict[str, list[EngagementSample]] = defaultdict(list)
    for sample in samples:
        posts[sample.post_id].append(sample)
    for series in posts.values():
        series.sort(key=lambda s: s.observed_at)
    return dict(sorted(posts.items()))


def latest_per_post(posts: dict[str, list[EngagementSample]]) -> list[EngagementSample]:
    return [series[-1] for series in posts.values() if series]


def _consecutive_pairs(posts: dict[str, list[EngagementSample]]):
    for series in posts.values():
        for prev, curr in zip(series, series[1:]):
            yield prev, curr, (curr.observed_at - prev.observed_at).total_seconds()


def _ratio(numerator: int, denominator: int) -> float:
    # A zero denominator counts every view as unengaged.
    if denominator == 0:
        return float(numerator)
    return numerator / denominator


def ratio_heuristic(posts: dict[str, list[EngagementSample]], config: ScoringConfig) -> tuple[RatioMetrics, Findings]:
    latest = latest_per_post(posts)
    views = sum(s.view_count for s in latest)
    likes = sum(s.like_count for s in latest)
    comments = sum(s.comment_count for s in latest)
    shares = sum(s.share_count for s in latest)

    view_like = round(_ratio(views, likes), 4)
    view_comment = round(_ratio(views, comments), 4)
    zero_engagement = views > 0 and likes == 0 and comments == 0
    metrics = RatioMetrics(
        total_views=views,
        total_likes=likes,
        total_comments=comments,
        total_shares=shares,
        view_like_ratio=view_like,
        view_comment_ratio=view_comment,
        zero_engagement=zero_engagement,
    )

    findings: Findings = []
    if views == 0:
        return metrics, findings
    if zero_engagement:
        findings.append(
            HeuristicFinding(
                category=HeuristicCategory.RATIO,
                code="zero_engagement",
                description=f"Zero engagement on {views} views",
                points=config.zero_engagement_penalty,
            )
        )
        return metrics, findings
    if view_like > config.view_like_ratio:
        findings.append(
            HeuristicFinding(
                category=HeuristicCategory.RATIO,
                code="view_like_ratio",
                description=f"View/like ratio {view_like:.1f} exceeds {config.view_like_ratio:g}",
                points=config.view_like_penalty,
            )
        )
    if view_comment > config.view_comment_ratio:
        findings.append(
            HeuristicFinding(
                category=HeuristicCategory.RATIO,
                code="view_comment_ratio",
                description=f"View/comment ratio {view_comment:.1f} exceeds {config.view_comment_ratio:g}",
                points=config.view_comment_penalty,
            )
        )
    return metrics, findings


def spike_heuristic(posts: dict[str, list[EngagementSample]], config: ScoringConfig) -> tuple[SpikeMetrics, Findings]:
    """Largest view increase between consecutive samples of a post within the spike window."""
    peak = None
    compared = 0
    for prev, curr, elapsed in _consecutive_pairs(posts):
        if elapsed <= 0 or elapsed > config.spike_time_window_seconds or prev.view_count == 0:
            continue
        compared += 1
        pct = (curr.view_count - prev.view_count) / prev.view_count * 100
        if peak is None or pct > peak:
            peak = pct

    detected = peak is not None and peak > config.spike_percentage
    metrics = SpikeMetrics(
        spike_detected=detected,
        spike_percentage=round(peak, 2) if peak is not None else None,
        pairs_compared=compared,
    )
    if not detected:
        return metrics, []
    points = min(config.spike_max_penalty, round(config.spike_base_penalty * peak / config.spike_percentage))
    window_minutes = config.spike_time_window_seconds / 60
    return metrics, [
        HeuristicFinding(
            category=HeuristicCategory.SPIKE,
            code="view_spike",
            description=f"View spike of {peak:.0f}% within {window_minutes:g} minutes",
            points=points,
        )
    ]


def timing_heuristic(posts: dict[str, list[EngagementSample]], config: ScoringConfig) -> tuple[TimingMetrics, Findings]:
    """Mechanically regular sampling intervals. Contributes at most once."""
    total_intervals = 0
    best_cv = None
    best_mean = None
    for series in posts.values():
        intervals = [
            (curr.observed_at - prev.observed_at).total_seconds()
            for prev, curr in zip(series, series[1:])
        ]
        intervals = [i for i in intervals if i > 0]
        total_intervals += len(intervals)
        if len(intervals) < config.timing_min_intervals:
            continue
        mean = statistics.fmean(intervals)
        cv = statistics.pstdev(intervals) / mean
        if best_cv is None or cv < best_cv:
            best_cv, best_mean = cv, mean

    regular = best_cv is not None and best_cv < config.timing_cv_threshold
    metrics = TimingMetrics(
        intervals=total_intervals,
        mean_interval_seconds=round(best_mean, 3) if best_mean is not None else None,
        coefficient_of_variation=round(best_cv, 4) if best_cv is not None else None,
        regular=regular,
    )
    if not regular:
        return metrics, []
    return metrics, [
        HeuristicFinding(
            category=HeuristicCategory.TIMING,
            code="regular_timing",
            description=f"Suspiciously regular engagement timing (cv {best_cv:.3f})",
            points=config.timing_penalty,
        )
    ]


def velocity_heuristic(posts: dict[str, list[EngagementSample]], config: ScoringConfig) -> tuple[VelocityMetrics, Findings]:
    max_view = max_like = max_comment = 0.0
    total_views = 0
    total_seconds = 0.0
    low_engagement = 0
    negative = 0

    for prev, curr, elapsed in _consecutive_pairs(posts):
        view_diff = curr.view_count - prev.view_count
        if elapsed <= 0 or view_diff <= 0:
            continue
        like_diff = curr.like_count - prev.like_count
        comment_diff = curr.comment_count - prev.comment_count
        view_velocity = view_diff / elapsed
        like_velocity = like_diff / elapsed
        comment_velocity = comment_diff / elapsed

        max_view = max(max_view, view_velocity)
        max_like = max(max_like, like_velocity)
        max_comment = max(max_comment, comment_velocity)
        total_views += view_diff
        total_seconds += elapsed

        if (
            view_velocity > config.velocity_view_rate
            and like_velocity < config.velocity_like_rate
            and comment_velocity < config.velocity_comment_rate
        ):
            low_engagement += 1
        if like_diff < 0 or comment_diff < 0:
            negative += 1

    metrics = VelocityMetrics(
        max_view_velocity=round(max_view, 4),
        max_like_velocity=round(max_like, 4),
        max_comment_velocity=round(max_comment, 4),
        avg_views_per_minute=round(total_views / total_seconds * 60, 4) if total_seconds else 0.0,
        low_engagement_pairs=low_engagement,
        negative_delta_pairs=negative,
    )

    findings: Findings = []
    budget = config.velocity_cap
    low_points = min(budget, low_engagement * config.velocity_pair_penalty)
    if low_points:
        findings.append(
            HeuristicFinding(
                category=HeuristicCategory.VELOCITY,
                code="view_velocity",
                description=(
                    f"High view velocity ({max_view:.1f}/s) without matching engagement "
                    f"in {low_engagement} interval(s)"
                ),
                points=low_points,
            )
        )
        budget -= low_points
    negative_points = min(budget, negative * config.negative_delta_penalty)
    if negative_points:
        findings.append(
            HeuristicFinding(
                category=HeuristicCategory.VELOCITY,
                code="negative_engagement",
                description=f"Engagement dropped while views grew in {negative} interval(s)",
                points=negative_points,
            )
        )
    return metrics, findings


def platform_heuristic(posts: dict[str, list[EngagementSample]], config: ScoringConfig) -> tuple[PlatformMetrics, Findings]:
    by_platform: dict[Platform, list[EngagementSample]] = defaultdict(list)
    for sample in latest_per_post(posts):
        by_platform[sample.platform].append(sample)

    rates: list[PlatformRate] = []
    findings: Findings = []
    for platform in Platform:
        latest = by_platform.get(platform)
        if not latest:
            continue
        count = len(latest)
        views = sum(s.view_count for s in latest)
        likes = sum(s.like_count for s in latest)
        comments = sum(s.comment_count for s in latest)
        avg_views = views / count
        like_rate = likes / views if views else 0.0
        comment_rate = comments / views if views else 0.0

        baseline = config.platform_baselines.get(platform)
        shortfall = False
        if baseline is not None and avg_views > baseline.min_avg_views:
            if baseline.min_like_rate is not None and like_rate < baseline.min_like_rate:
                shortfall = True
                findings.append(
                    HeuristicFinding(
                        category=HeuristicCategory.PLATFORM,
                        code=f"{platform.value}_like_rate",
                        description=(
                            f"Low {platform.value} like rate {like_rate:.2%} "
                            f"(expected {baseline.min_like_rate:.1%})"
                        ),
                        points=baseline.penalty,
                    )
                )
            elif baseline.min_comment_rate is not None and comment_rate < baseline.min_comment_rate:
                shortfall = True
                findings.append(
                    HeuristicFinding(
                        category=HeuristicCategory.PLATFORM,
                        code=f"{platform.value}_comment_rate",
                        description=(
                            f"Low {platform.value} comment rate {comment_rate:.2%} "
                            f"(expected {baseline.min_comment_rate:.1%})"
                        ),
                        points=baseline.penalty,
                    )
                )

        rates.append(
            PlatformRate(
                platform=platform,
                samples=count,
                avg_views=round(avg_views, 2),
                avg_likes=round(likes / count, 2),
                avg_comments=round(comments / count, 2),
                like_rate=round(like_rate, 6),
                comment_rate=round(comment_rate, 6),
                shortfall=shortfall,
            )
        )
    return PlatformMetrics(rates=rates), findings
