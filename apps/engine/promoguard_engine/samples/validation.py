"""Engagement sample validation and batch preparation."""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from promoguard_engine.errors import SampleValidationError
from promoguard_engine.schemas.samples import EngagementSample

logger = logging.getLogger(__name__)

_RAW_VALUE_LIMIT = 200


def sanitize_raw(raw: Any) -> dict:
    """JSON-safe copy of a raw sample for the validation-failure audit entry."""
    if isinstance(raw, EngagementSample):
        return raw.model_dump(mode="json", by_alias=True)
    if not isinstance(raw, dict):
        return {"value": repr(raw)[:_RAW_VALUE_LIMIT]}
    cleaned = {}
    for key, value in raw.items():
        if value is None or isinstance(value, (bool, int, float)):
            cleaned[str(key)] = value
        else:
            cleaned[str(key)] = str(value)[:_RAW_VALUE_LIMIT]
    return cleaned


def validate_sample(raw: Any, promoter_id: str, campaign_id: str) -> EngagementSample:
    """Validate one raw sample for the given key.

    Raises:
        SampleValidationError: the sample is malformed or belongs to another
            (promoter, campaign) key.
    """
    if isinstance(raw, EngagementSample):
        sample = raw
    else:
        try:
            sample = EngagementSample.model_validate(raw)
        except ValidationError as exc:
            errors = json.loads(exc.json(include_url=False, include_input=False))
            raise SampleValidationError(
                f"Malformed engagement sample: {exc.error_count()} invalid field(s)",
                raw=sanitize_raw(raw),
                errors=errors,
            ) from exc

    if sample.promoter_id != promoter_id or sample.campaign_id != campaign_id:
        raise SampleValidationError(
            f"Sample belongs to {sample.promoter_id}:{sample.campaign_id}, "
            f"not {promoter_id}:{campaign_id}",
            raw=sanitize_raw(raw),
        )
    return sample


def prepare_batch(
    promoter_id: str,
    campaign_id: str,
    raw_samples: Iterable[Any],
) -> tuple[list[EngagementSample], list[SampleValidationError]]:
    """Validate, deduplicate and order a batch.

    A bad sample never aborts the batch; its error is returned alongside the
    accepted samples. Redelivered samples (same post and ``observed_at``) are
    kept once. The result is sorted by ``observed_at`` then ``post_id``.
    """
    accepted: dict[tuple, EngagementSample] = {}
    rejected: list[SampleValidationError] = []
    for raw in raw_samples:
        try:
            sample = validate_sample(raw, promoter_id, campaign_id)
        except SampleValidationError as exc:
            logger.warning(
                "Rejected engagement sample",
                extra={"promoter_id": promoter_id, "campaign_id": campaign_id, "error": str(exc)},
            )
            rejected.append(exc)
            continue
        accepted.setdefault(sample.identity, sample)

    ordered = sorted(accepted.values(), key=lambda s: (s.observed_at, s.post_id))
    return ordered, rejected


def select_window(
    samples: list[EngagementSample],
    lookback_seconds: int,
    anchor: Optional[datetime] = None,
) -> list[EngagementSample]:
    """Samples observed at most ``lookback_seconds`` before ``anchor``.

    ``anchor`` defaults to the latest sample. Input must be ordered.
    """
    if not samples:
        return []
    cutoff = (anchor or samples[-1].observed_at) - timedelta(seconds=lookback_seconds)
    return [s for s in samples if s.observed_at >= cutoff]
