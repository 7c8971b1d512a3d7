"""Queue routing for per-key analysis tasks."""

from typing import Optional

from promoguard_engine.settings import get_settings
from promoguard_engine.utils.hashing import pair_key, shard_for

ANALYZE_TASK = "promoguard_worker.tasks.analyze_samples"
MAINTENANCE_QUEUE = "maintenance"


def queue_for_key(promoter_id: str, campaign_id: str, shards: Optional[int] = None) -> str:
    """Queue consumed by the single worker that owns this key."""
    shards = shards or get_settings().analysis_shards
    return f"analysis.shard-{shard_for(pair_key(promoter_id, campaign_id), shards)}"


def analysis_queues(shards: Optional[int] = None) -> list[str]:
    shards = shards or get_settings().analysis_shards
    return [f"analysis.shard-{i}" for i in range(max(1, shards))]


def route_task(name, args, kwargs, options, task=None, **kw):
    """Celery router: analysis tasks go to their key's shard queue."""
    if name != ANALYZE_TASK:
        return {"queue": MAINTENANCE_QUEUE}
    if kwargs and "promoter_id" in kwargs:
        promoter_id, campaign_id = kwargs["promoter_id"], kwargs["campaign_id"]
    else:
        promoter_id, campaign_id = args[0], args[1]
    return {"queue": queue_for_key(promoter_id, campaign_id)}
