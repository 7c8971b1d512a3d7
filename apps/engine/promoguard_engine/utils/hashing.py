"""Key helpers shared by the sharded stores and executors."""

import hashlib


def pair_key(promoter_id: str, campaign_id: str) -> str:
    """Canonical ``promoterId:campaignId`` key."""
    return f"{promoter_id}:{campaign_id}"


def shard_for(key: str, shards: int) -> int:
    """Stable shard index for a key.

    Uses SHA-1 rather than ``hash()`` so the mapping survives interpreter
    restarts and is identical across worker processes.
    """
    if shards <= 1:
        return 0
    digest = hashlib.sha1(key.encode()).hexdigest()
    return int(digest, 16) % shards
