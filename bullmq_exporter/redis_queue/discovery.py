import logging
from typing import List, Optional, Sequence

from redis.asyncio import Redis

from .redis_keys import QueueKeys

logger = logging.getLogger("bullmq_exporter")


async def discover_queues(
    redis: Redis,
    keys: QueueKeys,
    *,
    queues: Optional[Sequence[str]] = None,
    scan_count: Optional[int] = None,
) -> List[str]:
    """
    Queue names of the database the client is bound to.

    Explicit queues are used as is (no round trip). Otherwise the keyspace is walked with
    SCAN MATCH "<prefix>:*:meta" until the cursor returns to 0.

    SCAN may return a key more than once when the keyspace changes under it. Duplicates are
    dropped here, first seen order is kept. Keys that do not parse as "<prefix>:<queue>:meta"
    are logged and skipped. Store errors propagate to the caller.
    """
    if queues is not None:
        meta_keys = [keys.meta_key(name) for name in queues]
    else:
        meta_keys = []
        cursor = 0
        while True:
            cursor, page = await redis.scan(cursor=cursor, match=keys.meta_pattern, count=scan_count)
            meta_keys.extend(page)
            if cursor == 0:
                break

    names: List[str] = []
    seen = set()
    for meta_key in meta_keys:
        try:
            name = keys.queue_name(meta_key)
        except ValueError:
            logger.warning("Key does not look like a queue meta key, skipped | key=%s", meta_key)
            continue
        if name in seen:
            continue
        seen.add(name)
        names.append(name)

    logger.debug("Discovered %d queue(s) | pattern=%s | explicit=%s", len(names), keys.meta_pattern, queues is not None)
    return names
