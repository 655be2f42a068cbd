from typing import Dict, Iterable

from .collector import QueueCounts

# metric name -> database label -> queue name -> value
Aggregate = Dict[str, Dict[str, Dict[str, int]]]


def merge_queue_counts(aggregate: Aggregate, db_label: str, records: Iterable[QueueCounts]) -> Aggregate:
    """
    Fold one database's queue counts into the aggregate.

    The first value seen for a (metric, db, queue) key wins, so a queue listed twice is
    counted once. Zero is a value; failed commands (None) are skipped.
    """
    for record in records:
        for metric_name, value in record.items():
            if value is None:
                continue
            per_db = aggregate.setdefault(metric_name, {}).setdefault(db_label, {})
            per_db.setdefault(record.queue, value)
    return aggregate
