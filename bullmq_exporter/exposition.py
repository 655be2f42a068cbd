from typing import TYPE_CHECKING, List, Sequence

if TYPE_CHECKING:
    from bullmq_exporter.redis_queue.aggregator import Aggregate
    from bullmq_exporter.redis_queue.queue_metrics import QueueMetric


def escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def render_exposition(
    aggregate: "Aggregate",
    metrics: Sequence["QueueMetric"],
    *,
    emit_zero_samples: bool = False,
) -> str:
    """
    Render the aggregate in Prometheus text format.

    Metrics follow the order of `metrics`, samples follow database then queue order of the
    aggregate. A metric without rendered samples gets no HELP/TYPE header. Every block is
    followed by one blank line.

        # HELP bull_active_total Number of jobs in processing
        # TYPE bull_active_total gauge
        bull_active_total{queue="orders",db="default"} 2
    """
    output: List[str] = []

    for metric in metrics:
        lines = []
        for db_label, queues in aggregate.get(metric.name, {}).items():
            for queue, value in queues.items():
                if value == 0 and not emit_zero_samples:
                    continue
                lines.append(
                    f'{metric.name}{{queue="{escape_label_value(queue)}",'
                    f'db="{escape_label_value(db_label)}"}} {value}\n'
                )

        if not lines:
            continue

        output.append(f"# HELP {metric.name} {escape_help(metric.description)}\n")
        output.append(f"# TYPE {metric.name} gauge\n")
        output.extend(lines)
        output.append("\n")

    return "".join(output)
