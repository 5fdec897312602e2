"""A test double for int64 metrics that keeps its data points for inspection."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from nodestatsmon.metrics import Aggregation, Int64MetricRepresentation, MetricError


class FakeInt64Metric:
    """Int64 metric that aggregates measurements in memory and lists them back."""

    def __init__(self, name: str, aggregation, tag_names: Iterable[str]) -> None:
        self.name = name
        self.aggregation = aggregation
        self._allowed_tags = set(tag_names)
        self._metrics: list[Int64MetricRepresentation] = []

    def record(self, tags: Mapping[str, str], measurement: int) -> None:
        """Record a measurement; tags must all be among the allowed tag names."""
        for tag_name in tags:
            if tag_name not in self._allowed_tags:
                raise MetricError(f"tag {tag_name!r} is not allowed")
        labels = dict(tags)
        metric = next((m for m in self._metrics if m.labels == labels), None)
        if metric is None:
            metric = Int64MetricRepresentation(name=self.name, labels=labels, value=0)
            self._metrics.append(metric)
        try:
            aggregation = Aggregation(self.aggregation)
        except ValueError:
            raise MetricError("unsupported aggregation type") from None
        if aggregation is Aggregation.LAST_VALUE:
            metric.value = int(measurement)
        else:
            metric.value += int(measurement)

    def list_metrics(self) -> list[Int64MetricRepresentation]:
        """The current data points."""
        return self._metrics


def new_fake_int64_metric(name: str, aggregation,
                          tag_names: Iterable[str]) -> Optional[FakeInt64Metric]:
    """Create a fake metric; None when name is empty."""
    if not name:
        return None
    return FakeInt64Metric(name, aggregation, tag_names)