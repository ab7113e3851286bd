"""Prometheus textfile export of run counters.

Written for the node-exporter textfile collector so that periodic
reporter runs (e.g. from cron) can be graphed.
"""

from collections.abc import Iterator

import structlog
from prometheus_client import write_to_textfile
from prometheus_client.core import CollectorRegistry, GaugeMetricFamily
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector

from .report import RunCounters

logger = structlog.get_logger(__name__)


class RunCountersCollector(Collector):
    """Exposes the counters of one finished run as gauges."""

    def __init__(self, counters: RunCounters, cluster: str, source: str):
        self._counters = counters
        self._cluster = cluster
        self._source = source

    def collect(self) -> Iterator[Metric]:
        labels = ["cluster", "source"]
        for name, value, description in (
            ("jobs", self._counters.jobs, "jobs processed"),
            ("not_run", self._counters.not_run, "jobs not found or never started"),
            (
                "no_stats_files",
                self._counters.no_stats_files,
                "jobs without jobstats files",
            ),
            (
                "unauthorized",
                self._counters.unauthorized,
                "jobs skipped for lack of project membership",
            ),
        ):
            gauge = GaugeMetricFamily(
                f"jobstats_report_{name}",
                f"Number of {description} in the last report run",
                labels=labels,
            )
            gauge.add_metric([self._cluster, self._source], value)
            yield gauge


def write_metrics_file(
    path: str,
    counters: RunCounters,
    cluster: str,
    source: str,
) -> None:
    """Write the run counters to ``path`` in Prometheus text format."""
    registry = CollectorRegistry()
    registry.register(RunCountersCollector(counters, cluster, source))
    write_to_textfile(path, registry)
    logger.info("Wrote metrics file", path=path)
