"""Configuration and logging setup for the jobstats reporter.

Run options come from the command line; site defaults (tool locations,
directory layout, staff group) may be supplied in a JSON file named by
``JOBSTATS_CONFIG_PATH`` and are overridden by anything given on the
command line.
"""

import enum
import json
import logging
import os
import pathlib
import sys
from typing import Any

import pydantic
import structlog

CONFIG_ENV_VAR = "JOBSTATS_CONFIG_PATH"
CLUSTER_ENV_VAR = "SNIC_RESOURCE"

DEFAULT_CLUSTER = "rackham"
DEFAULT_STATS_PREFIX = "/sw/share/slurm"
DEFAULT_STATS_KIND = "uppmax_jobstats"
DEFAULT_FINISHEDJOBINFO = "/sw/uppmax/bin/finishedjobinfo"
DEFAULT_SQUEUE = "squeue"
DEFAULT_PLOT_TOOL = "jobstats_plot"
DEFAULT_DATABASE = "{prefix}/{cluster}/accounting/slurm_accounting.db"
DEFAULT_CPU_FREE = 3.0


class Source(str, enum.Enum):
    """Where job records come from. Chosen once per run."""

    FINISHED = "finished"
    RUNNING = "running"
    DATABASE = "database"
    STDIN = "stdin"


class ReporterConfig(pydantic.BaseModel):
    """Configuration for one reporter run."""

    model_config = pydantic.ConfigDict(frozen=True)

    source: Source = pydantic.Field(
        Source.FINISHED,
        description="Job record source",
    )
    job_ids: tuple[str, ...] = pydantic.Field(
        (),
        description="Explicit job ids (finished and running sources)",
    )
    project: str | None = pydantic.Field(
        None,
        description="Project to report on from the accounting database",
    )
    cluster: str = pydantic.Field(
        default_factory=lambda: os.environ.get(CLUSTER_ENV_VAR, DEFAULT_CLUSTER),
        description="Cluster name",
    )
    node_override: str | None = pydantic.Field(
        None,
        description="Node range replacing the node list of a single job",
    )

    memory: bool = pydantic.Field(False, description="Include memory flags")
    verbose: bool = pydantic.Field(False, description="Prose flags instead of tokens")
    plot: bool = pydantic.Field(False, description="Produce plots")
    big_plot: bool = pydantic.Field(False, description="Produce large plots")
    quiet: bool = pydantic.Field(False, description="Suppress report rows")
    header: bool = pydantic.Field(False, description="Print a header line")
    cpu_free: float = pydantic.Field(
        DEFAULT_CPU_FREE,
        description="Busy percentage below which a core counts as free",
        ge=0,
        le=100,
    )

    stats_prefix: str = pydantic.Field(
        DEFAULT_STATS_PREFIX,
        description="Root of the per-cluster jobstats tree",
    )
    stats_kind: str = pydantic.Field(
        DEFAULT_STATS_KIND,
        description="Directory below <prefix>/<cluster> holding per-node files",
    )
    hard_prefix: str | None = pydantic.Field(
        None,
        description="Directory holding <jobid> files directly, ignoring nodes",
    )

    finishedjobinfo: str = pydantic.Field(
        DEFAULT_FINISHEDJOBINFO,
        description="Finished-job query tool",
    )
    squeue: str = pydantic.Field(DEFAULT_SQUEUE, description="Running-job query tool")
    plot_tool: str = pydantic.Field(
        DEFAULT_PLOT_TOOL,
        description="External analysis and plotting tool",
    )
    database: str = pydantic.Field(
        DEFAULT_DATABASE,
        description="Accounting database path, may use {prefix} and {cluster}",
    )
    staff_group: str = pydantic.Field(
        "staff",
        description="Members of this group may report on any project",
    )

    metrics_file: str | None = pydantic.Field(
        None,
        description="Write run counters as a Prometheus textfile here",
    )
    log_level: str = pydantic.Field("INFO", description="Logging level")

    @pydantic.model_validator(mode="after")
    def _check_job_selection(self) -> "ReporterConfig":
        if self.source == Source.DATABASE:
            if not self.project:
                msg = "the database source needs a project"
                raise ValueError(msg)
            if self.job_ids:
                msg = "job ids cannot be combined with a project"
                raise ValueError(msg)
        elif self.source == Source.STDIN:
            if self.job_ids:
                msg = "job ids cannot be combined with reading from stdin"
                raise ValueError(msg)
        elif not self.job_ids:
            msg = "no job ids given"
            raise ValueError(msg)
        if self.node_override and len(self.job_ids) != 1:
            msg = "a node list can only be given for a single job id"
            raise ValueError(msg)
        return self

    @property
    def stats_root(self) -> pathlib.Path:
        """Directory holding one subdirectory per node for this cluster."""
        return pathlib.Path(self.stats_prefix) / self.cluster / self.stats_kind

    @property
    def database_path(self) -> pathlib.Path:
        """Accounting database for this cluster."""
        return pathlib.Path(
            self.database.format(prefix=self.stats_prefix, cluster=self.cluster),
        )


def configure_logging(log_level_name: str) -> None:
    """Configure structlog for logfmt output on standard error."""
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.EventRenamer("msg"),
            structlog.processors.format_exc_info,
            structlog.processors.LogfmtRenderer(
                key_order=("timestamp", "level", "msg"),
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def load_site_defaults(config_path: str | None = None) -> dict[str, Any]:
    """Load site defaults from a JSON file.

    Uses ``config_path`` or the ``JOBSTATS_CONFIG_PATH`` environment
    variable. Returns an empty dict when neither names a file.

    Raises:
        FileNotFoundError: If a file is named but does not exist.
    """
    resolved_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if not resolved_path:
        return {}

    path = pathlib.Path(resolved_path)
    if not path.exists():
        msg = f"Configuration file not found: {resolved_path}"
        raise FileNotFoundError(msg)

    with path.open("r") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        msg = f"Configuration file must hold a JSON object: {resolved_path}"
        raise ValueError(msg)
    return data


def build_config(
    options: dict[str, Any],
    site_defaults: dict[str, Any] | None = None,
) -> ReporterConfig:
    """Merge site defaults with command-line options into a ReporterConfig.

    Options whose value is None were not given and leave the default alone.
    """
    data = dict(site_defaults or {})
    data.update({key: value for key, value in options.items() if value is not None})
    return ReporterConfig(**data)
