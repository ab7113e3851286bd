"""Job sources for the reporter.

Each source module provides one :class:`JobSource` implementation; the
active one is chosen once per run by :func:`build_source`.
"""

import sys
from typing import TextIO

from .. import command
from ..config import ReporterConfig, Source
from .base import JobSource
from .database import DatabaseJobSource
from .finished import FinishedJobSource
from .running import RunningJobSource
from .stdin import StdinJobSource
from .types import JobRecord, JobState

__all__ = [
    "DatabaseJobSource",
    "FinishedJobSource",
    "JobRecord",
    "JobSource",
    "JobState",
    "RunningJobSource",
    "StdinJobSource",
    "build_source",
]


def build_source(
    config: ReporterConfig,
    stream: TextIO | None = None,
    runner: command.CommandRunner = command.run_command,
) -> JobSource:
    """Construct the job source selected by ``config``."""
    if config.source == Source.RUNNING:
        return RunningJobSource(
            cluster=config.cluster,
            job_ids=config.job_ids,
            tool=config.squeue,
            runner=runner,
        )
    if config.source == Source.DATABASE:
        return DatabaseJobSource(
            cluster=config.cluster,
            project=config.project or "",
            database=config.database_path,
        )
    if config.source == Source.STDIN:
        return StdinJobSource(cluster=config.cluster, stream=stream or sys.stdin)
    return FinishedJobSource(
        cluster=config.cluster,
        job_ids=config.job_ids,
        tool=config.finishedjobinfo,
        runner=runner,
    )
