"""Per-job processing loop and report output.

Jobs are handled one at a time in the order the source yields them:
look up the record, resolve nodes and jobstats files, derive flags, and
write one tab-separated row. Run counters and the one-shot header state
live on :class:`ReporterContext` for the duration of the run.
"""

import grp
import os
import sys
from dataclasses import dataclass
from typing import NamedTuple, TextIO

import structlog

from . import nodes
from .config import ReporterConfig, Source
from .flags import AnalysisTool, join_flags, local_flags
from .sources import JobRecord, JobSource

logger = structlog.get_logger(__name__)

PLACEHOLDER = "."
NOT_RUN_FLAG = "not_run"

HEADER_FIELDS = (
    "jobid",
    "cluster",
    "jobstate",
    "user",
    "project",
    "jobname",
    "endtime",
    "runtime",
    "flags",
    "booked",
    "cores",
    "node",
    "jobstats",
)
TIMELIMIT_FIELD = "timelimit_minutes"


def _field(value: object) -> str:
    if value is None or value == "":
        return PLACEHOLDER
    return str(value)


class ReportRow(NamedTuple):
    """One output row. Built once per job and not changed after it is written."""

    jobid: str
    cluster: str
    jobstate: str
    user: str
    project: str
    jobname: str
    endtime: str
    runtime: str
    flags: str
    booked: str
    cores: str
    node: str
    jobstats: str
    timelimit_minutes: str | None = None

    def fields(self) -> list[str]:
        """Row fields in output order; the time limit only when present."""
        values = list(self[: len(HEADER_FIELDS)])
        if self.timelimit_minutes is not None:
            values.append(self.timelimit_minutes)
        return values

    def format(self) -> str:
        """Tab-separated output line."""
        return "\t".join(self.fields())


def header_line(with_timelimit: bool) -> str:
    """Tab-separated column names."""
    names = list(HEADER_FIELDS)
    if with_timelimit:
        names.append(TIMELIMIT_FIELD)
    return "\t".join(names)


@dataclass
class RunCounters:
    """Totals reported at the end of a run."""

    jobs: int = 0
    not_run: int = 0
    no_stats_files: int = 0
    unauthorized: int = 0

    def summary(self) -> str:
        """One-line totals for the diagnostic stream."""
        return (
            f"# jobs: {self.jobs}  not run: {self.not_run}  "
            f"without jobstats files: {self.no_stats_files}  "
            f"unauthorized: {self.unauthorized}"
        )


def caller_projects(staff_group: str) -> set[str] | None:
    """Projects the calling user may report on.

    Returns:
        The caller's group names, or None when the caller is root or a
        member of ``staff_group`` and may see every project.
    """
    if os.geteuid() == 0:
        return None
    names = set()
    for gid in os.getgroups():
        try:
            names.add(grp.getgrgid(gid).gr_name)
        except KeyError:
            continue
    if staff_group in names:
        return None
    return names


class ReporterContext:
    """State and collaborators for one reporter run."""

    def __init__(
        self,
        config: ReporterConfig,
        source: JobSource,
        analysis: AnalysisTool,
        allowed_projects: set[str] | None = None,
        out: TextIO | None = None,
        diag: TextIO | None = None,
    ):
        """Initialize the run context.

        Args:
            config: Run configuration.
            source: Job source chosen for this run.
            analysis: External analysis tool wrapper.
            allowed_projects: Projects the caller may see; None for all.
            out: Stream for report rows (default: stdout).
            diag: Stream for the final summary (default: stderr).
        """
        self.config = config
        self.source = source
        self.analysis = analysis
        self.allowed_projects = allowed_projects
        self.out = out or sys.stdout
        self.diag = diag or sys.stderr
        self.counters = RunCounters()
        self.header_emitted = False

    @property
    def with_timelimit(self) -> bool:
        return self.config.source == Source.RUNNING

    def check_ready(self) -> None:
        """Fail before processing any job if a prerequisite is missing."""
        self.source.check_ready()
        nodes.check_stats_root(self.config.stats_root, self.config.hard_prefix)

    def run(self) -> RunCounters:
        """Process every job from the source and write the summary."""
        try:
            for key in self.source.keys():
                self.process(key)
        finally:
            print(self.counters.summary(), file=self.diag)
        return self.counters

    def process(self, key: str) -> ReportRow | None:
        """Handle one job; returns the row written, if any."""
        self.counters.jobs += 1
        record = self.source.fetch(key)
        if record is None:
            logger.warning("Job not found", jobid=key, source=self.source.name)
            self.counters.not_run += 1
            return None

        if not self._authorized(record):
            logger.warning(
                "Not a member of the job's project, skipping",
                jobid=record.jobid,
                project=record.project,
            )
            self.counters.unauthorized += 1
            return None

        node_spec = self.config.node_override or record.nodes
        if not node_spec:
            logger.info("Job did not run", jobid=record.jobid, jobstate=record.jobstate.value)
            self.counters.not_run += 1
            row = self._not_run_row(record)
        else:
            row = self._usage_row(record, node_spec)

        self.emit(row)
        return row

    def emit(self, row: ReportRow) -> None:
        """Write a row, preceded by the header the first time if requested."""
        if self.config.quiet:
            return
        if self.config.header and not self.header_emitted:
            print(header_line(self.with_timelimit), file=self.out)
            self.header_emitted = True
        print(row.format(), file=self.out)

    def _authorized(self, record: JobRecord) -> bool:
        if self.allowed_projects is None:
            return True
        return record.project in self.allowed_projects

    def _timelimit(self, record: JobRecord) -> str | None:
        if not self.with_timelimit:
            return None
        return _field(record.timelimit_minutes)

    def _local_flags(
        self,
        node_list: list[str],
        refs: list[nodes.StatsFileRef],
    ) -> list[str]:
        # A hard-prefix file is shared by all nodes, so node use is unknown.
        if self.config.hard_prefix:
            return []
        return local_flags(len(node_list), len(refs), self.config.verbose)

    def _not_run_row(self, record: JobRecord) -> ReportRow:
        return ReportRow(
            jobid=record.jobid,
            cluster=record.cluster,
            jobstate=record.jobstate.value,
            user=_field(record.user),
            project=_field(record.project),
            jobname=_field(record.jobname),
            endtime=PLACEHOLDER,
            runtime=_field(record.runtime),
            flags=NOT_RUN_FLAG,
            booked=_field(record.booked_cores),
            cores=PLACEHOLDER,
            node=PLACEHOLDER,
            jobstats=PLACEHOLDER,
            timelimit_minutes=self._timelimit(record),
        )

    def _usage_row(self, record: JobRecord, node_spec: str) -> ReportRow:
        node_list = nodes.expand_nodes(node_spec)
        refs = nodes.find_stats_files(
            node_list,
            record.jobid,
            self.config.stats_root,
            self.config.hard_prefix,
        )
        node_list = nodes.reorder_nodes(node_list, refs, self.config.hard_prefix)

        # Every file is read so a malformed one stops the run.
        core_counts = [nodes.count_cores(ref.path) for ref in refs]
        if not refs:
            logger.warning("No jobstats files found", jobid=record.jobid, nodes=node_spec)
            self.counters.no_stats_files += 1

        row = ReportRow(
            jobid=record.jobid,
            cluster=record.cluster,
            jobstate=record.jobstate.value,
            user=_field(record.user),
            project=_field(record.project),
            jobname=_field(record.jobname),
            endtime=_field(record.end_time),
            runtime=_field(record.runtime),
            flags=join_flags(self._local_flags(node_list, refs)),
            booked=_field(record.booked_cores),
            cores=_field(core_counts[0] if core_counts else None),
            node=_field(",".join(node_list)),
            jobstats=_field(",".join(str(ref.path) for ref in refs)),
            timelimit_minutes=self._timelimit(record),
        )

        if refs:
            tool_flags = self.analysis.analyze(row.fields())
            if tool_flags:
                row = row._replace(flags=tool_flags)
        return row
