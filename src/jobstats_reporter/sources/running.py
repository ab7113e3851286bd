"""Running-job source backed by squeue."""

from collections.abc import Iterator, Sequence

import structlog

from .. import command
from .base import JobSource
from .keyvalue import parse_key_value_line, record_from_fields, timelimit_to_minutes
from .types import JobRecord

logger = structlog.get_logger(__name__)

# squeue output format producing a finishedjobinfo-shaped key=value line.
# end_time is the scheduler's expected end, so it moves as the job runs.
SQUEUE_FORMAT = (
    "jobid=%i jobstate=%T username=%u account=%a nodes=%N procs=%C "
    "timelimit=%l runtime=%M end_time=%e jobname=%j"
)


class RunningJobSource(JobSource):
    """Looks up live jobs with ``squeue -h -M <cluster> -j <jobid>``."""

    name = "running"

    def __init__(
        self,
        cluster: str,
        job_ids: Sequence[str],
        tool: str,
        runner: command.CommandRunner = command.run_command,
    ):
        super().__init__(cluster)
        self._job_ids = list(job_ids)
        self._tool = tool
        self._run = runner

    def check_ready(self) -> None:
        self._tool = command.require_tool(self._tool)

    def keys(self) -> Iterator[str]:
        yield from self._job_ids

    def fetch(self, key: str) -> JobRecord | None:
        result = self._run(
            [self._tool, "-h", "-M", self.cluster, "-j", key, "-o", SQUEUE_FORMAT],
        )
        # squeue exits non-zero for ids it no longer knows about.
        if result.returncode != 0:
            logger.debug(
                "squeue failed",
                jobid=key,
                returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
            return None

        # With -M the first line is a "CLUSTER: name" banner.
        for line in result.stdout.splitlines():
            if "jobid=" not in line:
                continue
            fields = parse_key_value_line(line)
            # squeue shows unassigned nodes as an empty field.
            if not fields.get("nodes"):
                fields.pop("nodes", None)
            timelimit = fields.get("timelimit")
            return record_from_fields(
                fields,
                self.cluster,
                timelimit_minutes=(
                    timelimit_to_minutes(timelimit) if timelimit else None
                ),
            )
        return None
