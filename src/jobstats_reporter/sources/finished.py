"""Finished-job source backed by the finishedjobinfo accounting tool."""

from collections.abc import Iterator, Sequence

import structlog

from .. import command
from .base import JobSource
from .keyvalue import record_from_line
from .types import JobRecord

logger = structlog.get_logger(__name__)


class FinishedJobSource(JobSource):
    """Looks up terminated jobs with ``finishedjobinfo -q -j <jobid>``.

    The tool prints one key=value line per job, or nothing when the job is
    unknown.
    """

    name = "finished"

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
        result = self._run([self._tool, "-M", self.cluster, "-q", "-j", key])
        if result.returncode != 0:
            logger.debug(
                "finishedjobinfo failed",
                jobid=key,
                returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
            return None

        for line in result.stdout.splitlines():
            if "jobid=" in line:
                return record_from_line(line, self.cluster)
        return None
