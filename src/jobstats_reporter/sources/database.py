"""Project source backed by the local accounting database.

The database is an SQLite file with one ``slurm_accounting`` row per job.
Rows for a project that ended within the trailing 30 days are rewritten
into finishedjobinfo lines, so parsing downstream does not depend on
where a record came from.
"""

import pathlib
import sqlite3
import time
from collections.abc import Callable, Iterator

import structlog

from ..errors import DatabaseNotFoundError
from .base import JobSource
from .keyvalue import format_duration, record_from_line
from .types import JobRecord

logger = structlog.get_logger(__name__)

WINDOW_SECONDS = 30 * 24 * 3600

ACCOUNTING_QUERY = """
SELECT job_id, user, proj_id, jobname, jobstate, nodes, cores, start, end
FROM slurm_accounting
WHERE proj_id = ? AND cluster = ? AND end >= ?
ORDER BY end, job_id
"""

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


def format_accounting_row(row: sqlite3.Row) -> str:
    """Render one accounting row as a finishedjobinfo line.

    Columns that are NULL or empty are left out of the line, like
    finishedjobinfo leaves out fields it does not know.
    """
    end = int(row["end"])
    end_local = time.localtime(end)
    tokens = [
        time.strftime("%Y-%m-%d %H:%M:%S", end_local),
        f"jobid={row['job_id']}",
    ]
    for key, column in (
        ("jobstate", "jobstate"),
        ("username", "user"),
        ("account", "proj_id"),
        ("nodes", "nodes"),
        ("procs", "cores"),
    ):
        value = row[column]
        if value is not None and str(value) != "":
            tokens.append(f"{key}={value}")
    tokens.append(f"end_time={time.strftime(_TIMESTAMP_FORMAT, end_local)}")
    if row["start"] is not None:
        tokens.append(f"runtime={format_duration(end - int(row['start']))}")
    # Last, since job names may contain spaces.
    if row["jobname"]:
        tokens.append(f"jobname={row['jobname']}")
    return " ".join(tokens)


class DatabaseJobSource(JobSource):
    """Lists a project's recent jobs from the accounting database."""

    name = "database"

    def __init__(
        self,
        cluster: str,
        project: str,
        database: str | pathlib.Path,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(cluster)
        self._project = project
        self._database = pathlib.Path(database)
        self._clock = clock

    def check_ready(self) -> None:
        if not self._database.is_file():
            msg = f"Accounting database not found: {self._database}"
            raise DatabaseNotFoundError(msg)

    def keys(self) -> Iterator[str]:
        since = int(self._clock()) - WINDOW_SECONDS
        logger.debug(
            "Querying accounting database",
            database=str(self._database),
            project=self._project,
            since=since,
        )
        connection = sqlite3.connect(f"file:{self._database}?mode=ro", uri=True)
        connection.row_factory = sqlite3.Row
        try:
            rows = connection.execute(
                ACCOUNTING_QUERY,
                (self._project, self.cluster, since),
            ).fetchall()
        finally:
            connection.close()

        logger.info("Found project jobs", project=self._project, count=len(rows))
        for row in rows:
            yield format_accounting_row(row)

    def fetch(self, key: str) -> JobRecord | None:
        return record_from_line(key, self.cluster)
