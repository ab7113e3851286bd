"""Exception hierarchy for the jobstats reporter.

Per-job problems (job not found, unauthorized project, job never started)
are logged and counted by the reporter. Everything raised from here is
fatal for the whole run.
"""


class JobStatsError(Exception):
    """Base class for fatal reporter errors."""


class ToolNotFoundError(JobStatsError):
    """Raised when a required external executable cannot be found."""


class CommandError(JobStatsError):
    """Raised when an external command fails in a way that is not 'not found'."""


class RecordParseError(JobStatsError):
    """Raised when a key=value job line or duration string cannot be parsed."""


class StatsRootNotFoundError(JobStatsError):
    """Raised when the jobstats directory tree is absent."""


class MalformedStatsFileError(JobStatsError):
    """Raised when a jobstats file has no data line or too few columns."""


class DatabaseNotFoundError(JobStatsError):
    """Raised when the accounting database file is absent."""
