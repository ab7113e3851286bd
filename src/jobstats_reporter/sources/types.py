"""Normalized job record types.

Every job source produces a :class:`JobRecord`. Fields the underlying tool
did not report stay ``None``; in particular a missing ``nodes`` means the
job never started.
"""

import enum

from pydantic import BaseModel, ConfigDict, field_validator


class JobState(str, enum.Enum):
    """Terminal or live job state as reported by the scheduler tools."""

    COMPLETED = "COMPLETED"
    RUNNING = "RUNNING"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str | None) -> "JobState":
        """Map a tool state string onto the enum.

        "CANCELLED+" and "CANCELLED by 1234" become CANCELLED; anything not
        in the enum becomes UNKNOWN.
        """
        if not value:
            return cls.UNKNOWN
        token = value.strip().split()[0] if value.strip() else ""
        token = token.rstrip("+").upper()
        try:
            return cls(token)
        except ValueError:
            return cls.UNKNOWN


class JobRecord(BaseModel):
    """One job as seen by a job source.

    Immutable once parsed. ``booked_cores`` is the number of cores the job
    asked for; ``timelimit_minutes`` is only set by the running-job source.
    """

    model_config = ConfigDict(frozen=True)

    jobid: str
    cluster: str
    jobstate: JobState = JobState.UNKNOWN
    user: str | None = None
    project: str | None = None
    jobname: str | None = None
    end_time: str | None = None
    runtime: str | None = None
    booked_cores: int | None = None
    nodes: str | None = None
    timelimit_minutes: int | None = None

    @field_validator("jobstate", mode="before")
    @classmethod
    def _normalize_state(cls, value):
        if isinstance(value, JobState):
            return value
        return JobState.parse(value)

    @field_validator("booked_cores", mode="before")
    @classmethod
    def _parse_cores(cls, value):
        # Tools print "N/A" or an empty string for unknown counts.
        if value is None or isinstance(value, int):
            return value
        text = str(value).strip()
        return int(text) if text.isdigit() else None

    @property
    def has_run(self) -> bool:
        """Whether the job was ever given nodes."""
        return bool(self.nodes)
