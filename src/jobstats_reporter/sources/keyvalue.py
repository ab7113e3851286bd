"""The key=value line format shared by all job sources.

A job line is whitespace-separated tokens. Tokens of the form
``key=value`` (split on the first ``=``) are fields; other tokens, such
as the leading date and time finishedjobinfo prints, are ignored::

    2024-03-01 10:15:02 jobid=123 jobstate=COMPLETED username=alice
        account=snic2024-1-1 nodes=r[12-13] procs=40 runtime=01:02:03

The database source writes rows in this same shape so that every source
goes through :func:`record_from_line`.
"""

import math
import re

from ..errors import RecordParseError
from .types import JobRecord

# Tool field name -> JobRecord attribute.
FIELD_MAP = {
    "jobid": "jobid",
    "jobstate": "jobstate",
    "username": "user",
    "account": "project",
    "jobname": "jobname",
    "end_time": "end_time",
    "runtime": "runtime",
    "procs": "booked_cores",
    "nodes": "nodes",
}

_DURATION_RE = re.compile(
    r"^(?:(?P<days>\d+)-)?(?P<clock>\d+(?::\d+){0,2})$",
)


def parse_key_value_line(line: str) -> dict[str, str]:
    """Tokenize a job line into its key=value fields.

    Later duplicates of a key win. Tokens without ``=`` are skipped.
    """
    fields: dict[str, str] = {}
    for token in line.split():
        key, sep, value = token.partition("=")
        if sep and key:
            fields[key] = value
    return fields


def record_from_fields(
    fields: dict[str, str],
    cluster: str,
    timelimit_minutes: int | None = None,
) -> JobRecord:
    """Build a JobRecord from tokenized fields.

    Only fields present in ``fields`` are set; everything else stays None.

    Raises:
        RecordParseError: If there is no jobid field.
    """
    if not fields.get("jobid"):
        msg = f"job line has no jobid field: {fields!r}"
        raise RecordParseError(msg)

    values = {
        attr: fields[key] for key, attr in FIELD_MAP.items() if key in fields
    }
    return JobRecord(
        cluster=cluster,
        timelimit_minutes=timelimit_minutes,
        **values,
    )


def record_from_line(line: str, cluster: str) -> JobRecord:
    """Parse one finishedjobinfo-shaped line into a JobRecord."""
    return record_from_fields(parse_key_value_line(line), cluster)


def _split_duration(value: str) -> tuple[int, int, int, int]:
    """Split a SLURM duration into (days, hours, minutes, seconds).

    Accepts ``D-HH:MM:SS``, ``D-HH:MM``, ``D-HH``, ``HH:MM:SS``, ``MM:SS``
    and ``MM``, following the squeue conventions.
    """
    match = _DURATION_RE.match(value.strip())
    if not match:
        msg = f"cannot parse duration: {value!r}"
        raise RecordParseError(msg)

    days = int(match.group("days") or 0)
    parts = [int(part) for part in match.group("clock").split(":")]
    if match.group("days") is not None:
        # After a day count the fields are hours[:minutes[:seconds]].
        parts += [0] * (3 - len(parts))
        hours, minutes, seconds = parts
    elif len(parts) == 3:  # noqa: PLR2004
        hours, minutes, seconds = parts
    elif len(parts) == 2:  # noqa: PLR2004
        hours = 0
        minutes, seconds = parts
    else:
        hours, seconds = 0, 0
        minutes = parts[0]
    return days, hours, minutes, seconds


def timelimit_to_minutes(value: str) -> int | None:
    """Convert a time limit to whole minutes, rounding seconds up.

    ``1-02:03:04`` is 1*1440 + 2*60 + 3 + ceil(4/60) = 1564. Returns None
    for ``UNLIMITED`` and other non-durations squeue prints.

    Raises:
        RecordParseError: If the value is neither a duration nor a known
            placeholder.
    """
    text = value.strip()
    if text.upper() in {"UNLIMITED", "INFINITE", "NOT_SET", "INVALID", "N/A", ""}:
        return None
    days, hours, minutes, seconds = _split_duration(text)
    return math.ceil(seconds / 60) + minutes + hours * 60 + days * 1440


def format_duration(total_seconds: int) -> str:
    """Format seconds the way finishedjobinfo prints runtimes.

    Up to and including 24 hours: ``HH:MM:SS``. Longer: ``D-HH:MM:SS``.
    """
    total_seconds = max(int(total_seconds), 0)
    minutes, seconds = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if total_seconds <= 24 * 3600:
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    days, hours = divmod(hours, 24)
    return f"{days}-{hours:02d}:{minutes:02d}:{seconds:02d}"
