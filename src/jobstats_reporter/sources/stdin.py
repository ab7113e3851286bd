"""Source reading pre-formatted job lines from a stream."""

from collections.abc import Iterator
from typing import TextIO

from .base import JobSource
from .keyvalue import record_from_line
from .types import JobRecord


class StdinJobSource(JobSource):
    """Reads finishedjobinfo-shaped lines, one job per line.

    Blank lines and lines without a jobid field are skipped.
    """

    name = "stdin"

    def __init__(self, cluster: str, stream: TextIO):
        super().__init__(cluster)
        self._stream = stream

    def keys(self) -> Iterator[str]:
        for line in self._stream:
            stripped = line.strip()
            if stripped and "jobid=" in stripped:
                yield stripped

    def fetch(self, key: str) -> JobRecord | None:
        return record_from_line(key, self.cluster)
