"""Common interface for job sources."""

import abc
from collections.abc import Iterator

from .types import JobRecord


class JobSource(abc.ABC):
    """Produces normalized job records.

    ``keys`` yields what the source is asked about (job ids, input lines,
    formatted database rows) in processing order; ``fetch`` turns one key
    into a record, or None when the job cannot be found.
    """

    #: Source name handed to the analysis tool.
    name: str = ""

    def __init__(self, cluster: str):
        self.cluster = cluster

    @abc.abstractmethod
    def keys(self) -> Iterator[str]:
        """Yield lookup keys in processing order."""

    @abc.abstractmethod
    def fetch(self, key: str) -> JobRecord | None:
        """Return the record for ``key`` or None if the job is unknown."""

    def check_ready(self) -> None:  # noqa: B027
        """Raise if the source's external prerequisites are missing."""
