"""Node list expansion and jobstats file discovery.

Jobstats files are written per node and per job under
``<prefix>/<cluster>/<kind>/<node>/<jobid>``. Each file starts with one
header line followed by whitespace-separated samples::

    LOCALTIME TIME GB_LIMIT GB_USED GB_SWAP_USED <one column per core>

When a hard prefix is given, files are looked up as
``<hard-prefix>/<jobid>`` and the node name plays no part.
"""

import pathlib
import re
from dataclasses import dataclass

import structlog

from .errors import MalformedStatsFileError, RecordParseError, StatsRootNotFoundError

logger = structlog.get_logger(__name__)

# LOCALTIME TIME GB_LIMIT GB_USED GB_SWAP_USED
METADATA_COLUMNS = 5

_RANGE_RE = re.compile(r"^(?P<prefix>[^\[\],]+)\[(?P<terms>[^\]]*)\]$")


@dataclass(frozen=True)
class StatsFileRef:
    """A non-empty jobstats file found for a node."""

    node: str
    path: pathlib.Path


def expand_nodes(spec: str | None) -> list[str]:
    """Expand a SLURM node specification into node names.

    Supported forms:
        "m80" -> ["m80"]
        "m2,m3,m4" -> ["m2", "m3", "m4"]
        "m[26,74-75,77-78]" -> ["m26", "m74", "m75", "m77", "m78"]

    Range bounds are plain integers; numbers are not zero-padded. Mixing a
    bracketed range with comma-separated full names is not supported.

    Args:
        spec: Node specification, or None.

    Returns:
        Node names in the order given.

    Raises:
        RecordParseError: If a range term is not an integer or integer range.
    """
    if not spec:
        return []
    spec = spec.strip()

    match = _RANGE_RE.match(spec)
    if not match:
        return [name for name in spec.split(",") if name]

    prefix = match.group("prefix")
    names: list[str] = []
    for term in match.group("terms").split(","):
        term_cleaned = term.strip()
        if not term_cleaned:
            continue
        low, sep, high = term_cleaned.partition("-")
        try:
            if sep:
                names.extend(f"{prefix}{n}" for n in range(int(low), int(high) + 1))
            else:
                names.append(f"{prefix}{int(term_cleaned)}")
        except ValueError as exc:
            msg = f"cannot expand node range {spec!r}"
            raise RecordParseError(msg) from exc
    return names


def _qualifies(path: pathlib.Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def check_stats_root(stats_root: pathlib.Path, hard_prefix: str | None) -> None:
    """Raise if the directory jobstats files are looked up in is absent."""
    root = pathlib.Path(hard_prefix) if hard_prefix else stats_root
    if not root.is_dir():
        msg = f"Jobstats directory not found: {root}"
        raise StatsRootNotFoundError(msg)


def find_stats_files(
    nodes: list[str],
    jobid: str,
    stats_root: pathlib.Path,
    hard_prefix: str | None = None,
) -> list[StatsFileRef]:
    """Find the non-empty jobstats files for a job.

    Args:
        nodes: Nodes the job ran on, in order.
        jobid: Job id; also the file name.
        stats_root: ``<prefix>/<cluster>/<kind>`` directory.
        hard_prefix: If set, look only for ``<hard_prefix>/<jobid>``.

    Returns:
        One ref per qualifying file, in node order. In hard-prefix mode at
        most one ref, attributed to the first node.
    """
    if hard_prefix:
        path = pathlib.Path(hard_prefix) / jobid
        if _qualifies(path):
            return [StatsFileRef(node=nodes[0] if nodes else "", path=path)]
        return []

    refs = []
    for node in nodes:
        path = stats_root / node / jobid
        if _qualifies(path):
            refs.append(StatsFileRef(node=node, path=path))
        else:
            logger.debug("No jobstats file", jobid=jobid, node=node, path=str(path))
    return refs


def reorder_nodes(
    nodes: list[str],
    refs: list[StatsFileRef],
    hard_prefix: str | None = None,
) -> list[str]:
    """Move nodes with a jobstats file to the front.

    Nodes with files keep their discovery order, the rest keep their
    original order. In hard-prefix mode the list is returned unchanged.
    """
    if hard_prefix:
        return list(nodes)
    with_files = [ref.node for ref in refs]
    found = set(with_files)
    return with_files + [node for node in nodes if node not in found]


def count_cores(path: pathlib.Path) -> int:
    """Count the per-core columns of a jobstats file.

    Skips the header line and counts the columns of the first sample.

    Raises:
        MalformedStatsFileError: If there is no sample line or it has fewer
            than the five metadata columns, or is not valid UTF-8 text.
    """
    try:
        with path.open("r", encoding="utf-8") as f:
            f.readline()
            line = f.readline()
    except UnicodeDecodeError as exc:
        msg = f"Malformed jobstats file {path}: not valid text ({exc.reason})"
        raise MalformedStatsFileError(msg) from exc

    columns = line.split()
    if len(columns) < METADATA_COLUMNS:
        msg = (
            f"Malformed jobstats file {path}: expected at least "
            f"{METADATA_COLUMNS} columns, found {len(columns)}"
        )
        raise MalformedStatsFileError(msg)
    return len(columns) - METADATA_COLUMNS
