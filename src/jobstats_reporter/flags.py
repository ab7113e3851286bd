"""Utilization flags for a job.

Only the node-count check is done locally. Anything needing the samples
themselves (idle cores, memory use, plots) is delegated to the external
analysis tool, whose flag output replaces the local flags.
"""

from collections.abc import Sequence

import structlog

from . import command
from .errors import CommandError

logger = structlog.get_logger(__name__)


def local_flags(booked_nodes: int, found_files: int, verbose: bool = False) -> list[str]:
    """Flags computable from the node list and discovered files alone.

    A job that left jobstats files on some but not all of its nodes booked
    more nodes than it used.

    Args:
        booked_nodes: Number of nodes allocated to the job.
        found_files: Number of non-empty jobstats files found.
        verbose: Produce prose instead of a flag token.

    Returns:
        Flags in discovery order.
    """
    flags: list[str] = []
    if 0 < found_files < booked_nodes:
        if verbose:
            flags.append(
                f"nodes overbooked: {booked_nodes} nodes booked, "
                f"{found_files} used",
            )
        else:
            flags.append(f"nodes_overbooked:{booked_nodes}:{found_files}")
    return flags


def join_flags(flags: Sequence[str]) -> str:
    """Render a flag list as a report field."""
    return ",".join(flags) if flags else "."


class AnalysisTool:
    """Runs the external analysis and plotting program for one job at a time.

    The program receives the control options followed by ``--`` and the
    job's report fields, and prints a replacement flag string (possibly
    empty) on standard output.
    """

    def __init__(
        self,
        program: str,
        source_name: str,
        cpu_free: float,
        verbose: bool = False,
        memory: bool = False,
        plot: bool = False,
        big_plot: bool = False,
        runner: command.CommandRunner = command.run_command,
    ):
        self._program = program
        self._resolved: str | None = None
        self._source_name = source_name
        self._cpu_free = cpu_free
        self._verbose = verbose
        self._memory = memory
        self._plot = plot
        self._big_plot = big_plot
        self._run = runner

    def build_argv(self, fields: Sequence[str]) -> list[str]:
        """Command line for analyzing one job."""
        argv = [
            self._resolved or self._program,
            "--source",
            self._source_name,
            "--cpu-free",
            f"{self._cpu_free:g}",
        ]
        if self._verbose:
            argv.append("--verbose")
        if self._memory:
            argv.append("--memory")
        if not self._plot:
            argv.append("--no-plot")
        if self._big_plot:
            argv.append("--big-plot")
        argv.append("--")
        argv.extend(fields)
        return argv

    def analyze(self, fields: Sequence[str]) -> str | None:
        """Run the tool on one job's report fields.

        Returns:
            The tool's flag string, or None if it printed nothing.

        Raises:
            ToolNotFoundError: If the program is missing.
            CommandError: If it exits non-zero.
        """
        if self._resolved is None:
            self._resolved = command.require_tool(self._program)

        result = self._run(self.build_argv(fields))
        if result.returncode != 0:
            msg = (
                f"{self._program} failed for job {fields[0]} with exit status "
                f"{result.returncode}: {result.stderr.strip()}"
            )
            raise CommandError(msg)

        output = result.stdout.strip()
        logger.debug("Analysis tool flags", jobid=fields[0], flags=output)
        return output or None
