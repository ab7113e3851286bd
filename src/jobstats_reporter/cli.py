"""Command-line interface: ``jobstats``.

Examples
  # Report on two finished jobs with a header line
  jobstats -d -M rackham 1234567 1234568

  # Running job, with plots
  jobstats -r -p 1234569

  # All jobs of a project from the last 30 days
  jobstats -A snic2024-1-123

  # Lines in finishedjobinfo format on standard input
  finishedjobinfo -q -u alice | jobstats -
"""

import argparse
import json
import sys

import pydantic
import structlog

from . import __version__
from .config import Source, build_config, configure_logging, load_site_defaults
from .errors import JobStatsError
from .flags import AnalysisTool
from .metrics import write_metrics_file
from .report import ReporterContext, caller_projects
from .sources import build_source

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="jobstats",
        description=(
            "Report resource usage flags for SLURM jobs from their per-node "
            "jobstats files."
        ),
    )
    ap.add_argument(
        "jobids",
        nargs="*",
        metavar="jobid",
        help="Job ids to report on; '-' reads finishedjobinfo lines from stdin",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    selection = ap.add_argument_group("job selection")
    selection.add_argument(
        "-A",
        dest="project",
        help="Report on all jobs of this project from the last 30 days",
    )
    selection.add_argument(
        "--stdin",
        action="store_true",
        default=None,
        help="Read finishedjobinfo lines from stdin (same as '-')",
    )
    selection.add_argument(
        "-r",
        "--running",
        action="store_true",
        default=None,
        help="Jobs are running; look them up with squeue",
    )
    selection.add_argument("-M", dest="cluster", help="Cluster name")
    selection.add_argument(
        "-n",
        dest="node_override",
        metavar="NODELIST",
        help="Use this node list for the (single) job",
    )

    output = ap.add_argument_group("output")
    output.add_argument(
        "-m", "--memory", action="store_true", default=None, help="Include memory flags",
    )
    output.add_argument(
        "-v", "--verbose", action="store_true", default=None, help="Prose flags",
    )
    output.add_argument(
        "-p", "--plot", action="store_true", default=None, help="Produce plots",
    )
    output.add_argument(
        "-b",
        "--big-plot",
        dest="big_plot",
        action="store_true",
        default=None,
        help="Produce larger plots",
    )
    output.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=None,
        help="Do not print report rows (plots and summary still produced)",
    )
    output.add_argument(
        "-d",
        dest="header",
        action="store_true",
        default=None,
        help="Print a header line before the first row",
    )
    output.add_argument(
        "--cpu-free",
        dest="cpu_free",
        type=float,
        help="Busy percentage below which a core counts as free (default: 3)",
    )
    output.add_argument(
        "--metrics-file",
        dest="metrics_file",
        help="Write run counters in Prometheus text format to this file",
    )

    paths = ap.add_argument_group("locations")
    paths.add_argument("-x", dest="stats_prefix", metavar="PREFIX", help="Jobstats prefix")
    paths.add_argument(
        "-X",
        dest="hard_prefix",
        metavar="HARD_PREFIX",
        help="Directory holding <jobid> files directly",
    )
    paths.add_argument(
        "-f",
        dest="finishedjobinfo",
        metavar="PATH",
        help="finishedjobinfo executable",
    )
    paths.add_argument(
        "-P",
        dest="plot_tool",
        metavar="PATH",
        help="Analysis and plotting executable",
    )

    ap.add_argument("--debug", action="store_true", help="Debug logging")
    return ap


def _select_source(ap: argparse.ArgumentParser, args: argparse.Namespace) -> Source:
    use_stdin = bool(args.stdin) or "-" in args.jobids
    selected = [
        name
        for name, chosen in (
            ("-A", args.project),
            ("-r", args.running),
            ("stdin", use_stdin),
        )
        if chosen
    ]
    if len(selected) > 1:
        ap.error(f"options {' and '.join(selected)} cannot be combined")
    if use_stdin:
        return Source.STDIN
    if args.project:
        return Source.DATABASE
    if args.running:
        return Source.RUNNING
    return Source.FINISHED


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``jobstats`` command.

    Returns:
        0 when the run completed, 1 when a fatal error stopped it.
    """
    ap = build_parser()
    args = ap.parse_args(argv)
    source_kind = _select_source(ap, args)

    try:
        site_defaults = load_site_defaults()
    except (OSError, ValueError) as exc:
        ap.error(str(exc))

    options = {
        "source": source_kind,
        "job_ids": tuple(job for job in args.jobids if job != "-"),
        "project": args.project,
        "cluster": args.cluster,
        "node_override": args.node_override,
        "memory": args.memory,
        "verbose": args.verbose,
        "plot": args.plot,
        "big_plot": args.big_plot,
        "quiet": args.quiet,
        "header": args.header,
        "cpu_free": args.cpu_free,
        "stats_prefix": args.stats_prefix,
        "hard_prefix": args.hard_prefix,
        "finishedjobinfo": args.finishedjobinfo,
        "plot_tool": args.plot_tool,
        "metrics_file": args.metrics_file,
        "log_level": "DEBUG" if args.debug else None,
    }
    try:
        config = build_config(options, site_defaults)
    except pydantic.ValidationError as exc:
        ap.error("; ".join(error["msg"] for error in exc.errors()))

    configure_logging(config.log_level)
    logger.debug("Configuration", **json.loads(config.model_dump_json()))

    source = build_source(config)
    analysis = AnalysisTool(
        program=config.plot_tool,
        source_name=source.name,
        cpu_free=config.cpu_free,
        verbose=config.verbose,
        memory=config.memory,
        plot=config.plot,
        big_plot=config.big_plot,
    )
    context = ReporterContext(
        config=config,
        source=source,
        analysis=analysis,
        allowed_projects=caller_projects(config.staff_group),
    )

    try:
        context.check_ready()
        counters = context.run()
    except JobStatsError as exc:
        logger.error("Aborting run", error=str(exc))  # noqa: TRY400
        return 1

    if config.metrics_file:
        write_metrics_file(
            config.metrics_file,
            counters,
            cluster=config.cluster,
            source=source.name,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
