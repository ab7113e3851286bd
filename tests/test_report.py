"""Tests for the per-job processing loop and report output.

These run the reporter end to end over a stdin source and a jobstats tree
under tmp_path, with the analysis tool mocked out.
"""

import io
import pathlib
from unittest.mock import MagicMock

import pytest

from jobstats_reporter import config, flags, report, sources
from jobstats_reporter.errors import MalformedStatsFileError, StatsRootNotFoundError

HEADER = "LOCALTIME TIME GB_LIMIT GB_USED GB_SWAP_USED 0 1 2 3\n"
SAMPLE = "2024-03-01T10:00:00 1709283600 64.0 2.5 0.0 100 0 0 0\n"

COMPLETED_LINE = (
    "2024-03-01 10:15:02 jobid={jobid} jobstate=COMPLETED username=alice "
    "account=proj1 nodes={nodes} procs=16 end_time=2024-03-01T10:15:02 "
    "runtime=01:02:03 jobname=align"
)


@pytest.fixture
def stats_root(tmp_path) -> pathlib.Path:
    root = tmp_path / "rackham" / "uppmax_jobstats"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def analysis() -> MagicMock:
    """Analysis tool that prints nothing."""
    tool = MagicMock(spec=flags.AnalysisTool)
    tool.analyze.return_value = None
    return tool


def _stats(root: pathlib.Path, node: str, jobid: str, content: str = HEADER + SAMPLE):
    path = root / node / jobid
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def _context(tmp_path, lines, analysis, allowed=None, **options):
    cfg = config.ReporterConfig(
        source=options.pop("source", "stdin"),
        cluster="rackham",
        stats_prefix=str(tmp_path),
        **options,
    )
    source = sources.StdinJobSource("rackham", io.StringIO("\n".join(lines) + "\n"))
    return report.ReporterContext(
        config=cfg,
        source=source,
        analysis=analysis,
        allowed_projects=allowed,
        out=io.StringIO(),
        diag=io.StringIO(),
    )


def _rows(ctx: report.ReporterContext) -> list[list[str]]:
    return [line.split("\t") for line in ctx.out.getvalue().splitlines()]


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


def test_not_run_row_has_placeholders(tmp_path, stats_root, analysis):
    """A job without nodes is reported as not run without looking for files."""
    line = "jobid=5 jobstate=CANCELLED username=alice account=proj1 procs=8 runtime=00:00:00 jobname=x"
    ctx = _context(tmp_path, [line], analysis)

    ctx.run()

    assert _rows(ctx) == [[
        "5", "rackham", "CANCELLED", "alice", "proj1", "x", ".", "00:00:00",
        "not_run", "8", ".", ".", ".",
    ]]
    assert ctx.counters.not_run == 1
    analysis.analyze.assert_not_called()


def test_usage_row_with_all_files(tmp_path, stats_root, analysis):
    """Files on every node: cores from the file, no local flags."""
    first = _stats(stats_root, "r1", "10")
    second = _stats(stats_root, "r2", "10")
    ctx = _context(tmp_path, [COMPLETED_LINE.format(jobid=10, nodes="r[1-2]")], analysis)

    ctx.run()

    assert _rows(ctx) == [[
        "10", "rackham", "COMPLETED", "alice", "proj1", "align",
        "2024-03-01T10:15:02", "01:02:03", ".", "16", "4", "r1,r2",
        f"{first},{second}",
    ]]


def test_partial_files_reorder_and_flag(tmp_path, stats_root, analysis):
    """Nodes with files move first and the job is flagged as overbooked."""
    found = _stats(stats_root, "r3", "11")
    _stats(stats_root, "r4", "11")
    ctx = _context(tmp_path, [COMPLETED_LINE.format(jobid=11, nodes="r[1-4]")], analysis)

    ctx.run()

    row = _rows(ctx)[0]
    assert row[8] == "nodes_overbooked:4:2"
    assert row[11] == "r3,r4,r1,r2"
    assert row[12].split(",")[0] == str(found)


def test_verbose_flag_is_prose(tmp_path, stats_root, analysis):
    """Verbose mode writes prose flags."""
    _stats(stats_root, "r1", "12")
    ctx = _context(
        tmp_path, [COMPLETED_LINE.format(jobid=12, nodes="r[1-2]")], analysis, verbose=True,
    )
    ctx.run()
    assert _rows(ctx)[0][8] == "nodes overbooked: 2 nodes booked, 1 used"


def test_analysis_output_replaces_flags(tmp_path, stats_root, analysis):
    """Non-empty analysis output replaces, not extends, the local flags."""
    _stats(stats_root, "r1", "13")
    analysis.analyze.return_value = "cores_overbooked:16:1"
    ctx = _context(tmp_path, [COMPLETED_LINE.format(jobid=13, nodes="r[1-2]")], analysis)

    ctx.run()

    assert _rows(ctx)[0][8] == "cores_overbooked:16:1"
    sent_fields = analysis.analyze.call_args.args[0]
    assert sent_fields[0] == "13"
    assert sent_fields[8] == "nodes_overbooked:2:1"


def test_no_files_counts_and_skips_analysis(tmp_path, stats_root, analysis, captured_logs):
    """A job that ran but left no files is counted and warned about."""
    ctx = _context(tmp_path, [COMPLETED_LINE.format(jobid=14, nodes="r1")], analysis)

    ctx.run()

    row = _rows(ctx)[0]
    assert row[8] == "."
    assert row[10:] == [".", "r1", "."]
    assert ctx.counters.no_stats_files == 1
    analysis.analyze.assert_not_called()
    assert any(log["event"] == "No jobstats files found" for log in captured_logs)


def test_hard_prefix_keeps_node_order(tmp_path, analysis):
    """In hard-prefix mode the file is shared and nodes are not reordered."""
    hard = tmp_path / "hard"
    hard.mkdir()
    (hard / "15").write_text(HEADER + SAMPLE)
    ctx = _context(
        tmp_path,
        [COMPLETED_LINE.format(jobid=15, nodes="r[1-3]")],
        analysis,
        hard_prefix=str(hard),
    )

    ctx.run()

    row = _rows(ctx)[0]
    assert row[8] == "."
    assert row[11] == "r1,r2,r3"
    assert row[12] == str(hard / "15")


def test_malformed_file_is_fatal(tmp_path, stats_root, analysis):
    """A malformed jobstats file stops the whole run."""
    _stats(stats_root, "r1", "16", HEADER + "too few\n")
    ctx = _context(tmp_path, [COMPLETED_LINE.format(jobid=16, nodes="r1")], analysis)
    with pytest.raises(MalformedStatsFileError):
        ctx.run()


def test_summary_written_when_run_aborts(tmp_path, stats_root, analysis):
    """Counts for jobs handled before a fatal error are still summarized."""
    _stats(stats_root, "r1", "2", HEADER + "bad\n")
    lines = [
        "jobid=1 jobstate=CANCELLED account=proj1",
        COMPLETED_LINE.format(jobid=2, nodes="r1"),
    ]
    ctx = _context(tmp_path, lines, analysis)

    with pytest.raises(MalformedStatsFileError):
        ctx.run()

    assert ctx.diag.getvalue().startswith("# jobs: 2  not run: 1")


def test_node_override_replaces_record_nodes(tmp_path, stats_root, analysis):
    """A node override is used instead of the record's node list."""
    _stats(stats_root, "q7", "17")
    ctx = _context(
        tmp_path,
        [COMPLETED_LINE.format(jobid=17, nodes="r1")],
        analysis,
        source="finished",
        job_ids=("17",),
        node_override="q7",
    )
    ctx.run()
    assert _rows(ctx)[0][11] == "q7"


def test_rows_are_reproducible(tmp_path, stats_root, analysis):
    """The same inputs give byte-identical rows."""
    _stats(stats_root, "r1", "18")
    lines = [COMPLETED_LINE.format(jobid=18, nodes="r[1-2]")]
    first = _context(tmp_path, lines, analysis)
    second = _context(tmp_path, lines, analysis)
    first.run()
    second.run()
    assert first.out.getvalue() == second.out.getvalue()


# ---------------------------------------------------------------------------
# Running mode
# ---------------------------------------------------------------------------


def test_running_rows_carry_timelimit(tmp_path, stats_root, analysis):
    """Running mode appends timelimit_minutes to rows and header."""
    record = sources.JobRecord(
        jobid="20", cluster="rackham", jobstate="RUNNING", nodes="r1",
        booked_cores=4, timelimit_minutes=1564,
    )
    source = MagicMock(spec=sources.RunningJobSource)
    source.name = "running"
    source.keys.return_value = iter(["20"])
    source.fetch.return_value = record
    cfg = config.ReporterConfig(
        source="running", job_ids=("20",), cluster="rackham",
        stats_prefix=str(tmp_path), header=True,
    )
    ctx = report.ReporterContext(
        cfg, source, analysis, out=io.StringIO(), diag=io.StringIO(),
    )

    ctx.run()

    header, row = _rows(ctx)
    assert header[-1] == "timelimit_minutes"
    assert len(header) == 14
    assert row[-1] == "1564"
    assert row[:3] == ["20", "rackham", "RUNNING"]


# ---------------------------------------------------------------------------
# Header, quiet, counters
# ---------------------------------------------------------------------------


def test_header_printed_once(tmp_path, stats_root, analysis):
    """The header precedes the first row only."""
    lines = [
        "jobid=1 jobstate=CANCELLED account=proj1",
        "jobid=2 jobstate=CANCELLED account=proj1",
    ]
    ctx = _context(tmp_path, lines, analysis, header=True)

    ctx.run()

    output = ctx.out.getvalue().splitlines()
    assert output[0] == "\t".join(report.HEADER_FIELDS)
    assert len(output) == 3
    assert ctx.header_emitted


def test_quiet_suppresses_rows_not_summary(tmp_path, stats_root, analysis):
    """Quiet mode prints no rows, but the summary still appears."""
    ctx = _context(
        tmp_path, ["jobid=1 jobstate=CANCELLED"], analysis, quiet=True, header=True,
    )

    ctx.run()

    assert ctx.out.getvalue() == ""
    assert ctx.diag.getvalue().startswith("# jobs: 1")


def test_unauthorized_project_is_skipped(tmp_path, stats_root, analysis, captured_logs):
    """Jobs of projects the caller is not in are skipped with a warning."""
    lines = [
        "jobid=1 jobstate=CANCELLED account=proj1",
        "jobid=2 jobstate=CANCELLED account=secret",
    ]
    ctx = _context(tmp_path, lines, analysis, allowed={"proj1"})

    counters = ctx.run()

    assert [row[0] for row in _rows(ctx)] == ["1"]
    assert counters.unauthorized == 1
    warnings = [log for log in captured_logs if log["log_level"] == "warning"]
    assert warnings[0]["jobid"] == "2"


def test_not_found_job_is_counted(tmp_path, analysis, captured_logs):
    """A job the source cannot find is warned about and counted as not run."""
    source = MagicMock(spec=sources.FinishedJobSource)
    source.name = "finished"
    source.keys.return_value = iter(["404"])
    source.fetch.return_value = None
    cfg = config.ReporterConfig(job_ids=("404",), cluster="rackham", stats_prefix=str(tmp_path))
    ctx = report.ReporterContext(cfg, source, analysis, out=io.StringIO(), diag=io.StringIO())

    counters = ctx.run()

    assert counters.jobs == 1
    assert counters.not_run == 1
    assert ctx.out.getvalue() == ""
    assert captured_logs[0]["event"] == "Job not found"


def test_summary_counts(tmp_path, stats_root, analysis):
    """The summary line reflects every counter."""
    _stats(stats_root, "r1", "3")
    lines = [
        "jobid=1 jobstate=CANCELLED",
        COMPLETED_LINE.format(jobid=2, nodes="r9"),
        COMPLETED_LINE.format(jobid=3, nodes="r1"),
    ]
    ctx = _context(tmp_path, lines, analysis)

    ctx.run()

    assert ctx.diag.getvalue().strip() == (
        "# jobs: 3  not run: 1  without jobstats files: 1  unauthorized: 0"
    )


# ---------------------------------------------------------------------------
# Readiness and authorization helpers
# ---------------------------------------------------------------------------


def test_check_ready_requires_stats_root(tmp_path, analysis):
    """A missing jobstats tree is reported before any job is processed."""
    ctx = _context(tmp_path, [], analysis)
    with pytest.raises(StatsRootNotFoundError):
        ctx.check_ready()


def test_caller_projects_staff_sees_everything(monkeypatch):
    """Staff group members are not restricted."""
    monkeypatch.setattr(report.os, "geteuid", lambda: 1000)
    monkeypatch.setattr(report.os, "getgroups", lambda: [1, 2])
    names = {1: "staff", 2: "proj1"}
    monkeypatch.setattr(
        report.grp, "getgrgid", lambda gid: MagicMock(gr_name=names[gid]),
    )
    assert report.caller_projects("staff") is None


def test_caller_projects_returns_group_names(monkeypatch):
    """Ordinary users may see their own groups' projects."""
    monkeypatch.setattr(report.os, "geteuid", lambda: 1000)
    monkeypatch.setattr(report.os, "getgroups", lambda: [2, 3])
    names = {2: "proj1", 3: "proj2"}
    monkeypatch.setattr(
        report.grp, "getgrgid", lambda gid: MagicMock(gr_name=names[gid]),
    )
    assert report.caller_projects("staff") == {"proj1", "proj2"}
