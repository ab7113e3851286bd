"""Jobstats Reporter.

Discovers SLURM jobs from accounting or scheduler tools, locates the per-node
jobstats usage files they left behind, and reports coarse utilization flags
as one tab-separated row per job.
"""

__version__ = "0.1.0"
