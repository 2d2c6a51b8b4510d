"""
Run orchestration: project lookup -> history walk -> result fetch -> aggregation.
"""
import logging
from datetime import datetime
from functools import partial
from typing import List, Optional

from history.walker import walk_build_history
from ingest.appveyor import build_tests_link, DEFAULT_WEB_URL
from normalize.models import Build, FetchFailure, Project
from results.fetcher import fetch_test_results, DEFAULT_MAX_WORKERS
from scoring.stats import TestStats, aggregate

_logger = logging.getLogger(__name__)


class AnalysisResult:
    """
    Everything the report needs for one project/branch run.
    """
    def __init__(self, project: Project, branch: str, start: datetime, end: datetime, builds: List[Build], stats: TestStats, failures: Optional[List[FetchFailure]] = None):
        self.project = project
        self.branch = branch
        self.start = start
        self.end = end
        self.builds = builds
        self.stats = stats
        self.failures = failures or []

    @property
    def partial(self) -> bool:
        """True when some builds or jobs were skipped and the table is incomplete."""
        return bool(self.failures)


def analyze(
    client,
    project_name: str,
    branch: str,
    start: datetime,
    end: datetime,
    ignore_pull_requests: bool = True,
    max_workers: int = DEFAULT_MAX_WORKERS,
    fail_fast: bool = True,
    web_url: str = DEFAULT_WEB_URL,
    max_pages: Optional[int] = None,
) -> AnalysisResult:
    """
    Collect test statistics for project_name/branch over builds finished in [start, end).

    Parameters:
        client: an AppVeyorClient or any object with the same methods.
        fail_fast: abort on the first failed fetch (default) or record it and continue.

    Raises:
        ProjectLookupError: no project with that name.
        TransportError: a remote call failed (fail_fast only for result fetches).
    """
    if start >= end:
        raise ValueError(f"Window start {start} must be before end {end}")

    project = client.get_project_by_name(project_name)
    scope = "non-PR" if ignore_pull_requests else "all"
    _logger.info("Getting %s terminal '%s|%s' builds between %s and %s", scope, project, branch, start, end)

    builds = walk_build_history(client, project, branch, start, end, ignore_pull_requests=ignore_pull_requests, max_pages=max_pages)
    outcome = fetch_test_results(client, project, builds, max_workers=max_workers, fail_fast=fail_fast)
    stats = aggregate(outcome.results, partial(build_tests_link, project, web_url=web_url))

    _logger.info(
        "Aggregated %d test(s) from %d result set(s) across %d build(s)%s",
        len(stats),
        len(outcome.results),
        len(builds),
        f"; {len(outcome.failures)} fetch(es) skipped" if outcome.failures else "",
    )
    return AnalysisResult(project, branch, start, end, builds, stats, outcome.failures)
