"""
Backward walk through build history until the requested window is covered.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from normalize.models import Build, Project

_logger = logging.getLogger(__name__)


def build_matches(build: Build, branch: str, ignore_pull_requests: bool = True) -> bool:
    """Branch matches, status is terminal and, when PRs are ignored, the build has no PR id."""
    if build.branch != branch or not build.is_terminal:
        return False
    return not (ignore_pull_requests and build.is_pull_request)


def in_window(build: Build, start: datetime, end: datetime) -> bool:
    return build.finished is not None and start <= build.finished < end


def walk_build_history(
    source,
    project: Project,
    branch: str,
    start: datetime,
    end: datetime,
    ignore_pull_requests: bool = True,
    max_pages: Optional[int] = None,
) -> List[Build]:
    """
    Return the terminal builds of project/branch that finished in [start, end), newest first.

    Pages are requested newest-first, each anchored before the lowest build id seen so far. The
    walk stops on an empty page, once a matching build on the current page finished before
    start, when the cursor stops moving, or after max_pages pages. Pages overshoot the window at
    both ends, so the window filter is applied once the walk is over.

    Parameters:
        source: object with get_build_history_page(project, branch, before_build_id).
        max_pages: optional bound on the number of requests; None walks until a stop condition.
    """
    accumulated: Dict[int, Build] = {}
    cursor: Optional[int] = None
    pages = 0

    while max_pages is None or pages < max_pages:
        page = source.get_build_history_page(project, branch, cursor)
        pages += 1
        if not page:
            _logger.debug("Empty history page after build %s; history exhausted", cursor)
            break

        matching = [b for b in page if build_matches(b, branch, ignore_pull_requests)]
        for b in matching:
            accumulated.setdefault(b.build_id, b)

        reached_cutoff = any(b.finished is not None and b.finished < start for b in matching)
        _logger.debug("History page %d: %d builds, %d matching, cutoff=%s", pages, len(page), len(matching), reached_cutoff)
        if reached_cutoff:
            break

        # unfiltered ids count too, otherwise a page without matches would be requested again
        lowest = min([b.build_id for b in page] + list(accumulated))
        if cursor is not None and lowest >= cursor:
            _logger.warning("History cursor did not advance past build %s; stopping", cursor)
            break
        cursor = lowest

    builds = [b for b in accumulated.values() if in_window(b, start, end)]
    builds.sort(key=lambda b: b.build_id, reverse=True)
    _logger.info("Found %d eligible builds in %d history page(s)", len(builds), pages)
    return builds
