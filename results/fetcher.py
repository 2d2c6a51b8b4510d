"""
Concurrent fetch of job lists and per-job test results for a set of builds.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_EXCEPTION
from typing import List, Tuple

import requests

from errors import AnalyzerError
from normalize.models import Build, BuildTestResults, FetchFailure, Project

_logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8

# errors a single fetch may raise; anything else is a programming error and always propagates
FETCH_ERRORS = (AnalyzerError, requests.RequestException)


class FetchOutcome:
    """
    Tagged result sets in build order then job order, plus the builds/jobs skipped in a partial run.
    """
    def __init__(self, results: List[BuildTestResults], failures: List[FetchFailure]):
        self.results = results
        self.failures = failures


def _gather(executor: ThreadPoolExecutor, calls, fail_fast: bool):
    """Submit calls and return [(key, value, error)] in submission order.

    With fail_fast the first error cancels every pending call and is re-raised.
    """
    futures = [(key, executor.submit(fn, *args)) for key, fn, args in calls]
    if fail_fast and futures:
        done, _ = wait([f for _, f in futures], return_when=FIRST_EXCEPTION)
        for f in done:
            if f.exception() is not None:
                for _, pending in futures:
                    pending.cancel()
                raise f.exception()

    gathered = []
    for key, f in futures:
        try:
            gathered.append((key, f.result(), None))
        except FETCH_ERRORS as ex:
            gathered.append((key, None, ex))
    return gathered


def fetch_test_results(source, project: Project, builds: List[Build], max_workers: int = DEFAULT_MAX_WORKERS, fail_fast: bool = True) -> FetchOutcome:
    """
    Fetch every job's test results for the given builds.

    Job lists are fetched for all builds concurrently, then test results for all jobs, both on a
    single pool of at most max_workers threads. Each call hands back its value; nothing shared
    is written while the pool runs.

    With fail_fast (the default) the first failed call aborts the whole fetch. Otherwise the
    failing build or job is recorded as a FetchFailure and the rest are still collected.
    """
    if max_workers < 1:
        raise ValueError("max_workers must be at least 1")
    failures: List[FetchFailure] = []
    results: List[BuildTestResults] = []
    if not builds:
        return FetchOutcome(results, failures)

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fetch") as executor:
        job_lists = _gather(executor, [(b.version, source.list_jobs, (project, b.version)) for b in builds], fail_fast)

        job_calls: List[Tuple[Tuple[str, str], object, tuple]] = []
        for version, jobs, error in job_lists:
            if error is not None:
                _logger.warning("Skipping build %s: %s", version, error)
                failures.append(FetchFailure(version, None, str(error)))
                continue
            for job in jobs:
                job_calls.append(((version, job.job_id), source.get_test_results, (job,)))
        _logger.debug("Fetching test results for %d job(s) across %d build(s)", len(job_calls), len(builds))

        for (version, job_id), job_results, error in _gather(executor, job_calls, fail_fast):
            if error is not None:
                _logger.warning("Skipping job %s of build %s: %s", job_id, version, error)
                failures.append(FetchFailure(version, job_id, str(error)))
                continue
            results.append(BuildTestResults(version, job_results))

    return FetchOutcome(results, failures)

