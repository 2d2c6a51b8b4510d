"""
Normalized entities for AppVeyor projects, builds, jobs and test results.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional


class BuildStatus(str, Enum):
    SUCCESS = 'success'
    FAILED = 'failed'
    QUEUED = 'queued'
    RUNNING = 'running'
    CANCELLED = 'cancelled'


# a build is finished once it reaches one of these
TERMINAL_STATUSES = frozenset({BuildStatus.SUCCESS, BuildStatus.FAILED})


class TestOutcome(str, Enum):
    __test__ = False

    PASSED = 'passed'
    FAILED = 'failed'
    RUNNING = 'running'
    SKIPPED = 'skipped'


class Project:
    """
    A CI project as returned by the project list.
    """
    def __init__(self, account_id: str, account_name: str, name: str, project_id: str, slug: str, repository_name: Optional[str] = None, repository_branch: Optional[str] = None):
        self.account_id = account_id
        self.account_name = account_name
        self.name = name
        self.project_id = project_id
        self.slug = slug  # e.g. azure-webjobs-sdk-script-y8o14
        self.repository_name = repository_name
        self.repository_branch = repository_branch

    def __str__(self):
        return self.name


class Build:
    """
    One CI run. Status is a BuildStatus for known values, otherwise the raw string.
    """
    def __init__(self, build_id: int, version: str, branch: str, status, finished: Optional[datetime], pull_request_id: Optional[str] = None, build_number: Optional[int] = None, author_name: Optional[str] = None):
        self.build_id = build_id
        self.version = version  # e.g. 1.0.11033-sshumfpu
        self.branch = branch
        self.status = status
        self.finished = finished
        self.pull_request_id = pull_request_id
        self.build_number = build_number
        self.author_name = author_name

    @property
    def is_pull_request(self) -> bool:
        return bool(self.pull_request_id)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"Build(id={self.build_id}, version={self.version!r}, status={getattr(self.status, 'value', self.status)})"


class Job:
    """
    A unit of work within a build, e.g. one test shard.
    """
    def __init__(self, job_id: str, status: str = '', tests_count: int = 0, failed_tests_count: int = 0):
        self.job_id = job_id
        self.status = status
        self.tests_count = tests_count
        self.failed_tests_count = failed_tests_count


class TestResultEntry:
    """
    One test execution record. Outcome is a TestOutcome for known values, otherwise the raw string.
    """
    __test__ = False

    def __init__(self, name: str, outcome, file_name: str = '', duration: int = 0, created: Optional[datetime] = None):
        self.name = name
        self.outcome = outcome
        self.file_name = file_name
        self.duration = duration
        self.created = created


class JobTestResults:
    """
    The test entries of one job plus the summary counters reported by the API.
    """
    def __init__(self, job_id: str, entries: List[TestResultEntry], passed: int = 0, failed: int = 0, total: int = 0):
        self.job_id = job_id
        self.entries = entries
        self.passed = passed
        self.failed = failed
        self.total = total


class BuildTestResults:
    """
    A job's result set tagged with the version of the build that owns it.
    """
    def __init__(self, build_version: str, results: JobTestResults):
        self.build_version = build_version
        self.results = results


class FetchFailure:
    """
    A build or job whose results could not be fetched in a partial run.
    job_id is None when the job list of the build itself failed.
    """
    def __init__(self, build_version: str, job_id: Optional[str], error: str):
        self.build_version = build_version
        self.job_id = job_id
        self.error = error

    def to_dict(self):
        return {'build_version': self.build_version, 'job_id': self.job_id, 'error': self.error}
