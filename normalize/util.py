"""
Normalization helpers.
Turn raw AppVeyor JSON payloads into normalize.models entities.
"""
import re
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List

from errors import TransportError
from normalize.models import (
    Project,
    Build,
    BuildStatus,
    Job,
    TestOutcome,
    TestResultEntry,
    JobTestResults,
)

# .NET serializes up to 7 fractional digits; datetime accepts at most 6
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime. Returns None for empty values."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = _FRACTION_RE.sub(r"\1", str(value).strip())
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise TransportError(f"Malformed timestamp in payload: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _as_mapping(raw: Any, kind: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise TransportError(f"Malformed {kind} payload: expected an object")
    return raw


def _require(raw: Dict[str, Any], key: str, kind: str):
    if raw.get(key) is None:
        raise TransportError(f"Malformed {kind} payload: missing '{key}'")
    return raw[key]


def _int(raw: Dict[str, Any], key: str, kind: str, required: bool = False) -> int:
    """Integer field; missing or empty counts as 0 unless required."""
    value = raw.get(key)
    if value is None or value == '':
        if required:
            raise TransportError(f"Malformed {kind} payload: missing '{key}'")
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        raise TransportError(f"Malformed {kind} payload: '{key}' is not an integer: {value!r}")


def _enum_or_raw(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return value


def normalize_project(raw: Dict[str, Any]) -> Project:
    raw = _as_mapping(raw, 'project')
    return Project(
        account_id=str(raw.get('accountId') or ''),
        account_name=_require(raw, 'accountName', 'project'),
        name=_require(raw, 'name', 'project'),
        project_id=str(raw.get('projectId') or ''),
        slug=_require(raw, 'slug', 'project'),
        repository_name=raw.get('repositoryName'),
        repository_branch=raw.get('repositoryBranch'),
    )


def normalize_build(raw: Dict[str, Any]) -> Build:
    """Create a Build from a history or build-details payload.
    Unknown status strings are kept verbatim so they fail the terminal-status filter.
    """
    raw = _as_mapping(raw, 'build')
    status_raw = raw.get('status') or ''
    return Build(
        build_id=_int(raw, 'buildId', 'build', required=True),
        version=_require(raw, 'version', 'build'),
        branch=raw.get('branch') or '',
        status=_enum_or_raw(BuildStatus, str(status_raw).lower()),
        finished=parse_timestamp(raw.get('finished')),
        pull_request_id=raw.get('pullRequestId') or None,
        build_number=raw.get('buildNumber'),
        author_name=raw.get('authorName'),
    )


def normalize_job(raw: Dict[str, Any]) -> Job:
    raw = _as_mapping(raw, 'job')
    return Job(
        job_id=_require(raw, 'jobId', 'job'),
        status=raw.get('status') or '',
        tests_count=_int(raw, 'testsCount', 'job'),
        failed_tests_count=_int(raw, 'failedTestsCount', 'job'),
    )


def normalize_test_entry(raw: Dict[str, Any]) -> TestResultEntry:
    raw = _as_mapping(raw, 'test result')
    outcome_raw = str(raw.get('outcome') or '').lower()
    return TestResultEntry(
        name=_require(raw, 'name', 'test result'),
        outcome=_enum_or_raw(TestOutcome, outcome_raw),
        file_name=raw.get('fileName') or '',
        duration=_int(raw, 'duration', 'test result'),
        created=parse_timestamp(raw.get('created')),
    )


def normalize_job_results(job_id: str, raw: Dict[str, Any]) -> JobTestResults:
    if not isinstance(raw, dict):
        raise TransportError(f"Malformed test results payload for job {job_id}")
    items = raw.get('list') or []
    entries: List[TestResultEntry] = [normalize_test_entry(item) for item in items]
    return JobTestResults(
        job_id=job_id,
        entries=entries,
        passed=_int(raw, 'passed', 'test results'),
        failed=_int(raw, 'failed', 'test results'),
        total=_int(raw, 'total', 'test results'),
    )
