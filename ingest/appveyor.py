"""
AppVeyor REST client: projects, build history pages, build jobs and job test results.
"""

import logging
from typing import List, Dict, Any, Optional
from urllib.parse import quote

from errors import ProjectLookupError, TransportError
from normalize.models import Project, Build, Job, JobTestResults
from normalize.util import normalize_project, normalize_build, normalize_job, normalize_job_results
from storage.cache import rate_limited_get, Cache

_logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://ci.appveyor.com/api"
DEFAULT_WEB_URL = "https://ci.appveyor.com"
DEFAULT_PAGE_SIZE = 50


def build_tests_link(project: Project, build_version: str, web_url: str = DEFAULT_WEB_URL) -> str:
    """Link to the tests tab of a build in the AppVeyor web UI."""
    return f"{web_url.rstrip('/')}/project/{project.account_name}/{project.slug}/build/{quote(build_version)}/tests"


class AppVeyorClient:
    """Client for the subset of the AppVeyor API needed to collect test statistics.

    Every call goes through storage.cache.rate_limited_get, so retries and the optional
    SQLite cache apply uniformly. Any non-200 answer raises TransportError.
    """

    def __init__(self, api_key: str, endpoint: str = None, cache: Optional[Cache] = None, history_page_size: int = DEFAULT_PAGE_SIZE, history_max_age: Optional[float] = 300.0):
        self.api_key = api_key
        self.endpoint = (endpoint or DEFAULT_ENDPOINT).rstrip('/')
        self.headers = {
            "Authorization": f"Bearer {self.api_key}" if self.api_key else "",
            "Accept": "application/json",
        }
        self.cache = cache
        self.history_page_size = int(history_page_size)
        self.history_max_age = history_max_age

    def _get(self, path: str, params: Dict[str, Any] = None, cache_key: str = None, max_age: Optional[float] = None):
        url = f"{self.endpoint}/{path.lstrip('/')}"
        res = rate_limited_get(
            url,
            headers=self.headers,
            params=params or {},
            cache=self.cache if cache_key else None,
            cache_key=cache_key,
            max_age=max_age,
        )
        status = res.get('status', 0)
        if status != 200:
            detail = res.get('response')
            raise TransportError(f"GET {url} failed with status {status}: {detail}", url=url, status=status)
        return res.get('response')

    def list_projects(self) -> List[Project]:
        data = self._get('/projects', cache_key='appveyor:projects', max_age=self.history_max_age)
        if not isinstance(data, list):
            raise TransportError("Malformed project list payload", url=f"{self.endpoint}/projects", status=200)
        return [normalize_project(p) for p in data]

    def get_project_by_name(self, name: str) -> Project:
        """Case-insensitive lookup by display name. Raises ProjectLookupError if absent."""
        wanted = (name or '').lower()
        for project in self.list_projects():
            if project.name.lower() == wanted:
                return project
        raise ProjectLookupError(name)

    def get_build_history_page(self, project: Project, branch: str, before_build_id: Optional[int] = None) -> List[Build]:
        """One page of history, newest first, holding builds older than before_build_id when given."""
        params: Dict[str, Any] = {"recordsNumber": self.history_page_size, "branch": branch}
        cache_key = None
        if before_build_id is not None:
            params["startBuildId"] = before_build_id
            # pages anchored at a cursor only ever hold finished history
            cache_key = f"appveyor:history:{project.account_name}:{project.slug}:{branch}:{before_build_id}:{self.history_page_size}"
        data = self._get(f"/projects/{project.account_name}/{project.slug}/history", params=params, cache_key=cache_key, max_age=self.history_max_age)
        if not isinstance(data, dict):
            raise TransportError("Malformed build history payload", status=200)
        return [normalize_build(b) for b in data.get('builds') or []]

    def list_jobs(self, project: Project, build_version: str) -> List[Job]:
        cache_key = f"appveyor:build:{project.account_name}:{project.slug}:{build_version}"
        data = self._get(f"/projects/{project.account_name}/{project.slug}/build/{quote(build_version)}", cache_key=cache_key)
        build = data.get('build') if isinstance(data, dict) else None
        if not isinstance(build, dict):
            raise TransportError(f"Malformed build details payload for {build_version}", status=200)
        return [normalize_job(j) for j in build.get('jobs') or []]

    def get_test_results(self, job: Job) -> JobTestResults:
        data = self._get(f"/buildjobs/{job.job_id}/tests", cache_key=f"appveyor:tests:{job.job_id}")
        return normalize_job_results(job.job_id, data)
