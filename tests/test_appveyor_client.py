import unittest
from unittest.mock import patch, Mock

from errors import ProjectLookupError, TransportError
from ingest.appveyor import AppVeyorClient, build_tests_link
from normalize.models import BuildStatus, Job, TestOutcome
from storage.cache import Cache

PROJECTS = [
    {'accountId': 1, 'accountName': 'appsvc', 'name': 'azure-webjobs-sdk', 'projectId': 7, 'slug': 'azure-webjobs-sdk-rqm4t'},
    {'accountId': 1, 'accountName': 'appsvc', 'name': 'azure-functions-host', 'projectId': 8, 'slug': 'azure-functions-host-y8o14'},
]

HISTORY = {
    'project': PROJECTS[1],
    'builds': [
        {'buildId': 9817916, 'version': '1.0.11033-sshumfpu', 'branch': 'dev', 'status': 'failed', 'finished': '2025-01-30T10:15:29.6513378+00:00'},
        {'buildId': 9817800, 'version': '1.0.11032-abcdefgh', 'branch': 'dev', 'status': 'success', 'finished': '2025-01-30T08:00:00Z', 'pullRequestId': '4411'},
        {'buildId': 9817700, 'version': '1.0.11031-zzzzzzzz', 'branch': 'dev', 'status': 'running'},
    ],
}

BUILD = {'project': PROJECTS[1], 'build': {'buildId': 9817916, 'version': '1.0.11033-sshumfpu', 'jobs': [
    {'jobId': 'a6od8bwe9rg0oy0i', 'status': 'failed', 'testsCount': 3, 'failedTestsCount': 1},
]}}

TESTS = {'failed': 1, 'passed': 1, 'total': 3, 'list': [
    {'name': 'Ns.Cls.Passes', 'fileName': 'Tests.dll', 'outcome': 'Passed', 'duration': 12, 'created': '2025-01-30T10:00:00Z'},
    {'name': 'Ns.Cls.Fails', 'fileName': 'Tests.dll', 'outcome': 'Failed', 'duration': 40, 'created': '2025-01-30T10:00:01Z'},
    {'name': 'Ns.Cls.Skipped', 'fileName': 'Tests.dll', 'outcome': 'Ignored', 'duration': 0, 'created': '2025-01-30T10:00:02Z'},
]}


def _resp(status, body):
    resp = Mock()
    resp.status_code = status
    resp.json.return_value = body
    resp.text = str(body)
    resp.headers = {}
    return resp


def _router(calls):
    def fake_get(url, headers=None, params=None, timeout=None):
        calls.append((url, dict(params or {}), dict(headers or {})))
        if url.endswith('/projects'):
            return _resp(200, PROJECTS)
        if url.endswith('/history'):
            return _resp(200, HISTORY)
        if '/build/' in url:
            return _resp(200, BUILD)
        if url.endswith('/buildjobs/missing/tests'):
            return _resp(404, {'message': 'Job not found'})
        if url.endswith('/tests'):
            return _resp(200, TESTS)
        return _resp(404, {'message': 'not found'})
    return fake_get


class TestAppVeyorClient(unittest.TestCase):
    def setUp(self):
        self.calls = []
        patcher = patch('storage.cache.requests.get', side_effect=_router(self.calls))
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = AppVeyorClient('secret', endpoint='https://ci.example/api/')

    def test_project_lookup_is_case_insensitive(self):
        project = self.client.get_project_by_name('Azure-Functions-Host')
        self.assertEqual(project.slug, 'azure-functions-host-y8o14')
        self.assertEqual(project.account_name, 'appsvc')
        url, _, headers = self.calls[0]
        self.assertEqual(url, 'https://ci.example/api/projects')
        self.assertEqual(headers['Authorization'], 'Bearer secret')

    def test_missing_project_raises(self):
        with self.assertRaises(ProjectLookupError):
            self.client.get_project_by_name('nope')

    def test_history_page_parameters_and_parsing(self):
        project = self.client.get_project_by_name('azure-functions-host')
        builds = self.client.get_build_history_page(project, 'dev', 9817917)
        url, params, _ = self.calls[-1]
        self.assertEqual(url, 'https://ci.example/api/projects/appsvc/azure-functions-host-y8o14/history')
        self.assertEqual(params, {'recordsNumber': 50, 'branch': 'dev', 'startBuildId': 9817917})
        self.assertEqual([b.build_id for b in builds], [9817916, 9817800, 9817700])
        self.assertEqual(builds[0].status, BuildStatus.FAILED)
        self.assertEqual(builds[0].finished.microsecond, 651337)
        self.assertTrue(builds[1].is_pull_request)
        self.assertIsNone(builds[2].finished)
        self.assertFalse(builds[2].is_terminal)

    def test_first_history_page_has_no_cursor(self):
        project = self.client.get_project_by_name('azure-functions-host')
        self.client.get_build_history_page(project, 'dev')
        self.assertNotIn('startBuildId', self.calls[-1][1])

    def test_jobs_and_test_results(self):
        project = self.client.get_project_by_name('azure-functions-host')
        jobs = self.client.list_jobs(project, '1.0.11033-sshumfpu')
        self.assertEqual([j.job_id for j in jobs], ['a6od8bwe9rg0oy0i'])
        self.assertEqual(jobs[0].failed_tests_count, 1)
        self.assertTrue(self.calls[-1][0].endswith('/projects/appsvc/azure-functions-host-y8o14/build/1.0.11033-sshumfpu'))

        results = self.client.get_test_results(jobs[0])
        self.assertTrue(self.calls[-1][0].endswith('/buildjobs/a6od8bwe9rg0oy0i/tests'))
        self.assertEqual((results.passed, results.failed, results.total), (1, 1, 3))
        self.assertEqual([e.outcome for e in results.entries], [TestOutcome.PASSED, TestOutcome.FAILED, 'ignored'])

    def test_non_success_status_raises_transport_error(self):
        with self.assertRaises(TransportError) as ctx:
            self.client.get_test_results(Job('missing'))
        self.assertEqual(ctx.exception.status, 404)
        self.assertTrue(ctx.exception.url.endswith('/buildjobs/missing/tests'))

    def test_non_numeric_count_raises_transport_error(self):
        bad = dict(TESTS, total='lots')
        with patch('storage.cache.requests.get', return_value=_resp(200, bad)):
            with self.assertRaises(TransportError):
                self.client.get_test_results(Job('a6od8bwe9rg0oy0i'))

    def test_malformed_payload_raises_transport_error(self):
        with patch('storage.cache.requests.get', return_value=_resp(200, {'unexpected': True})):
            with self.assertRaises(TransportError):
                self.client.list_projects()

    def test_immutable_payloads_are_cached(self):
        cache = Cache()
        try:
            client = AppVeyorClient('secret', endpoint='https://ci.example/api', cache=cache)
            client.get_test_results(Job('a6od8bwe9rg0oy0i'))
            client.get_test_results(Job('a6od8bwe9rg0oy0i'))
            test_calls = [c for c in self.calls if c[0].endswith('/tests')]
            self.assertEqual(len(test_calls), 1)
            self.assertIsNotNone(cache.get('appveyor:tests:a6od8bwe9rg0oy0i'))
        finally:
            cache.close()

    def test_newest_history_page_is_never_cached(self):
        cache = Cache()
        try:
            client = AppVeyorClient('secret', endpoint='https://ci.example/api', cache=cache)
            project = client.get_project_by_name('azure-functions-host')
            client.get_build_history_page(project, 'dev')
            client.get_build_history_page(project, 'dev')
            history_calls = [c for c in self.calls if c[0].endswith('/history')]
            self.assertEqual(len(history_calls), 2)
        finally:
            cache.close()


def test_build_tests_link():
    from normalize.models import Project
    project = Project('1', 'appsvc', 'azure-functions-host', '8', 'azure-functions-host-y8o14')
    assert build_tests_link(project, '1.0.5') == 'https://ci.appveyor.com/project/appsvc/azure-functions-host-y8o14/build/1.0.5/tests'
    assert build_tests_link(project, '1.0.5', web_url='https://ci.example/') == 'https://ci.example/project/appsvc/azure-functions-host-y8o14/build/1.0.5/tests'
