import itertools
import unittest

import pytest

from errors import StatsSealedError
from fakes import entry, make_project
from ingest.appveyor import build_tests_link
from normalize.models import BuildTestResults, JobTestResults
from scoring.stats import TestStats, aggregate, clean_test_name


def _tagged(version, entries, job_id=None):
    return BuildTestResults(version, JobTestResults(job_id or f'job-{version}', entries))


def _link(version):
    return f"https://ci.example/build/{version}/tests"


class TestAggregate(unittest.TestCase):
    def test_single_build_scenario(self):
        project = make_project()
        sets = [_tagged('1.0.5', [entry('T1', 'passed'), entry('T2', 'failed'), entry('T1', 'passed')])]
        stats = aggregate(sets, lambda v: build_tests_link(project, v))

        self.assertEqual(stats['T1'].pass_count, 2)
        self.assertEqual(stats['T1'].fail_count, 0)
        self.assertEqual(stats['T1'].failing_build_links, [])
        self.assertEqual(stats['T2'].pass_count, 0)
        self.assertEqual(stats['T2'].fail_count, 1)
        self.assertEqual(len(stats['T2'].failing_build_links), 1)
        self.assertTrue(stats['T2'].failing_build_links[0].endswith('/1.0.5/tests'))

    def test_empty_input_gives_empty_table(self):
        stats = aggregate([], _link)
        self.assertEqual(len(stats), 0)
        self.assertEqual(stats.ranked(), [])
        self.assertEqual(stats.to_dict(), {})

    def test_same_test_failing_in_two_sets_counts_twice(self):
        sets = [
            _tagged('1.0.1', [entry('Suite.Flaky', 'failed')]),
            _tagged('1.0.1', [entry('Suite.Flaky', 'failed')], job_id='other-shard'),
        ]
        stats = aggregate(sets, _link)
        self.assertEqual(stats['Suite.Flaky'].fail_count, 2)
        self.assertEqual(stats['Suite.Flaky'].failing_build_links, [_link('1.0.1'), _link('1.0.1')])

    def test_running_skipped_and_unknown_outcomes_are_ignored(self):
        sets = [_tagged('2.0', [entry('A', 'running'), entry('A', 'skipped'), entry('A', 'inconclusive')])]
        stats = aggregate(sets, _link)
        self.assertIn('A', stats)
        self.assertEqual((stats['A'].pass_count, stats['A'].fail_count), (0, 0))

    def test_raw_names_that_clean_alike_stay_separate(self):
        sets = [_tagged('3.0', [
            entry('Ns.Tests.Cls.Method(a: 1)', 'failed'),
            entry('Ns.Tests.Cls.Method(a: 2)', 'passed'),
        ])]
        stats = aggregate(sets, _link)
        self.assertEqual(len(stats), 2)
        self.assertEqual({clean_test_name(n) for n, _ in stats.ranked()}, {'Cls.Method'})

    def test_second_fold_is_rejected(self):
        sets = [_tagged('1.0', [entry('T', 'failed')])]
        stats = TestStats().fold(sets, _link)
        with self.assertRaises(StatsSealedError):
            stats.fold(sets, _link)
        self.assertEqual(stats['T'].fail_count, 1)

    def test_aggregate_returns_fresh_table_each_time(self):
        sets = [_tagged('1.0', [entry('T', 'failed')])]
        first = aggregate(sets, _link)
        second = aggregate(sets, _link)
        self.assertIsNot(first, second)
        self.assertEqual(first.to_dict(), second.to_dict())

    def test_ranked_orders_by_descending_failures(self):
        sets = [
            _tagged('1', [entry('A', 'failed'), entry('B', 'passed'), entry('C', 'failed')]),
            _tagged('2', [entry('A', 'failed'), entry('B', 'failed')]),
            _tagged('3', [entry('A', 'failed')]),
        ]
        ranked = aggregate(sets, _link).ranked()
        self.assertEqual(ranked[0][0], 'A')
        self.assertEqual([b.fail_count for _, b in ranked], [3, 1, 1])


def _counts(stats):
    return {name: (b.pass_count, b.fail_count, sorted(b.failing_build_links)) for name, b in stats.buckets.items()}


def test_fold_is_order_independent():
    sets = [
        _tagged('1.0.1', [entry('A', 'passed'), entry('B', 'failed')]),
        _tagged('1.0.2', [entry('A', 'failed'), entry('C', 'skipped')]),
        _tagged('1.0.3', [entry('B', 'failed'), entry('A', 'passed')]),
        _tagged('1.0.3', [entry('C', 'passed')], job_id='shard-2'),
    ]
    expected = _counts(aggregate(sets, _link))
    for perm in itertools.permutations(sets):
        assert _counts(aggregate(list(perm), _link)) == expected


@pytest.mark.parametrize('raw, cleaned', [
    ('Ns.Sub.Class.Method', 'Class.Method'),
    ('Ns.Class.Method(x: 1, y: "a.b")', 'Class.Method'),
    ('Method', 'Method'),
    ('Class.Method', 'Class.Method'),
    ('(weird).Name', '(weird).Name'),
    ('', ''),
])
def test_clean_test_name(raw, cleaned):
    assert clean_test_name(raw) == cleaned
