"""
Per-test pass/fail statistics folded from fetched job results.
"""
from typing import Callable, Dict, Iterable, List, Tuple

from errors import StatsSealedError
from normalize.models import BuildTestResults, TestOutcome


class TestBucket:
    """
    Counters for one raw test name plus links to the builds where it failed.
    """
    __test__ = False

    def __init__(self, pass_count: int = 0, fail_count: int = 0, failing_build_links: List[str] = None):
        self.pass_count = pass_count
        self.fail_count = fail_count
        self.failing_build_links = failing_build_links if failing_build_links is not None else []

    def to_dict(self) -> dict:
        return {
            'pass_count': self.pass_count,
            'fail_count': self.fail_count,
            'failing_build_links': list(self.failing_build_links),
        }


class TestStats:
    """
    Statistics table keyed by raw test name.

    A table is filled by exactly one fold; folding a second time raises StatsSealedError
    instead of double counting. Use aggregate() to get a fresh table per run.
    """
    __test__ = False

    def __init__(self):
        self.buckets: Dict[str, TestBucket] = {}
        self.sealed = False

    def fold(self, build_results: Iterable[BuildTestResults], link_for: Callable[[str], str]) -> 'TestStats':
        if self.sealed:
            raise StatsSealedError("TestStats table has already been folded; build a new one per run")
        for tagged in build_results:
            for entry in tagged.results.entries:
                bucket = self.buckets.get(entry.name)
                if bucket is None:
                    bucket = self.buckets[entry.name] = TestBucket()
                if entry.outcome == TestOutcome.PASSED:
                    bucket.pass_count += 1
                elif entry.outcome == TestOutcome.FAILED:
                    bucket.fail_count += 1
                    bucket.failing_build_links.append(link_for(tagged.build_version))
                # running, skipped and unknown outcomes only register the test name
        self.sealed = True
        return self

    def ranked(self) -> List[Tuple[str, TestBucket]]:
        """Buckets ordered by descending fail count. Order among equal fail counts is not defined."""
        return sorted(self.buckets.items(), key=lambda kv: kv[1].fail_count, reverse=True)

    def to_dict(self) -> Dict[str, dict]:
        return {name: bucket.to_dict() for name, bucket in self.buckets.items()}

    def __len__(self):
        return len(self.buckets)

    def __contains__(self, name):
        return name in self.buckets

    def __getitem__(self, name) -> TestBucket:
        return self.buckets[name]


def aggregate(build_results: Iterable[BuildTestResults], link_for: Callable[[str], str]) -> TestStats:
    """Fold all tagged result sets into a new TestStats table."""
    return TestStats().fold(build_results, link_for)


def clean_test_name(name: str) -> str:
    """
    Display form of a raw test name: drop any parameter list and keep only Class.Method.
    Used at render time only, so names that clean to the same text remain separate rows.
    """
    i = name.find('(')
    if i > 0:
        name = name[:i]
    parts = name.split('.')
    if len(parts) >= 2:
        name = f"{parts[-2]}.{parts[-1]}"
    return name
