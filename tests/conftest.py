import os
import sys

import pytest

# top-level modules (analyzer, cli, storage, ...) live at the repo root
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from storage.retry import reset_retry  # noqa: E402


@pytest.fixture(autouse=True)
def _clear_retry_overrides():
    """cli.main() sets process-wide retry overrides; keep them from leaking between tests."""
    yield
    reset_retry()
