import sys
from datetime import datetime
from pathlib import Path

import pytest

# Ensure project root is on sys.path for `import querybench.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from querybench.client import QueryResponse  # noqa: E402
from querybench.bench.runner import TimeRange  # noqa: E402


class FakeExecutor:
    """Replays queued responses (or exceptions) and records every call."""

    def __init__(self, responses=None, default=None):
        self.responses = list(responses or [])
        self.default = default
        self.calls = []

    def execute(self, query, start, end, signal=None):
        self.calls.append((query, start, end, signal))
        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(query, start, end, signal)
        return item


@pytest.fixture
def time_range():
    return TimeRange(datetime(2022, 8, 14, 16, 0, 0), datetime(2022, 8, 15, 0, 0, 0))


@pytest.fixture
def scalar_executor():
    return FakeExecutor(default=QueryResponse(rows=[[1]], elapsed_ms=10.0))


@pytest.fixture
def write_cases(tmp_path):
    def _write(text, name="cases.json"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write
