from __future__ import annotations


class BenchError(Exception):
    """Base class for failures that abort a benchmark run."""


class ConfigurationError(BenchError):
    """Raised when the run cannot start: bad options or an unusable case set."""


class ExecutionError(BenchError):
    """Raised when a query execution fails part-way through a run."""

    def __init__(self, case_id: str, run: int, message: str) -> None:
        super().__init__(f"case {case_id!r} failed on run {run}: {message}")
        self.case_id = case_id
        self.run = run


class ReportingDeliveryFailure(Exception):
    """Raised by a result sink that could not deliver an event.

    Never fatal: the reporter logs it and carries on.
    """


__all__ = [
    "BenchError",
    "ConfigurationError",
    "ExecutionError",
    "ReportingDeliveryFailure",
]
