from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Union

from ..client import QueryExecutor, QueryResponse
from ..errors import ConfigurationError, ExecutionError
from .cases import BenchCase, BenchCaseSet
from .timings import TimingAccumulator, TimingStatistics

LOGGER = logging.getLogger("querybench.bench.runner")

DEFAULT_RUNS = 3


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class BenchRunResult:
    """Statistics and provenance for one case of a bench run.

    Optional fields are ``None`` when absent; ``to_properties`` leaves them out.
    """

    bench_run_id: str
    cases_hash: str
    case_id: str
    server: str
    query: str
    start: datetime
    end: datetime
    runs: int
    min_elapsed: float
    max_elapsed: float
    mean_elapsed: float
    standard_deviation_elapsed: float
    relative_standard_deviation_elapsed: float
    signal_expression: str | None = None
    description: str | None = None
    last_result: Any = None

    def to_properties(self) -> dict[str, Any]:
        properties = {
            "BenchRunId": self.bench_run_id,
            "CasesHash": self.cases_hash,
            "CaseId": self.case_id,
            "Server": self.server,
            "Query": self.query,
            "Start": self.start.isoformat(),
            "End": self.end.isoformat(),
            "Runs": self.runs,
            "MinElapsed": self.min_elapsed,
            "MaxElapsed": self.max_elapsed,
            "MeanElapsed": self.mean_elapsed,
            "StandardDeviationElapsed": self.standard_deviation_elapsed,
            "RelativeStandardDeviationElapsed": self.relative_standard_deviation_elapsed,
        }
        if self.signal_expression is not None:
            properties["SignalExpression"] = self.signal_expression
        if self.description is not None:
            properties["Description"] = self.description
        if self.last_result is not None:
            properties["LastResult"] = self.last_result
        return properties


@dataclass(frozen=True)
class CaseMeasurement:
    statistics: TimingStatistics
    last_result: Any = None


CaseOutcome = Union[CaseMeasurement, ExecutionError]


def new_bench_run_id() -> str:
    return uuid.uuid4().hex[:4]


def scalar_result(response: QueryResponse) -> Any:
    """Return the single value of a one-row, one-column response, else ``None``."""
    rows = response.rows
    if rows is not None and len(rows) == 1 and len(rows[0]) == 1:
        return rows[0][0]
    return None


class BenchRunner:
    """Measures every case of a case set against one query executor."""

    def __init__(self, executor: QueryExecutor, server: str) -> None:
        self._executor = executor
        self._server = server

    def run(
        self,
        case_set: BenchCaseSet,
        runs: int,
        time_range: TimeRange,
        description: str | None = None,
    ) -> Iterator[BenchRunResult]:
        """Return an iterator yielding one result per case, in case-set order.

        Each result is yielded as soon as its case finishes. Iteration stops at
        the first failing execution by raising its ``ExecutionError``.
        """
        if runs < 1:
            raise ConfigurationError(f"The number of runs must be at least 1, got {runs}")
        if description is not None and not description.strip():
            description = None
        return self._iter_results(case_set, runs, time_range, description)

    def _iter_results(
        self,
        case_set: BenchCaseSet,
        runs: int,
        time_range: TimeRange,
        description: str | None,
    ) -> Iterator[BenchRunResult]:
        bench_run_id = new_bench_run_id()
        LOGGER.info(
            "Starting bench run %s/%s: %d case(s), %d run(s) each",
            case_set.hash,
            bench_run_id,
            len(case_set),
            runs,
        )

        for case in case_set:
            outcome = self._measure_case(case, runs, time_range)
            if isinstance(outcome, ExecutionError):
                raise outcome

            stats = outcome.statistics
            yield BenchRunResult(
                bench_run_id=bench_run_id,
                cases_hash=case_set.hash,
                case_id=case.id,
                server=self._server,
                query=case.query,
                start=time_range.start,
                end=time_range.end,
                runs=runs,
                min_elapsed=stats.min,
                max_elapsed=stats.max,
                mean_elapsed=stats.mean,
                standard_deviation_elapsed=stats.standard_deviation,
                relative_standard_deviation_elapsed=stats.relative_standard_deviation,
                signal_expression=case.signal_expression,
                description=description,
                last_result=outcome.last_result,
            )

    def _measure_case(self, case: BenchCase, runs: int, time_range: TimeRange) -> CaseOutcome:
        LOGGER.info("Running case %s (runs=%d)", case.id, runs)
        timings = TimingAccumulator()
        last_result: Any = None

        for run_num in range(1, runs + 1):
            try:
                response = self._executor.execute(
                    case.query,
                    time_range.start,
                    time_range.end,
                    case.signal_expression,
                )
            except Exception as exc:  # noqa: BLE001
                error = ExecutionError(case.id, run_num, str(exc) or type(exc).__name__)
                error.__cause__ = exc
                return error

            timings.push(response.elapsed_ms)
            LOGGER.debug(
                "  Run %d/%d for case %s: %.3f ms",
                run_num,
                runs,
                case.id,
                response.elapsed_ms,
            )
            # Only the final run's scalar is kept.
            if run_num == runs:
                last_result = scalar_result(response)

        return CaseMeasurement(statistics=timings.statistics(), last_result=last_result)


__all__ = [
    "BenchRunResult",
    "BenchRunner",
    "CaseMeasurement",
    "CaseOutcome",
    "DEFAULT_RUNS",
    "TimeRange",
    "new_bench_run_id",
    "scalar_result",
]
