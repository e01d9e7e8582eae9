import pytest

from querybench.bench.cases import BenchCase, BenchCaseSet
from querybench.bench.runner import BenchRunner, scalar_result
from querybench.client import QueryError, QueryResponse
from querybench.errors import ConfigurationError, ExecutionError

from conftest import FakeExecutor


def _case_set(*cases):
    return BenchCaseSet(cases=tuple(cases), hash="AB12", source="<test>")


def test_single_case_end_to_end(scalar_executor, time_range):
    runner = BenchRunner(scalar_executor, "http://seq.example")
    results = list(runner.run(_case_set(BenchCase("q1", "select 1")), 3, time_range))

    assert len(results) == 1
    result = results[0]
    assert result.runs == 3
    assert result.mean_elapsed == 10
    assert result.min_elapsed == result.max_elapsed == 10
    assert result.standard_deviation_elapsed == 0
    assert result.relative_standard_deviation_elapsed == 0
    assert result.last_result == 1
    assert result.case_id == "q1"
    assert result.query == "select 1"
    assert result.cases_hash == "AB12"
    assert result.server == "http://seq.example"
    assert result.start == time_range.start
    assert result.end == time_range.end
    assert result.signal_expression is None
    assert result.description is None
    assert len(scalar_executor.calls) == 3


def test_every_run_uses_the_same_range_and_signal(scalar_executor, time_range):
    runner = BenchRunner(scalar_executor, "http://seq.example")
    case = BenchCase("warn", "select count(*) from stream", "signal-m33302")
    list(runner.run(_case_set(case), 4, time_range))

    assert scalar_executor.calls == [
        ("select count(*) from stream", time_range.start, time_range.end, "signal-m33302")
    ] * 4


def test_results_share_one_run_id_and_follow_case_order(scalar_executor, time_range):
    runner = BenchRunner(scalar_executor, "http://seq.example")
    cases = _case_set(BenchCase("b", "select 2"), BenchCase("a", "select 1"), BenchCase("c", "select 3"))
    results = list(runner.run(cases, 1, time_range))

    assert [r.case_id for r in results] == ["b", "a", "c"]
    assert len({r.bench_run_id for r in results}) == 1
    assert len(results[0].bench_run_id) == 4


def test_separate_runs_get_fresh_ids(scalar_executor, time_range):
    runner = BenchRunner(scalar_executor, "http://seq.example")
    cases = _case_set(BenchCase("a", "select 1"))
    ids = {next(iter(runner.run(cases, 1, time_range))).bench_run_id for _ in range(20)}
    assert len(ids) > 1


def test_statistics_come_from_all_runs(time_range):
    executor = FakeExecutor(
        [
            QueryResponse(rows=[[1]], elapsed_ms=2.0),
            QueryResponse(rows=[[1]], elapsed_ms=4.0),
            QueryResponse(rows=[[1]], elapsed_ms=6.0),
        ]
    )
    result = next(iter(BenchRunner(executor, "s").run(_case_set(BenchCase("a", "q")), 3, time_range)))
    assert result.min_elapsed == 2.0
    assert result.max_elapsed == 6.0
    assert result.mean_elapsed == pytest.approx(4.0)
    assert result.standard_deviation_elapsed == pytest.approx((8 / 3) ** 0.5)
    assert result.relative_standard_deviation_elapsed == pytest.approx((8 / 3) ** 0.5 / 4)


@pytest.mark.parametrize(
    "rows, expected",
    [
        ([[42]], 42),
        ([["text"]], "text"),
        ([[1, 2]], None),
        ([[1], [2]], None),
        ([], None),
        ([[]], None),
        ([[None]], None),
    ],
)
def test_scalar_result(rows, expected):
    assert scalar_result(QueryResponse(rows=rows, elapsed_ms=1.0)) == expected


def test_last_result_comes_only_from_the_final_run(time_range):
    executor = FakeExecutor(
        [
            QueryResponse(rows=[[7]], elapsed_ms=1.0),
            QueryResponse(rows=[[8]], elapsed_ms=1.0),
            QueryResponse(rows=[[1, 2]], elapsed_ms=1.0),
        ]
    )
    result = next(iter(BenchRunner(executor, "s").run(_case_set(BenchCase("a", "q")), 3, time_range)))
    assert result.last_result is None


def test_last_result_from_final_run_of_many(time_range):
    executor = FakeExecutor(
        [
            QueryResponse(rows=[], elapsed_ms=1.0),
            QueryResponse(rows=[[42]], elapsed_ms=1.0),
        ]
    )
    result = next(iter(BenchRunner(executor, "s").run(_case_set(BenchCase("a", "q")), 2, time_range)))
    assert result.last_result == 42


def test_description_is_carried_when_supplied(scalar_executor, time_range):
    runner = BenchRunner(scalar_executor, "s")
    cases = _case_set(BenchCase("a", "q"))
    assert next(iter(runner.run(cases, 1, time_range, "nightly"))).description == "nightly"
    assert next(iter(runner.run(cases, 1, time_range, "  "))).description is None


def test_failure_aborts_the_run_after_reporting_completed_cases(time_range):
    boom = QueryError("server went away")
    executor = FakeExecutor(
        [QueryResponse(rows=[[1]], elapsed_ms=5.0), boom],
        default=QueryResponse(rows=[[1]], elapsed_ms=5.0),
    )
    cases = _case_set(BenchCase("first", "select 1"), BenchCase("second", "select 2"))
    produced = []

    with pytest.raises(ExecutionError) as excinfo:
        for result in BenchRunner(executor, "s").run(cases, 1, time_range):
            produced.append(result.case_id)

    assert produced == ["first"]
    assert excinfo.value.case_id == "second"
    assert excinfo.value.run == 1
    assert excinfo.value.__cause__ is boom
    assert len(executor.calls) == 2


def test_failure_mid_case_stops_further_runs(time_range):
    executor = FakeExecutor(
        [QueryResponse(rows=[[1]], elapsed_ms=5.0), RuntimeError("timeout")],
        default=QueryResponse(rows=[[1]], elapsed_ms=5.0),
    )
    cases = _case_set(BenchCase("a", "q"), BenchCase("b", "q"))
    with pytest.raises(ExecutionError) as excinfo:
        list(BenchRunner(executor, "s").run(cases, 3, time_range))
    assert excinfo.value.case_id == "a"
    assert excinfo.value.run == 2
    assert len(executor.calls) == 2


def test_results_are_streamed_case_by_case(scalar_executor, time_range):
    cases = _case_set(BenchCase("a", "q"), BenchCase("b", "q"))
    results = BenchRunner(scalar_executor, "s").run(cases, 2, time_range)
    next(results)
    assert len(scalar_executor.calls) == 2


@pytest.mark.parametrize("runs", [0, -1])
def test_non_positive_run_count_is_rejected(scalar_executor, time_range, runs):
    with pytest.raises(ConfigurationError):
        BenchRunner(scalar_executor, "s").run(_case_set(BenchCase("a", "q")), runs, time_range)
    assert scalar_executor.calls == []
