from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from ..client import DEFAULT_TIMEOUT_S, QueryExecutor, SeqQueryClient
from ..errors import ConfigurationError
from .cases import load_cases
from .export import export_results
from .reporter import open_reporter
from .runner import DEFAULT_RUNS, BenchRunResult, BenchRunner, TimeRange

LOGGER = logging.getLogger("querybench.bench")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Measure query performance")
    parser.add_argument(
        "-s",
        "--server",
        default=os.environ.get("QUERYBENCH_SERVER", "http://localhost:5341"),
        help="The address of the server to benchmark",
    )
    parser.add_argument(
        "-a",
        "--apikey",
        default=os.environ.get("QUERYBENCH_APIKEY"),
        help="The API key to use when connecting to the server",
    )
    parser.add_argument(
        "-r",
        "--runs",
        default=os.environ.get("QUERYBENCH_RUNS", str(DEFAULT_RUNS)),
        help="The number of runs to execute per case",
    )
    parser.add_argument(
        "-c",
        "--cases",
        default=os.environ.get("QUERYBENCH_CASES"),
        help="A JSON file containing the set of cases to run. Defaults to a standard set of cases.",
    )
    parser.add_argument(
        "--start",
        default=os.environ.get("QUERYBENCH_START"),
        help="ISO 8601 date/time to query from",
    )
    parser.add_argument(
        "--end",
        default=os.environ.get("QUERYBENCH_END"),
        help="ISO 8601 date/time to query to",
    )
    parser.add_argument(
        "--reporting-server",
        default=os.environ.get("QUERYBENCH_REPORTING_SERVER"),
        help="The address of a Seq server (or kafka://broker/topic) to send bench results to",
    )
    parser.add_argument(
        "--reporting-apikey",
        default=os.environ.get("QUERYBENCH_REPORTING_APIKEY"),
        help="The API key to use when connecting to the reporting server",
    )
    parser.add_argument(
        "--description",
        help="Optional description of the bench test run",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("QUERYBENCH_OUTPUT_DIR"),
        help="Directory to store a CSV table, chart and manifest of the results",
    )
    parser.add_argument(
        "--timeout",
        default=os.environ.get("QUERYBENCH_TIMEOUT", str(DEFAULT_TIMEOUT_S)),
        help="Seconds to wait for a single query to complete",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("QUERYBENCH_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def parse_timestamp(value: str | None, name: str) -> datetime:
    if value is None or not value.strip():
        raise ConfigurationError("Both the `start` and `end` arguments are required")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid `{name}` value {value!r}; expected an ISO 8601 date/time") from exc


def parse_time_range(start: str | None, end: str | None) -> TimeRange:
    time_range = TimeRange(parse_timestamp(start, "start"), parse_timestamp(end, "end"))
    try:
        ordered = time_range.start < time_range.end
    except TypeError as exc:
        raise ConfigurationError("`start` and `end` must both include, or both omit, a UTC offset") from exc
    if not ordered:
        raise ConfigurationError("`start` must be earlier than `end`")
    return time_range


def parse_positive(value: str, name: str, cast=int):
    try:
        parsed = cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid `{name}` value {value!r}") from exc
    if parsed <= 0:
        raise ConfigurationError(f"`{name}` must be greater than zero, got {value!r}")
    return parsed


def run_bench(args: argparse.Namespace, executor: QueryExecutor | None = None) -> list[BenchRunResult]:
    """Run every case and report each result as it completes.

    Configuration is validated before any query executes.
    """
    time_range = parse_time_range(args.start, args.end)
    runs = parse_positive(args.runs, "runs")
    timeout_s = parse_positive(args.timeout, "timeout", float)
    case_set = load_cases(args.cases)

    LOGGER.info(
        "Loaded %d case(s) from %s (hash %s)", len(case_set), case_set.source, case_set.hash
    )

    client = None
    if executor is None:
        client = SeqQueryClient(args.server, api_key=args.apikey, timeout_s=timeout_s)
        executor = client

    results: list[BenchRunResult] = []
    try:
        with open_reporter(args.reporting_server, args.reporting_apikey) as reporter:
            runner = BenchRunner(executor, args.server)
            for result in runner.run(case_set, runs, time_range, args.description):
                reporter.report(result)
                results.append(result)
    finally:
        if client is not None:
            client.close()
        if args.output_dir and results:
            _export(results, Path(args.output_dir))

    return results


def _export(results: list[BenchRunResult], output_dir: Path) -> None:
    # Export failures are only logged; the outcome of the run propagates unchanged.
    try:
        export_results(results, output_dir)
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("Failed to export bench results to %s: %s", output_dir, exc)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        run_bench(args)
    except KeyboardInterrupt:
        LOGGER.error("Benchmarking interrupted")
        return 1
    except Exception as exc:  # noqa: BLE001
        LOGGER.error("Benchmarking failed: %s", exc, exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
