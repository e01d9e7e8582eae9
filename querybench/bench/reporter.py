from __future__ import annotations

import contextlib
import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable

from ..errors import ReportingDeliveryFailure
from ..sinks import ResultSink, create_sink
from .runner import BenchRunResult

LOGGER = logging.getLogger("querybench.bench.reporter")
REPORT_LOGGER = logging.getLogger("querybench.report")

MESSAGE_TEMPLATE = (
    "Bench run {CasesHash}/{BenchRunId} against {Server} for query {CaseId}: "
    "mean {MeanElapsed:N0} ms with relative dispersion {RelativeStandardDeviationElapsed:N2}"
)

_TOKEN = re.compile(r"\{(?P<name>\w+)(?::(?P<format>\w+))?\}")


def format_value(value: Any, fmt: str | None) -> str:
    """Render a property value using a .NET-style numeric format (``N0``, ``N2``)."""
    if fmt and fmt[0] in "Nn" and isinstance(value, (int, float)):
        digits = int(fmt[1:] or 2)
        return f"{value:,.{digits}f}"
    return str(value)


def render_message(template: str, properties: dict[str, Any]) -> tuple[str, list[str]]:
    """Render ``template``; also return the renderings of formatted tokens."""
    renderings: list[str] = []

    def substitute(match: re.Match[str]) -> str:
        name = match.group("name")
        if name not in properties:
            return match.group(0)
        rendered = format_value(properties[name], match.group("format"))
        if match.group("format"):
            renderings.append(rendered)
        return rendered

    return _TOKEN.sub(substitute, template), renderings


def render_event(result: BenchRunResult, timestamp: datetime | None = None) -> dict[str, Any]:
    """Build the structured event for one result in compact log event format."""
    properties = result.to_properties()
    message, renderings = render_message(MESSAGE_TEMPLATE, properties)
    timestamp = timestamp or datetime.now(timezone.utc)
    event: dict[str, Any] = {
        "@t": timestamp.isoformat(),
        "@mt": MESSAGE_TEMPLATE,
        "@m": message,
        "@r": renderings,
    }
    event.update(properties)
    return event


class Reporter(contextlib.AbstractContextManager):
    """Writes each result to the console log and to any remote sinks.

    Exiting the context closes every sink, whether or not the run succeeded.
    """

    def __init__(self, sinks: Iterable[ResultSink] = ()) -> None:
        self._sinks = list(sinks)
        self.reported = 0

    def report(self, result: BenchRunResult) -> dict[str, Any]:
        event = render_event(result)
        properties = {key: value for key, value in event.items() if not key.startswith("@")}
        REPORT_LOGGER.info(event["@m"], extra={"properties": properties})

        for sink in self._sinks:
            try:
                sink.emit(event)
            except ReportingDeliveryFailure as exc:
                LOGGER.warning("Result for case %s was not delivered: %s", result.case_id, exc)
        self.reported += 1
        return event

    def close(self) -> None:
        for sink in self._sinks:
            try:
                sink.close()
            except ReportingDeliveryFailure as exc:
                LOGGER.warning("Reporting sink did not close cleanly: %s", exc)
        self._sinks.clear()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_reporter(reporting_server: str | None = None, api_key: str | None = None) -> Reporter:
    """Create a reporter with a remote sink when ``reporting_server`` is set.

    A sink that cannot be created leaves the reporter console-only.
    """
    sinks: list[ResultSink] = []
    if reporting_server and reporting_server.strip():
        try:
            sinks.append(create_sink(reporting_server.strip(), api_key or None))
        except ReportingDeliveryFailure as exc:
            LOGGER.warning(
                "Reporting server %s is unavailable, results go to the console only: %s",
                reporting_server,
                exc,
            )
    return Reporter(sinks)


__all__ = [
    "MESSAGE_TEMPLATE",
    "Reporter",
    "format_value",
    "open_reporter",
    "render_event",
    "render_message",
]
