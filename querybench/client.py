from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

LOGGER = logging.getLogger("querybench.client")

DEFAULT_TIMEOUT_S = 300.0
API_KEY_HEADER = "X-Seq-ApiKey"


class QueryError(Exception):
    """Raised when the query endpoint cannot execute a query."""


@dataclass
class QueryResponse:
    rows: list[list[Any]]
    elapsed_ms: float
    columns: list[str] = field(default_factory=list)


class QueryExecutor(Protocol):
    def execute(
        self,
        query: str,
        start: datetime,
        end: datetime,
        signal: str | None = None,
    ) -> QueryResponse:
        ...


def format_utc(value: datetime) -> str:
    """Render a timestamp the way the data endpoint expects range bounds."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds") + "Z"


class SeqQueryClient:
    """Runs queries against the ``api/data`` endpoint of a Seq-compatible server."""

    def __init__(
        self,
        server_url: str,
        api_key: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if api_key:
            headers[API_KEY_HEADER] = api_key
        self._client = httpx.Client(
            base_url=self.server_url,
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    def execute(
        self,
        query: str,
        start: datetime,
        end: datetime,
        signal: str | None = None,
    ) -> QueryResponse:
        params = {
            "q": query,
            "rangeStartUtc": format_utc(start),
            "rangeEndUtc": format_utc(end),
        }
        if signal:
            params["signal"] = signal

        LOGGER.debug("Executing query %r against %s", query, self.server_url)
        try:
            response = self._client.get("/api/data", params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise QueryError(
                f"query endpoint returned HTTP {exc.response.status_code}: {_error_detail(exc.response)}"
            ) from exc
        except httpx.HTTPError as exc:
            raise QueryError(f"query request to {self.server_url} failed: {exc}") from exc
        except ValueError as exc:
            raise QueryError("query endpoint returned a malformed response") from exc

        return parse_query_response(payload)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SeqQueryClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def parse_query_response(payload: Any) -> QueryResponse:
    if not isinstance(payload, dict):
        raise QueryError("query endpoint returned a malformed response")

    error = payload.get("Error")
    if error:
        reasons = payload.get("Reasons") or []
        detail = "; ".join(str(reason) for reason in reasons)
        raise QueryError(f"{error} ({detail})" if detail else str(error))

    statistics = payload.get("Statistics") or {}
    elapsed = statistics.get("ElapsedMilliseconds")
    if elapsed is None:
        raise QueryError("query response carries no elapsed time")

    rows = payload.get("Rows") or []
    columns = payload.get("Columns") or []
    return QueryResponse(
        rows=[list(row) for row in rows],
        elapsed_ms=float(elapsed),
        columns=list(columns),
    )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, dict) and body.get("Error"):
        return str(body["Error"])
    return response.reason_phrase


__all__ = [
    "QueryError",
    "QueryExecutor",
    "QueryResponse",
    "SeqQueryClient",
    "format_utc",
    "parse_query_response",
]
