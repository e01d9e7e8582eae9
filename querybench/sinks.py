from __future__ import annotations

import json
import logging
import queue
import threading
import time
from typing import Any, Protocol
from urllib.parse import urlsplit

import httpx
from kafka import KafkaProducer
from kafka.errors import KafkaError, NoBrokersAvailable

from .errors import ConfigurationError, ReportingDeliveryFailure

LOGGER = logging.getLogger("querybench.sinks")

CLEF_CONTENT_TYPE = "application/vnd.serilog.clef"
API_KEY_HEADER = "X-Seq-ApiKey"

DEFAULT_PERIOD_S = 0.05
DEFAULT_FLUSH_TIMEOUT_S = 0.5
DEFAULT_CONNECT_DEADLINE_S = 5.0


class ResultSink(Protocol):
    def emit(self, event: dict[str, Any]) -> None:
        ...

    def close(self) -> None:
        ...


class SeqSink:
    """Batches events and posts them to a Seq ingestion endpoint from a worker thread.

    ``emit`` never blocks on the network. ``close`` gives the worker at most
    ``flush_timeout`` seconds to deliver what is still queued.
    """

    def __init__(
        self,
        server_url: str,
        api_key: str | None = None,
        period: float = DEFAULT_PERIOD_S,
        flush_timeout: float = DEFAULT_FLUSH_TIMEOUT_S,
        batch_size: int = 100,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._period = period
        self._flush_timeout = flush_timeout
        self._batch_size = batch_size
        headers = {"Content-Type": CLEF_CONTENT_TYPE}
        if api_key:
            headers[API_KEY_HEADER] = api_key
        self._client = httpx.Client(
            base_url=self.server_url,
            headers=headers,
            timeout=httpx.Timeout(5.0, connect=flush_timeout),
            transport=transport,
        )
        self._queue: queue.Queue[dict[str, Any]] = queue.Queue()
        self._stop_event = threading.Event()
        self._closed = False
        self._abandoned = False
        self.failures = 0
        self._thread = threading.Thread(target=self._worker, name="seq-sink", daemon=True)
        self._thread.start()

    def emit(self, event: dict[str, Any]) -> None:
        if self._closed:
            raise ReportingDeliveryFailure("Seq sink is closed")
        self._queue.put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()
        self._thread.join(timeout=self._flush_timeout)
        if self._thread.is_alive():
            self._abandoned = True
            LOGGER.warning(
                "Seq sink did not drain within %.2f seconds; %d event(s) may be lost",
                self._flush_timeout,
                self._queue.qsize(),
            )
        self._client.close()

    def _worker(self) -> None:
        while True:
            try:
                batch = [self._queue.get(timeout=self._period)]
            except queue.Empty:
                if self._stop_event.is_set():
                    return
                continue
            self._fill_batch(batch)
            if self._abandoned:
                # The client is closed; whatever is left is dropped.
                self._discard_queued()
                return
            try:
                self._post(batch)
            except ReportingDeliveryFailure as exc:
                self.failures += 1
                LOGGER.warning("Failed to deliver %d event(s) to %s: %s", len(batch), self.server_url, exc)

    def _discard_queued(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def _fill_batch(self, batch: list[dict[str, Any]]) -> list[dict[str, Any]]:
        while len(batch) < self._batch_size:
            try:
                batch.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return batch

    def _post(self, batch: list[dict[str, Any]]) -> None:
        body = "\n".join(json.dumps(event, default=str) for event in batch)
        try:
            response = self._client.post("/api/events/raw", content=body.encode("utf-8"))
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ReportingDeliveryFailure(
                f"ingestion endpoint returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ReportingDeliveryFailure(str(exc) or type(exc).__name__) from exc
        except RuntimeError as exc:
            # Raised by httpx when the client was closed under a slow request.
            raise ReportingDeliveryFailure(str(exc)) from exc


def create_producer(
    broker: str,
    api_key: str | None = None,
    deadline_s: float = DEFAULT_CONNECT_DEADLINE_S,
) -> KafkaProducer:
    backoff = 0.5
    max_backoff = 2.0
    deadline = time.time() + deadline_s

    options: dict[str, Any] = {}
    if api_key:
        username, _, password = api_key.partition(":")
        options.update(
            security_protocol="SASL_PLAINTEXT",
            sasl_mechanism="PLAIN",
            sasl_plain_username=username,
            sasl_plain_password=password,
        )

    while True:
        try:
            return KafkaProducer(
                bootstrap_servers=broker,
                key_serializer=lambda v: v.encode("utf-8") if v else None,
                value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
                max_block_ms=int(deadline_s * 1000),
                **options,
            )
        except NoBrokersAvailable as exc:
            if time.time() >= deadline:
                raise ReportingDeliveryFailure(
                    f"failed to connect to Kafka broker within {deadline_s:g} seconds"
                ) from exc

            time.sleep(backoff)
            backoff = min(backoff * 1.5, max_backoff)


class KafkaSink:
    """Publishes result events to a Kafka topic, keyed by case id."""

    def __init__(
        self,
        broker: str,
        topic: str,
        api_key: str | None = None,
        flush_timeout: float = DEFAULT_FLUSH_TIMEOUT_S,
        producer: KafkaProducer | None = None,
    ) -> None:
        self.broker = broker
        self.topic = topic
        self._flush_timeout = flush_timeout
        self._producer = producer or create_producer(broker, api_key)

    def emit(self, event: dict[str, Any]) -> None:
        try:
            self._producer.send(self.topic, key=event.get("CaseId"), value=event)
        except KafkaError as exc:
            raise ReportingDeliveryFailure(f"failed to publish to {self.topic}: {exc}") from exc

    def close(self) -> None:
        try:
            self._producer.flush(timeout=self._flush_timeout)
        except KafkaError as exc:
            LOGGER.warning("Kafka sink did not flush within %.2f seconds: %s", self._flush_timeout, exc)
        finally:
            self._producer.close(timeout=self._flush_timeout)


def create_sink(address: str, api_key: str | None = None) -> ResultSink:
    """Build a sink from an address: ``kafka://broker:9092/topic`` or a Seq ``http(s)://`` URL."""
    parts = urlsplit(address)
    if parts.scheme == "kafka":
        topic = parts.path.strip("/")
        if not parts.netloc or not topic:
            raise ConfigurationError(
                f"Kafka reporting address {address!r} must look like kafka://broker:9092/topic"
            )
        return KafkaSink(parts.netloc, topic, api_key=api_key)
    if parts.scheme in {"http", "https"} and parts.netloc:
        return SeqSink(address, api_key=api_key)
    raise ConfigurationError(f"Unsupported reporting server address {address!r}")


__all__ = [
    "KafkaSink",
    "ResultSink",
    "SeqSink",
    "create_producer",
    "create_sink",
]
