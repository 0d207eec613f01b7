"""Span exporters: UDP agent packets or an OTLP gRPC collector."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

import grpc
from opentelemetry.proto.collector.trace.v1.trace_service_pb2_grpc import (
    TraceServiceStub,
)

from spanstream._errors import ExportTimeoutError, MultipleErrors
from spanstream._otlp import build_export_request, serialize_span
from spanstream._spans import batch_spans
from spanstream._transport import (
    UDP_PACKET_MAX_LENGTH,
    PacketConnection,
    ReconnectingUDPConnection,
    UDPConnection,
)
from spanstream._uploader import BatchUploader

if TYPE_CHECKING:
    from spanstream._types import SpanData

logger = logging.getLogger("spanstream.exporter")


def _check_deadline(deadline: float | None) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise ExportTimeoutError("export deadline exceeded")


def new_agent_connection(
    host_port: str,
    max_packet_size: int = UDP_PACKET_MAX_LENGTH,
    *,
    attempt_reconnecting: bool = True,
    reconnect_interval_s: float = 30.0,
) -> PacketConnection:
    """Open the UDP connection used to reach an agent."""
    conn: PacketConnection
    if attempt_reconnecting:
        conn = ReconnectingUDPConnection(host_port, max_packet_size, reconnect_interval_s)
    else:
        conn = UDPConnection(host_port)
    conn.set_write_buffer(max_packet_size)
    return conn


class AgentExporter:
    """Exports SpanData batches as OTLP fragments packed into UDP packets.

    ``export_spans`` raises; ``export`` is the ``SpanHandler`` form for
    ``BackgroundProcessor`` and only logs failures.
    """

    def __init__(
        self,
        host_port: str,
        *,
        default_service_name: str,
        max_packet_size: int = UDP_PACKET_MAX_LENGTH,
        attempt_reconnecting: bool = True,
        reconnect_interval_s: float = 30.0,
        conn: PacketConnection | None = None,
    ) -> None:
        self._default_service_name = default_service_name
        if conn is None:
            conn = new_agent_connection(
                host_port,
                max_packet_size,
                attempt_reconnecting=attempt_reconnecting,
                reconnect_interval_s=reconnect_interval_s,
            )
        self._conn = conn
        self._uploader = BatchUploader(conn, max_packet_size)

    def export_spans(self, spans: Sequence[SpanData], deadline: float | None = None) -> int:
        """Upload ``spans`` and return the number of packets written.

        ``deadline`` is a ``time.monotonic()`` value checked before each batch.
        """
        _check_deadline(deadline)
        errors: list[BaseException] = []
        packets = 0
        for batch in batch_spans(spans, self._default_service_name):
            _check_deadline(deadline)
            payloads = [serialize_span(sd, batch.process) for sd in batch.spans]
            try:
                packets += self._uploader.upload(payloads)
            except MultipleErrors as exc:
                errors.extend(exc.errors)
        if errors:
            raise MultipleErrors(errors)
        return packets

    def export(self, spans: list[SpanData]) -> None:
        """Export a batch of spans. Logs and swallows all errors."""
        if not spans:
            return
        try:
            self.export_spans(spans)
        except Exception:  # noqa: BLE001
            logger.debug("Failed to export %d spans", len(spans), exc_info=True)

    def shutdown(self) -> None:
        """Close the UDP connection."""
        self._conn.close()


class OTLPExporter:
    """Exports SpanData batches over gRPC using the OTLP trace protocol."""

    def __init__(
        self,
        endpoint: str,
        *,
        default_service_name: str,
        insecure: bool = True,
        timeout_s: float = 10.0,
        api_key: str | None = None,
    ) -> None:
        self._default_service_name = default_service_name
        self._timeout_s = timeout_s
        self._metadata: list[tuple[str, str]] | None = None
        if api_key is not None:
            self._metadata = [("authorization", f"Bearer {api_key}")]

        if insecure:
            self._channel = grpc.insecure_channel(endpoint)
        else:
            self._channel = grpc.secure_channel(endpoint, grpc.ssl_channel_credentials())

        self._stub = TraceServiceStub(self._channel)  # type: ignore[no-untyped-call]

    def export_spans(self, spans: Sequence[SpanData], deadline: float | None = None) -> None:
        """Send ``spans`` in one request. gRPC errors propagate."""
        _check_deadline(deadline)
        timeout = self._timeout_s
        if deadline is not None:
            timeout = min(timeout, deadline - time.monotonic())
        request = build_export_request(batch_spans(spans, self._default_service_name))
        self._stub.Export(request, timeout=timeout, metadata=self._metadata)

    def export(self, spans: list[SpanData]) -> None:
        """Export a batch of spans. Logs and swallows all errors."""
        if not spans:
            return
        try:
            self.export_spans(spans)
        except Exception:  # noqa: BLE001
            logger.debug("Failed to export %d spans", len(spans), exc_info=True)

    def shutdown(self) -> None:
        """Close the gRPC channel."""
        try:
            self._channel.close()
        except Exception:  # noqa: BLE001
            pass
