"""Pipeline wiring and the module-level default pipeline."""

from __future__ import annotations

import atexit
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from spanstream._attributes import AttributeMap, AttributeValue
from spanstream._buffer import RingBuffer
from spanstream._bus import EventBuffer
from spanstream._config import PipelineConfig
from spanstream._exporter import AgentExporter, OTLPExporter
from spanstream._meter import Meter
from spanstream._observer import ObserverRegistry
from spanstream._processor import BackgroundProcessor
from spanstream._reader import Reader, ReaderObserver
from spanstream._spans import SpanAssembler, span_record_to_data
from spanstream._tracer import Tracer
from spanstream._types import Resource, SpanData, SpanRecord

logger = logging.getLogger("spanstream.sdk")


class SpanExporter(Protocol):
    def export(self, spans: list[SpanData]) -> None: ...

    def shutdown(self) -> None: ...


def _build_exporter(config: PipelineConfig) -> SpanExporter:
    if config.collector_endpoint:
        return OTLPExporter(
            config.collector_endpoint,
            default_service_name=config.service_name,
        )
    return AgentExporter(
        config.host_port,
        default_service_name=config.service_name,
        max_packet_size=config.max_packet_size,
        attempt_reconnecting=config.attempt_reconnecting,
        reconnect_interval_s=config.reconnect_interval_ms / 1000.0,
    )


class Pipeline:
    """Owns one registry and everything downstream of it.

    registry -> event buffer -> reader observer -> span assembler
    -> span ring buffer -> background processor -> exporter
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        readers: Iterable[Reader] = (),
        exporter: SpanExporter | None = None,
    ) -> None:
        self.config = config
        attrs: dict[str, AttributeValue] = dict(config.resource_attributes)
        attrs.setdefault("service.name", config.service_name)
        self.resource = Resource(AttributeMap(attrs))

        self.registry = ObserverRegistry()
        self._span_buffer: RingBuffer[SpanData] = RingBuffer(config.span_buffer_size)
        self._assembler = SpanAssembler(self._on_span)
        self.reader_observer = ReaderObserver(
            self._assembler,
            *readers,
            on_abandon=self._assembler.discard,
            max_spans=config.max_open_spans,
        )
        self._event_buffer: EventBuffer | None = EventBuffer(
            config.event_buffer_size, self.reader_observer
        )
        self.registry.register(self._event_buffer)
        self._exporter = exporter
        self._processor: BackgroundProcessor | None = None

    def _on_span(self, record: SpanRecord) -> None:
        self._span_buffer.enqueue(span_record_to_data(record, self.resource))

    def start(self) -> None:
        """Start exporting. Events recorded earlier are kept and exported."""
        if self._processor is not None or self._event_buffer is None:
            return
        if self._exporter is None:
            self._exporter = _build_exporter(self.config)
        self._processor = BackgroundProcessor(
            self._span_buffer,
            batch_size=self.config.batch_size,
            flush_interval_ms=self.config.flush_interval_ms,
            handler=self._exporter.export,
        )
        self._processor.start()

    def shutdown(self) -> None:
        """Deliver pending events, flush spans, and release resources."""
        if self._event_buffer is not None:
            self.registry.unregister(self._event_buffer)
            self._event_buffer.close()
            if self._event_buffer.dropped:
                logger.warning("%d events were dropped", self._event_buffer.dropped)
            self._event_buffer = None
            abandoned = self.reader_observer.clear()
            if abandoned:
                logger.warning("%d spans never ended and were not exported", abandoned)
        if self._processor is not None:
            self._processor.stop()
            self._processor = None
        if self._exporter is not None:
            self._exporter.shutdown()
            self._exporter = None

    def tracer(self, attributes: Mapping[str, AttributeValue] | None = None) -> Tracer:
        return Tracer(self.registry, attributes=attributes)

    def meter(self) -> Meter:
        return Meter(self.registry)

    @property
    def event_buffer(self) -> EventBuffer | None:
        return self._event_buffer

    @property
    def span_buffer(self) -> RingBuffer[SpanData]:
        return self._span_buffer


class _NoopPipeline:
    """Fallback used before ``init``. Events reach no observer."""

    def __init__(self) -> None:
        self.registry = ObserverRegistry()
        self._tracer = Tracer(self.registry)

    def tracer(self, attributes: Mapping[str, AttributeValue] | None = None) -> Tracer:
        if attributes:
            return Tracer(self.registry, attributes=attributes)
        return self._tracer

    def meter(self) -> Meter:
        return Meter(self.registry)


_pipeline: Pipeline | None = None
_noop = _NoopPipeline()


def _get_pipeline() -> Pipeline | _NoopPipeline:
    """Return the active pipeline or a noop fallback."""
    if _pipeline is not None:
        return _pipeline
    return _noop


def init(*, readers: Iterable[Reader] = (), **config: Any) -> Pipeline:
    """Start the default pipeline.

    Keyword arguments are ``PipelineConfig`` fields; anything not given is
    read from ``SPANSTREAM_*`` environment variables.
    """
    global _pipeline  # noqa: PLW0603

    if _pipeline is not None:
        _pipeline.shutdown()

    _pipeline = Pipeline(PipelineConfig.from_env(**config), readers=readers)
    _pipeline.start()
    atexit.register(shutdown)
    return _pipeline


def shutdown() -> None:
    """Shut down the default pipeline, flushing any remaining spans."""
    global _pipeline  # noqa: PLW0603
    if _pipeline is not None:
        _pipeline.shutdown()
        _pipeline = None
