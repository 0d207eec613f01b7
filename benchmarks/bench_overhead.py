#!/usr/bin/env python3
"""Producer-side overhead benchmark.

Measures the hot-path cost of:
  1. ObserverRegistry.record with no observers (sequence + timestamp)
  2. EventBuffer.observe (non-blocking enqueue)
  3. A full span lifecycle through a pipeline's event buffer
  4. BatchUploader packing of serialized spans

Usage:
    python benchmarks/bench_overhead.py
"""

from __future__ import annotations

import time

from spanstream._bus import EventBuffer
from spanstream._observer import ObserverRegistry
from spanstream._tracer import Tracer
from spanstream._types import Event, EventType
from spanstream._uploader import BatchUploader


class _NullObserver:
    def observe(self, event: Event) -> None:
        pass


class _NullConn:
    def write(self, data: bytes) -> int:
        return len(data)

    def set_write_buffer(self, size: int) -> None:
        pass

    def close(self) -> None:
        pass


def bench_record_no_observers(iterations: int = 500_000) -> float:
    """Benchmark: stamping an event with nobody listening."""
    registry = ObserverRegistry()
    event = Event(type=EventType.NEW_SCOPE)

    for _ in range(5000):
        registry.record(event)

    start = time.perf_counter_ns()
    for _ in range(iterations):
        registry.record(event)
    elapsed = time.perf_counter_ns() - start

    return elapsed / iterations


def bench_buffer_observe(iterations: int = 500_000) -> float:
    """Benchmark: enqueue into the event buffer from a producer thread."""
    buf = EventBuffer(iterations + 10_000, _NullObserver())
    event = Event(type=EventType.NEW_SCOPE, sequence=1, time_ns=1)

    try:
        for _ in range(5000):
            buf.observe(event)

        start = time.perf_counter_ns()
        for _ in range(iterations):
            buf.observe(event)
        elapsed = time.perf_counter_ns() - start
    finally:
        buf.close()

    return elapsed / iterations


def bench_span_lifecycle(iterations: int = 100_000) -> float:
    """Benchmark: start_span, set_attribute, end, all recorded into a buffer."""
    registry = ObserverRegistry()
    buf = EventBuffer(iterations * 4 + 10_000, _NullObserver())
    registry.register(buf)
    tracer = Tracer(registry)

    try:
        for _ in range(1000):
            with tracer.start_span("bench") as s:
                s.set_attribute("k", 1)

        start = time.perf_counter_ns()
        for _ in range(iterations):
            with tracer.start_span("bench") as s:
                s.set_attribute("k", 1)
        elapsed = time.perf_counter_ns() - start
    finally:
        buf.close()

    return elapsed / iterations


def bench_upload_packing(iterations: int = 2_000) -> float:
    """Benchmark: packing 100 x 600 byte payloads into 65000 byte packets."""
    uploader = BatchUploader(_NullConn(), 65000)
    payloads = [b"x" * 600] * 100

    for _ in range(100):
        uploader.upload(payloads)

    start = time.perf_counter_ns()
    for _ in range(iterations):
        uploader.upload(payloads)
    elapsed = time.perf_counter_ns() - start

    return elapsed / iterations


def main() -> None:
    print("=" * 60)
    print("spanstream Producer Overhead Benchmark")
    print("=" * 60)

    results: list[tuple[str, float, str]] = []

    ns = bench_record_no_observers()
    status = "PASS" if ns < 2000 else "WARN" if ns < 5000 else "FAIL"
    results.append(("Registry record (no observers)", ns, f"{status} (target < 2μs)"))

    ns = bench_buffer_observe()
    status = "PASS" if ns < 3000 else "WARN" if ns < 6000 else "FAIL"
    results.append(("Event buffer observe", ns, f"{status} (target < 3μs)"))

    ns = bench_span_lifecycle()
    status = "PASS" if ns < 30000 else "WARN" if ns < 60000 else "FAIL"
    results.append(("Span lifecycle (4 events)", ns, f"{status} (target < 30μs)"))

    ns = bench_upload_packing()
    status = "PASS" if ns < 100_000 else "WARN" if ns < 200_000 else "FAIL"
    results.append(("Upload packing (100 payloads)", ns, f"{status} (target < 100μs)"))

    print()
    for name, ns_val, note in results:
        if ns_val >= 1000:
            display = f"{ns_val / 1000:.2f}μs"
        else:
            display = f"{ns_val:.0f}ns"
        print(f"  {name:40s}  {display:>10s}   {note}")

    print()
    all_pass = all("PASS" in r[2] or "WARN" in r[2] for r in results)
    if all_pass:
        print("All benchmarks within acceptable range.")
    else:
        print("WARNING: Some benchmarks exceeded target. Review above.")


if __name__ == "__main__":
    main()
