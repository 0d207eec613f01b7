"""Pipeline configuration."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("spanstream.config")

ENV_SERVICE_NAME = "SPANSTREAM_SERVICE_NAME"
ENV_AGENT_HOST = "SPANSTREAM_AGENT_HOST"
ENV_AGENT_PORT = "SPANSTREAM_AGENT_PORT"
ENV_COLLECTOR_ENDPOINT = "SPANSTREAM_COLLECTOR_ENDPOINT"
ENV_MAX_PACKET_SIZE = "SPANSTREAM_MAX_PACKET_SIZE"
ENV_RESOURCE_ATTRIBUTES = "SPANSTREAM_RESOURCE_ATTRIBUTES"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable pipeline configuration."""

    service_name: str
    agent_host: str = "localhost"
    agent_port: int = 6832
    collector_endpoint: str | None = None
    max_packet_size: int = 65000
    event_buffer_size: int = 2048
    max_open_spans: int = 16384
    span_buffer_size: int = 8192
    batch_size: int = 512
    flush_interval_ms: int = 5000
    attempt_reconnecting: bool = True
    reconnect_interval_ms: int = 30000
    resource_attributes: Mapping[str, str] = field(default_factory=dict)

    @property
    def host_port(self) -> str:
        if ":" in self.agent_host:
            return f"[{self.agent_host}]:{self.agent_port}"
        return f"{self.agent_host}:{self.agent_port}"

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> PipelineConfig:
        """Build a config from ``SPANSTREAM_*`` variables.

        Keyword overrides take precedence over the environment. Malformed
        integers are logged and replaced by the default.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        if ENV_SERVICE_NAME in env:
            values["service_name"] = env[ENV_SERVICE_NAME]
        if ENV_AGENT_HOST in env:
            values["agent_host"] = env[ENV_AGENT_HOST]
        if ENV_COLLECTOR_ENDPOINT in env:
            values["collector_endpoint"] = env[ENV_COLLECTOR_ENDPOINT] or None
        _int_from_env(env, ENV_AGENT_PORT, "agent_port", values)
        _int_from_env(env, ENV_MAX_PACKET_SIZE, "max_packet_size", values)
        if ENV_RESOURCE_ATTRIBUTES in env:
            values["resource_attributes"] = parse_resource_attributes(
                env[ENV_RESOURCE_ATTRIBUTES]
            )

        values.update(overrides)
        values.setdefault("service_name", "unknown_service")
        return cls(**values)


def _int_from_env(
    env: Mapping[str, str], name: str, key: str, values: dict[str, Any]
) -> None:
    raw = env.get(name)
    if raw is None or raw == "":
        return
    try:
        values[key] = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)


def parse_resource_attributes(raw: str) -> dict[str, str]:
    """Parse ``k1=v1,k2=v2``. Entries without ``=`` are skipped."""
    attrs: dict[str, str] = {}
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            if item.strip():
                logger.warning("Ignoring malformed resource attribute %r", item)
            continue
        attrs[key] = value.strip()
    return attrs
