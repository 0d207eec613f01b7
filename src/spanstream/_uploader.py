"""Packs serialized spans into size-bounded packets."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from spanstream._errors import MultipleErrors, PacketTooLargeError
from spanstream._transport import PacketConnection

logger = logging.getLogger("spanstream.uploader")


class BatchUploader:
    """Writes payloads to ``conn`` in as few packets as in-order packing allows.

    Payloads are never split or reordered. One that alone exceeds
    ``max_packet_size`` is skipped and reported; the rest are still sent.
    """

    def __init__(self, conn: PacketConnection, max_packet_size: int) -> None:
        if max_packet_size <= 0:
            raise ValueError(f"max packet size must be positive, got {max_packet_size}")
        self._conn = conn
        self._max_packet_size = max_packet_size

    @property
    def max_packet_size(self) -> int:
        return self._max_packet_size

    def upload(self, payloads: Sequence[bytes]) -> int:
        """Send ``payloads`` and return the number of packets written.

        Raises ``MultipleErrors`` after every payload was attempted if any
        payload was oversized or any write failed.
        """
        errors: list[Exception] = []
        packets = 0
        packet = bytearray()

        for index, payload in enumerate(payloads):
            size = len(payload)
            if size > self._max_packet_size:
                errors.append(PacketTooLargeError(index, size, self._max_packet_size))
                continue
            if packet and len(packet) + size > self._max_packet_size:
                packets += self._flush(packet, errors)
                packet = bytearray()
            packet += payload

        if packet:
            packets += self._flush(packet, errors)

        if errors:
            raise MultipleErrors(errors)
        return packets

    def _flush(self, packet: bytearray, errors: list[Exception]) -> int:
        try:
            self._conn.write(bytes(packet))
        except OSError as exc:
            logger.debug("Failed to write %d byte packet", len(packet), exc_info=True)
            errors.append(exc)
            return 0
        return 1
