"""Relay of generated text chunks to a caller supplied sink."""
from __future__ import annotations

from typing import Optional

from ..core.utils.logger import get_logger
from ..providers.llm.base import ChunkSink

LOGGER = get_logger(__name__)


class StreamRelay:
    """Forward chunks in arrival order on the calling thread.

    A failing sink does not stop generation: the first error is logged and the
    remaining chunks are still offered to the sink.
    """

    def __init__(self, sink: Optional[ChunkSink]) -> None:
        self._sink = sink
        self.chunks = 0
        self.bytes = 0
        self.errors = 0

    @property
    def active(self) -> bool:
        return self._sink is not None

    def __call__(self, chunk: bytes) -> None:
        if self._sink is None or not chunk:
            return
        self.chunks += 1
        self.bytes += len(chunk)
        try:
            self._sink(chunk)
        except Exception as exc:  # noqa: BLE001 - sink errors never abort generation
            self.errors += 1
            if self.errors == 1:
                LOGGER.warning("Stream sink raised %s; continuing generation", exc)

    def as_sink(self) -> Optional[ChunkSink]:
        """The relay itself, or ``None`` when nobody is listening."""
        return self if self._sink is not None else None


__all__ = ["ChunkSink", "StreamRelay"]
