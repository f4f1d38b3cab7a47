"""Demultiplexing of framed stdout/stderr byte streams with tail retention.

Each frame is an 8-byte header followed by a payload. Header byte 0 tags the channel
(``2`` is stderr, anything else stdout) and bytes 4-7 hold the payload length as a
big-endian unsigned 32-bit integer. Every frame payload becomes one log entry. Payloads
are decoded incrementally per channel, so a multi-byte character split across frames
lands whole in the entry of the frame that completes it.
"""

from __future__ import annotations

import codecs
import logging
import struct
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)

HEADER_SIZE = 8
STDERR_TAG = 2
DEFAULT_CHUNK_SIZE = 64 * 1024
BANNER_WIDTH = 68

_LENGTH_FORMAT = ">I"


class Channel(str, Enum):
    """Logical output channel of a frame."""

    STDOUT = "stdout"
    STDERR = "stderr"


class ReadableStream(Protocol):
    """Minimal binary source: ``read`` returns ``b""`` at end of stream."""

    def read(self, size: int = -1, /) -> bytes: ...


@dataclass(slots=True)
class DemuxResult:
    """Retained entries per channel plus how many were produced in total."""

    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    stdout_total: int = 0
    stderr_total: int = 0

    @property
    def stdout_truncated(self) -> bool:
        return self.stdout_total > len(self.stdout)

    @property
    def stderr_truncated(self) -> bool:
        return self.stderr_total > len(self.stderr)

    def render(self) -> tuple[str, str]:
        """Join each channel into one string, prefixed with a banner when truncated."""

        return (
            _render_channel(Channel.STDOUT, self.stdout, self.stdout_total),
            _render_channel(Channel.STDERR, self.stderr, self.stderr_total),
        )


class DemuxStreamError(RuntimeError):
    """Demultiplexer was used after its source failed or was closed."""


class StreamDemultiplexer:
    """Incremental frame parser fed with arbitrary byte chunks.

    Bytes that do not yet form a complete header or payload stay buffered until more
    data arrives. With ``tail`` set, a channel buffer growing past ``2 * tail`` entries is
    cut back to its newest ``tail`` entries, and ``close`` trims to exactly ``tail``.
    """

    def __init__(self, *, tail: int | None = None, encoding: str = "utf-8") -> None:
        if tail is not None and tail < 0:
            raise ValueError(f"tail must be >= 0, got {tail}")
        self.tail = tail
        self.encoding = encoding
        self._pending = bytearray()
        self._header: bytes | None = None
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self._stdout_total = 0
        self._stderr_total = 0
        self._decoders = {
            channel: codecs.getincrementaldecoder(encoding)(errors="replace")
            for channel in Channel
        }
        self._closed = False
        self._failed: BaseException | None = None

    def feed(self, data: bytes) -> int:
        """Buffer ``data`` and consume every complete frame. Returns frames consumed."""

        self._ensure_open()
        self._pending.extend(data)
        frames = 0
        while self._read_frame():
            frames += 1
        return frames

    def fail(self, error: BaseException) -> None:
        """Drop buffered state after a source error; further feeding is rejected."""

        self._failed = error
        self._pending.clear()
        self._header = None
        self._stdout.clear()
        self._stderr.clear()

    def close(self) -> DemuxResult:
        """Finish the stream and return the retained entries."""

        self._ensure_open()
        self._closed = True
        if self._header is not None or self._pending:
            logger.warning(
                "Discarding incomplete trailing frame (%d buffered bytes)",
                len(self._pending) + (HEADER_SIZE if self._header is not None else 0),
            )
            self._pending.clear()
            self._header = None
        for channel, entries in ((Channel.STDOUT, self._stdout), (Channel.STDERR, self._stderr)):
            leftover = self._decoders[channel].decode(b"", final=True)
            if leftover and entries:
                entries[-1] += leftover
        if self.tail is not None:
            _take_right(self._stdout, self.tail)
            _take_right(self._stderr, self.tail)
        return DemuxResult(
            stdout=list(self._stdout),
            stderr=list(self._stderr),
            stdout_total=self._stdout_total,
            stderr_total=self._stderr_total,
        )

    def _ensure_open(self) -> None:
        if self._failed is not None:
            raise DemuxStreamError("Stream source failed; demultiplexer is unusable.") from (
                self._failed
            )
        if self._closed:
            raise DemuxStreamError("Demultiplexer is already closed.")

    def _read_frame(self) -> bool:
        if self._header is None:
            if len(self._pending) < HEADER_SIZE:
                return False
            self._header = bytes(self._pending[:HEADER_SIZE])
            del self._pending[:HEADER_SIZE]

        (length,) = struct.unpack(_LENGTH_FORMAT, self._header[4:HEADER_SIZE])
        if len(self._pending) < length:
            return False

        payload = bytes(self._pending[:length])
        del self._pending[:length]
        tag = self._header[0]
        self._header = None

        channel = Channel.STDERR if tag == STDERR_TAG else Channel.STDOUT
        entry = self._decoders[channel].decode(payload)
        if channel == Channel.STDERR:
            self._stderr_total += 1
            self._stderr.append(entry)
        else:
            self._stdout_total += 1
            self._stdout.append(entry)
        if self.tail is not None:
            limit = 2 * self.tail
            if len(self._stdout) > limit:
                _take_right(self._stdout, self.tail)
            if len(self._stderr) > limit:
                _take_right(self._stderr, self.tail)
        return True


def demux(
    stream: ReadableStream,
    *,
    tail: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = "utf-8",
) -> DemuxResult:
    """Read ``stream`` to the end and demultiplex it into a structured result."""

    demultiplexer = StreamDemultiplexer(tail=tail, encoding=encoding)
    while True:
        try:
            chunk = stream.read(chunk_size)
        except Exception as error:
            demultiplexer.fail(error)
            raise
        if not chunk:
            return demultiplexer.close()
        demultiplexer.feed(chunk)


def demux_to_text(
    stream: ReadableStream,
    *,
    tail: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = "utf-8",
) -> tuple[str, str]:
    """Demultiplex ``stream`` into ``(stdout, stderr)`` strings with truncation banners."""

    return demux(stream, tail=tail, chunk_size=chunk_size, encoding=encoding).render()


def encode_frame(channel: Channel, payload: bytes) -> bytes:
    """Build one frame; used by agents and fixtures producing framed output."""

    tag = STDERR_TAG if channel == Channel.STDERR else 1
    return bytes((tag, 0, 0, 0)) + struct.pack(_LENGTH_FORMAT, len(payload)) + payload


def tail_lines(lines: Sequence[str], tail: int | None) -> tuple[list[str], bool]:
    """Keep the newest ``tail`` lines; report whether anything was dropped."""

    if tail is not None and tail < 0:
        raise ValueError(f"tail must be >= 0, got {tail}")
    if tail is None or len(lines) <= tail:
        return list(lines), False
    return list(lines[len(lines) - tail :]), True


def truncation_banner(channel: Channel | str, shown: int, total: int) -> str:
    """Padded ``#`` banner announcing that a channel log was truncated."""

    name = channel.value if isinstance(channel, Channel) else channel
    separator = "#" * BANNER_WIDTH
    inner_width = BANNER_WIDTH - 4
    lines = [
        f'The "{name}" log is truncated.',
        f"Only the last {shown} lines of {total} are shown here.",
    ]
    body = [f"# {line.center(inner_width)} #" for line in lines]
    return "\n".join([separator, *body, separator, "...\n"])


def _render_channel(channel: Channel, entries: list[str], total: int) -> str:
    if total > len(entries):
        return truncation_banner(channel, len(entries), total) + "".join(entries)
    return "".join(entries)


def _take_right(entries: list[str], size: int) -> None:
    if len(entries) > size:
        del entries[: len(entries) - size]
