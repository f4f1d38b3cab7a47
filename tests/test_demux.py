from __future__ import annotations

import io

import allure
import pytest

from backup_supervisor.demux import (
    BANNER_WIDTH,
    Channel,
    DemuxStreamError,
    StreamDemultiplexer,
    demux,
    demux_to_text,
    encode_frame,
    tail_lines,
    truncation_banner,
)

pytestmark = [
    allure.epic("Operation Supervision"),
    allure.feature("Log Demultiplexing"),
]


def _framed(*frames: tuple[Channel, str]) -> bytes:
    return b"".join(encode_frame(channel, text.encode("utf-8")) for channel, text in frames)


def _sample_stream() -> bytes:
    return _framed(
        (Channel.STDOUT, "out 1\n"),
        (Channel.STDERR, "err 1\n"),
        (Channel.STDOUT, "out 2\n"),
        (Channel.STDOUT, "out 3\n"),
        (Channel.STDERR, "err 2\n"),
    )


class _FailingStream:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._served = False

    def read(self, size: int = -1, /) -> bytes:
        if self._served:
            raise OSError("connection reset")
        self._served = True
        return self._data


def test_tail_keeps_last_entry_per_channel_with_banner() -> None:
    result = demux(io.BytesIO(_sample_stream()), tail=1)

    assert result.stdout == ["out 3\n"]
    assert result.stderr == ["err 2\n"]
    assert result.stdout_total == 3
    assert result.stderr_total == 2
    assert result.stdout_truncated
    assert result.stderr_truncated

    stdout, stderr = result.render()
    assert '"stdout"' in stdout
    assert "Only the last 1 lines of 3 are shown here." in stdout
    assert stdout.endswith("...\nout 3\n")
    assert '"stderr"' in stderr
    assert "Only the last 1 lines of 2 are shown here." in stderr
    assert stderr.endswith("...\nerr 2\n")


def test_empty_stream_yields_empty_outputs() -> None:
    assert demux_to_text(io.BytesIO(b""), tail=1) == ("", "")


def test_unbounded_tail_keeps_everything_without_banner() -> None:
    stdout, stderr = demux_to_text(io.BytesIO(_sample_stream()))

    assert stdout == "out 1\nout 2\nout 3\n"
    assert stderr == "err 1\nerr 2\n"


def test_frames_split_across_chunks() -> None:
    data = _sample_stream()
    demultiplexer = StreamDemultiplexer()

    consumed = sum(demultiplexer.feed(data[index : index + 3]) for index in range(0, len(data), 3))
    result = demultiplexer.close()

    assert consumed == 5
    assert result.stdout == ["out 1\n", "out 2\n", "out 3\n"]
    assert result.stderr == ["err 1\n", "err 2\n"]


def test_small_chunk_reads_match_single_read() -> None:
    data = _sample_stream()

    assert demux(io.BytesIO(data), tail=2, chunk_size=1) == demux(io.BytesIO(data), tail=2)


def test_buffer_is_bounded_while_streaming() -> None:
    demultiplexer = StreamDemultiplexer(tail=2)
    for index in range(50):
        demultiplexer.feed(encode_frame(Channel.STDOUT, f"line {index}\n".encode()))
        assert len(demultiplexer._stdout) <= 4

    result = demultiplexer.close()

    assert result.stdout == ["line 48\n", "line 49\n"]
    assert result.stdout_total == 50


def test_character_split_across_frames_is_decoded_whole() -> None:
    accented = "café\n".encode("utf-8")
    split = accented.index(b"\xa9")
    stream = (
        encode_frame(Channel.STDOUT, accented[:split])
        + encode_frame(Channel.STDERR, b"err\n")
        + encode_frame(Channel.STDOUT, accented[split:])
    )

    result = demux(io.BytesIO(stream))

    assert result.stdout == ["caf", "é\n"]
    assert "".join(result.stdout) == "café\n"
    assert result.stderr == ["err\n"]


def test_truncated_character_at_end_is_replaced() -> None:
    demultiplexer = StreamDemultiplexer()
    demultiplexer.feed(encode_frame(Channel.STDOUT, b"caf\xc3"))

    result = demultiplexer.close()

    assert result.stdout == ["caf\ufffd"]


def test_non_stderr_tags_count_as_stdout() -> None:
    frame = bytes((0, 0, 0, 0, 0, 0, 0, 3)) + b"abc"

    result = demux(io.BytesIO(frame))

    assert result.stdout == ["abc"]
    assert result.stderr == []


def test_incomplete_trailing_frame_is_discarded() -> None:
    data = _framed((Channel.STDOUT, "complete\n")) + encode_frame(Channel.STDERR, b"partial")[:10]

    result = demux(io.BytesIO(data))

    assert result.stdout == ["complete\n"]
    assert result.stderr == []
    assert result.stderr_total == 0


def test_source_error_propagates_and_disables_demultiplexer() -> None:
    with pytest.raises(OSError, match="connection reset"):
        demux(_FailingStream(_sample_stream()))

    demultiplexer = StreamDemultiplexer()
    demultiplexer.feed(_sample_stream())
    demultiplexer.fail(OSError("gone"))
    with pytest.raises(DemuxStreamError):
        demultiplexer.feed(b"")
    with pytest.raises(DemuxStreamError):
        demultiplexer.close()


def test_closed_demultiplexer_rejects_more_data() -> None:
    demultiplexer = StreamDemultiplexer()
    demultiplexer.close()

    with pytest.raises(DemuxStreamError):
        demultiplexer.feed(b"\x01")


def test_tail_zero_keeps_nothing() -> None:
    result = demux(io.BytesIO(_sample_stream()), tail=0)

    assert result.stdout == []
    assert result.stdout_total == 3


def test_banner_layout() -> None:
    banner = truncation_banner(Channel.STDOUT, 10, 250)
    lines = banner.split("\n")

    assert lines[0] == "#" * BANNER_WIDTH
    assert lines[3] == "#" * BANNER_WIDTH
    assert all(len(line) == BANNER_WIDTH for line in lines[:4])
    assert lines[1].startswith("# ")
    assert lines[1].endswith(" #")
    assert "Only the last 10 lines of 250" in lines[2]
    assert banner.endswith("...\n")


def test_tail_lines_helper() -> None:
    assert tail_lines(["a", "b", "c"], 2) == (["b", "c"], True)
    assert tail_lines(["a"], 2) == (["a"], False)
    assert tail_lines(["a", "b"], None) == (["a", "b"], False)
    with pytest.raises(ValueError):
        tail_lines(["a"], -1)
    with pytest.raises(ValueError):
        StreamDemultiplexer(tail=-1)
