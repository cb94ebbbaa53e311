import asyncio
import json

import pytest

from codex_bridge.errors import FramingError, RuntimeClosedError
from codex_bridge.protocol.framing import JsonLineWriter, decode_line, encode_message, read_frames


class CollectingStream:
    def __init__(self, *, fail_with: BaseException | None = None) -> None:
        self.chunks: list[bytes] = []
        self.fail_with = fail_with
        self.closing = False

    def write(self, data: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.chunks.append(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def is_closing(self) -> bool:
        return self.closing


def _lines(*lines: bytes):
    queue = list(lines)

    async def readline() -> bytes:
        return queue.pop(0) if queue else b""

    return readline


async def _collect(readline):
    return [frame async for frame in read_frames(readline)]


def test_encode_message_is_compact_utf8_with_single_newline():
    data = encode_message({"text": "привет", "n": 1})

    assert data == '{"text":"привет","n":1}\n'.encode("utf-8")
    assert data.count(b"\n") == 1


def test_decode_line_rejects_invalid_json():
    with pytest.raises(FramingError):
        decode_line(b"{not json")


def test_read_frames_skips_blank_lines_and_reports_bad_ones():
    readline = _lines(b'{"id": 1}\n', b"\n", b"garbage\n", b'{"id": 2}\r\n')

    frames = asyncio.run(_collect(readline))

    assert [frame.ok for frame in frames] == [True, False, True]
    assert frames[0].payload == {"id": 1}
    assert frames[1].raw == "garbage"
    assert isinstance(frames[1].error, FramingError)
    assert frames[2].payload == {"id": 2}


def test_read_frames_survives_over_limit_lines():
    calls = iter([ValueError("Separator is found, but chunk is longer than limit"), b'{"ok": true}\n'])

    async def readline() -> bytes:
        item = next(calls, b"")
        if isinstance(item, BaseException):
            raise item
        return item

    frames = asyncio.run(_collect(readline))

    assert frames[0].ok is False
    assert frames[1].payload == {"ok": True}


def test_concurrent_writes_never_interleave():
    stream = CollectingStream()
    writer = JsonLineWriter(stream)

    async def scenario():
        await asyncio.gather(*(writer.write({"seq": i, "pad": "x" * 100}) for i in range(20)))

    asyncio.run(scenario())

    assert len(stream.chunks) == 20
    decoded = [json.loads(chunk) for chunk in stream.chunks]
    assert sorted(item["seq"] for item in decoded) == list(range(20))


def test_write_after_close_fails_immediately():
    writer = JsonLineWriter(CollectingStream(), name="app-server stdin")
    writer.close()

    with pytest.raises(RuntimeClosedError, match="app-server stdin is closed"):
        asyncio.run(writer.write({"id": 1}))


def test_broken_pipe_marks_writer_closed():
    writer = JsonLineWriter(CollectingStream(fail_with=BrokenPipeError("gone")))

    with pytest.raises(RuntimeClosedError):
        asyncio.run(writer.write({"id": 1}))
    assert writer.closed is True
