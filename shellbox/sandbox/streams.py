"""Decoder for Docker's multiplexed attach stream.

When a container runs without a TTY, Docker interleaves stdout and
stderr on one connection. Every frame starts with an 8-byte header::

    [stream_type, 0, 0, 0, size_b1, size_b2, size_b3, size_b4]

followed by ``size`` bytes of payload (size is big-endian). Frames can
be split across arbitrary network chunk boundaries, so the decoder
keeps explicit state between ``feed`` calls.
"""

import struct
from enum import IntEnum, StrEnum

HEADER_SIZE = 8
_HEADER = struct.Struct(">BxxxL")


class StreamType(IntEnum):
    """Stream selector byte of a frame header."""

    STDIN = 0
    STDOUT = 1
    STDERR = 2


class DecoderState(StrEnum):
    AWAITING_HEADER = "awaiting_header"
    CONSUMING_PAYLOAD = "consuming_payload"


class OutputDemultiplexer:
    """Splits a multiplexed byte stream into stdout and stderr buffers.

    Frames tagged stderr go to the stderr buffer; every other tag,
    including unknown ones, goes to stdout. Buffers grow for the
    lifetime of one request.

    Usage:
        demux = OutputDemultiplexer()
        async for chunk in response.aiter_raw():
            demux.feed(chunk)
        demux.close()
        demux.stdout, demux.stderr
    """

    def __init__(self) -> None:
        self.state = DecoderState.AWAITING_HEADER
        self._pending = bytearray()
        self._remaining = 0
        self._target = StreamType.STDOUT
        self._stdout = bytearray()
        self._stderr = bytearray()
        self.frames = 0

    @property
    def stdout(self) -> bytes:
        return bytes(self._stdout)

    @property
    def stderr(self) -> bytes:
        return bytes(self._stderr)

    def feed(self, chunk: bytes) -> None:
        """Consume one chunk of the raw stream."""
        view = memoryview(chunk)
        while view:
            if self.state == DecoderState.AWAITING_HEADER:
                view = self._read_header(view)
            else:
                view = self._read_payload(view)

    def close(self) -> None:
        """Flush whatever is left when the stream ends mid-frame.

        A truncated payload still belongs to its frame's stream; stray
        header bytes are kept as stdout so nothing is dropped.
        """
        if self.state == DecoderState.AWAITING_HEADER and self._pending:
            self._stdout += self._pending
        self._pending.clear()
        self._remaining = 0
        self.state = DecoderState.AWAITING_HEADER

    def _read_header(self, view: memoryview) -> memoryview:
        needed = HEADER_SIZE - len(self._pending)
        self._pending += view[:needed]
        view = view[needed:]
        if len(self._pending) < HEADER_SIZE:
            return view

        stream_type, size = _HEADER.unpack(bytes(self._pending))
        self._pending.clear()
        self._target = StreamType.STDERR if stream_type == StreamType.STDERR else StreamType.STDOUT
        self._remaining = size
        self.frames += 1
        if size:
            self.state = DecoderState.CONSUMING_PAYLOAD
        return view

    def _read_payload(self, view: memoryview) -> memoryview:
        take = view[: self._remaining]
        buffer = self._stderr if self._target == StreamType.STDERR else self._stdout
        buffer += take
        self._remaining -= len(take)
        if self._remaining == 0:
            self.state = DecoderState.AWAITING_HEADER
        return view[len(take) :]


def encode_frame(stream: int, payload: bytes) -> bytes:
    """Build one multiplexed frame (the inverse of the decoder)."""
    return _HEADER.pack(stream, len(payload)) + payload


__all__ = [
    "HEADER_SIZE",
    "DecoderState",
    "OutputDemultiplexer",
    "StreamType",
    "encode_frame",
]
