"""NAR wire primitive: the length-prefixed, zero-padded string.

Every token in a NAR (keywords, names, symlink targets, file contents) is
encoded the same way:

    uint64_le(length) + raw bytes + zero-padding to 8-byte boundary

so a field of length n occupies exactly 8 + round_up_8(n) bytes:
    n = 0     → 8 bytes (length only)
    n = 1..8  → 16 bytes
    n = 13    → 24 bytes ("nix-archive-1")

See: nix/src/libutil/serialise.cc — readString(), writeString()
"""

import struct
from typing import BinaryIO, Protocol

from pynar.errors import (
    ArchiveReadError,
    CorruptPadding,
    FieldTooLarge,
    SinkWriteError,
    SourceReadError,
    UnexpectedEof,
)

PAD_LEN = 8
MAGIC = b"nix-archive-1"

# Copies between streams go through buffers of this size, so the memory
# used for file contents never depends on the declared length.
CHUNK_SIZE = 64 * 1024

_ZEROS = b"\0" * PAD_LEN


class Writable(Protocol):
    def write(self, data: bytes, /) -> int | None: ...


def pad8(n: int) -> int:
    """Bytes of zero-padding needed to reach 8-byte alignment."""
    return (PAD_LEN - n % PAD_LEN) % PAD_LEN


def field_size(n: int) -> int:
    """Total wire size of a field carrying n bytes."""
    return PAD_LEN + n + pad8(n)


def encode_field(data: str | bytes) -> bytes:
    """Encode a value in NAR wire format: uint64_le length + data + pad."""
    if isinstance(data, str):
        data = data.encode()
    return struct.pack("<Q", len(data)) + data + _ZEROS[:pad8(len(data))]


def write_field(sink: Writable, data: str | bytes) -> None:
    _write(sink, encode_field(data))


def write_field_from(sink: Writable, reader: BinaryIO, length: int) -> None:
    """Stream exactly `length` bytes from `reader` into a field.

    The reader may hold more than `length` bytes; only the declared amount is
    copied. A reader that runs dry early means the source changed under us.
    """
    _write(sink, struct.pack("<Q", length))
    remaining = length
    while remaining:
        try:
            chunk = reader.read(min(remaining, CHUNK_SIZE))
        except OSError as err:
            raise SourceReadError(f"cannot read file contents: {err}") from err
        if not chunk:
            raise SourceReadError(
                f"file contents ended after {length - remaining} of {length} bytes"
            )
        _write(sink, chunk)
        remaining -= len(chunk)
    pad = pad8(length)
    if pad:
        _write(sink, _ZEROS[:pad])


def _write(sink: Writable, data: bytes) -> None:
    # Raw sinks (FileIO, unbuffered sockets) may take only part of the data.
    while data:
        try:
            n = sink.write(data)
        except OSError as err:
            raise SinkWriteError(f"cannot write archive: {err}") from err
        if n is None or n >= len(data):
            return
        if not n:
            raise SinkWriteError("archive sink accepted no data")
        data = data[n:]


class FieldReader:
    """Reads wire fields from a binary stream, tracking the byte offset.

    After any exception the stream position is undefined and the reader must
    not be used again.
    """

    def __init__(self, source: BinaryIO):
        self.source = source
        self.position = 0

    def read_exact(self, n: int) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            try:
                chunk = self.source.read(min(n - len(buf), CHUNK_SIZE))
            except OSError as err:
                raise ArchiveReadError(f"cannot read archive: {err}", offset=self.position) from err
            if not chunk:
                raise UnexpectedEof(
                    f"wanted {n} bytes, got {len(buf)}", offset=self.position
                )
            buf.extend(chunk)
            self.position += len(chunk)
        return bytes(buf)

    def read_u64(self) -> int:
        return struct.unpack("<Q", self.read_exact(8))[0]

    def read_padding(self, length: int) -> None:
        """Consume and verify the zero-padding that follows `length` bytes."""
        pad = pad8(length)
        if not pad:
            return
        start = self.position
        if self.read_exact(pad) != _ZEROS[:pad]:
            raise CorruptPadding("non-zero padding bytes", offset=start)

    def read_field(self, max_len: int) -> bytes:
        # The length is checked before anything proportional to it is
        # allocated; a hostile archive can claim up to 2**64 - 1 bytes.
        start = self.position
        length = self.read_u64()
        if length > max_len:
            raise FieldTooLarge(
                f"field of {length} bytes exceeds limit of {max_len}", offset=start
            )
        data = self.read_exact(length)
        self.read_padding(length)
        return data

    def skip(self, n: int) -> None:
        """Advance past n bytes, seeking when the source supports it."""
        if not n:
            return
        seekable = getattr(self.source, "seekable", None)
        if seekable is not None and seekable():
            try:
                here = self.source.tell()
                end = self.source.seek(0, 2)
                if here + n > end:
                    raise UnexpectedEof(
                        f"wanted {n} bytes, got {end - here}", offset=self.position
                    )
                self.source.seek(here + n)
            except OSError as err:
                raise ArchiveReadError(f"cannot seek archive: {err}", offset=self.position) from err
            self.position += n
            return
        while n:
            step = min(n, CHUNK_SIZE)
            self.read_exact(step)
            n -= step
