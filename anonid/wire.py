"""Big-endian readers and writers for the ledger record layout.

Every variable length field carries an explicit length prefix, and a reader
must consume its whole input: ``Reader.finish`` rejects trailing bytes.
"""

import struct

from .errors import DeserializationError, MalformedInputError

_FORMATS = {1: ">B", 2: ">H", 4: ">I", 8: ">Q"}


class Writer(object):
    """Accumulates an encoding."""

    def __init__(self):
        self.parts = []

    def _uint(self, size, value):
        if not isinstance(value, int) or not 0 <= value < 2 ** (8 * size):
            raise MalformedInputError("Value %r does not fit in %d bytes." % (value, size))
        self.parts.append(struct.pack(_FORMATS[size], value))

    def u8(self, value):
        self._uint(1, value)

    def u16(self, value):
        self._uint(2, value)

    def u32(self, value):
        self._uint(4, value)

    def u64(self, value):
        self._uint(8, value)

    def raw(self, data, size=None):
        if size is not None and len(data) != size:
            raise MalformedInputError("Expected %d bytes, got %d." % (size, len(data)))
        self.parts.append(bytes(data))

    def getvalue(self):
        return b"".join(self.parts)


class Reader(object):
    """Consumes an encoding, failing with DeserializationError on short input."""

    def __init__(self, data):
        self.data = bytes(data)
        self.pos = 0

    def raw(self, size):
        if self.pos + size > len(self.data):
            raise DeserializationError("Unexpected end of input.")
        out = self.data[self.pos:self.pos + size]
        self.pos += size
        return out

    def _uint(self, size):
        return struct.unpack(_FORMATS[size], self.raw(size))[0]

    def u8(self):
        return self._uint(1)

    def u16(self):
        return self._uint(2)

    def u32(self):
        return self._uint(4)

    def u64(self):
        return self._uint(8)

    def remaining(self):
        return len(self.data) - self.pos

    def finish(self):
        if self.pos != len(self.data):
            raise DeserializationError("%d trailing bytes." % (len(self.data) - self.pos))


def encode_with(write, value):
    """Runs write(writer, value) and returns the bytes."""
    w = Writer()
    write(w, value)
    return w.getvalue()


def decode_with(read, data):
    """Runs read(reader) over the whole of data."""
    r = Reader(data)
    value = read(r)
    r.finish()
    return value


# --- TESTS ---

import pytest


def test_round_trip():
    w = Writer()
    w.u8(1)
    w.u16(0x0203)
    w.u32(0x04050607)
    w.u64(8)
    w.raw(b"xy")
    data = w.getvalue()
    assert data == b"\x01\x02\x03\x04\x05\x06\x07" + b"\x00" * 7 + b"\x08xy"

    r = Reader(data)
    assert (r.u8(), r.u16(), r.u32(), r.u64(), r.raw(2)) == (1, 0x0203, 0x04050607, 8, b"xy")
    r.finish()


def test_short_and_trailing():
    with pytest.raises(DeserializationError):
        Reader(b"\x00").u16()
    r = Reader(b"\x00\x01")
    r.u8()
    with pytest.raises(DeserializationError):
        r.finish()


def test_range():
    with pytest.raises(MalformedInputError):
        Writer().u8(256)
    with pytest.raises(MalformedInputError):
        Writer().u16(-1)
