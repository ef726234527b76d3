"""
XIV Binary Reading Helpers
Bounds-checked little-endian reads shared by the MDL, STM and SGB parsers,
plus exact IEEE-754 half-float decoding.
"""

import struct
from typing import Optional

import numpy as np


class DecodeError(ValueError):
    """Truncated or malformed binary data.

    Carries the byte offset and the field being read so callers can report
    exactly where a container went wrong.
    """

    def __init__(self, message: str, offset: Optional[int] = None, field: Optional[str] = None):
        self.detail = message
        self.offset = offset
        self.field = field
        location = field or 'data'
        if offset is not None:
            location = f"{location} at offset 0x{offset:X}"
        super().__init__(f"{location}: {message}")


class BinaryCursor:
    """Little-endian reader over an immutable byte buffer."""

    def __init__(self, buffer: bytes, pos: int = 0):
        self.buffer = buffer
        self.p = pos
        self.end = len(buffer)

    def tell(self) -> int:
        return self.p

    def remaining(self) -> int:
        return self.end - self.p

    def _unpack(self, fmt: str, size: int, field: str):
        if self.p < 0 or self.p + size > self.end:
            raise DecodeError(f"need {size} bytes, {max(self.end - self.p, 0)} left", self.p, field)
        value = struct.unpack_from(fmt, self.buffer, self.p)[0]
        self.p += size
        return value

    def read_u8(self, field: str = 'u8') -> int:
        return self._unpack('<B', 1, field)

    def read_u16(self, field: str = 'u16') -> int:
        return self._unpack('<H', 2, field)

    def read_u32(self, field: str = 'u32') -> int:
        return self._unpack('<I', 4, field)

    def read_i32(self, field: str = 'i32') -> int:
        return self._unpack('<i', 4, field)

    def read_f32(self, field: str = 'f32') -> float:
        return self._unpack('<f', 4, field)

    def read_bytes(self, size: int, field: str = 'bytes') -> bytes:
        if size < 0 or self.p + size > self.end:
            raise DecodeError(f"need {size} bytes, {max(self.end - self.p, 0)} left", self.p, field)
        chunk = bytes(self.buffer[self.p:self.p + size])
        self.p += size
        return chunk

    def skip(self, size: int, field: str = 'padding'):
        if self.p + size > self.end:
            raise DecodeError(f"cannot skip {size} bytes, {self.end - self.p} left", self.p, field)
        self.p += size

    def seek(self, pos: int, field: str = 'seek'):
        if pos < 0 or pos > self.end:
            raise DecodeError(f"seek target outside buffer of {self.end} bytes", pos, field)
        self.p = pos

    def align(self, alignment: int, field: str = 'alignment'):
        pad = (-self.p) % alignment
        if pad:
            self.skip(pad, field)


def half_to_float(bits: int) -> float:
    """Decode one IEEE-754 binary16 value (subnormals, signed zero, inf, NaN)."""
    return struct.unpack('<e', struct.pack('<H', bits & 0xFFFF))[0]


def halves_to_floats(raw: np.ndarray) -> np.ndarray:
    """Decode a uint8 array whose last axis holds packed little-endian halves."""
    packed = np.ascontiguousarray(raw, dtype=np.uint8)
    return packed.view('<f2').astype(np.float32)


def read_c_string(buffer: bytes, offset: int) -> str:
    """NUL-terminated string at offset; runs to the end of buffer when unterminated.

    Offsets outside the block resolve to an empty name.
    """
    if offset < 0 or offset >= len(buffer):
        return ''
    end = buffer.find(b'\x00', offset)
    if end < 0:
        end = len(buffer)
    return bytes(buffer[offset:end]).decode('utf-8', errors='replace')
