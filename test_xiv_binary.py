import math
import struct

import numpy as np
import pytest

from xiv_binary import BinaryCursor, DecodeError, half_to_float, halves_to_floats, read_c_string


@pytest.mark.parametrize("bits, expected", [
    (0x3C00, 1.0),
    (0xBC00, -1.0),
    (0x0000, 0.0),
    (0x4000, 2.0),
    (0x3800, 0.5),
    (0x7BFF, 65504.0),
    (0x0001, 2.0 ** -24),
    (0x03FF, 1023 * 2.0 ** -24),
    (0x7C00, math.inf),
    (0xFC00, -math.inf),
])
def test_half_to_float_values(bits, expected):
    assert half_to_float(bits) == expected


def test_half_to_float_signed_zero_and_nan():
    negative_zero = half_to_float(0x8000)
    assert negative_zero == 0.0
    assert math.copysign(1.0, negative_zero) == -1.0
    assert math.isnan(half_to_float(0x7E00))
    assert math.isnan(half_to_float(0xFE01))


def test_halves_to_floats_matches_scalar_decode():
    bits = [0x3C00, 0xBC00, 0x0001, 0x7C00, 0x3555, 0xC500]
    raw = np.frombuffer(struct.pack('<6H', *bits), dtype=np.uint8).reshape(3, 4)
    decoded = halves_to_floats(raw)
    assert decoded.shape == (3, 2)
    assert decoded.dtype == np.float32
    assert decoded.ravel().tolist() == [half_to_float(b) for b in bits]


def test_cursor_reads_little_endian():
    cur = BinaryCursor(struct.pack('<BHIif', 7, 0x1234, 0xDEADBEEF, -5, 1.5))
    assert cur.read_u8() == 7
    assert cur.read_u16() == 0x1234
    assert cur.read_u32() == 0xDEADBEEF
    assert cur.read_i32() == -5
    assert cur.read_f32() == 1.5
    assert cur.remaining() == 0


def test_cursor_truncation_reports_offset_and_field():
    cur = BinaryCursor(b'\x01\x02\x03')
    cur.read_u16('header.first')
    with pytest.raises(DecodeError) as excinfo:
        cur.read_u32('header.second')
    assert excinfo.value.offset == 2
    assert excinfo.value.field == 'header.second'
    assert 'header.second at offset 0x2' in str(excinfo.value)


def test_cursor_skip_and_seek_are_bounds_checked():
    cur = BinaryCursor(bytes(8))
    cur.skip(8)
    with pytest.raises(DecodeError):
        cur.skip(1, 'tail')
    with pytest.raises(DecodeError):
        cur.seek(9)
    cur.seek(3)
    cur.align(4)
    assert cur.tell() == 4


def test_decode_error_is_a_value_error():
    assert issubclass(DecodeError, ValueError)


def test_read_c_string():
    block = b'first\0second\0tail'
    assert read_c_string(block, 0) == 'first'
    assert read_c_string(block, 6) == 'second'
    assert read_c_string(block, 13) == 'tail'
    assert read_c_string(block, 100) == ''
