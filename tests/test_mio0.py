import pytest

from conftest import be, mio0_stream
from n64split import mio0


def test_decode_literals_and_back_reference():
    assert mio0.decode(mio0_stream()) == b"ABCABCAB"


def test_decode_at_offset():
    data = b"\xFF" * 0x20 + mio0_stream()
    assert mio0.decode(data, 0x20) == b"ABCABCAB"


def test_parse_header():
    hdr = mio0.parse_header(mio0_stream())
    assert (hdr.dest_size, hdr.comp_offset, hdr.uncomp_offset) == (8, 0x11, 0x13)


def test_bad_magic_raises():
    with pytest.raises(ValueError):
        mio0.decode(b"Yay0" + be(8, 0x11, 0x13) + b"\x00" * 8)


def test_truncated_stream_raises():
    data = b"MIO0" + be(100, 0x11, 0x13) + b"\xE0" + b"\x20\x02" + b"ABC"
    with pytest.raises(ValueError):
        mio0.decode(data)


def test_find_headers():
    data = b"\x00" * 0x30 + mio0_stream() + b"\x00" * 0x10 + b"MIO0"
    assert mio0.find_headers(data) == [0x30]


def test_implausible_header_is_rejected():
    zero_size = b"MIO0" + be(0, 0x11, 0x13) + b"\x00" * 8
    swapped = b"MIO0" + be(8, 0x13, 0x11) + b"\x00" * 8
    for data in (zero_size, swapped):
        with pytest.raises(ValueError):
            mio0.parse_header(data)
        assert mio0.find_headers(data) == []
