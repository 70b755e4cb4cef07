# -*- coding: utf-8 -*-
import pytest
from pefile import Structure

import dnmeta.utils
from dnmeta import errors


def test_align():
    assert 0x200 == dnmeta.utils.align_up(0x1, 0x200)
    assert 0x200 == dnmeta.utils.align_up(0x200, 0x200)
    assert 0x400 == dnmeta.utils.align_up(0x201, 0x200)
    assert 0x0 == dnmeta.utils.align_up(0x0, 0x1000)
    assert 0x123 == dnmeta.utils.align_up(0x123, 0)

    assert 0x200 == dnmeta.utils.align_down(0x210, 0x200)
    assert 0x0 == dnmeta.utils.align_down(0x1ff, 0x200)
    assert 0x123 == dnmeta.utils.align_down(0x123, 1)


def test_dword_padding():
    assert 12 == dnmeta.utils.dword_padding(9)
    assert 12 == dnmeta.utils.dword_padding(12)
    # relative to a base that is not aligned
    assert 0x256 == dnmeta.utils.dword_padding(0x253, 0x252)
    assert 0x252 == dnmeta.utils.dword_padding(0x252, 0x252)


def test_popcount():
    assert 0 == dnmeta.utils.popcount(0)
    assert 3 == dnmeta.utils.popcount(0x45)
    assert 64 == dnmeta.utils.popcount(2 ** 64 - 1)


def test_read_cstring():
    assert (b"#~", 3) == dnmeta.utils.read_cstring(b"#~\x00\x00", 0)
    assert (b"", 1) == dnmeta.utils.read_cstring(b"\x00abc\x00", 0)
    assert (b"abc", 5) == dnmeta.utils.read_cstring(b"\x00abc\x00", 1)

    with pytest.raises(errors.dnFormatError):
        dnmeta.utils.read_cstring(b"abc", 0)
    with pytest.raises(errors.dnFormatError):
        dnmeta.utils.read_cstring(b"abc\x00", 0, end=3)
    with pytest.raises(errors.dnFormatError):
        dnmeta.utils.read_cstring(b"abcdef\x00", 0, max_length=4)
    with pytest.raises(errors.dnFormatError):
        dnmeta.utils.read_cstring(b"abc\x00", 4)


def test_unpack_struct():
    s = Structure(("TEST", ("I,First", "H,Second")), file_offset=2)
    dnmeta.utils.unpack_struct(s, b"\xff\xff\x01\x00\x00\x00\x02\x00", 2)

    assert s.First == 1
    assert s.Second == 2

    with pytest.raises(errors.dnFormatError):
        dnmeta.utils.unpack_struct(Structure(("TEST", ("I,First", "H,Second"))), b"\x01\x00\x00\x00\x02", 0)


def test_struct_char():
    assert None is dnmeta.utils.num_bytes_to_struct_char(42)
    assert "Q" == dnmeta.utils.num_bytes_to_struct_char(8)
    assert "Q" == dnmeta.utils.num_bytes_to_struct_char(5)
    assert "I" == dnmeta.utils.num_bytes_to_struct_char(4)
    assert "I" == dnmeta.utils.num_bytes_to_struct_char(3)
    assert "H" == dnmeta.utils.num_bytes_to_struct_char(2)
    assert "B" == dnmeta.utils.num_bytes_to_struct_char(1)
    assert None is dnmeta.utils.num_bytes_to_struct_char(0)
