# -*- coding: utf-8 -*-

import logging
from typing import Tuple, TypeVar, Optional

from pefile import Structure

from . import errors

logger = logging.getLogger(__name__)


def align_up(value: int, alignment: int) -> int:
    """
    Round value up to the next multiple of alignment.
    An alignment of 0 or 1 leaves the value unchanged.
    """
    if alignment <= 1:
        return value
    return (value + alignment - 1) // alignment * alignment


def align_down(value: int, alignment: int) -> int:
    """
    Round value down to a multiple of alignment.
    An alignment of 0 or 1 leaves the value unchanged.
    """
    if alignment <= 1:
        return value
    return value - (value % alignment)


def dword_padding(cursor: int, base: int = 0) -> int:
    """
    Return the cursor advanced past the padding that aligns it to a 4-byte
    boundary, measured from base.  An aligned cursor is returned as-is.
    """
    return cursor + (4 - (cursor - base) % 4) % 4


def popcount(value: int) -> int:
    return bin(value).count("1")


def read_cstring(
    data: bytes, offset: int, end: Optional[int] = None, max_length: Optional[int] = None
) -> Tuple[bytes, int]:
    """
    Given bytes and an offset, read a null-terminated byte string.
    The terminator must be found before end (default: end of data) and, when
    max_length is given, within max_length bytes including the terminator.

    Returns tuple: the string without terminator, offset just past the terminator.
    Raises dnFormatError if no terminator is found.
    """
    if end is None or end > len(data):
        end = len(data)
    if offset < 0 or offset >= end:
        raise errors.dnFormatError(
            "string at 0x{:x} starts outside the buffer (end 0x{:x})".format(offset, end), value=offset
        )
    limit = end
    if max_length is not None:
        limit = min(end, offset + max_length)
    term = data.find(b"\x00", offset, limit)
    if term == -1:
        raise errors.dnFormatError("unterminated string at 0x{:x}".format(offset), value=offset)
    return data[offset:term], term + 1


_StructType = TypeVar("_StructType", bound=Structure)


def unpack_struct(struct: _StructType, data: bytes, offset: int) -> _StructType:
    """
    Unpack a pefile Structure from data at the given offset, after checking
    that the whole structure is present.

    Raises dnFormatError on a truncated buffer.
    """
    size = struct.sizeof()
    if offset < 0 or offset + size > len(data):
        raise errors.dnFormatError(
            "truncated {}: need 0x{:x} bytes at offset 0x{:x}, buffer is 0x{:x} bytes".format(
                struct.name, size, offset, len(data)
            ),
            value=offset,
        )
    struct.__unpack__(data[offset:offset + size])
    return struct


def num_bytes_to_struct_char(n: int) -> Optional[str]:
    """
    Given number of bytes, return the struct char that can hold those bytes.
    Returns None on invalid value.

    For example,
        2 = H
        4 = I
    """
    if n > 8:
        logger.warning("invalid format specifier: %d > 8", n)
        return None
    elif n > 4:
        return "Q"
    elif n > 2:
        return "I"
    elif n > 1:
        return "H"
    elif n == 1:
        return "B"
    else:
        logger.warning("invalid format specifier: %d", n)
        return None
