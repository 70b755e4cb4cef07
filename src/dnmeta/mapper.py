# -*- coding: utf-8 -*-
"""
RVA to file offset translation.

The section geometry rules follow what the Windows loader does with
sections whose raw and virtual sizes disagree, not the nominal values in
the section headers:

  - the raw pointer is rounded down to a 512-byte boundary, whatever the
    declared FileAlignment;
  - the readable span of a section is bounded by its raw data rounded up
    to FileAlignment, by its raw size rounded up to a page, and (if set)
    by its virtual size rounded up to a page.

REFERENCES

    https://learn.microsoft.com/en-us/windows/win32/debug/pe-format#section-table-section-headers
    https://github.com/corkami/docs/blob/master/PE/PE.md

Copyright (c) 2020-2024 MalwareFrank
"""

import logging
from typing import TYPE_CHECKING, List, Iterable, Optional, NamedTuple

from . import errors
from .utils import align_up, align_down

if TYPE_CHECKING:
    from pefile import PE

logger = logging.getLogger(__name__)

# physical alignment of PointerToRawData, regardless of FileAlignment
PHYSICAL_ALIGNMENT = 0x200
PAGE_SIZE = 0x1000


class SectionDescriptor(NamedTuple):
    VirtualAddress: int
    VirtualSize: int
    PointerToRawData: int
    SizeOfRawData: int


def section_read_size(section: SectionDescriptor, file_alignment: int) -> int:
    """
    Given a section and the image FileAlignment, return the number of bytes
    of the section that are backed by file data when mapped.
    """
    raw_start = align_down(section.PointerToRawData, PHYSICAL_ALIGNMENT)
    raw_end = align_up(section.PointerToRawData + section.SizeOfRawData, file_alignment)
    read_size = min(raw_end - raw_start, align_up(section.SizeOfRawData, PAGE_SIZE))
    if section.VirtualSize == 0:
        return read_size
    return min(read_size, align_up(section.VirtualSize, PAGE_SIZE))


def section_contains_rva(section: SectionDescriptor, rva: int, file_alignment: int) -> bool:
    start = section.VirtualAddress
    return start <= rva < start + section_read_size(section, file_alignment)


def get_offset_from_rva(rva: int, sections: Iterable[SectionDescriptor], file_alignment: int) -> int:
    """
    Given an RVA, the image sections and FileAlignment, return the file offset.
    Raises dnUnmappedAddressError if no section covers the RVA.
    """
    for section in sections:
        if section_contains_rva(section, rva, file_alignment):
            return (rva - section.VirtualAddress) + align_down(section.PointerToRawData, PHYSICAL_ALIGNMENT)
    raise errors.dnUnmappedAddressError("RVA 0x{:x} is not mapped by any section".format(rva), value=rva)


class AddressMapper(object):
    """
    Translates RVAs of one image into file offsets and reads the bytes there.

    data:               the whole file, immutable
    sections:           list of SectionDescriptor, in section table order
    file_alignment:     OPTIONAL_HEADER.FileAlignment
    """

    def __init__(self, data: bytes, sections: List[SectionDescriptor], file_alignment: int):
        self.data = data
        self.sections = sections
        self.file_alignment = file_alignment

    @classmethod
    def from_pe(cls, pe: "PE", data: Optional[bytes] = None) -> "AddressMapper":
        """
        Given a pefile.PE and optionally its bytes, return an AddressMapper
        over its sections.  By default the bytes are copied from the PE.
        """
        if data is None:
            data = pe.__data__[:]
        sections = [
            SectionDescriptor(
                s.VirtualAddress,
                s.Misc_VirtualSize,
                s.PointerToRawData,
                s.SizeOfRawData,
            )
            for s in pe.sections
        ]
        return cls(data, sections, pe.OPTIONAL_HEADER.FileAlignment)

    def get_offset_from_rva(self, rva: int) -> int:
        return get_offset_from_rva(rva, self.sections, self.file_alignment)

    def get_data(self, rva: int, size: int) -> bytes:
        """
        Return exactly size bytes of file data at the given RVA.
        Raises dnUnmappedAddressError or dnFormatError if they cannot be read.
        """
        offset = self.get_offset_from_rva(rva)
        if offset + size > len(self.data):
            raise errors.dnFormatError(
                "truncated image: need 0x{:x} bytes at RVA 0x{:x} (offset 0x{:x})".format(size, rva, offset),
                value=rva,
            )
        return self.data[offset:offset + size]
