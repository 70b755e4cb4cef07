# -*- coding: utf-8 -*-
"""
.NET Streams

REFERENCES

    https://www.ntcore.com/files/dotnetformat.htm
    https://referencesource.microsoft.com/System.AddIn/System/Addin/MiniReflection/MetadataReader/Metadata.cs.html#123
    ECMA-335 6th Edition, June 2012, Section II.24.2 Streams

Copyright (c) 2020-2024 MalwareFrank
"""

import logging
from typing import Dict, List, Tuple, Optional

from pefile import MAX_STRING_LENGTH, Structure

from . import base, utils, errors, mdtable

logger = logging.getLogger(__name__)


class GenericStream(base.ClrStream):
    """
    A CLR Stream that is not decoded, e.g. #US, #GUID, #Blob.
    """
    pass


class HeapItemString(base.HeapItem):
    """
    A HeapItemString is a HeapItem with an encoding.  The .value member
    is the decoded string or None if there was a UnicodeDecodeError.

    A HeapItemString can be compared directly to a str.
    """
    encoding: Optional[str]

    def __init__(self, data: bytes, rva: Optional[int] = None, encoding="utf-8"):
        super().__init__(data, rva=rva)
        self.encoding = encoding
        try:
            self.value: Optional[str] = self.__data__.decode(encoding)
        except UnicodeDecodeError:
            logger.warning("string at rva 0x%x is not valid %s", rva or 0, encoding)
            self.value = None

    def __str__(self) -> str:
        return self.value or ""

    def __eq__(self, other):
        if isinstance(other, str):
            return self.value == other
        return super().__eq__(other)


class StringsHeap(base.ClrHeap):
    """
    The #Strings heap: null-terminated UTF-8 strings addressed by byte offset.
    """

    def get_str(self, index: int, max_length=MAX_STRING_LENGTH, encoding="utf-8", as_bytes=False):
        """
        Given an index (offset), read a null-terminated UTF-8 (or given encoding) string.
        Returns the string, None if it cannot be decoded, or bytes if as_bytes is True.
        """
        item = self.get(index, max_length, encoding)

        if as_bytes:
            return item.value_bytes()

        return item.value

    def get(self, index: int, max_length=MAX_STRING_LENGTH, encoding="utf-8") -> HeapItemString:
        """
        Given an index (offset), read a null-terminated UTF-8 (or given encoding) string.

        Raises dnBoundsError if the index is past the end of the heap,
        or dnFormatError if the string is not terminated within the heap.
        """
        if index < 0 or index >= self.sizeof():
            raise errors.dnBoundsError(
                "#Strings index 0x{:x} out of range (heap size 0x{:x})".format(index, self.sizeof()),
                value=index,
            )

        offset = self.file_offset + index
        value, _ = utils.read_cstring(
            self.__data__, offset, end=self.file_offset + self.sizeof(), max_length=max_length
        )

        return HeapItemString(value, rva=self.rva + index, encoding=encoding)


class MDTablesStruct(Structure):
    Reserved_1: int
    MajorVersion: int
    MinorVersion: int
    HeapOffsetSizes: int
    Reserved_2: int
    MaskValid: int
    MaskSorted: int


class MetaDataTables(base.ClrStream):
    """Holds CLR (.NET) Metadata Tables.

    struct:     the stream list entry
    header:     IMAGE_CLR_METADATA_TABLES structure
    row_counts: list of (table number, row count), in stream order
    tables:     dict of tables where table number is key and value is ClrMetaDataTable object
    tables_list:            list of tables, in stream order
    strings_offset_size:    number of bytes
    guids_offset_size:      number of bytes
    blobs_offset_size:      number of bytes
    consumed:               number of stream bytes covered by header, row counts and table rows
    truncated_at:           number of the unknown table that stopped decoding, or None
    """

    _format = (
        "IMAGE_CLR_METADATA_TABLES",
        (
            "I,Reserved_1",
            "B,MajorVersion",
            "B,MinorVersion",
            "B,HeapOffsetSizes",
            "B,Reserved_2",
            "Q,MaskValid",
            "Q,MaskSorted",
        ),
    )

    STRINGS_MASK = 0x01
    GUIDS_MASK = 0x02
    BLOBS_MASK = 0x04
    EXTRA_DATA_MASK = 0x40
    MAX_TABLES = 64

    header: Optional[MDTablesStruct]
    row_counts: List[Tuple[int, int]]
    tables: Dict[int, base.ClrMetaDataTable]
    tables_list: List[base.ClrMetaDataTable]
    strings_offset_size: int
    guids_offset_size: int
    blobs_offset_size: int

    MethodDef: Optional[mdtable.MethodDef]

    def __init__(self, data: bytes, metadata_rva: int, metadata_offset: int, stream_struct: base.StreamStruct):
        super().__init__(data, metadata_rva, metadata_offset, stream_struct)
        self.header = None
        self.row_counts = list()
        self.tables = dict()
        self.tables_list = list()
        self.strings_offset_size = 2
        self.guids_offset_size = 2
        self.blobs_offset_size = 2
        self.consumed = 0
        self.truncated_at: Optional[int] = None
        self.MethodDef = None

    def parse(self, streams: List[base.ClrStream], strict_tables: bool = True):
        """
        Decode the tables header, the row counts and the table spans.
        Only MethodDef rows are materialized.

        Raises dnFormatError on truncated data, or on a table number this
        decoder does not know that has rows (unless strict_tables is False,
        in which case decoding stops at that table).
        """
        header_len = Structure(self._format).sizeof()

        #### parse header
        header_struct = MDTablesStruct(self._format, file_offset=self.file_offset)
        header_struct.__unpack__(self.get_data_at_offset(0, header_len))
        self.header = header_struct

        #### heaps offsets
        heap_sizes = header_struct.HeapOffsetSizes
        self.strings_offset_size = 4 if heap_sizes & self.STRINGS_MASK else 2
        self.guids_offset_size = 4 if heap_sizes & self.GUIDS_MASK else 2
        self.blobs_offset_size = 4 if heap_sizes & self.BLOBS_MASK else 2

        # the last instance of a heap wins, as in the dotnet runtime
        strings_heap: Optional[StringsHeap] = None
        for s in streams:
            if isinstance(s, StringsHeap):
                strings_heap = s

        #### Parse tables rows list.
        #  It is a variable length array of dwords.  Each dword is
        #  the number of rows in a table.  They are ordered by table
        #  number, smallest first.  Only the tables present in
        #  the header's MaskValid member are listed.
        cursor = header_len
        table_rowcounts = [0] * self.MAX_TABLES
        for i in range(self.MAX_TABLES):
            if header_struct.MaskValid & (1 << i):
                try:
                    count = self.get_dword_at_offset(cursor)
                except errors.dnFormatError:
                    raise errors.dnFormatError(
                        "#~ stream truncated in row count of table {}".format(i), stage="tables", value=i
                    )
                self.row_counts.append((i, count))
                table_rowcounts[i] = count
                cursor += 4

        # consume an extra dword if the extra data bit is set
        if heap_sizes & self.EXTRA_DATA_MASK:
            logger.debug("#~ stream has extra data dword after the row counts")
            cursor += 4

        #### table spans
        # here, cursor points to start of table rows
        for number, count in self.row_counts:
            if not mdtable.ClrMetaDataTableFactory.is_known(number):
                if count == 0:
                    logger.debug("ignoring unknown table %d without rows", number)
                    continue
                if strict_tables:
                    raise errors.dnFormatError(
                        "unsupported metadata table {} (MaskValid bit {}) with {} rows".format(number, number, count),
                        stage="tables",
                        value=number,
                    )
                logger.warning(
                    "unsupported metadata table %d with %d rows, tables after it are not decoded", number, count
                )
                self.truncated_at = number
                break

            is_sorted = header_struct.MaskSorted & (1 << number) != 0
            table = mdtable.ClrMetaDataTableFactory.createTable(
                number,
                table_rowcounts,
                is_sorted,
                self.strings_offset_size,
                self.guids_offset_size,
                self.blobs_offset_size,
                strings_heap,
            )

            span = table.span_size
            if cursor + span > self.sizeof():
                raise errors.dnFormatError(
                    "table {} ({} rows of {} bytes) at offset 0x{:x} overruns the #~ stream (0x{:x} bytes)".format(
                        table.name, count, table.row_size, cursor, self.sizeof()
                    ),
                    stage="tables",
                    value=number,
                )
            table.rva = self.rva + cursor
            table.file_offset = self.get_file_offset(cursor)
            if table.materialized:
                table.parse_rows(self.get_data_at_offset(cursor, span), table.file_offset)
            cursor += span

            self.tables[number] = table
            self.tables_list.append(table)
            setattr(self, table.name, table)

        self.consumed = cursor
        if cursor < self.sizeof():
            logger.debug("#~ stream has 0x%x bytes after the last table", self.sizeof() - cursor)
