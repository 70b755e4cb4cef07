# -*- coding: utf-8 -*-
"""
.NET base classes

Copyright (c) 2020-2024 MalwareFrank
"""
import abc
import enum
import struct as _struct
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Type, Tuple, Union, Generic, TypeVar, Optional, Sequence

from pefile import Structure

from . import enums, utils, errors, codedindex

if TYPE_CHECKING:
    from . import stream


logger = logging.getLogger(__name__)


class StreamStruct(Structure):
    Name: bytes
    Offset: int
    Size: int


class ClrStream(abc.ABC):
    """
    A view of one metadata stream inside the image.

    struct:         the stream header entry
    rva:            RVA of the stream data
    file_offset:    file offset of the stream data
    """

    def __init__(
        self,
        data: bytes,
        metadata_rva: int,
        metadata_offset: int,
        stream_struct: StreamStruct,
    ):
        """
        Given the image bytes, the metadata root RVA and file offset, and the stream header.
        Raises dnFormatError if the stream does not fit in the image.
        """
        self.struct: StreamStruct = stream_struct
        self.rva: int = metadata_rva + stream_struct.Offset
        self.file_offset: int = metadata_offset + stream_struct.Offset
        self._stream_table_entry_size = stream_struct.sizeof()
        self._data_size: int = stream_struct.Size
        if self.file_offset + self._data_size > len(data):
            raise errors.dnFormatError(
                "stream {!r} at offset 0x{:x} with size 0x{:x} runs past the end of the image (0x{:x})".format(
                    stream_struct.Name, self.file_offset, self._data_size, len(data)
                ),
                stage="streams",
                value=self.file_offset,
            )
        self.__data__: bytes = data

    def parse(self, streams: List["ClrStream"], strict_tables: bool = True):
        """
        Parse the stream.

        NOTE: do not call until all streams have been initialized,
              since we may need info from other streams.
        """
        pass

    def stream_table_entry_size(self):
        """
        Returns the number of bytes occupied by this entry in the Streams table list.
        """
        return self._stream_table_entry_size

    def sizeof(self):
        """
        Return the size of this stream, in bytes.
        """
        return self._data_size

    def get_file_offset(self, offset: Optional[int] = None) -> int:
        """
        Return the file offset of the given offset within this stream.
        If no offset given, then return the file offset of this stream.
        """
        if offset is None:
            return self.file_offset
        return self.file_offset + offset

    def get_data_at_offset(self, offset: int, size: int) -> bytes:
        """
        Return exactly size bytes at the given offset within this stream.
        Raises dnFormatError if they are not all inside the stream.
        """
        if offset < 0 or size < 0 or offset + size > self.sizeof():
            raise errors.dnFormatError(
                "read of 0x{:x} bytes at offset 0x{:x} overruns stream {!r} (0x{:x} bytes)".format(
                    size, offset, self.struct.Name, self.sizeof()
                ),
                value=offset,
            )
        start = self.file_offset + offset
        return self.__data__[start:start + size]

    def get_dword_at_offset(self, offset: int) -> int:
        # Little-endian
        return _struct.unpack("<I", self.get_data_at_offset(offset, 4))[0]


class HeapItem(abc.ABC):
    """
    HeapItem is a base class for items retrieved from a heap stream.

    It can be used to access the raw underlying data, the RVA
    from which it was retrieved, and an optional interpreted value.
    """

    rva: Optional[int] = None
    # original data from file
    __data__: bytes
    # interpreted value
    value: Any = None

    def __init__(self, data: bytes, rva: Optional[int] = None):
        self.rva = rva
        self.__data__ = data

    def value_bytes(self):
        """
        Return the raw bytes underlying the interpreted value.

        For the base HeapItem, this is the same as the raw_data.
        """
        return self.__data__

    @property
    def raw_data(self):
        return self.__data__

    def __eq__(self, other):
        """
        Two HeapItems are equal if their raw data is the same or their
        interpreted values are the same and not None.

        A HeapItem is equal to a bytes object if the HeapItem's value as bytes
        is equal to the bytes object.
        """
        if isinstance(other, HeapItem):
            return self.raw_data == other.raw_data or (self.value is not None and self.value == other.value)
        elif isinstance(other, bytes):
            return self.value_bytes() == other
        return False

    # equal to bytes and str values alike, so no hash consistent with __eq__
    __hash__ = None  # type: ignore[assignment]


class ClrHeap(ClrStream):
    @abc.abstractmethod
    def get(self, index: int):
        raise NotImplementedError()


class HeapIndex(enum.Enum):
    """
    Column kinds that index into a heap.  Their width depends on the
    HeapOffsetSizes flags of the #~ stream.
    """
    Strings = 1
    Guid = 2
    Blob = 3


# A column is described by its field name and one of:
#   - a struct char for a fixed-width value ("B", "H", "I")
#   - a HeapIndex
#   - a codedindex.TableIndex instance, for a plain index into one table
#   - a codedindex.CodedIndex subclass
ColumnSpec = Union[str, HeapIndex, codedindex.TableIndex, Type[codedindex.CodedIndex]]


def checked_offset_format(offset_size: int) -> str:
    """
    compute the format specifier needed for a heap offset of the given size.
    raises an exception if the offset cannot be represented.
    """
    format = utils.num_bytes_to_struct_char(offset_size)
    if format is None:
        raise errors.dnFormatError("invalid heap offset size: {}".format(offset_size), value=offset_size)
    return format


class RowStruct(Structure):
    pass


class MDTableRow(abc.ABC):
    """
    This is the base class for materialized Metadata Tables' rows.

    A row is parsed with the struct format computed by its table, then the
    struct fields are mapped to row attributes by the parsing strategies.
    """
    #
    # required properties for subclasses.
    #
    #   class MethodDefRow(MDTableRow):
    #       _struct_class = MethodDefRowStruct
    #
    _struct_class: Type[RowStruct]

    #
    # optional parsing strategies:
    #  - asis: map data as-is, possibly change the field name
    #  - flags: resolve via given flags class
    #
    _struct_asis: Dict[str, str]
    _struct_flags: Dict[str, Tuple[str, Type[enums.ClrFlags]]]

    def __init__(self, format: Tuple[str, Sequence[str]], strings_heap: Optional["stream.StringsHeap"]):
        assert hasattr(self.__class__, "_struct_class")

        self._format = format
        self._strings: Optional["stream.StringsHeap"] = strings_heap
        self.struct: RowStruct = self.__class__._struct_class(format=self._format)
        self.row_size: int = self.struct.sizeof()

    def set_data(self, data: bytes, file_offset: int):
        """
        Unpack the row data and set attributes.
        """
        self.struct = self.__class__._struct_class(format=self._format, file_offset=file_offset)
        utils.unpack_struct(self.struct, data, 0)
        self._parse_struct_asis()
        self._parse_struct_flags()

    def _parse_struct_asis(self):
        for struct_name, attr_name in getattr(self.__class__, "_struct_asis", {}).items():
            setattr(self, attr_name, getattr(self.struct, struct_name))

    def _parse_struct_flags(self):
        for struct_name, (attr_name, flag_class) in getattr(self.__class__, "_struct_flags", {}).items():
            setattr(self, attr_name, flag_class(getattr(self.struct, struct_name)))

    def _get_string(self, struct_name: str) -> Optional[str]:
        """
        Resolve a string heap index field.
        Raises dnFormatError if there is no #Strings heap, or dnBoundsError on a bad index.
        """
        if self._strings is None:
            raise errors.dnFormatError("no #Strings heap to resolve {}".format(struct_name))
        return self._strings.get_str(getattr(self.struct, struct_name))


# This type describes the type of row that a table contains.
# Instances of these types must be subclasses of MDTableRow.
RowType = TypeVar('RowType', bound=MDTableRow)


class ClrMetaDataTable(Generic[RowType]):
    """
    A Metadata table.  Every table knows its column layout and so its row
    size.  Only tables with a _row_class materialize rows; for all other
    tables the rows are a consumed span of the #~ stream.

    Rows can be accessed directly like a list with bracket [] syntax.
    Use `get_with_row_index` when you have a Rid/token/row_index,
     since these are 1-indexed.

    Subclasses should make sure to set the following attributes:
        number
        name
        _columns
    """
    #
    #   class Module(ClrMetaDataTable):
    #       name = "Module"
    #       number = 0
    #       _columns = (
    #           ("Generation", "H"),
    #           ("Name_StringIndex", HeapIndex.Strings),
    #           ...
    #       )
    #
    number: int
    name: str
    _columns: Sequence[Tuple[str, ColumnSpec]]
    _row_class: Optional[Type[RowType]] = None

    def __init__(
        self,
        tables_rowcounts: List[int],
        is_sorted: bool,
        strings_offset_size: int,
        guid_offset_size: int,
        blob_offset_size: int,
        strings_heap: Optional["stream.StringsHeap"] = None,
    ):
        """
        Given the tables' row counts, sorted flag, and heap info.
        Initialize the following attributes:
            num_rows    The number of rows, according to tables_rowcounts.
            row_size    The size, in bytes, of one row.
            is_sorted   Whether the table is sorted.
            rows        Materialized rows, empty until parse_rows() for tables with a _row_class.

        tables_rowcounts is indexed by table number, absent tables have a count of zero.
        """
        assert hasattr(self, "number")
        assert hasattr(self, "name")
        assert hasattr(self, "_columns")

        self.rva: int = 0
        self.file_offset: int = 0

        self._tables_rowcnt = tables_rowcounts
        self._str_offsz = strings_offset_size
        self._guid_offsz = guid_offset_size
        self._blob_offsz = blob_offset_size
        self._strings_heap = strings_heap

        self.is_sorted: bool = is_sorted
        self.num_rows: int = tables_rowcounts[self.number]
        self._format = self._compute_format()
        self.row_size: int = Structure(self._format).sizeof()
        self.rows: List[RowType] = []

    def _compute_format(self) -> Tuple[str, Tuple[str, ...]]:
        """
        Compute the row structure format from the column layout.
        """
        return (
            "CLR_METADATA_TABLE_{}".format(self.name.upper()),
            tuple(
                "{},{}".format(self._column_struct_char(spec), field)
                for field, spec in self._columns
            ),
        )

    def _column_struct_char(self, spec: ColumnSpec) -> str:
        if isinstance(spec, str):
            return spec
        if spec is HeapIndex.Strings:
            return checked_offset_format(self._str_offsz)
        if spec is HeapIndex.Guid:
            return checked_offset_format(self._guid_offsz)
        if spec is HeapIndex.Blob:
            return checked_offset_format(self._blob_offsz)
        return self._clr_coded_index_struct_size(spec.tag_bits, spec.table_names)

    def _clr_coded_index_struct_size(self, tag_bits: int, table_names: Sequence[str]) -> str:
        """
        Given table names and tag bits, checks for the max row count
        among the given tables and returns "H" if the index fits in
        a word or "I" if not, assuming tag bits number of bits are used
        by tag.
        """
        max_index = 0
        for name in table_names:
            if not name:
                continue
            table_rowcnt = self._tables_rowcnt[enums.MetadataTables[name].value]
            max_index = max(max_index, table_rowcnt)

        if max_index < 2 ** (16 - tag_bits):
            return "H"
        return "I"

    @property
    def span_size(self) -> int:
        """
        Number of bytes this table occupies in the #~ stream.
        """
        return self.row_size * self.num_rows

    @property
    def materialized(self) -> bool:
        return self._row_class is not None

    def parse_rows(self, data: bytes, file_offset: int):
        """
        Given the bytes of the whole table span and its file offset, create
        one row object per row.  Tables without a _row_class keep no rows.
        """
        if self._row_class is None:
            return
        if len(data) < self.span_size:
            raise errors.dnFormatError(
                "not enough data to parse {} rows of table {}".format(self.num_rows, self.name),
                stage="tables",
                value=self.number,
            )
        rows = []
        for i in range(self.num_rows):
            offset = i * self.row_size
            row = self._row_class(self._format, self._strings_heap)
            row.set_data(data[offset:offset + self.row_size], file_offset + offset)
            rows.append(row)
        self.rows = rows

    def __getitem__(self, index: int) -> RowType:
        return self.rows[index]

    def __len__(self):
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def get_with_row_index(self, row_index: int) -> RowType:
        """
        fetch the row with the given row index.
        remember: row indices, at least those encoded within a .NET file, are 1-based.
        use `__getitem__` when you want 0-based indexing.

        Raises dnBoundsError when the row index is out of range.
        """
        if row_index < 1 or row_index > len(self.rows):
            raise errors.dnBoundsError(
                "row index {} out of range for table {} with {} rows".format(row_index, self.name, len(self.rows)),
                value=row_index,
            )
        return self.rows[row_index - 1]
