# -*- coding: utf-8 -*-
"""
dnmeta, .NET metadata and entry point inspector

Locates the managed code inside a PE image, decodes the CLI header, the
metadata root and its streams, the #~ metadata tables stream, and resolves
the name of the entry point method.  pefile parses the PE container.


REFERENCES

    https://www.ntcore.com/files/dotnetformat.htm
    https://referencesource.microsoft.com/System.AddIn/System/Addin/MiniReflection/MetadataReader/Metadata.cs.html
    ECMA-335 6th Edition, Partition II.24 Metadata physical layout


Copyright (c) 2020-2024 MalwareFrank
"""

__author__ = """MalwareFrank"""
__version__ = "0.1.0"

import copy as _copymod
import struct as _struct
import logging
from typing import Dict, List, Tuple, Optional

from pefile import PE as _PE
from pefile import DIRECTORY_ENTRY, Dump, Structure, DataContainer

from . import base, utils, enums, errors, mapper, stream, entrypoint

logger = logging.getLogger(__name__)
CLR_METADATA_SIGNATURE = 0x424A5342
# ECMA-335 II.24.2.1
MAX_VERSION_LENGTH = 255
# ECMA-335 II.24.2.2, including the null terminator
MAX_STREAM_NAME_LENGTH = 32


class dnPE(_PE):
    """
    A pefile.PE that also decodes the CLR (.NET) data.

    After parse_data_directories(), `net` is the ClrData or None when the
    image has no CLR runtime header.  Unlike the other directories, errors
    decoding the CLR data are raised, not recorded as warnings.
    """

    net: Optional["ClrData"]

    def __init__(
        self,
        name=None,
        data=None,
        fast_load=None,
        strict_tables=True,
    ):
        self.strict_tables = strict_tables
        self.net = None
        super().__init__(name, data, fast_load)

    def dump_info(self, dump=None, encoding="utf-8", entry_point=None, methods=False):
        """
        Dump all the PE and CLR header information into human readable string.
        """
        if dump is None:
            dump = Dump()

        super().dump_info(dump, encoding)
        self.dump_clr_info(dump, entry_point, methods)

        return dump.get_text()

    def dump_clr_info(self, dump=None, entry_point: Optional[entrypoint.EntryPoint] = None, methods=False):
        """
        Dump only the CLR header, metadata, streams, tables and entry point.
        """
        if dump is None:
            dump = Dump()

        if not self.net:
            return dump.get_text()

        #### CLR
        # directory entry
        dump.add_header("CLR (.NET)")
        dump.add_lines(self.net.struct.dump())
        dump.add_line("{0:<20}{1}".format("Flags:", str(self.net.Flags)), indent=2)
        dump.add_newline()

        # metadata
        metadata = self.net.metadata
        dump.add_lines(metadata.struct.dump(), indent=2)
        dump.add_line("{0:<20}{1}".format("VersionString:", metadata.version), indent=2)
        dump.add_newline()
        # Streams
        for stream_ in metadata.streams_list:
            dump.add_lines(stream_.struct.dump(), indent=4)
            dump.add_newline()

        # Metadata Tables
        mdtables = self.net.mdtables
        dump.add_header("CLR (.NET) Metadata Tables")
        dump.add_lines(mdtables.header.dump())
        dump.add_line("{0:<20}{1}".format("TablesPresent:", len(mdtables.row_counts)), indent=2)
        dump.add_line("{0:<20}{1}".format("BytesConsumed:", hex(mdtables.consumed)), indent=2)
        if mdtables.truncated_at is not None:
            dump.add_line("{0:<20}{1}".format("StoppedAtTable:", mdtables.truncated_at), indent=2)
        dump.add_newline()
        for t in mdtables.tables_list:
            for label, value in (
                ("RVA", hex(t.rva)),
                ("TableName", t.name),
                ("TableNumber", t.number),
                ("IsSorted", t.is_sorted),
                ("NumRows", t.num_rows),
                ("RowSize", t.row_size),
                ("FileOffset", hex(t.file_offset)),
            ):
                dump.add_line(
                    "{0:<20}{1}".format(label + ":", str(value)),
                    indent=2,
                )
            dump.add_newline()

        if methods and mdtables.MethodDef is not None:
            dump.add_header("CLR (.NET) Methods")
            for i, method in enumerate(mdtables.MethodDef, 1):
                name = method.Name
                if name is None:
                    raw = self.net.strings.get_str(method.struct.Name_StringIndex, as_bytes=True)
                    name = "<invalid utf-8 {!r}>".format(raw)
                dump.add_line(
                    "{0:>6} 0x{1:08x} {2:<30} {3} | {4}".format(
                        i, method.Rva, name, method.Flags, method.ImplFlags
                    ),
                    indent=2,
                )
            dump.add_newline()

        if entry_point is not None:
            dump.add_header("CLR (.NET) Entry Point")
            for label, value in (
                ("Token", "0x{:08x}".format(entry_point.token)),
                ("TableNumber", entry_point.table_number),
                ("RowIndex", entry_point.row_index),
                ("MethodRVA", hex(entry_point.method.Rva)),
                ("Name", entry_point.name),
            ):
                dump.add_line("{0:<20}{1}".format(label + ":", str(value)), indent=2)
            dump.add_newline()

        return dump.get_text()

    def parse_data_directories(
        self, directories=None, forwarded_exports_only=False, import_dllnames_only=False
    ):
        clr_index = DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR"]
        parse_clr = True
        if directories is not None:
            if not isinstance(directories, (tuple, list)):
                directories = [directories]
            parse_clr = clr_index in directories

        super().parse_data_directories(
            directories, forwarded_exports_only, import_dllnames_only
        )

        if parse_clr:
            self.parse_clr_structure()

    def get_clr_directory(self) -> Tuple[int, int]:
        """
        Return the CLR runtime header directory: tuple RVA, size.

        NOTE: .NET loaders ignore NumberOfRvaAndSizes, so when the data directory
        array is too short the entry is read from the file anyways.
        """
        opt_header = getattr(self, "OPTIONAL_HEADER", None)
        if opt_header is None:
            raise errors.dnFormatError("not a .NET module: no optional header", stage="clr header")

        clr_index = DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR"]
        if clr_index < len(opt_header.DATA_DIRECTORY):
            dir_entry = opt_header.DATA_DIRECTORY[clr_index]
            return dir_entry.VirtualAddress, dir_entry.Size

        dir_entry_size = Structure(self.__IMAGE_DATA_DIRECTORY_format__).sizeof()
        dd_offset = opt_header.get_file_offset() + opt_header.sizeof()
        clr_entry_offset = dd_offset + clr_index * dir_entry_size
        logger.debug(
            "NumberOfRvaAndSizes is %d, reading the CLR directory at 0x%x anyways",
            len(opt_header.DATA_DIRECTORY), clr_entry_offset,
        )
        data = self.__data__[clr_entry_offset:clr_entry_offset + dir_entry_size]
        if len(data) < dir_entry_size:
            return 0, 0
        return _struct.unpack("<II", data)

    def parse_clr_structure(self) -> Optional["ClrData"]:
        """
        Decode the CLR data, if the image has a CLR runtime header.
        Raises a dnError subclass on any malformed structure.
        """
        self.net = None
        rva, size = self.get_clr_directory()
        if not rva:
            logger.info("not a .NET module: no CLR runtime header")
            return None

        address_mapper = mapper.AddressMapper.from_pe(self)
        self.net = ClrData(address_mapper, rva, size, strict_tables=self.strict_tables)
        setattr(self, "DIRECTORY_ENTRY_COM_DESCRIPTOR", self.net)
        return self.net


class ClrMetaDataStruct(Structure):
    Signature: int
    MajorVersion: int
    MinorVersion: int
    Reserved: int
    VersionLength: int
    Version: bytes
    Flags: int
    NumberOfStreams: int


class ClrMetaData(DataContainer):
    """Holds CLR (.NET) MetaData.

    struct:         IMAGE_CLR_METADATA structure
    version:        the version string, without terminator and padding
    streams:        Dictionary to access streams by name (bytes)
    streams_list:   List of streams in order of entry in header
    header_size:    number of bytes from the root start to the end of the last stream header
    """

    rva: int
    file_offset: int
    struct: ClrMetaDataStruct
    version: str
    streams: Dict[bytes, base.ClrStream]
    streams_list: List[base.ClrStream]
    header_size: int

    _format = (
        "IMAGE_CLR_METADATA",
        [
            "I,Signature",
            "H,MajorVersion",
            "H,MinorVersion",
            "I,Reserved",
            "I,VersionLength",
            # '?,Version',
            # 'H,Flags',
            # 'H,NumberOfStreams',
        ],
    )
    #### MetaData section
    #
    # dd    Signature
    # dw    MajorVersion
    # dw    MinorVersion
    # dd    Reserved
    # dd    Length
    # var   Version, padded to 4 bytes
    # dw    Flags
    # dw    NumberOfStreams
    # var   StreamHeaders

    def __init__(self, data: bytes, rva: int, file_offset: int, strict_tables: bool = True):
        """
        Given the image bytes, the MetaData RVA and its file offset.
        Raises dnFormatError if encounter problems parsing.
        """
        self.rva = rva
        self.file_offset = file_offset

        # parse the fixed part so that we can get the version length
        struct_format = _copymod.deepcopy(self.__class__._format)
        metadata_struct = ClrMetaDataStruct(format=struct_format, file_offset=file_offset)
        utils.unpack_struct(metadata_struct, data, file_offset)

        # check signature
        if metadata_struct.Signature != CLR_METADATA_SIGNATURE:
            raise errors.dnFormatError(
                "Invalid CLR MetaData Signature at 0x%x. Expected 0x%x but "
                "got 0x%x" % (file_offset, CLR_METADATA_SIGNATURE, metadata_struct.Signature),
                stage="metadata",
                value=metadata_struct.Signature,
            )
        if metadata_struct.VersionLength > MAX_VERSION_LENGTH:
            raise errors.dnFormatError(
                "Invalid CLR MetaData version length 0x%x" % metadata_struct.VersionLength,
                stage="metadata",
                value=metadata_struct.VersionLength,
            )

        # the fixed part is 16 bytes, so padding the version field
        # to a 4-byte boundary of the root is padding its length.
        version_field_len = utils.dword_padding(metadata_struct.VersionLength)
        if version_field_len > 0:
            struct_format[1].append("{0}s,Version".format(version_field_len))
        struct_format[1].append("H,Flags")
        struct_format[1].append("H,NumberOfStreams")

        # re-parse metadata header structure
        metadata_struct = ClrMetaDataStruct(format=struct_format, file_offset=file_offset)
        utils.unpack_struct(metadata_struct, data, file_offset)
        self.struct = metadata_struct

        version = getattr(metadata_struct, "Version", b"")
        self.version = version.split(b"\x00", 1)[0].decode("utf-8", "backslashreplace")
        if metadata_struct.VersionLength % 4:
            logger.warning("CLR MetaData version length %d is not padded", metadata_struct.VersionLength)

        self.parse_stream_table(data, file_offset + metadata_struct.sizeof())

        # parse each stream; shadowed duplicates stay undecoded
        streams = list(self.streams.values())
        for s in streams:
            s.parse(streams, strict_tables=strict_tables)

    def parse_stream_table(self, data: bytes, streams_table_offset: int):
        streams_list = list()
        streams_dict = dict()
        # pointer to current stream's table entry
        stream_entry_offset = streams_table_offset
        for i in range(self.struct.NumberOfStreams):
            try:
                stream_ = ClrStreamFactory.createStream(data, stream_entry_offset, self.rva, self.file_offset)
            except errors.dnFormatError as e:
                raise errors.dnFormatError(
                    "Invalid .NET stream header {} of {}: {}".format(i + 1, self.struct.NumberOfStreams, e),
                    stage="streams",
                    value=stream_entry_offset,
                ) from e

            streams_list.append(stream_)
            name = stream_.struct.Name
            if name in streams_dict:
                # not fatal, just unusual.
                logger.warning("Duplicate .NET stream name: %r", name)

            # dotnet uses the last encountered stream with a given name
            streams_dict[name] = stream_
            # move to next entry in streams table
            stream_entry_offset += stream_.stream_table_entry_size()

        self.streams = streams_dict
        self.streams_list = streams_list
        self.header_size = stream_entry_offset - self.file_offset


class ClrStruct(Structure):
    cb: int
    MajorRuntimeVersion: int
    MinorRuntimeVersion: int
    MetaDataRva: int
    MetaDataSize: int
    Flags: int
    EntryPointTokenOrRva: int
    ResourcesRva: int
    ResourcesSize: int
    StrongNameSignatureRva: int
    StrongNameSignatureSize: int
    CodeManagerTableRva: int
    CodeManagerTableSize: int
    VTableFixupsRva: int
    VTableFixupsSize: int
    ExportAddressTableJumpsRva: int
    ExportAddressTableJumpsSize: int
    ManagedNativeHeaderRva: int
    ManagedNativeHeaderSize: int


class ClrData(DataContainer):
    """Holds CLR (.NET) header data.

    struct:         IMAGE_NET_DIRECTORY structure
    metadata:       ClrMetaData
    strings:        stream.StringsHeap
    mdtables:       stream.MetaDataTables
    Flags:          enums.ClrHeaderFlags
    """

    struct: ClrStruct
    metadata: ClrMetaData
    strings: stream.StringsHeap
    mdtables: stream.MetaDataTables
    Flags: enums.ClrHeaderFlags

    # Structure description from:
    # http://www.ntcore.com/files/dotnetformat.htm
    _format = (
        "IMAGE_NET_DIRECTORY",
        (
            "I,cb",
            "H,MajorRuntimeVersion",
            "H,MinorRuntimeVersion",
            "I,MetaDataRva",
            "I,MetaDataSize",
            "I,Flags",
            "I,EntryPointTokenOrRva",
            "I,ResourcesRva",
            "I,ResourcesSize",
            "I,StrongNameSignatureRva",
            "I,StrongNameSignatureSize",
            "I,CodeManagerTableRva",
            "I,CodeManagerTableSize",
            "I,VTableFixupsRva",
            "I,VTableFixupsSize",
            "I,ExportAddressTableJumpsRva",
            "I,ExportAddressTableJumpsSize",
            "I,ManagedNativeHeaderRva",
            "I,ManagedNativeHeaderSize",
        ),
    )

    def __init__(self, address_mapper: mapper.AddressMapper, rva: int, size: int, strict_tables: bool = True):
        """
        Given an AddressMapper, .NET header RVA and header size.
        Raises a dnError subclass if problems parsing.
        """
        self.rva = rva
        data = address_mapper.data

        try:
            offset = address_mapper.get_offset_from_rva(rva)
        except errors.dnUnmappedAddressError as e:
            raise errors.dnUnmappedAddressError("CLR header: {}".format(e), value=rva) from e

        clr_struct = ClrStruct(self._format, file_offset=offset)
        utils.unpack_struct(clr_struct, data, offset)
        if clr_struct.cb != clr_struct.sizeof() or size < clr_struct.sizeof():
            # the runtime does not trust either value, neither do we
            logger.warning(
                "CLR header size mismatch: cb=%d, directory size=%d, expected %d",
                clr_struct.cb, size, clr_struct.sizeof(),
            )

        # set structure member
        self.struct = clr_struct
        self.Flags = enums.ClrHeaderFlags(clr_struct.Flags)

        try:
            metadata_offset = address_mapper.get_offset_from_rva(clr_struct.MetaDataRva)
        except errors.dnUnmappedAddressError as e:
            raise errors.dnUnmappedAddressError("CLR MetaData: {}".format(e), value=clr_struct.MetaDataRva) from e

        self.metadata = ClrMetaData(data, clr_struct.MetaDataRva, metadata_offset, strict_tables=strict_tables)
        if self.metadata.header_size > clr_struct.MetaDataSize:
            logger.warning(
                "CLR MetaData stream headers (0x%x bytes) exceed the MetaData directory size 0x%x",
                self.metadata.header_size, clr_struct.MetaDataSize,
            )

        # create shortcuts for streams
        # dotnet runtime uses the last stream of a given name
        strings = None
        mdtables = None
        for s in self.metadata.streams.values():
            if isinstance(s, stream.StringsHeap):
                strings = s
            elif isinstance(s, stream.MetaDataTables):
                mdtables = s

        if mdtables is None:
            if b"#-" in self.metadata.streams:
                raise errors.dnFormatError(
                    "uncompressed metadata tables stream #- is not supported", stage="streams"
                )
            raise errors.dnFormatError("missing metadata tables stream #~", stage="streams")
        if strings is None:
            raise errors.dnFormatError("missing #Strings heap", stage="streams")

        self.strings = strings
        self.mdtables = mdtables

    def get_entry_point(self) -> entrypoint.EntryPoint:
        """
        Resolve the managed entry point named by the CLI header.
        Raises dnResolutionError if there is none or it cannot be resolved.
        """
        token = self.struct.EntryPointTokenOrRva
        if self.Flags.CLR_NATIVE_ENTRYPOINT:
            raise errors.dnResolutionError(
                "native entry point at RVA 0x{:x}, not a metadata token".format(token), value=token
            )
        if token == 0:
            raise errors.dnResolutionError("no entry point token in CLR header", value=token)
        return entrypoint.resolve_entry_point(token, self.mdtables.MethodDef, self.strings)


class ClrStreamFactory(object):
    _name_type_map = {
        b"#~": stream.MetaDataTables,
        b"#Strings": stream.StringsHeap,
    }
    _template_format = (
        "IMAGE_CLR_STREAM",
        [
            "I,Offset",
            "I,Size",
            # '?,Name',
        ],
    )

    @classmethod
    def createStream(
        cls, data: bytes, stream_entry_offset: int, metadata_rva: int, metadata_offset: int
    ) -> base.ClrStream:
        """
        Decode the stream header at the given file offset and return the stream.
        Raises dnFormatError if the header or the stream data is out of bounds.
        """
        # start with structure template
        struct_format = _copymod.deepcopy(cls._template_format)
        # read name
        name_offset = stream_entry_offset + 8
        name, name_end = utils.read_cstring(data, name_offset, max_length=MAX_STREAM_NAME_LENGTH)
        # round field length up to next 4-byte boundary of the root, after the NULL byte at end.
        name_len = utils.dword_padding(name_end, metadata_offset) - name_offset
        # add name field to structure
        struct_format[1].append("{0}s,Name".format(name_len))
        # parse structure
        stream_struct = base.StreamStruct(struct_format, file_offset=stream_entry_offset)
        utils.unpack_struct(stream_struct, data, stream_entry_offset)
        # padding bytes are not always zero, keep the name up to the terminator
        stream_struct.Name = name
        # use GenericStream for any non-standard streams
        stream_class = cls._name_type_map.get(name, stream.GenericStream)
        return stream_class(data, metadata_rva, metadata_offset, stream_struct)
