"""
Builders for small synthetic .NET images.

The default image looks like a compiled hello world: one .text section at
RVA 0x2000 / file offset 0x200 holding the CLI header at RVA 0x2008 and
the metadata root at RVA 0x2050.
"""
import struct
from pathlib import Path
from typing import Dict, List, Tuple, Optional, Sequence

CD = Path(__file__).parent

METADATA_SIGNATURE = 0x424A5342
FILE_ALIGNMENT = 0x200
SECTION_ALIGNMENT = 0x2000
TEXT_RVA = 0x2000
TEXT_RAW = 0x200
CLI_HEADER_RVA = 0x2008
CLI_HEADER_SIZE = 72
METADATA_RVA = 0x2050

CLR_ILONLY = 0x01
CLR_NATIVE_ENTRYPOINT = 0x10
HEAP_STRINGS_WIDE = 0x01
HEAP_GUID_WIDE = 0x02
HEAP_BLOB_WIDE = 0x04
HEAP_EXTRA_DATA = 0x40

# public static hidebysig
METHOD_MAIN_FLAGS = 0x0096
# public hidebysig specialname rtspecialname
METHOD_CTOR_FLAGS = 0x1886


def pad4(data: bytes) -> bytes:
    return data + b"\x00" * (-len(data) % 4)


def build_strings_heap(*strings: str) -> Tuple[bytes, Dict[str, int]]:
    """
    Return the heap bytes and the index of each string.
    The heap starts with the mandatory empty string.
    """
    heap = b"\x00"
    indexes = {}
    for s in strings:
        indexes[s] = len(heap)
        heap += s.encode("utf-8") + b"\x00"
    return heap, indexes


def build_stream_header(offset: int, size: int, name: bytes) -> bytes:
    return struct.pack("<II", offset, size) + pad4(name + b"\x00")


def build_metadata_root(
    streams: Sequence[Tuple[bytes, bytes]],
    version: bytes = b"v4.0.30319",
    version_length: Optional[int] = None,
    signature: int = METADATA_SIGNATURE,
) -> bytes:
    """
    Return a metadata root with the given (name, data) streams laid out
    after the stream headers, each padded to 4 bytes.
    """
    version_field = pad4(version + b"\x00")
    if version_length is None:
        version_length = len(version_field)
    head = struct.pack("<IHHII", signature, 1, 1, 0, version_length)
    head += version_field
    head += struct.pack("<HH", 0, len(streams))

    headers_size = len(head) + sum(len(build_stream_header(0, 0, name)) for name, _ in streams)
    entries = b""
    body = b""
    for name, data in streams:
        entries += build_stream_header(headers_size + len(body), len(data), name)
        body += pad4(data)
    return head + entries + body


def build_tables_stream(
    row_counts: Dict[int, int],
    rows: bytes = b"",
    heap_sizes: int = 0,
    sorted_mask: int = 0,
    extra_data: int = 0,
) -> bytes:
    """
    Return a #~ stream: header, one row count per present table, then rows.
    """
    valid = 0
    for number in row_counts:
        valid |= 1 << number
    data = struct.pack("<IBBBBQQ", 0, 2, 0, heap_sizes, 1, valid, sorted_mask)
    for number in sorted(row_counts):
        data += struct.pack("<I", row_counts[number])
    if heap_sizes & HEAP_EXTRA_DATA:
        data += struct.pack("<I", extra_data)
    return data + rows


def module_row(name: int, mvid: int = 1) -> bytes:
    return struct.pack("<HHHHH", 0, name, mvid, 0, 0)


def typedef_row(flags: int, name: int, namespace: int, extends: int, field_list: int, method_list: int) -> bytes:
    return struct.pack("<IHHHHH", flags, name, namespace, extends, field_list, method_list)


def methoddef_row(rva: int, impl_flags: int, flags: int, name: int, signature: int, param_list: int) -> bytes:
    return struct.pack("<IHHHHH", rva, impl_flags, flags, name, signature, param_list)


def build_hello_world_metadata() -> Tuple[bytes, bytes]:
    """
    Return (#~ stream, #Strings heap) for a module with the types <Module>
    and HelloWorld.Program and the methods Main and .ctor.
    """
    strings, idx = build_strings_heap("<Module>", "Main", ".ctor", "Program", "HelloWorld", "hello.exe")
    rows = module_row(idx["hello.exe"])
    rows += typedef_row(0, idx["<Module>"], 0, 0, 1, 1)
    rows += typedef_row(0x00100001, idx["Program"], idx["HelloWorld"], 0x5, 1, 1)
    rows += methoddef_row(0x2100, 0, METHOD_MAIN_FLAGS, idx["Main"], 1, 1)
    rows += methoddef_row(0x2110, 0, METHOD_CTOR_FLAGS, idx[".ctor"], 4, 1)
    tables = build_tables_stream({0: 1, 2: 2, 6: 2}, rows)
    return tables, strings


def default_streams(tables: Optional[bytes] = None, strings: Optional[bytes] = None) -> List[Tuple[bytes, bytes]]:
    default_tables, default_strings = build_hello_world_metadata()
    return [
        (b"#~", default_tables if tables is None else tables),
        (b"#Strings", default_strings if strings is None else strings),
        (b"#US", b"\x00"),
        (b"#GUID", bytes(range(16))),
        (b"#Blob", b"\x00\x03\x20\x00\x01"),
    ]


def build_cli_header(
    metadata_rva: int,
    metadata_size: int,
    flags: int = CLR_ILONLY,
    entry_point: int = 0x06000001,
    cb: int = CLI_HEADER_SIZE,
) -> bytes:
    header = struct.pack("<IHHIIII", cb, 2, 5, metadata_rva, metadata_size, flags, entry_point)
    return header + b"\x00" * (CLI_HEADER_SIZE - len(header))


def build_pe(
    section_data: bytes,
    clr_rva: int = 0,
    clr_size: int = CLI_HEADER_SIZE,
    number_of_rva_and_sizes: int = 16,
) -> bytes:
    """
    Return a PE32 image with one .text section at TEXT_RVA / TEXT_RAW.
    The optional header always has room for 16 data directories.
    """
    raw_size = len(section_data) + (-len(section_data) % FILE_ALIGNMENT)

    dos_header = b"MZ" + b"\x00" * 0x3A + struct.pack("<I", 0x40)
    file_header = struct.pack("<HHIIIHH", 0x14C, 1, 0, 0, 0, 0xE0, 0x0102)
    optional_header = struct.pack(
        "<HBBIIIIIIIIIHHHHHHIIIIHHIIIIII",
        0x10B,  # Magic
        8, 0,  # linker version
        raw_size, 0, 0,  # SizeOfCode, SizeOfInitializedData, SizeOfUninitializedData
        0,  # AddressOfEntryPoint
        TEXT_RVA,  # BaseOfCode
        0,  # BaseOfData
        0x400000,  # ImageBase
        SECTION_ALIGNMENT,
        FILE_ALIGNMENT,
        4, 0, 0, 0, 4, 0,  # OS, image, subsystem versions
        0,  # Reserved1
        TEXT_RVA + SECTION_ALIGNMENT,  # SizeOfImage
        TEXT_RAW,  # SizeOfHeaders
        0,  # CheckSum
        3,  # Subsystem: console
        0x8540,  # DllCharacteristics
        0x100000, 0x1000, 0x100000, 0x1000,
        0,  # LoaderFlags
        number_of_rva_and_sizes,
    )
    directories = [(0, 0)] * 16
    directories[14] = (clr_rva, clr_size if clr_rva else 0)
    optional_header += b"".join(struct.pack("<II", rva, size) for rva, size in directories)

    section_header = struct.pack(
        "<8sIIIIIIHHI",
        b".text",
        len(section_data),  # VirtualSize
        TEXT_RVA,
        raw_size,
        TEXT_RAW,
        0, 0, 0, 0,
        0x60000020,  # code, execute, read
    )

    headers = dos_header + b"PE\x00\x00" + file_header + optional_header + section_header
    headers += b"\x00" * (TEXT_RAW - len(headers))
    return headers + section_data + b"\x00" * (raw_size - len(section_data))


def build_dotnet_pe(
    streams: Optional[Sequence[Tuple[bytes, bytes]]] = None,
    entry_point: int = 0x06000001,
    clr_flags: int = CLR_ILONLY,
    number_of_rva_and_sizes: int = 16,
    version: bytes = b"v4.0.30319",
) -> bytes:
    """
    Return a .NET image with the CLI header at CLI_HEADER_RVA and the
    metadata root, holding the given streams, at METADATA_RVA.
    """
    if streams is None:
        streams = default_streams()
    root = build_metadata_root(streams, version=version)
    cli_header = build_cli_header(METADATA_RVA, len(root), flags=clr_flags, entry_point=entry_point)

    section = b"\x00" * (CLI_HEADER_RVA - TEXT_RVA)
    section += cli_header
    section += b"\x00" * (METADATA_RVA - TEXT_RVA - len(section))
    section += root
    return build_pe(section, CLI_HEADER_RVA, CLI_HEADER_SIZE, number_of_rva_and_sizes)
