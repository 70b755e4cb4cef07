# -*- coding: utf-8 -*-
"""
Resolution of the CLI header entry point token to a method name.

An entry point token packs a metadata table number in its high byte and a
1-based row index in its low three bytes, e.g. 0x06000001 is the first row
of the MethodDef table.

Copyright (c) 2020-2024 MalwareFrank
"""

import logging
from typing import Optional

from . import enums, errors, stream, mdtable

logger = logging.getLogger(__name__)

TOKEN_TABLE_SHIFT = 24
TOKEN_ROW_MASK = 0x00FFFFFF


def split_token(token: int):
    """
    Given a metadata token, return tuple: table number, 1-based row index.
    """
    return token >> TOKEN_TABLE_SHIFT, token & TOKEN_ROW_MASK


class EntryPoint(object):
    """
    A resolved managed entry point.

    token:          the raw EntryPointToken from the CLI header
    table_number:   metadata table number, always MethodDef
    row_index:      1-based row index into the MethodDef table
    method:         the MethodDefRow
    name:           the method name from the #Strings heap
    """

    def __init__(self, token: int, row_index: int, method: mdtable.MethodDefRow, name: str):
        self.token = token
        self.table_number: int = enums.MetadataTables.MethodDef.value
        self.row_index = row_index
        self.method = method
        self.name = name

    def __str__(self):
        return "{} (token 0x{:08x}, MethodDef row {})".format(self.name, self.token, self.row_index)

    def __repr__(self):
        return "EntryPoint(name={!r}, token=0x{:08x})".format(self.name, self.token)


def resolve_entry_point(
    token: int,
    methods: Optional[mdtable.MethodDef],
    strings: Optional[stream.StringsHeap],
) -> EntryPoint:
    """
    Given the CLI header entry point token, the MethodDef table and the #Strings heap,
    return the resolved EntryPoint.

    Raises dnResolutionError if the token does not name a MethodDef row whose name can be read.
    """
    table_number, row_index = split_token(token)

    if table_number != enums.MetadataTables.MethodDef:
        raise errors.dnResolutionError(
            "entry point token 0x{:08x} names table {}, not MethodDef".format(token, table_number),
            value=token,
        )
    if methods is None:
        raise errors.dnResolutionError(
            "entry point token 0x{:08x} but there is no MethodDef table".format(token), value=token
        )
    if strings is None:
        raise errors.dnResolutionError(
            "entry point token 0x{:08x} but there is no #Strings heap".format(token), value=token
        )

    try:
        method = methods.get_with_row_index(row_index)
    except errors.dnBoundsError:
        raise errors.dnResolutionError(
            "entry point token 0x{:08x}: row {} not in MethodDef table with {} rows".format(
                token, row_index, len(methods)
            ),
            value=token,
        )

    name_index = method.struct.Name_StringIndex
    try:
        item = strings.get(name_index)
    except errors.dnError as e:
        raise errors.dnResolutionError(
            "entry point token 0x{:08x}: cannot read name at #Strings index 0x{:x}: {}".format(token, name_index, e),
            value=token,
        )
    if item.value is None:
        raise errors.dnResolutionError(
            "entry point token 0x{:08x}: name at #Strings index 0x{:x} is not valid UTF-8".format(token, name_index),
            value=token,
        )

    logger.debug("entry point 0x%08x resolved to %s", token, item.value)
    return EntryPoint(token, row_index, method, item.value)
