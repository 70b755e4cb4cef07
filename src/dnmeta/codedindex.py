# -*- coding: utf-8 -*-
"""
.NET Metadata Tables Coded Indexes

Only the layout of coded indexes is described here: how many tag bits
they use and which tables they may point into.  That is all that is needed
to compute their width in a row.


REFERENCES

    https://www.ntcore.com/files/dotnetformat.htm
    ECMA-335 6th Edition, II.24.2.6 #~ stream


Copyright (c) 2020-2024 MalwareFrank
"""

from typing import Tuple


class CodedIndex(object):
    """
    Subclasses should be sure to set the following attributes:
      - tag_bits        Number of bits used to specify the table name index.
      - table_names     Candidate list of table names.
    """
    tag_bits: int
    table_names: Tuple[str, ...]


class TableIndex(object):
    """
    A plain index into a single table, e.g. TypeDef.MethodList.
    It is sized like a coded index with no tag bits.
    """
    tag_bits = 0

    def __init__(self, table_name: str):
        self.table_names: Tuple[str, ...] = (table_name, )

    def __repr__(self):
        return "TableIndex({!r})".format(self.table_names[0])


class TypeDefOrRef(CodedIndex):
    tag_bits = 2
    table_names = ("TypeDef", "TypeRef", "TypeSpec")


class HasConstant(CodedIndex):
    tag_bits = 2
    table_names = ("Field", "Param", "Property")


class HasCustomAttribute(CodedIndex):
    tag_bits = 5
    table_names = (
        "MethodDef",
        "Field",
        "TypeRef",
        "TypeDef",
        "Param",
        "InterfaceImpl",
        "MemberRef",
        "Module",
        "DeclSecurity",
        "Property",
        "Event",
        "StandAloneSig",
        "ModuleRef",
        "TypeSpec",
        "Assembly",
        "AssemblyRef",
        "File",
        "ExportedType",
        "ManifestResource",
        "GenericParam",
        "GenericParamConstraint",
        "MethodSpec",
    )


class HasFieldMarshall(CodedIndex):
    tag_bits = 1
    table_names = ("Field", "Param")


class HasDeclSecurity(CodedIndex):
    tag_bits = 2
    table_names = ("TypeDef", "MethodDef", "Assembly")


class MemberRefParent(CodedIndex):
    tag_bits = 3
    table_names = ("TypeDef", "TypeRef", "ModuleRef", "MethodDef", "TypeSpec")


class HasSemantics(CodedIndex):
    tag_bits = 1
    table_names = ("Event", "Property")


class MethodDefOrRef(CodedIndex):
    tag_bits = 1
    table_names = ("MethodDef", "MemberRef")


class MemberForwarded(CodedIndex):
    tag_bits = 1
    table_names = ("Field", "MethodDef")


class Implementation(CodedIndex):
    tag_bits = 2
    table_names = ("File", "AssemblyRef", "ExportedType")


class CustomAttributeType(CodedIndex):
    # tags 0, 1 and 4 are not used
    tag_bits = 3
    table_names = ("", "", "MethodDef", "MemberRef", "")


class ResolutionScope(CodedIndex):
    tag_bits = 2
    table_names = ("Module", "ModuleRef", "AssemblyRef", "TypeRef")


class TypeOrMethodDef(CodedIndex):
    tag_bits = 1
    table_names = ("TypeDef", "MethodDef")
