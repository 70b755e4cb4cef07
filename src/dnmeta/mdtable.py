# -*- coding: utf-8 -*-
"""
.NET Metadata Tables

Every table defined by ECMA-335 is described by its column layout, which
is enough to know how many bytes its rows take in the #~ stream.  Only the
MethodDef table has its rows materialized.


REFERENCES

    https://www.ntcore.com/files/dotnetformat.htm
    ECMA-335, 6th Edition, II.22 Metadata logical format: tables


Copyright (c) 2020-2024 MalwareFrank
"""
from typing import Dict, List, Type, Optional

from . import enums, errors, codedindex
from .base import HeapIndex, RowStruct, MDTableRow, ClrMetaDataTable
from .codedindex import TableIndex

STRING = HeapIndex.Strings
GUID = HeapIndex.Guid
BLOB = HeapIndex.Blob


#### Module Table
#


class Module(ClrMetaDataTable):
    name = "Module"
    number = 0
    _columns = (
        ("Generation", "H"),
        ("Name_StringIndex", STRING),
        ("Mvid_GuidIndex", GUID),
        ("EncId_GuidIndex", GUID),
        ("EncBaseId_GuidIndex", GUID),
    )


class TypeRef(ClrMetaDataTable):
    name = "TypeRef"
    number = 1
    _columns = (
        ("ResolutionScope_CodedIndex", codedindex.ResolutionScope),
        ("TypeName_StringIndex", STRING),
        ("TypeNamespace_StringIndex", STRING),
    )


class TypeDef(ClrMetaDataTable):
    name = "TypeDef"
    number = 2
    _columns = (
        ("Flags", "I"),
        ("TypeName_StringIndex", STRING),
        ("TypeNamespace_StringIndex", STRING),
        ("Extends_CodedIndex", codedindex.TypeDefOrRef),
        ("FieldList_Index", TableIndex("Field")),
        ("MethodList_Index", TableIndex("MethodDef")),
    )


class FieldPtr(ClrMetaDataTable):
    name = "FieldPtr"
    number = 3
    _columns = (("Field_Index", TableIndex("Field")), )


class Field(ClrMetaDataTable):
    name = "Field"
    number = 4
    _columns = (
        ("Flags", "H"),
        ("Name_StringIndex", STRING),
        ("Signature_BlobIndex", BLOB),
    )


class MethodPtr(ClrMetaDataTable):
    name = "MethodPtr"
    number = 5
    _columns = (("Method_Index", TableIndex("MethodDef")), )


#### MethodDef Table
#


class MethodDefRowStruct(RowStruct):
    Rva: int
    ImplFlags: int
    Flags: int
    Name_StringIndex: int
    Signature_BlobIndex: int
    ParamList_Index: int


class MethodDefRow(MDTableRow):
    Rva: int
    ImplFlags: enums.ClrMethodImpl
    Flags: enums.ClrMethodAttr
    ParamList: int

    _struct_class = MethodDefRowStruct

    _struct_asis = {
        "Rva": "Rva",
        "ParamList_Index": "ParamList",
    }
    _struct_flags = {
        "ImplFlags": ("ImplFlags", enums.ClrMethodImpl),
        "Flags": ("Flags", enums.ClrMethodAttr),
    }

    @property
    def Name(self) -> Optional[str]:
        """
        The method name from the #Strings heap, or None if it is not valid UTF-8.
        Raises dnBoundsError if the name index lies outside the heap.
        """
        return self._get_string("Name_StringIndex")


class MethodDef(ClrMetaDataTable[MethodDefRow]):
    name = "MethodDef"
    number = 6
    _columns = (
        ("Rva", "I"),
        ("ImplFlags", "H"),
        ("Flags", "H"),
        ("Name_StringIndex", STRING),
        ("Signature_BlobIndex", BLOB),
        ("ParamList_Index", TableIndex("Param")),
    )

    _row_class = MethodDefRow


class ParamPtr(ClrMetaDataTable):
    name = "ParamPtr"
    number = 7
    _columns = (("Param_Index", TableIndex("Param")), )


class Param(ClrMetaDataTable):
    name = "Param"
    number = 8
    _columns = (
        ("Flags", "H"),
        ("Sequence", "H"),
        ("Name_StringIndex", STRING),
    )


class InterfaceImpl(ClrMetaDataTable):
    name = "InterfaceImpl"
    number = 9
    _columns = (
        ("Class_Index", TableIndex("TypeDef")),
        ("Interface_CodedIndex", codedindex.TypeDefOrRef),
    )


class MemberRef(ClrMetaDataTable):
    name = "MemberRef"
    number = 10
    _columns = (
        ("Class_CodedIndex", codedindex.MemberRefParent),
        ("Name_StringIndex", STRING),
        ("Signature_BlobIndex", BLOB),
    )


class Constant(ClrMetaDataTable):
    name = "Constant"
    number = 11
    _columns = (
        ("Type", "B"),
        ("Padding", "B"),
        ("Parent_CodedIndex", codedindex.HasConstant),
        ("Value_BlobIndex", BLOB),
    )


class CustomAttribute(ClrMetaDataTable):
    name = "CustomAttribute"
    number = 12
    _columns = (
        ("Parent_CodedIndex", codedindex.HasCustomAttribute),
        ("Type_CodedIndex", codedindex.CustomAttributeType),
        ("Value_BlobIndex", BLOB),
    )


class FieldMarshal(ClrMetaDataTable):
    name = "FieldMarshal"
    number = 13
    _columns = (
        ("Parent_CodedIndex", codedindex.HasFieldMarshall),
        ("NativeType_BlobIndex", BLOB),
    )


class DeclSecurity(ClrMetaDataTable):
    name = "DeclSecurity"
    number = 14
    _columns = (
        ("Action", "H"),
        ("Parent_CodedIndex", codedindex.HasDeclSecurity),
        ("PermissionSet_BlobIndex", BLOB),
    )


class ClassLayout(ClrMetaDataTable):
    name = "ClassLayout"
    number = 15
    _columns = (
        ("PackingSize", "H"),
        ("ClassSize", "I"),
        ("Parent_Index", TableIndex("TypeDef")),
    )


class FieldLayout(ClrMetaDataTable):
    name = "FieldLayout"
    number = 16
    _columns = (
        ("Offset", "I"),
        ("Field_Index", TableIndex("Field")),
    )


class StandAloneSig(ClrMetaDataTable):
    name = "StandAloneSig"
    number = 17
    _columns = (("Signature_BlobIndex", BLOB), )


class EventMap(ClrMetaDataTable):
    name = "EventMap"
    number = 18
    _columns = (
        ("Parent_Index", TableIndex("TypeDef")),
        ("EventList_Index", TableIndex("Event")),
    )


class EventPtr(ClrMetaDataTable):
    name = "EventPtr"
    number = 19
    _columns = (("Event_Index", TableIndex("Event")), )


class Event(ClrMetaDataTable):
    name = "Event"
    number = 20
    _columns = (
        ("EventFlags", "H"),
        ("Name_StringIndex", STRING),
        ("EventType_CodedIndex", codedindex.TypeDefOrRef),
    )


class PropertyMap(ClrMetaDataTable):
    name = "PropertyMap"
    number = 21
    _columns = (
        ("Parent_Index", TableIndex("TypeDef")),
        ("PropertyList_Index", TableIndex("Property")),
    )


class PropertyPtr(ClrMetaDataTable):
    name = "PropertyPtr"
    number = 22
    _columns = (("Property_Index", TableIndex("Property")), )


class Property(ClrMetaDataTable):
    name = "Property"
    number = 23
    _columns = (
        ("Flags", "H"),
        ("Name_StringIndex", STRING),
        ("Type_BlobIndex", BLOB),
    )


class MethodSemantics(ClrMetaDataTable):
    name = "MethodSemantics"
    number = 24
    _columns = (
        ("Semantics", "H"),
        ("Method_Index", TableIndex("MethodDef")),
        ("Association_CodedIndex", codedindex.HasSemantics),
    )


class MethodImpl(ClrMetaDataTable):
    name = "MethodImpl"
    number = 25
    _columns = (
        ("Class_Index", TableIndex("TypeDef")),
        ("MethodBody_CodedIndex", codedindex.MethodDefOrRef),
        ("MethodDeclaration_CodedIndex", codedindex.MethodDefOrRef),
    )


class ModuleRef(ClrMetaDataTable):
    name = "ModuleRef"
    number = 26
    _columns = (("Name_StringIndex", STRING), )


class TypeSpec(ClrMetaDataTable):
    name = "TypeSpec"
    number = 27
    _columns = (("Signature_BlobIndex", BLOB), )


class ImplMap(ClrMetaDataTable):
    name = "ImplMap"
    number = 28
    _columns = (
        ("MappingFlags", "H"),
        ("MemberForwarded_CodedIndex", codedindex.MemberForwarded),
        ("ImportName_StringIndex", STRING),
        ("ImportScope_Index", TableIndex("ModuleRef")),
    )


class FieldRva(ClrMetaDataTable):
    name = "FieldRva"
    number = 29
    _columns = (
        ("Rva", "I"),
        ("Field_Index", TableIndex("Field")),
    )


class EncLog(ClrMetaDataTable):
    name = "EncLog"
    number = 30
    _columns = (
        ("Token", "I"),
        ("FuncCode", "I"),
    )


class EncMap(ClrMetaDataTable):
    name = "EncMap"
    number = 31
    _columns = (("Token", "I"), )


class Assembly(ClrMetaDataTable):
    name = "Assembly"
    number = 32
    _columns = (
        ("HashAlgId", "I"),
        ("MajorVersion", "H"),
        ("MinorVersion", "H"),
        ("BuildNumber", "H"),
        ("RevisionNumber", "H"),
        ("Flags", "I"),
        ("PublicKey_BlobIndex", BLOB),
        ("Name_StringIndex", STRING),
        ("Culture_StringIndex", STRING),
    )


class AssemblyProcessor(ClrMetaDataTable):
    name = "AssemblyProcessor"
    number = 33
    _columns = (("Processor", "I"), )


class AssemblyOS(ClrMetaDataTable):
    name = "AssemblyOS"
    number = 34
    _columns = (
        ("OSPlatformID", "I"),
        ("OSMajorVersion", "I"),
        ("OSMinorVersion", "I"),
    )


class AssemblyRef(ClrMetaDataTable):
    name = "AssemblyRef"
    number = 35
    _columns = (
        ("MajorVersion", "H"),
        ("MinorVersion", "H"),
        ("BuildNumber", "H"),
        ("RevisionNumber", "H"),
        ("Flags", "I"),
        ("PublicKey_BlobIndex", BLOB),
        ("Name_StringIndex", STRING),
        ("Culture_StringIndex", STRING),
        ("HashValue_BlobIndex", BLOB),
    )


class AssemblyRefProcessor(ClrMetaDataTable):
    name = "AssemblyRefProcessor"
    number = 36
    _columns = (
        ("Processor", "I"),
        ("AssemblyRef_Index", TableIndex("AssemblyRef")),
    )


class AssemblyRefOS(ClrMetaDataTable):
    name = "AssemblyRefOS"
    number = 37
    _columns = (
        ("OSPlatformId", "I"),
        ("OSMajorVersion", "I"),
        ("OSMinorVersion", "I"),
        ("AssemblyRef_Index", TableIndex("AssemblyRef")),
    )


class File(ClrMetaDataTable):
    name = "File"
    number = 38
    _columns = (
        ("Flags", "I"),
        ("Name_StringIndex", STRING),
        ("HashValue_BlobIndex", BLOB),
    )


class ExportedType(ClrMetaDataTable):
    name = "ExportedType"
    number = 39
    _columns = (
        ("Flags", "I"),
        ("TypeDefId", "I"),
        ("TypeName_StringIndex", STRING),
        ("TypeNamespace_StringIndex", STRING),
        ("Implementation_CodedIndex", codedindex.Implementation),
    )


class ManifestResource(ClrMetaDataTable):
    name = "ManifestResource"
    number = 40
    _columns = (
        ("Offset", "I"),
        ("Flags", "I"),
        ("Name_StringIndex", STRING),
        ("Implementation_CodedIndex", codedindex.Implementation),
    )


class NestedClass(ClrMetaDataTable):
    name = "NestedClass"
    number = 41
    _columns = (
        ("NestedClass_Index", TableIndex("TypeDef")),
        ("EnclosingClass_Index", TableIndex("TypeDef")),
    )


class GenericParam(ClrMetaDataTable):
    name = "GenericParam"
    number = 42
    _columns = (
        ("Number", "H"),
        ("Flags", "H"),
        ("Owner_CodedIndex", codedindex.TypeOrMethodDef),
        ("Name_StringIndex", STRING),
    )


class MethodSpec(ClrMetaDataTable):
    name = "MethodSpec"
    number = 43
    _columns = (
        ("Method_CodedIndex", codedindex.MethodDefOrRef),
        ("Instantiation_BlobIndex", BLOB),
    )


class GenericParamConstraint(ClrMetaDataTable):
    name = "GenericParamConstraint"
    number = 44
    _columns = (
        ("Owner_Index", TableIndex("GenericParam")),
        ("Constraint_CodedIndex", codedindex.TypeDefOrRef),
    )


class ClrMetaDataTableFactory(object):
    _table_number_map: Dict[int, Type[ClrMetaDataTable]] = {
        0: Module,
        1: TypeRef,
        2: TypeDef,
        3: FieldPtr,  # Not public
        4: Field,
        5: MethodPtr,  # Not public
        6: MethodDef,
        7: ParamPtr,  # Not public
        8: Param,
        9: InterfaceImpl,
        10: MemberRef,
        11: Constant,
        12: CustomAttribute,
        13: FieldMarshal,
        14: DeclSecurity,
        15: ClassLayout,
        16: FieldLayout,
        17: StandAloneSig,
        18: EventMap,
        19: EventPtr,  # Not public
        20: Event,
        21: PropertyMap,
        22: PropertyPtr,  # Not public
        23: Property,
        24: MethodSemantics,
        25: MethodImpl,
        26: ModuleRef,
        27: TypeSpec,
        28: ImplMap,
        29: FieldRva,
        30: EncLog,
        31: EncMap,
        32: Assembly,
        33: AssemblyProcessor,
        34: AssemblyOS,
        35: AssemblyRef,
        36: AssemblyRefProcessor,
        37: AssemblyRefOS,
        38: File,
        39: ExportedType,
        40: ManifestResource,
        41: NestedClass,
        42: GenericParam,
        43: MethodSpec,
        44: GenericParamConstraint,
        # 45 through 63 are not used
    }

    @classmethod
    def is_known(cls, number: int) -> bool:
        return number in cls._table_number_map

    @classmethod
    def createTable(
        cls,
        number: int,
        tables_rowcounts: List[int],
        is_sorted: bool,
        strings_offset_size: int,
        guid_offset_size: int,
        blob_offset_size: int,
        strings_heap=None,
    ) -> ClrMetaDataTable:
        if number not in cls._table_number_map:
            raise errors.dnFormatError("invalid table index: {}".format(number), stage="tables", value=number)

        return cls._table_number_map[number](
            tables_rowcounts,
            is_sorted,
            strings_offset_size,
            guid_offset_size,
            blob_offset_size,
            strings_heap,
        )
