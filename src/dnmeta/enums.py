# -*- coding: utf-8 -*-

import enum as _enum
from typing import Dict, Type, Iterable

########
# The Clr* classes parse flag values into boolean members.
#
# The definitions in winsdk corhdr.h may be accessed through the Cor* classes.


def _getvars(o):
    for attr in dir(o):
        if not callable(getattr(o, attr)) and not attr.startswith("_"):
            yield attr


class ClrMetaDataEnum(object):
    """
    Base class for CorHdr.h metadata enumerations.
    """
    pass


class ClrFlags(object):
    """
    Base class for CLR flags.

    When instantiated, this class takes a value and sets member vars to True according to IntEnum's in _masks and _flags.

    Note that _flags are bitmasks that match on single bits, whereas _masks are enum values that match exact value.

    :var corhdr_enum:   the class that defines values from winsdk corhdr.h.
    :var _masks:        a dictionary that defines the masks and associated values (classes) to check and set if matching exactly.
    :var _flags:        an iterable of classes defining bit flags to check and set if set.
    """

    corhdr_enum: Type[ClrMetaDataEnum]
    _masks: Dict[str, Type[_enum.IntEnum]]
    _flags: Iterable[Type[_enum.IntEnum]]

    def __init__(self, value: int):
        self.value = value

        for mask_name, enum_class in getattr(self, "_masks", {}).items():
            mask = getattr(self.corhdr_enum, mask_name)
            masked_value = mask & value
            for candidate_enum_entry in enum_class:
                setattr(self, candidate_enum_entry.name, candidate_enum_entry.value == masked_value)

        for value_class in getattr(self, "_flags", {}):
            for m in value_class:
                setattr(self, m.name, (m.value & value) != 0)

    def __iter__(self):
        for name in _getvars(self):
            val = getattr(self, name)
            if isinstance(val, bool):
                yield name, val

    def __str__(self):
        return " ".join(sorted(name for name, val in self if val))

    def __repr__(self):
        return '\n'.join(["{:<40}{:>8}".format(n, str(v)) for n, v in self])


class CorHeaderEnum(_enum.IntEnum):
    CLR_ILONLY              = 0x00000001
    CLR_32BITREQUIRED       = 0x00000002
    CLR_IL_LIBRARY          = 0x00000004
    CLR_STRONGNAMESIGNED    = 0x00000008
    CLR_NATIVE_ENTRYPOINT   = 0x00000010
    CLR_TRACKDEBUGDATA      = 0x00010000
    CLR_PREFER_32BIT        = 0x00020000


class ClrHeaderFlags(ClrFlags):
    CLR_ILONLY              = False
    CLR_32BITREQUIRED       = False
    CLR_IL_LIBRARY          = False
    CLR_STRONGNAMESIGNED    = False
    CLR_NATIVE_ENTRYPOINT   = False
    CLR_TRACKDEBUGDATA      = False
    CLR_PREFER_32BIT        = False

    _flags = (CorHeaderEnum, )


####
# https://docs.microsoft.com/en-us/dotnet/framework/unmanaged-api/metadata/cormethodattr-enumeration

class CorMethodMemberAccess(_enum.IntEnum):
    mdPrivateScope              =   0x0000      # Member not referenceable.
    mdPrivate                   =   0x0001      # Accessible only by the parent type.
    mdFamANDAssem               =   0x0002      # Accessible by sub-types only in this Assembly.
    mdAssem                     =   0x0003      # Accessibly by anyone in the Assembly.
    mdFamily                    =   0x0004      # Accessible only by type and sub-types.
    mdFamORAssem                =   0x0005      # Accessibly by sub-types anywhere, plus anyone in assembly.
    mdPublic                    =   0x0006      # Accessibly by anyone who has visibility to this scope.
    mdUnknown1                  =   0x0007


class CorMethodAttrFlags(_enum.IntEnum):
    mdStatic                    =   0x0010
    mdFinal                     =   0x0020
    mdVirtual                   =   0x0040
    mdHideBySig                 =   0x0080
    mdCheckAccessOnOverride     =   0x0200
    mdAbstract                  =   0x0400
    mdSpecialName               =   0x0800
    mdPinvokeImpl               =   0x2000
    mdUnmanagedExport           =   0x0008
    mdRTSpecialName             =   0x1000
    mdHasSecurity               =   0x4000
    mdRequireSecObject          =   0x8000


class CorMethodVtableLayout(_enum.IntEnum):
    mdReuseSlot                 =   0x0000      # The default.
    mdNewSlot                   =   0x0100      # Method always gets a new slot in the vtable.


class CorMethodAttr(ClrMetaDataEnum):
    mdMemberAccessMask          =   0x0007
    mdVtableLayoutMask          =   0x0100
    mdReservedMask              =   0xd000


class ClrMethodAttr(ClrFlags):
    corhdr_enum = CorMethodAttr
    _masks = {
        "mdMemberAccessMask": CorMethodMemberAccess,
        "mdVtableLayoutMask": CorMethodVtableLayout,
    }
    _flags = (CorMethodAttrFlags, )


####
# https://docs.microsoft.com/en-us/dotnet/framework/unmanaged-api/metadata/cormethodimpl-enumeration

class CorMethodCodeType(_enum.IntEnum):
    miIL                =   0x0000      # Method impl is IL.
    miNative            =   0x0001      # Method impl is native.
    miOPTIL             =   0x0002      # Method impl is OPTIL
    miRuntime           =   0x0003      # Method impl is provided by the runtime.


class CorMethodManaged(_enum.IntEnum):
    miUnmanaged         =   0x0004      # Method impl is unmanaged, otherwise managed.
    miManaged           =   0x0000      # Method impl is managed.


class CorMethodImplFlags(_enum.IntEnum):
    miForwardRef        =   0x0010
    miPreserveSig       =   0x0080
    miInternalCall      =   0x1000
    miSynchronized      =   0x0020
    miNoInlining        =   0x0008


class CorMethodImpl(ClrMetaDataEnum):
    miCodeTypeMask      =   0x0003
    miManagedMask       =   0x0004


class ClrMethodImpl(ClrFlags):
    corhdr_enum = CorMethodImpl
    _masks = {
        "miCodeTypeMask": CorMethodCodeType,
        "miManagedMask": CorMethodManaged,
    }
    _flags = (CorMethodImplFlags, )


class MetadataTables(_enum.IntEnum):
    Module = 0
    TypeRef = 1
    TypeDef = 2
    FieldPtr = 3  # Not public
    Field = 4
    MethodPtr = 5  # Not public
    MethodDef = 6
    ParamPtr = 7  # Not public
    Param = 8
    InterfaceImpl = 9
    MemberRef = 10
    Constant = 11
    CustomAttribute = 12
    FieldMarshal = 13
    DeclSecurity = 14
    ClassLayout = 15
    FieldLayout = 16
    StandAloneSig = 17
    EventMap = 18
    EventPtr = 19  # Not public
    Event = 20
    PropertyMap = 21
    PropertyPtr = 22  # Not public
    Property = 23
    MethodSemantics = 24
    MethodImpl = 25
    ModuleRef = 26
    TypeSpec = 27
    ImplMap = 28
    FieldRva = 29
    EncLog = 30
    EncMap = 31
    Assembly = 32
    AssemblyProcessor = 33
    AssemblyOS = 34
    AssemblyRef = 35
    AssemblyRefProcessor = 36
    AssemblyRefOS = 37
    File = 38
    ExportedType = 39
    ManifestResource = 40
    NestedClass = 41
    GenericParam = 42
    MethodSpec = 43
    GenericParamConstraint = 44
    # 45 through 63 are not used
