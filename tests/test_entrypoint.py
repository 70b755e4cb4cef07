import pytest
import fixtures

import dnmeta
from dnmeta import errors, entrypoint


def load(**kwargs) -> dnmeta.dnPE:
    return dnmeta.dnPE(data=fixtures.build_dotnet_pe(**kwargs))


def test_split_token():
    assert entrypoint.split_token(0x06000001) == (6, 1)
    assert entrypoint.split_token(0x0A00FFFF) == (10, 0xFFFF)
    assert entrypoint.split_token(0) == (0, 0)


def test_resolve_main():
    dn = load()

    ep = dn.net.get_entry_point()
    assert ep.name == "Main"
    assert ep.token == 0x06000001
    assert ep.table_number == 6
    assert ep.row_index == 1
    assert ep.method is dn.net.mdtables.MethodDef[0]
    assert ep.method.Rva == 0x2100
    assert str(ep) == "Main (token 0x06000001, MethodDef row 1)"


def test_resolve_second_method():
    dn = load(entry_point=0x06000002)

    assert dn.net.get_entry_point().name == ".ctor"


def test_row_zero():
    dn = load(entry_point=0x06000000)

    with pytest.raises(errors.dnResolutionError) as e:
        dn.net.get_entry_point()
    assert e.value.stage == "entrypoint"
    assert e.value.value == 0x06000000


def test_row_out_of_range():
    dn = load(entry_point=0x06000003)

    with pytest.raises(errors.dnResolutionError):
        dn.net.get_entry_point()


def test_not_a_methoddef_token():
    # a File token, as used by multi-module assemblies
    dn = load(entry_point=0x26000001)

    with pytest.raises(errors.dnResolutionError) as e:
        dn.net.get_entry_point()
    assert "MethodDef" in str(e.value)


def test_no_entry_point():
    dn = load(entry_point=0)

    with pytest.raises(errors.dnResolutionError):
        dn.net.get_entry_point()


def test_native_entry_point():
    dn = load(entry_point=0x2100, clr_flags=fixtures.CLR_ILONLY | fixtures.CLR_NATIVE_ENTRYPOINT)

    assert dn.net.Flags.CLR_NATIVE_ENTRYPOINT
    with pytest.raises(errors.dnResolutionError) as e:
        dn.net.get_entry_point()
    assert "native" in str(e.value)


def test_name_outside_strings_heap():
    tables = fixtures.build_tables_stream({6: 1}, fixtures.methoddef_row(0x2100, 0, 0x96, 0x200, 1, 1))
    dn = load(streams=fixtures.default_streams(tables=tables))

    with pytest.raises(errors.dnResolutionError):
        dn.net.get_entry_point()


def test_resolve_without_methoddef_table():
    tables = fixtures.build_tables_stream({0: 1}, fixtures.module_row(1))
    dn = load(streams=fixtures.default_streams(tables=tables))

    assert dn.net.mdtables.MethodDef is None
    with pytest.raises(errors.dnResolutionError):
        dn.net.get_entry_point()
