import logging

import pytest
import fixtures

from dnmeta import cli


def write_image(tmp_path, data, name="hello.exe"):
    path = tmp_path / name
    path.write_bytes(data)
    return str(path)


def test_hello_world(tmp_path, capsys):
    path = write_image(tmp_path, fixtures.build_dotnet_pe())

    assert cli.main([path]) == 0

    out = capsys.readouterr().out
    assert "v4.0.30319" in out
    assert "#Strings" in out
    assert "MethodDef" in out
    assert out.rstrip().endswith("EntryPoint: Main (token 0x06000001, MethodDef row 1)")


def test_methods(tmp_path, capsys):
    path = write_image(tmp_path, fixtures.build_dotnet_pe())

    assert cli.main(["--methods", path]) == 0

    out = capsys.readouterr().out
    assert "CLR (.NET) Methods" in out
    assert ".ctor" in out


def test_missing_file(tmp_path, capsys):
    assert cli.main([str(tmp_path / "missing.exe")]) == 1

    err = capsys.readouterr().err
    assert err.splitlines()[-1].startswith("dnmeta: error: input: ")


def test_not_a_pe_file(tmp_path, capsys):
    path = write_image(tmp_path, b"not a PE file" * 16, name="readme.txt")

    assert cli.main([path]) == 1

    err = capsys.readouterr().err
    assert err.splitlines()[-1].startswith("dnmeta: error: input: ")


def test_not_dotnet(tmp_path, capsys):
    path = write_image(tmp_path, fixtures.build_pe(b"\xc3" * 0x10), name="native.exe")

    assert cli.main([path]) == 1

    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err.splitlines()[-1].startswith("dnmeta: error: clr header: ")


def test_unresolvable_entry_point(tmp_path, capsys):
    path = write_image(tmp_path, fixtures.build_dotnet_pe(entry_point=0x06000000))

    assert cli.main([path]) == 1

    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err.splitlines()[-1].startswith("dnmeta: error: entrypoint: ")


def test_lenient_tables(tmp_path, capsys):
    tables = fixtures.build_tables_stream({0: 1, 6: 0, 45: 1}, fixtures.module_row(1) + b"\x00" * 4)
    path = write_image(tmp_path, fixtures.build_dotnet_pe(streams=fixtures.default_streams(tables=tables)))

    assert cli.main([path]) == 1
    assert capsys.readouterr().err.splitlines()[-1].startswith("dnmeta: error: tables: ")

    # decoding stops at table 45, MethodDef has no rows so the entry point is out of range
    assert cli.main(["--lenient-tables", path]) == 1
    assert capsys.readouterr().err.splitlines()[-1].startswith("dnmeta: error: entrypoint: ")


def test_usage_error(capsys):
    with pytest.raises(SystemExit) as e:
        cli.main([])
    assert e.value.code == 2


@pytest.fixture
def dnmeta_logger():
    logger = logging.getLogger("dnmeta")
    level = logger.level
    yield logger
    logger.setLevel(level)


def test_pe_headers(tmp_path, capsys):
    path = write_image(tmp_path, fixtures.build_dotnet_pe())

    assert cli.main(["--pe", path]) == 0

    out = capsys.readouterr().out
    assert "DOS_HEADER" in out
    assert "IMAGE_NET_DIRECTORY" in out
    assert out.rstrip().endswith("EntryPoint: Main (token 0x06000001, MethodDef row 1)")


def test_log_levels(tmp_path, dnmeta_logger):
    path = write_image(tmp_path, fixtures.build_dotnet_pe())

    assert cli.main([path]) == 0
    assert dnmeta_logger.level == logging.WARNING

    assert cli.main(["-v", path]) == 0
    assert dnmeta_logger.level == logging.DEBUG

    assert cli.main(["-q", path]) == 0
    assert dnmeta_logger.level == logging.ERROR


def test_quiet_hides_warnings(tmp_path, caplog, dnmeta_logger):
    streams = fixtures.default_streams() + [(b"#US", b"\x00")]
    path = write_image(tmp_path, fixtures.build_dotnet_pe(streams=streams))

    assert cli.main([path]) == 0
    assert any("Duplicate .NET stream name" in r.getMessage() for r in caplog.records)

    caplog.clear()
    assert cli.main(["-q", path]) == 0
    assert not [r for r in caplog.records if r.levelno == logging.WARNING]


def test_verbose_and_quiet(tmp_path, capsys):
    path = write_image(tmp_path, fixtures.build_dotnet_pe())

    with pytest.raises(SystemExit) as e:
        cli.main(["-v", "-q", path])
    assert e.value.code == 2
