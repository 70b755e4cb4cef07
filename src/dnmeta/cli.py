# -*- coding: utf-8 -*-
"""
dnmeta command line: dump the CLR header, metadata streams and tables,
and the entry point of a .NET assembly.

Exit status is 0 on success, 1 if the file cannot be decoded and 2 on usage errors.

Copyright (c) 2020-2024 MalwareFrank
"""

import sys
import logging
import argparse
from typing import List, Optional

from pefile import DIRECTORY_ENTRY, PEFormatError

from . import dnPE, errors

logger = logging.getLogger(__name__)


def load(path: str, strict_tables: bool = True) -> dnPE:
    """
    Read the file at path and decode its CLR data.
    Raises a dnError subclass if it is not a readable .NET module.
    """
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise errors.dnInputError("cannot read {}: {}".format(path, e.strerror or e)) from e

    try:
        pe = dnPE(data=data, fast_load=True, strict_tables=strict_tables)
    except PEFormatError as e:
        raise errors.dnInputError("{}: not a PE file: {}".format(path, e)) from e

    pe.parse_data_directories(directories=[DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR"]])
    if pe.net is None:
        raise errors.dnFormatError("{}: not a .NET module, the CLR runtime header is empty".format(path), stage="clr header")
    return pe


def render(pe: dnPE, methods: bool = False, pe_headers: bool = False) -> str:
    """
    Resolve the entry point, then return the text dump ending with the entry point name.
    Raises dnResolutionError if the entry point cannot be resolved.
    """
    entry_point = pe.net.get_entry_point()
    if pe_headers:
        text = pe.dump_info(entry_point=entry_point, methods=methods)
    else:
        text = pe.dump_clr_info(entry_point=entry_point, methods=methods)
    return "{}\nEntryPoint: {}\n".format(text.rstrip("\n"), entry_point)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="dnmeta",
        description="Dump the CLR header, metadata and entry point of a .NET PE file.",
    )
    parser.add_argument("path", help="path to a .NET PE file")
    parser.add_argument(
        "-m", "--methods", action="store_true", help="list every MethodDef row with its RVA and name"
    )
    parser.add_argument(
        "--lenient-tables",
        action="store_true",
        help="stop decoding at an unknown metadata table instead of failing",
    )
    parser.add_argument("--pe", action="store_true", help="also dump the PE headers")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="only log errors")
    args = parser.parse_args(argv)

    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s:%(name)s: %(message)s")
    logging.getLogger("dnmeta").setLevel(level)

    try:
        pe = load(args.path, strict_tables=not args.lenient_tables)
        text = render(pe, methods=args.methods, pe_headers=args.pe)
    except errors.dnError as e:
        logger.debug("decoding failed", exc_info=True)
        print("dnmeta: error: {}: {}".format(e.stage, e), file=sys.stderr)
        return 1

    sys.stdout.write(text)
    return 0
