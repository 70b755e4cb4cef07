# -*- coding: utf-8 -*-
"""
dnmeta exceptions

Every decode step raises one of these and nothing is caught on the way up,
so a malformed field aborts the whole inspection.

Copyright (c) 2020-2024 MalwareFrank
"""

from typing import Optional


class dnError(Exception):
    """
    Base class for all dnmeta errors.

    stage:  the pipeline stage that failed, e.g. "address", "metadata", "tables"
    value:  the offending numeric value (offset, RVA, token, table id), if any
    """

    stage: Optional[str] = None

    def __init__(self, msg: str, stage: Optional[str] = None, value: Optional[int] = None):
        super().__init__(msg)
        if stage is not None:
            self.stage = stage
        self.value = value


class dnInputError(dnError):
    """The file could not be read, or is not a PE image at all."""
    stage = "input"


class dnFormatError(dnError):
    """Signature mismatch, missing directory or stream, truncated data, unsupported table."""
    stage = "format"


class dnBoundsError(dnError, IndexError):
    """A heap offset or row index falls outside its container."""
    stage = "bounds"


class dnUnmappedAddressError(dnBoundsError):
    """No section covers the requested RVA."""
    stage = "address"


class dnResolutionError(dnError):
    """The entry point token does not name a readable MethodDef row."""
    stage = "entrypoint"
