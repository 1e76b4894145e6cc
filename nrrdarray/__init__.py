"""A NRRD volume decoder with voxel addressing, slicing and voxel/world transforms."""

from importlib import metadata as _metadata
from typing import TYPE_CHECKING

from nrrdarray.errors import (
    CorruptHeaderError,
    DimensionMismatchError,
    KindCountMismatchError,
    KindSizeMismatchError,
    LengthMismatchError,
    MalformedFieldError,
    MalformedPayloadError,
    MissingFieldError,
    NotAFormatFileError,
    NrrdError,
    OutOfRangeError,
    SingularTransformError,
    UnknownKindError,
    UnknownSpaceError,
    UnknownTypeError,
    UnsupportedEncodingError,
)

if TYPE_CHECKING:
    from nrrdarray.nrrdarray import NrrdArray
    from nrrdarray.header import NrrdHeader, HeaderExtra
    from nrrdarray.constants import ElementType
    from nrrdarray.parser import parse, parse_header, parse_data, ParseResult

__all__ = [
    "__version__",
    "NrrdArray",
    "NrrdHeader",
    "HeaderExtra",
    "ElementType",
    "parse",
    "parse_header",
    "parse_data",
    "ParseResult",
    "NrrdError",
    "NotAFormatFileError",
    "CorruptHeaderError",
    "MalformedFieldError",
    "MissingFieldError",
    "UnknownSpaceError",
    "UnknownKindError",
    "DimensionMismatchError",
    "KindCountMismatchError",
    "KindSizeMismatchError",
    "UnknownTypeError",
    "UnsupportedEncodingError",
    "LengthMismatchError",
    "MalformedPayloadError",
    "OutOfRangeError",
    "SingularTransformError",
]

try:
    __version__ = _metadata.version(__name__)
except _metadata.PackageNotFoundError:  # pragma: no cover - during editable installs pre-build
    __version__ = "0.0.0"


def __getattr__(name: str):
    if name == "NrrdArray":
        from nrrdarray.nrrdarray import NrrdArray

        return NrrdArray
    if name in {"NrrdHeader", "HeaderExtra"}:
        from nrrdarray.header import NrrdHeader, HeaderExtra

        return {"NrrdHeader": NrrdHeader, "HeaderExtra": HeaderExtra}[name]
    if name == "ElementType":
        from nrrdarray.constants import ElementType

        return ElementType
    if name in {"parse", "parse_header", "parse_data", "ParseResult"}:
        from nrrdarray import parser

        return getattr(parser, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(__all__)
