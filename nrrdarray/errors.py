"""Exceptions raised while decoding NRRD buffers and addressing volumes."""


class NrrdError(Exception):
    """Base class of every error raised by nrrdarray."""


class NotAFormatFileError(NrrdError, ValueError):
    """The buffer does not start with the NRRD magic."""


class CorruptHeaderError(NrrdError, ValueError):
    """The header is not terminated or is internally inconsistent."""


class MalformedFieldError(CorruptHeaderError):
    """A header line or field value cannot be decoded."""


class MissingFieldError(MalformedFieldError):
    """A field required to decode the payload is absent."""


class UnknownSpaceError(MalformedFieldError):
    """The ``space`` field names an unknown space."""


class UnknownKindError(MalformedFieldError):
    """The ``kinds`` field names an unknown kind."""


class DimensionMismatchError(CorruptHeaderError):
    """A per-axis field does not have one entry per axis."""


class KindCountMismatchError(CorruptHeaderError):
    """``kinds`` and ``sizes`` have different lengths."""


class KindSizeMismatchError(CorruptHeaderError):
    """An axis size violates the size required by its kind."""

    def __init__(self, kind: str, expected: int, found: int) -> None:
        self.kind = kind
        self.expected = expected
        self.found = found
        super().__init__(f'The kind "{kind}" expects a size of {expected} but {found} found.')


class UnknownTypeError(NrrdError, ValueError):
    """The ``type`` field is not a known element type."""


class UnsupportedEncodingError(NrrdError, ValueError):
    """The payload encoding cannot be decoded."""


class LengthMismatchError(NrrdError, ValueError):
    """The payload does not hold ``prod(sizes)`` elements."""


class MalformedPayloadError(NrrdError, ValueError):
    """The payload bytes cannot be decoded with the declared encoding."""


class OutOfRangeError(NrrdError, IndexError):
    """A voxel coordinate or slice index is outside the volume."""


class SingularTransformError(NrrdError, ArithmeticError):
    """The voxel-to-world matrix has no inverse."""
