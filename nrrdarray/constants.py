from enum import Enum
from typing import Optional, Union

import numpy as np

from nrrdarray.errors import UnknownKindError, UnknownSpaceError, UnknownTypeError

NRRD_MAGIC = b"NRRD000"


class ElementType(str, Enum):
    """In-memory element types an NRRD payload can decode to.

    Each member is named after its NumPy dtype and exposes the byte width,
    signedness and the decoder used for binary payloads.

    Attributes:
        int8: Signed 8-bit integer.
        uint8: Unsigned 8-bit integer.
        int16: Signed 16-bit integer.
        uint16: Unsigned 16-bit integer.
        int32: Signed 32-bit integer.
        uint32: Unsigned 32-bit integer.
        int64: Signed 64-bit integer.
        uint64: Unsigned 64-bit integer.
        float32: IEEE single precision float.
        float64: IEEE double precision float.
    """
    int8 = "int8"
    uint8 = "uint8"
    int16 = "int16"
    uint16 = "uint16"
    int32 = "int32"
    uint32 = "uint32"
    int64 = "int64"
    uint64 = "uint64"
    float32 = "float32"
    float64 = "float64"

    @property
    def dtype(self) -> np.dtype:
        """Native byte order NumPy dtype."""
        return np.dtype(self.value)

    @property
    def width(self) -> int:
        """Size of one element in bytes."""
        return self.dtype.itemsize

    @property
    def is_float(self) -> bool:
        return self.dtype.kind == "f"

    @property
    def is_signed(self) -> bool:
        return self.dtype.kind in ("i", "f")

    def decode(self, raw: Union[bytes, bytearray, memoryview], endian: Optional[str] = None) -> np.ndarray:
        """Reinterpret a byte string as a flat array of this element type.

        Args:
            raw: Bytes holding a whole number of elements.
            endian: "little" or "big". Ignored for single byte types.

        Returns:
            np.ndarray: A new array in native byte order.
        """
        dtype = self.dtype
        if self.width > 1:
            dtype = dtype.newbyteorder("<" if endian == "little" else ">")
        return np.frombuffer(raw, dtype=dtype).astype(self.dtype)


# Type names as written in the "type" field. Lookups are case-sensitive.
NRRD_TYPES = {
    "signed char": ElementType.int8,
    "int8": ElementType.int8,
    "int8_t": ElementType.int8,
    "uchar": ElementType.uint8,
    "unsigned char": ElementType.uint8,
    "uint8": ElementType.uint8,
    "uint8_t": ElementType.uint8,
    "short": ElementType.int16,
    "short int": ElementType.int16,
    "signed short": ElementType.int16,
    "signed short int": ElementType.int16,
    "int16": ElementType.int16,
    "int16_t": ElementType.int16,
    "ushort": ElementType.uint16,
    "unsigned short": ElementType.uint16,
    "unsigned short int": ElementType.uint16,
    "uint16": ElementType.uint16,
    "uint16_t": ElementType.uint16,
    "int": ElementType.int32,
    "signed int": ElementType.int32,
    "int32": ElementType.int32,
    "int32_t": ElementType.int32,
    "uint": ElementType.uint32,
    "unsigned int": ElementType.uint32,
    "uint32": ElementType.uint32,
    "uint32_t": ElementType.uint32,
    "longlong": ElementType.int64,
    "long long": ElementType.int64,
    "long long int": ElementType.int64,
    "signed long long": ElementType.int64,
    "signed long long int": ElementType.int64,
    "int64": ElementType.int64,
    "int64_t": ElementType.int64,
    "ulonglong": ElementType.uint64,
    "unsigned long long": ElementType.uint64,
    "unsigned long long int": ElementType.uint64,
    "uint64": ElementType.uint64,
    "uint64_t": ElementType.uint64,
    "float": ElementType.float32,
    "double": ElementType.float64,
}

# Keys are lowercase, lookups are case-insensitive.
SPACE_TO_SPACE_DIMENSION = {
    "right-anterior-superior": 3,
    "ras": 3,
    "left-anterior-superior": 3,
    "las": 3,
    "left-posterior-superior": 3,
    "lps": 3,
    "right-anterior-superior-time": 4,
    "rast": 4,
    "left-anterior-superior-time": 4,
    "last": 4,
    "left-posterior-superior-time": 4,
    "lpst": 4,
    "scanner-xyz": 3,
    "scanner-xyz-time": 4,
    "3d-right-handed": 3,
    "3d-left-handed": 3,
    "3d-right-handed-time": 4,
    "3d-left-handed-time": 4,
}

# Required axis size per kind, None when the size is unconstrained.
KIND_TO_SIZE = {
    "domain": None,
    "space": None,
    "time": None,
    "list": None,
    "point": None,
    "vector": None,
    "covariant-vector": None,
    "normal": None,
    "stub": 1,
    "scalar": 1,
    "complex": 2,
    "2-vector": 2,
    "3-color": 3,
    "rgb-color": 3,
    "hsv-color": 3,
    "xyz-color": 3,
    "4-color": 4,
    "rgba-color": 4,
    "3-vector": 3,
    "3-gradient": 3,
    "3-normal": 3,
    "4-vector": 4,
    "quaternion": 4,
    "2d-symmetric-matrix": 3,
    "2d-masked-symmetric-matrix": 4,
    "2d-matrix": 4,
    "2d-masked-matrix": 5,
    "3d-symmetric-matrix": 6,
    "3d-masked-symmetric-matrix": 7,
    "3d-matrix": 9,
    "3d-masked-matrix": 10,
    "none": None,
    "???": None,
}

# Kinds describing sampled positions rather than per-voxel components.
DOMAIN_KINDS = frozenset({"domain", "space", "time"})

# Kinds carrying no information about the axis.
UNKNOWN_KINDS = frozenset({"none", "???"})


def element_type_from_name(name: str) -> ElementType:
    """Resolve the value of a "type" field.

    Raises:
        UnknownTypeError: If the name is not a known alias.
    """
    try:
        return NRRD_TYPES[name]
    except (KeyError, TypeError):
        raise UnknownTypeError(f'Unknown NRRD element type "{name}".') from None


def space_dimension_from_name(name: str) -> int:
    """Return the number of spatial axes of a named space.

    Raises:
        UnknownSpaceError: If the space is not known.
    """
    try:
        return SPACE_TO_SPACE_DIMENSION[name.lower()]
    except KeyError:
        raise UnknownSpaceError(f'Unknown NRRD space "{name}".') from None


def kind_size_from_name(name: str) -> Optional[int]:
    """Return the axis size required by a kind, or None when unconstrained.

    Raises:
        UnknownKindError: If the kind is not known.
    """
    try:
        return KIND_TO_SIZE[name.lower()]
    except KeyError:
        raise UnknownKindError(f'Unknown NRRD kind "{name}".') from None
