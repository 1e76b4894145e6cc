from __future__ import annotations

import math
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional

from nrrdarray.constants import ElementType, element_type_from_name

Vector = tuple[float, ...]


_INTERNAL_HEADER_WRITE: ContextVar[bool] = ContextVar(
    "_INTERNAL_HEADER_WRITE",
    default=False,
)


@contextmanager
def _header_internal_write():
    """Allow internal header writes within a bounded context."""
    token = _INTERNAL_HEADER_WRITE.set(True)
    try:
        yield
    finally:
        _INTERNAL_HEADER_WRITE.reset(token)


def _is_header_internal_write() -> bool:
    return _INTERNAL_HEADER_WRITE.get()


def _has_initialized_attr(obj: Any, name: str) -> bool:
    try:
        object.__getattribute__(obj, name)
        return True
    except AttributeError:
        return False


class _FrozenDict(dict):
    """A dict that disallows in-place mutation."""

    def _readonly(self, *_: Any, **__: Any) -> None:
        raise AttributeError("This header field is read-only.")

    __setitem__ = _readonly
    __delitem__ = _readonly
    clear = _readonly
    pop = _readonly
    popitem = _readonly
    setdefault = _readonly
    update = _readonly
    __ior__ = _readonly

    def __reduce_ex__(self, protocol: int):
        return (_FrozenDict, (dict(self),))

    def __copy__(self):
        return _FrozenDict(self)

    def __deepcopy__(self, memo):
        copied = _FrozenDict(self)
        memo[id(self)] = copied
        return copied


def _to_plain(value: Any) -> Any:
    """Recursively convert tuples and mappings to lists and dicts."""
    if isinstance(value, Mapping):
        return {str(k): _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value


def _nrrd_field(key: str, *aliases: str, default: Any = None):
    return field(default=default, metadata={"nrrd_key": key, "aliases": aliases})


@dataclass(slots=True)
class _ReadOnlyRecord:
    """Dataclass base whose attributes cannot be reassigned once set."""
    _LABEL = ""

    def __setattr__(self, name: str, value: Any) -> None:
        if _is_header_internal_write() or not _has_initialized_attr(self, name):
            object.__setattr__(self, name, value)
            return
        raise AttributeError(f"{self._LABEL}{name} is read-only.")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{self._LABEL}{name} is read-only.")


@dataclass(slots=True)
class HeaderExtra(_ReadOnlyRecord):
    """Values derived while decoding, not present in the file itself.

    Attributes:
        comments: Text of the "#" comment lines, in file order.
        stride: Per-axis element stride. stride[0] is 1.
        min: Smallest decoded value, set by the payload decoder.
        max: Largest decoded value, set by the payload decoder.
    """
    comments: tuple[str, ...] = ()
    stride: tuple[int, ...] = ()
    min: Optional[float] = None
    max: Optional[float] = None
    _LABEL = "header.extra."

    def to_mapping(self) -> dict[str, Any]:
        return {f.name: _to_plain(getattr(self, f.name)) for f in fields(self)}


@dataclass(slots=True)
class NrrdHeader(_ReadOnlyRecord):
    """Decoded NRRD header.

    Every recognized field is a typed attribute; the NRRD field name is kept
    in the dataclass field metadata under "nrrd_key". Attributes are None
    when the field is absent. Instances are read-only once parsed.

    Attributes:
        version: Magic line, e.g. "NRRD0004".
        dimension: Number of axes.
        sizes: Samples per axis, axis 0 varies fastest.
        type: Element type name as written in the file.
        encoding: Payload encoding.
        endian: "little" or "big".
        space: Named world space.
        space_dimension: Number of world axes.
        space_directions: Per-axis world vector, None for non-spatial axes.
        space_origin: World position of the first voxel.
        space_units: Unit of each world axis.
        measurement_frame: Per-axis vectors of the measurement frame.
        kinds: Per-axis kind.
        centers: Per-axis "cell", "node" or None.
        labels: Per-axis label.
        units: Per-axis unit.
        spacings: Per-axis sample spacing.
        thicknesses: Per-axis sample thickness.
        axis_mins: Per-axis lower position.
        axis_maxs: Per-axis upper position.
        min: Declared minimum value.
        max: Declared maximum value.
        old_min: Minimum value before quantization.
        old_max: Maximum value before quantization.
        content: Free-form description.
        sample_units: Unit of the sample values.
        block_size: Byte size of elements of type "block".
        line_skip: Lines to skip before the payload.
        byte_skip: Bytes to skip before the payload, -1 to read from the end.
        data_file: Detached payload file name.
        key_values: "key:=value" pairs.
        extensions: Unrecognized "key: value" fields.
        fields: Every "key: value" line in encounter order, last write wins.
        extra: Derived values (comments, stride, min, max).
    """
    version: Optional[str] = None
    dimension: Optional[int] = _nrrd_field("dimension")
    sizes: Optional[tuple[int, ...]] = _nrrd_field("sizes")
    type: Optional[str] = _nrrd_field("type")
    encoding: Optional[str] = _nrrd_field("encoding")
    endian: Optional[str] = _nrrd_field("endian")
    space: Optional[str] = _nrrd_field("space")
    space_dimension: Optional[int] = _nrrd_field("space dimension", "spacedimension")
    space_directions: Optional[tuple[Optional[Vector], ...]] = _nrrd_field("space directions")
    space_origin: Optional[Vector] = _nrrd_field("space origin")
    space_units: Optional[tuple[str, ...]] = _nrrd_field("space units")
    measurement_frame: Optional[tuple[Optional[Vector], ...]] = _nrrd_field("measurement frame")
    kinds: Optional[tuple[str, ...]] = _nrrd_field("kinds")
    centers: Optional[tuple[Optional[str], ...]] = _nrrd_field("centers", "centerings")
    labels: Optional[tuple[str, ...]] = _nrrd_field("labels")
    units: Optional[tuple[str, ...]] = _nrrd_field("units")
    spacings: Optional[Vector] = _nrrd_field("spacings")
    thicknesses: Optional[Vector] = _nrrd_field("thicknesses")
    axis_mins: Optional[Vector] = _nrrd_field("axis mins", "axismins")
    axis_maxs: Optional[Vector] = _nrrd_field("axis maxs", "axismaxs")
    min: Optional[float] = _nrrd_field("min")
    max: Optional[float] = _nrrd_field("max")
    old_min: Optional[float] = _nrrd_field("old min", "oldmin")
    old_max: Optional[float] = _nrrd_field("old max", "oldmax")
    content: Optional[str] = _nrrd_field("content")
    sample_units: Optional[str] = _nrrd_field("sample units", "sampleunits")
    block_size: Optional[int] = _nrrd_field("block size", "blocksize")
    line_skip: Optional[int] = _nrrd_field("line skip", "lineskip")
    byte_skip: Optional[int] = _nrrd_field("byte skip", "byteskip")
    data_file: Optional[str] = _nrrd_field("data file", "datafile")
    key_values: Mapping[str, str] = field(default_factory=_FrozenDict)
    extensions: Mapping[str, str] = field(default_factory=_FrozenDict)
    fields: Mapping[str, str] = field(default_factory=_FrozenDict)
    extra: HeaderExtra = field(default_factory=HeaderExtra)
    _LABEL = "header."

    @classmethod
    def attribute_for_key(cls, key: str) -> Optional[str]:
        """Return the attribute holding an NRRD field, or None if unrecognized.

        Legacy spellings ("axismins", "oldmin", ...) resolve to the same
        attribute as their current spelling.
        """
        return _key_to_attribute().get(key)

    @property
    def element_type(self) -> ElementType:
        """Element type resolved from the "type" field."""
        return element_type_from_name(self.type)

    @property
    def nb_elements(self) -> int:
        """Number of elements declared by "sizes"."""
        return math.prod(self.sizes) if self.sizes else 0

    def get(self, key: str, default: Any = None) -> Any:
        """Return a decoded field by its NRRD name."""
        attribute = self.attribute_for_key(key)
        if attribute is not None:
            value = getattr(self, attribute)
            return default if value is None else value
        return self.extensions.get(key, default)

    def to_mapping(self, *, include_none: bool = False) -> dict[str, Any]:
        """Serialize to plain Python values keyed by NRRD field name.

        Args:
            include_none: Include absent fields as None when True.

        Returns:
            A dict of NRRD field names to lists, numbers and strings, with
            "extensions", "key_values" and "extra" as nested dicts.
        """
        out: dict[str, Any] = {}
        if self.version is not None or include_none:
            out["version"] = self.version
        for f in fields(self):
            key = f.metadata.get("nrrd_key")
            if key is None:
                continue
            value = getattr(self, f.name)
            if value is None and not include_none:
                continue
            out[key] = _to_plain(value)
        out["extensions"] = _to_plain(self.extensions)
        out["key_values"] = _to_plain(self.key_values)
        out["extra"] = self.extra.to_mapping()
        return out

    def __repr__(self) -> str:
        return f"NrrdHeader({self.to_mapping()!r})"


_KEY_TO_ATTRIBUTE: dict[str, str] = {}


def _key_to_attribute() -> dict[str, str]:
    if not _KEY_TO_ATTRIBUTE:
        for f in fields(NrrdHeader):
            key = f.metadata.get("nrrd_key")
            if key is None:
                continue
            _KEY_TO_ATTRIBUTE[key] = f.name
            for alias in f.metadata["aliases"]:
                _KEY_TO_ATTRIBUTE[alias] = f.name
    return _KEY_TO_ATTRIBUTE
