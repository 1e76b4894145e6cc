import math
import re
import zlib
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple, Union

import numpy as np

from nrrdarray.constants import (
    NRRD_MAGIC,
    ElementType,
    kind_size_from_name,
    space_dimension_from_name,
)
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
    UnsupportedEncodingError,
)
from nrrdarray.header import HeaderExtra, NrrdHeader, _FrozenDict, _header_internal_write

Buffer = Union[bytes, bytearray, memoryview]

RAW_ENCODINGS = ("raw",)
TEXT_ENCODINGS = ("ascii", "txt", "text")
GZIP_ENCODINGS = ("gzip", "gz")

_HEADER_END = re.compile(rb"\n\r?\n")
_VECTOR = re.compile(r"\(([^)]*)\)|(\S+)")
_QUOTED = re.compile(r'"([^"]*)"')


class ParseResult(NamedTuple):
    header: NrrdHeader
    data: Optional[np.ndarray]


def parse(buffer: Buffer, header_only: bool = False) -> ParseResult:
    """Decode an NRRD file held in memory.

    Args:
        buffer: The complete file content.
        header_only: Skip the payload and return ``data=None`` when True.

    Returns:
        ParseResult: The read-only header and the flat decoded payload. The
        payload is a new native byte order array owned by the caller, with
        ``prod(header.sizes)`` elements and axis 0 varying fastest.

    Raises:
        NrrdError: Any subclass, see ``nrrdarray.errors``.
    """
    buffer = _as_bytes(buffer)
    header, data_byte_offset = parse_header(buffer)
    if header_only:
        return ParseResult(header, None)
    data = parse_data(buffer, header, data_byte_offset)
    return ParseResult(header, data)


def parse_header(buffer: Buffer) -> Tuple[NrrdHeader, int]:
    """Decode the text header of an NRRD buffer.

    Args:
        buffer: The complete file content.

    Returns:
        Tuple[NrrdHeader, int]: The header and the byte offset where the
        payload starts (right after the blank line ending the header).

    Raises:
        NotAFormatFileError: If the magic is missing.
        CorruptHeaderError: If no blank line ends the header, or if fields
            contradict each other.
        MalformedFieldError: If a line or a field value cannot be decoded.
    """
    buffer = _as_bytes(buffer)
    if bytes(buffer[:len(NRRD_MAGIC)]) != NRRD_MAGIC:
        raise NotAFormatFileError("This file is not a NRRD file.")

    end = _HEADER_END.search(buffer)
    if end is None:
        raise CorruptHeaderError("The NRRD header is corrupted: no blank line ends it.")
    data_byte_offset = end.end()

    lines = [line.strip() for line in buffer[:end.start()].decode("latin-1").split("\n")]
    version = lines[0]

    comments: List[str] = []
    raw_fields: Dict[str, str] = {}
    key_values: Dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        if line.startswith("#"):
            comments.append(line[1:].strip())
            continue
        key, separator, value = line.partition(":")
        if not separator:
            raise MalformedFieldError(f'Malformed header line "{line}": expected "<field>: <value>".')
        if value.startswith("="):
            key_values[key.strip()] = value[1:]
            continue
        raw_fields[key.strip()] = value.strip()

    values: Dict[str, object] = {}
    extensions: Dict[str, str] = {}
    for key, raw in raw_fields.items():
        attribute = NrrdHeader.attribute_for_key(key)
        if attribute is None:
            extensions[key] = raw
            continue
        decoder = _FIELD_DECODERS.get(attribute, _parse_string)
        values[attribute] = decoder(key, raw)

    _resolve_space(values)
    _validate(values)

    sizes = values["sizes"]
    stride = [1]
    for i in range(1, len(sizes)):
        stride.append(stride[i - 1] * sizes[i - 1])

    header = NrrdHeader(
        version=version,
        **values,
        key_values=_FrozenDict(key_values),
        extensions=_FrozenDict(extensions),
        fields=_FrozenDict(raw_fields),
        extra=HeaderExtra(comments=tuple(comments), stride=tuple(stride)),
    )
    return header, data_byte_offset


def parse_data(buffer: Buffer, header: NrrdHeader, data_byte_offset: int) -> np.ndarray:
    """Decode the payload that follows the header.

    Sets ``header.extra.min`` and ``header.extra.max`` to the extrema of the
    decoded values (NaN is ignored).

    Args:
        buffer: The complete file content.
        header: Header returned by ``parse_header`` for this buffer.
        data_byte_offset: Payload offset returned by ``parse_header``.

    Returns:
        np.ndarray: Flat array of ``prod(header.sizes)`` elements.

    Raises:
        MissingFieldError: If "type", "encoding" or a required "endian" is absent.
        UnknownTypeError: If "type" is not a known element type.
        UnsupportedEncodingError: If the encoding is not raw, text or gzip.
        LengthMismatchError: If the payload size disagrees with "sizes".
        MalformedPayloadError: If the payload cannot be decoded.
    """
    buffer = _as_bytes(buffer)
    if header.type is None:
        raise MissingFieldError('The "type" field is required to decode the data.')
    if header.encoding is None:
        raise MissingFieldError('The "encoding" field is required to decode the data.')
    if header.data_file is not None:
        raise UnsupportedEncodingError("Detached data files are not supported, the payload must follow the header.")

    element_type = header.element_type
    encoding = header.encoding.lower()
    nb_elements = header.nb_elements
    offset = _skip_lines(buffer, data_byte_offset, header.line_skip or 0)
    payload = memoryview(buffer)[offset:]

    if encoding in TEXT_ENCODINGS:
        data, minimum, maximum = _decode_text(payload, element_type, nb_elements)
    elif encoding in RAW_ENCODINGS or encoding in GZIP_ENCODINGS:
        if element_type.width > 1 and header.endian is None:
            raise MissingFieldError(f'The "endian" field is required for "{header.type}" data.')
        if encoding in GZIP_ENCODINGS:
            payload = _inflate(payload)
        payload = _skip_bytes(payload, header.byte_skip or 0, nb_elements * element_type.width)
        data = _decode_binary(payload, element_type, header.endian, nb_elements)
        minimum, maximum = _extrema(data, element_type)
    else:
        raise UnsupportedEncodingError(
            f'Unsupported encoding "{header.encoding}". Only "raw", "ascii" and "gzip" encodings are supported.'
        )

    with _header_internal_write():
        header.extra.min = minimum
        header.extra.max = maximum
    return data


def _as_bytes(buffer: Buffer) -> Union[bytes, bytearray]:
    if isinstance(buffer, (bytes, bytearray)):
        return buffer
    if isinstance(buffer, memoryview):
        return buffer.tobytes()
    raise TypeError(f"Expected bytes, bytearray or memoryview, got {type(buffer).__name__}.")


# Field decoders. Each takes the field name (for error messages) and the
# trimmed value text.

def _malformed(key: str, value: str, expected: str) -> MalformedFieldError:
    return MalformedFieldError(f'Cannot decode field "{key}": expected {expected}, got "{value}".')


def _parse_string(key: str, value: str) -> str:
    return value


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise _malformed(key, value, "an integer") from None


def _parse_float(key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise _malformed(key, value, "a number") from None


def _parse_int_list(key: str, value: str) -> Tuple[int, ...]:
    try:
        return tuple(int(v) for v in value.split())
    except ValueError:
        raise _malformed(key, value, "whitespace separated integers") from None


def _parse_float_list(key: str, value: str) -> Tuple[float, ...]:
    try:
        return tuple(float(v) for v in value.split())
    except ValueError:
        raise _malformed(key, value, "whitespace separated numbers") from None


def _parse_string_list(key: str, value: str) -> Tuple[str, ...]:
    if '"' in value:
        return tuple(_QUOTED.findall(value))
    return tuple(value.split())


def _parse_vector(key: str, value: str) -> Tuple[float, ...]:
    value = value.strip()
    if not (value.startswith("(") and value.endswith(")")):
        raise _malformed(key, value, 'a vector "(f0,f1,...)"')
    try:
        return tuple(float(v) for v in value[1:-1].split(","))
    except ValueError:
        raise _malformed(key, value, 'a vector "(f0,f1,...)"') from None


def _parse_vector_list(key: str, value: str) -> Tuple[Optional[Tuple[float, ...]], ...]:
    vectors = []
    for match in _VECTOR.finditer(value):
        vector, token = match.groups()
        if vector is not None:
            vectors.append(_parse_vector(key, f"({vector})"))
        elif token.lower() == "none":
            vectors.append(None)
        else:
            raise _malformed(key, value, 'vectors "(f0,f1,...)" or "none"')
    return tuple(vectors)


def _parse_centers(key: str, value: str) -> Tuple[Optional[str], ...]:
    return tuple(c if c in ("cell", "node") else None for c in value.split())


def _parse_endian(key: str, value: str) -> str:
    endian = value.lower()
    if endian not in ("little", "big"):
        raise _malformed(key, value, '"little" or "big"')
    return endian


_FIELD_DECODERS: Dict[str, Callable[[str, str], object]] = {
    "dimension": _parse_int,
    "sizes": _parse_int_list,
    "endian": _parse_endian,
    "space_dimension": _parse_int,
    "space_directions": _parse_vector_list,
    "space_origin": _parse_vector,
    "space_units": _parse_string_list,
    "measurement_frame": _parse_vector_list,
    "kinds": _parse_string_list,
    "centers": _parse_centers,
    "labels": _parse_string_list,
    "units": _parse_string_list,
    "spacings": _parse_float_list,
    "thicknesses": _parse_float_list,
    "axis_mins": _parse_float_list,
    "axis_maxs": _parse_float_list,
    "min": _parse_float,
    "max": _parse_float,
    "old_min": _parse_float,
    "old_max": _parse_float,
    "block_size": _parse_int,
    "line_skip": _parse_int,
    "byte_skip": _parse_int,
}


def _resolve_space(values: Dict[str, object]) -> None:
    """Derive "space dimension" from "space" unless it is given explicitly."""
    if "space" not in values:
        return
    space_dimension = space_dimension_from_name(values["space"])
    values.setdefault("space_dimension", space_dimension)


def _validate(values: Dict[str, object]) -> None:
    sizes = values.get("sizes")
    if not sizes:
        raise MissingFieldError('The "sizes" field is required.')
    if any(s < 1 for s in sizes):
        raise MalformedFieldError(f'All "sizes" must be positive, got {list(sizes)}.')

    dimension = values.setdefault("dimension", len(sizes))
    if dimension < 1:
        raise MalformedFieldError(f'"dimension" must be at least 1, got {dimension}.')
    if len(sizes) != dimension:
        raise DimensionMismatchError(
            f'"sizes" has {len(sizes)} elements but "dimension" is {dimension}.'
        )

    space_dimension = values.get("space_dimension")
    if space_dimension is not None and space_dimension < 1:
        raise MalformedFieldError(f'"space dimension" must be at least 1, got {space_dimension}.')

    directions = values.get("space_directions")
    if directions is not None:
        if len(directions) != dimension:
            raise DimensionMismatchError(
                '"space directions" has to contain as many elements as dimensions. '
                'Non-spatial dimensions must be referred to as "none".'
            )
        for vector in directions:
            if vector is not None and space_dimension is not None and len(vector) != space_dimension:
                raise DimensionMismatchError(
                    f'"space directions" vectors must have {space_dimension} components, got {len(vector)}.'
                )

    origin = values.get("space_origin")
    if origin is not None and space_dimension is not None and len(origin) != space_dimension:
        raise DimensionMismatchError(
            f'"space origin" must have {space_dimension} components, got {len(origin)}.'
        )

    for attribute in ("spacings", "thicknesses", "axis_mins", "axis_maxs", "centers", "labels", "units"):
        per_axis = values.get(attribute)
        if per_axis is not None and len(per_axis) != dimension:
            key = NrrdHeader.__dataclass_fields__[attribute].metadata["nrrd_key"]
            raise DimensionMismatchError(f'"{key}" has {len(per_axis)} elements but "dimension" is {dimension}.')

    kinds = values.get("kinds")
    if kinds is not None:
        if len(kinds) != len(sizes):
            raise KindCountMismatchError(
                'The "kinds" field is expected to have as many elements as the "sizes" field.'
            )
        for kind, found in zip(kinds, sizes):
            expected = kind_size_from_name(kind)
            if expected is not None and expected != found:
                raise KindSizeMismatchError(kind, expected, found)

    byte_skip = values.get("byte_skip")
    if byte_skip is not None and byte_skip < -1:
        raise MalformedFieldError(f'"byte skip" must be -1 or positive, got {byte_skip}.')
    line_skip = values.get("line_skip")
    if line_skip is not None and line_skip < 0:
        raise MalformedFieldError(f'"line skip" must be positive, got {line_skip}.')


# Payload helpers

def _skip_lines(buffer: Union[bytes, bytearray], offset: int, nb_lines: int) -> int:
    for _ in range(nb_lines):
        newline = buffer.find(b"\n", offset)
        if newline < 0:
            raise MalformedPayloadError(f'Cannot skip {nb_lines} lines: the payload is too short.')
        offset = newline + 1
    return offset


def _skip_bytes(payload: Buffer, byte_skip: int, expected_bytes: int) -> Buffer:
    if byte_skip == -1:
        if len(payload) < expected_bytes:
            raise LengthMismatchError(
                f"Inconsistency in data buffer length: expected {expected_bytes} bytes, found {len(payload)}."
            )
        return payload[len(payload) - expected_bytes:]
    return payload[byte_skip:]


def _inflate(payload: Buffer) -> bytes:
    try:
        # 32 lets zlib detect gzip and zlib framing.
        return zlib.decompress(payload, zlib.MAX_WBITS | 32)
    except zlib.error as e:
        raise MalformedPayloadError(f"Cannot inflate the gzip payload: {e}") from e


def _decode_binary(payload: Buffer, element_type: ElementType, endian: Optional[str], nb_elements: int) -> np.ndarray:
    width = element_type.width
    if len(payload) % width != 0 or len(payload) // width != nb_elements:
        raise LengthMismatchError(
            f"Inconsistency in data buffer length: expected {nb_elements} elements of {width} bytes, "
            f"found {len(payload)} bytes."
        )
    return element_type.decode(payload, endian)


def _decode_text(payload: Buffer, element_type: ElementType, nb_elements: int) -> Tuple[np.ndarray, float, float]:
    tokens = bytes(payload).decode("latin-1").split()
    if len(tokens) != nb_elements:
        raise LengthMismatchError(
            f"Inconsistency in data buffer length: expected {nb_elements} values, found {len(tokens)}."
        )
    try:
        numbers = np.array(tokens, dtype=np.float64)
    except ValueError as e:
        raise MalformedPayloadError(f"Cannot decode the text payload: {e}") from e
    minimum, maximum = _extrema(numbers, ElementType.float64)
    return numbers.astype(element_type.dtype), minimum, maximum


def _extrema(data: np.ndarray, element_type: ElementType) -> Tuple[float, float]:
    if element_type.is_float:
        data = data[~np.isnan(data)]
        if data.size == 0:
            return math.inf, -math.inf
        return float(data.min()), float(data.max())
    return int(data.min()), int(data.max())
