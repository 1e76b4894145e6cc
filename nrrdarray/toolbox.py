"""Voxel addressing, slicing and voxel/world transforms over a decoded NRRD volume.

All functions take the flat payload returned by ``nrrdarray.parse`` and its
header. Voxel coordinates ``(x, y, z)`` index axes 0, 1 and 2 of the file:
x is the fastest varying axis. The payload offset of a voxel is
``(x * stride[0] + y * stride[1] + z * stride[2]) * ncpv`` where ``ncpv`` is
the number of components per voxel (see ``components_per_voxel``), and the
``ncpv`` components of a voxel are stored next to each other.

Nothing here modifies the payload or the header. Only ``slice_xy(...,
view=True)`` returns memory shared with the payload; every other result is
an independent copy.
"""
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from nrrdarray.constants import DOMAIN_KINDS, UNKNOWN_KINDS
from nrrdarray.errors import DimensionMismatchError, OutOfRangeError, SingularTransformError
from nrrdarray.header import NrrdHeader


@dataclass(frozen=True, eq=False)
class Slice:
    """A 2D plane extracted from a volume.

    Attributes:
        values: Flat plane values, row after row, ``ncpv`` values per pixel.
        width: Number of pixels per row.
        height: Number of rows.
        ncpv: Number of components per pixel.
    """
    values: np.ndarray
    width: int
    height: int
    ncpv: int = 1

    @property
    def shape(self) -> Tuple[int, int]:
        """Return (width, height)."""
        return (self.width, self.height)

    def to_image(self) -> np.ndarray:
        """Return the values reshaped to (height, width) or (height, width, ncpv)."""
        if self.ncpv == 1:
            return self.values.reshape(self.height, self.width)
        return self.values.reshape(self.height, self.width, self.ncpv)

    def __len__(self) -> int:
        return self.values.size


@dataclass(frozen=True, eq=False)
class SliceView(Slice):
    """A slice whose values share memory with the volume payload.

    Writing into ``values`` writes into the volume.
    """


@dataclass(frozen=True, eq=False)
class SliceCopy(Slice):
    """A slice owning its values."""


def components_per_voxel(header: NrrdHeader) -> int:
    """Return the number of components stored per voxel.

    Axis 0 holds per-voxel components when its space direction is "none" and
    the volume has more axes than world dimensions. Without "space
    directions", a non-domain kind on axis 0 marks it as a component axis.
    """
    if header.dimension == header.space_dimension:
        return 1
    if header.space_directions is not None:
        return 1 if header.space_directions[0] is not None else header.sizes[0]
    if header.kinds and header.kinds[0].lower() not in DOMAIN_KINDS | UNKNOWN_KINDS:
        return header.sizes[0]
    return 1


def time_samples(header: NrrdHeader) -> int:
    """Return the number of samples of the last axis when it is not spatial, else 1."""
    if header.dimension == header.space_dimension:
        return 1
    if header.space_directions is not None:
        return 1 if header.space_directions[-1] is not None else header.sizes[-1]
    if header.kinds and header.kinds[-1].lower() not in (DOMAIN_KINDS - {"time"}) | UNKNOWN_KINDS:
        return header.sizes[-1]
    return 1


def _voxel_grid(header: NrrdHeader) -> Tuple[List[int], List[int], int]:
    """Return the sizes and strides of axes 0, 1, 2 and the components per voxel.

    Missing axes get size 1 so that 1D and 2D volumes can be addressed with
    z (and y) set to 0.
    """
    ncpv = components_per_voxel(header)
    sizes = list(header.sizes[:3])
    strides = list(header.extra.stride[:3])
    while len(sizes) < 3:
        sizes.append(1)
        strides.append(0)
    return sizes, strides, ncpv


def index_1d(header: NrrdHeader, x: int, y: int, z: int) -> int:
    """Return ``(x * stride[0] + y * stride[1] + z * stride[2]) * ncpv``.

    Raises:
        OutOfRangeError: If a coordinate is negative or not below its axis size.
    """
    sizes, strides, ncpv = _voxel_grid(header)
    if not (0 <= x < sizes[0] and 0 <= y < sizes[1] and 0 <= z < sizes[2]):
        raise OutOfRangeError(
            f"The position ({x}, {y}, {z}) is out of range for a volume of size {tuple(sizes)}."
        )
    return int((x * strides[0] + y * strides[1] + z * strides[2]) * ncpv)


def get_value(data: np.ndarray, header: NrrdHeader, x: int, y: int, z: int) -> np.ndarray:
    """Return a copy of the ``ncpv`` elements starting at ``index_1d(header, x, y, z)``.

    Raises:
        OutOfRangeError: If the position is outside the volume or the
            elements run past the end of the payload.
    """
    index = index_1d(header, x, y, z)
    end = index + components_per_voxel(header)
    _check_extent(data, end)
    return data[index:end].copy()


def _check_slice_index(slice_index: int, size: int) -> None:
    if not 0 <= slice_index < size:
        raise OutOfRangeError(f"The slice index {slice_index} is out of bound. Must be in [0, {size - 1}].")


def _check_extent(data: np.ndarray, end: int) -> None:
    if end > data.size:
        raise OutOfRangeError(f"The requested elements end at {end} but the payload holds {data.size} elements.")


def to_uint8(values: np.ndarray, header: NrrdHeader) -> np.ndarray:
    """Frame values into [0, 255] using the volume extrema.

    The extrema recorded in ``header.extra`` are used when the payload was
    decoded, otherwise the extrema of ``values``.
    """
    minimum, maximum = header.extra.min, header.extra.max
    if minimum is None or maximum is None:
        minimum, maximum = np.nanmin(values), np.nanmax(values)
    span = float(maximum) - float(minimum)
    if span <= 0:
        return np.zeros(values.shape, dtype=np.uint8)
    framed = (values.astype(np.float64) - float(minimum)) / span * 255
    return np.clip(framed, 0, 255).astype(np.uint8)


def slice_xy(data: np.ndarray, header: NrrdHeader, slice_index: int, view: bool = False, uint8: bool = False) -> Slice:
    """Extract the plane z = slice_index.

    The plane is contiguous in the payload, so it can be returned without
    copying.

    Args:
        data: Flat payload.
        header: Volume header.
        slice_index: Index along z.
        view: Return a ``SliceView`` sharing memory with ``data`` when True.
            Writing into the view then modifies ``data``. Default is an
            independent ``SliceCopy``.
        uint8: Frame the values into [0, 255] as uint8 (always a copy).

    Returns:
        Slice: width = size of x, height = size of y.

    Raises:
        OutOfRangeError: If slice_index is outside [0, size of z). or the plane
            runs past the end of the payload.
    """
    sizes, _, ncpv = _voxel_grid(header)
    _check_slice_index(slice_index, sizes[2])
    plane = sizes[0] * sizes[1] * ncpv
    _check_extent(data, (slice_index + 1) * plane)
    values = data[slice_index * plane:(slice_index + 1) * plane]
    if uint8:
        return SliceCopy(to_uint8(values, header), sizes[0], sizes[1], ncpv)
    if view:
        return SliceView(values, sizes[0], sizes[1], ncpv)
    return SliceCopy(values.copy(), sizes[0], sizes[1], ncpv)


def slice_xz(data: np.ndarray, header: NrrdHeader, slice_index: int, uint8: bool = False) -> SliceCopy:
    """Extract the plane y = slice_index.

    Each output row is a contiguous run of the payload and is copied at once.

    Returns:
        SliceCopy: width = size of x, height = size of z.

    Raises:
        OutOfRangeError: If slice_index is outside [0, size of y). or the plane
            runs past the end of the payload.
    """
    sizes, _, ncpv = _voxel_grid(header)
    _check_slice_index(slice_index, sizes[1])
    width, height = sizes[0], sizes[2]
    row = width * ncpv
    _check_extent(data, index_1d(header, 0, slice_index, height - 1) + row)
    output = np.empty(row * height, dtype=data.dtype)
    for j in range(height):
        start = index_1d(header, 0, slice_index, j)
        output[j * row:(j + 1) * row] = data[start:start + row]
    if uint8:
        output = to_uint8(output, header)
    return SliceCopy(output, width, height, ncpv)


def slice_yz(data: np.ndarray, header: NrrdHeader, slice_index: int, uint8: bool = False) -> SliceCopy:
    """Extract the plane x = slice_index.

    No axis of this plane is contiguous in the payload: every voxel is
    gathered on its own, which costs O(width * height * ncpv) scattered
    reads. This is the slowest of the three orientations.

    Returns:
        SliceCopy: width = size of y, height = size of z.

    Raises:
        OutOfRangeError: If slice_index is outside [0, size of x). or the plane
            runs past the end of the payload.
    """
    sizes, strides, ncpv = _voxel_grid(header)
    _check_slice_index(slice_index, sizes[0])
    width, height = sizes[1], sizes[2]
    voxels = (
        slice_index * strides[0]
        + np.arange(width)[np.newaxis, :] * strides[1]
        + np.arange(height)[:, np.newaxis] * strides[2]
    ).ravel() * ncpv
    indices = (voxels[:, np.newaxis] + np.arange(ncpv)[np.newaxis, :]).ravel()
    _check_extent(data, int(indices.max()) + 1)
    output = data[indices]
    if uint8:
        output = to_uint8(output, header)
    return SliceCopy(output, width, height, ncpv)


def _spatial_vectors(header: NrrdHeader) -> List[Tuple[float, ...]]:
    if header.space_directions is not None:
        return [v for v in header.space_directions if v is not None]
    first = 1 if components_per_voxel(header) > 1 else 0
    spacings = list(header.spacings[first:first + 3]) if header.spacings is not None else []
    spacings = [1.0 if np.isnan(s) else s for s in spacings]
    spacings += [1.0] * (3 - len(spacings))
    return [tuple(row) for row in np.diag(spacings).tolist()]


def voxel_to_world(header: NrrdHeader) -> np.ndarray:
    """Return the 4x4 matrix mapping homogeneous voxel positions to world positions.

    The matrix acts on column vectors ``[x, y, z, 1]``. Its first three
    columns are the spatial "space directions" (axes with "none" are
    skipped), its last column is "space origin" (zeros when absent). Without
    "space directions", the diagonal of "spacings" is used, or the identity.

    Raises:
        DimensionMismatchError: If the volume does not have exactly 3 spatial axes.
    """
    vectors = _spatial_vectors(header)
    if len(vectors) != 3 or any(len(v) != 3 for v in vectors):
        raise DimensionMismatchError(
            f"Voxel to world transforms require 3 spatial axes of 3 components, found {len(vectors)} axes."
        )
    origin = header.space_origin if header.space_origin is not None else (0.0, 0.0, 0.0)
    if len(origin) != 3:
        raise DimensionMismatchError(f'"space origin" must have 3 components, got {len(origin)}.')

    matrix = np.eye(4, dtype=np.float64)
    matrix[:3, :3] = np.array(vectors, dtype=np.float64).T
    matrix[:3, 3] = origin
    return matrix


def world_to_voxel(header: NrrdHeader) -> np.ndarray:
    """Return the inverse of ``voxel_to_world``.

    Raises:
        SingularTransformError: If the voxel to world matrix is not invertible.
    """
    matrix = voxel_to_world(header)
    determinant = np.linalg.det(matrix)
    if determinant == 0 or not np.isfinite(determinant):
        raise SingularTransformError("The voxel to world matrix is singular and cannot be inverted.")
    try:
        return np.linalg.inv(matrix)
    except np.linalg.LinAlgError as e:
        raise SingularTransformError(f"The voxel to world matrix cannot be inverted: {e}") from e


def _round_half_away_from_zero(values: np.ndarray) -> np.ndarray:
    return np.sign(values) * np.floor(np.abs(values) + 0.5)


def voxel_from_world(header: NrrdHeader, x: float, y: float, z: float) -> Tuple[int, int, int]:
    """Return the voxel nearest to a world position, rounding halves away from zero.

    Raises:
        OutOfRangeError: If the position is not finite.
    """
    position = world_to_voxel(header) @ np.array([x, y, z, 1.0], dtype=np.float64)
    if not np.all(np.isfinite(position[:3])):
        raise OutOfRangeError(f"The world position ({x}, {y}, {z}) does not map to a finite voxel position.")
    i, j, k = _round_half_away_from_zero(position[:3])
    return int(i), int(j), int(k)


def world_value(data: np.ndarray, header: NrrdHeader, x: float, y: float, z: float) -> np.ndarray:
    """Return the components of the voxel nearest to a world position.

    Raises:
        OutOfRangeError: If the nearest voxel is outside the volume.
    """
    return get_value(data, header, *voxel_from_world(header, x, y, z))
