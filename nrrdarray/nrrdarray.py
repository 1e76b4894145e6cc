import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import blosc2
import numpy as np

from nrrdarray import toolbox
from nrrdarray.header import NrrdHeader
from nrrdarray.parser import Buffer, parse

NRRD_DEFAULT_CPARAMS = {'codec': blosc2.Codec.ZSTD, 'clevel': 8}

logger = logging.getLogger(__name__)


class NrrdArray:
    def __init__(
            self,
            buffer: Optional[Buffer] = None,
            header_only: bool = False) -> None:
        """Initializes a NrrdArray instance.

        A NrrdArray holds the read-only header and the flat payload decoded
        from an in-memory NRRD file, and exposes voxel addressing, slicing
        and voxel/world transforms over them. Reading the file from disk is
        left to the caller.

        Args:
            buffer (Optional[Buffer]): Complete NRRD file content. If None,
                an empty NrrdArray instance is created.
            header_only (bool): Decode only the header. ``data`` is None and
                array accessors raise ``TypeError``.

        Raises:
            NrrdError: If the buffer cannot be decoded.
        """
        self.header = None
        self.data = None
        if buffer is not None:
            self._decode(buffer, header_only)

    @classmethod
    def from_buffer(
            cls,
            buffer: Buffer,
            header_only: bool = False,
        ):
        """Decode an in-memory NRRD file.

        Args:
            buffer (Buffer): Complete NRRD file content (bytes, bytearray or
                memoryview).
            header_only (bool): Decode only the header.

        Returns:
            NrrdArray: A newly created NrrdArray instance.
        """
        class_instance = cls()
        class_instance._decode(buffer, header_only)
        return class_instance

    def _decode(self, buffer: Buffer, header_only: bool):
        self.header, self.data = parse(buffer, header_only=header_only)
        if self.data is None:
            logger.debug("Decoded NRRD header only: sizes=%s, type=%s", self.header.sizes, self.header.type)
        else:
            logger.debug(
                "Decoded NRRD volume: sizes=%s, type=%s, encoding=%s, min=%s, max=%s",
                self.header.sizes, self.header.type, self.header.encoding, self.header.extra.min, self.header.extra.max,
            )

    def _require_data(self):
        if self.data is None:
            raise TypeError("NrrdArray has no array data loaded.")

    def _require_header(self):
        if self.header is None:
            raise TypeError("NrrdArray has no header loaded.")

    def to_numpy(self):
        """Return the payload as an N-dimensional NumPy view.

        The axes are in NumPy (C) order, i.e. reversed compared to the NRRD
        "sizes": the slowest NRRD axis comes first and axis 0 of the file
        comes last.

        Returns:
            np.ndarray: A view of ``data`` with shape ``self.shape``.

        Raises:
            TypeError: If no array data is loaded.
        """
        self._require_data()
        return self.data.reshape(self.shape)

    def __getitem__(self, key):
        """Return a slice or element of the N-dimensional payload (NumPy axis order).

        Raises:
            TypeError: If no array data is loaded.
        """
        return self.to_numpy()[key]

    def __iter__(self):
        """Iterate over the first NumPy axis (the slowest NRRD axis).

        Raises:
            TypeError: If no array data is loaded.
        """
        return iter(self.to_numpy())

    def __len__(self):
        """Return the length of the first NumPy axis, or 0 if no array is loaded."""
        if self.data is None:
            return 0
        return self.shape[0]

    def __array__(self, dtype=None):
        """NumPy array interface for implicit conversion.

        Raises:
            TypeError: If no array data is loaded.
        """
        arr = self.to_numpy()
        if dtype is not None:
            return arr.astype(dtype)
        return arr

    @property
    def shape(self) -> Tuple[int, ...]:
        """Returns the payload shape in NumPy axis order (reversed "sizes")."""
        self._require_header()
        return tuple(reversed(self.header.sizes))

    @property
    def dtype(self) -> np.dtype:
        """Returns the NumPy dtype of the decoded elements."""
        self._require_header()
        return self.header.element_type.dtype

    @property
    def ndim(self) -> int:
        """Returns the number of axes."""
        self._require_header()
        return self.header.dimension

    @property
    def ncpv(self) -> int:
        """Returns the number of components per voxel."""
        self._require_header()
        return toolbox.components_per_voxel(self.header)

    @property
    def time_samples(self) -> int:
        """Returns the number of time samples."""
        self._require_header()
        return toolbox.time_samples(self.header)

    @property
    def min(self):
        """Returns the smallest decoded value."""
        self._require_header()
        return self.header.extra.min

    @property
    def max(self):
        """Returns the largest decoded value."""
        self._require_header()
        return self.header.extra.max

    @property
    def spacing(self) -> Optional[List[float]]:
        """Returns the spacing of each spatial axis.

        The norms of the "space directions" vectors when present, otherwise
        the "spacings" field, otherwise None.
        """
        self._require_header()
        if self.header.space_directions is not None:
            return [float(np.linalg.norm(v)) for v in self.header.space_directions if v is not None]
        if self.header.spacings is not None:
            return list(self.header.spacings)
        return None

    @property
    def origin(self) -> Optional[List[float]]:
        """Returns the world position of the first voxel."""
        self._require_header()
        if self.header.space_origin is None:
            return None
        return list(self.header.space_origin)

    @property
    def affine(self) -> np.ndarray:
        """Returns the 4x4 voxel to world matrix."""
        return self.voxel_to_world()

    def value(self, x: int, y: int, z: int) -> np.ndarray:
        """Returns the components of voxel (x, y, z). See ``toolbox.get_value``."""
        self._require_data()
        return toolbox.get_value(self.data, self.header, x, y, z)

    def world_value(self, x: float, y: float, z: float) -> np.ndarray:
        """Returns the components of the voxel nearest to a world position."""
        self._require_data()
        return toolbox.world_value(self.data, self.header, x, y, z)

    def slice_xy(self, slice_index: int, view: bool = False, uint8: bool = False) -> toolbox.Slice:
        """Returns the plane z = slice_index. See ``toolbox.slice_xy``."""
        self._require_data()
        return toolbox.slice_xy(self.data, self.header, slice_index, view=view, uint8=uint8)

    def slice_xz(self, slice_index: int, uint8: bool = False) -> toolbox.SliceCopy:
        """Returns the plane y = slice_index. See ``toolbox.slice_xz``."""
        self._require_data()
        return toolbox.slice_xz(self.data, self.header, slice_index, uint8=uint8)

    def slice_yz(self, slice_index: int, uint8: bool = False) -> toolbox.SliceCopy:
        """Returns the plane x = slice_index. See ``toolbox.slice_yz``."""
        self._require_data()
        return toolbox.slice_yz(self.data, self.header, slice_index, uint8=uint8)

    def voxel_to_world(self) -> np.ndarray:
        self._require_header()
        return toolbox.voxel_to_world(self.header)

    def world_to_voxel(self) -> np.ndarray:
        self._require_header()
        return toolbox.world_to_voxel(self.header)

    def voxel_from_world(self, x: float, y: float, z: float) -> Tuple[int, int, int]:
        self._require_header()
        return toolbox.voxel_from_world(self.header, x, y, z)

    def to_blosc2(
            self,
            urlpath: Optional[Union[str, Path]] = None,
            chunk_size: Optional[Union[int, List, Tuple]] = None,
            block_size: Optional[Union[int, List, Tuple]] = None,
            cparams: Optional[Dict] = None,
            dparams: Optional[Dict] = None
        ) -> blosc2.NDArray:
        """Store the decoded volume in a Blosc2-compressed array.

        Args:
            urlpath (Optional[Union[str, Path]]): Path of a ".b2nd" file to
                write. If None, the array is kept in memory. An existing file
                is overwritten.
            chunk_size (Optional[Union[int, List, Tuple]]): Explicit chunk size
                in NumPy axis order, or None to let Blosc2 decide.
            block_size (Optional[Union[int, List, Tuple]]): Explicit block size
                in NumPy axis order, or None to let Blosc2 decide.
            cparams (Optional[Dict]): Blosc2 compression parameters. If None,
                defaults to ``{'codec': blosc2.Codec.ZSTD, 'clevel': 8}``.
            dparams (Optional[Dict]): Blosc2 decompression parameters. If None,
                defaults to ``{'nthreads': 1}``.

        Returns:
            blosc2.NDArray: The compressed volume with shape ``self.shape``.

        Raises:
            TypeError: If no array data is loaded.
            RuntimeError: If ``urlpath`` does not end with ".b2nd".
        """
        self._require_data()
        if urlpath is not None and not str(urlpath).endswith(".b2nd"):
            raise RuntimeError("NrrdArray requires '.b2nd' as extension.")
        if cparams is None:
            cparams = dict(NRRD_DEFAULT_CPARAMS)
        if dparams is None:
            dparams = {'nthreads': 1}

        kwargs = {'cparams': cparams, 'dparams': dparams}
        if chunk_size is not None:
            kwargs['chunks'] = self._per_axis(chunk_size)
        if block_size is not None:
            kwargs['blocks'] = self._per_axis(block_size)
        if urlpath is not None:
            if Path(urlpath).is_file():
                os.remove(str(urlpath))
            kwargs['urlpath'] = str(urlpath)

        array = np.ascontiguousarray(self.to_numpy())
        logger.debug("Compressing NRRD volume of shape %s to %s", array.shape, urlpath or "memory")
        return blosc2.asarray(array, **kwargs)

    def _per_axis(self, size: Union[int, List, Tuple]) -> Tuple[int, ...]:
        if isinstance(size, int):
            return (size,) * self.ndim
        if len(size) != self.ndim:
            raise RuntimeError(f"Chunk and block sizes must have {self.ndim} elements, got {len(size)}.")
        return tuple(size)
