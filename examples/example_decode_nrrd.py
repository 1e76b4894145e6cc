import gzip
import json
import os
from pathlib import Path

import numpy as np

from nrrdarray import NrrdArray


def build_nrrd(volume: np.ndarray) -> bytes:
    nz, ny, nx = volume.shape
    header = "\n".join([
        "NRRD0004",
        "# Synthetic volume written by example_decode_nrrd.py",
        "type: float",
        "dimension: 3",
        "space: left-posterior-superior",
        f"sizes: {nx} {ny} {nz}",
        "space directions: (0.8,0,0) (0,0.8,0) (0,0,2.5)",
        "kinds: domain domain domain",
        "endian: little",
        "encoding: gzip",
        "space origin: (-40,-30,12)",
        "patient:=anonymous",
    ])
    return (header + "\n\n").encode("latin-1") + gzip.compress(volume.astype("<f4").tobytes())


if __name__ == '__main__':
    print("Creating NRRD file content...")
    volume = np.random.random((16, 48, 64)).astype(np.float32)
    buffer = build_nrrd(volume)
    filepath = "tmp.b2nd"

    print("Decoding volume...")
    image = NrrdArray(buffer)
    print(json.dumps(image.header.to_mapping(), indent=2, sort_keys=True))
    print("Shape: ", image.shape, "Spacing: ", image.spacing, "Origin: ", image.origin)
    print("Value range: ", image.min, image.max)

    print("Slicing...")
    print("XY slice shape: ", image.slice_xy(8).shape)
    print("XZ slice shape: ", image.slice_xz(24).shape)
    print("YZ slice shape: ", image.slice_yz(32).shape)
    print("Voxel at world position (0, 0, 32): ", image.voxel_from_world(0.0, 0.0, 32.0))

    print("Storing as Blosc2...")
    compressed = image.to_blosc2(filepath)
    print("Compressed mean value: ", np.mean(compressed[...]))

    if Path(filepath).is_file():
        os.remove(filepath)
