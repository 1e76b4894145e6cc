import itertools
import unittest

import numpy as np

from nrrdarray import parse
from nrrdarray import toolbox
from nrrdarray.errors import DimensionMismatchError, OutOfRangeError, SingularTransformError
from nrrdarray.toolbox import SliceCopy, SliceView


def _make_nrrd(fields, payload=b"", comments=(), version="NRRD0004", newline="\n"):
    lines = [version] + [f"# {c}" for c in comments] + [f"{k}: {v}" for k, v in fields]
    return (newline.join(lines) + newline + newline).encode("latin-1") + payload


def _reference_value(x, y, z):
    return x + 10 * y + 100 * z


def _make_reference_volume(sizes=(2, 3, 4), extra_fields=()):
    """Volume with value(x, y, z) = x + 10 * y + 100 * z, x fastest."""
    nx, ny, nz = sizes
    volume = np.fromfunction(lambda z, y, x: _reference_value(x, y, z), (nz, ny, nx), dtype=np.int64)
    fields = [
        ("type", "ushort"),
        ("dimension", "3"),
        ("sizes", f"{nx} {ny} {nz}"),
        ("encoding", "raw"),
        ("endian", "little"),
    ]
    fields.extend(extra_fields)
    return parse(_make_nrrd(fields, volume.astype("<u2").tobytes()))


def _make_rgb_volume(sizes="3 4 5 6"):
    """RGB volume whose payload holds its own element index."""
    count = int(np.prod([int(s) for s in sizes.split()]))
    fields = [
        ("type", "ushort"),
        ("dimension", "4"),
        ("sizes", sizes),
        ("encoding", "raw"),
        ("endian", "little"),
        ("space", "right-anterior-superior"),
        ("space directions", "none (1,0,0) (0,1,0) (0,0,1)"),
        ("kinds", "RGB-color domain domain domain"),
    ]
    return parse(_make_nrrd(fields, np.arange(count, dtype="<u2").tobytes()))


class TestIndexing(unittest.TestCase):
    def setUp(self):
        self.header, self.data = _make_reference_volume()

    def test_components_and_time_samples_of_scalar_volume(self):
        self.assertEqual(toolbox.components_per_voxel(self.header), 1)
        self.assertEqual(toolbox.time_samples(self.header), 1)

    def test_index_1d_matches_strides(self):
        self.assertEqual(toolbox.index_1d(self.header, 0, 0, 0), 0)
        self.assertEqual(toolbox.index_1d(self.header, 1, 2, 3), 1 + 2 * 2 + 3 * 6)

    def test_get_value_agrees_with_index_1d(self):
        for x, y, z in itertools.product(range(2), range(3), range(4)):
            index = toolbox.index_1d(self.header, x, y, z)
            value = toolbox.get_value(self.data, self.header, x, y, z)
            self.assertEqual(value.tolist(), self.data[index:index + 1].tolist())
            self.assertEqual(value.tolist(), [_reference_value(x, y, z)])

    def test_out_of_range_coordinates(self):
        for position in ((2, 0, 0), (0, 3, 0), (0, 0, 4), (-1, 0, 0), (0, -1, 0), (0, 0, -1)):
            with self.assertRaises(OutOfRangeError):
                toolbox.index_1d(self.header, *position)
            with self.assertRaises(OutOfRangeError):
                toolbox.get_value(self.data, self.header, *position)

    def test_out_of_range_is_an_index_error(self):
        with self.assertRaises(IndexError):
            toolbox.get_value(self.data, self.header, 5, 5, 5)

    def test_lower_dimensional_volume(self):
        header, data = parse(_make_nrrd(
            [("type", "uint8"), ("sizes", "8"), ("encoding", "ascii")], b"1 2 3 4 5 6 7 8"
        ))
        self.assertEqual(toolbox.get_value(data, header, 7, 0, 0).tolist(), [8])
        with self.assertRaises(OutOfRangeError):
            toolbox.get_value(data, header, 0, 1, 0)


class TestSlices(unittest.TestCase):
    def setUp(self):
        self.header, self.data = _make_reference_volume()

    def test_slice_shapes(self):
        self.assertEqual(toolbox.slice_xy(self.data, self.header, 0).shape, (2, 3))
        self.assertEqual(toolbox.slice_xz(self.data, self.header, 0).shape, (2, 4))
        self.assertEqual(toolbox.slice_yz(self.data, self.header, 0).shape, (3, 4))

    def test_slice_xy_values(self):
        for z in range(4):
            image = toolbox.slice_xy(self.data, self.header, z).to_image()
            self.assertEqual(image.shape, (3, 2))
            for x, y in itertools.product(range(2), range(3)):
                self.assertEqual(image[y, x], _reference_value(x, y, z))

    def test_slice_xz_values(self):
        for y in range(3):
            image = toolbox.slice_xz(self.data, self.header, y).to_image()
            self.assertEqual(image.shape, (4, 2))
            for x, z in itertools.product(range(2), range(4)):
                self.assertEqual(image[z, x], _reference_value(x, y, z))

    def test_slice_yz_values(self):
        for x in range(2):
            image = toolbox.slice_yz(self.data, self.header, x).to_image()
            self.assertEqual(image.shape, (4, 3))
            for y, z in itertools.product(range(3), range(4)):
                self.assertEqual(image[z, y], _reference_value(x, y, z))

    def test_slice_index_out_of_range(self):
        for slice_index in (-1, 4):
            with self.assertRaises(OutOfRangeError):
                toolbox.slice_xy(self.data, self.header, slice_index)
        with self.assertRaises(OutOfRangeError):
            toolbox.slice_xz(self.data, self.header, 3)
        with self.assertRaises(OutOfRangeError):
            toolbox.slice_yz(self.data, self.header, 2)

    def test_slice_xy_copy_is_independent(self):
        slice_ = toolbox.slice_xy(self.data, self.header, 1)
        self.assertIsInstance(slice_, SliceCopy)
        slice_.values[0] = 9999
        self.assertEqual(self.data[6], _reference_value(0, 0, 1))

    def test_slice_xy_view_aliases_payload(self):
        slice_ = toolbox.slice_xy(self.data, self.header, 1, view=True)
        self.assertIsInstance(slice_, SliceView)
        self.assertTrue(np.shares_memory(slice_.values, self.data))
        slice_.values[0] = 9999
        self.assertEqual(self.data[6], 9999)

    def test_other_orientations_are_copies(self):
        self.assertIsInstance(toolbox.slice_xz(self.data, self.header, 0), SliceCopy)
        self.assertFalse(np.shares_memory(toolbox.slice_yz(self.data, self.header, 0).values, self.data))

    def test_uint8_framing(self):
        first = toolbox.slice_xy(self.data, self.header, 0, uint8=True)
        last = toolbox.slice_xy(self.data, self.header, 3, uint8=True)
        self.assertEqual(first.values.dtype, np.uint8)
        self.assertEqual(first.values[0], 0)
        self.assertEqual(last.values[-1], 255)
        self.assertEqual(toolbox.slice_yz(self.data, self.header, 1, uint8=True).values.dtype, np.uint8)


class TestMultiComponentVolume(unittest.TestCase):
    def setUp(self):
        self.header, self.data = _make_rgb_volume()

    def test_components_per_voxel(self):
        self.assertEqual(toolbox.components_per_voxel(self.header), 3)
        self.assertEqual(toolbox.time_samples(self.header), 1)

    def test_index_scales_strides_by_components(self):
        self.assertEqual(self.header.extra.stride, (1, 3, 12, 60))
        self.assertEqual(toolbox.index_1d(self.header, 1, 2, 3), (1 * 1 + 2 * 3 + 3 * 12) * 3)
        self.assertEqual(toolbox.index_1d(self.header, 2, 3, 4), (2 * 1 + 3 * 3 + 4 * 12) * 3)

    def test_bounds_follow_first_three_axes(self):
        for position in ((3, 0, 0), (0, 4, 0), (0, 0, 5), (-1, 0, 0)):
            with self.assertRaises(OutOfRangeError):
                toolbox.index_1d(self.header, *position)
            with self.assertRaises(OutOfRangeError):
                toolbox.get_value(self.data, self.header, *position)

    def test_get_value_reads_ncpv_elements(self):
        self.assertEqual(toolbox.get_value(self.data, self.header, 1, 2, 3).tolist(), [129, 130, 131])
        for x, y, z in itertools.product(range(3), range(4), range(5)):
            index = toolbox.index_1d(self.header, x, y, z)
            self.assertEqual(
                toolbox.get_value(self.data, self.header, x, y, z).tolist(),
                self.data[index:index + 3].tolist(),
            )

    def test_slice_xy(self):
        with self.assertRaises(OutOfRangeError):
            toolbox.slice_xy(self.data, self.header, 5)
        slice_ = toolbox.slice_xy(self.data, self.header, 4)
        self.assertEqual(slice_.shape, (3, 4))
        self.assertEqual(slice_.to_image().shape, (4, 3, 3))
        self.assertEqual(slice_.values.tolist(), list(range(4 * 3 * 4 * 3, 5 * 3 * 4 * 3)))

    def test_slice_xz(self):
        with self.assertRaises(OutOfRangeError):
            toolbox.slice_xz(self.data, self.header, 4)
        image = toolbox.slice_xz(self.data, self.header, 2).to_image()
        self.assertEqual(image.shape, (5, 3, 3))
        for j in range(5):
            start = toolbox.index_1d(self.header, 0, 2, j)
            self.assertEqual(image[j].ravel().tolist(), list(range(start, start + 9)))

    def test_slice_yz(self):
        with self.assertRaises(OutOfRangeError):
            toolbox.slice_yz(self.data, self.header, 3)
        image = toolbox.slice_yz(self.data, self.header, 1).to_image()
        self.assertEqual(image.shape, (5, 4, 3))
        for i, j, c in itertools.product(range(4), range(5), range(3)):
            self.assertEqual(image[j, i, c], (1 + i * 3 + j * 12) * 3 + c)

    def test_regions_past_the_payload_are_rejected(self):
        header, data = _make_rgb_volume("3 2 3 2")
        self.assertEqual(len(data), 36)
        with self.assertRaises(OutOfRangeError):
            toolbox.get_value(data, header, 2, 1, 2)
        with self.assertRaises(OutOfRangeError):
            toolbox.slice_xy(data, header, 2)
        with self.assertRaises(OutOfRangeError):
            toolbox.slice_yz(data, header, 2)
        self.assertEqual(toolbox.get_value(data, header, 1, 1, 0).tolist(), [12, 13, 14])

    def test_transform_skips_component_axis(self):
        np.testing.assert_allclose(toolbox.voxel_to_world(self.header), np.eye(4))


class TestAxisInference(unittest.TestCase):
    def test_time_axis_from_space_directions(self):
        header, _ = parse(_make_nrrd([
            ("dimension", "4"),
            ("sizes", "2 3 4 5"),
            ("space", "RAS"),
            ("space directions", "(1,0,0) (0,1,0) (0,0,1) none"),
        ]), header_only=True)
        self.assertEqual(toolbox.time_samples(header), 5)
        self.assertEqual(toolbox.components_per_voxel(header), 1)

    def test_component_axis_from_kinds(self):
        header, _ = parse(_make_nrrd([("sizes", "3 4 5"), ("kinds", "vector domain domain")]), header_only=True)
        self.assertEqual(toolbox.components_per_voxel(header), 3)
        self.assertEqual(toolbox.time_samples(header), 1)

    def test_time_axis_from_kinds(self):
        header, _ = parse(_make_nrrd([("sizes", "4 5 3"), ("kinds", "domain domain time")]), header_only=True)
        self.assertEqual(toolbox.components_per_voxel(header), 1)
        self.assertEqual(toolbox.time_samples(header), 3)

    def test_matching_space_dimension_means_scalar(self):
        header, _ = parse(_make_nrrd([
            ("sizes", "3 4 5"),
            ("space dimension", "3"),
            ("kinds", "vector domain domain"),
        ]), header_only=True)
        self.assertEqual(toolbox.components_per_voxel(header), 1)


class TestWorldTransforms(unittest.TestCase):
    def setUp(self):
        self.header, self.data = _make_reference_volume(extra_fields=[
            ("space", "left-posterior-superior"),
            ("space directions", "(2,0,0) (0,2,0) (0,0,2)"),
            ("space origin", "(10,20,30)"),
        ])

    def test_voxel_to_world(self):
        expected = np.array([
            [2.0, 0.0, 0.0, 10.0],
            [0.0, 2.0, 0.0, 20.0],
            [0.0, 0.0, 2.0, 30.0],
            [0.0, 0.0, 0.0, 1.0],
        ])
        np.testing.assert_allclose(toolbox.voxel_to_world(self.header), expected)

    def test_directions_are_matrix_columns(self):
        header, _ = parse(_make_nrrd([
            ("sizes", "2 2 2"),
            ("space", "RAS"),
            ("space directions", "(0,1,0) (0,0,3) (2,0,0)"),
        ]), header_only=True)
        world = toolbox.voxel_to_world(header) @ np.array([1.0, 1.0, 1.0, 1.0])
        np.testing.assert_allclose(world, [2.0, 1.0, 3.0, 1.0])

    def test_inverse_composes_to_identity(self):
        header, _ = parse(_make_nrrd([
            ("sizes", "2 2 2"),
            ("space", "RAS"),
            ("space directions", "(0.7,0.2,0) (-0.1,0.9,0.3) (0,0.4,1.5)"),
            ("space origin", "(-5.5,3,12)"),
        ]), header_only=True)
        product = toolbox.world_to_voxel(header) @ toolbox.voxel_to_world(header)
        np.testing.assert_allclose(product, np.eye(4), atol=1e-12)

    def test_singular_transform(self):
        header, _ = parse(_make_nrrd([
            ("sizes", "2 2 2"),
            ("space", "RAS"),
            ("space directions", "(1,0,0) (2,0,0) (0,0,1)"),
        ]), header_only=True)
        with self.assertRaises(SingularTransformError):
            toolbox.world_to_voxel(header)

    def test_defaults_without_space_fields(self):
        header, _ = parse(_make_nrrd([("sizes", "2 2 2")]), header_only=True)
        np.testing.assert_allclose(toolbox.voxel_to_world(header), np.eye(4))

    def test_spacings_without_space_directions(self):
        header, _ = parse(_make_nrrd([("sizes", "2 2 2"), ("spacings", "2 3 4")]), header_only=True)
        np.testing.assert_allclose(np.diag(toolbox.voxel_to_world(header)), [2.0, 3.0, 4.0, 1.0])

    def test_two_spatial_axes_not_supported(self):
        header, _ = parse(_make_nrrd([
            ("sizes", "2 2"),
            ("space dimension", "2"),
            ("space directions", "(1,0) (0,1)"),
        ]), header_only=True)
        with self.assertRaises(DimensionMismatchError):
            toolbox.voxel_to_world(header)

    def test_voxel_from_world_rounds_half_away_from_zero(self):
        header, _ = parse(_make_nrrd([("sizes", "2 2 2")]), header_only=True)
        self.assertEqual(toolbox.voxel_from_world(header, 0.5, 1.5, 2.5), (1, 2, 3))
        self.assertEqual(toolbox.voxel_from_world(header, -0.5, -1.5, 0.49), (-1, -2, 0))

    def test_world_value(self):
        self.assertEqual(toolbox.voxel_from_world(self.header, 12.0, 24.2, 35.9), (1, 2, 3))
        self.assertEqual(toolbox.world_value(self.data, self.header, 12.0, 24.2, 35.9).tolist(), [321])

    def test_world_value_out_of_range(self):
        with self.assertRaises(OutOfRangeError):
            toolbox.world_value(self.data, self.header, 0.0, 0.0, 0.0)

    def test_non_finite_world_position(self):
        for position in ((float("nan"), 0.0, 0.0), (0.0, float("inf"), 0.0), (0.0, 0.0, -float("inf"))):
            with self.assertRaises(OutOfRangeError):
                toolbox.voxel_from_world(self.header, *position)
            with self.assertRaises(OutOfRangeError):
                toolbox.world_value(self.data, self.header, *position)


if __name__ == "__main__":
    unittest.main()
