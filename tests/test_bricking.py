"""
Unit tests for the bricking engine and raster block verification.
"""
import shutil
import tempfile
import unittest
from functools import partial
from pathlib import Path

import numpy as np

from py2volgen.generation.brick_planner import plan_bricks
from py2volgen.models.blocks import (
    CompressionScheme, DomainSemantics, MaxMinBlock, RasterBlock, TOCBlock
)
from py2volgen.models.volume import VolumeDimensions
from py2volgen.processing.bricking import BrickingEngine, combine_average, simple_max_min
from py2volgen.storage.raw_file import RawVolumeFile


def make_volume(shape, dtype=np.uint8, seed=0):
    """Random (z, y, x) volume."""
    rng = np.random.RandomState(seed)
    return rng.randint(0, np.iinfo(dtype).max, size=shape).astype(dtype)


def raster_descriptor(dims, brick_size, dtype=np.uint8):
    """Raster block descriptor filled the way the assembler fills it."""
    plan = plan_bricks(dims, brick_size, flat_raster=True)
    block = RasterBlock(block_id="Test Volume 1")
    block.domain_semantics = [DomainSemantics.X, DomainSemantics.Y, DomainSemantics.Z]
    block.domain_size = list(dims.as_tuple())
    block.lod_dec_factor = list(plan.decimation_factor)
    block.lod_groups = [0, 0, 0]
    block.lod_level_count = [plan.lod_level_count]
    bits = np.dtype(dtype).itemsize * 8
    block.set_type_to_scalar(bits, bits, False)
    block.brick_size = list(plan.brick_size)
    block.brick_overlap = list(plan.brick_overlap)
    block.set_scale_only_transformation(plan.scale)
    return block


class TestCombiners(unittest.TestCase):

    def test_combine_average_even(self):
        slab = np.arange(64, dtype=np.uint8).reshape(4, 4, 4)
        reduced = combine_average(slab)

        self.assertEqual(reduced.shape, (2, 2, 2))
        self.assertEqual(reduced.dtype, np.uint8)
        self.assertEqual(reduced[0, 0, 0], int(slab[:2, :2, :2].mean()))

    def test_combine_average_odd_edges_are_clamped(self):
        slab = np.full((3, 5, 1), 7, dtype=np.uint16)
        reduced = combine_average(slab)

        self.assertEqual(reduced.shape, (2, 3, 1))
        self.assertTrue(np.all(reduced == 7))

    def test_combine_average_dtype(self):
        slab = np.full((2, 2, 2), 200, dtype=np.uint8)
        self.assertEqual(combine_average(slab, dtype=np.uint16).dtype, np.uint16)

    def test_simple_max_min(self):
        brick = np.array([[[3, 9], [1, 4]]], dtype=np.uint8)
        self.assertEqual(simple_max_min(brick), (1.0, 9.0))


class BrickingTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.engine = BrickingEngine(memory_budget_bytes=1)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_raw(self, volume):
        path = self.temp_dir / "volume.raw"
        path.write_bytes(np.ascontiguousarray(volume).tobytes())
        return path


class TestFlatDataToBrickedLod(BrickingTestCase):

    def setUp(self):
        super().setUp()
        # x=10, y=12, z=20 with 8^3 bricks and overlap 2 -> 4 interior voxels
        self.dims = VolumeDimensions(10, 12, 20)
        self.volume = make_volume(self.dims.array_shape())
        self.raw = RawVolumeFile(self.write_raw(self.volume))
        self.raw.open()
        self.block = raster_descriptor(self.dims, 8)
        self.block.brick_overlap = [2, 2, 2]
        self.sink = MaxMinBlock()

    def tearDown(self):
        self.raw.close()
        super().tearDown()

    def brick(self):
        return self.engine.flat_data_to_bricked_lod(
            self.block, self.raw, self.temp_dir / "staging",
            partial(combine_average, dtype=np.uint8),
            partial(simple_max_min, dtype=np.uint8),
            self.sink
        )

    def test_levels_and_grid(self):
        self.assertTrue(self.brick())

        self.assertEqual(len(self.block.levels), 3)
        shapes = [level.shape for level in self.block.levels]
        self.assertEqual(shapes, [(20, 12, 10), (10, 6, 5), (5, 3, 3)])
        self.assertEqual(self.block.levels[0].grid, (5, 3, 3))
        self.assertEqual(tuple(self.block.levels[0].bricks.shape[3:]), (8, 8, 8))

    def test_finest_level_reassembles_source(self):
        self.assertTrue(self.brick())
        np.testing.assert_array_equal(self.block.levels[0].reassemble(), self.volume)

    def test_next_level_is_block_average(self):
        self.assertTrue(self.brick())
        expected = combine_average(self.volume, dtype=np.uint8)
        np.testing.assert_array_equal(self.block.levels[1].reassemble(), expected)

    def test_overlap_copies_neighbours(self):
        self.assertTrue(self.brick())
        bricks = np.asarray(self.block.levels[0].bricks)

        # Brick k=1 starts two planes before its interior
        np.testing.assert_array_equal(bricks[1, 0, 0][0, 2:6, 2:6], self.volume[2, 0:4, 0:4])
        # Border of the first brick repeats the edge voxel
        self.assertEqual(bricks[0, 0, 0][0, 0, 0], self.volume[0, 0, 0])

    def test_max_min_per_brick(self):
        self.assertTrue(self.brick())

        total = sum(level.brick_count for level in self.block.levels)
        self.assertEqual(len(self.sink.brick_values), total)
        self.assertEqual(self.sink.global_max, float(self.volume.max()))
        self.assertEqual(self.sink.global_min, float(self.volume.min()))

    def test_verify_passes(self):
        self.assertTrue(self.brick())
        ok, reason = self.block.verify()
        self.assertTrue(ok, reason)

    def test_verify_reports_level_count_mismatch(self):
        self.assertTrue(self.brick())
        self.block.lod_level_count = [4]

        ok, reason = self.block.verify()
        self.assertFalse(ok)
        self.assertIn("LOD", reason)

    def test_verify_reports_bad_semantics(self):
        self.assertTrue(self.brick())
        self.block.domain_semantics = [DomainSemantics.Z, DomainSemantics.Y, DomainSemantics.X]
        self.assertFalse(self.block.verify()[0])

    def test_verify_reports_bad_scale(self):
        self.assertTrue(self.brick())
        self.block.transformation = []
        self.assertFalse(self.block.verify()[0])

    def test_rejects_overlap_too_large(self):
        self.block.brick_overlap = [4, 4, 4]
        self.assertFalse(self.brick())

    def test_rejects_wrong_raw_size(self):
        self.block.domain_size = [10, 12, 21]
        self.assertFalse(self.brick())

    def test_rejects_incomplete_descriptor(self):
        self.block.lod_level_count = []
        self.assertFalse(self.brick())


class TestSubdivideFlatFile(BrickingTestCase):

    def subdivide(self, toc, path, dims, **overrides):
        args = dict(sample_type=np.uint16, channel_count=1, brick_size=8, brick_overlap=2,
                    allow_compression=False, allow_multi_resolution=True)
        args.update(overrides)
        return self.engine.subdivide_flat_file_into_bricks(
            toc, path, self.temp_dir / "staging", args['sample_type'],
            args['channel_count'], dims, (1.0, 1.0, 1.0), args['brick_size'],
            args['brick_overlap'], args['allow_compression'],
            args['allow_multi_resolution'], 1024, self.sink
        )

    def setUp(self):
        super().setUp()
        self.volume = make_volume((16, 16, 16), dtype=np.uint16, seed=3)
        self.path = self.write_raw(self.volume)
        self.sink = MaxMinBlock()

    def test_fills_toc_block(self):
        toc = TOCBlock(block_id="Test TOC Volume 1")
        self.assertTrue(self.subdivide(toc, self.path, (16, 16, 16)))

        self.assertEqual(toc.domain_size, (16, 16, 16))
        self.assertEqual(toc.element_bit_size, 16)
        self.assertEqual(toc.brick_size, 8)
        self.assertEqual(toc.brick_overlap, 2)
        self.assertEqual(toc.lod_level_count, 2)
        self.assertEqual(toc.compression, CompressionScheme.NONE)
        np.testing.assert_array_equal(toc.levels[0].reassemble(), self.volume)
        self.assertEqual(self.sink.global_max, float(self.volume.max()))

    def test_single_resolution(self):
        toc = TOCBlock()
        self.assertTrue(self.subdivide(toc, self.path, (16, 16, 16),
                                       allow_multi_resolution=False))
        self.assertEqual(toc.lod_level_count, 1)

    def test_compression_flag(self):
        toc = TOCBlock()
        self.assertTrue(self.subdivide(toc, self.path, (16, 16, 16), allow_compression=True))
        self.assertEqual(toc.compression, CompressionScheme.BLOSC_ZSTD)

    def test_rejects_multiple_channels(self):
        self.assertFalse(self.subdivide(TOCBlock(), self.path, (16, 16, 16), channel_count=2))

    def test_rejects_size_mismatch(self):
        self.assertFalse(self.subdivide(TOCBlock(), self.path, (16, 16, 17)))

    def test_rejects_missing_file(self):
        self.assertFalse(self.subdivide(TOCBlock(), self.temp_dir / "missing.raw",
                                        (16, 16, 16)))

    def test_rejects_bad_layout(self):
        self.assertFalse(self.subdivide(TOCBlock(), self.path, (16, 16, 16),
                                        brick_size=4, brick_overlap=2))


if __name__ == '__main__':
    unittest.main()
