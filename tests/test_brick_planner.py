"""
Unit tests for brick/LOD planning.
"""
import unittest

from py2volgen.core.errors import ValidationError
from py2volgen.generation.brick_planner import (
    DEFAULT_BRICK_OVERLAP,
    lod_level_count,
    plan_bricks,
    scale_transform,
)
from py2volgen.models.volume import VolumeDimensions


class TestLodLevelCount(unittest.TestCase):

    def test_single_level_when_volume_fits(self):
        for max_dim in (1, 16, 31, 32):
            self.assertEqual(lod_level_count(max_dim, 32), 1)

    def test_known_counts(self):
        self.assertEqual(lod_level_count(64, 32), 2)
        self.assertEqual(lod_level_count(100, 32), 3)
        self.assertEqual(lod_level_count(1024, 64), 5)

    def test_monotonic_in_max_dimension(self):
        for brick_size in (8, 32, 64):
            counts = [lod_level_count(d, brick_size) for d in range(1, 600)]
            self.assertEqual(counts, sorted(counts))


class TestPlanBricks(unittest.TestCase):

    def test_flat_raster_doubles_overlap(self):
        plan = plan_bricks(VolumeDimensions(64, 64, 64), 32, flat_raster=True)

        self.assertEqual(plan.brick_size, (32, 32, 32))
        self.assertEqual(plan.brick_overlap, (2 * DEFAULT_BRICK_OVERLAP,) * 3)
        self.assertEqual(plan.decimation_factor, (2, 2, 2))
        self.assertEqual(plan.lod_level_count, 2)
        self.assertEqual(plan.interior_size, (24, 24, 24))

    def test_toc_path_uses_default_overlap(self):
        plan = plan_bricks(VolumeDimensions(16, 16, 16), 64, flat_raster=False)

        self.assertEqual(plan.brick_overlap, (DEFAULT_BRICK_OVERLAP,) * 3)
        self.assertEqual(plan.lod_level_count, 1)

    def test_custom_default_overlap(self):
        plan = plan_bricks(VolumeDimensions(16, 16, 16), 32, flat_raster=True,
                           default_overlap=3)
        self.assertEqual(plan.brick_overlap, (6, 6, 6))

    def test_scale_for_anisotropic_volume(self):
        dims = VolumeDimensions(64, 32, 16)
        self.assertEqual(scale_transform(dims), (1.0, 2.0, 4.0))
        self.assertEqual(plan_bricks(dims, 32).scale, (1.0, 2.0, 4.0))

    def test_isotropic_scale_is_one(self):
        self.assertEqual(scale_transform(VolumeDimensions(8, 8, 8)), (1.0, 1.0, 1.0))

    def test_rejects_non_positive_brick_size(self):
        with self.assertRaises(ValidationError):
            plan_bricks(VolumeDimensions(8, 8, 8), 0)


if __name__ == '__main__':
    unittest.main()
