"""Brick/LOD planning from volume dimensions and a target brick edge length."""

from dataclasses import dataclass
from typing import Tuple

from py2volgen.core.errors import ValidationError
from py2volgen.models.volume import VolumeDimensions

DEFAULT_BRICK_OVERLAP = 2
DEFAULT_BRICK_SIZE = 64
LOD_DECIMATION_FACTOR = 2


@dataclass(frozen=True)
class BrickPlan:
    """Brick layout and LOD hierarchy for one volume."""
    brick_size: Tuple[int, int, int]
    brick_overlap: Tuple[int, int, int]
    decimation_factor: Tuple[int, int, int]
    lod_level_count: int
    scale: Tuple[float, float, float]

    @property
    def interior_size(self) -> Tuple[int, int, int]:
        """Voxels per brick that are not shared with a neighbour."""
        return tuple(b - 2 * o for b, o in zip(self.brick_size, self.brick_overlap))


def lod_level_count(max_dimension: int, brick_size: int) -> int:
    """Number of LOD levels until the largest axis fits in one brick."""
    count = 1
    size = int(max_dimension)
    while size > brick_size:
        size //= LOD_DECIMATION_FACTOR
        count += 1
    return count


def scale_transform(dims: VolumeDimensions) -> Tuple[float, float, float]:
    """Per-axis scale giving uniform voxel spacing for anisotropic grids."""
    max_dim = float(dims.max_dimension)
    return (max_dim / dims.x, max_dim / dims.y, max_dim / dims.z)


def plan_bricks(dims: VolumeDimensions, brick_size: int,
                flat_raster: bool = True,
                default_overlap: int = DEFAULT_BRICK_OVERLAP) -> BrickPlan:
    """Compute the brick plan for a volume.

    Args:
        dims: Volume dimensions
        brick_size: Edge length of the cubic bricks
        flat_raster: True for the raster payload, which doubles the overlap
        default_overlap: Base overlap in voxels

    Raises:
        ValidationError: If the brick size is not positive
    """
    brick_size = int(brick_size)
    if brick_size <= 0:
        raise ValidationError(f"Brick size must be positive, got {brick_size}",
                              field_name='brick_size')

    overlap = default_overlap * 2 if flat_raster else default_overlap
    return BrickPlan(
        brick_size=(brick_size,) * 3,
        brick_overlap=(overlap,) * 3,
        decimation_factor=(LOD_DECIMATION_FACTOR,) * 3,
        lod_level_count=lod_level_count(dims.max_dimension, brick_size),
        scale=scale_transform(dims),
    )
