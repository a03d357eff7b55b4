"""
Bricking Engine - subdivides a flat raw volume into a bricked LOD hierarchy.

Level 0 is the source volume. Every further level halves the previous one
along each axis by averaging 2x2x2 neighbourhoods (odd trailing voxels are
edge-clamped). Each level is then cut into cubic bricks of edge ``B`` that
overlap their neighbours by ``overlap`` voxels on every side, so a brick
carries ``B - 2 * overlap`` voxels of its own plus a border copied from the
adjacent bricks. At the volume border the border is filled by repeating the
edge voxel.

Intermediate levels and the bricks themselves are staged in a temporary zarr
store. Work is done in z-slabs sized to the memory budget, so the source is
never loaded in full. Every brick (of every level) reports its min/max to the
max/min sink in brick order.
"""

import logging
import math
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from py2volgen.generation.brick_planner import lod_level_count
from py2volgen.models.blocks import (
    BrickLevel, CompressionScheme, MaxMinBlock, RasterBlock, TOCBlock
)
from py2volgen.storage.raw_file import RawVolumeFile
from py2volgen.storage.zarr_compat import create_array, open_group

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_BUDGET = 1024 * 1024 * 1024

ProgressSink = Callable[[float, str], None]


def combine_average(slab: np.ndarray, dtype=None) -> np.ndarray:
    """Downsample a (z, y, x) slab by 2 per axis using the 2x2x2 mean.

    Args:
        slab: Source voxels
        dtype: Output dtype (defaults to the slab's dtype)
    """
    dtype = np.dtype(dtype or slab.dtype)
    pad = [(0, d % 2) for d in slab.shape]
    if any(p[1] for p in pad):
        slab = np.pad(slab, pad, mode='edge')
    z, y, x = slab.shape
    blocks = slab.reshape(z // 2, 2, y // 2, 2, x // 2, 2).astype(np.float64)
    return blocks.mean(axis=(1, 3, 5)).astype(dtype)


def simple_max_min(brick: np.ndarray, dtype=None) -> Tuple[float, float]:
    """Minimum and maximum value of a brick."""
    if dtype is not None:
        brick = brick.astype(dtype, copy=False)
    return float(brick.min()), float(brick.max())


class BrickingEngine:
    """Builds bricked LOD payloads from a flat raw file."""

    def __init__(self, memory_budget_bytes: int = DEFAULT_MEMORY_BUDGET):
        self.memory_budget_bytes = int(memory_budget_bytes)

    def subdivide_flat_file_into_bricks(
        self,
        toc_block: TOCBlock,
        source_path: Union[str, Path],
        temp_path: Union[str, Path],
        sample_type,
        channel_count: int,
        dims: Tuple[int, int, int],
        voxel_spacing: Tuple[float, float, float],
        brick_size: int,
        brick_overlap: int,
        allow_compression: bool,
        allow_multi_resolution: bool,
        memory_budget_bytes: int,
        max_min_sink: MaxMinBlock,
        progress: Optional[ProgressSink] = None,
    ) -> bool:
        """Fill ``toc_block`` with the bricked LOD hierarchy of a raw file.

        Args:
            toc_block: Block receiving the levels and layout
            source_path: Headerless raw file, x fastest
            temp_path: Directory for the staging zarr store
            sample_type: Numpy dtype of the samples
            channel_count: Components per voxel (only 1 is supported)
            dims: Volume size (x, y, z)
            voxel_spacing: Physical spacing per axis
            brick_size: Brick edge length including overlap
            brick_overlap: Overlap per side in voxels
            allow_compression: Store bricks Blosc-compressed in the container
            allow_multi_resolution: Build the LOD hierarchy (else level 0 only)
            memory_budget_bytes: Upper bound for slabs held in memory
            max_min_sink: Receives per-brick min/max values
            progress: Optional callback (fraction, message)

        Returns:
            True on success, False if the volume could not be bricked
        """
        dtype = np.dtype(sample_type)
        x, y, z = (int(d) for d in dims)
        source_path = Path(source_path)

        if channel_count != 1:
            logger.error(f"Bricking supports one channel, got {channel_count}")
            return False
        if not self._check_layout(brick_size, brick_overlap):
            return False

        expected = x * y * z * dtype.itemsize
        if not source_path.exists() or source_path.stat().st_size != expected:
            logger.error(f"Raw file {source_path} does not hold {expected} bytes")
            return False

        level_count = lod_level_count(max(x, y, z), brick_size) if allow_multi_resolution else 1

        try:
            source = np.memmap(source_path, dtype=dtype, mode='r', shape=(z, y, x))
            levels = self._build_levels(
                source, Path(temp_path), dtype, int(brick_size), int(brick_overlap),
                level_count, combine_average, simple_max_min, max_min_sink,
                memory_budget_bytes, progress
            )
        except Exception as e:
            logger.exception(f"Failed to brick {source_path}: {e}")
            return False

        toc_block.domain_size = (x, y, z)
        toc_block.component_count = channel_count
        toc_block.element_bit_size = dtype.itemsize * 8
        toc_block.voxel_spacing = tuple(float(v) for v in voxel_spacing)
        toc_block.brick_size = int(brick_size)
        toc_block.brick_overlap = int(brick_overlap)
        toc_block.levels = levels
        if allow_compression:
            toc_block.compression = CompressionScheme.BLOSC_ZSTD

        logger.info(f"Bricked {x}x{y}x{z} volume into {level_count} LOD level(s), "
                    f"{sum(level.brick_count for level in levels)} bricks")
        return True

    def flat_data_to_bricked_lod(
        self,
        raster_block: RasterBlock,
        raw_file: RawVolumeFile,
        temp_path: Union[str, Path],
        combine: Callable[[np.ndarray], np.ndarray],
        max_min: Callable[[np.ndarray], Tuple[float, float]],
        max_min_sink: MaxMinBlock,
        progress: Optional[ProgressSink] = None,
    ) -> bool:
        """Fill ``raster_block`` levels from an open raw backing store.

        The layout (domain size, brick size, overlap, LOD count, scalar type)
        is taken from the block descriptor.
        """
        if len(raster_block.domain_size) != 3 or not raster_block.lod_level_count:
            logger.error("Raster block descriptor is incomplete")
            return False

        brick_size = int(raster_block.brick_size[0])
        overlap = int(raster_block.brick_overlap[0])
        if not self._check_layout(brick_size, overlap):
            return False

        x, y, z = (int(d) for d in raster_block.domain_size)
        dtype = raster_block.sample_dtype
        expected = x * y * z * dtype.itemsize
        if raw_file.size != expected:
            logger.error(f"Raw file {raw_file.path} holds {raw_file.size} bytes, "
                         f"expected {expected}")
            return False

        try:
            source = raw_file.memmap(dtype, (z, y, x))
            raster_block.levels = self._build_levels(
                source, Path(temp_path), dtype, brick_size, overlap,
                int(raster_block.lod_level_count[0]), combine, max_min,
                max_min_sink, self.memory_budget_bytes, progress
            )
        except Exception as e:
            logger.exception(f"Failed to brick {raw_file.path}: {e}")
            return False
        return True

    @staticmethod
    def _check_layout(brick_size: int, overlap: int) -> bool:
        if overlap < 0 or brick_size <= 2 * overlap:
            logger.error(f"Brick size {brick_size} must exceed twice the overlap {overlap}")
            return False
        return True

    def _build_levels(self, source, temp_path: Path, dtype: np.dtype,
                      brick_size: int, overlap: int, level_count: int,
                      combine, max_min, max_min_sink: MaxMinBlock,
                      memory_budget: int,
                      progress: Optional[ProgressSink]) -> List[BrickLevel]:
        staging = open_group(temp_path, mode='w')
        levels = []
        current = source

        for n in range(level_count):
            if n > 0:
                current = self._downsample(current, staging, f"dense_{n}",
                                           combine, dtype, memory_budget)
            bricks = self._brick_level(current, staging, f"bricks_{n}", dtype,
                                       brick_size, overlap, max_min, max_min_sink)
            levels.append(BrickLevel(shape=tuple(int(d) for d in current.shape),
                                     bricks=bricks, brick_size=brick_size,
                                     overlap=overlap))
            logger.debug(f"LOD {n}: shape {current.shape}, brick grid {bricks.shape[:3]}")
            if progress is not None:
                progress((n + 1) / level_count, f"Bricked LOD level {n + 1} of {level_count}")

        return levels

    @staticmethod
    def _downsample(current, staging, name: str, combine, dtype: np.dtype,
                    memory_budget: int):
        z, y, x = (int(d) for d in current.shape)
        out_shape = ((z + 1) // 2, (y + 1) // 2, (x + 1) // 2)
        dense = create_array(staging, name, out_shape, dtype,
                             chunks=(1, out_shape[1], out_shape[2]))

        # Averaging works in float64; keep an even number of source planes per slab
        plane_bytes = y * x * 8
        pairs = max(1, memory_budget // max(1, 2 * plane_bytes))
        for z0 in range(0, z, 2 * pairs):
            z1 = min(z, z0 + 2 * pairs)
            reduced = combine(np.asarray(current[z0:z1]))
            dense[z0 // 2:z0 // 2 + reduced.shape[0]] = reduced
        return dense

    @staticmethod
    def _brick_level(current, staging, name: str, dtype: np.dtype,
                     brick_size: int, overlap: int, max_min,
                     max_min_sink: MaxMinBlock):
        z, y, x = (int(d) for d in current.shape)
        s = brick_size - 2 * overlap
        nbz, nby, nbx = (int(math.ceil(d / s)) for d in (z, y, x))
        bricks = create_array(staging, name, (nbz, nby, nbx) + (brick_size,) * 3, dtype,
                              chunks=(1, 1, 1) + (brick_size,) * 3)

        y_after = (nby - 1) * s - overlap + brick_size - y
        x_after = (nbx - 1) * s - overlap + brick_size - x

        for k in range(nbz):
            lo = k * s - overlap
            hi = lo + brick_size
            src = np.asarray(current[max(0, lo):min(z, hi)])
            slab = np.pad(
                src,
                ((max(0, -lo), max(0, hi - z)), (overlap, y_after), (overlap, x_after)),
                mode='edge'
            )

            plane = np.empty((nby, nbx) + (brick_size,) * 3, dtype=dtype)
            for j in range(nby):
                for i in range(nbx):
                    brick = slab[:, j * s:j * s + brick_size, i * s:i * s + brick_size]
                    plane[j, i] = brick
                    max_min_sink.start_new_value()
                    max_min_sink.merge_data(*max_min(brick))
            bricks[k] = plane

        return bricks
