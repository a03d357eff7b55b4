"""
Histogram Engine - derived 1-D and 2-D histograms over a bricked payload.

Both histograms are computed on the finest LOD level. Bricks are visited one
at a time and only their interior voxels are counted, so every voxel of the
level contributes exactly once.

The 2-D histogram bins the scalar value against the gradient magnitude. The
gradient is taken per brick with a Sobel filter; the overlap border gives the
interior voxels real neighbours. A first pass finds the largest gradient
magnitude, the second pass fills the bins.
"""

import logging
import math
from typing import Union

import numpy as np
from scipy import ndimage

from py2volgen.models.blocks import (
    BrickLevel, Histogram1DBlock, Histogram2DBlock, RasterBlock, TOCBlock
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUCKETS = 4096
DEFAULT_GRADIENT_BINS = 256

PayloadBlock = Union[RasterBlock, TOCBlock]


def _finest_level(payload: PayloadBlock) -> BrickLevel:
    if not payload.levels:
        raise ValueError(f"Payload '{payload.block_id}' has no LOD levels")
    return payload.levels[0]


def gradient_magnitude(brick: np.ndarray) -> np.ndarray:
    """Sobel gradient magnitude of a brick."""
    return ndimage.generic_gradient_magnitude(brick.astype(np.float32), ndimage.sobel)


class HistogramEngine:
    """Computes the histogram blocks of a container."""

    def __init__(self, gradient_bins: int = DEFAULT_GRADIENT_BINS):
        self.gradient_bins = int(gradient_bins)

    def compute_1d(self, block: Histogram1DBlock, payload: PayloadBlock,
                   channel: int = 0) -> bool:
        """Count value occurrences; trailing empty bins are dropped.

        Returns:
            False if the payload is empty or not an unsigned integer volume
        """
        if channel != 0:
            logger.error(f"Only channel 0 is stored, requested channel {channel}")
            return False
        try:
            level = _finest_level(payload)
            counts = np.zeros(0, dtype=np.uint64)
            for k, j, i, brick in level.iter_bricks():
                values = level.interior(brick, k, j, i)
                if values.dtype.kind != 'u':
                    logger.error(f"Cannot histogram {values.dtype} data")
                    return False
                brick_counts = np.bincount(values.ravel()).astype(np.uint64)
                if len(brick_counts) > len(counts):
                    counts = np.pad(counts, (0, len(brick_counts) - len(counts)))
                counts[:len(brick_counts)] += brick_counts
        except (ValueError, OSError) as e:
            logger.error(f"1D histogram computation failed: {e}")
            return False

        nonzero = np.flatnonzero(counts)
        if nonzero.size == 0:
            logger.error("1D histogram is empty")
            return False
        block.histogram = counts[:nonzero[-1] + 1]
        logger.debug(f"1D histogram: {len(block.histogram)} bins")
        return True

    @staticmethod
    def compress(block: Histogram1DBlock, max_buckets: int = DEFAULT_MAX_BUCKETS) -> None:
        """Merge neighbouring bins until at most ``max_buckets`` remain."""
        size = len(block.histogram)
        if size <= max_buckets:
            return
        per_bucket = int(math.ceil(size / max_buckets))
        padded = np.pad(block.histogram, (0, (-size) % per_bucket))
        block.histogram = padded.reshape(-1, per_bucket).sum(axis=1).astype(np.uint64)
        logger.debug(f"Compressed 1D histogram from {size} to {len(block.histogram)} bins")

    def compute_2d(self, block: Histogram2DBlock, payload: PayloadBlock,
                   channel: int, bucket_count: int, global_max: float) -> bool:
        """Joint histogram of value (``bucket_count`` rows) and gradient magnitude."""
        if channel != 0:
            logger.error(f"Only channel 0 is stored, requested channel {channel}")
            return False
        if bucket_count <= 0:
            logger.error(f"Invalid bucket count {bucket_count}")
            return False

        try:
            level = _finest_level(payload)

            max_gradient = 0.0
            for k, j, i, brick in level.iter_bricks():
                gradient = level.interior(gradient_magnitude(brick), k, j, i)
                if gradient.size:
                    max_gradient = max(max_gradient, float(gradient.max()))

            value_top = max(float(global_max), 0.0) + 1.0
            gradient_top = max_gradient if max_gradient > 0 else 1.0
            histogram = np.zeros((bucket_count, self.gradient_bins), dtype=np.uint64)

            for k, j, i, brick in level.iter_bricks():
                values = level.interior(brick, k, j, i).astype(np.float64).ravel()
                gradient = level.interior(gradient_magnitude(brick), k, j, i).ravel()
                counts, _, _ = np.histogram2d(
                    values, gradient,
                    bins=(bucket_count, self.gradient_bins),
                    range=((0.0, value_top), (0.0, gradient_top))
                )
                histogram += counts.astype(np.uint64)
        except (ValueError, OSError) as e:
            logger.error(f"2D histogram computation failed: {e}")
            return False

        block.histogram = histogram
        block.max_gradient = max_gradient
        block.value_range = (0.0, value_top)
        logger.debug(f"2D histogram: {histogram.shape}, max gradient {max_gradient:.3f}")
        return True
