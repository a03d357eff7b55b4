"""Bricking and histogram computation over generated volumes."""

from .bricking import BrickingEngine, combine_average, simple_max_min
from .histograms import HistogramEngine

__all__ = [
    'BrickingEngine',
    'combine_average',
    'simple_max_min',
    'HistogramEngine',
]
