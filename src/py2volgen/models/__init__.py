# ============================================================================
# src/py2volgen/models/__init__.py
"""
Data models for py2volgen.

Volume geometry, sample formats and the block types stored in a container.
"""

from .volume import (
    VolumeDimensions,
    SampleFormat,
    FieldKind
)

from .blocks import (
    CompressionScheme,
    ChecksumSemantics,
    DomainSemantics,
    GlobalHeader,
    BrickLevel,
    DataBlock,
    RasterBlock,
    TOCBlock,
    Histogram1DBlock,
    Histogram2DBlock,
    MaxMinBlock,
    KeyValuePairBlock,
    ContainerBlock
)

__all__ = [
    'VolumeDimensions',
    'SampleFormat',
    'FieldKind',
    'CompressionScheme',
    'ChecksumSemantics',
    'DomainSemantics',
    'GlobalHeader',
    'BrickLevel',
    'DataBlock',
    'RasterBlock',
    'TOCBlock',
    'Histogram1DBlock',
    'Histogram2DBlock',
    'MaxMinBlock',
    'KeyValuePairBlock',
    'ContainerBlock'
]
