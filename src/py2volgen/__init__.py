# py2volgen package
# Synthetic volume generation and container packaging

__version__ = "0.1.0"

from .generation.container_assembler import (
    BuildOutcome,
    BuildState,
    ContainerAssembler,
    GenerationRequest,
    create_volume_container,
)

__all__ = [
    "BuildOutcome",
    "BuildState",
    "ContainerAssembler",
    "GenerationRequest",
    "create_volume_container",
]
