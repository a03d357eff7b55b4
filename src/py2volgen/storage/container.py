"""Volume container writer on top of a zarr directory store.

Layout::

    volume.zarr/
      (root attrs)   global_header, block_index, checksum, complete
      blocks/
        0/           first appended block (attrs + arrays)
        1/
        ...

Blocks are written when they are appended, in order, and every byte written
feeds a running MD5 digest. ``create()`` stores the global header, the block
index and the digest and marks the container complete. A container that is
closed before ``create()`` succeeded is removed, so an unfinished build never
leaves a container on disk.
"""

import hashlib
import json
import logging
import shutil
from pathlib import Path
from typing import List, Optional, Union

from py2volgen.models.blocks import ChecksumSemantics, ContainerBlock, GlobalHeader
from py2volgen.storage.zarr_compat import open_group

logger = logging.getLogger(__name__)

CONTAINER_EXTENSION = ".zarr"


def is_container_path(path: Union[str, Path]) -> bool:
    """True if ``path`` names a container (by its extension)."""
    return Path(path).suffix.lower() == CONTAINER_EXTENSION


class VolumeContainer:
    """Append-only writer for a checksummed, multi-block volume container."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.header = GlobalHeader()
        self.blocks: List[ContainerBlock] = []
        self._root = None
        self._blocks_group = None
        self._digest = None
        self._finalized = False
        self._checksum = None

    @property
    def is_open(self) -> bool:
        return self._root is not None

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    @property
    def block_ids(self) -> List[str]:
        return [block.block_id for block in self.blocks]

    def open(self) -> bool:
        """Create an empty container at ``path`` (replacing any existing one)."""
        try:
            if self.path.is_dir():
                shutil.rmtree(self.path)
            elif self.path.exists():
                self.path.unlink()
            self._root = open_group(self.path, mode='w')
            self._blocks_group = self._root.create_group('blocks')
        except Exception as e:
            logger.error(f"Failed to create container {self.path}: {e}")
            self._root = None
            return False

        self._digest = self._new_digest()
        self._finalized = False
        logger.debug(f"Opened container {self.path}")
        return True

    def set_global_header(self, header: GlobalHeader) -> None:
        self.header = header
        self._digest = self._new_digest()

    def _new_digest(self):
        if self.header.checksum_semantics is ChecksumSemantics.MD5:
            return hashlib.md5()
        return None

    def add_block(self, block: ContainerBlock) -> bool:
        """Write ``block`` as the next block of the container."""
        if not self.is_open or self._finalized:
            logger.error(f"Cannot add block '{block.block_id}': container is not open")
            return False
        try:
            group = self._blocks_group.create_group(str(len(self.blocks)))
            block.write_to(group, self._digest)
        except Exception as e:
            logger.error(f"Failed to add block '{block.block_id}': {e}")
            return False

        self.blocks.append(block)
        logger.debug(f"Added block {len(self.blocks) - 1}: '{block.block_id}' ({block.block_type})")
        return True

    def create(self) -> bool:
        """Write the global header, block index and checksum."""
        if not self.is_open:
            logger.error(f"Cannot finalize container {self.path}: not open")
            return False
        try:
            block_index = [
                {'index': n, 'block_id': block.block_id, 'block_type': block.block_type}
                for n, block in enumerate(self.blocks)
            ]
            checksum = ""
            if self._digest is not None:
                self._digest.update(json.dumps(block_index, sort_keys=True).encode('utf-8'))
                checksum = self._digest.hexdigest()

            self._root.attrs.update({
                'global_header': self.header.to_dict(),
                'block_index': block_index,
                'checksum': checksum,
                'complete': True,
            })
        except Exception as e:
            logger.error(f"Failed to finalize container {self.path}: {e}")
            return False

        self._finalized = True
        self._checksum = checksum
        logger.info(f"Container {self.path} written with {len(self.blocks)} blocks "
                    f"(checksum {checksum or 'none'})")
        return True

    @property
    def checksum(self) -> Optional[str]:
        """Hex digest written by create(), None before that."""
        return self._checksum

    def close(self) -> None:
        """Release the container; an unfinished container is removed."""
        if self._root is None:
            return
        self._root = None
        self._blocks_group = None
        if not self._finalized:
            shutil.rmtree(self.path, ignore_errors=True)
            logger.debug(f"Discarded unfinished container {self.path}")
