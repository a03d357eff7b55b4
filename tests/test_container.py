"""
Unit tests for the zarr volume container writer.
"""
import shutil
import tempfile
import unittest
from pathlib import Path

import numpy as np
import zarr

from py2volgen.models.blocks import (
    ChecksumSemantics, DataBlock, GlobalHeader, Histogram1DBlock,
    KeyValuePairBlock, MaxMinBlock
)
from py2volgen.storage.container import VolumeContainer, is_container_path


def read_root(path):
    return zarr.open_group(str(path), mode='r')


class TestContainerPath(unittest.TestCase):

    def test_extension(self):
        self.assertTrue(is_container_path("volume.zarr"))
        self.assertTrue(is_container_path(Path("out") / "Volume.ZARR"))
        self.assertFalse(is_container_path("volume.raw"))
        self.assertFalse(is_container_path("volume"))


class TestVolumeContainer(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.path = self.temp_dir / "volume.zarr"

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def build(self, path, blocks):
        container = VolumeContainer(path)
        self.assertTrue(container.open())
        container.set_global_header(GlobalHeader(checksum_semantics=ChecksumSemantics.MD5))
        for block in blocks:
            self.assertTrue(container.add_block(block))
        self.assertTrue(container.create())
        container.close()
        return container

    def sample_blocks(self):
        metadata = KeyValuePairBlock()
        metadata.add_pair("Source Type", "integer")
        max_min = MaxMinBlock()
        max_min.merge_data(2, 9)
        return [
            DataBlock(block_id="Test Block 1"),
            Histogram1DBlock(histogram=np.array([4, 0, 7], dtype=np.uint64)),
            max_min,
            metadata,
        ]

    def test_blocks_and_index_written(self):
        container = self.build(self.path, self.sample_blocks())

        root = read_root(self.path)
        self.assertTrue(root.attrs['complete'])
        ids = [entry['block_id'] for entry in root.attrs['block_index']]
        self.assertEqual(ids, ["Test Block 1", "1D Histogram", "Brick Max/Min Values",
                               "Metadata"])
        self.assertEqual(ids, container.block_ids)
        self.assertEqual(root.attrs['global_header']['checksum_semantics'], 'md5')

        histogram = root['blocks/1/histogram']
        np.testing.assert_array_equal(histogram[...], [4, 0, 7])
        self.assertEqual(root['blocks/3'].attrs['pairs'], [["Source Type", "integer"]])

    def test_checksum_present_and_deterministic(self):
        first = self.build(self.path, self.sample_blocks())
        second = self.build(self.temp_dir / "copy.zarr", self.sample_blocks())

        self.assertEqual(len(first.checksum), 32)
        self.assertEqual(first.checksum, second.checksum)
        self.assertEqual(read_root(self.path).attrs['checksum'], first.checksum)

    def test_checksum_depends_on_content(self):
        first = self.build(self.path, self.sample_blocks())
        blocks = self.sample_blocks()
        blocks[1].histogram = np.array([4, 1, 7], dtype=np.uint64)
        second = self.build(self.temp_dir / "other.zarr", blocks)

        self.assertNotEqual(first.checksum, second.checksum)

    def test_no_checksum_semantics(self):
        container = VolumeContainer(self.path)
        container.open()
        container.set_global_header(GlobalHeader(checksum_semantics=ChecksumSemantics.NONE))
        container.add_block(DataBlock(block_id="only"))
        self.assertTrue(container.create())
        self.assertEqual(container.checksum, "")

    def test_unfinished_container_is_discarded(self):
        container = VolumeContainer(self.path)
        self.assertTrue(container.open())
        container.add_block(DataBlock(block_id="Test Block 1"))
        container.close()

        self.assertFalse(container.is_open)
        self.assertFalse(self.path.exists())
        self.assertIsNone(container.checksum)

    def test_open_replaces_existing_container(self):
        self.build(self.path, self.sample_blocks())
        self.build(self.path, [DataBlock(block_id="fresh")])

        root = read_root(self.path)
        self.assertEqual([e['block_id'] for e in root.attrs['block_index']], ["fresh"])

    def test_add_block_requires_open_container(self):
        container = VolumeContainer(self.path)
        self.assertFalse(container.add_block(DataBlock(block_id="x")))
        self.assertFalse(container.create())

    def test_no_blocks_after_finalize(self):
        container = VolumeContainer(self.path)
        container.open()
        container.create()
        self.assertFalse(container.add_block(DataBlock(block_id="late")))


if __name__ == '__main__':
    unittest.main()
