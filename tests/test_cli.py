"""
Tests for command-line argument handling.
"""
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import zarr

from py2volgen.cli import main, parse_args, validate_args


class TestParseArgs(unittest.TestCase):

    def test_defaults(self):
        args = parse_args(["volume.zarr"])

        self.assertEqual(args.output, "volume.zarr")
        self.assertEqual(args.size, [128, 128, 128])
        self.assertEqual(args.bits, 8)
        self.assertEqual(args.brick_size, 64)
        self.assertFalse(args.mandelbulb)
        self.assertFalse(args.toc)
        self.assertFalse(args.keep_raw)
        self.assertIsNone(args.config)
        self.assertEqual(args.log_level, "INFO")

    def test_all_options(self):
        args = parse_args(["out.zarr", "--size", "32", "16", "8", "--bits", "16",
                           "--mandelbulb", "--brick-size", "32", "--toc", "--keep-raw",
                           "--workers", "4", "--log-level", "DEBUG"])

        self.assertEqual(args.size, [32, 16, 8])
        self.assertEqual(args.bits, 16)
        self.assertTrue(args.mandelbulb)
        self.assertTrue(args.toc)
        self.assertTrue(args.keep_raw)
        self.assertEqual(args.workers, 4)

    def test_rejects_unsupported_bit_width(self):
        with patch('sys.stderr'):
            with self.assertRaises(SystemExit):
                parse_args(["out.zarr", "--bits", "12"])


class TestValidateArgs(unittest.TestCase):

    def test_valid(self):
        self.assertTrue(validate_args(parse_args(["volume.zarr"])))

    def test_invalid_values(self):
        cases = [
            ["volume.zarr", "--size", "0", "4", "4"],
            ["volume.zarr", "--brick-size", "-1"],
            ["volume.zarr", "--workers", "0"],
            ["volume.zarr", "--config", "/nonexistent/config.yaml"],
            ["/nonexistent/dir/volume.zarr"],
        ]
        for argv in cases:
            with patch('builtins.print'):
                self.assertFalse(validate_args(parse_args(argv)), argv)


class TestMain(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_raw_output(self):
        output = self.temp_dir / "volume.raw"

        exit_code = main([str(output), "--size", "8", "6", "4", "--bits", "16",
                          "--log-level", "WARNING"])

        self.assertEqual(exit_code, 0)
        self.assertEqual(output.stat().st_size, 8 * 6 * 4 * 2)

    def test_container_output(self):
        output = self.temp_dir / "volume.zarr"

        exit_code = main([str(output), "--size", "16", "16", "16", "--brick-size", "16",
                          "--log-level", "WARNING"])

        self.assertEqual(exit_code, 0)
        self.assertTrue(zarr.open_group(str(output), mode='r').attrs['complete'])
        self.assertFalse((self.temp_dir / "volume.raw").exists())

    def test_brick_too_small_for_overlap_fails(self):
        output = self.temp_dir / "volume.zarr"

        with patch('builtins.print'):
            exit_code = main([str(output), "--size", "8", "8", "8", "--brick-size", "8",
                              "--log-level", "CRITICAL"])

        self.assertEqual(exit_code, 1)
        self.assertFalse(output.exists())

    def test_invalid_arguments_exit_code(self):
        with patch('builtins.print'):
            self.assertEqual(main(["volume.zarr", "--size", "0", "1", "1"]), 1)


if __name__ == '__main__':
    unittest.main()
