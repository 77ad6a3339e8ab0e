#!/usr/bin/env python3
"""
Tests for running external commands.

Run with: python3 -m pytest test_cmd_util.py
"""

import os
import tempfile
import unittest

from boostkit.utils.cmd.cmd_util import CommandRunner, decode_bytes


class TestCommandRunner(unittest.TestCase):
    """Test CommandRunner against real processes."""

    def setUp(self):
        self.runner = CommandRunner(echo=False)
        self.root = tempfile.mkdtemp()

    def test_output_and_log(self):
        """Test that stdout and stderr are captured and appended to the log."""
        log_path = os.path.join(self.root, "logs", "ios-build.log")
        with open(os.path.join(self.root, "marker"), "w"):
            pass
        os.makedirs(os.path.dirname(log_path))
        with open(log_path, "w") as f:
            f.write("previous\n")

        result = self.runner.run(["sh", "-c", "ls; echo err >&2; exit 3"], cwd=self.root, log_path=log_path)

        self.assertFalse(result.ok)
        self.assertEqual(result.returncode, 3)
        self.assertIn("marker", result.output)
        self.assertIn("err", result.output)
        with open(log_path) as f:
            log = f.read()
        self.assertTrue(log.startswith("previous\n"))
        self.assertIn("err", log)

    def test_missing_tool(self):
        result = self.runner.run(["boostkit-no-such-tool"])
        self.assertEqual(result.returncode, 127)
        self.assertIn("exited with 127", result.describe())

    def test_timeout(self):
        result = self.runner.run(["sleep", "5"], timeout_second=0.2)
        self.assertFalse(result.ok)
        self.assertTrue(result.timed_out)
        self.assertIn("killed after timeout", result.describe())

    def test_output(self):
        self.assertEqual(self.runner.output(["echo", " 15.2 "]), "15.2")
        self.assertIsNone(self.runner.output(["false"]))

    def test_env(self):
        result = self.runner.run(["sh", "-c", "echo $BOOSTKIT_TEST"], env={"BOOSTKIT_TEST": "1"})
        self.assertEqual(result.output, "1\n")


class TestDecodeBytes(unittest.TestCase):

    def test_fallback(self):
        self.assertEqual(decode_bytes("é".encode("utf-8")), "é")
        self.assertEqual(decode_bytes(b"\xff"), "\xff")


if __name__ == "__main__":
    unittest.main(verbosity=2)
