#!/usr/bin/env python3
"""
Tests for packaging boost.xcframework.

Run with: python3 -m pytest test_build_xcframework.py
"""

import os
import plistlib
import tempfile
import unittest

from boostkit.build_scripts.build_matrix import BuildOptions, resolve_configuration
from boostkit.build_scripts.build_xcframework import (
    build_xcframework,
    bundle_path,
    collect_slices,
    create_xcframework,
    relocate_headers,
)
from boostkit.build_scripts.errors import AssemblyError
from boostkit.utils.cmd.test_fakes import FakeRunner, write_fake_archive


class TestXCFramework(unittest.TestCase):
    """Test XCFramework assembly."""

    def setUp(self):
        self.root = tempfile.mkdtemp()
        self.config = resolve_configuration(
            BuildOptions(root_dir=self.root, platforms=["ios", "macos"], threads=1)
        )
        self.slice_paths = {
            "ios": write_fake_archive(os.path.join(self.root, "slices", "ios", "libboost.a"), {"arm64": {}}),
            "ios-simulator": write_fake_archive(
                os.path.join(self.root, "slices", "ios-simulator", "libboost.a"), {"x86_64": {}, "arm64": {}}
            ),
        }

    def install_headers(self, platform):
        include_dir = os.path.join(self.config.platform_output_dir(platform), "prefix", "include")
        os.makedirs(os.path.join(include_dir, "boost"))
        with open(os.path.join(include_dir, "boost", "version.hpp"), "w") as f:
            f.write(f"// {platform}\n")
        return include_dir

    def test_no_slices(self):
        with self.assertRaises(AssemblyError):
            collect_slices(self.config, {})

    def test_no_headers(self):
        with self.assertRaises(AssemblyError):
            collect_slices(self.config, self.slice_paths)

    def test_headers_from_last_platform(self):
        self.install_headers("ios")
        macos_include = self.install_headers("macos")

        manifest = collect_slices(self.config, self.slice_paths)

        self.assertEqual(manifest.headers_path, macos_include)
        self.assertEqual([name for name, _ in manifest.slices], ["ios", "ios-simulator"])
        self.assertEqual(manifest.version, "1.72.0")

    def test_build(self):
        """Test that all slices share one Headers directory at the bundle root."""
        self.install_headers("ios")
        bundle = bundle_path(self.config)
        os.makedirs(bundle)
        open(os.path.join(bundle, "stale"), "w").close()
        runner = FakeRunner()

        manifest = build_xcframework(self.config, self.slice_paths, runner)

        self.assertEqual(bundle, os.path.join(self.root, "dist", "boost.xcframework"))
        self.assertFalse(os.path.exists(os.path.join(bundle, "stale")))
        self.assertTrue(os.path.isfile(os.path.join(bundle, "Headers", "boost", "version.hpp")))
        for entry in os.listdir(bundle):
            self.assertFalse(os.path.exists(os.path.join(bundle, entry, "Headers")) and entry != "Headers")

        with open(os.path.join(bundle, "Info.plist"), "rb") as f:
            info = plistlib.load(f)
        self.assertEqual([lib["HeadersPath"] for lib in info["AvailableLibraries"]], ["../Headers", "../Headers"])

        with open(os.path.join(bundle, "VERSION")) as f:
            self.assertEqual(f.read().strip(), "1.72.0")

        args = runner.commands("xcrun")[0]
        self.assertEqual(args[:3], ["xcrun", "xcodebuild", "-create-xcframework"])
        self.assertEqual(
            [args[i + 1] for i, a in enumerate(args) if a == "-library"],
            manifest.library_paths,
        )

    def test_slice_count_mismatch(self):
        self.install_headers("ios")
        manifest = collect_slices(self.config, self.slice_paths)
        bundle = create_xcframework(manifest, bundle_path(self.config), FakeRunner())

        with self.assertRaises(AssemblyError):
            relocate_headers(bundle, 3)

    def test_xcodebuild_failure(self):
        self.install_headers("ios")
        runner = FakeRunner(fail=lambda args: "-create-xcframework" in args)

        with self.assertRaises(AssemblyError):
            build_xcframework(self.config, self.slice_paths, runner)


if __name__ == "__main__":
    unittest.main(verbosity=2)
