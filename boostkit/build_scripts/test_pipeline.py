#!/usr/bin/env python3
"""
Tests for the end to end pipeline and its clean modes.

b2 is emulated by FakeRunner handlers that stage fake archives and
install headers, so the merge and packaging stages run for real.

Run with: python3 -m pytest test_pipeline.py
"""

import os
import tempfile
import unittest
from unittest.mock import patch

from boostkit.build_scripts.build_matrix import (
    BuildOptions,
    PackageManifest,
    platform_specs,
    resolve_configuration,
)
from boostkit.build_scripts.build_utils import XcodeToolchain
from boostkit.build_scripts.errors import BuildError
from boostkit.build_scripts.pipeline import cleanup, purge, run_pipeline
from boostkit.utils.cmd.test_fakes import FakeRunner, read_fake_archive, write_fake_archive

XCODE_OUTPUTS = {
    "xcrun xcodebuild -version": "Xcode 15.2\nBuild version 15C500b",
    "xcode-select -print-path": "/Applications/Xcode.app/Contents/Developer",
}


def fake_b2(config, libraries):
    """Handler staging one fake archive per library and installing headers."""
    archs = {spec.variant: spec.archs for spec in platform_specs(config)}

    def handler(args, cwd):
        variant = next(a for a in args if a.startswith("toolset=")).split("~")[1]
        if args[-1] == "install":
            prefix = next(a for a in args if a.startswith("--prefix=")).split("=", 1)[1]
            os.makedirs(os.path.join(prefix, "include", "boost"), exist_ok=True)
            open(os.path.join(prefix, "include", "boost", "version.hpp"), "w").close()
            return ""
        stage_dir = os.path.join(cwd, f"{variant}-build", "stage", "lib")
        for library in libraries:
            write_fake_archive(
                os.path.join(stage_dir, f"libboost_{library}.a"),
                {arch: {f"{library}.o": f"{variant} {arch}"} for arch in archs[variant]},
            )
        return ""

    return handler


class TestPipeline(unittest.TestCase):
    """Test running every stage in order."""

    def setUp(self):
        self.root = tempfile.mkdtemp()

    def make(self, **kwargs):
        runner = FakeRunner(outputs=XCODE_OUTPUTS)
        toolchain = XcodeToolchain(runner)
        config = resolve_configuration(BuildOptions(root_dir=self.root, threads=2, **kwargs), toolchain)
        runner.handlers.append((lambda args: args[0] == "./b2", fake_b2(config, config.libraries)))
        return config, runner, toolchain

    @patch("boostkit.build_scripts.pipeline.acquire_source")
    def test_build_and_package(self, mock_acquire):
        config, runner, toolchain = self.make(boost_libs="system", universal=True)

        manifest = run_pipeline(config, runner, toolchain)

        mock_acquire.assert_called_once()
        self.assertIsInstance(manifest, PackageManifest)
        self.assertEqual(
            [name for name, _ in manifest.slices],
            ["ios", "ios-simulator", "tvos", "tvos-simulator", "macos"],
        )
        macos = dict(manifest.slices)["macos"]
        self.assertEqual(sorted(read_fake_archive(macos)), ["arm64", "x86_64"])
        bundle = os.path.join(self.root, "dist", "boost.xcframework")
        self.assertTrue(os.path.isfile(os.path.join(bundle, "Headers", "boost", "version.hpp")))
        self.assertTrue(os.path.isfile(os.path.join(bundle, "VERSION")))

    @patch("boostkit.build_scripts.pipeline.acquire_source")
    def test_no_framework(self, mock_acquire):
        config, runner, toolchain = self.make(platforms=["tvos"], boost_libs="system", framework=False)

        slice_paths = run_pipeline(config, runner, toolchain)

        self.assertEqual(list(slice_paths), ["tvos", "tvos-simulator"])
        self.assertFalse(os.path.exists(os.path.join(self.root, "dist")))
        self.assertFalse([args for args in runner.commands("xcrun") if "-create-xcframework" in args])

    @patch("boostkit.build_scripts.pipeline.build_xcframework")
    @patch("boostkit.build_scripts.pipeline.acquire_source")
    def test_build_failure_stops_before_packaging(self, mock_acquire, mock_xcframework):
        config, runner, toolchain = self.make(platforms=["ios"], boost_libs="system")
        runner.fail = lambda args: args[-1] == "install"

        with self.assertRaises(BuildError):
            run_pipeline(config, runner, toolchain)

        mock_xcframework.assert_not_called()

    @patch("boostkit.build_scripts.pipeline.acquire_source")
    def test_clean_mode_only_cleans(self, mock_acquire):
        config, runner, toolchain = self.make(platforms=["ios"], clean_mode="clean")
        output_dir = config.platform_output_dir("ios")
        os.makedirs(output_dir)

        self.assertIsNone(run_pipeline(config, runner, toolchain))

        mock_acquire.assert_not_called()
        self.assertFalse(os.path.exists(output_dir))


class TestCleanup(unittest.TestCase):
    """Test cleanup and purge."""

    def setUp(self):
        self.root = tempfile.mkdtemp()

    def config(self, **kwargs):
        return resolve_configuration(BuildOptions(root_dir=self.root, threads=1, **kwargs))

    def test_cleanup_only_touches_enabled_platforms(self):
        config = self.config(platforms=["ios"])
        for name in ["iphone-build", "iphonesim-build", "macos-build"]:
            os.makedirs(os.path.join(config.boost_src, name))
        os.makedirs(config.platform_output_dir("ios"))
        os.makedirs(config.platform_output_dir("macos"))

        cleanup(config)
        cleanup(config)

        self.assertEqual(os.listdir(config.boost_src), ["macos-build"])
        self.assertFalse(os.path.exists(config.platform_output_dir("ios")))
        self.assertTrue(os.path.exists(config.platform_output_dir("macos")))

    def test_purge(self):
        config = self.config()
        for name in ["boost_1_72_0.tar.bz2", "boost_1_69_0.tar.bz2", "boostkit.toml"]:
            open(os.path.join(self.root, name), "w").close()
        os.makedirs(config.boost_src)
        os.makedirs(config.platform_output_dir("tvos"))

        purge(config)

        self.assertEqual(os.listdir(self.root), ["boostkit.toml"])


if __name__ == "__main__":
    unittest.main(verbosity=2)
