#!/usr/bin/env python3
"""
Tests for the per-platform build driver.

Run with: python3 -m pytest test_build_boost.py
"""

import os
import tempfile
import unittest

from boostkit.build_scripts.build_boost import (
    USER_CONFIG_PATH,
    b2_command,
    bootstrap_boost,
    build_all,
    build_log_path,
    build_platform,
    render_user_config,
    write_user_config,
)
from boostkit.build_scripts.build_matrix import (
    BuildOptions,
    library_targets,
    platform_libraries,
    platform_specs,
    resolve_configuration,
)
from boostkit.build_scripts.build_utils import XcodeToolchain
from boostkit.build_scripts.errors import BuildError
from boostkit.utils.cmd.test_fakes import FakeRunner

XCODE_OUTPUTS = {
    "xcrun xcodebuild -version": "Xcode 15.2\nBuild version 15C500b",
    "xcode-select -print-path": "/Applications/Xcode.app/Contents/Developer",
    "xcrun --sdk iphoneos --show-sdk-path": "/sdk/iPhoneOS.sdk",
    "xcrun --sdk iphonesimulator --show-sdk-path": "/sdk/iPhoneSimulator.sdk",
    "xcrun --sdk macosx --show-sdk-path": "/sdk/MacOSX.sdk",
}


def make_config(root_dir, toolchain=None, **kwargs):
    kwargs.setdefault("threads", 4)
    return resolve_configuration(BuildOptions(root_dir=root_dir, **kwargs), toolchain)


class TestUserConfig(unittest.TestCase):
    """Test user-config.jam rendering."""

    def setUp(self):
        self.root = tempfile.mkdtemp()
        self.toolchain = XcodeToolchain(FakeRunner(outputs=XCODE_OUTPUTS))

    def test_one_block_per_variant(self):
        config = make_config(self.root, self.toolchain, platforms=["ios"], boost_libs="system")
        text = render_user_config(config, platform_specs(config), "/usr/bin/clang++", "15.2")

        self.assertEqual(text.count("using darwin :"), 2)
        self.assertIn("using darwin : 15.2~iphone\n: /usr/bin/clang++\n: <architecture>arm\n", text)
        self.assertIn("using darwin : 15.2~iphonesim\n", text)
        self.assertIn("<target-os>iphone", text)
        self.assertIn("-arch arm64 ", text)
        self.assertIn("-isysroot /sdk/iPhoneOS.sdk", text)
        self.assertIn("-isysroot /sdk/iPhoneSimulator.sdk", text)
        self.assertIn("<threading>multi", text)
        self.assertNotIn("using mpi", text)

    def test_macos_has_no_arm_workaround(self):
        config = make_config(self.root, self.toolchain, platforms=["macos"], boost_libs="system")
        text = render_user_config(config, platform_specs(config), "clang++", "15.2")

        self.assertIn("<target-os>darwin", text)
        self.assertIn("-mmacosx-version-min=10.12", text)
        self.assertNotIn("BOOST_AC_USE_PTHREADS", text)

    def test_mpi(self):
        config = make_config(self.root, platforms=["macos"], boost_libs="system mpi")
        text = render_user_config(config, platform_specs(config), "clang++", "15.2")
        self.assertTrue(text.endswith("using mpi ;\n"))

    def test_write_overwrites(self):
        """Test that the file is replaced, never appended to."""
        config = make_config(self.root, platforms=["tvos"])
        specs = platform_specs(config)

        write_user_config(config, specs, "clang++", "15.2")
        path = write_user_config(config, specs, "clang++", "15.2")

        self.assertEqual(path, os.path.join(config.boost_src, USER_CONFIG_PATH))
        with open(path) as f:
            self.assertEqual(f.read().count("using darwin :"), 2)


class TestBootstrapAndB2(unittest.TestCase):
    """Test bootstrap.sh and b2 invocations."""

    def setUp(self):
        self.root = tempfile.mkdtemp()

    def test_bootstrap_with_platform_libraries(self):
        config = make_config(self.root, boost_libs="system test math")
        runner = FakeRunner()

        bootstrap_boost(config, "tvos", platform_libraries("tvos", library_targets(config)), runner)

        args, cwd = runner.calls[0]
        self.assertEqual(args, ["./bootstrap.sh", "--with-libraries=system"])
        self.assertEqual(cwd, config.boost_src)

    def test_bootstrap_without_libraries(self):
        config = make_config(self.root, boost_libs="none")
        runner = FakeRunner()

        bootstrap_boost(config, "ios", [], runner)

        args = runner.commands()[0]
        self.assertTrue(args[1].startswith("--without-libraries=atomic,chrono,"))
        self.assertIn("signals2", args[1])

    def test_bootstrap_failure(self):
        config = make_config(self.root)
        runner = FakeRunner(fail=lambda args: args[0] == "./bootstrap.sh")

        with self.assertRaises(BuildError) as context:
            bootstrap_boost(config, "ios", library_targets(config), runner)
        self.assertEqual(context.exception.log_path, build_log_path(config, "ios"))

    def test_b2_command(self):
        config = make_config(self.root, platforms=["ios"], debug=True)
        spec = platform_specs(config)[0]

        self.assertEqual(
            b2_command(config, spec, "stage", "15.2"),
            [
                "./b2",
                "-j4",
                "--build-dir=iphone-build",
                "--stagedir=iphone-build/stage",
                f"--prefix={os.path.join(config.platform_output_dir('ios'), 'prefix')}",
                "toolset=darwin-15.2~iphone",
                "link=static",
                "variant=debug",
                "stage",
            ],
        )

    def test_device_variants_are_installed(self):
        config = make_config(self.root, platforms=["ios"])
        runner = FakeRunner()

        build_platform(config, "ios", platform_specs(config), "15.2", runner)

        steps = [(args[5], args[-1]) for args in runner.commands("./b2")]
        self.assertEqual(steps, [
            ("toolset=darwin-15.2~iphone", "stage"),
            ("toolset=darwin-15.2~iphone", "install"),
            ("toolset=darwin-15.2~iphonesim", "stage"),
        ])
        self.assertTrue(os.path.isfile(build_log_path(config, "ios")))

    def test_install_failure_is_fatal(self):
        config = make_config(self.root, platforms=["ios"])
        runner = FakeRunner(fail=lambda args: args[-1] == "install")

        with self.assertRaises(BuildError) as context:
            build_platform(config, "ios", platform_specs(config), "15.2", runner)

        self.assertIn("Error installing iphone", str(context.exception))
        self.assertEqual(len(runner.commands("./b2")), 2)


class TestBuildAll(unittest.TestCase):
    """Test the sequential build of every enabled platform."""

    def test_platforms_in_order(self):
        root = tempfile.mkdtemp()
        runner = FakeRunner(outputs=XCODE_OUTPUTS)
        toolchain = XcodeToolchain(runner)
        config = make_config(root, toolchain, platforms=["macos", "ios"], boost_libs="system math")
        specs = platform_specs(config)

        build_all(config, specs, runner, toolchain)

        bootstraps = [args[1] for args in runner.commands("./bootstrap.sh")]
        self.assertEqual(bootstraps, ["--with-libraries=system", "--with-libraries=system,math"])
        toolsets = [args[5] for args in runner.commands("./b2")]
        self.assertEqual(toolsets, [
            "toolset=darwin-15.2~iphone",
            "toolset=darwin-15.2~iphone",
            "toolset=darwin-15.2~iphonesim",
            "toolset=darwin-15.2~macos",
            "toolset=darwin-15.2~macos",
        ])
        with open(os.path.join(config.boost_src, USER_CONFIG_PATH)) as f:
            text = f.read()
        self.assertIn(
            ": /Applications/Xcode.app/Contents/Developer/Toolchains/XcodeDefault.xctoolchain/usr/bin/clang++\n",
            text,
        )


if __name__ == "__main__":
    unittest.main(verbosity=2)
