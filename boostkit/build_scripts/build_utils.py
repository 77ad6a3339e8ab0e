#!/usr/bin/env python3
# -- coding: utf-8 --
#
# build_utils.py
# boostkit
#
# Copyright 2024 boostkit Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

"""
Build utility functions shared by the pipeline stages.

This module provides:
- Loading the optional boostkit.toml configuration file
- Probing the installed Xcode (SDK versions and paths, compiler)
- Static library helpers (lipo, ar)
- File operations (remove, copy, permission fixes)
- Console section banners
"""

import glob
import os
import shutil
import stat
import sys

if sys.version_info >= (3, 11, 0, "alpha", 7):
    import tomllib
else:
    import tomli as tomllib

from boostkit.build_scripts.errors import ConfigurationError, InvalidConfigFileError

CONFIG_FILE_NAME = "boostkit.toml"

XCODE_TOOLCHAIN_CLANG = "Toolchains/XcodeDefault.xctoolchain/usr/bin/clang++"


def print_section(title):
    print(f"==================={title}===================")


def done_section():
    print()
    print("Done")
    print("=================================================================")
    print()


def load_boostkit_config(config_path=None, project_dir=None):
    """
    Load configuration overrides from boostkit.toml.

    Args:
        config_path: Explicit path given with --config. Must exist.
        project_dir: Directory searched for boostkit.toml when no explicit
            path is given (default: current working directory)

    Returns:
        dict: Parsed TOML document, or an empty dict when no file is present.

    Raises:
        InvalidConfigFileError: The file is missing (explicit path only),
            unreadable or not valid TOML.
    """
    if config_path is None:
        config_file = os.path.join(project_dir or os.getcwd(), CONFIG_FILE_NAME)
        if not os.path.isfile(config_file):
            return {}
    else:
        config_file = config_path
        if not os.path.isfile(config_file):
            raise InvalidConfigFileError(f"Config file not found: {config_file}")

    try:
        with open(config_file, "rb") as f:
            toml_data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise InvalidConfigFileError(f"Error reading {config_file}: {e}") from e

    print(f"Using configuration from {config_file}")
    return toml_data


def split_words(value):
    """Accept a space/comma separated string or a TOML list and return a list of names."""
    if value is None:
        return []
    if isinstance(value, str):
        return [x for x in value.replace(",", " ").split() if x]
    return [str(x) for x in value]


class XcodeToolchain:
    """
    Query the active Xcode installation through xcrun / xcodebuild.

    Results are cached per instance. Every query goes through the command
    runner so a fake runner can stand in for Xcode in tests.
    """

    def __init__(self, runner):
        self.runner = runner
        self._cache = {}

    def _query(self, key, args):
        if key not in self._cache:
            value = self.runner.output(args)
            if value is None:
                raise ConfigurationError(
                    f"Could not run '{' '.join(args)}'. Is Xcode installed and selected?"
                )
            self._cache[key] = value
        return self._cache[key]

    def sdk_version(self, sdk):
        """SDK version truncated to major.minor (e.g. 17.2)."""
        full_version = self._query(("sdk-version", sdk), ["xcrun", "--sdk", sdk, "--show-sdk-version"])
        parts = full_version.split(".")
        return ".".join(parts[:2])

    def sdk_path(self, sdk):
        return self._query(("sdk-path", sdk), ["xcrun", "--sdk", sdk, "--show-sdk-path"])

    def xcode_version(self):
        # first line looks like "Xcode 15.2"
        output = self._query("xcode-version", ["xcrun", "xcodebuild", "-version"])
        first_line = output.splitlines()[0] if output else ""
        return "".join(c for c in first_line if c.isdigit() or c == ".")

    def xcode_root(self):
        return self._query("xcode-root", ["xcode-select", "-print-path"])

    def compiler(self):
        return os.path.join(self.xcode_root(), XCODE_TOOLCHAIN_CLANG)


def lipo_libs(src_libs, dst_lib, runner):
    """
    Create a universal (fat) binary from multiple architecture-specific libraries.

    Args:
        src_libs: List of architecture-specific library file paths
        dst_lib: Destination path for the universal binary library
        runner: CommandRunner used to invoke lipo

    Returns:
        bool: True if creation succeeded, False otherwise
    """
    os.makedirs(os.path.dirname(dst_lib), exist_ok=True)
    result = runner.run(["lipo", "-create", *src_libs, "-output", dst_lib])
    if not result.ok:
        print(f"!!!!!!!!!!! lipo_libs {dst_lib} failed, {result.describe()} !!!!!!!!!!!!!!!")
        print(result.output)
        return False
    return True


def lipo_thin_lib(src_lib, dst_lib, arch, runner):
    """
    Extract a single architecture from a universal binary.

    Args:
        src_lib: Source universal binary library path
        dst_lib: Destination library path
        arch: Architecture name to extract (e.g. 'arm64')
        runner: CommandRunner used to invoke lipo

    Returns:
        bool: True if extraction succeeded, False otherwise
    """
    os.makedirs(os.path.dirname(dst_lib), exist_ok=True)
    result = runner.run(["lipo", src_lib, "-thin", arch, "-output", dst_lib])
    if not result.ok:
        print(f"!!!!!!!!!!! lipo_thin_lib {dst_lib} failed, {result.describe()} !!!!!!!!!!!!!!!")
        print(result.output)
        return False
    return True


def remove_path(path):
    """Remove a file, symlink or directory tree. Missing paths are ignored."""
    if os.path.islink(path) or os.path.isfile(path):
        os.remove(path)
    elif os.path.isdir(path):
        shutil.rmtree(path)


def remove_matching(directory, *patterns):
    for pattern in patterns:
        for f in glob.glob(os.path.join(directory, pattern)):
            remove_path(f)


def make_writable(path):
    mode = os.stat(path).st_mode
    os.chmod(path, mode | stat.S_IWUSR | stat.S_IRUSR)


def copy_file(src, dst):
    """
    Copy a file, creating destination directories as needed.

    An existing read-only destination is made writable first, and the copy
    is left writable so later runs can overwrite it again.
    """
    os.makedirs(os.path.dirname(dst), exist_ok=True)
    if os.path.exists(dst):
        make_writable(dst)
    shutil.copyfile(src, dst)
    make_writable(dst)
