#!/usr/bin/env python3
# -- coding: utf-8 --
#
# build_source.py
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
Fetch, unpack and prepare the boost source tree.

Every step is skipped when its result is already on disk, so re-running a
build reuses the tarball and the unpacked sources.
"""

import os
import tarfile

import requests

from boostkit.build_scripts.build_matrix import Version, parse_version
from boostkit.build_scripts.build_utils import (
    copy_file,
    done_section,
    print_section,
    remove_path,
)
from boostkit.build_scripts.errors import (
    DownloadError,
    MissingArchiveError,
    PatchError,
)

# release hosting moved off sourceforge starting with 1.63.0
ARCHIVES_URL_MIN_VERSION = Version((1, 63, 0))

# boost.build in <= 1.72.0 does not understand the Xcode >= 11.4 toolchain
XCODE_PATCH_NAME = "xcode-11.4.patch"
XCODE_PATCH_MAX_BOOST = Version((1, 72, 0))
XCODE_PATCH_MIN_XCODE = Version((11, 4))

DOWNLOAD_TIMEOUT_SECOND = 60
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

# present in the simulator SDK but missing from the device SDK
MISSING_HEADERS = ("crt_externs.h", "bzlib.h")

ALREADY_APPLIED_MARKER = "previously applied"


def download_url(version):
    if version >= ARCHIVES_URL_MIN_VERSION:
        return (
            f"https://archives.boost.io/release/{version}/source/"
            f"boost_{version.underscored}.tar.bz2"
        )
    return (
        f"https://sourceforge.net/projects/boost/files/boost/{version}/"
        f"boost_{version.underscored}.tar.bz2/download"
    )


def download_boost(config):
    """
    Download the boost release tarball into the working directory.

    A non-empty tarball already on disk is reused. A failed download leaves
    no partial file behind.

    Raises:
        DownloadError: HTTP error status or network failure
    """
    tarball = config.tarball_path
    if os.path.isfile(tarball) and os.path.getsize(tarball) > 0:
        print(f"Using existing {tarball}")
        return tarball

    url = download_url(config.boost_version)
    print(f"Downloading boost {config.boost_version} from {url}")
    try:
        with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT_SECOND) as response:
            response.raise_for_status()
            with open(tarball, "wb") as f:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
    except requests.RequestException as e:
        remove_path(tarball)
        raise DownloadError(f"Failed to download {url}: {e}") from e
    except OSError as e:
        remove_path(tarball)
        raise DownloadError(f"Failed to write {tarball}: {e}") from e

    if os.path.getsize(tarball) == 0:
        remove_path(tarball)
        raise DownloadError(f"Downloaded an empty file from {url}")
    return tarball


def unpack_boost(config):
    """
    Unpack the tarball into src/.

    An existing source directory is reused as is, even if a previous unpack
    was interrupted. Purge to start over.
    """
    if os.path.isdir(config.boost_src):
        print(f"Using existing sources in {config.boost_src}")
        return config.boost_src

    if not os.path.isfile(config.tarball_path):
        raise MissingArchiveError(f"Source archive {config.tarball_path} not found")

    print(f"Unpacking boost into {config.src_dir}")
    os.makedirs(config.src_dir, exist_ok=True)
    try:
        with tarfile.open(config.tarball_path, "r:bz2") as tar:
            # extraction filters arrived in 3.12 and in security releases of older pythons
            if hasattr(tarfile, "data_filter"):
                tar.extractall(config.src_dir, filter="data")
            else:
                tar.extractall(config.src_dir)
    except (tarfile.TarError, EOFError, OSError) as e:
        raise MissingArchiveError(f"Cannot unpack {config.tarball_path}: {e}") from e

    if not os.path.isdir(config.boost_src):
        raise MissingArchiveError(
            f"{config.tarball_path} did not contain boost_{config.boost_version.underscored}/"
        )
    return config.boost_src


def needs_xcode_patch(boost_version, xcode_version):
    return boost_version <= XCODE_PATCH_MAX_BOOST and xcode_version >= XCODE_PATCH_MIN_XCODE


def patch_boost(config, xcode_version, runner):
    """
    Apply the Xcode 11.4 toolchain patch to boost.build when it is needed.

    Args:
        config: BuildConfiguration
        xcode_version: Installed Xcode version string (e.g. "11.4.1")
        runner: CommandRunner used to invoke patch

    Returns:
        bool: True if the patch was applied (or had been before), False when
            it is not needed for this boost / Xcode pair

    Raises:
        PatchError: Patch file missing or patch failed to apply
    """
    xcode = parse_version(xcode_version, "Xcode version")
    if not needs_xcode_patch(config.boost_version, xcode):
        return False

    patch_file = os.path.join(config.root_dir, "patches", XCODE_PATCH_NAME)
    if not os.path.isfile(patch_file):
        raise PatchError(
            f"boost {config.boost_version} needs {patch_file} with Xcode {xcode_version}, but it is missing"
        )

    print(f"Patching boost in {config.boost_src}")
    tools_build = os.path.join(config.boost_src, "tools", "build")
    result = runner.run(
        ["patch", "--forward", "-p1", "-d", tools_build, "-i", patch_file],
        cwd=config.boost_src,
    )
    if result.ok:
        return True
    if ALREADY_APPLIED_MARKER in result.output:
        print("Patch already applied")
        return True
    raise PatchError(f"Failed to apply {XCODE_PATCH_NAME}: {result.describe()}\n{result.output}")


def _simulator_include_dirs(config, xcode_root):
    sdks_dir = os.path.join(
        xcode_root, "Platforms", "iPhoneSimulator.platform", "Developer", "SDKs"
    )
    ios = config.platform("ios")
    candidates = []
    if ios.sim_sdk_path:
        candidates.append(ios.sim_sdk_path)
    if ios.sdk_version:
        candidates.append(os.path.join(sdks_dir, f"iPhoneSimulator{ios.sdk_version}.sdk"))
    candidates.append(os.path.join(sdks_dir, "iPhoneSimulator.sdk"))
    return [os.path.join(c, "usr", "include") for c in candidates]


def invent_missing_headers(config, xcode_root):
    """Copy headers the device SDK lacks from the simulator SDK into the source root."""
    copied = []
    include_dirs = _simulator_include_dirs(config, xcode_root)
    for header in MISSING_HEADERS:
        source = next(
            (os.path.join(d, header) for d in include_dirs if os.path.isfile(os.path.join(d, header))),
            None,
        )
        if source is None:
            print(f"WARNING: {header} not found in the iPhoneSimulator SDK, skipping")
            continue
        copy_file(source, os.path.join(config.boost_src, header))
        copied.append(header)
    return copied


def acquire_source(config, runner, toolchain):
    print_section("acquire_source")
    download_boost(config)
    unpack_boost(config)
    invent_missing_headers(config, toolchain.xcode_root())
    patch_boost(config, toolchain.xcode_version(), runner)
    done_section()
