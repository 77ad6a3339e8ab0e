#!/usr/bin/env python3
# -- coding: utf-8 --
#
# build_xcframework.py
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
Package the per-slice libboost.a archives into boost.xcframework.

xcodebuild copies the headers into every slice. The bundle is rewritten
afterwards so that all slices share one Headers directory at the bundle
root.
"""

import os
import plistlib
import shutil

from boostkit.build_scripts.build_matrix import PackageManifest
from boostkit.build_scripts.build_utils import done_section, print_section, remove_path
from boostkit.build_scripts.errors import AssemblyError

FRAMEWORK_NAME = "boost"
SHARED_HEADERS_PATH = "../Headers"


def bundle_path(config):
    return os.path.join(config.dist_dir, f"{FRAMEWORK_NAME}.xcframework")


def collect_slices(config, slice_paths) -> PackageManifest:
    """
    Gather the slice archives and a headers directory.

    Headers come from the last enabled platform that installed any.

    Raises:
        AssemblyError: no slice archive or no installed headers
    """
    if not slice_paths:
        raise AssemblyError("No libraries were built, nothing to package (use --no-framework)")

    headers_path = ""
    for platform in config.enabled_platforms:
        include_dir = os.path.join(config.platform_output_dir(platform), "prefix", "include")
        if os.path.isdir(include_dir):
            headers_path = include_dir
    if not headers_path:
        raise AssemblyError("No installed headers found under any <platform>/prefix/include")

    return PackageManifest(
        slices=tuple(slice_paths.items()),
        headers_path=headers_path,
        version=str(config.boost_version),
    )


def create_xcframework(manifest, bundle, runner):
    remove_path(bundle)
    os.makedirs(os.path.dirname(bundle), exist_ok=True)

    args = ["xcrun", "xcodebuild", "-create-xcframework"]
    for library in manifest.library_paths:
        args += ["-library", library]
    args += ["-headers", manifest.headers_path, "-output", bundle]

    result = runner.run(args)
    if not result.ok:
        raise AssemblyError(f"xcodebuild -create-xcframework failed: {result.describe()}\n{result.output}")
    return bundle


def _find_headers_dirs(bundle):
    found = []
    for root, dirs, _ in os.walk(bundle):
        dirs.sort()
        if root == bundle:
            continue
        if "Headers" in dirs:
            found.append(os.path.join(root, "Headers"))
            dirs.remove("Headers")
    return found


def relocate_headers(bundle, slice_count):
    """
    Move the slice Headers directory to the bundle root.

    The remaining per-slice copies are removed and every
    AvailableLibraries[i].HeadersPath in Info.plist points at ../Headers.

    Raises:
        AssemblyError: no Headers directory, or Info.plist does not list
            exactly slice_count libraries
    """
    shared = os.path.join(bundle, "Headers")
    headers_dirs = _find_headers_dirs(bundle)
    if not headers_dirs:
        raise AssemblyError(f"No Headers directory in {bundle}")

    remove_path(shared)
    shutil.move(headers_dirs[0], shared)
    for duplicate in headers_dirs[1:]:
        remove_path(duplicate)

    info_plist = os.path.join(bundle, "Info.plist")
    try:
        with open(info_plist, "rb") as f:
            info = plistlib.load(f)
    except (OSError, plistlib.InvalidFileException) as e:
        raise AssemblyError(f"Cannot read {info_plist}: {e}") from e

    libraries = info.get("AvailableLibraries", [])
    if len(libraries) != slice_count:
        raise AssemblyError(
            f"{info_plist} lists {len(libraries)} libraries, expected {slice_count}"
        )
    for library in libraries:
        library["HeadersPath"] = SHARED_HEADERS_PATH

    with open(info_plist, "wb") as f:
        plistlib.dump(info, f)
    return shared


def write_version_marker(bundle, version):
    path = os.path.join(bundle, "VERSION")
    with open(path, "w", encoding="utf-8") as f:
        f.write(f"{version}\n")
    return path


def build_xcframework(config, slice_paths, runner) -> PackageManifest:
    bundle = bundle_path(config)
    print_section("build_xcframework")
    print(f"Framework: Building {bundle}...")
    manifest = collect_slices(config, slice_paths)
    create_xcframework(manifest, bundle, runner)
    relocate_headers(bundle, len(manifest.slices))
    write_version_marker(bundle, manifest.version)
    done_section()
    return manifest
