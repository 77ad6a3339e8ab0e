#!/usr/bin/env python3
# -- coding: utf-8 --
#
# pipeline.py
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
Run the whole build: acquire, build, merge, package.

Stages run strictly in order and the first failure stops the pipeline by
raising a BoostKitError subclass.
"""

import glob
import os
import time

from boostkit.build_scripts.build_boost import build_all
from boostkit.build_scripts.build_matrix import (
    VARIANTS,
    library_targets,
    package_slices,
    platform_specs,
)
from boostkit.build_scripts.build_merge import (
    build_universal,
    merge_slices,
    scrunch_platform,
)
from boostkit.build_scripts.build_source import acquire_source
from boostkit.build_scripts.build_utils import done_section, print_section, remove_path
from boostkit.build_scripts.build_xcframework import bundle_path, build_xcframework


def _print_var(name, value):
    print(f"{name:<24}: {value}")


def print_config(config, specs):
    print_section("boostkit config")
    _print_var("BOOST_VERSION", config.boost_version)
    _print_var("BOOST_LIBS", " ".join(config.libraries) or "(none)")
    _print_var("BOOST_SRC", config.boost_src)
    _print_var("BUILD_VARIANT", config.build_variant)
    _print_var("THREADS", config.threads)
    _print_var("UNIVERSAL", config.universal)
    _print_var("FRAMEWORK", config.framework)
    _print_var("HIDDEN_VISIBILITY", config.hidden_visibility)
    for platform_config in config.platforms:
        print()
        name = platform_config.platform.upper()
        _print_var(f"BUILD_{name}", platform_config.enabled)
        if not platform_config.enabled:
            continue
        _print_var(f"{name}_ARCHS", " ".join(platform_config.archs))
        if platform_config.sim_archs:
            _print_var(f"{name}_SIM_ARCHS", " ".join(platform_config.sim_archs))
        _print_var(f"{name}_SDK_VERSION", platform_config.sdk_version)
        _print_var(f"MIN_{name}_VERSION", platform_config.min_version)
        _print_var(f"{name}_OUTPUT_DIR", config.platform_output_dir(platform_config.platform))
    print()
    _print_var("VARIANTS", " ".join(spec.variant for spec in specs))
    print()


def cleanup(config):
    """Remove the b2 build dirs and output dirs of the enabled platforms."""
    print("Cleaning everything")
    for platform in config.enabled_platforms:
        for variant, attributes in VARIANTS.items():
            if attributes[0] == platform:
                remove_path(os.path.join(config.boost_src, f"{variant}-build"))
        remove_path(config.platform_output_dir(platform))
    done_section()


def purge(config):
    print("Purging everything...")
    for tarball in glob.glob(os.path.join(config.root_dir, "boost_*.tar.bz2")):
        remove_path(tarball)
    remove_path(os.path.join(config.root_dir, "build"))
    remove_path(config.src_dir)
    print("Done")


def run_pipeline(config, runner, toolchain):
    """
    Execute the build for a resolved configuration.

    Clean modes:
        purge    - remove tarballs, build/ and src/, then stop
        clean    - remove build output of the enabled platforms, then stop
        no-clean - build on top of earlier output
        default  - clean, then build

    Returns:
        PackageManifest of the XCFramework, a dict of slice paths when
        frameworks are disabled, or None when only cleaning.
    """
    before_time = time.time()
    specs = platform_specs(config)
    print_config(config, specs)

    if config.clean_mode == "purge":
        purge(config)
        return None
    if config.clean_mode == "clean":
        cleanup(config)
        return None
    if config.clean_mode == "default":
        cleanup(config)

    acquire_source(config, runner, toolchain)
    build_all(config, specs, runner, toolchain)

    print_section("scrunch")
    targets = library_targets(config)
    for spec in specs:
        scrunch_platform(config, spec, targets, runner)
    done_section()

    slices = package_slices(specs)
    if config.universal:
        print_section("build_universal")
        build_universal(config, slices, specs, targets, runner)
        done_section()

    slice_paths = merge_slices(config, slices, specs, runner)

    result = slice_paths
    if config.framework:
        result = build_xcframework(config, slice_paths, runner)
        print("==================Output========================")
        print(bundle_path(config))

    print(f"use time: {int(time.time() - before_time)} s")
    print("Completed successfully")
    return result
