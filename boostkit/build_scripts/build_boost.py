#!/usr/bin/env python3
# -- coding: utf-8 --
#
# build_boost.py
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
Drive bootstrap.sh and b2 for each platform.

The darwin toolset gets one entry per platform variant in user-config.jam,
so a single source tree can be built for every device and simulator SDK.
Platforms are built strictly one after another.
"""

import os

from boostkit.build_scripts.build_matrix import (
    catalog_for_version,
    library_targets,
    platform_libraries,
)
from boostkit.build_scripts.build_utils import done_section, print_section
from boostkit.build_scripts.errors import BuildError

USER_CONFIG_PATH = os.path.join("tools", "build", "src", "user-config.jam")


def _compile_flags(config, spec):
    parts = [config.other_flags, *spec.arch_flags, *spec.extra_flags]
    if spec.sdk_path:
        parts.append(f"-isysroot {spec.sdk_path}")
    return " ".join(p for p in parts if p)


def render_user_config(config, specs, compiler, compiler_version):
    """
    Render the user-config.jam text for the given platform variants.

    Args:
        config: BuildConfiguration
        specs: PlatformSpec list, one toolset entry each
        compiler: Path of clang++
        compiler_version: Version label used in "darwin : <version>~<variant>"
    """
    blocks = []
    for spec in specs:
        blocks.append(
            f"using darwin : {compiler_version}~{spec.variant}\n"
            f": {compiler}\n"
            f": <architecture>{spec.architecture}\n"
            f"  <target-os>{spec.target_os}\n"
            f'  <cxxflags>"{config.cxx_flags}"\n'
            f'  <linkflags>"{config.ld_flags}"\n'
            f'  <compileflags>"{_compile_flags(config, spec)}"\n'
            f"  <threading>multi\n"
            f";\n"
        )
    if "mpi" in config.libraries:
        # the trailing space is required by the jam parser
        blocks.append("using mpi ;\n")
    return "".join(blocks)


def write_user_config(config, specs, compiler, compiler_version):
    path = os.path.join(config.boost_src, USER_CONFIG_PATH)
    print(f"Updating boost into {config.boost_src}...")
    os.makedirs(os.path.dirname(path), exist_ok=True)
    # overwritten every run, never appended to
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_user_config(config, specs, compiler, compiler_version))
    return path


def build_log_path(config, platform):
    return os.path.join(config.platform_output_dir(platform), f"{platform}-build.log")


def bootstrap_boost(config, platform, libraries, runner):
    """
    Run bootstrap.sh for one platform.

    Args:
        libraries: LibraryTarget list already filtered for the platform
    """
    if libraries:
        names = ",".join(target.name for target in libraries)
        print(f"Bootstrapping for {platform} (with libs {names})")
        args = ["./bootstrap.sh", f"--with-libraries={names}"]
    else:
        everything = ",".join(catalog_for_version(config.boost_version))
        print(f"Bootstrapping for {platform} (without libs)")
        args = ["./bootstrap.sh", f"--without-libraries={everything}"]

    log_path = build_log_path(config, platform)
    result = runner.run(args, cwd=config.boost_src, log_path=log_path)
    if not result.ok:
        raise BuildError(platform, "bootstrapping", log_path, result.describe())


def b2_command(config, spec, action, toolset_version):
    build_dir = spec.build_dir_name
    return [
        "./b2",
        f"-j{config.threads}",
        f"--build-dir={build_dir}",
        f"--stagedir={build_dir}/stage",
        f"--prefix={os.path.join(config.platform_output_dir(spec.platform), 'prefix')}",
        f"toolset={spec.toolset(toolset_version)}",
        "link=static",
        f"variant={config.build_variant}",
        action,
    ]


def staged_library_dir(config, spec):
    return os.path.join(config.boost_src, spec.build_dir_name, "stage", "lib")


def build_platform(config, platform, specs, toolset_version, runner):
    """
    Stage every variant of a platform and install its device variants.

    Installing provides the headers under <output>/prefix/include. Output of
    every b2 run is appended to the platform build log.

    Raises:
        BuildError: b2 exited with a nonzero status
    """
    os.makedirs(config.platform_output_dir(platform), exist_ok=True)
    log_path = build_log_path(config, platform)
    for spec in specs:
        if spec.platform != platform:
            continue
        print(f"Building Boost for {spec.variant}")
        actions = ["stage", "install"] if spec.is_device else ["stage"]
        for action in actions:
            result = runner.run(
                b2_command(config, spec, action, toolset_version),
                cwd=config.boost_src,
                log_path=log_path,
            )
            if not result.ok:
                step = "staging" if action == "stage" else "installing"
                raise BuildError(spec.variant, step, log_path, result.describe())
        done_section()


def build_all(config, specs, runner, toolchain):
    """Write user-config.jam, then bootstrap and build every enabled platform in order."""
    toolset_version = toolchain.xcode_version()
    print_section("build_boost")
    write_user_config(config, specs, toolchain.compiler(), toolset_version)
    done_section()

    targets = library_targets(config)
    for platform in config.enabled_platforms:
        print_section(f"build_{platform}")
        os.makedirs(config.platform_output_dir(platform), exist_ok=True)
        bootstrap_boost(config, platform, platform_libraries(platform, targets), runner)
        build_platform(config, platform, specs, toolset_version, runner)
