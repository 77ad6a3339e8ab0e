#!/usr/bin/env python3
# -- coding: utf-8 --
#
# build_merge.py
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
Decompose the staged per-library archives and recompose them.

For every platform variant and architecture:
1. thin (or copy) each libboost_<name>.a out of the b2 stage directory
2. extract its objects and prefix them with the library name, so objects
   with the same file name in different libraries cannot overwrite
   each other
3. archive all objects into one libboost.a

The per-arch libboost.a files of a package slice are then fused with lipo
into one multi-arch archive per slice.
"""

import glob
import os

from boostkit.build_scripts.build_boost import staged_library_dir
from boostkit.build_scripts.build_matrix import (
    COMBINED,
    SILENT_PLATFORMS,
    ArchiveArtifact,
    ArchiveProbe,
    ObjectFileSet,
    platform_libraries,
)
from boostkit.build_scripts.build_utils import (
    copy_file,
    lipo_libs,
    lipo_thin_lib,
    remove_matching,
    remove_path,
)
from boostkit.build_scripts.errors import MergeError

COMBINED_ARCHIVE_NAME = "libboost.a"
EXTRACT_DIR_NAME = "extract"


def arch_dir(config, spec, arch):
    return os.path.join(config.platform_build_dir(spec.platform), spec.variant, arch)


def universal_dir(config, platform_slice):
    return os.path.join(config.platform_build_dir(platform_slice.platform), "universal", platform_slice.name)


def slice_dir(config, platform_slice):
    return os.path.join(config.platform_build_dir(platform_slice.platform), "slices", platform_slice.name)


def probe_archive(path, library, spec, silent_libs) -> ArchiveProbe:
    """
    Classify a library's staged archive.

    Absent is expected when the library is excluded on the platform, or when
    it is known to build without output for iOS / tvOS.
    """
    if os.path.isfile(path):
        return ArchiveProbe.PRESENT
    if library in spec.excluded_libs:
        return ArchiveProbe.ABSENT_UNSUPPORTED
    if library in silent_libs and spec.platform in SILENT_PLATFORMS:
        return ArchiveProbe.ABSENT_UNSUPPORTED
    return ArchiveProbe.ABSENT_UNEXPECTED


def thin_archive(src, arch, dst, spec, runner):
    if spec.is_multi_arch:
        if not lipo_thin_lib(src, dst, arch, runner):
            raise MergeError(f"Failed to thin {src} to {arch}")
    else:
        copy_file(src, dst)
    return dst


def explode_archive(archive, workdir, library, runner) -> ObjectFileSet:
    """
    Extract the objects of one archive into workdir.

    Stale objects and symbol tables from earlier runs are removed first.
    Objects are extracted into a scratch directory and moved into workdir
    as <library>_<object>, so a member already carrying the prefix is never
    overwritten.

    Raises:
        MergeError: ar failed
    """
    print(f"Unpacking {workdir}")
    extract_dir = os.path.join(workdir, EXTRACT_DIR_NAME)
    remove_path(extract_dir)
    os.makedirs(extract_dir)
    remove_matching(workdir, "*.o", "*.SYMDEF*")

    result = runner.run(["ar", "-x", os.path.abspath(archive)], cwd=extract_dir)
    if not result.ok:
        raise MergeError(f"Failed to extract {archive}: {result.describe()}\n{result.output}")

    objects = []
    for obj in sorted(glob.glob(os.path.join(extract_dir, "*.o"))):
        renamed = os.path.join(workdir, f"{library}_{os.path.basename(obj)}")
        os.rename(obj, renamed)
        objects.append(renamed)
    remove_path(extract_dir)
    return ObjectFileSet(library, tuple(objects))


def combine_objects(directory, object_sets, runner):
    """
    Archive the objects of every library into <directory>/libboost.a.

    Libraries are added in the given order. Returns the archive path, or
    None when there were no objects at all.
    """
    combined = os.path.join(directory, COMBINED_ARCHIVE_NAME)
    remove_path(combined)
    added = False
    for object_set in object_sets:
        if not object_set.objects:
            continue
        print(f"Archiving {object_set.library}")
        relative = [os.path.relpath(obj, directory) for obj in object_set.objects]
        result = runner.run(["ar", "crus", COMBINED_ARCHIVE_NAME, *relative], cwd=directory)
        if not result.ok:
            raise MergeError(
                f"Failed to archive {object_set.library} into {combined}: {result.describe()}\n{result.output}"
            )
        added = True
    return combined if added else None


def scrunch_platform(config, spec, targets, runner):
    """
    Build one libboost.a per architecture of a platform variant.

    Args:
        config: BuildConfiguration
        spec: PlatformSpec of the variant
        targets: LibraryTarget list of the whole build
        runner: CommandRunner

    Returns:
        list: ArchiveArtifact of each combined archive, in arch order
    """
    libraries = platform_libraries(spec.platform, targets)
    stage_dir = staged_library_dir(config, spec)

    print(f"Splitting all existing fat binaries of {spec.variant}...")
    present = []
    for target in libraries:
        staged = os.path.join(stage_dir, target.archive_name)
        probe = probe_archive(staged, target.name, spec, config.silent_libs)
        if probe is ArchiveProbe.ABSENT_UNSUPPORTED:
            print(f"No {target.archive_name} for {spec.variant}, skipping")
            continue
        if probe is ArchiveProbe.ABSENT_UNEXPECTED:
            raise MergeError(f"{target.archive_name} was not produced for {spec.variant}: {staged}")
        for arch in spec.archs:
            thin_archive(staged, arch, os.path.join(arch_dir(config, spec, arch), target.archive_name), spec, runner)
        present.append(target)

    artifacts = []
    for arch in spec.archs:
        directory = arch_dir(config, spec, arch)
        print(f"Decomposing {spec.variant}-{arch}")
        object_sets = [
            explode_archive(
                os.path.join(directory, target.archive_name),
                os.path.join(directory, "obj", target.output_name),
                target.output_name,
                runner,
            )
            for target in present
        ]
        combined = combine_objects(directory, object_sets, runner)
        if combined:
            artifacts.append(ArchiveArtifact(spec.variant, arch, COMBINED, combined))
    return artifacts


def _slice_coordinates(platform_slice, specs):
    for spec in specs:
        if spec.variant in platform_slice.variants:
            for arch in spec.archs:
                yield spec, arch


def build_universal(config, slices, specs, targets, runner):
    """
    Create one multi-arch archive per library and slice.

    The slice directory is emptied first. Inputs that do not exist (skipped
    libraries) are ignored and a single input is copied instead of fused.

    Returns:
        list: paths of the created archives
    """
    created = []
    for platform_slice in slices:
        out_dir = universal_dir(config, platform_slice)
        remove_path(out_dir)
        for target in platform_libraries(platform_slice.platform, targets):
            inputs = [
                os.path.join(arch_dir(config, spec, arch), target.archive_name)
                for spec, arch in _slice_coordinates(platform_slice, specs)
            ]
            inputs = [path for path in inputs if os.path.isfile(path)]
            if not inputs:
                continue
            dst = os.path.join(out_dir, target.archive_name)
            if len(inputs) == 1:
                copy_file(inputs[0], dst)
            elif not lipo_libs(inputs, dst, runner):
                raise MergeError(f"Lipo {target.name} failed for {platform_slice.name}")
            created.append(dst)
    return created


def merge_slices(config, slices, specs, runner):
    """
    Fuse the combined per-arch archives of each slice into one archive.

    Returns:
        dict: slice name -> slice archive path, in slice order. Slices
            without any combined archive are left out.
    """
    slice_paths = {}
    for platform_slice in slices:
        inputs = [
            os.path.join(arch_dir(config, spec, arch), COMBINED_ARCHIVE_NAME)
            for spec, arch in _slice_coordinates(platform_slice, specs)
        ]
        inputs = [path for path in inputs if os.path.isfile(path)]
        if not inputs:
            print(f"No libraries for {platform_slice.name}, skipping")
            continue
        dst = os.path.join(slice_dir(config, platform_slice), COMBINED_ARCHIVE_NAME)
        if len(inputs) == 1:
            copy_file(inputs[0], dst)
        elif not lipo_libs(inputs, dst, runner):
            raise MergeError(f"Failed to create the {platform_slice.name} slice")
        slice_paths[platform_slice.name] = dst
    return slice_paths
