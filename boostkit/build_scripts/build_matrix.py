#!/usr/bin/env python3
# -- coding: utf-8 --
#
# build_matrix.py
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
Target matrix resolution.

Turns command line options and the optional boostkit.toml into one immutable
BuildConfiguration, and derives from it the platform variants to build
(PlatformSpec), the libraries to build (LibraryTarget) and the slices of the
final XCFramework (PackageSlice).

Supported platforms and their variants:
- ios:   iphone (device), iphonesim (simulator)
- tvos:  appletv (device), appletvsim (simulator)
- macos: macos (Intel pass), macosarm (Apple silicon pass)
"""

import functools
import multiprocessing
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from boostkit.build_scripts.build_utils import split_words
from boostkit.build_scripts.errors import (
    ConfigurationError,
    InvalidConfigFileError,
    MalformedVersionError,
)

PLATFORMS = ("ios", "tvos", "macos")

DEFAULT_BOOST_VERSION = "1.72.0"

DEFAULT_BOOST_LIBS = (
    "atomic chrono date_time exception filesystem program_options random system thread test"
)

ALL_BOOST_LIBS_1_68 = (
    "atomic", "chrono", "container", "context", "coroutine", "coroutine2",
    "date_time", "exception", "fiber", "filesystem", "graph", "graph_parallel",
    "iostreams", "locale", "log", "math", "metaparse", "mpi", "program_options",
    "python", "random", "regex", "serialization", "signals", "system", "test",
    "thread", "timer", "type_erasure", "wave",
)

# boost 1.69 removed signals in favour of signals2
ALL_BOOST_LIBS_1_69 = tuple(
    "signals2" if name == "signals" else name for name in ALL_BOOST_LIBS_1_68
)

# "all" resolves to the catalog with the highest threshold <= boost version
LIBRARY_CATALOGS = {
    "0": ALL_BOOST_LIBS_1_68,
    "1.69.0": ALL_BOOST_LIBS_1_69,
}

# Libraries that do not build for a platform. They are dropped for that
# platform only, never reported as an error.
PLATFORM_EXCLUDED_LIBS = {
    "ios": ("context", "coroutine", "coroutine2", "math", "mpi"),
    "tvos": (
        "container", "context", "coroutine", "coroutine2",
        "math", "metaparse", "mpi", "test",
    ),
    "macos": (),
}

# Libraries that bootstrap and build for iOS / tvOS without emitting a binary
SILENT_LIBS = ("fiber", "graph_parallel")
SILENT_PLATFORMS = ("ios", "tvos")

# boost installs the "test" library as libboost_unit_test_framework.a
LIBRARY_OUTPUT_NAMES = {"test": "unit_test_framework"}

DEFAULT_MIN_VERSIONS = {"ios": "11.0", "tvos": "11.0", "macos": "10.12"}

DEFAULT_ARCHS = {
    "ios": ("armv7", "arm64"),
    "tvos": ("arm64",),
    "macos": ("x86_64",),
}
DEFAULT_SIM_ARCHS = {
    "ios": ("i386", "x86_64"),
    "tvos": ("x86_64", "arm64"),
    "macos": (),
}
UNIVERSAL_MACOS_ARCHS = ("x86_64", "arm64")

# iOS 11 dropped support for 32-bit devices
SIXTY_FOUR_BIT_ONLY_MAJOR = 11

KNOWN_ARCHS = ("armv7", "armv7s", "arm64", "arm64e", "i386", "x86_64")

BUILD_VARIANTS = ("release", "debug")
CLEAN_MODES = ("default", "clean", "purge", "no-clean")

COMBINED = "combined"

_VERSION_RE = re.compile(r"^\d+(\.\d+){0,3}$")


@functools.total_ordering
class Version:
    """Dot separated version compared component by component (1.9 < 1.10)."""

    def __init__(self, parts):
        self.parts = tuple(parts)

    def _key(self):
        # missing trailing components count as zero: 1.69 == 1.69.0
        return self.parts + (0,) * (4 - len(self.parts))

    def __eq__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        return f"Version('{self}')"

    def __str__(self):
        return ".".join(str(p) for p in self.parts)

    @property
    def major(self):
        return self.parts[0]

    @property
    def underscored(self):
        return "_".join(str(p) for p in self.parts)


def parse_version(text, what="version") -> Version:
    if text is None or not _VERSION_RE.match(str(text).strip()):
        raise MalformedVersionError(text, what)
    return Version(int(p) for p in str(text).strip().split("."))


class ArchiveProbe(Enum):
    """Outcome of looking for a library's staged archive."""
    PRESENT = "present"
    ABSENT_UNSUPPORTED = "absent-unsupported"
    ABSENT_UNEXPECTED = "absent-unexpected"


@dataclass
class BuildOptions:
    """Raw options from the command line. None means "not given"."""
    platforms: List[str] = field(default_factory=list)
    boost_version: Optional[str] = None
    boost_libs: Optional[str] = None
    ios_sdk: Optional[str] = None
    min_ios_version: Optional[str] = None
    ios_archs: Optional[str] = None
    tvos_sdk: Optional[str] = None
    min_tvos_version: Optional[str] = None
    tvos_archs: Optional[str] = None
    macos_sdk: Optional[str] = None
    min_macos_version: Optional[str] = None
    macos_archs: Optional[str] = None
    hidden_visibility: bool = False
    universal: bool = False
    framework: bool = True
    debug: bool = False
    clean_mode: str = "default"
    threads: Optional[int] = None
    root_dir: Optional[str] = None


@dataclass(frozen=True)
class PlatformConfig:
    platform: str
    enabled: bool
    archs: Tuple[str, ...]
    sim_archs: Tuple[str, ...]
    min_version: str
    sdk_version: str = ""
    sdk_path: str = ""
    sim_sdk_path: str = ""
    archs_overridden: bool = False
    excluded_libs: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class BuildConfiguration:
    """Everything the pipeline needs, resolved once and never mutated."""
    boost_version: Version
    libraries: Tuple[str, ...]
    platforms: Tuple[PlatformConfig, ...]
    threads: int
    build_variant: str
    root_dir: str
    universal: bool = False
    framework: bool = True
    hidden_visibility: bool = False
    silent_libs: FrozenSet[str] = frozenset(SILENT_LIBS)
    clean_mode: str = "default"

    def platform(self, name) -> PlatformConfig:
        for platform_config in self.platforms:
            if platform_config.platform == name:
                return platform_config
        raise KeyError(name)

    @property
    def enabled_platforms(self) -> Tuple[str, ...]:
        return tuple(p.platform for p in self.platforms if p.enabled)

    @property
    def tarball_path(self):
        return os.path.join(self.root_dir, f"boost_{self.boost_version.underscored}.tar.bz2")

    @property
    def src_dir(self):
        return os.path.join(self.root_dir, "src")

    @property
    def boost_src(self):
        return os.path.join(self.src_dir, f"boost_{self.boost_version.underscored}")

    @property
    def output_dir(self):
        return os.path.join(self.root_dir, "build", "boost", str(self.boost_version))

    def platform_output_dir(self, platform):
        return os.path.join(self.output_dir, platform, self.build_variant)

    def platform_build_dir(self, platform):
        return os.path.join(self.platform_output_dir(platform), "build")

    @property
    def dist_dir(self):
        return os.path.join(self.root_dir, "dist")

    @property
    def cxx_flags(self):
        if self.hidden_visibility:
            return "-fvisibility=hidden -fvisibility-inlines-hidden"
        return ""

    @property
    def ld_flags(self):
        return ""

    @property
    def other_flags(self):
        flags = "-std=c++14 -stdlib=libc++"
        if self.build_variant == "release":
            flags += " -DNDEBUG"
        return flags


@dataclass(frozen=True)
class PlatformSpec:
    """One platform variant: one toolchain entry and one b2 build pass."""
    platform: str
    variant: str
    is_device: bool
    archs: Tuple[str, ...]
    sdk: str
    sdk_path: str
    min_version_flag: str
    target_os: str
    excluded_libs: FrozenSet[str]
    extra_flags: Tuple[str, ...]

    @property
    def architecture(self):
        """b2 <architecture> feature of the variant's archs."""
        families = {"arm" if a.startswith("arm") else "x86" for a in self.archs}
        if len(families) == 1:
            return families.pop()
        return "combined"

    @property
    def arch_flags(self):
        return tuple(f"-arch {arch}" for arch in self.archs)

    @property
    def is_multi_arch(self):
        return len(self.archs) > 1

    @property
    def build_dir_name(self):
        return f"{self.variant}-build"

    def toolset(self, toolset_version):
        return f"darwin-{toolset_version}~{self.variant}"


@dataclass(frozen=True)
class LibraryTarget:
    name: str
    output_name: str
    unavailable_on: FrozenSet[str] = frozenset()

    @property
    def archive_name(self):
        return f"libboost_{self.output_name}.a"

    def available_on(self, platform):
        return platform not in self.unavailable_on


@dataclass(frozen=True)
class PackageSlice:
    """One library entry of the XCFramework, built from one or more variants."""
    name: str
    platform: str
    variants: Tuple[str, ...]


@dataclass(frozen=True)
class ArchiveArtifact:
    variant: str
    arch: str
    library: str
    path: str

    @property
    def coordinate(self):
        return (self.variant, self.arch, self.library)


@dataclass(frozen=True)
class ObjectFileSet:
    library: str
    objects: Tuple[str, ...]


@dataclass(frozen=True)
class PackageManifest:
    """
    What went into the XCFramework.

    Headers are taken from a single platform on the assumption that the
    installed boost headers are identical for every platform. This is not
    verified.
    """
    slices: Tuple[Tuple[str, str], ...]
    headers_path: str
    version: str

    @property
    def library_paths(self):
        return [path for _, path in self.slices]


# Extra compile flags. The pthread defines work around a shared_ptr race
# caused by a non thread-safe compare-and-swap on ARM. They must not be used
# for macOS where they crash boost thread destructors.
EXTRA_FLAGS = ("-fembed-bitcode", "-Wno-unused-local-typedef", "-Wno-nullability-completeness")
EXTRA_ARM_FLAGS = ("-DBOOST_AC_USE_PTHREADS", "-DBOOST_SP_USE_PTHREADS", "-g")

# variant -> (platform, is_device, sdk, min version flag prefix, target os, arm workaround)
VARIANTS = {
    "iphone": ("ios", True, "iphoneos", "-mios-version-min=", "iphone", True),
    "iphonesim": ("ios", False, "iphonesimulator", "-mios-simulator-version-min=", "iphone", True),
    "appletv": ("tvos", True, "appletvos", "-mtvos-version-min=", "iphone", True),
    "appletvsim": ("tvos", False, "appletvsimulator", "-mtvos-simulator-version-min=", "iphone", True),
    "macos": ("macos", True, "macosx", "-mmacosx-version-min=", "darwin", False),
    "macosarm": ("macos", True, "macosx", "-mmacosx-version-min=", "darwin", False),
}

PLATFORM_SDKS = {
    "ios": ("iphoneos", "iphonesimulator"),
    "tvos": ("appletvos", "appletvsimulator"),
    "macos": ("macosx", None),
}


def resolve_libraries(selection, version, catalogs=None) -> Tuple[str, ...]:
    """
    Resolve a library selection.

    Args:
        selection: "none", "all", or a space separated list of names
        version: boost Version, selects the catalog used for "all"
        catalogs: {threshold version string: library names}

    Returns:
        tuple: library names in request order, without duplicates
    """
    catalogs = catalogs or LIBRARY_CATALOGS
    words = split_words(selection)
    if words == ["none"]:
        return ()
    if words == ["all"]:
        return catalog_for_version(version, catalogs)

    ordered = []
    for name in words:
        if name not in ordered:
            ordered.append(name)
    return tuple(ordered)


def catalog_for_version(version, catalogs=None) -> Tuple[str, ...]:
    catalogs = catalogs or LIBRARY_CATALOGS
    thresholds = sorted((parse_version(k, "catalog version"), k) for k in catalogs)
    selected = None
    for threshold, key in thresholds:
        if threshold <= version:
            selected = key
    if selected is None:
        raise ConfigurationError(f"No library catalog covers boost {version}")
    return tuple(catalogs[selected])


def derive_simulator_archs(device_archs) -> Tuple[str, ...]:
    # 32-bit simulator for 32-bit arm, 64-bit simulators for 64-bit arm
    sim_archs = []
    if any(a.startswith("armv") for a in device_archs):
        sim_archs.append("i386")
    if any(a.startswith("arm64") for a in device_archs):
        sim_archs.extend(["x86_64", "arm64"])
    return tuple(sim_archs)


def _validate_archs(platform, archs):
    if not archs:
        raise ConfigurationError(f"No architectures given for {platform}")
    for arch in archs:
        if arch not in KNOWN_ARCHS:
            raise ConfigurationError(
                f"Unknown architecture '{arch}' for {platform}, expected one of {', '.join(KNOWN_ARCHS)}"
            )


def infer_archs(platform, override, min_version, universal=False):
    """
    Work out device and simulator architectures for a platform.

    An explicit override always wins and bypasses any inference. Without
    one, a minimum iOS version of 11 or later narrows iOS to 64-bit only,
    and a universal macOS build covers both Intel and Apple silicon.

    Returns:
        tuple: (archs, sim_archs, overridden)
    """
    if override:
        archs = tuple(dict.fromkeys(split_words(override)))
        _validate_archs(platform, archs)
        sim_archs = () if platform == "macos" else derive_simulator_archs(archs)
        return archs, sim_archs, True

    if platform == "ios" and min_version.major >= SIXTY_FOUR_BIT_ONLY_MAJOR:
        return ("arm64",), ("x86_64", "arm64"), False
    if platform == "macos" and universal:
        return UNIVERSAL_MACOS_ARCHS, (), False
    return DEFAULT_ARCHS[platform], DEFAULT_SIM_ARCHS[platform], False


def _section(file_config, name):
    value = file_config.get(name, {})
    if not isinstance(value, dict):
        raise InvalidConfigFileError(f"[{name}] must be a table in boostkit.toml")
    return value


def _file_catalogs(file_config):
    catalogs = dict(LIBRARY_CATALOGS)
    for key, libs in _section(file_config, "catalogs").items():
        parse_version(key, "catalog version")
        catalogs[key] = tuple(split_words(libs))
    return catalogs


def resolve_configuration(options, toolchain=None, file_config=None) -> BuildConfiguration:
    """
    Resolve options + boostkit.toml + defaults into a BuildConfiguration.

    Args:
        options: BuildOptions from the command line
        toolchain: XcodeToolchain used to look up SDK versions and paths of
            enabled platforms; None skips the lookup (clean / purge)
        file_config: Parsed boostkit.toml (may be empty)

    Raises:
        ConfigurationError: Any malformed or inconsistent value. Raised before
            anything is written to disk.
    """
    file_config = file_config or {}
    boost_section = _section(file_config, "boost")
    build_section = _section(file_config, "build")
    libraries_section = _section(file_config, "libraries")

    version = parse_version(options.boost_version or boost_section.get("version") or DEFAULT_BOOST_VERSION)

    selection = options.boost_libs
    if selection is None:
        selection = boost_section.get("libs", DEFAULT_BOOST_LIBS)
    libraries = resolve_libraries(selection, version, _file_catalogs(file_config))

    selected = [p for p in PLATFORMS if p in options.platforms]
    unknown = [p for p in options.platforms if p not in PLATFORMS]
    if unknown:
        raise ConfigurationError(f"Unknown platform {unknown[0]}")
    if not selected:
        # nothing selected means build everything
        selected = list(PLATFORMS)

    universal = bool(options.universal or build_section.get("universal", False))

    platforms = []
    for platform in PLATFORMS:
        section = _section(file_config, platform)
        enabled = platform in selected

        min_version_text = getattr(options, f"min_{platform}_version") or section.get(
            "min_version", DEFAULT_MIN_VERSIONS[platform]
        )
        min_version = parse_version(min_version_text, f"minimum {platform} version")

        override = getattr(options, f"{platform}_archs") or section.get("archs")
        archs, sim_archs, overridden = infer_archs(platform, override, min_version, universal)

        excluded = frozenset(split_words(section.get("exclude_libs", PLATFORM_EXCLUDED_LIBS[platform])))

        sdk_version = getattr(options, f"{platform}_sdk") or section.get("sdk_version", "")
        if sdk_version:
            parse_version(sdk_version, f"{platform} SDK version")
        sdk_path = sim_sdk_path = ""
        if enabled and toolchain is not None:
            sdk, sim_sdk = PLATFORM_SDKS[platform]
            if not sdk_version:
                sdk_version = toolchain.sdk_version(sdk)
            sdk_path = toolchain.sdk_path(sdk)
            if sim_sdk:
                sim_sdk_path = toolchain.sdk_path(sim_sdk)

        platforms.append(PlatformConfig(
            platform=platform,
            enabled=enabled,
            archs=archs,
            sim_archs=sim_archs,
            min_version=str(min_version),
            sdk_version=str(sdk_version),
            sdk_path=sdk_path,
            sim_sdk_path=sim_sdk_path,
            archs_overridden=overridden,
            excluded_libs=excluded,
        ))

    threads = options.threads if options.threads is not None else build_section.get("threads")
    if threads is None:
        threads = multiprocessing.cpu_count()
    if not isinstance(threads, int) or threads <= 0:
        raise ConfigurationError(f"Thread count must be a positive number, got {threads}")

    build_variant = "debug" if options.debug else build_section.get("variant", "release")
    if build_variant not in BUILD_VARIANTS:
        raise InvalidConfigFileError(f"Unknown build variant '{build_variant}'")

    if options.clean_mode not in CLEAN_MODES:
        raise ConfigurationError(f"Unknown clean mode '{options.clean_mode}'")

    silent = libraries_section.get("silent", SILENT_LIBS)

    return BuildConfiguration(
        boost_version=version,
        libraries=libraries,
        platforms=tuple(platforms),
        threads=threads,
        build_variant=build_variant,
        root_dir=os.path.abspath(options.root_dir or os.getcwd()),
        universal=universal,
        framework=bool(options.framework and build_section.get("framework", True)),
        hidden_visibility=bool(options.hidden_visibility or build_section.get("hidden_visibility", False)),
        silent_libs=frozenset(split_words(silent)),
        clean_mode=options.clean_mode,
    )


def _make_spec(platform_config, variant, archs):
    platform, is_device, sdk, min_flag, target_os, arm_workaround = VARIANTS[variant]
    extra_flags = EXTRA_FLAGS
    if arm_workaround:
        extra_flags += EXTRA_ARM_FLAGS
    extra_flags += (f"{min_flag}{platform_config.min_version}",)
    sdk_path = platform_config.sdk_path if is_device else platform_config.sim_sdk_path
    return PlatformSpec(
        platform=platform,
        variant=variant,
        is_device=is_device,
        archs=tuple(archs),
        sdk=sdk,
        sdk_path=sdk_path,
        min_version_flag=f"{min_flag}{platform_config.min_version}",
        target_os=target_os,
        excluded_libs=platform_config.excluded_libs,
        extra_flags=extra_flags,
    )


def platform_specs(config) -> List[PlatformSpec]:
    """
    Platform variants of every enabled platform, in build order.

    macOS is built in one pass per CPU family so that an Intel and an Apple
    silicon build can be fused into a single macOS slice afterwards.
    """
    specs = []
    for platform_config in config.platforms:
        if not platform_config.enabled:
            continue
        if platform_config.platform == "ios":
            specs.append(_make_spec(platform_config, "iphone", platform_config.archs))
            specs.append(_make_spec(platform_config, "iphonesim", platform_config.sim_archs))
        elif platform_config.platform == "tvos":
            specs.append(_make_spec(platform_config, "appletv", platform_config.archs))
            specs.append(_make_spec(platform_config, "appletvsim", platform_config.sim_archs))
        else:
            intel = [a for a in platform_config.archs if not a.startswith("arm")]
            apple_silicon = [a for a in platform_config.archs if a.startswith("arm")]
            if intel:
                specs.append(_make_spec(platform_config, "macos", intel))
            if apple_silicon:
                specs.append(_make_spec(platform_config, "macosarm", apple_silicon))
    return [spec for spec in specs if spec.archs]


def package_slices(specs) -> List[PackageSlice]:
    """Group variants into XCFramework slices: device, simulator, one macOS slice."""
    names = {
        "iphone": "ios",
        "iphonesim": "ios-simulator",
        "appletv": "tvos",
        "appletvsim": "tvos-simulator",
        "macos": "macos",
        "macosarm": "macos",
    }
    grouped: Dict[str, List[PlatformSpec]] = {}
    for spec in specs:
        grouped.setdefault(names[spec.variant], []).append(spec)
    return [
        PackageSlice(name, members[0].platform, tuple(s.variant for s in members))
        for name, members in grouped.items()
    ]


def library_targets(config) -> List[LibraryTarget]:
    excluded = {p.platform: p.excluded_libs for p in config.platforms}
    return [
        LibraryTarget(
            name=name,
            output_name=LIBRARY_OUTPUT_NAMES.get(name, name),
            unavailable_on=frozenset(p for p in PLATFORMS if name in excluded[p]),
        )
        for name in config.libraries
    ]


def platform_libraries(platform, targets) -> List[LibraryTarget]:
    """Requested libraries that can be built for a platform, in request order."""
    return [target for target in targets if target.available_on(platform)]
