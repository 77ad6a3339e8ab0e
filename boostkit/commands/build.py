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

import argparse
import os
import re
import sys

from boostkit.build_scripts.build_matrix import (
    DEFAULT_BOOST_LIBS,
    DEFAULT_BOOST_VERSION,
    DEFAULT_MIN_VERSIONS,
    PLATFORMS,
    BuildOptions,
    resolve_configuration,
)
from boostkit.build_scripts.build_utils import XcodeToolchain, load_boostkit_config
from boostkit.build_scripts.errors import (
    BoostKitError,
    ConfigurationError,
    MissingParameterError,
    UnknownParameterError,
)
from boostkit.build_scripts.pipeline import run_pipeline
from boostkit.utils.cmd.cmd_util import CommandRunner
from boostkit.utils.context.command import CliCommand
from boostkit.utils.context.context import CliContext
from boostkit.utils.context.namespace import CliNameSpace

_MISSING_VALUE_RE = re.compile(r"argument ([^:]+): expected (?:one|\d+) argument")


class BoostArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises ConfigurationError instead of exiting."""

    def error(self, message):
        match = _MISSING_VALUE_RE.search(message)
        if match:
            # "-j/--threads" -> "--threads"
            raise MissingParameterError(match.group(1).split("/")[-1])
        raise ConfigurationError(message)


def add_selection_arguments(parser):
    """Options shared by build and clean: which platforms, which boost, where."""
    for platform in PLATFORMS:
        parser.add_argument(
            f"-{platform}", f"--{platform}",
            dest="platforms",
            action="append_const",
            const=platform,
            help=f"build for {platform} (default: all platforms when none is given)",
        )
    parser.add_argument(
        "--boost-version",
        action="store",
        help=f"boost version to build (default: {DEFAULT_BOOST_VERSION})",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="build the debug variant instead of release",
    )
    parser.add_argument(
        "--config",
        action="store",
        help="path of a boostkit.toml (default: ./boostkit.toml if present)",
    )


def report_error(error):
    print(f"ERROR: [{error.stage}] {error}", file=sys.stderr)
    sys.exit(1)


def parse_subcommand(parser, argv):
    """Parse argv; unknown flags and missing values are fatal."""
    try:
        args, unknown = parser.parse_known_args(argv, namespace=CliNameSpace())
        if unknown:
            raise UnknownParameterError(unknown[0])
    except ConfigurationError as e:
        parser.print_usage(sys.stderr)
        report_error(e)
    return args


class Build(CliCommand):
    def description(self) -> str:
        return f"""Build boost for Apple platforms and package it as boost.xcframework.

Without a platform flag every platform (iOS, tvOS, macOS) is built.

EXAMPLES:
    boostkit build
    boostkit build -ios --min-ios-version 12.0 --ios-archs "arm64"
    boostkit build -macos --universal
    boostkit build --boost-libs all --no-framework
    boostkit build --clean              # only clean, do not build
    boostkit build --no-clean           # reuse previous build output

DEFAULTS:
    --boost-libs        {DEFAULT_BOOST_LIBS}
    --min-ios-version   {DEFAULT_MIN_VERSIONS['ios']}
    --min-tvos-version  {DEFAULT_MIN_VERSIONS['tvos']}
    --min-macos-version {DEFAULT_MIN_VERSIONS['macos']}

OUTPUT:
    build/boost/<version>/<platform>/<release|debug>/   per-platform output
    dist/boost.xcframework                              the package
        """

    def parser(self) -> argparse.ArgumentParser:
        parser = BoostArgumentParser(
            prog="boostkit build",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
            allow_abbrev=False,
        )
        add_selection_arguments(parser)
        parser.add_argument(
            "--boost-libs",
            action="store",
            help='space separated libraries, "all" or "none"',
        )
        for platform in PLATFORMS:
            parser.add_argument(
                f"--{platform}-sdk",
                action="store",
                help=f"{platform} SDK version (default: the installed SDK)",
            )
            parser.add_argument(
                f"--min-{platform}-version",
                action="store",
                help=f"minimum {platform} version (default: {DEFAULT_MIN_VERSIONS[platform]})",
            )
            parser.add_argument(
                f"--{platform}-archs",
                action="store",
                help=f"space separated {platform} device architectures",
            )
        parser.add_argument(
            "--hidden-visibility",
            action="store_true",
            help="compile with -fvisibility=hidden -fvisibility-inlines-hidden",
        )
        parser.add_argument(
            "--universal",
            action="store_true",
            help="also create multi-arch archives per library, and build macOS for x86_64 and arm64",
        )
        parser.add_argument(
            "--no-framework",
            action="store_true",
            help="do not create boost.xcframework",
        )
        parser.add_argument(
            "-j", "--threads",
            type=int,
            default=None,
            help="number of parallel b2 jobs (default: CPU count)",
        )
        modes = parser.add_mutually_exclusive_group()
        modes.add_argument("--clean", action="store_true", help="remove build output, then exit")
        modes.add_argument("--purge", action="store_true", help="remove tarballs, build/ and src/, then exit")
        modes.add_argument("--no-clean", action="store_true", help="do not clean before building")
        return parser

    def cli(self, argv=None) -> CliNameSpace:
        if argv is None:
            argv = sys.argv[2:]
        return parse_subcommand(self.parser(), argv)

    def build_options(self, args: CliNameSpace, home_path) -> BuildOptions:
        if args.purge:
            clean_mode = "purge"
        elif args.clean:
            clean_mode = "clean"
        elif args.no_clean:
            clean_mode = "no-clean"
        else:
            clean_mode = "default"
        return BuildOptions(
            platforms=args.platforms or [],
            boost_version=args.boost_version,
            boost_libs=args.boost_libs,
            ios_sdk=args.ios_sdk,
            min_ios_version=args.min_ios_version,
            ios_archs=args.ios_archs,
            tvos_sdk=args.tvos_sdk,
            min_tvos_version=args.min_tvos_version,
            tvos_archs=args.tvos_archs,
            macos_sdk=args.macos_sdk,
            min_macos_version=args.min_macos_version,
            macos_archs=args.macos_archs,
            hidden_visibility=args.hidden_visibility,
            universal=args.universal,
            framework=not args.no_framework,
            debug=args.debug,
            clean_mode=clean_mode,
            threads=args.threads,
            root_dir=home_path,
        )

    def exec(self, context: CliContext, args: CliNameSpace):
        home_path = context.home_path or os.getcwd()
        runner = context.runner or CommandRunner()
        toolchain = context.toolchain or XcodeToolchain(runner)
        try:
            file_config = load_boostkit_config(args.config, home_path)
            options = self.build_options(args, home_path)
            # cleaning needs no Xcode
            probe = None if options.clean_mode in ("clean", "purge") else toolchain
            config = resolve_configuration(options, probe, file_config)
            return run_pipeline(config, runner, toolchain)
        except BoostKitError as e:
            report_error(e)
