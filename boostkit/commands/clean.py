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
import sys

from boostkit.build_scripts.build_matrix import BuildOptions, resolve_configuration
from boostkit.build_scripts.build_utils import load_boostkit_config
from boostkit.build_scripts.errors import BoostKitError
from boostkit.build_scripts.pipeline import cleanup, purge
from boostkit.commands.build import (
    BoostArgumentParser,
    add_selection_arguments,
    parse_subcommand,
    report_error,
)
from boostkit.utils.context.command import CliCommand
from boostkit.utils.context.context import CliContext
from boostkit.utils.context.namespace import CliNameSpace


class Clean(CliCommand):
    def description(self) -> str:
        return """
        This is a subcommand to clean build artifacts.

        Cleans the following directories of the selected platforms:
        - src/boost_<v>/<variant>-build/          # b2 build and stage dirs
        - build/boost/<v>/<platform>/<variant>/   # output, logs, merged archives

        With --purge everything is removed instead:
        - boost_*.tar.bz2                         # downloaded tarballs
        - build/
        - src/

        Examples:
            boostkit clean                # clean every platform
            boostkit clean -ios --debug   # clean only the iOS debug output
            boostkit clean --purge        # remove everything
        """

    def cli(self, argv=None) -> CliNameSpace:
        parser = BoostArgumentParser(
            prog="boostkit clean",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
            allow_abbrev=False,
        )
        add_selection_arguments(parser)
        parser.add_argument(
            "--purge",
            action="store_true",
            help="remove downloaded tarballs, build/ and src/",
        )
        if argv is None:
            argv = sys.argv[2:]
        return parse_subcommand(parser, argv)

    def exec(self, context: CliContext, args: CliNameSpace):
        home_path = context.home_path or os.getcwd()
        try:
            options = BuildOptions(
                platforms=args.platforms or [],
                boost_version=args.boost_version,
                debug=args.debug,
                clean_mode="purge" if args.purge else "clean",
                root_dir=home_path,
            )
            config = resolve_configuration(options, None, load_boostkit_config(args.config, home_path))
        except BoostKitError as e:
            report_error(e)

        if args.purge:
            purge(config)
        else:
            cleanup(config)
        return config
