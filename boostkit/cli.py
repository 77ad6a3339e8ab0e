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
import importlib
import os
import sys

from boostkit.utils.context.command import CliCommand
from boostkit.utils.context.context import CliContext
from boostkit.utils.context.namespace import CliNameSpace

SCRIPT_PATH = os.path.split(os.path.realpath(__file__))[0]
PACKAGE_NAME = os.path.basename(SCRIPT_PATH)


# Root Class for Command Line Interface
class Cli(CliCommand):
    def description(self) -> str:
        return """boostkit - Boost for Apple platforms

Builds the boost C++ libraries for iOS, tvOS and macOS (device and
simulator) and packages them into a single boost.xcframework.

USAGE:
    boostkit <command> [options]

COMMANDS:
    build       Download, build, merge and package boost
    clean       Remove build output (or everything with --purge)

EXAMPLES:
    boostkit build                                  # all platforms, default libraries
    boostkit build -ios --boost-libs "system thread"
    boostkit build -macos --universal --debug
    boostkit clean --purge

For more information on a specific command:
    boostkit <command> --help
        """

    def get_command_list(self) -> list:
        arr = []
        for command in sorted(os.listdir(os.path.join(SCRIPT_PATH, "commands"))):
            if not command.startswith(("_", "test_")) and command.endswith(".py"):
                arr.append(os.path.splitext(os.path.basename(command))[0])
        return arr

    def _parser(self, add_help) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog=PACKAGE_NAME,
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
            add_help=add_help,
        )
        parser.add_argument(
            "subcommand",
            metavar=f"{self.get_command_list()}",
            type=str,
            nargs="?",
            choices=self.get_command_list(),
        )
        return parser

    def cli(self, argv=None) -> CliNameSpace:
        argv = sys.argv[1:] if argv is None else argv
        # help for the root command only, "boostkit build --help" is left to the subcommand
        if len(argv) == 1 and argv[0] in ["--help", "-h"]:
            self._parser(add_help=True).print_help()
            sys.exit(0)

        # the first word is the subcommand, everything else belongs to it
        args = self._parser(add_help=False).parse_args(argv[:1], namespace=CliNameSpace())
        args.subcommand_argv = argv[1:]
        return args

    def exec(self, context: CliContext, args: CliNameSpace):
        if not args.subcommand:
            print("ERROR: No command specified\n")
            self._parser(add_help=True).print_help()
            sys.exit(1)

        # get module name
        module_name = f"{PACKAGE_NAME}.commands.{args.subcommand}"
        # get class name
        class_name = args.subcommand.capitalize()
        # import module
        module = importlib.import_module(module_name)
        # get class of module
        klass = getattr(module, class_name)
        # instance class
        sub_cmd = klass()
        # now execute the subcommand
        sub_cmd.exec(context, sub_cmd.cli(args.subcommand_argv))


def main():
    cmd = Cli()
    cmd.exec(CliContext(), cmd.cli())


if __name__ == "__main__":
    main()
