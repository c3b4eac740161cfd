#
# Copyright 2024 ushark-build Project Authors. All rights reserved.
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

from usharkbuild.utils.context.command import CliCommand
from usharkbuild.utils.context.context import CliContext
from usharkbuild.utils.context.namespace import CliNameSpace

SCRIPT_PATH = os.path.split(os.path.realpath(__file__))[0]
PACKAGE_NAME = os.path.basename(SCRIPT_PATH)

DEFAULT_COMMAND = "build"
HELP_COMMAND = "help"


# Root Class for Command Line Interface
class Cli(CliCommand):
    def description(self) -> str:
        return """ushark-build - cross-compile libushark for Android

USAGE:
    ushark-build [-a abi] [-b lib] [-t debug|release] [-j n]
    ushark-build clean [--keep-sources] [--dry-run]

COMMANDS:
    build       Build the dependencies and libushark.so (default)
    clean       Remove build outputs and downloaded sources
    help        Show this message

For more information on a specific command:
    ushark-build -h
    ushark-build clean -h
        """

    def get_command_list(self) -> list:
        arr = []
        for command in os.listdir(os.path.join(SCRIPT_PATH, "commands")):
            if command.startswith("_") or command.startswith("test_"):
                continue
            if command.endswith(".py"):
                arr.append(os.path.splitext(command)[0])
        return sorted(arr)

    def print_help(self):
        parser = argparse.ArgumentParser(
            prog="ushark-build",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
        )
        parser.add_argument(
            "subcommand",
            metavar=f"{self.get_command_list()}",
            nargs="?",
            choices=self.get_command_list(),
        )
        parser.print_help()

    def cli(self, argv=None) -> CliNameSpace:
        """Split argv into the subcommand and its own arguments"""
        argv = list(sys.argv[1:] if argv is None else argv)
        args = CliNameSpace()
        if argv and argv[0] in self.get_command_list() + [HELP_COMMAND]:
            args.subcommand = argv[0]
            args.argv = argv[1:]
        else:
            args.subcommand = DEFAULT_COMMAND
            args.argv = argv
        return args

    def load_command(self, name) -> CliCommand:
        # get module name
        module = importlib.import_module(f"{PACKAGE_NAME}.commands.{name}")
        # get class name
        klass = getattr(module, name.capitalize())
        return klass()

    def exec(self, context: CliContext, args: CliNameSpace) -> int:
        if args.subcommand == HELP_COMMAND:
            self.print_help()
            return 0
        sub_cmd = self.load_command(args.subcommand)
        # now execute the subcommand
        return sub_cmd.exec(context, sub_cmd.cli(args.argv))


def main(argv=None):
    cmd = Cli()
    sys.exit(cmd.exec(CliContext(), cmd.cli(argv)))


if __name__ == "__main__":
    main()
