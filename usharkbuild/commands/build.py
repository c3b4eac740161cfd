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
import sys

from usharkbuild.build_scripts.build_android import AndroidBuild
from usharkbuild.build_scripts.build_config import load_config
from usharkbuild.build_scripts.errors import ArgumentError, StageError, UsharkBuildError
from usharkbuild.build_scripts.stages import STAGE_NAMES
from usharkbuild.build_scripts.toolchain import ABIS, BUILD_TYPES
from usharkbuild.utils.context.command import CliCommand
from usharkbuild.utils.context.context import CliContext
from usharkbuild.utils.context.namespace import CliNameSpace

EXIT_INTERRUPTED = 130


class Build(CliCommand):
    def description(self) -> str:
        return f"""Build libushark.so and its dependencies for Android.

Supported ABIs: {' '.join(ABIS)}
Build stages:   {' '.join(STAGE_NAMES)}

Without -a every ABI is built. Without -b every stage runs from a clean
build tree; with -b only that stage runs, reusing what earlier runs
installed for the ABI.

EXAMPLES:
    ushark-build                          # all ABIs, all stages, release
    ushark-build -a arm64-v8a -t debug    # one ABI, debug build
    ushark-build -a x86 -b gcrypt         # rebuild gcrypt for x86 only
    ushark-build clean                    # remove modules/, build/ and dist/

REQUIREMENTS:
    ANDROID_HOME with the NDK installed under ndk/<version>,
    git, make, cmake, meson and the autotools on PATH.
"""

    def get_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="ushark-build",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
        )
        parser.add_argument(
            "-a", "--abi",
            type=str,
            default=None,
            help="only build for the specified ABI",
        )
        parser.add_argument(
            "-b", "--build",
            metavar="LIB",
            type=str,
            default=None,
            help="only build the specified lib",
        )
        parser.add_argument(
            "-t", "--type",
            type=str,
            default="release",
            help=f"set the build type: {'/'.join(BUILD_TYPES)} (default: release)",
        )
        parser.add_argument(
            "-j", "--jobs",
            type=int,
            default=None,
            help="specify the number of jobs for the builds (default: CPU count - 1)",
        )
        return parser

    def cli(self, argv=None) -> CliNameSpace:
        return self.get_parser().parse_args(argv, namespace=CliNameSpace())

    def exec(self, context: CliContext, args: CliNameSpace) -> int:
        try:
            config = load_config(context.project_dir)
            builder = AndroidBuild(config)
            builder.run(
                abis=[args.abi] if args.abi else None,
                stage=args.build,
                build_type=args.type,
                jobs=args.jobs,
            )
        except StageError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            print(f"Fatal error while building '{e.stage_name}'", file=sys.stderr)
            if isinstance(e.cause, KeyboardInterrupt):
                return EXIT_INTERRUPTED
            return 1
        except ArgumentError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            self.get_parser().print_usage(sys.stderr)
            return 1
        except UsharkBuildError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            print("ERROR: interrupted", file=sys.stderr)
            return EXIT_INTERRUPTED
        return 0
