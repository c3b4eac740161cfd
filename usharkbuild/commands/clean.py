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
from pathlib import Path

from usharkbuild.build_scripts.build_config import BuildConfig, load_config
from usharkbuild.build_scripts.build_utils import format_size, get_dir_size, remove_path
from usharkbuild.build_scripts.errors import UsharkBuildError
from usharkbuild.build_scripts.patches import glib2_iconv_restore
from usharkbuild.utils.context.command import CliCommand
from usharkbuild.utils.context.context import CliContext
from usharkbuild.utils.context.namespace import CliNameSpace


class Clean(CliCommand):
    def description(self) -> str:
        return """
        Remove everything ushark-build generated:

        - modules/     # downloaded archives, extracted sources, checkouts
        - build/       # per-ABI build trees and staging prefixes
        - dist/        # jniLibs/<abi>/libushark.so

        Examples:
            ushark-build clean                  # remove all three
            ushark-build clean --keep-sources   # keep modules/, restore glib2 meson.build
            ushark-build clean --dry-run        # preview what will be removed
        """

    def get_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="ushark-build clean",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
        )
        parser.add_argument(
            "--keep-sources",
            action="store_true",
            help="Keep modules/ and only restore the patched glib2 meson.build",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be cleaned without actually deleting",
        )
        return parser

    def cli(self, argv=None) -> CliNameSpace:
        return self.get_parser().parse_args(argv, namespace=CliNameSpace())

    def exec(self, context: CliContext, args: CliNameSpace) -> int:
        print("Cleaning build artifacts and caches...\n")
        try:
            config = load_config(context.project_dir)
            cleaner = ProjectCleaner(config, dry_run=args.dry_run)
            cleaner.clean_all(keep_sources=args.keep_sources)
        except UsharkBuildError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        cleaner.print_summary()
        return 1 if cleaner.failed_dirs else 0


class ProjectCleaner:
    def __init__(self, config: BuildConfig, dry_run=False):
        self.config = config
        self.dry_run = dry_run
        self.cleaned_dirs = []
        self.cleaned_size = 0
        self.failed_dirs = []

    def display_name(self, path: Path) -> str:
        try:
            return f"{path.relative_to(self.config.project_dir)}/"
        except ValueError:
            return f"{path}/"

    def remove_directory(self, path: Path) -> bool:
        """Remove a directory and track the result"""
        name = self.display_name(path)
        if not path.is_dir():
            print(f"  {name} does not exist")
            return False

        size = get_dir_size(path)
        if self.dry_run:
            print(f"  [DRY RUN] Would remove: {name} ({format_size(size)})")
            return True

        try:
            remove_path(path)
        except OSError as e:
            self.failed_dirs.append((name, str(e)))
            print(f"  Failed to remove {name}: {e}")
            return False
        self.cleaned_dirs.append(name)
        self.cleaned_size += size
        print(f"  Removed: {name} ({format_size(size)})")
        return True

    def restore_sources(self):
        """Undo source patches left behind by an interrupted build"""
        meson_build = self.config.modules_dir / "glib2" / "meson.build"
        if not meson_build.is_file():
            return
        restore = glib2_iconv_restore(meson_build.parent)
        if self.dry_run:
            text = meson_build.read_text(encoding="utf-8", errors="surrogateescape")
            if restore.transform(text) != text:
                print(f"  [DRY RUN] Would restore: {meson_build}")
            return
        if restore.apply():
            print(f"  Restored: {meson_build}")

    def clean_all(self, keep_sources=False):
        print("=" * 60)
        print("  Cleaning ushark-build output")
        print("=" * 60)
        self.remove_directory(self.config.build_dir)
        self.remove_directory(self.config.dist_dir)
        if keep_sources:
            self.restore_sources()
        else:
            self.remove_directory(self.config.modules_dir)

    def print_summary(self):
        print("\n" + "=" * 60)
        if self.dry_run:
            print("  Dry run finished, nothing was removed")
        else:
            print(f"  Cleaned {len(self.cleaned_dirs)} directories, freed {format_size(self.cleaned_size)}")
        for name, error in self.failed_dirs:
            print(f"  Failed: {name} ({error})")
        print("=" * 60)
