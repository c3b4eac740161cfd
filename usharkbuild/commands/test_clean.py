#!/usr/bin/env python3
"""
Tests for the clean command.

Run with: python3 -m pytest test_clean.py
"""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from usharkbuild.build_scripts.build_config import BuildConfig
from usharkbuild.commands.clean import Clean, ProjectCleaner
from usharkbuild.utils.context.context import CliContext

PRISTINE = "project('glib', 'c')\nlibiconv = dependency('iconv')\n"
PATCHED = "project('glib', 'c')\nlibiconv = declare_dependency(link_args : ['-L/x/lib', '-liconv'])\n"


class TestProjectCleaner(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        for rel in ("modules/glib2", "build/x86/install/lib", "dist/jniLibs/x86"):
            (self.root / rel).mkdir(parents=True)
        self.meson_build = self.root / "modules" / "glib2" / "meson.build"
        self.meson_build.write_text(PATCHED)
        (self.root / "dist" / "jniLibs" / "x86" / "libushark.so").write_bytes(b"\x7fELF" + bytes(60))
        self.config = BuildConfig(self.root)

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_clean_all(self):
        cleaner = ProjectCleaner(self.config)
        cleaner.clean_all()
        for name in ("modules", "build", "dist"):
            self.assertFalse((self.root / name).exists(), name)
        self.assertEqual(sorted(cleaner.cleaned_dirs), ["build/", "dist/", "modules/"])
        self.assertEqual(cleaner.cleaned_size, 64 + len(PATCHED.encode()))

    def test_keep_sources_restores_patch(self):
        ProjectCleaner(self.config).clean_all(keep_sources=True)
        self.assertFalse((self.root / "build").exists())
        self.assertFalse((self.root / "dist").exists())
        self.assertEqual(self.meson_build.read_text(), PRISTINE)

    def test_keep_sources_only_touches_meson_build(self):
        makefile = self.root / "modules" / "libgcrypt" / "Makefile.in"
        makefile.parent.mkdir(parents=True)
        makefile.write_text("SUBDIRS = src\n")
        ProjectCleaner(self.config).clean_all(keep_sources=True)
        self.assertEqual(makefile.read_text(), "SUBDIRS = src\n")

    def test_dry_run(self):
        cleaner = ProjectCleaner(self.config, dry_run=True)
        cleaner.clean_all(keep_sources=True)
        for name in ("modules", "build", "dist"):
            self.assertTrue((self.root / name).exists(), name)
        self.assertEqual(self.meson_build.read_text(), PATCHED)
        self.assertEqual(cleaner.cleaned_dirs, [])

    def test_missing_directories(self):
        empty = BuildConfig(self.root / "elsewhere")
        cleaner = ProjectCleaner(empty)
        cleaner.clean_all()
        self.assertEqual(cleaner.cleaned_dirs, [])


class TestCleanCommand(unittest.TestCase):
    def test_exec(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "build" / "host").mkdir(parents=True)
            cmd = Clean()
            with patch("builtins.print"):
                code = cmd.exec(CliContext(project_dir=root), cmd.cli([]))
            self.assertEqual(code, 0)
            self.assertFalse((root / "build").exists())

    def test_arguments(self):
        args = Clean().cli(["--keep-sources", "--dry-run"])
        self.assertTrue(args.keep_sources)
        self.assertTrue(args.dry_run)

    def test_keep_sources_help(self):
        help_text = Clean().get_parser().format_help()
        self.assertIn("only restore the patched glib2 meson.build", " ".join(help_text.split()))


if __name__ == "__main__":
    unittest.main()
