#!/usr/bin/env python3
"""
Tests for the artifact packager and its ELF dynamic section reader.

Run with: python3 -m pytest test_packager.py
"""

import io
import struct
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from usharkbuild.build_scripts.errors import ArtifactError, CommandError, TextRelocationError
from usharkbuild.build_scripts.packager import (
    DF_TEXTREL,
    USHARK_LINK_LIBS,
    ArtifactPackager,
    parse_dynamic_info,
    read_dynamic_info,
)
from usharkbuild.build_scripts.toolchain import resolve_environment

PT_LOAD = 1
PT_DYNAMIC = 2
DT_NULL = 0
DT_NEEDED = 1
DT_STRTAB = 5
DT_SONAME = 14
DT_TEXTREL = 22
DT_FLAGS = 30

LOAD_VADDR = 0x1000


def make_elf(needed=("libm.so", "libc.so"), soname="libushark.so", extra_dynamic=(), is64=True):
    """
    Build a minimal shared object: ELF header, PT_LOAD + PT_DYNAMIC program
    headers, a string table and a dynamic section.
    """
    if is64:
        ehdr_size, phdr_size, dyn_fmt = 64, 56, "<qQ"
    else:
        ehdr_size, phdr_size, dyn_fmt = 52, 32, "<iI"

    strtab = b"\0"
    offsets = {}
    for name in list(needed) + ([soname] if soname else []):
        offsets[name] = len(strtab)
        strtab += name.encode() + b"\0"
    strtab_offset = ehdr_size + 2 * phdr_size
    dynamic_offset = strtab_offset + len(strtab)
    dynamic_offset += -dynamic_offset % 8

    entries = [(DT_NEEDED, offsets[name]) for name in needed]
    if soname:
        entries.append((DT_SONAME, offsets[soname]))
    entries.append((DT_STRTAB, LOAD_VADDR + strtab_offset))
    entries += list(extra_dynamic)
    entries.append((DT_NULL, 0))
    dynamic = b"".join(struct.pack(dyn_fmt, tag, val) for tag, val in entries)
    total = dynamic_offset + len(dynamic)

    ident = b"\x7fELF" + bytes([2 if is64 else 1, 1, 1]) + bytes(9)
    if is64:
        ehdr = ident + struct.pack("<HHIQQQIHHHHHH", 3, 183, 1, 0, ehdr_size, 0, 0, ehdr_size, phdr_size, 2, 0, 0, 0)
        phdrs = struct.pack("<IIQQQQQQ", PT_LOAD, 5, 0, LOAD_VADDR, LOAD_VADDR, total, total, 0x1000)
        phdrs += struct.pack("<IIQQQQQQ", PT_DYNAMIC, 6, dynamic_offset, LOAD_VADDR + dynamic_offset,
                             LOAD_VADDR + dynamic_offset, len(dynamic), len(dynamic), 8)
    else:
        ehdr = ident + struct.pack("<HHIIIIIHHHHHH", 3, 40, 1, 0, ehdr_size, 0, 0, ehdr_size, phdr_size, 2, 0, 0, 0)
        phdrs = struct.pack("<IIIIIIII", PT_LOAD, 0, LOAD_VADDR, LOAD_VADDR, total, total, 5, 0x1000)
        phdrs += struct.pack("<IIIIIIII", PT_DYNAMIC, dynamic_offset, LOAD_VADDR + dynamic_offset,
                             LOAD_VADDR + dynamic_offset, len(dynamic), len(dynamic), 6, 4)

    data = ehdr + phdrs + strtab
    data += bytes(dynamic_offset - len(data))
    return data + dynamic


def parse(data):
    return parse_dynamic_info(io.BytesIO(data))


class TestParseDynamicInfo(unittest.TestCase):
    def test_needed_and_soname(self):
        info = parse(make_elf())
        self.assertEqual(info.needed, ["libm.so", "libc.so"])
        self.assertEqual(info.soname, "libushark.so")
        self.assertFalse(info.textrel)

    def test_dt_textrel(self):
        info = parse(make_elf(extra_dynamic=[(DT_TEXTREL, 0)]))
        self.assertTrue(info.textrel)

    def test_df_textrel_flag(self):
        info = parse(make_elf(extra_dynamic=[(DT_FLAGS, DF_TEXTREL)]))
        self.assertTrue(info.textrel)

    def test_other_flags_are_not_textrel(self):
        # DF_BIND_NOW
        info = parse(make_elf(extra_dynamic=[(DT_FLAGS, 0x8)]))
        self.assertFalse(info.textrel)

    def test_elf32(self):
        info = parse(make_elf(is64=False, extra_dynamic=[(DT_TEXTREL, 0)]))
        self.assertEqual(info.needed, ["libm.so", "libc.so"])
        self.assertTrue(info.textrel)

    def test_not_elf(self):
        with self.assertRaises(ArtifactError):
            parse(b"#!/bin/sh\n" + bytes(100))

    def test_truncated_header(self):
        with self.assertRaises(ArtifactError):
            parse(b"\x7fELF\x02\x01\x01" + bytes(9))

    def test_read_from_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "libushark.so"
            path.write_bytes(make_elf(needed=("liblog.so",)))
            info = read_dynamic_info(path)
        self.assertEqual(info.needed, ["liblog.so"])
        self.assertEqual(info.soname, "libushark.so")


class TestArtifactPackager(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.build_dir = self.root / "build" / "arm64-v8a" / "ushark"
        self.build_dir.mkdir(parents=True)
        self.staging = self.root / "build" / "arm64-v8a" / "install"
        self.packager = ArtifactPackager(self.root / "dist")
        self.commands = []

    def tearDown(self):
        self.temp_dir.cleanup()

    def fake_run(self, elf):
        def run(command, cwd=None, env=None):
            self.commands.append([str(c) for c in command])
            if "-o" in command:
                Path(command[command.index("-o") + 1]).write_bytes(elf)
            return 0
        return run

    def package(self, build_type, elf):
        env = resolve_environment("arm64-v8a", build_type, "/opt/ndk", 21, "linux-x86_64")
        objects = [self.build_dir / "ushark.o"]
        with patch("usharkbuild.build_scripts.packager.run_command", side_effect=self.fake_run(elf)):
            return self.packager.package(env, self.staging, objects, self.build_dir, env.cflags)

    def test_release_package(self):
        dest = self.package("release", make_elf())

        self.assertEqual(dest, self.root / "dist" / "jniLibs" / "arm64-v8a" / "libushark.so")
        self.assertTrue(dest.is_file())

        link, strip = self.commands
        self.assertIn("-z", link)
        self.assertEqual(link[link.index("-z") + 1], "defs")
        self.assertIn("-Wl,-soname,libushark.so", link)
        self.assertIn("-Wl,--exclude-libs=ALL", link)
        self.assertEqual(link[-1], "-lm")
        libs = [Path(arg).name for arg in link if arg.startswith(str(self.staging))]
        self.assertEqual(libs, list(USHARK_LINK_LIBS))
        self.assertTrue(strip[0].endswith("llvm-strip"))
        self.assertEqual(strip[1], str(dest))

    def test_debug_package_is_not_stripped(self):
        self.package("debug", make_elf())
        self.assertEqual(len(self.commands), 1)
        self.assertNotIn("-Wl,--gc-sections", self.commands[0])

    def test_text_relocation_is_rejected(self):
        with self.assertRaises(TextRelocationError):
            self.package("debug", make_elf(extra_dynamic=[(DT_TEXTREL, 0)]))
        self.assertFalse(self.packager.artifact_path("arm64-v8a").exists())

    def test_replaces_previous_artifact(self):
        old = self.packager.artifact_dir("arm64-v8a") / "stale.so"
        old.parent.mkdir(parents=True)
        old.write_bytes(b"old")
        self.package("release", make_elf())
        self.assertFalse(old.exists())

    def test_link_failure(self):
        env = resolve_environment("x86", "release", "/opt/ndk", 21, "linux-x86_64")
        with patch("usharkbuild.build_scripts.packager.run_command", return_value=1):
            with self.assertRaises(CommandError):
                self.packager.package(env, self.staging, [], self.build_dir, env.cflags)
        self.assertFalse(self.packager.artifact_dir("x86").exists())


if __name__ == "__main__":
    unittest.main()
