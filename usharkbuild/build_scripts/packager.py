#!/usr/bin/env python3
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

"""
Link, strip, validate and distribute libushark.so.

The final shared object is linked from the ushark objects plus every
static library installed in the staging prefix. Before it is accepted
its ELF dynamic section is inspected: Android refuses to load libraries
with text relocations from API level 23 on.
See https://android.googlesource.com/platform/bionic/+/master/android-changes-for-ndk-developers.md#Text-Relocations-Enforced-for-API-level-23
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile
from elftools.elf.enums import ENUM_DT_FLAGS

from usharkbuild.build_scripts.build_utils import clean, copy_file, remove_path
from usharkbuild.build_scripts.errors import ArtifactError, CommandError, TextRelocationError
from usharkbuild.utils.cmd.cmd_util import format_command, run_command

ARTIFACT_NAME = "libushark.so"

# Link order matters for static archives: dependents first
USHARK_LINK_LIBS = (
    "libwireshark.a",
    "libwiretap.a",
    "libversion_info.a",
    "libwsutil.a",
    "libui.a",
    "libglib-2.0.a",
    "libgcrypt.a",
    "libgpg-error.a",
    "libiconv.a",
    "libpcre2-8.a",
    "libnghttp2.a",
    "libintl.a",
)

DF_TEXTREL = ENUM_DT_FLAGS["DF_TEXTREL"]


@dataclass
class DynamicInfo:
    needed: List[str] = field(default_factory=list)
    soname: Optional[str] = None
    textrel: bool = False


def parse_dynamic_info(stream, name="<memory>") -> DynamicInfo:
    """
    Read the PT_DYNAMIC segment of an ELF image.

    Args:
        stream: Seekable binary stream holding the ELF file
        name: Used in error messages

    Returns:
        DynamicInfo: DT_NEEDED entries, DT_SONAME, and whether DT_TEXTREL
        or DF_TEXTREL is present. Objects without a dynamic segment give
        an empty DynamicInfo.
    """
    info = DynamicInfo()
    try:
        elf = ELFFile(stream)
        for segment in elf.iter_segments():
            if segment["p_type"] != "PT_DYNAMIC":
                continue
            # stripped objects have no .dynstr section, pyelftools then
            # resolves names through DT_STRTAB
            for tag in segment.iter_tags():
                d_tag = tag.entry.d_tag
                if d_tag == "DT_NEEDED":
                    info.needed.append(tag.needed)
                elif d_tag == "DT_SONAME":
                    info.soname = tag.soname
                elif d_tag == "DT_TEXTREL":
                    info.textrel = True
                elif d_tag == "DT_FLAGS" and tag.entry.d_val & DF_TEXTREL:
                    info.textrel = True
    except ELFError as e:
        raise ArtifactError(f"{name} is not a readable ELF file: {e}")
    return info


def read_dynamic_info(path) -> DynamicInfo:
    with open(path, "rb") as f:
        return parse_dynamic_info(f, name=str(path))


class ArtifactPackager:
    """Produces dist/jniLibs/<abi>/libushark.so"""

    def __init__(self, dist_dir):
        self.dist_dir = Path(dist_dir)

    def artifact_dir(self, abi) -> Path:
        return self.dist_dir / "jniLibs" / abi

    def artifact_path(self, abi) -> Path:
        return self.artifact_dir(abi) / ARTIFACT_NAME

    def link_libs(self, staging_prefix) -> List[Path]:
        libs = Path(staging_prefix) / "lib"
        return [libs / name for name in USHARK_LINK_LIBS]

    def _run(self, command, cwd, env):
        ret = run_command(command, cwd=cwd, env=env)
        if ret != 0:
            raise CommandError(format_command(command), ret)

    def link(self, env, staging_prefix, objects, build_dir, cflags) -> Path:
        """
        Link objects and the static closure into build_dir/libushark.so.

        "-z defs" makes any unresolved symbol a link error instead of a
        runtime failure on the device.
        """
        output = Path(build_dir) / ARTIFACT_NAME
        print(f"Building {ARTIFACT_NAME} ...")
        command = (
            [env.cc]
            + list(cflags)
            + list(env.ldflags)
            + list(env.link_gc_flags)
            + ["-z", "defs", "-shared", f"-Wl,-soname,{ARTIFACT_NAME}", "-o", str(output)]
            + [str(o) for o in objects]
            + [str(lib) for lib in self.link_libs(staging_prefix)]
            + ["-lm"]
        )
        self._run(command, cwd=build_dir, env=env.env())
        return output

    def strip(self, env, path):
        self._run([env.strip, str(path)], cwd=Path(path).parent, env=env.env())

    def validate(self, path) -> DynamicInfo:
        """
        Print the libraries the artifact needs and reject text relocations.

        Raises:
            TextRelocationError: DT_TEXTREL or DF_TEXTREL is set
        """
        info = read_dynamic_info(path)
        for needed in info.needed:
            print(f" 0x0000000000000001 (NEEDED)             Shared library: [{needed}]")
        if info.textrel:
            raise TextRelocationError(path)
        return info

    def package(self, env, staging_prefix, objects, build_dir, cflags) -> Path:
        """
        Link, install, strip (release) and validate the artifact for env.abi.

        Returns:
            Path: the artifact in the distribution tree
        """
        built = self.link(env, staging_prefix, objects, build_dir, cflags)

        dest_dir = clean(self.artifact_dir(env.abi))
        dest = copy_file(built, dest_dir)

        if env.is_release:
            self.strip(env, dest)

        try:
            self.validate(dest)
        except ArtifactError:
            remove_path(dest)
            raise

        print(f"artifact: {dest}")
        return dest
