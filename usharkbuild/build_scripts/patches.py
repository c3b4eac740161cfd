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
Source patches expressed as content substitutions.

A Substitution rewrites every match of a regular expression, so applying
it twice gives the same file as applying it once. FileCopy installs a
file that upstream is missing.
"""

import filecmp
import re
import shutil
from pathlib import Path
from typing import Callable, Iterable, List, Union

Replacement = Union[str, Callable[[re.Match], str]]


class Substitution:
    """Regex substitution over one file"""

    def __init__(self, path, pattern: str, replacement: Replacement, flags=re.MULTILINE):
        self.path = Path(path)
        self.pattern = re.compile(pattern, flags)
        self.replacement = replacement

    def transform(self, text: str) -> str:
        if callable(self.replacement):
            return self.pattern.sub(self.replacement, text)
        return self.pattern.sub(lambda m: m.expand(self.replacement), text)

    def apply(self) -> bool:
        """Rewrite the file in place; returns True when it changed"""
        text = self.path.read_text(encoding="utf-8", errors="surrogateescape")
        patched = self.transform(text)
        if patched == text:
            return False
        self.path.write_text(patched, encoding="utf-8", errors="surrogateescape")
        return True

    def __repr__(self):
        return f"Substitution({self.path}, {self.pattern.pattern!r})"


class FileCopy:
    """Copy src to dest; an existing dest is kept unless overwrite is set"""

    def __init__(self, src, dest, overwrite=False):
        self.src = Path(src)
        self.dest = Path(dest)
        self.overwrite = overwrite

    def apply(self) -> bool:
        if self.dest.exists():
            if not self.overwrite or filecmp.cmp(self.src, self.dest, shallow=False):
                return False
        self.dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(self.src, self.dest)
        return True

    def __repr__(self):
        return f"FileCopy({self.src} -> {self.dest})"


def apply_patches(patches: Iterable) -> List:
    """Apply patches in order; returns those that changed something"""
    changed = []
    for patch in patches:
        if patch.apply():
            print(f"   patched: {patch}")
            changed.append(patch)
    return changed


# glib2 looks iconv up with dependency('iconv'), which does not search
# the staging prefix. Both the pristine and an already patched line match.
_GLIB2_ICONV_LINE = r"^(?P<indent>[ \t]*)libiconv = (?:dependency\('iconv'\)|declare_dependency\(.*\))[ \t]*$"
_GLIB2_ICONV_PATCHED_LINE = r"^(?P<indent>[ \t]*)libiconv = declare_dependency\(.*\)[ \t]*$"


def glib2_iconv_patch(glib2_src, install_dir) -> Substitution:
    install_dir = Path(install_dir)
    declaration = (
        "libiconv = declare_dependency("
        f"link_args : ['-L{install_dir / 'lib'}', '-liconv'], "
        f"include_directories : include_directories('{install_dir / 'include'}'))"
    )
    return Substitution(
        Path(glib2_src) / "meson.build",
        _GLIB2_ICONV_LINE,
        lambda m: m.group("indent") + declaration,
    )


def glib2_iconv_restore(glib2_src) -> Substitution:
    return Substitution(
        Path(glib2_src) / "meson.build",
        _GLIB2_ICONV_PATCHED_LINE,
        lambda m: m.group("indent") + "libiconv = dependency('iconv')",
    )


def gcrypt_no_tests_patch(gcrypt_src) -> Substitution:
    # the tests fail to build in basic.c for x86_64
    return Substitution(Path(gcrypt_src) / "Makefile.in", r" tests$", "")


def gcrypt_generic_mpi_patches(gcrypt_src, gcrypt_build) -> List:
    """
    Use the generic C mpih-add1/mpih-sub1 instead of the assembly ones,
    which fail on x86 with "relocation R_386_32 cannot be used against
    local symbol".
    """
    makefile = Path(gcrypt_build) / "mpi" / "Makefile"
    patches = []
    for name in ("sub1", "add1"):
        patches += [
            Substitution(makefile, rf"^mpih_{name} = mpih-{name}-asm\.S$", f"mpih_{name} = mpih-{name}.c"),
            Substitution(makefile, rf"mpih-{name}-asm\.lo", f"mpih-{name}.lo"),
            FileCopy(
                Path(gcrypt_src) / "mpi" / "generic" / f"mpih-{name}.c",
                Path(gcrypt_build) / "mpi" / f"mpih-{name}.c",
                overwrite=True,
            ),
        ]
    return patches


def gpgerror_lock_obj_patch(lock_obj_dir, gpgerror_src, target) -> FileCopy:
    """
    Install the lock-obj header libgpg-error lacks for the target.

    A header present in lock_obj_dir always wins over the installed copy:
    x86 and x86_64 install under the same name, and regenerated headers
    must reach the source tree.
    """
    src = Path(lock_obj_dir) / target.gpgerr_lockobj
    return FileCopy(
        src,
        Path(gpgerror_src) / "src" / "syscfg" / target.gpgerr_lockobj_dest,
        overwrite=src.is_file(),
    )
