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
Build stages for libushark and its dependencies.

Stages run in a fixed order, each one installing into the per-ABI
staging prefix that later stages compile and link against:

    iconv -> glib2 -> gpgerror -> gcrypt -> nghttp2 -> wireshark -> ushark

Every stage gets a fresh build directory build/<abi>/<stage>. Stages
declare the staging files they need (checked before the native build
starts) and the files they install (checked after it finishes).
"""

import glob
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Tuple

from usharkbuild.build_scripts.build_utils import clean, copy_file
from usharkbuild.build_scripts.errors import (
    CommandError,
    PreconditionError,
    StageError,
    UsharkBuildError,
)
from usharkbuild.build_scripts.packager import USHARK_LINK_LIBS, ArtifactPackager
from usharkbuild.build_scripts.patches import (
    apply_patches,
    gcrypt_generic_mpi_patches,
    gcrypt_no_tests_patch,
    glib2_iconv_patch,
    glib2_iconv_restore,
    gpgerror_lock_obj_patch,
)
from usharkbuild.build_scripts.toolchain import BuildEnvironment
from usharkbuild.utils.cmd.cmd_util import format_command, run_command
from usharkbuild.utils.context.result import StageResult

GCRYPT_CIPHERS = "arcfour des aes rfc2268 seed camellia idea chacha20 sm4"
GCRYPT_DIGESTS = "md5 sha1 sha256 sha512 sha3 sm3 blake2"
GCRYPT_PUBKEY_CIPHERS = "dsa rsa ecc"

WIRESHARK_TARGETS = ("epan", "wiretap", "version_info", "wsutil", "ui")

MESON_CROSS_FILE = """[host_machine]
system = 'android'
cpu_family = '{cpu}'
cpu = '{cpu}'
endian = 'little'

[binaries]
c = '{cc}'
ar = '{ar}'
ld = '{cc}'
objcopy = '{objcopy}'
strip = '{strip}'
"""


@dataclass
class StageContext:
    """Everything a stage builder may read"""

    env: BuildEnvironment
    stage_name: str
    install_dir: Path
    build_dir: Path
    build_root: Path
    sources: Dict[str, Path]
    jobs: int
    lock_obj_dir: Path
    host_build_dir: Path
    packager: ArtifactPackager

    def source(self, name) -> Path:
        try:
            return Path(self.sources[name])
        except KeyError:
            raise PreconditionError(f"Sources of '{name}' are not available")

    @property
    def lemon_bin(self) -> Path:
        return host_lemon_path(self.host_build_dir)

    def run(self, command, cwd=None, env=None):
        ret = run_command(command, cwd=cwd or self.build_dir, env=env or self.env.env())
        if ret != 0:
            raise CommandError(format_command(command), ret)

    def make(self, *targets, cwd=None):
        self.run(["make", f"-j{self.jobs}"] + list(targets), cwd=cwd)

    def configure(self, src, *args):
        """Run an autotools configure script from src in the build directory"""
        self.run(
            [str(Path(src) / "configure"), f"--prefix={self.install_dir}", "--host", self.env.host]
            + list(args)
        )


@dataclass(frozen=True)
class Stage:
    name: str
    build: Callable[[StageContext], None]
    # paths relative to the staging prefix
    requires: Tuple[str, ...] = ()
    provides: Tuple[str, ...] = ()
    # needs the host lemon tool
    host_tools: bool = False

    def missing(self, staging_prefix, paths) -> List[str]:
        return [p for p in paths if not (Path(staging_prefix) / p).exists()]


def build_iconv(ctx: StageContext):
    # required by glib2 on older Android SDKs
    ctx.configure(
        ctx.source("libiconv"),
        "--enable-static", "--disable-shared", "--disable-tests", "--disable-doc",
    )
    ctx.make("install")


def build_glib2(ctx: StageContext):
    # https://docs.gtk.org/glib/cross-compiling.html
    # https://mesonbuild.com/Cross-compilation.html
    src = ctx.source("glib2")
    env = ctx.env

    cross_file = ctx.build_dir / "cross-file.txt"
    cross_file.write_text(MESON_CROSS_FILE.format(
        cpu=env.cpu, cc=env.cc, ar=env.ar, objcopy=env.objcopy, strip=env.strip,
    ))

    meson_dir = ctx.build_dir / "meson"
    apply_patches([glib2_iconv_patch(src, ctx.install_dir)])
    try:
        ctx.run([
            "meson", "setup", "--cross-file", str(cross_file),
            f"--prefix={ctx.install_dir}",
            "-Dselinux=disabled", "-Dxattr=false", "-Dlibmount=disabled",
            "-Dbsymbolic_functions=false", "-Dtests=false", "-Dnls=disabled",
            "-Dglib_debug=disabled", "-Dglib_assert=false", "-Dglib_checks=false",
            "-Dlibelf=disabled", "-Dintrospection=disabled",
            "-Ddefault_library=static",
            f"--buildtype={env.meson_build_type}",
            str(meson_dir), str(src),
        ], cwd=src)
        ctx.run(["meson", "compile", "-C", str(meson_dir), f"-j{ctx.jobs}", "glib-2.0"])
        ctx.run(["meson", "install", "-C", str(meson_dir)])
    finally:
        glib2_iconv_restore(src).apply()


def build_gpgerror(ctx: StageContext):
    # https://stackoverflow.com/questions/45837496/compiling-libgcrypt-and-libgpgerror-for-android-with-cmake
    src = ctx.source("libgpg-error")
    ctx.run(["./autogen.sh"], cwd=src)
    ctx.configure(src, "--enable-static", "--disable-shared", "--disable-tests", "--disable-doc")

    # lock-obj-pub headers are generated on the device from gen-posix-lock-obj
    ctx.make("gen-posix-lock-obj", cwd=ctx.build_dir / "src")
    lock_obj = gpgerror_lock_obj_patch(ctx.lock_obj_dir, src, ctx.env.target)
    if not lock_obj.dest.exists() and not lock_obj.src.is_file():
        raise PreconditionError(
            f"{lock_obj.src} is missing, run gen-posix-lock-obj on a {ctx.env.abi} device to create it"
        )
    apply_patches([lock_obj])

    ctx.make("install")


def build_gcrypt(ctx: StageContext):
    src = ctx.source("libgcrypt")
    ctx.run(["./autogen.sh"], cwd=src)
    apply_patches([gcrypt_no_tests_patch(src)])

    ctx.configure(
        src,
        "--enable-static", "--disable-shared", "--disable-doc",
        f"--enable-ciphers={GCRYPT_CIPHERS}",
        f"--enable-digests={GCRYPT_DIGESTS}",
        f"--enable-pubkey-ciphers={GCRYPT_PUBKEY_CIPHERS}",
    )

    if ctx.env.target.gcrypt_generic_mpi:
        apply_patches(gcrypt_generic_mpi_patches(src, ctx.build_dir))

    ctx.make("install")


def build_nghttp2(ctx: StageContext):
    ctx.configure(ctx.source("nghttp2"), "--enable-static", "--disable-shared", "--enable-lib-only")
    ctx.make("install")


def host_lemon_path(host_build_dir) -> Path:
    return Path(host_build_dir) / "wireshark" / "run" / "lemon"


def build_lemon(host_build_dir, wireshark_src, jobs) -> Path:
    """
    Build the lemon parser generator for the build machine.

    lemon runs during the wireshark build, so it is built once with the
    host compiler and reused by every target ABI.
    """
    lemon = host_lemon_path(host_build_dir)
    if lemon.is_file() and os.access(lemon, os.X_OK):
        return lemon

    print("[+] Build lemon...")
    host_wireshark = clean(Path(host_build_dir) / "wireshark")
    for command in (
        ["cmake", "-DCMAKE_BUILD_TYPE=Release", "-DENABLE_STATIC=ON", str(wireshark_src)],
        ["make", f"-j{jobs}", "lemon"],
    ):
        ret = run_command(command, cwd=host_wireshark)
        if ret != 0:
            raise CommandError(format_command(command), ret)
    return lemon


def build_wireshark(ctx: StageContext):
    # https://zwyuan.github.io/2016/07/18/cross-compile-wireshark-for-android
    env = ctx.env
    inst = ctx.install_dir
    lib = inst / "lib"
    if not ctx.lemon_bin.is_file():
        raise PreconditionError(f"lemon has not been built: {ctx.lemon_bin}")

    ctx.run([
        "cmake",
        "-DCMAKE_SYSTEM_NAME=Android",
        f"-DCMAKE_TOOLCHAIN_FILE={env.cmake_toolchain_file}",
        f"-DANDROID_NDK={env.ndk_root}",
        f"-DANDROID_ABI={env.abi}",
        f"-DCMAKE_ANDROID_ARCH_ABI={env.abi}",
        f"-DANDROID_PLATFORM=android-{env.min_sdk}",
        f"-DCMAKE_SYSTEM_VERSION={env.min_sdk}",
        f"-DLEMON_BIN={ctx.lemon_bin}",
        "-DHAVE_C99_VSNPRINTF=TRUE",
        f"-DCMAKE_BUILD_TYPE={env.cmake_build_type}",
        "-DENABLE_STATIC=ON",
        "-DENABLE_WERROR=OFF",
        "-DBUILD_tshark=ON",
        f"-DGLIB2_LIBRARY={lib / 'libglib-2.0.a'}",
        f"-DGLIB2_MAIN_INCLUDE_DIR={inst / 'include' / 'glib-2.0'}",
        f"-DGLIB2_INTERNAL_INCLUDE_DIR={lib / 'glib-2.0' / 'include'}",
        f"-DGTHREAD2_LIBRARY={lib / 'libgthread-2.0.a'}",
        f"-DGTHREAD2_INCLUDE_DIR={inst / 'include'}",
        f"-DGCRYPT_LIBRARY={lib / 'libgcrypt.a'}",
        f"-DGCRYPT_INCLUDE_DIR={inst / 'include'}",
        f"-DGCRYPT_ERROR_LIBRARY={lib / 'libgpg-error.a'}",
        f"-DPCRE2_LIBRARY={lib / 'libpcre2-8.a'}",
        f"-DPCRE2_INCLUDE_DIR={inst / 'include'}",
        f"-DNGHTTP2_LIBRARY={lib / 'libnghttp2.a'}",
        f"-DNGHTTP2_INCLUDE_DIR={inst / 'include' / 'nghttp2'}",
        str(ctx.source("wireshark")),
    ])

    ctx.make(*WIRESHARK_TARGETS)

    for archive in sorted(glob.glob(str(ctx.build_dir / "run" / "*.a"))):
        copy_file(archive, lib / os.path.basename(archive))


def build_ushark(ctx: StageContext):
    """
    Compile the ushark shim directly and link it into libushark.so.

    The wireshark build tree of the same ABI provides config.h and the
    generated headers.
    """
    wireshark_src = ctx.source("wireshark")
    ushark_src = ctx.source("ushark") / "libushark"
    wireshark_build = ctx.build_root / "wireshark"
    if not wireshark_build.is_dir():
        raise PreconditionError(f"wireshark has not been built for {ctx.env.abi}: {wireshark_build}")

    inst = ctx.install_dir
    cflags = list(ctx.env.cflags) + [
        f"-I{wireshark_src}",
        f"-I{wireshark_src / 'include'}",
        f"-I{wireshark_build}",
        f"-I{inst / 'include'}",
        f"-I{inst / 'include' / 'glib-2.0'}",
        f"-I{inst / 'lib' / 'glib-2.0' / 'include'}",
    ]

    objects = []
    for source in (wireshark_src / "frame_tvbuff.c", ushark_src / "http2.c", ushark_src / "ushark.c"):
        obj = ctx.build_dir / (source.stem + ".o")
        print(f"Building {obj.name} ...")
        ctx.run([ctx.env.cc] + cflags + ["-c", str(source), "-o", str(obj)])
        objects.append(obj)

    ctx.packager.package(ctx.env, inst, objects, ctx.build_dir, cflags)


_WIRESHARK_LIBS = tuple(f"lib/{name}" for name in USHARK_LINK_LIBS[:5])

STAGES = (
    Stage("iconv", build_iconv, provides=("lib/libiconv.a",)),
    Stage(
        "glib2",
        build_glib2,
        requires=("lib/libiconv.a",),
        # pcre2 and proxy-libintl are glib2 subprojects
        provides=("lib/libglib-2.0.a", "lib/libgthread-2.0.a", "lib/libpcre2-8.a", "lib/libintl.a"),
    ),
    Stage("gpgerror", build_gpgerror, provides=("lib/libgpg-error.a",)),
    Stage("gcrypt", build_gcrypt, requires=("lib/libgpg-error.a",), provides=("lib/libgcrypt.a",)),
    Stage("nghttp2", build_nghttp2, provides=("lib/libnghttp2.a",)),
    Stage(
        "wireshark",
        build_wireshark,
        requires=(
            "include/glib-2.0",
            "lib/libglib-2.0.a",
            "lib/libgthread-2.0.a",
            "lib/libpcre2-8.a",
            "lib/libgcrypt.a",
            "lib/libgpg-error.a",
            "lib/libnghttp2.a",
        ),
        provides=_WIRESHARK_LIBS,
        host_tools=True,
    ),
    Stage("ushark", build_ushark, requires=tuple(f"lib/{name}" for name in USHARK_LINK_LIBS)),
)

STAGE_NAMES = tuple(stage.name for stage in STAGES)


class StageExecutor:
    """Runs single stages for one orchestrator run"""

    def __init__(self, sources: Dict[str, Path], build_dir, jobs: int, lock_obj_dir,
                 host_build_dir, packager: ArtifactPackager):
        self.sources = sources
        self.build_dir = Path(build_dir)
        self.jobs = jobs
        self.lock_obj_dir = Path(lock_obj_dir)
        self.host_build_dir = Path(host_build_dir)
        self.packager = packager

    def build_root(self, abi) -> Path:
        return self.build_dir / abi

    def run_host_tools(self) -> StageResult:
        """Build lemon once per run; tagged "lemon" for error reporting"""
        try:
            wireshark_src = self.sources["wireshark"]
            return StageResult("lemon", value=build_lemon(self.host_build_dir, wireshark_src, self.jobs))
        except KeyError:
            return StageResult("lemon", error=StageError("lemon", "sources of 'wireshark' are not available"))
        except (UsharkBuildError, OSError) as e:
            return StageResult("lemon", error=StageError("lemon", e))
        except KeyboardInterrupt as e:
            return StageResult("lemon", error=StageError("lemon", e))

    def run(self, stage: Stage, env: BuildEnvironment, staging_prefix) -> StageResult:
        """
        Run one stage for env.abi, installing into staging_prefix.

        Returns:
            StageResult tagged with the stage name; on failure its error
            is a StageError wrapping the cause.
        """
        staging_prefix = Path(staging_prefix)
        try:
            missing = stage.missing(staging_prefix, stage.requires)
            if missing:
                raise PreconditionError(
                    f"missing prerequisites in {staging_prefix}: {', '.join(missing)}"
                )

            build_root = self.build_root(env.abi)
            ctx = StageContext(
                env=env,
                stage_name=stage.name,
                install_dir=staging_prefix,
                build_dir=clean(build_root / stage.name),
                build_root=build_root,
                sources=self.sources,
                jobs=self.jobs,
                lock_obj_dir=self.lock_obj_dir,
                host_build_dir=self.host_build_dir,
                packager=self.packager,
            )
            stage.build(ctx)

            missing = stage.missing(staging_prefix, stage.provides)
            if missing:
                raise PreconditionError(f"stage did not install: {', '.join(missing)}")
        except StageError as e:
            return StageResult(stage.name, error=e)
        except (UsharkBuildError, OSError) as e:
            return StageResult(stage.name, error=StageError(stage.name, e))
        except KeyboardInterrupt as e:
            return StageResult(stage.name, error=StageError(stage.name, e))
        return StageResult(stage.name, value=ctx.build_dir)
