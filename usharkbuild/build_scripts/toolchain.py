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
Android NDK cross-compilation environments.

One AbiTarget record per supported ABI holds everything that differs
between targets. resolve_environment() combines a target with a build
type into an immutable BuildEnvironment that every stage reads.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from usharkbuild.build_scripts.build_config import MIN_SDK
from usharkbuild.build_scripts.build_utils import get_ndk_host_tag
from usharkbuild.build_scripts.errors import (
    InvalidBuildTypeError,
    InvalidTargetError,
    ToolchainMissingError,
)


@dataclass(frozen=True)
class AbiTarget:
    abi: str
    cpu: str  # meson cpu_family
    host: str  # autotools --host triple
    tools_prefix: str  # clang wrapper name, API level appended
    gpgerr_lockobj: str  # header shipped in gpgerror-lock-obj/
    gpgerr_lockobj_dest: str  # name libgpg-error looks for in src/syscfg/
    cflags: Tuple[str, ...] = ()
    ldflags: Tuple[str, ...] = ()
    # build libgcrypt with the generic C mpih-add1/mpih-sub1
    gcrypt_generic_mpi: bool = False


ABI_TARGETS = {
    "armeabi-v7a": AbiTarget(
        abi="armeabi-v7a",
        cpu="arm",
        host="arm-linux-androideabi",
        tools_prefix="armv7a-linux-androideabi",
        gpgerr_lockobj="lock-obj-pub.arm-unknown-linux-androideabi.h",
        gpgerr_lockobj_dest="lock-obj-pub.arm-unknown-linux-androideabi.h",
        cflags=("-march=armv7-a", "-mfloat-abi=softfp", "-mfpu=vfpv3-d16", "-mthumb"),
        ldflags=("-march=armv7-a", "-Wl,--fix-cortex-a8"),
    ),
    "arm64-v8a": AbiTarget(
        abi="arm64-v8a",
        cpu="aarch64",
        host="aarch64-linux-android",
        tools_prefix="aarch64-linux-android",
        gpgerr_lockobj="lock-obj-pub.aarch64-unknown-linux-android.h",
        gpgerr_lockobj_dest="lock-obj-pub.aarch64-unknown-linux-android.h",
    ),
    "x86": AbiTarget(
        abi="x86",
        cpu="x86",
        host="i686-linux-android",
        tools_prefix="i686-linux-android",
        gpgerr_lockobj="lock-obj-pub.i686-linux-android.h",
        # the NDK triple for x86 does not match the name libgpg-error expects
        gpgerr_lockobj_dest="lock-obj-pub.linux-android.h",
        gcrypt_generic_mpi=True,
    ),
    "x86_64": AbiTarget(
        abi="x86_64",
        cpu="x86_64",
        host="x86_64-linux-android",
        tools_prefix="x86_64-linux-android",
        gpgerr_lockobj="lock-obj-pub.linux-android.h",
        gpgerr_lockobj_dest="lock-obj-pub.linux-android.h",
    ),
}

# Build order across ABIs
ABIS = ("armeabi-v7a", "arm64-v8a", "x86", "x86_64")

BUILD_TYPES = ("debug", "release")

# -f* together with gc-sections and exclude-libs removes unused functions
_RELEASE_GC_CFLAGS = ("-fvisibility=hidden", "-ffunction-sections", "-fdata-sections")
_RELEASE_GC_LDFLAGS = ("-Wl,--gc-sections", "-Wl,--exclude-libs=ALL")

_BUILD_TYPE_CFLAGS = {
    "release": ("-O2",),
    "debug": ("-g", "-O0"),
}


@dataclass(frozen=True)
class BuildEnvironment:
    target: AbiTarget
    build_type: str
    min_sdk: int
    ndk_root: Path
    toolchain_bin: Path
    cc: str
    ar: str
    ranlib: str
    nm: str
    strip: str
    objcopy: str
    readelf: str
    cflags: Tuple[str, ...]
    ldflags: Tuple[str, ...]
    # only used when linking the final shared object
    link_gc_flags: Tuple[str, ...] = field(default=())

    @property
    def abi(self) -> str:
        return self.target.abi

    @property
    def host(self) -> str:
        return self.target.host

    @property
    def cpu(self) -> str:
        return self.target.cpu

    @property
    def is_release(self) -> bool:
        return self.build_type == "release"

    @property
    def cmake_build_type(self) -> str:
        return "Release" if self.is_release else "Debug"

    @property
    def meson_build_type(self) -> str:
        return self.build_type

    @property
    def cmake_toolchain_file(self) -> Path:
        return self.ndk_root / "build" / "cmake" / "android.toolchain.cmake"

    def env(self, base: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Process environment for autotools/meson/cmake invocations"""
        env = dict(os.environ if base is None else base)
        env["PATH"] = os.pathsep.join([str(self.toolchain_bin), env.get("PATH", "")])
        env.update({
            "CC": self.cc,
            "AR": self.ar,
            "RANLIB": self.ranlib,
            "NM": self.nm,
            "STRIP": self.strip,
            "OBJCOPY": self.objcopy,
            "READELF": self.readelf,
            "CFLAGS": " ".join(self.cflags),
            "LDFLAGS": " ".join(self.ldflags),
        })
        return env


def get_abi_target(abi: str) -> AbiTarget:
    try:
        return ABI_TARGETS[abi]
    except (KeyError, TypeError):
        raise InvalidTargetError(abi)


def validate_build_type(build_type: str) -> str:
    if build_type not in BUILD_TYPES:
        raise InvalidBuildTypeError(build_type)
    return build_type


def resolve_environment(abi: str, build_type: str, ndk_root, min_sdk: int = MIN_SDK,
                        host_tag: Optional[str] = None) -> BuildEnvironment:
    """
    Derive the cross-compilation environment for one ABI and build type.

    Pure: the NDK is only referenced by path, nothing is checked on disk.

    Raises:
        InvalidTargetError: abi is not one of ABIS
        InvalidBuildTypeError: build_type is not debug/release
    """
    target = get_abi_target(abi)
    validate_build_type(build_type)

    ndk_root = Path(ndk_root)
    toolchain_bin = ndk_root / "toolchains" / "llvm" / "prebuilt" / (host_tag or get_ndk_host_tag()) / "bin"

    cflags = list(_BUILD_TYPE_CFLAGS[build_type]) + ["-fPIC"]
    link_gc_flags = ()
    if build_type == "release":
        cflags += _RELEASE_GC_CFLAGS
        link_gc_flags = _RELEASE_GC_LDFLAGS
    cflags += target.cflags

    def tool(name):
        return str(toolchain_bin / name)

    return BuildEnvironment(
        target=target,
        build_type=build_type,
        min_sdk=min_sdk,
        ndk_root=ndk_root,
        toolchain_bin=toolchain_bin,
        cc=tool(f"{target.tools_prefix}{min_sdk}-clang"),
        ar=tool("llvm-ar"),
        ranlib=tool("llvm-ranlib"),
        nm=tool("llvm-nm"),
        strip=tool("llvm-strip"),
        objcopy=tool("llvm-objcopy"),
        readelf=tool("llvm-readelf"),
        cflags=tuple(cflags),
        ldflags=tuple(target.ldflags),
        link_gc_flags=link_gc_flags,
    )


class Toolchain:
    """An installed Android NDK"""

    def __init__(self, ndk_root, min_sdk: int = MIN_SDK, host_tag: Optional[str] = None):
        self.ndk_root = Path(ndk_root)
        self.min_sdk = min_sdk
        self.host_tag = host_tag or get_ndk_host_tag()

    @property
    def cmake_toolchain_file(self) -> Path:
        return self.ndk_root / "build" / "cmake" / "android.toolchain.cmake"

    @property
    def toolchain_dir(self) -> Path:
        return self.ndk_root / "toolchains" / "llvm" / "prebuilt" / self.host_tag

    def check(self):
        """
        Fail fast when the NDK is not usable, before any stage runs.

        Raises:
            ToolchainMissingError: NDK root, cmake toolchain file or
                prebuilt llvm toolchain is missing
        """
        if not self.ndk_root.is_dir():
            raise ToolchainMissingError(f"The Android NDK root folder is missing: {self.ndk_root}")
        if not self.cmake_toolchain_file.is_file():
            raise ToolchainMissingError(
                f"The Android NDK cross compilation toolchain is missing: {self.cmake_toolchain_file}"
            )
        if not (self.toolchain_dir / "bin").is_dir():
            raise ToolchainMissingError(f"The Android NDK llvm toolchain is missing: {self.toolchain_dir}")

    def resolve(self, abi: str, build_type: str) -> BuildEnvironment:
        return resolve_environment(abi, build_type, self.ndk_root, self.min_sdk, self.host_tag)
