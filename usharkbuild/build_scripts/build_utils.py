#!/usr/bin/env python3
# -- coding: utf-8 --
#
# build_utils.py
# ushark-build
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
Build utility functions shared by the fetcher, the stages and the packager.

- Directory handling (fresh build directories, recursive removal)
- File checksums
- Host detection (NDK host tag, default job count)
- Human readable sizes for the clean command
"""

import hashlib
import multiprocessing
import os
import platform
import shutil
from pathlib import Path


def system_architecture_is64():
    return platform.machine().endswith("64")


def get_ndk_host_tag():
    """
    Get the NDK host platform tag for toolchain paths.

    Returns:
        str: Platform tag (e.g., "darwin-x86_64", "linux-x86_64", "windows")

    Note:
        The NDK ships x86_64 host binaries only; Apple silicon runs them
        through Rosetta, so "darwin-x86_64" is returned there as well.
    """
    system_str = platform.system().lower()
    if system_architecture_is64():
        system_str = system_str + "-x86_64"
    return system_str


def default_jobs():
    """Parallel jobs for native builds: all CPUs but one, at least one."""
    return max(1, multiprocessing.cpu_count() - 1)


def remove_path(path):
    """Remove a file, symlink or directory tree; missing paths are ignored."""
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def clean(path):
    """
    Discard the contents of a build directory and recreate it empty.

    Args:
        path: Build directory path to clean

    Returns:
        Path: the (now empty) directory
    """
    path = Path(path)
    remove_path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def copy_file(src, dst):
    """
    Copy src to dst, creating the parent directory of dst if needed.

    If dst is an existing directory the file keeps its name.
    """
    dst = Path(dst)
    if dst.is_dir():
        dst = dst / Path(src).name
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)
    return dst


def calculate_sha256(file_path):
    """
    Calculate SHA256 checksum of a file.

    Args:
        file_path: Path to file

    Returns:
        SHA256 checksum as hex string
    """
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for byte_block in iter(lambda: f.read(65536), b""):
            sha256_hash.update(byte_block)
    return sha256_hash.hexdigest()


def get_dir_size(path):
    """Get total size of directory in bytes"""
    total_size = 0
    for dirpath, dirnames, filenames in os.walk(path):
        for filename in filenames:
            filepath = os.path.join(dirpath, filename)
            if not os.path.islink(filepath):
                total_size += os.path.getsize(filepath)
    return total_size


def format_size(size_bytes):
    """Format bytes to human-readable size"""
    for unit in ["B", "KB", "MB", "GB"]:
        if size_bytes < 1024.0:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.2f} TB"
