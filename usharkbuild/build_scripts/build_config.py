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
Configuration for ushark-build.

Defaults reproduce the pinned PCAPdroid build: NDK 26.3.11579264, minimum
SDK 21 and the fixed dependency list below. An optional ushark-build.toml
in the project directory can override them:

    [ndk]
    version = "26.3.11579264"
    min_sdk = 21
    root = "${HOME}/android-ndk"      # optional, skips ANDROID_HOME

    [paths]
    modules = "modules"
    build = "build"
    dist = "dist"
    lock_obj = "gpgerror-lock-obj"

    [download]
    timeout = 60
    retries = 3

    [dependencies.nghttp2]
    url = "https://mirror.example.com/nghttp2-1.62.1.tar.bz2"
    sha256 = "3966ec82..."
"""

import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, Optional

if sys.version_info >= (3, 11, 0, "alpha", 7):
    import tomllib
else:
    import tomli as tomllib

from usharkbuild.build_scripts.errors import ConfigError, PreconditionError

CONFIG_FILE_NAME = "ushark-build.toml"

NDK_VERSION = "26.3.11579264"
MIN_SDK = 21

LIBICONV_VERSION = "1.17"
LIBICONV_SHA256 = "8f74213b56238c85a50a5329f77e06198771e70dd9a739779f4c02f65d971313"
GLIB2_VERSION = "2.80.2"
GLIB2_SHA256 = "b9cfb6f7a5bd5b31238fd5d56df226b2dda5ea37611475bf89f6a0f9400fe8bd"
LIBGPGERROR_VERSION = "1.49"
LIBGPGERROR_SHA256 = "8b79d54639dbf4abc08b5406fb2f37e669a2dec091dd024fb87dd367131c63a9"
LIBGCRYPT_VERSION = "1.10.3"
LIBGCRYPT_SHA256 = "8b0870897ac5ac67ded568dcfadf45969cfa8a6beb0fd60af2a9eadc2a3272aa"
NGHTTP2_VERSION = "1.62.1"
NGHTTP2_SHA256 = "3966ec82fda7fc380506d372a260d8d9b6e946be4deaef1fecc1a74b4809ae3d"
WIRESHARK_TAG = "v4.1.0rc0-ushark"
USHARK_TAG = "pcapdroid-v1.8.0"

# glib publishes its tarballs under the major.minor directory
_GLIB2_SERIES = GLIB2_VERSION.rsplit(".", 1)[0]

# name -> spec; order is the order in which they are pulled
DEFAULT_DEPENDENCIES = {
    "libiconv": {
        "url": f"https://ftp.gnu.org/pub/gnu/libiconv/libiconv-{LIBICONV_VERSION}.tar.gz",
        "sha256": LIBICONV_SHA256,
    },
    "glib2": {
        "url": f"https://download.gnome.org/sources/glib/{_GLIB2_SERIES}/glib-{GLIB2_VERSION}.tar.xz",
        "sha256": GLIB2_SHA256,
    },
    "libgpg-error": {
        "url": f"https://www.gnupg.org/ftp/gcrypt/libgpg-error/libgpg-error-{LIBGPGERROR_VERSION}.tar.bz2",
        "sha256": LIBGPGERROR_SHA256,
    },
    "libgcrypt": {
        "url": f"https://gnupg.org/ftp/gcrypt/libgcrypt/libgcrypt-{LIBGCRYPT_VERSION}.tar.bz2",
        "sha256": LIBGCRYPT_SHA256,
    },
    "nghttp2": {
        "url": f"https://github.com/nghttp2/nghttp2/releases/download/v{NGHTTP2_VERSION}/nghttp2-{NGHTTP2_VERSION}.tar.bz2",
        "sha256": NGHTTP2_SHA256,
    },
    "wireshark": {
        "git": "https://github.com/emanuele-f/wireshark",
        "tag": WIRESHARK_TAG,
    },
    "ushark": {
        "git": "https://github.com/emanuele-f/ushark",
        "tag": USHARK_TAG,
    },
}

DEFAULT_PATHS = {
    "modules": "modules",
    "build": "build",
    "dist": "dist",
    "lock_obj": "gpgerror-lock-obj",
}


def _expand_env(value):
    """
    Expand environment variables in configuration values.

    Supports ${VAR_NAME} and $VAR_NAME syntax; unknown variables are kept.
    """
    if not isinstance(value, str):
        return value

    pattern1 = re.compile(r"\$\{([^}]+)\}")
    value = pattern1.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)

    pattern2 = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)")
    value = pattern2.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)

    return value


def _table(config, name) -> Dict[str, Any]:
    value = config.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _int(table, section, key, default) -> int:
    value = table.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"[{section}] {key} must be an integer: {value!r}")


def merge_dependencies(overrides: Dict[str, Any]) -> Dict[str, Dict[str, str]]:
    """
    Apply [dependencies.<name>] overrides to the default dependency list.

    A new url without a sha256 drops the pinned checksum: the old one
    cannot match a different archive. Unknown names are rejected, the
    build stages only know how to build the default list.
    """
    merged = {name: dict(spec) for name, spec in DEFAULT_DEPENDENCIES.items()}
    for name, override in overrides.items():
        if name not in merged:
            raise ConfigError(f"Unknown dependency in {CONFIG_FILE_NAME}: {name}")
        if not isinstance(override, dict):
            raise ConfigError(f"[dependencies.{name}] must be a table")
        spec = merged[name]
        override = {k: _expand_env(v) for k, v in override.items()}
        if "url" in spec:
            if "url" in override and "sha256" not in override:
                spec["sha256"] = ""
            for key in ("url", "sha256"):
                if key in override:
                    spec[key] = override[key]
        else:
            for key in ("git", "tag"):
                if key in override:
                    spec[key] = override[key]
    return merged


class BuildConfig:
    """Resolved configuration of one ushark-build invocation."""

    def __init__(self, project_dir, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.project_dir = Path(project_dir).resolve()

        ndk = _table(config, "ndk")
        self.ndk_version = str(_expand_env(ndk.get("version", NDK_VERSION)))
        self.min_sdk = _int(ndk, "ndk", "min_sdk", MIN_SDK)
        root = ndk.get("root", "")
        if not isinstance(root, str):
            raise ConfigError(f"[ndk] root must be a string: {root!r}")
        self.ndk_root_override = _expand_env(root) or None

        paths = dict(DEFAULT_PATHS)
        paths.update({k: _expand_env(v) for k, v in _table(config, "paths").items()})
        self.modules_dir = self._project_path(paths, "modules")
        self.build_dir = self._project_path(paths, "build")
        self.dist_dir = self._project_path(paths, "dist")
        self.lock_obj_dir = self._project_path(paths, "lock_obj")
        self.host_build_dir = self.build_dir / "host"

        download = _table(config, "download")
        self.download_timeout = _int(download, "download", "timeout", 60)
        self.download_retries = _int(download, "download", "retries", 3)

        self.dependencies = merge_dependencies(_table(config, "dependencies"))

    def _project_path(self, paths, key) -> Path:
        value = paths[key]
        if not isinstance(value, str):
            raise ConfigError(f"[paths] {key} must be a string: {value!r}")
        path = Path(value)
        if not path.is_absolute():
            path = self.project_dir / path
        return path

    def get_ndk_root(self, environ=None) -> Path:
        """
        Locate the NDK: [ndk] root if set, else $ANDROID_HOME/ndk/<version>.

        Raises:
            PreconditionError: ANDROID_HOME is needed but not set
        """
        if self.ndk_root_override:
            return Path(self.ndk_root_override)
        environ = os.environ if environ is None else environ
        android_home = environ.get("ANDROID_HOME")
        if not android_home:
            raise PreconditionError("The ANDROID_HOME environment variable is not set")
        return Path(android_home) / "ndk" / self.ndk_version


def load_config(project_dir=None) -> BuildConfig:
    """
    Load ushark-build.toml from project_dir (default: current directory).

    Returns a BuildConfig holding defaults when the file does not exist.
    """
    project_dir = Path(project_dir or os.getcwd())
    config_file = project_dir / CONFIG_FILE_NAME

    if not config_file.is_file():
        print(f"   ℹ️  {CONFIG_FILE_NAME} not found, using default configuration values")
        return BuildConfig(project_dir)

    try:
        with open(config_file, "rb") as f:
            toml_data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Error reading {config_file}: {e}")

    return BuildConfig(project_dir, toml_data)
