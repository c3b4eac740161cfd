#!/usr/bin/env python3
"""
Tests for ushark-build.toml loading.

Run with: python3 -m pytest test_build_config.py
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from usharkbuild.build_scripts.build_config import (
    CONFIG_FILE_NAME,
    DEFAULT_DEPENDENCIES,
    NDK_VERSION,
    BuildConfig,
    load_config,
    merge_dependencies,
)
from usharkbuild.build_scripts.errors import ConfigError, PreconditionError


class TestLoadConfig(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name).resolve()

    def tearDown(self):
        self.temp_dir.cleanup()

    def write_config(self, text):
        (self.root / CONFIG_FILE_NAME).write_text(text)

    def test_defaults_without_file(self):
        with patch("builtins.print"):
            config = load_config(self.root)
        self.assertEqual(config.ndk_version, NDK_VERSION)
        self.assertEqual(config.min_sdk, 21)
        self.assertEqual(config.modules_dir, self.root / "modules")
        self.assertEqual(config.host_build_dir, self.root / "build" / "host")
        self.assertEqual(list(config.dependencies), list(DEFAULT_DEPENDENCIES))

    def test_values_and_env_expansion(self):
        self.write_config(
            '[ndk]\nmin_sdk = 24\nroot = "${USHARK_TEST_NDK}/ndk"\n'
            '[paths]\nbuild = "$USHARK_TEST_OUT/build"\n'
            '[download]\nretries = 5\n'
        )
        with patch.dict(os.environ, {"USHARK_TEST_NDK": "/opt/sdk", "USHARK_TEST_OUT": "/tmp/out"}):
            config = load_config(self.root)
        self.assertEqual(config.min_sdk, 24)
        self.assertEqual(config.get_ndk_root({}), Path("/opt/sdk/ndk"))
        self.assertEqual(config.build_dir, Path("/tmp/out/build"))
        self.assertEqual(config.download_retries, 5)

    def test_unparsable_file(self):
        self.write_config("[ndk\nversion = ")
        with self.assertRaises(ConfigError):
            load_config(self.root)

    def test_bad_min_sdk(self):
        with self.assertRaises(ConfigError):
            BuildConfig(self.root, {"ndk": {"min_sdk": "latest"}})

    def test_bad_download_values(self):
        self.write_config('[download]\ntimeout = "soon"\n')
        with self.assertRaisesRegex(ConfigError, r"\[download\] timeout"):
            load_config(self.root)
        with self.assertRaisesRegex(ConfigError, r"\[download\] retries"):
            BuildConfig(self.root, {"download": {"retries": [3]}})

    def test_sections_must_be_tables(self):
        for section in ("ndk", "paths", "download", "dependencies"):
            with self.subTest(section=section):
                with self.assertRaisesRegex(ConfigError, rf"\[{section}\] must be a table"):
                    BuildConfig(self.root, {section: "build"})

    def test_paths_must_be_strings(self):
        self.write_config("[paths]\nbuild = 42\n")
        with self.assertRaisesRegex(ConfigError, r"\[paths\] build"):
            load_config(self.root)
        with self.assertRaisesRegex(ConfigError, r"\[ndk\] root"):
            BuildConfig(self.root, {"ndk": {"root": 1}})

    def test_ndk_root_from_android_home(self):
        config = BuildConfig(self.root)
        self.assertEqual(
            config.get_ndk_root({"ANDROID_HOME": "/sdk"}),
            Path("/sdk") / "ndk" / NDK_VERSION,
        )
        with self.assertRaises(PreconditionError):
            config.get_ndk_root({})


class TestMergeDependencies(unittest.TestCase):
    def test_new_url_drops_pinned_checksum(self):
        merged = merge_dependencies({"nghttp2": {"url": "https://mirror.example.com/nghttp2.tar.bz2"}})
        self.assertEqual(merged["nghttp2"]["url"], "https://mirror.example.com/nghttp2.tar.bz2")
        self.assertEqual(merged["nghttp2"]["sha256"], "")
        # defaults are not modified
        self.assertNotEqual(DEFAULT_DEPENDENCIES["nghttp2"]["sha256"], "")

    def test_git_tag_override(self):
        merged = merge_dependencies({"wireshark": {"tag": "v4.2.0-ushark"}})
        self.assertEqual(merged["wireshark"]["tag"], "v4.2.0-ushark")
        self.assertEqual(merged["wireshark"]["git"], DEFAULT_DEPENDENCIES["wireshark"]["git"])

    def test_unknown_dependency(self):
        with self.assertRaises(ConfigError):
            merge_dependencies({"openssl": {"url": "https://example.com/openssl.tar.gz"}})


if __name__ == "__main__":
    unittest.main()
