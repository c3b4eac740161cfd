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
Dependency fetching for ushark-build.

Two kinds of dependencies are supported:
- Checksummed archives: downloaded once into the modules directory,
  verified against a pinned SHA256 and extracted with the top-level
  directory stripped.
- Git checkouts: cloned once, then fetched and hard-reset to the pinned
  tag/branch/commit on every run.

The modules directory doubles as the cache: a second ensure() of the same
archive performs no network access.
"""

import json
import os
import tarfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from usharkbuild.build_scripts.build_utils import (
    calculate_sha256,
    format_size,
    remove_path,
)
from usharkbuild.build_scripts.errors import DependencyError, IntegrityError
from usharkbuild.utils.cmd.cmd_util import exec_command

LOCK_FILE_NAME = "ushark-build.lock"

# extraction filters only exist on 3.12 and the 3.8-3.11 security releases
TAR_EXTRACT_KWARGS = {"filter": "data"} if hasattr(tarfile, "data_filter") else {}


class Dependency:
    """Represents a single dependency"""

    def __init__(self, name: str, spec: Dict[str, str]):
        """
        Initialize a dependency.

        Args:
            name: Dependency name, also the directory name under modules/
            spec: {"url", "sha256"} for archives or {"git", "tag"} for checkouts
        """
        self.name = name
        self.spec = spec
        self.dep_type = self._determine_type()

    def _determine_type(self) -> str:
        if not isinstance(self.spec, dict):
            raise DependencyError(f"Invalid dependency specification type for '{self.name}': {type(self.spec)}")
        if "git" in self.spec:
            if not self.spec.get("tag"):
                raise DependencyError(f"Git dependency '{self.name}' needs a tag, branch or commit to pin")
            return "git"
        if "url" in self.spec:
            return "archive"
        raise DependencyError(f"Unknown dependency specification for '{self.name}': {self.spec}")

    @property
    def url(self) -> str:
        return self.spec.get("url") or self.spec.get("git")

    @property
    def integrity(self) -> Optional[str]:
        """Expected sha256 for archives, the pin for checkouts"""
        if self.dep_type == "git":
            return self.spec["tag"]
        return self.spec.get("sha256") or None

    @property
    def archive_name(self) -> str:
        return PurePosixPath(urlparse(self.spec["url"]).path).name

    def __repr__(self):
        return f"Dependency(name={self.name}, type={self.dep_type}, spec={self.spec})"


class DependencyManager:
    """Fetches dependencies into the shared modules directory"""

    def __init__(self, modules_dir, session: requests.Session = None, timeout: int = 60, retries: int = 3):
        """
        Initialize the dependency manager.

        Args:
            modules_dir: Directory holding downloaded archives and extracted sources
            session: HTTP session to download with (default: one with a retry policy)
            timeout: Per-request timeout in seconds
            retries: Retries for failed connections and 5xx responses
        """
        self.modules_dir = Path(modules_dir)
        self.modules_dir.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self.session = session or self._create_session(retries)

        self.lock_file = self.modules_dir / LOCK_FILE_NAME
        self.lock_data = self._load_lock_file()

    def _create_session(self, retries: int) -> requests.Session:
        """Create HTTP session with retry strategy."""
        session = requests.Session()

        retry = Retry(
            total=retries,
            read=retries,
            connect=retries,
            backoff_factor=0.3,
            status_forcelist=(500, 502, 503, 504),
        )

        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def _load_lock_file(self) -> Dict:
        """Load the lock file if it exists"""
        if self.lock_file.exists():
            try:
                with open(self.lock_file, "r") as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                print(f"[WARNING] Failed to load {self.lock_file}: {e}")
        return {}

    def _save_lock_file(self):
        """Save the current lock data to file"""
        with open(self.lock_file, "w") as f:
            json.dump(self.lock_data, f, indent=2, sort_keys=True)

    def _run_git_command(self, args: List[str], cwd=None) -> Tuple[int, str]:
        """
        Run a git command.

        Args:
            args: Git command arguments (without 'git' prefix)
            cwd: Working directory

        Returns:
            Tuple of (return_code, output)
        """
        cmd = ["git"] + args
        try:
            return exec_command(cmd, cwd=cwd)
        except OSError as e:
            raise DependencyError(f"Failed to run git command: {e}")

    def _git(self, args: List[str], cwd=None) -> str:
        returncode, output = self._run_git_command(args, cwd=cwd)
        if returncode != 0:
            raise DependencyError(f"git {' '.join(args)} failed ({returncode}): {output.strip()}")
        return output

    def download(self, url: str, dest: Path):
        """
        Download url to dest.

        The body is streamed into a ".part" file that is renamed on success,
        so an interrupted download never looks like a cached archive.
        """
        print(f"Downloading {dest.name} ...", flush=True)
        part = dest.with_name(dest.name + ".part")
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout)
            try:
                response.raise_for_status()
                with open(part, "wb") as f:
                    for chunk in response.iter_content(chunk_size=65536):
                        if chunk:
                            f.write(chunk)
            finally:
                response.close()
            os.replace(part, dest)
        except (requests.RequestException, OSError) as e:
            remove_path(part)
            raise DependencyError(f"Failed to download {url}: {e}")
        print(f"Downloaded {dest.name} ({format_size(dest.stat().st_size)})")

    def verify(self, dep: Dependency, archive: Path) -> str:
        """
        Check the archive against the dependency's pinned sha256.

        Without a pin the check is skipped with a warning, and the computed
        checksum is printed so it can be pinned.

        Raises:
            IntegrityError: checksum mismatch
        """
        actual = calculate_sha256(archive)
        expected = dep.integrity
        if expected:
            if actual.lower() != expected.lower():
                raise IntegrityError(archive, expected, actual)
            print(f"{archive}: OK")
        else:
            print(f"[WARNING] Checksum verification skipped for {archive}")
            print(f"SHA256: {actual}")
        return actual

    def _strip_components(self, members, archive: Path):
        # equivalent of tar --strip-components=1
        for member in members:
            parts = PurePosixPath(member.name).parts
            if len(parts) <= 1:
                continue
            stripped = PurePosixPath(*parts[1:])
            if stripped.is_absolute() or ".." in stripped.parts:
                raise DependencyError(f"Unsafe path in {archive}: {member.name}")
            member.name = str(stripped)
            if member.islnk():
                link_parts = PurePosixPath(member.linkname).parts
                member.linkname = str(PurePosixPath(*link_parts[1:])) if len(link_parts) > 1 else ""
            yield member

    def extract_archive(self, archive: Path, dest: Path) -> Path:
        """
        Extract archive into a fresh dest directory, dropping the archive's
        top-level folder.
        """
        remove_path(dest)
        dest.mkdir(parents=True)
        try:
            with tarfile.open(archive, "r:*") as tar:
                members = list(self._strip_components(tar.getmembers(), archive))
                tar.extractall(dest, members=members, **TAR_EXTRACT_KWARGS)
        except (tarfile.TarError, OSError) as e:
            raise DependencyError(f"Failed to extract {archive}: {e}")
        return dest

    def ensure_archive(self, dep: Dependency) -> Path:
        archive = self.modules_dir / dep.archive_name
        if not archive.is_file():
            self.download(dep.url, archive)

        checksum = self.verify(dep, archive)
        target_dir = self.extract_archive(archive, self.modules_dir / dep.name)

        self.lock_data[dep.name] = {
            "type": "archive",
            "url": dep.url,
            "sha256": checksum,
            "path": str(target_dir),
        }
        return target_dir

    def ensure_git(self, dep: Dependency) -> Path:
        target_dir = self.modules_dir / dep.name
        if not (target_dir / ".git").is_dir():
            remove_path(target_dir)
            print(f"Cloning {dep.url} ...", flush=True)
            self._git(["clone", dep.url, str(target_dir)])

        self._git(["fetch", "--tags", "--force"], cwd=target_dir)
        self._git(["reset", "--hard", dep.integrity], cwd=target_dir)
        commit_hash = self._git(["rev-parse", "HEAD"], cwd=target_dir).strip()
        print(f"{dep.name}: {dep.integrity} ({commit_hash[:12]})")

        self.lock_data[dep.name] = {
            "type": "git",
            "git": dep.url,
            "tag": dep.integrity,
            "commit": commit_hash,
            "path": str(target_dir),
        }
        return target_dir

    def ensure(self, dep: Dependency) -> Path:
        """
        Make the dependency's sources available under modules/<name>.

        Returns:
            Path to the extracted sources or the checkout
        """
        if dep.dep_type == "git":
            return self.ensure_git(dep)
        return self.ensure_archive(dep)

    def resolve_all_dependencies(self, dependencies: Dict[str, Any]) -> Dict[str, Path]:
        """
        Ensure every dependency, in order, and save the lock file.

        Args:
            dependencies: Dictionary of dependency name to specification

        Returns:
            Dictionary mapping dependency name to its source directory
        """
        resolved = {}
        for name, spec in dependencies.items():
            dep = Dependency(name, spec)
            resolved[name] = self.ensure(dep)
        self._save_lock_file()
        return resolved
