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
Drive the ABI x stage build matrix for Android.

For every selected ABI, in the order of ABIS, every selected stage runs in
the order of STAGES. Each ABI has its own build tree build/<abi>/ and its
own staging prefix build/<abi>/install/, so nothing is shared between
ABIs except the fetched sources and the host lemon tool.
"""

import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from usharkbuild.build_scripts.build_config import BuildConfig
from usharkbuild.build_scripts.build_utils import default_jobs, remove_path
from usharkbuild.build_scripts.dependency_manager import DependencyManager
from usharkbuild.build_scripts.errors import ArgumentError, InvalidTargetError
from usharkbuild.build_scripts.packager import ArtifactPackager
from usharkbuild.build_scripts.stages import STAGES, Stage, StageExecutor
from usharkbuild.build_scripts.toolchain import ABIS, Toolchain, validate_build_type

INSTALL_DIR_NAME = "install"


def select_abis(abis: Optional[Iterable[str]]) -> List[str]:
    """
    Keep the build order of ABIS for the requested subset.

    Raises:
        InvalidTargetError: a requested ABI matched nothing
    """
    if not abis:
        return list(ABIS)
    requested = list(abis)
    for abi in requested:
        if abi not in ABIS:
            raise InvalidTargetError(abi)
    return [abi for abi in ABIS if abi in requested]


def select_stages(stages, stage_name: Optional[str]) -> List[Stage]:
    if not stage_name:
        return list(stages)
    selected = [stage for stage in stages if stage.name == stage_name]
    if not selected:
        names = ", ".join(stage.name for stage in stages)
        raise ArgumentError(f"Unknown build stage '{stage_name}', expected one of: {names}")
    return selected


class AndroidBuild:
    """One invocation of the build pipeline"""

    def __init__(self, config: BuildConfig, toolchain: Optional[Toolchain] = None,
                 dependency_manager: Optional[DependencyManager] = None, stages=STAGES, environ=None):
        self.config = config
        self.environ = environ
        self._toolchain = toolchain
        self._dependency_manager = dependency_manager
        self.stages = tuple(stages)
        self.packager = ArtifactPackager(config.dist_dir)

    @property
    def toolchain(self) -> Toolchain:
        if self._toolchain is None:
            ndk_root = self.config.get_ndk_root(self.environ)
            self._toolchain = Toolchain(ndk_root, self.config.min_sdk)
        return self._toolchain

    @property
    def dependency_manager(self) -> DependencyManager:
        if self._dependency_manager is None:
            self._dependency_manager = DependencyManager(
                self.config.modules_dir,
                timeout=self.config.download_timeout,
                retries=self.config.download_retries,
            )
        return self._dependency_manager

    def build_root(self, abi) -> Path:
        return self.config.build_dir / abi

    def staging_prefix(self, abi) -> Path:
        return self.build_root(abi) / INSTALL_DIR_NAME

    def reset_abi(self, abi):
        """Drop everything a previous run left for abi"""
        remove_path(self.build_root(abi))
        remove_path(self.packager.artifact_dir(abi))

    def run(self, abis=None, stage=None, build_type="release", jobs=None) -> Dict[str, Path]:
        """
        Build the selected stages for the selected ABIs.

        Args:
            abis: ABIs to build, all of ABIS when empty
            stage: Only run this stage, relying on the staging prefix left by
                earlier runs; all stages when empty
            build_type: "debug" or "release"
            jobs: Parallel jobs for the native builds

        Returns:
            Dict mapping each ABI to its artifact, for runs that package

        Raises:
            ArgumentError: invalid ABI, stage, build type or job count
            PreconditionError: the NDK or its configuration is missing
            DependencyError: fetching or verifying a dependency failed
            StageError: a stage failed, tagged with the stage name
        """
        build_type = validate_build_type(build_type)
        selected_abis = select_abis(abis)
        selected_stages = select_stages(self.stages, stage)
        if jobs is None:
            jobs = default_jobs()
        elif jobs <= 0:
            raise ArgumentError(f"Invalid number of jobs: {jobs}")

        before_time = time.time()
        print(
            f"==================Android Build, abis: {selected_abis}, "
            f"stage: {stage or 'all'}, type: {build_type}, jobs: {jobs}=================="
        )

        toolchain = self.toolchain
        toolchain.check()
        print(f"NDK: {toolchain.ndk_root}")

        print("==================Fetch Dependencies==================")
        sources = self.dependency_manager.resolve_all_dependencies(self.config.dependencies)

        executor = StageExecutor(
            sources,
            self.config.build_dir,
            jobs,
            self.config.lock_obj_dir,
            self.config.host_build_dir,
            self.packager,
        )

        if any(s.host_tools for s in selected_stages):
            result = executor.run_host_tools()
            if result.is_failure():
                raise result.get_error()

        success_abis = []
        artifacts = {}
        try:
            for abi in selected_abis:
                env = toolchain.resolve(abi, build_type)
                print(f"## Target ABI: {abi}")

                if not stage:
                    self.reset_abi(abi)
                staging_prefix = self.staging_prefix(abi)
                staging_prefix.mkdir(parents=True, exist_ok=True)

                for s in selected_stages:
                    print(f"[+] Build {s.name}...")
                    result = executor.run(s, env, staging_prefix)
                    if result.is_failure():
                        raise result.get_error()

                artifact = self.packager.artifact_path(abi)
                if artifact.is_file():
                    artifacts[abi] = artifact
                success_abis.append(abi)
        finally:
            self.print_summary(selected_abis, success_abis, artifacts, before_time)

        return artifacts

    def print_summary(self, build_abis, success_abis, artifacts, before_time):
        print("==================Android Build Done========================")
        print(f"Build All:{build_abis}")
        print(f"Build Success:{success_abis}")
        print(f"Build Failed:{[abi for abi in build_abis if abi not in success_abis]}")
        if artifacts:
            print("==================Output========================")
            for abi, path in artifacts.items():
                print(f"{abi}: {path}")
        print(f"use time: {int(time.time() - before_time)}")
