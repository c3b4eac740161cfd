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
Errors raised while building libushark.

Every error aborts the whole run. The CLI turns them into a non-zero
exit status; ArgumentError subclasses additionally print the usage.
"""


class UsharkBuildError(Exception):
    """Base class of all ushark-build errors"""
    pass


class ArgumentError(UsharkBuildError):
    """Bad or unknown command line input"""
    pass


class InvalidTargetError(ArgumentError):
    """ABI identifier outside the supported set"""

    def __init__(self, abi):
        super().__init__(f"Invalid ABI: {abi}")
        self.abi = abi


class InvalidBuildTypeError(ArgumentError):
    """Build type other than debug/release"""

    def __init__(self, build_type):
        super().__init__(f"Bad build type: {build_type}")
        self.build_type = build_type


class PreconditionError(UsharkBuildError):
    """A required external tool, path or environment variable is missing"""
    pass


class ToolchainMissingError(PreconditionError):
    """The Android NDK or one of its support files is missing"""
    pass


class ConfigError(PreconditionError):
    """ushark-build.toml could not be read"""
    pass


class DependencyError(UsharkBuildError):
    """A dependency could not be downloaded, extracted or checked out"""
    pass


class IntegrityError(DependencyError):
    """Checksum mismatch on a downloaded archive"""

    def __init__(self, path, expected, actual):
        super().__init__(
            f"Checksum verification failed for {path}: expected {expected}, got {actual}"
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class CommandError(UsharkBuildError):
    """An external command exited with a non-zero status"""

    def __init__(self, command, returncode):
        super().__init__(f"command exited with status {returncode}: {command}")
        self.command = command
        self.returncode = returncode


class StageError(UsharkBuildError):
    """A build stage failed; carries the name of the stage"""

    def __init__(self, stage_name, cause):
        super().__init__(f"{stage_name}: {cause}")
        self.stage_name = stage_name
        self.cause = cause


class ArtifactError(UsharkBuildError):
    """The produced shared object is unusable"""
    pass


class TextRelocationError(ArtifactError):
    """The artifact contains text relocations and would not load on Android"""

    def __init__(self, path):
        super().__init__(f".text relocation found in {path}, this is a bug")
        self.path = path
