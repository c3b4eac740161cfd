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

"""Build scripts for libushark and its Android dependencies."""

__all__ = [
    "build_android",
    "build_config",
    "build_utils",
    "dependency_manager",
    "errors",
    "packager",
    "patches",
    "stages",
    "toolchain",
]
