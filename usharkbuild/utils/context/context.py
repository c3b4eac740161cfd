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


# This context data class to save the context of the command
class CliContext:
    def __init__(self, project_dir=None):
        self.project_dir = project_dir
