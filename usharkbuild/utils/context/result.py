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


# Outcome of one build stage, tagged with the stage that produced it
class StageResult:
    def __init__(self, stage, value=None, error=None):
        self.stage = stage
        self.value = value
        self.error = error

    def is_success(self):
        return self.error is None

    def is_failure(self):
        return self.error is not None

    def get_value(self, default=None):
        if self.is_success():
            return self.value
        else:
            return default

    def get_error(self, default=None):
        if self.is_failure():
            return self.error
        else:
            return default

    def __repr__(self):
        state = "ok" if self.is_success() else f"failed: {self.error}"
        return f"StageResult({self.stage}, {state})"
