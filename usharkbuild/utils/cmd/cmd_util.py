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

import shlex
import subprocess
import time
from threading import Timer

DEFAULT_TIMEOUT_SECOND = 10


def format_command(command):
    if isinstance(command, str):
        return command
    return " ".join(shlex.quote(str(x)) for x in command)


def run_command(command, cwd=None, env=None):
    """
    Run a command with its output streamed to the console.

    Native builds can take a long time and print a lot, so nothing is
    captured here and no timeout is applied.

    Returns:
        int: exit code of the command
    """
    print(f"build cmd: [{format_command(command)}]", flush=True)
    return subprocess.call(
        [str(x) for x in command],
        cwd=None if cwd is None else str(cwd),
        env=env,
    )


def exec_command(command, cwd=None, env=None):
    # timeout is 3 hours
    return exec_command_with_timeout_second(command, 3 * 3600, cwd=cwd, env=env)


def exec_command_with_timeout_second(
    command,
    timeout_second=DEFAULT_TIMEOUT_SECOND,
    cwd=None,
    env=None,
):
    start_mills = int(time.time() * 1000)
    compile_popen = subprocess.Popen(
        [str(x) for x in command],
        cwd=None if cwd is None else str(cwd),
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )
    timer = Timer(timeout_second, lambda process: process.kill(), [compile_popen])
    try:
        timer.start()
        stdout, _ = compile_popen.communicate()
    finally:
        timer.cancel()
    err_code = compile_popen.returncode
    err_msg = decode_bytes(stdout or b"")
    if err_code == -9 and not err_msg:
        use_time = int(time.time() * 1000) - start_mills
        err_msg = f"Failed for timeout({err_code}), use_time: {use_time}ms"
    return err_code, err_msg


def decode_bytes(input: bytes) -> str:
    try:
        return bytes.decode(input, "UTF-8")
    except UnicodeDecodeError:
        return bytes.decode(input, "latin-1")
