#
# Copyright 2024 boostkit Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from threading import Timer
from typing import List, Optional, Sequence

DEFAULT_TIMEOUT_SECOND = 10
# boost builds of all libraries for several archs can take a long time
BUILD_TIMEOUT_SECOND = 3 * 3600


def decode_bytes(input: bytes) -> str:
    """
    Decode bytes to string with fallback encoding support.

    Attempts UTF-8 decoding first, falls back to latin-1 so that a stray
    byte in compiler output never aborts a build.
    """
    try:
        return bytes.decode(input, "UTF-8")
    except UnicodeDecodeError:
        return bytes.decode(input, "latin-1")


@dataclass
class CommandResult:
    """Outcome of one external command."""
    args: List[str]
    returncode: int
    output: str = ""
    duration: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        text = f"'{shlex.join(self.args)}' exited with {self.returncode}"
        if self.timed_out:
            text += f" (killed after timeout, use_time: {int(self.duration)}s)"
        return text


class CommandRunner:
    """
    Run external tools (b2, lipo, ar, xcodebuild, ...) and report a CommandResult.

    Combined stdout/stderr is streamed line by line into ``log_path`` when
    one is given, and always captured in the result. A command still running
    after ``timeout_second`` is killed.
    """

    def __init__(self, echo: bool = True):
        self.echo = echo

    def run(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        log_path: Optional[str] = None,
        timeout_second: float = BUILD_TIMEOUT_SECOND,
        env: Optional[dict] = None,
    ) -> CommandResult:
        args = [str(a) for a in args]
        if self.echo:
            print(shlex.join(args) if cwd is None else f"(cd {cwd}) {shlex.join(args)}")

        environment = None
        if env:
            environment = os.environ.copy()
            environment.update(env)

        start = time.time()
        try:
            compile_popen = subprocess.Popen(
                args,
                cwd=cwd,
                env=environment,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            # tool not installed or not executable
            return CommandResult(args, 127, str(e), time.time() - start)

        timer = Timer(timeout_second, lambda process: process.kill(), [compile_popen])
        chunks = []
        log_file = None
        try:
            timer.start()
            if log_path:
                os.makedirs(os.path.dirname(os.path.abspath(log_path)), exist_ok=True)
                log_file = open(log_path, "a", encoding="utf-8")
            for line in compile_popen.stdout:
                text = decode_bytes(line)
                chunks.append(text)
                if log_file:
                    log_file.write(text)
            compile_popen.wait()
        finally:
            timer.cancel()
            compile_popen.stdout.close()
            if log_file:
                log_file.close()

        err_code = compile_popen.returncode
        return CommandResult(
            args,
            err_code,
            "".join(chunks),
            time.time() - start,
            timed_out=err_code == -9,
        )

    def output(self, args: Sequence[str], timeout_second: float = DEFAULT_TIMEOUT_SECOND) -> Optional[str]:
        """Run a short probe command and return its stripped output, or None on failure."""
        result = self.run(args, timeout_second=timeout_second)
        if not result.ok:
            return None
        return result.output.strip()
