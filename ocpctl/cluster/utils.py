from __future__ import annotations

import os
import shlex
import subprocess
from typing import Dict, List, Optional

from ocpctl.logger import logger


def run_command(
    command: List[str],
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    check: bool = True,
    capture_output: bool = False,
) -> subprocess.CompletedProcess:
    """
    Runs an external command and waits for it to finish.

    Args:
        command (List[str]): The command and its arguments.
        cwd (Optional[str]): The working directory of the command.
        env (Optional[Dict[str, str]]): Variables added to the current environment.
        timeout (Optional[float]): Seconds after which the command is killed.
        check (bool): Raise CalledProcessError on a non-zero exit code.
        capture_output (bool): Capture stdout and stderr as text.

    Returns:
        subprocess.CompletedProcess: The finished process.
    """
    logger.debug(f"Running: {shlex.join(command)}")

    full_env = None
    if env:
        full_env = {**os.environ, **env}

    return subprocess.run(
        command,
        cwd=cwd,
        env=full_env,
        timeout=timeout,
        check=check,
        capture_output=capture_output,
        text=capture_output or None,
    )
