#!/usr/bin/env python3
import shlex
import shutil
import logging
import subprocess
from typing import Sequence

from banner.core import constants

logger = logging.getLogger("banner.commands")

# Exit statuses used when the command never produced one
MISSING_TOOL_RC = 127
TIMEOUT_RC = 124


def is_command_available(command: str) -> bool:
    return shutil.which(command) is not None


def run_cmd(cmd: Sequence[str], timeout: int = constants.DEFAULT_COMMAND_TIMEOUT) -> subprocess.CompletedProcess:
    """Run a command and return the CompletedProcess.

    Never raises for a failing command: a missing binary comes back with
    status 127 and a timeout with status 124, both with a message on stderr.
    """
    logger.debug("Executing: %s", shlex.join(cmd))
    try:
        return subprocess.run(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        return subprocess.CompletedProcess(list(cmd), MISSING_TOOL_RC, "", f"{cmd[0]}: command not found")
    except subprocess.TimeoutExpired:
        return subprocess.CompletedProcess(list(cmd), TIMEOUT_RC, "", f"{cmd[0]}: timed out after {timeout}s")
