"""
Command runner — the single place where external commands are executed.

Every adapter and the probe go through here, so timeouts, logging and
error classification are handled once. Children are started in their
own session: an operator's Ctrl-C reaches the provisioner, not the
package manager in the middle of an install.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from collections.abc import Mapping
from dataclasses import dataclass

from homelab.core.errors import ActionError, ActionTimeoutError

logger = logging.getLogger(__name__)

# Keep stored output bounded
_MAX_OUTPUT = 4000


@dataclass
class CommandResult:
    """Outcome of one external command."""

    command: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return self.stdout.strip()[-_MAX_OUTPUT:]


class CommandRunner:
    """Run commands with a timeout and classify failures.

    ``label`` names the action or resource on whose behalf the command
    runs; it ends up in error messages.
    """

    def available(self, binary: str) -> bool:
        return shutil.which(binary) is not None

    def run(
        self,
        command: list[str],
        *,
        label: str = "",
        timeout: float | None = None,
        input: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a command.

        Args:
            command: Argument vector (no shell unless the caller asks
                for one explicitly, e.g. ``["bash", "-c", ...]``).
            label: Action id or resource reference for error messages.
            timeout: Seconds before the command is killed.
            input: Text piped to stdin.
            env: Extra environment variables.
            cwd: Working directory.
            check: Raise ActionError on a non-zero exit.

        Raises:
            ActionTimeoutError: The command exceeded ``timeout``.
            ActionError: The command could not start, or exited non-zero
                while ``check`` is set.
        """
        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        logger.debug("Executing: %s (cwd=%s)", " ".join(command), cwd)
        start = time.monotonic()

        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input,
                env=full_env,
                cwd=cwd,
                start_new_session=True,
            )
        except subprocess.TimeoutExpired as e:
            raise ActionTimeoutError(label or command[0], timeout or 0) from e
        except FileNotFoundError as e:
            raise ActionError(label or command[0], f"command not found: {command[0]}") from e
        except OSError as e:
            raise ActionError(label or command[0], f"cannot execute {command[0]}: {e}") from e

        result = CommandResult(
            command=list(command),
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )

        if check and not result.ok:
            detail = result.stderr.strip()[-_MAX_OUTPUT:] or result.output
            message = f"{command[0]} exited with code {result.returncode}"
            if detail:
                message += f": {detail}"
            raise ActionError(label or command[0], message)

        return result
