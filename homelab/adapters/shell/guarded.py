"""
Guarded command adapter — one-off commands with an idempotence guard.

A command declares how to tell it has already been applied: an
``unless`` check that exits 0, or a ``creates`` path that exists. The
guard is evaluated by the probe when planning and again after the
command runs, to confirm it took effect.
"""

from __future__ import annotations

import logging
from pathlib import Path

from homelab.adapters.base import Adapter, ExecutionContext
from homelab.adapters.shell.command import CommandRunner
from homelab.core.errors import ActionError

logger = logging.getLogger(__name__)

# Guards are read-only checks and should be quick
GUARD_TIMEOUT = 60.0


def shell_argv(command: str, user: str | None = None) -> list[str]:
    """Argument vector running ``command`` through bash, optionally as a user."""
    if user:
        return ["runuser", "-u", user, "--", "bash", "-lc", command]
    return ["bash", "-c", command]


def guard_holds(
    runner: CommandRunner,
    label: str,
    unless: str | None,
    creates: str | None,
    user: str | None = None,
    timeout: float | None = GUARD_TIMEOUT,
) -> bool | None:
    """Evaluate a command guard.

    Returns:
        True/False for the guard result, None when the command has no
        guard at all.

    Raises:
        ActionTimeoutError: If the ``unless`` check hangs.
    """
    if creates is None and unless is None:
        return None
    if creates is not None and Path(creates).exists():
        return True
    if unless is None:
        return False
    try:
        result = runner.run(
            shell_argv(unless, user),
            label=label,
            timeout=timeout,
            check=False,
        )
    except ActionError as e:
        if e.kind == "timeout":
            raise
        logger.debug("Guard for %s could not run: %s", label, e)
        return False
    return result.ok


class CommandAdapter(Adapter):
    """Run guarded one-off commands.

    Action params (run):
        command (str): Shell command line.
        unless (str | None): Guard command; exit 0 means applied.
        creates (str | None): Guard path; existing means applied.
        user (str | None): Run as this user with a login shell.
        environment (dict): Extra environment variables.
    """

    required_params = {"run": ("command",)}

    @property
    def name(self) -> str:
        return "command"

    def is_available(self) -> bool:
        return self.runner.available("bash")

    def check(self, context: ExecutionContext) -> bool | None:
        params = context.params
        return guard_holds(
            self.runner,
            context.action.id,
            params.get("unless"),
            params.get("creates"),
            params.get("user"),
            timeout=context.remaining(GUARD_TIMEOUT),
        )

    def execute(self, context: ExecutionContext) -> str:
        params = context.params
        result = self.runner.run(
            shell_argv(params["command"], params.get("user")),
            label=context.action.id,
            timeout=context.remaining(),
            env=params.get("environment") or None,
        )
        return result.output
