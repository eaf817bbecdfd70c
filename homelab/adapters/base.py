"""
Adapter base — the protocol contract between the executor and host tools.

Adapters perform the side effects of one family of actions (apt,
systemd, files, commands, ufw, compose). The executor only talks to
them through the AdapterRegistry, never directly.

Adapters signal failure by raising ActionError (or ActionTimeoutError);
the registry turns every outcome into a Receipt, so nothing an adapter
does can escape into the executor loop.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from homelab.adapters.shell.command import CommandRunner
from homelab.core.errors import ActionTimeoutError
from homelab.core.models.action import Action


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action.

    ``timeout`` covers the whole action: every command an adapter
    starts for it, checks included, draws on one deadline fixed when
    the context is created.
    """

    action: Action
    timeout: float | None = None
    deadline: float | None = None  # time.monotonic() value

    def model_post_init(self, __context: Any) -> None:
        if self.timeout is not None and self.deadline is None:
            self.deadline = time.monotonic() + self.timeout

    @property
    def params(self) -> dict:
        return self.action.params

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self, cap: float | None = None) -> float | None:
        """Seconds a command may still take, at most ``cap``.

        Raises:
            ActionTimeoutError: The action's budget is used up.
        """
        if self.deadline is None:
            return cap
        left = self.deadline - time.monotonic()
        if left <= 0:
            raise ActionTimeoutError(self.action.id, self.timeout or 0)
        return left if cap is None else min(left, cap)


class Adapter(ABC):
    """Abstract base class for all adapters.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name, is_available, execute (and check if the
           action has an observable postcondition)
        3. Register it in the AdapterRegistry
    """

    # action kind → params that kind needs
    required_params: dict[str, tuple[str, ...]] = {}

    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or CommandRunner()

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'apt', 'systemd', 'ufw')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether this adapter's underlying tool is installed."""

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Check the action is one this adapter handles, with its params.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        kind = context.action.kind
        if kind not in self.required_params:
            valid = ", ".join(sorted(self.required_params))
            return False, f"Unknown action kind '{kind}'. Valid: {valid}"
        missing = [p for p in self.required_params[kind] if p not in context.params]
        if missing:
            return False, f"Missing required param(s): {', '.join(missing)}"
        return True, ""

    def check(self, context: ExecutionContext) -> bool | None:
        """Evaluate the action's postcondition against the live host.

        Returns:
            True if it already holds, False if not, None if the action
            has no observable postcondition (it always runs).
        """
        return None

    def precheck(self, context: ExecutionContext) -> bool | None:
        """Whether the action can be skipped before executing.

        Defaults to ``check``. Adapters whose postcondition can hold
        while the action is still needed return None here.
        """
        return self.check(context)

    @abstractmethod
    def execute(self, context: ExecutionContext) -> str:
        """Apply the action.

        Returns:
            Output worth keeping in the report (may be empty).

        Raises:
            ActionError: On failure.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
