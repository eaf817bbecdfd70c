"""
Systemd adapter — unit enablement and activity via systemctl.
"""

from __future__ import annotations

import logging

from homelab.adapters.base import Adapter, ExecutionContext
from homelab.adapters.shell.command import CommandRunner
from homelab.core.errors import ActionError
from homelab.core.models.state import ServiceState

logger = logging.getLogger(__name__)

# `is-enabled` answers that mean "nothing left to enable"
_ENABLED_STATES = {"enabled", "enabled-runtime", "static", "alias", "indirect", "generated"}


def unit_state(
    runner: CommandRunner, unit: str, label: str = "", timeout: float | None = 30
) -> ServiceState:
    """Read enablement and activity of a unit.

    Both systemctl queries exit non-zero for "no"; only their output
    is interpreted.

    Raises:
        ActionError: systemctl missing or hanging.
    """
    label = label or f"service:{unit}"
    enabled = runner.run(
        ["systemctl", "is-enabled", unit], label=label, timeout=timeout, check=False
    ).stdout.strip()
    active = runner.run(
        ["systemctl", "is-active", unit], label=label, timeout=timeout, check=False
    ).stdout.strip()
    return ServiceState(enabled=enabled in _ENABLED_STATES, active=active == "active")


class SystemdAdapter(Adapter):
    """Enable, disable, start, stop and restart systemd units.

    Action params:
        unit (str): Unit name.
        enable (bool | None): Desired enablement, None = leave as is.
        active (bool | None): Desired activity, None = leave as is.
    """

    required_params = {
        "enable": ("unit",),
        "disable": ("unit",),
        "start": ("unit",),
        "stop": ("unit",),
        "restart": ("unit",),
    }

    @property
    def name(self) -> str:
        return "systemd"

    def is_available(self) -> bool:
        return self.runner.available("systemctl")

    def check(self, context: ExecutionContext) -> bool | None:
        if context.action.kind == "restart":
            return None  # a restart is never "already done"
        params = context.params
        state = unit_state(
            self.runner, params["unit"], label=context.action.id, timeout=context.remaining(30)
        )
        if params.get("enable") is not None and state.enabled != params["enable"]:
            return False
        if params.get("active") is not None and state.active != params["active"]:
            return False
        return True

    def execute(self, context: ExecutionContext) -> str:
        params = context.params
        unit = params["unit"]
        enable = params.get("enable")
        active = params.get("active")

        if context.action.kind == "restart":
            commands = [["systemctl", "restart", unit]]
        else:
            commands = []
            if enable is not None:
                verb = "enable" if enable else "disable"
                # --now when the activity change goes the same way
                if active is not None and active == enable:
                    commands.append(["systemctl", verb, "--now", unit])
                    active = None
                else:
                    commands.append(["systemctl", verb, unit])
            if active is not None:
                commands.append(["systemctl", "start" if active else "stop", unit])

        if not commands:
            raise ActionError(context.action.id, "nothing to change")

        output = []
        for command in commands:
            result = self.runner.run(command, label=context.action.id, timeout=context.remaining())
            if result.output:
                output.append(result.output)
        return "\n".join(output)
