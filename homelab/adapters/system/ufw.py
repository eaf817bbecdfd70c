"""
UFW adapter — default policies, port rules and firewall activation.

Reading state:
    - active flag from ``ufw status``
    - rules from ``ufw show added`` (works while ufw is inactive,
      unlike ``ufw status``, which lists nothing then)
    - default policies from /etc/default/ufw
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from homelab.adapters.base import Adapter, ExecutionContext
from homelab.adapters.shell.command import CommandRunner
from homelab.core.errors import ActionError
from homelab.core.models.state import FirewallState

logger = logging.getLogger(__name__)

UFW_DEFAULTS = Path("/etc/default/ufw")

_POLICY_WORDS = {"DROP": "deny", "ACCEPT": "allow", "REJECT": "reject"}
_DEFAULT_KEYS = {"DEFAULT_INPUT_POLICY": "incoming", "DEFAULT_OUTPUT_POLICY": "outgoing"}

# ufw allow [in|out] 22/tcp [comment '...']
_ADDED_RULE = re.compile(
    r"^ufw\s+(?:route\s+)?(?P<action>allow|deny|reject|limit)"
    r"(?:\s+(?P<direction>in|out))?"
    r"\s+(?P<port>\d+)/(?P<proto>tcp|udp)\b"
)


def parse_ufw_status(text: str) -> bool:
    """Whether ``ufw status`` output reports the firewall active."""
    for line in text.splitlines():
        if line.strip().lower().startswith("status:"):
            return line.split(":", 1)[1].strip().lower() == "active"
    return False


def parse_ufw_added(text: str) -> frozenset[str]:
    """Rule tokens (``allow:22/tcp/in``) from ``ufw show added`` output.

    Rules that are not a plain port/protocol pair (application
    profiles, address-restricted rules) cannot match a declared rule
    and are ignored.
    """
    tokens = set()
    for line in text.splitlines():
        line = line.strip()
        match = _ADDED_RULE.match(line)
        if match is None:
            continue
        if " from " in line or " to " in line:
            continue
        direction = match.group("direction") or "in"
        tokens.add(
            f"{match.group('action')}:{match.group('port')}/{match.group('proto')}/{direction}"
        )
    return frozenset(tokens)


def parse_ufw_defaults(text: str) -> dict[str, str]:
    """Default policies from the contents of /etc/default/ufw."""
    defaults = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        direction = _DEFAULT_KEYS.get(key.strip())
        if direction is None:
            continue
        policy = _POLICY_WORDS.get(value.strip().strip('"').strip("'").upper())
        if policy:
            defaults[direction] = policy
    return defaults


def firewall_state(
    runner: CommandRunner,
    defaults_path: Path = UFW_DEFAULTS,
    label: str = "firewall",
    timeout: float | None = 30,
) -> FirewallState:
    """Read the live firewall state.

    A host without ufw reads as inactive with no rules and no defaults,
    so every declared firewall step is planned.

    Raises:
        ActionError: ufw present but failing.
    """
    if not runner.available("ufw"):
        return FirewallState()

    status = runner.run(["ufw", "status"], label=label, timeout=timeout)
    added = runner.run(["ufw", "show", "added"], label=label, timeout=timeout)
    try:
        defaults = parse_ufw_defaults(defaults_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        defaults = {}
    except OSError as e:
        raise ActionError(label, f"cannot read {defaults_path}: {e}") from e

    return FirewallState(
        active=parse_ufw_status(status.stdout),
        defaults=defaults,
        rules=parse_ufw_added(added.stdout),
    )


class UfwAdapter(Adapter):
    """Apply firewall defaults, rules and activation through ufw.

    Action params:
        firewall-default: direction (incoming|outgoing), policy
        firewall-<action>: action, port, protocol, direction, comment, rule
        firewall-enable / firewall-disable: enabled (bool)
    """

    required_params = {
        "firewall-default": ("direction", "policy"),
        "firewall-allow": ("port", "protocol", "direction", "rule"),
        "firewall-deny": ("port", "protocol", "direction", "rule"),
        "firewall-reject": ("port", "protocol", "direction", "rule"),
        "firewall-limit": ("port", "protocol", "direction", "rule"),
        "firewall-enable": (),
        "firewall-disable": (),
    }

    def __init__(self, runner: CommandRunner | None = None, defaults_path: Path = UFW_DEFAULTS):
        super().__init__(runner)
        self.defaults_path = defaults_path

    @property
    def name(self) -> str:
        return "ufw"

    def is_available(self) -> bool:
        return self.runner.available("ufw")

    def check(self, context: ExecutionContext) -> bool | None:
        state = firewall_state(
            self.runner, self.defaults_path, label=context.action.id, timeout=context.remaining(30)
        )
        kind = context.action.kind
        params = context.params
        if kind == "firewall-default":
            return state.defaults.get(params["direction"]) == params["policy"]
        if kind == "firewall-enable":
            return state.active
        if kind == "firewall-disable":
            return not state.active
        return params["rule"] in state.rules

    def execute(self, context: ExecutionContext) -> str:
        kind = context.action.kind
        params = context.params

        if kind == "firewall-default":
            command = ["ufw", "default", params["policy"], params["direction"]]
        elif kind == "firewall-enable":
            # --force skips the "may disrupt ssh connections" prompt
            command = ["ufw", "--force", "enable"]
        elif kind == "firewall-disable":
            command = ["ufw", "disable"]
        else:
            action = kind.removeprefix("firewall-")
            command = [
                "ufw",
                action,
                params["direction"],
                f"{params['port']}/{params['protocol']}",
            ]
            if params.get("comment"):
                command += ["comment", params["comment"]]

        result = self.runner.run(command, label=context.action.id, timeout=context.remaining())
        return result.output
