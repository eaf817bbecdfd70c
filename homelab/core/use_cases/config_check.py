"""
Config check use case — validate homelab.yml and report issues.

Errors make the declaration unusable (apply would refuse it).
Warnings are legal but probably not what the operator wants.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from homelab.core.config.loader import load_declaration, resolve_declaration_path
from homelab.core.engine.planner import validate_graph
from homelab.core.errors import CycleError, ValidationError
from homelab.core.models.declaration import HostDeclaration


@dataclass
class ConfigCheckResult:
    """Result of declaration validation."""

    valid: bool = False
    declaration: HostDeclaration | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def resource_count(self) -> int:
        if self.declaration is None:
            return 0
        return sum(1 for _ in self.declaration.resources())

    def to_dict(self) -> dict:
        decl = self.declaration
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "name": decl.name if decl else None,
            "resource_count": self.resource_count,
            "stack_services": len(decl.stack.services) if decl and decl.stack else 0,
        }


def check_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ConfigCheckResult:
    """Validate the declaration and its dependency graph.

    Args:
        config_path: Optional explicit path to homelab.yml.
        env: Environment (default: os.environ).

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult()

    path = resolve_declaration_path(config_path, env)
    result.config_path = path

    try:
        declaration = load_declaration(path, env)
    except ValidationError as e:
        result.errors.extend(e.errors)
        return result
    result.declaration = declaration

    try:
        validate_graph(declaration)
    except CycleError as e:
        result.errors.append(str(e))
    except ValidationError as e:
        result.errors.extend(e.errors)

    result.warnings.extend(_warnings(declaration))
    result.valid = len(result.errors) == 0
    return result


def _warnings(declaration: HostDeclaration) -> list[str]:
    warnings = []

    fw = declaration.firewall
    if fw is not None and fw.policy.enabled and fw.policy.incoming != "allow":
        ssh_open = any(
            r.port == 22 and r.protocol == "tcp" and r.direction == "in"
            and r.action in ("allow", "limit")
            for r in fw.rules
        )
        if not ssh_open:
            warnings.append(
                "firewall denies incoming traffic and no rule allows 22/tcp: "
                "enabling it will cut remote SSH access"
            )

    for cmd in declaration.commands:
        if cmd.unless is None and cmd.creates is None:
            warnings.append(f"{cmd.ref} has no 'unless' or 'creates' guard; it runs on every apply")

    stack = declaration.stack
    if stack is not None and stack.deploy and declaration.get_service("docker") is None:
        warnings.append(
            f"{stack.ref} is deployed but no 'docker' service is declared; "
            "compose-up is not ordered after the container runtime"
        )
    if stack is not None and stack.secrets and not stack.deploy:
        warnings.append(
            f"{stack.ref} declares secrets but is not deployed; they are still generated on apply"
        )

    return warnings
