"""
Plan builder — diff the declaration against the probed host.

Pure given its inputs: no I/O, no clock, no randomness. The same
declaration, probe snapshot and rendered stack files always produce
the same action sequence.

Flow:
    declaration → plan units (+ implicit edges) → topological order
    → per-unit diff against ProbedState → ordered Actions

Units whose postcondition already holds produce no action, so a
converged host plans to an empty list.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from string import Template
from typing import Any

from homelab.core.engine.dag import topological_order
from homelab.core.errors import ValidationError
from homelab.core.models.action import Action
from homelab.core.models.declaration import (
    CommandRequirement,
    FileRequirement,
    FirewallPolicy,
    FirewallRule,
    HostDeclaration,
    PackageRequirement,
    RepositoryRequirement,
    ServiceRequirement,
)
from homelab.core.models.stack import StackDeclaration
from homelab.core.models.state import ProbedState

logger = logging.getLogger(__name__)

_SECTION_KINDS = {
    "packages": "package",
    "repositories": "repository",
    "commands": "command",
    "files": "file",
}


@dataclass
class ExecutionPlan:
    """An ordered set of actions to execute."""

    declaration: str = ""
    actions: list[Action] = field(default_factory=list)

    @property
    def total_actions(self) -> int:
        return len(self.actions)

    @property
    def empty(self) -> bool:
        return not self.actions

    def ids(self) -> list[str]:
        return [a.id for a in self.actions]

    def to_dict(self) -> dict:
        return {
            "declaration": self.declaration,
            "total": self.total_actions,
            "actions": [
                {
                    "id": a.id,
                    "description": a.description,
                    "resource": a.resource,
                    "critical": a.critical,
                    "requires": list(a.requires),
                }
                for a in self.actions
            ],
        }


@dataclass
class _Unit:
    """A node of the dependency graph: a resource or a derived step."""

    ref: str
    deps: list[str]
    kind: str
    resource: Any
    triggers: list[str] = field(default_factory=list)


def sha256_text(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def resolve_source_line(repo: RepositoryRequirement, probed: ProbedState) -> str:
    """Fill host facts into a repository source line."""
    facts = probed.facts
    return Template(repo.source).safe_substitute(
        arch=facts.arch,
        codename=facts.codename,
        distribution=facts.distribution,
        keyring=repo.keyring,
    )


# ── Units ───────────────────────────────────────────────────────────


def _collect_units(
    declaration: HostDeclaration,
    stack_files: list[FileRequirement] | None,
) -> list[_Unit]:
    units: list[_Unit] = []

    for section in declaration.sections:
        if section == "firewall":
            fw = declaration.firewall
            if fw is None:
                continue
            units.append(_Unit(fw.policy.ref, list(fw.policy.requires), "policy", fw.policy))
            for rule in fw.rules:
                deps = list(rule.requires)
                if rule.service:
                    deps.append(f"service:{rule.service}")
                units.append(_Unit(rule.ref, deps, "rule", rule))
            units.append(
                _Unit(
                    "firewall-enable:default",
                    [fw.policy.ref] + [r.ref for r in fw.rules],
                    "firewall-enable",
                    fw.policy,
                )
            )

        elif section == "stack":
            stack = declaration.stack
            if stack is None or stack_files is None:
                continue
            for f in stack_files:
                units.append(_Unit(f.ref, list(f.requires), "file", f))
            deps = [f.ref for f in stack_files] + list(stack.requires)
            if declaration.get_service("docker") is not None:
                deps.append("service:docker")
            units.append(
                _Unit(stack.ref, deps, "stack", stack, triggers=[f.ref for f in stack_files])
            )

        elif section == "services":
            for svc in declaration.services:
                deps = list(svc.requires)
                if svc.package:
                    deps.append(f"package:{svc.package}")
                units.append(_Unit(svc.ref, deps, "service", svc))
                if svc.restart_on:
                    units.append(
                        _Unit(
                            f"restart:{svc.name}",
                            [svc.ref] + list(svc.restart_on),
                            "restart",
                            svc,
                            triggers=list(svc.restart_on),
                        )
                    )

        else:
            kind = _SECTION_KINDS[section]
            for resource in getattr(declaration, section):
                units.append(_Unit(resource.ref, list(resource.requires), kind, resource))

    refs = [u.ref for u in units]
    dupes = sorted({r for r in refs if refs.count(r) > 1})
    if dupes:
        raise ValidationError([f"{r}: declared more than once" for r in dupes])

    return units


# ── Diffs ───────────────────────────────────────────────────────────


def _package_actions(pkg: PackageRequirement, probed: ProbedState) -> list[Action]:
    installed = pkg.name in probed.packages
    if pkg.state == "present" and not installed:
        verb = "install"
    elif pkg.state == "absent" and installed:
        verb = "remove"
    else:
        return []
    return [
        Action(
            id=f"{verb}:{pkg.name}",
            kind=verb,
            adapter="apt",
            resource=pkg.ref,
            description=f"{verb} {pkg.name}",
            critical=pkg.critical,
            params={"package": pkg.name},
        )
    ]


def _repository_actions(repo: RepositoryRequirement, probed: ProbedState) -> list[Action]:
    line = resolve_source_line(repo, probed)
    state = probed.repository(repo.name)
    if state.keyring_present and state.source_sha256 == sha256_text(line + "\n"):
        return []
    return [
        Action(
            id=f"add-repo:{repo.name}",
            kind="add-repo",
            adapter="apt",
            resource=repo.ref,
            description=f"add apt repository {repo.name}",
            critical=repo.critical,
            params={
                "name": repo.name,
                "key_url": repo.key_url,
                "keyring": repo.keyring,
                "source_path": repo.source_path,
                "source_line": line,
            },
        )
    ]


def _command_actions(cmd: CommandRequirement, probed: ProbedState) -> list[Action]:
    if cmd.name in probed.commands:
        return []
    return [
        Action(
            id=f"run:{cmd.name}",
            kind="run",
            adapter="command",
            resource=cmd.ref,
            description=f"run {cmd.name}",
            critical=cmd.critical,
            timeout=cmd.timeout,
            params={
                "command": cmd.command,
                "unless": cmd.unless,
                "creates": cmd.creates,
                "user": cmd.user,
                "environment": dict(cmd.environment),
            },
        )
    ]


def _file_actions(f: FileRequirement, probed: ProbedState) -> list[Action]:
    if f.content is None:
        raise ValidationError([f"{f.ref}: template was not resolved"])
    digest = sha256_text(f.content)
    state = probed.files.get(f.path)
    if (
        state is not None
        and state.sha256 == digest
        and state.mode == f.mode
        and state.owner == f.owner
        and state.group == f.group
    ):
        return []
    return [
        Action(
            id=f"write:{f.path}",
            kind="write-file",
            adapter="file",
            resource=f.ref,
            description=f"write {f.path}",
            critical=f.critical,
            params={
                "path": f.path,
                "content": f.content,
                "sha256": digest,
                "mode": f.mode,
                "owner": f.owner,
                "group": f.group,
            },
        )
    ]


def _service_actions(svc: ServiceRequirement, probed: ProbedState) -> list[Action]:
    state = probed.service(svc.name)
    enable_change = svc.enabled != state.enabled
    active_change = svc.running != state.active
    if not enable_change and not active_change:
        return []

    if enable_change:
        verb = "enable" if svc.enabled else "disable"
        description = f"{verb} {svc.name}"
        # enable --now / disable --now read as one step
        if active_change and svc.running != svc.enabled:
            description += " and start" if svc.running else " and stop"
    else:
        verb = "start" if svc.running else "stop"
        description = f"{verb} {svc.name}"

    return [
        Action(
            id=f"{verb}:{svc.name}",
            kind=verb,
            adapter="systemd",
            resource=svc.ref,
            description=description,
            critical=svc.critical,
            params={
                "unit": svc.name,
                "enable": svc.enabled if enable_change else None,
                "active": svc.running if active_change else None,
            },
        )
    ]


def _restart_actions(
    svc: ServiceRequirement,
    triggers: list[str],
    changed: set[str],
) -> list[Action]:
    if not svc.running or not any(t in changed for t in triggers):
        return []
    return [
        Action(
            id=f"restart:{svc.name}",
            kind="restart",
            adapter="systemd",
            resource=svc.ref,
            description=f"restart {svc.name}",
            critical=svc.critical,
            params={"unit": svc.name},
        )
    ]


def _policy_actions(policy: FirewallPolicy, probed: ProbedState) -> list[Action]:
    actions = []
    for direction in ("incoming", "outgoing"):
        desired = getattr(policy, direction)
        if probed.firewall.defaults.get(direction) == desired:
            continue
        actions.append(
            Action(
                id=f"default:{direction}",
                kind="firewall-default",
                adapter="ufw",
                resource=policy.ref,
                description=f"set firewall default-{desired} {direction}",
                critical=policy.critical,
                params={"direction": direction, "policy": desired},
            )
        )
    return actions


def _rule_actions(rule: FirewallRule, probed: ProbedState) -> list[Action]:
    token = f"{rule.action}:{rule.key}"
    if token in probed.firewall.rules:
        return []
    return [
        Action(
            id=token,
            kind=f"firewall-{rule.action}",
            adapter="ufw",
            resource=rule.ref,
            description=f"{rule.action} {rule.spec} {rule.direction}",
            critical=rule.critical,
            params={
                "action": rule.action,
                "port": rule.port,
                "protocol": rule.protocol,
                "direction": rule.direction,
                "comment": rule.comment,
                "rule": token,
            },
        )
    ]


def _firewall_enable_actions(policy: FirewallPolicy, probed: ProbedState) -> list[Action]:
    if policy.enabled == probed.firewall.active:
        return []
    verb = "enable" if policy.enabled else "disable"
    return [
        Action(
            id=f"{verb}-firewall",
            kind=f"firewall-{verb}",
            adapter="ufw",
            resource=policy.ref,
            description=f"{verb} firewall",
            critical=policy.critical,
            params={"enabled": policy.enabled},
        )
    ]


def _stack_actions(
    stack: StackDeclaration,
    triggers: list[str],
    probed: ProbedState,
    changed: set[str],
) -> list[Action]:
    if not stack.deploy:
        return []
    wanted = {s.name for s in stack.services}
    if not any(t in changed for t in triggers) and wanted <= probed.stack_running:
        return []
    return [
        Action(
            id=f"compose-up:{stack.name}",
            kind="compose-up",
            adapter="compose",
            resource=stack.ref,
            description=f"bring up stack {stack.name}",
            critical=stack.critical,
            params={
                "project": stack.name,
                "directory": stack.directory,
                "compose_file": stack.compose_path,
                "env_file": stack.env_path,
                "services": sorted(wanted),
            },
        )
    ]


def _unit_actions(unit: _Unit, probed: ProbedState, changed: set[str]) -> list[Action]:
    kind = unit.kind
    if kind == "package":
        return _package_actions(unit.resource, probed)
    if kind == "repository":
        return _repository_actions(unit.resource, probed)
    if kind == "command":
        return _command_actions(unit.resource, probed)
    if kind == "file":
        return _file_actions(unit.resource, probed)
    if kind == "service":
        return _service_actions(unit.resource, probed)
    if kind == "restart":
        return _restart_actions(unit.resource, unit.triggers, changed)
    if kind == "policy":
        return _policy_actions(unit.resource, probed)
    if kind == "rule":
        return _rule_actions(unit.resource, probed)
    if kind == "firewall-enable":
        return _firewall_enable_actions(unit.resource, probed)
    if kind == "stack":
        return _stack_actions(unit.resource, unit.triggers, probed, changed)
    raise ValueError(f"unknown unit kind '{kind}'")


# ── Public API ──────────────────────────────────────────────────────


def placeholder_stack_files(declaration: HostDeclaration) -> list[FileRequirement] | None:
    """Empty stand-ins for the stack outputs, for steps that need only paths."""
    stack = declaration.stack
    if stack is None:
        return None
    return [
        FileRequirement(path=path, content="", requires=list(stack.requires))
        for path in stack.output_paths()
    ]


def validate_graph(
    declaration: HostDeclaration,
    stack_files: list[FileRequirement] | None = None,
) -> list[str]:
    """Check the dependency graph without looking at the host.

    Stack outputs stand in as empty placeholder files when not given,
    so the check can run before any secret is generated.

    Returns:
        Resource references in execution order.

    Raises:
        CycleError: On a dependency cycle or a reference to an
            undeclared resource.
    """
    if stack_files is None:
        stack_files = placeholder_stack_files(declaration)
    units = _collect_units(declaration, stack_files)
    return topological_order([u.ref for u in units], {u.ref: u.deps for u in units})


def build_plan(
    declaration: HostDeclaration,
    probed: ProbedState,
    stack_files: list[FileRequirement] | None = None,
) -> ExecutionPlan:
    """Build the ordered action plan closing the gap to the declaration.

    The dependency graph is checked over the whole declaration before
    satisfied units are dropped, so the same declaration is accepted
    or rejected regardless of host state.

    Args:
        declaration: Desired state.
        probed: Fresh snapshot of the host.
        stack_files: Rendered stack outputs as file requirements
            (None = do not plan the stack).

    Returns:
        ExecutionPlan with actions in execution order.

    Raises:
        CycleError: On a dependency cycle or a reference to an
            undeclared resource.
    """
    units = _collect_units(declaration, stack_files)
    by_ref = {u.ref: u for u in units}
    order = topological_order(
        [u.ref for u in units],
        {u.ref: u.deps for u in units},
    )

    plan = ExecutionPlan(declaration=declaration.name)
    changed: set[str] = set()
    # ref → ids of the nearest planned actions at or above this unit
    frontier: dict[str, tuple[str, ...]] = {}

    for ref in order:
        unit = by_ref[ref]
        upstream: list[str] = []
        for dep in unit.deps:
            for action_id in frontier.get(dep, ()):
                if action_id not in upstream:
                    upstream.append(action_id)

        actions = _unit_actions(unit, probed, changed)
        if actions:
            changed.add(ref)
            planned = []
            for action in actions:
                action = action.model_copy(update={"requires": tuple(upstream)})
                plan.actions.append(action)
                planned.append(action.id)
            frontier[ref] = tuple(planned)
        else:
            frontier[ref] = tuple(upstream)

    logger.info(
        "Planned %d action(s) for '%s' (%d resources)",
        plan.total_actions,
        declaration.name,
        len(units),
    )
    return plan
