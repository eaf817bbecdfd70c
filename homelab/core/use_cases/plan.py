"""
Plan use case — show what apply would do, without doing it.

Loads the declaration, probes the host, and builds the action plan.
Stack credentials are previewed, never generated, so planning has no
side effects at all.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from homelab.core.config.loader import load_declaration, resolve_declaration_path
from homelab.core.context import require_root, resolve_paths
from homelab.core.engine.planner import (
    ExecutionPlan,
    build_plan,
    placeholder_stack_files,
    validate_graph,
)
from homelab.core.errors import HomelabError
from homelab.core.models.declaration import FileRequirement, HostDeclaration
from homelab.core.models.report import EXIT_OK, exit_code_for
from homelab.core.models.state import ProbedState
from homelab.core.services.secrets import (
    SecretStore,
    ensure_stack_secrets,
    preview_stack_secrets,
)
from homelab.core.services.stack_render import render_stack, stack_file_requirements

logger = logging.getLogger(__name__)


class Prober(Protocol):
    """Anything that can snapshot host state (HostProbe, MockHost)."""

    def probe(
        self,
        declaration: HostDeclaration,
        stack_files: list[FileRequirement] | None = None,
    ) -> ProbedState: ...


@dataclass
class PlanResult:
    """Result of planning."""

    plan: ExecutionPlan | None = None
    declaration: HostDeclaration | None = None
    config_path: Path | None = None
    mock: bool = False
    error: str | None = None
    errors: list[str] = field(default_factory=list)
    exit_code: int = EXIT_OK

    def to_dict(self) -> dict:
        result: dict = {
            "config_path": str(self.config_path) if self.config_path else None,
            "mock": self.mock,
            "exit_code": self.exit_code,
        }
        if self.error:
            result["error"] = self.error
            result["errors"] = self.errors
            return result
        if self.plan is not None:
            result["plan"] = self.plan.to_dict()
        return result


def plan_host(
    declaration: HostDeclaration,
    prober: Prober,
    store: SecretStore,
    *,
    generate_secrets: bool = False,
) -> ExecutionPlan:
    """Probe the host and build the plan for a declaration.

    The dependency graph is checked and the host probed before any
    secret is generated, so a bad graph or an unreadable host aborts
    with nothing changed.

    Args:
        declaration: Desired state.
        prober: Host state source.
        store: Secret store for the stack credentials.
        generate_secrets: Generate and persist missing credentials
            (apply) instead of previewing them (plan).

    Raises:
        CycleError, ProbeError, SecretStoreError
    """
    validate_graph(declaration)
    probed = prober.probe(declaration, placeholder_stack_files(declaration))

    stack_files = None
    stack = declaration.stack
    if stack is not None:
        if generate_secrets:
            values = ensure_stack_secrets(stack, store)
        else:
            values = preview_stack_secrets(stack, store)
        stack_files = stack_file_requirements(stack, render_stack(stack, values))

    return build_plan(declaration, probed, stack_files)


def run_plan(
    config_path: Path | None = None,
    state_dir: Path | None = None,
    mock: bool = False,
    prober: Prober | None = None,
    env: Mapping[str, str] | None = None,
) -> PlanResult:
    """Build the plan for the current host.

    Args:
        config_path: Optional explicit declaration path.
        state_dir: Optional state directory override.
        mock: Plan against the simulated host instead of this one.
        prober: Optional host state source (tests).
        env: Environment (default: os.environ).

    Returns:
        PlanResult with the plan or the error that prevented it.
    """
    result = PlanResult(mock=mock)

    try:
        path = resolve_declaration_path(config_path, env)
        result.config_path = path
        declaration = load_declaration(path, env)
        result.declaration = declaration
        paths = resolve_paths(declaration.settings, state_dir, mock)

        if prober is None:
            if mock:
                from homelab.adapters.mock import MockHost

                prober = MockHost.load(paths.mock_host_file)
            else:
                from homelab.core.engine.probe import HostProbe

                require_root("plan")
                prober = HostProbe()

        result.plan = plan_host(declaration, prober, SecretStore(paths.secrets_file))

    except HomelabError as e:
        logger.debug("Planning stopped: %s", e)
        result.error = str(e)
        result.errors = list(getattr(e, "errors", []))
        result.exit_code = exit_code_for(e)

    return result
