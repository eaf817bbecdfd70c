"""
Mock adapters — test doubles and the simulated host behind ``--mock``.

MockAdapter is a universal stand-in that records calls and succeeds
unless told otherwise. MockHost goes further: it keeps an in-memory
host (packages, units, files, firewall, stack) that its adapter
mutates and its probe reads, so plan → apply → plan converges exactly
as it does on a real machine.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from homelab.adapters.base import Adapter, ExecutionContext
from homelab.adapters.registry import AdapterRegistry
from homelab.adapters.shell.filesystem import write_atomic
from homelab.core.engine.planner import sha256_text
from homelab.core.errors import ActionError, ActionTimeoutError, ProbeError
from homelab.core.models.declaration import FileRequirement, HostDeclaration, parse_ref
from homelab.core.models.state import (
    FileState,
    FirewallState,
    HostFacts,
    ProbedState,
    RepositoryState,
    ServiceState,
)

logger = logging.getLogger(__name__)


class MockAdapter(Adapter):
    """Universal mock adapter for testing.

    By default, succeeds for everything. Can be configured to fail
    specific action IDs.
    """

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        super().__init__()
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._failures: dict[str, ActionError] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        """Number of times execute has been called."""
        return len(self._call_log)

    @property
    def executed_ids(self) -> list[str]:
        return [c.action.id for c in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, action_id: str, error: str = "Mock failure") -> None:
        """Configure a specific action to fail."""
        self._failures[action_id] = ActionError(action_id, error)

    def set_timeout(self, action_id: str, timeout: float = 1.0) -> None:
        """Configure a specific action to time out."""
        self._failures[action_id] = ActionTimeoutError(action_id, timeout)

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> str:
        self._call_log.append(context)
        if context.action.id in self._failures:
            raise self._failures[context.action.id]
        return self._default_output

    def reset(self) -> None:
        """Clear call log and configured failures."""
        self._call_log.clear()
        self._failures.clear()


# ── Simulated host ──────────────────────────────────────────────────


class MockHostState(BaseModel):
    """Mutable state of the simulated host."""

    facts: HostFacts = Field(
        default_factory=lambda: HostFacts(
            arch="amd64", codename="noble", distribution="ubuntu24.04", is_root=True
        )
    )
    packages: set[str] = Field(default_factory=set)
    repositories: dict[str, RepositoryState] = Field(default_factory=dict)
    services: dict[str, ServiceState] = Field(default_factory=dict)
    files: dict[str, FileState] = Field(default_factory=dict)
    commands: set[str] = Field(default_factory=set)
    firewall_active: bool = False
    firewall_defaults: dict[str, str] = Field(default_factory=dict)
    firewall_rules: set[str] = Field(default_factory=set)
    stack_running: set[str] = Field(default_factory=set)


class MockHost:
    """In-memory host: a probe and an adapter over the same state."""

    def __init__(self, state: MockHostState | None = None):
        self.state = state or MockHostState()
        self.failures: dict[str, ActionError] = {}
        self.adapter = MockHostAdapter(self)

    # ── Persistence (for repeated --mock runs) ─────────────────

    @classmethod
    def load(cls, path: Path) -> MockHost:
        """Load a simulated host, or start a pristine one.

        Raises:
            ProbeError: The saved host is unreadable or corrupt.
        """
        if not path.is_file():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return cls(MockHostState.model_validate(data))
        except (OSError, ValueError) as e:
            raise ProbeError("mock host", f"cannot load {path}: {e}") from e

    def save(self, path: Path) -> None:
        content = json.dumps(self.state.model_dump(mode="json"), indent=2, sort_keys=True)
        write_atomic(path, content + "\n", mode=0o600)

    # ── Configuration ──────────────────────────────────────────

    def fail(self, action_id: str, error: str = "simulated failure") -> None:
        """Make an action fail when executed."""
        self.failures[action_id] = ActionError(action_id, error)

    def hang(self, action_id: str, timeout: float = 1.0) -> None:
        """Make an action time out when executed."""
        self.failures[action_id] = ActionTimeoutError(action_id, timeout)

    def registry(self) -> AdapterRegistry:
        registry = AdapterRegistry()
        registry.set_mock_mode(True, self.adapter)
        return registry

    # ── Probe ──────────────────────────────────────────────────

    def probe(
        self,
        declaration: HostDeclaration,
        stack_files: list[FileRequirement] | None = None,
    ) -> ProbedState:
        s = self.state
        return ProbedState(
            facts=s.facts,
            packages=frozenset(s.packages),
            repositories=dict(s.repositories),
            services=dict(s.services),
            files=dict(s.files),
            commands=frozenset(s.commands),
            firewall=FirewallState(
                active=s.firewall_active,
                defaults=dict(s.firewall_defaults),
                rules=frozenset(s.firewall_rules),
            ),
            stack_running=frozenset(s.stack_running),
        )


class MockHostAdapter(Adapter):
    """Applies actions to a MockHost's state."""

    def __init__(self, host: MockHost):
        super().__init__()
        self.host = host
        self.call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def executed_ids(self) -> list[str]:
        return [c.action.id for c in self.call_log]

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> str:
        self.call_log.append(context)
        action = context.action
        if action.id in self.host.failures:
            raise self.host.failures[action.id]

        s = self.host.state
        p = action.params
        kind = action.kind

        if kind == "install":
            s.packages.add(p["package"])
        elif kind == "remove":
            s.packages.discard(p["package"])
        elif kind == "add-repo":
            s.repositories[p["name"]] = RepositoryState(
                keyring_present=True, source_sha256=sha256_text(p["source_line"] + "\n")
            )
        elif kind == "run":
            s.commands.add(parse_ref(action.resource)[1])
        elif kind == "write-file":
            s.files[p["path"]] = FileState(
                sha256=p["sha256"], mode=p["mode"], owner=p["owner"], group=p["group"]
            )
        elif kind in ("enable", "disable", "start", "stop"):
            current = s.services.get(p["unit"], ServiceState())
            s.services[p["unit"]] = ServiceState(
                enabled=current.enabled if p.get("enable") is None else p["enable"],
                active=current.active if p.get("active") is None else p["active"],
            )
        elif kind == "restart":
            current = s.services.get(p["unit"], ServiceState())
            s.services[p["unit"]] = ServiceState(enabled=current.enabled, active=True)
        elif kind == "firewall-default":
            s.firewall_defaults[p["direction"]] = p["policy"]
        elif kind == "firewall-enable":
            s.firewall_active = True
        elif kind == "firewall-disable":
            s.firewall_active = False
        elif kind.startswith("firewall-"):
            s.firewall_rules.add(p["rule"])
        elif kind == "compose-up":
            s.stack_running |= set(p.get("services", ()))
        else:
            raise ActionError(action.id, f"mock host cannot apply '{kind}'")

        return f"[mock] {action.description or action.id}"
