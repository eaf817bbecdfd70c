"""
Host probe — read-only inspection of the current host state.

Only what the declaration mentions is inspected: declared packages,
units, paths, repositories, command guards, the firewall and the
stack. The result is a frozen ProbedState that the planner diffs
against; it is re-acquired on every run.

Any failure to read state is fatal (ProbeError): planning against a
guess would make the plan lie.
"""

from __future__ import annotations

import logging
import os
import shlex
from pathlib import Path

from homelab.adapters.containers.docker import running_services
from homelab.adapters.shell.command import CommandRunner
from homelab.adapters.shell.filesystem import file_state
from homelab.adapters.shell.guarded import guard_holds
from homelab.adapters.system.apt import installed_packages, source_digest
from homelab.adapters.system.systemd import unit_state
from homelab.adapters.system.ufw import UFW_DEFAULTS, firewall_state
from homelab.core.errors import ActionError, ProbeError
from homelab.core.models.declaration import FileRequirement, HostDeclaration
from homelab.core.models.state import (
    FileState,
    FirewallState,
    HostFacts,
    ProbedState,
    RepositoryState,
    ServiceState,
)

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")


def parse_os_release(text: str) -> dict[str, str]:
    """KEY=value pairs of an os-release file, quotes removed."""
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        values[key.strip()] = parts[0] if parts else ""
    return values


class HostProbe:
    """Reads ProbedState from the live host through a CommandRunner."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        os_release: Path = OS_RELEASE,
        ufw_defaults: Path = UFW_DEFAULTS,
    ):
        self.runner = runner or CommandRunner()
        self.os_release = os_release
        self.ufw_defaults = ufw_defaults

    def probe(
        self,
        declaration: HostDeclaration,
        stack_files: list[FileRequirement] | None = None,
    ) -> ProbedState:
        """Snapshot the host state relevant to ``declaration``.

        Args:
            declaration: Desired state (decides what to inspect).
            stack_files: Rendered stack outputs to inspect as files.

        Raises:
            ProbeError: If any part of the state cannot be read.
        """
        logger.info("Probing host for '%s'", declaration.name)

        facts = self._facts()
        state = ProbedState(
            facts=facts,
            packages=self._packages(declaration),
            repositories=self._repositories(declaration),
            services=self._services(declaration),
            files=self._files(declaration, stack_files or []),
            commands=self._commands(declaration),
            firewall=self._firewall(declaration),
            stack_running=self._stack(declaration),
        )
        logger.debug(
            "Probe: %d package(s) installed, %d file(s) present, %d command(s) satisfied",
            len(state.packages),
            len(state.files),
            len(state.commands),
        )
        return state

    # ── Sections ────────────────────────────────────────────────

    def _facts(self) -> HostFacts:
        try:
            release = parse_os_release(self.os_release.read_text(encoding="utf-8"))
        except OSError as e:
            raise ProbeError("host", f"cannot read {self.os_release}: {e}") from e
        try:
            arch = self.runner.run(
                ["dpkg", "--print-architecture"], label="host", timeout=30
            ).stdout.strip()
        except ActionError as e:
            raise ProbeError("host", str(e)) from e

        return HostFacts(
            arch=arch,
            codename=release.get("VERSION_CODENAME") or release.get("UBUNTU_CODENAME", ""),
            distribution=f"{release.get('ID', '')}{release.get('VERSION_ID', '')}",
            is_root=os.geteuid() == 0,
        )

    def _packages(self, declaration: HostDeclaration) -> frozenset[str]:
        names = [p.name for p in declaration.packages]
        try:
            return frozenset(installed_packages(self.runner, names, label="packages"))
        except ActionError as e:
            raise ProbeError("packages", str(e)) from e

    def _repositories(self, declaration: HostDeclaration) -> dict[str, RepositoryState]:
        repos = {}
        for repo in declaration.repositories:
            try:
                repos[repo.name] = RepositoryState(
                    keyring_present=Path(repo.keyring).is_file(),
                    source_sha256=source_digest(Path(repo.source_path)),
                )
            except OSError as e:
                raise ProbeError(repo.ref, str(e)) from e
        return repos

    def _services(self, declaration: HostDeclaration) -> dict[str, ServiceState]:
        services = {}
        for svc in declaration.services:
            try:
                services[svc.name] = unit_state(self.runner, svc.name, label=svc.ref)
            except ActionError as e:
                raise ProbeError(svc.ref, str(e)) from e
        return services

    def _files(
        self,
        declaration: HostDeclaration,
        stack_files: list[FileRequirement],
    ) -> dict[str, FileState]:
        files = {}
        for f in [*declaration.files, *stack_files]:
            try:
                state = file_state(Path(f.path))
            except OSError as e:
                raise ProbeError(f.ref, str(e)) from e
            if state is not None:
                files[f.path] = state
        return files

    def _commands(self, declaration: HostDeclaration) -> frozenset[str]:
        satisfied = set()
        for cmd in declaration.commands:
            try:
                holds = guard_holds(self.runner, cmd.ref, cmd.unless, cmd.creates, cmd.user)
            except ActionError as e:
                raise ProbeError(cmd.ref, str(e)) from e
            if holds:
                satisfied.add(cmd.name)
        return frozenset(satisfied)

    def _firewall(self, declaration: HostDeclaration) -> FirewallState:
        if declaration.firewall is None:
            return FirewallState()
        try:
            return firewall_state(self.runner, self.ufw_defaults)
        except ActionError as e:
            raise ProbeError("firewall", str(e)) from e

    def _stack(self, declaration: HostDeclaration) -> frozenset[str]:
        stack = declaration.stack
        if stack is None or not stack.deploy:
            return frozenset()
        if not (Path(stack.compose_path).is_file() and Path(stack.env_path).is_file()):
            return frozenset()
        try:
            return running_services(
                self.runner, stack.name, stack.compose_path, stack.env_path, label=stack.ref
            )
        except ActionError as e:
            raise ProbeError(stack.ref, str(e)) from e
