"""
ProbedState — a snapshot of the host as it is right now.

Produced by the probe at the start of every run and handed to the plan
builder as an explicit value. It is never persisted and never reused
across runs: a stale snapshot would make the plan lie.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class HostFacts(BaseModel):
    """Facts used to resolve repository source lines."""

    model_config = ConfigDict(frozen=True)

    arch: str = "amd64"
    codename: str = ""
    distribution: str = ""          # e.g. ubuntu24.04
    is_root: bool = False


class FileState(BaseModel):
    """Observed metadata of a managed file."""

    model_config = ConfigDict(frozen=True)

    sha256: str
    mode: str                       # e.g. "0644"
    owner: str
    group: str


class ServiceState(BaseModel):
    """Observed state of a systemd unit."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    active: bool = False


class RepositoryState(BaseModel):
    """Observed state of an apt source."""

    model_config = ConfigDict(frozen=True)

    keyring_present: bool = False
    source_sha256: str | None = None


class FirewallState(BaseModel):
    """Observed firewall status."""

    model_config = ConfigDict(frozen=True)

    active: bool = False
    defaults: dict[str, str] = Field(default_factory=dict)   # incoming → deny
    rules: frozenset[str] = frozenset()                       # "allow:22/tcp/in"


class ProbedState(BaseModel):
    """Root snapshot model — read-only, re-acquired each run."""

    model_config = ConfigDict(frozen=True)

    facts: HostFacts = Field(default_factory=HostFacts)
    packages: frozenset[str] = frozenset()
    repositories: dict[str, RepositoryState] = Field(default_factory=dict)
    services: dict[str, ServiceState] = Field(default_factory=dict)
    files: dict[str, FileState] = Field(default_factory=dict)
    commands: frozenset[str] = frozenset()       # names whose guard holds
    firewall: FirewallState = Field(default_factory=FirewallState)
    stack_running: frozenset[str] = frozenset()  # compose services running

    def service(self, name: str) -> ServiceState:
        return self.services.get(name, ServiceState())

    def repository(self, name: str) -> RepositoryState:
        return self.repositories.get(name, RepositoryState())
