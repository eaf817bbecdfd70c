"""
Declaration model — the desired state of the host.

Loaded from homelab.yml, this is the canonical truth about what the
server should look like. It is data, not commands: the plan builder
diffs it against the probed host and derives the actions.

Every resource has a reference string ``kind:key`` (``package:curl``,
``service:docker``, ``file:/etc/x``) used by ``requires`` lists and
by the dependency graph.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Iterator, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from homelab.core.models.stack import StackDeclaration

# Known resource kinds, in the order sections are processed by default
SECTION_ORDER = (
    "packages",
    "repositories",
    "commands",
    "files",
    "services",
    "firewall",
    "stack",
)

RESOURCE_KINDS = (
    "package",
    "repository",
    "command",
    "file",
    "service",
    "firewall",
    "firewall-policy",
    "stack",
)

_REF_RE = re.compile(r"^([a-z-]+):(.+)$")
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.+_@-]*$")
_MODE_RE = re.compile(r"^0?[0-7]{3,4}$")


def parse_ref(ref: str) -> tuple[str, str]:
    """Split a ``kind:key`` reference into its parts."""
    match = _REF_RE.match(ref)
    if not match:
        raise ValueError(f"invalid reference '{ref}' (expected kind:key)")
    return match.group(1), match.group(2)


class Resource(BaseModel, ABC):
    """Common fields for every declared resource."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ClassVar[str] = ""

    critical: bool = False          # failure halts the run
    requires: list[str] = Field(default_factory=list)

    @field_validator("requires")
    @classmethod
    def _check_requires(cls, value: list[str]) -> list[str]:
        for ref in value:
            kind, _ = parse_ref(ref)
            if kind not in RESOURCE_KINDS:
                raise ValueError(f"unknown resource kind '{kind}' in reference '{ref}'")
        return value

    @property
    @abstractmethod
    def key(self) -> str:
        """Identity of the resource within its kind."""

    @property
    def ref(self) -> str:
        return f"{self.kind}:{self.key}"


def _absolute(value: str, what: str) -> str:
    if not value.startswith("/"):
        raise ValueError(f"{what} must be an absolute path, got '{value}'")
    return value


class PackageRequirement(Resource):
    """An OS package that must be installed (or absent)."""

    kind: ClassVar[str] = "package"

    name: str
    state: Literal["present", "absent"] = "present"

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"name": data}
        return data

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _NAME_RE.match(value):
            raise ValueError(f"invalid package name '{value}'")
        return value

    @property
    def key(self) -> str:
        return self.name


class RepositoryRequirement(Resource):
    """An apt source with its signing key.

    ``source`` may use ``${arch}``, ``${codename}``, ``${distribution}``
    and ``${keyring}``; they are filled from host facts when planning.
    """

    kind: ClassVar[str] = "repository"

    name: str
    key_url: str
    keyring: str
    source: str

    @field_validator("keyring")
    @classmethod
    def _check_keyring(cls, value: str) -> str:
        return _absolute(value, "keyring")

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _NAME_RE.match(value):
            raise ValueError(f"invalid repository name '{value}'")
        return value

    @property
    def key(self) -> str:
        return self.name

    @property
    def source_path(self) -> str:
        return f"/etc/apt/sources.list.d/{self.name}.list"


class ServiceRequirement(Resource):
    """A systemd unit that must be enabled and/or running."""

    kind: ClassVar[str] = "service"

    name: str
    enabled: bool = True
    running: bool = True
    package: str | None = None      # package providing the unit
    restart_on: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"name": data}
        return data

    @field_validator("restart_on")
    @classmethod
    def _check_restart_on(cls, value: list[str]) -> list[str]:
        for ref in value:
            parse_ref(ref)
        return value

    @property
    def key(self) -> str:
        return self.name


class FileRequirement(Resource):
    """A file whose content, mode and ownership are managed.

    Exactly one of ``content`` or ``template`` must be given. Templates
    are resolved by the loader, so a loaded declaration always carries
    the final content.
    """

    kind: ClassVar[str] = "file"

    path: str
    content: str | None = None
    template: str | None = None
    mode: str = "0644"
    owner: str = "root"
    group: str = "root"

    @field_validator("path")
    @classmethod
    def _check_path(cls, value: str) -> str:
        return _absolute(value, "path")

    @field_validator("mode", mode="before")
    @classmethod
    def _check_mode(cls, value: Any) -> str:
        # YAML reads an unquoted 0644 as the integer 420
        if isinstance(value, int):
            value = format(value, "04o")
        value = str(value)
        if not _MODE_RE.match(value):
            raise ValueError(f"invalid file mode '{value}'")
        return format(int(value, 8), "04o")

    @model_validator(mode="after")
    def _check_source(self) -> FileRequirement:
        if (self.content is None) == (self.template is None):
            raise ValueError(
                f"file {self.path}: exactly one of 'content' or 'template' is required"
            )
        return self

    @property
    def key(self) -> str:
        return self.path

    @property
    def mode_bits(self) -> int:
        return int(self.mode, 8)


class CommandRequirement(Resource):
    """A guarded one-off command.

    The command is considered applied when ``unless`` exits 0 or the
    ``creates`` path exists. A command with neither guard runs on every
    apply.
    """

    kind: ClassVar[str] = "command"

    name: str
    command: str
    unless: str | None = None
    creates: str | None = None
    user: str | None = None         # run as this user (login shell)
    environment: dict[str, str] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, gt=0)

    @field_validator("creates")
    @classmethod
    def _check_creates(cls, value: str | None) -> str | None:
        if value is not None:
            _absolute(value, "creates")
        return value

    @property
    def key(self) -> str:
        return self.name


class FirewallPolicy(Resource):
    """Default firewall policies and whether the firewall is enabled."""

    kind: ClassVar[str] = "firewall-policy"

    incoming: Literal["deny", "allow", "reject"] = "deny"
    outgoing: Literal["deny", "allow", "reject"] = "allow"
    enabled: bool = True
    critical: bool = True

    @property
    def key(self) -> str:
        return "default"


class FirewallRule(Resource):
    """A single firewall rule.

    Accepts the ``22/tcp`` shorthand. ``service`` names a declared
    service whose port this rule opens; the rule is ordered after it.
    """

    kind: ClassVar[str] = "firewall"

    port: int = Field(ge=1, le=65535)
    protocol: Literal["tcp", "udp"] = "tcp"
    direction: Literal["in", "out"] = "in"
    action: Literal["allow", "deny", "limit", "reject"] = "allow"
    service: str | None = None
    comment: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, (str, int)):
            port, _, protocol = str(data).partition("/")
            result: dict[str, Any] = {"port": port}
            if protocol:
                result["protocol"] = protocol
            return result
        return data

    @property
    def key(self) -> str:
        return f"{self.port}/{self.protocol}/{self.direction}"

    @property
    def spec(self) -> str:
        return f"{self.port}/{self.protocol}"


class FirewallDeclaration(BaseModel):
    """The firewall section: default policy plus rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy: FirewallPolicy = Field(default_factory=FirewallPolicy)
    rules: list[FirewallRule] = Field(default_factory=list)


class Settings(BaseModel):
    """Runtime settings — where state lives and how long actions may take."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state_dir: str = "/var/lib/homelab-provisioner"
    secrets_file: str = "/etc/homelab-provisioner/secrets.json"
    lock_file: str = "/run/homelab-provisioner.lock"
    action_timeout: float = Field(default=900.0, gt=0)

    @field_validator("state_dir", "secrets_file", "lock_file")
    @classmethod
    def _check_paths(cls, value: str) -> str:
        return _absolute(value, "setting")


class HostDeclaration(BaseModel):
    """Root declaration — loaded from homelab.yml.

    Immutable once loaded. ``sections`` records the order in which the
    resource sections appeared in the document; that order (and list
    order within a section) is the declaration order used to break ties
    when planning.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: int = 1
    name: str = "homelab"

    settings: Settings = Field(default_factory=Settings)
    vars: dict[str, str] = Field(default_factory=dict)

    packages: list[PackageRequirement] = Field(default_factory=list)
    repositories: list[RepositoryRequirement] = Field(default_factory=list)
    commands: list[CommandRequirement] = Field(default_factory=list)
    files: list[FileRequirement] = Field(default_factory=list)
    services: list[ServiceRequirement] = Field(default_factory=list)
    firewall: FirewallDeclaration | None = None
    stack: StackDeclaration | None = None

    sections: list[str] = Field(default_factory=lambda: list(SECTION_ORDER))

    def resources(self) -> Iterator[Resource]:
        """Yield every declared resource in declaration order.

        Stack output files are not included here; they only exist once
        the stack is rendered.
        """
        for section in self.sections:
            if section == "firewall":
                if self.firewall is not None:
                    yield self.firewall.policy
                    yield from self.firewall.rules
            elif section == "stack":
                continue
            else:
                yield from getattr(self, section)

    def get_service(self, name: str) -> ServiceRequirement | None:
        """Look up a service requirement by unit name."""
        for svc in self.services:
            if svc.name == name:
                return svc
        return None
