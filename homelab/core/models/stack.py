"""
Stack model — the compose stack declared in homelab.yml.

Describes the containers to run, how the reverse proxy routes to them,
which environment values they read, and which credentials must be
generated for them. The renderer turns this into a compose document
and an environment file.
"""

from __future__ import annotations

import posixpath
import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ENV_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")


class Route(BaseModel):
    """Reverse-proxy route for a service (rendered as Traefik labels)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str                        # e.g. portainer.${SERVER_IP}.nip.io
    port: int = Field(ge=1, le=65535)
    router: str | None = None        # defaults to the service name
    entrypoint: str = "web"


class SecretBinding(BaseModel):
    """A generated credential exposed to the stack as an env variable."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    env: str
    service: str
    name: str
    kind: Literal["hex", "token", "password"] = "hex"
    length: int = Field(default=16, ge=8, le=256)

    @field_validator("env")
    @classmethod
    def _check_env(cls, value: str) -> str:
        if not _ENV_RE.match(value):
            raise ValueError(f"invalid environment variable name '{value}'")
        return value


class StackService(BaseModel):
    """One container in the compose stack."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    image: str
    container_name: str | None = None
    command: list[str] | str | None = None
    ports: list[str] = Field(default_factory=list)
    volumes: list[str] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    networks: list[str] = Field(default_factory=list)
    restart: str = "unless-stopped"
    pid: str | None = None
    cap_add: list[str] = Field(default_factory=list)
    security_opt: list[str] = Field(default_factory=list)
    route: Route | None = None


class StackDeclaration(BaseModel):
    """The compose stack section."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = "homelab"
    directory: str = "/srv/homelab"
    compose_file: str = "compose.yml"
    env_file: str = ".env"
    deploy: bool = False             # run `docker compose up -d` after rendering
    critical: bool = False
    requires: list[str] = Field(default_factory=list)

    networks: dict[str, dict[str, str]] = Field(default_factory=dict)
    volumes: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    secrets: list[SecretBinding] = Field(default_factory=list)
    services: list[StackService] = Field(default_factory=list)

    @field_validator("directory")
    @classmethod
    def _check_directory(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"stack directory must be an absolute path, got '{value}'")
        return value

    @field_validator("env")
    @classmethod
    def _check_env(cls, value: dict[str, str]) -> dict[str, str]:
        for key in value:
            if not _ENV_RE.match(key):
                raise ValueError(f"invalid environment variable name '{key}'")
        return value

    @model_validator(mode="after")
    def _check_names(self) -> StackDeclaration:
        errors: list[str] = []

        names = [s.name for s in self.services]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            errors.append(f"duplicate stack service names: {', '.join(dupes)}")

        secret_envs = [b.env for b in self.secrets]
        dupes = sorted({n for n in secret_envs if secret_envs.count(n) > 1})
        if dupes:
            errors.append(f"duplicate secret variables: {', '.join(dupes)}")

        clash = sorted(set(secret_envs) & set(self.env))
        if clash:
            errors.append(f"variables declared both as env and secret: {', '.join(clash)}")

        for svc in self.services:
            for dep in svc.depends_on:
                if dep not in names:
                    errors.append(f"stack service '{svc.name}' depends on unknown service '{dep}'")

        if errors:
            raise ValueError("; ".join(errors))
        return self

    @property
    def ref(self) -> str:
        return f"stack:{self.name}"

    @property
    def compose_path(self) -> str:
        return posixpath.join(self.directory, self.compose_file)

    @property
    def env_path(self) -> str:
        return posixpath.join(self.directory, self.env_file)

    def output_paths(self) -> list[str]:
        return [self.compose_path, self.env_path]
