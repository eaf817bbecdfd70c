"""
Secrets use case — list stored credential names, never their values.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from homelab.core.config.loader import load_declaration, resolve_declaration_path
from homelab.core.context import resolve_paths
from homelab.core.errors import HomelabError
from homelab.core.models.report import EXIT_OK, exit_code_for
from homelab.core.services.secrets import SecretStore


@dataclass
class SecretEntry:
    service: str
    name: str
    env: str | None = None      # stack variable it feeds, if declared
    stored: bool = False


@dataclass
class SecretsResult:
    """Credential names known to the declaration and the store."""

    store_path: Path | None = None
    entries: list[SecretEntry] = field(default_factory=list)
    error: str | None = None
    exit_code: int = EXIT_OK

    def to_dict(self) -> dict:
        result: dict = {"store_path": str(self.store_path) if self.store_path else None}
        if self.error:
            result["error"] = self.error
            return result
        result["secrets"] = [
            {"service": e.service, "name": e.name, "env": e.env, "stored": e.stored}
            for e in self.entries
        ]
        return result


def list_secrets(
    config_path: Path | None = None,
    state_dir: Path | None = None,
    mock: bool = False,
    env: Mapping[str, str] | None = None,
) -> SecretsResult:
    """List declared and stored credentials.

    Declared bindings come first in declaration order, marked with
    whether they have been generated yet; stored credentials no
    binding refers to any more follow.
    """
    result = SecretsResult()

    try:
        declaration = load_declaration(resolve_declaration_path(config_path, env), env)
        paths = resolve_paths(declaration.settings, state_dir, mock)
        result.store_path = paths.secrets_file
        stored = SecretStore(paths.secrets_file).names()
    except HomelabError as e:
        result.error = str(e)
        result.exit_code = exit_code_for(e)
        return result

    seen = set()
    bindings = declaration.stack.secrets if declaration.stack else []
    for b in bindings:
        seen.add((b.service, b.name))
        result.entries.append(
            SecretEntry(
                service=b.service,
                name=b.name,
                env=b.env,
                stored=b.name in stored.get(b.service, []),
            )
        )
    for service, names in stored.items():
        for name in names:
            if (service, name) not in seen:
                result.entries.append(SecretEntry(service=service, name=name, stored=True))

    return result
