"""
Run context — where a run keeps its state on this host.

Every use case that touches persisted state (report, audit ledger,
secret store, run lock) resolves its paths here, so ``--state-dir``,
the declaration's ``settings`` and mock mode are applied the same way
everywhere.

Mock runs keep their secrets, lock and simulated host under
``<state_dir>/mock`` so a rehearsal never touches the real credential
store or contends with a real run. Their report and audit entries go
to the normal locations, flagged ``mock``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from homelab.core.errors import PrivilegeError
from homelab.core.models.declaration import Settings
from homelab.core.persistence.audit import DEFAULT_AUDIT_FILE
from homelab.core.persistence.report_file import default_report_path

MOCK_DIR = "mock"


@dataclass(frozen=True)
class RunPaths:
    """Resolved state locations for one invocation."""

    state_dir: Path
    secrets_file: Path
    lock_file: Path
    mock: bool = False

    @property
    def report_file(self) -> Path:
        return default_report_path(self.state_dir)

    @property
    def audit_file(self) -> Path:
        return self.state_dir / DEFAULT_AUDIT_FILE

    @property
    def mock_host_file(self) -> Path:
        return self.state_dir / MOCK_DIR / "host.json"


def resolve_paths(
    settings: Settings,
    state_dir: Path | None = None,
    mock: bool = False,
) -> RunPaths:
    """Apply the ``--state-dir`` override and mock mode to the settings."""
    base = state_dir if state_dir is not None else Path(settings.state_dir)
    if mock:
        return RunPaths(
            state_dir=base,
            secrets_file=base / MOCK_DIR / "secrets.json",
            lock_file=base / MOCK_DIR / "run.lock",
            mock=True,
        )
    return RunPaths(
        state_dir=base,
        secrets_file=Path(settings.secrets_file),
        lock_file=Path(settings.lock_file),
    )


def require_root(command: str) -> None:
    """Fail unless running as root; checked once, at the start of a run."""
    if os.geteuid() != 0:
        raise PrivilegeError(
            f"'{command}' must run as root to read and change host state "
            f"(use sudo, or --mock to rehearse)"
        )
