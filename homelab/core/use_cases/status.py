"""
Status use case — show the last run report and recent history.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from homelab.core.config.loader import load_declaration, resolve_declaration_path
from homelab.core.context import resolve_paths
from homelab.core.errors import ValidationError
from homelab.core.models.declaration import Settings
from homelab.core.models.report import RunReport
from homelab.core.persistence.audit import AuditEntry, AuditWriter
from homelab.core.persistence.report_file import load_report

logger = logging.getLogger(__name__)


@dataclass
class StatusResult:
    """Last run and recent history."""

    report: RunReport | None = None
    report_path: Path | None = None
    history: list[AuditEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        result: dict = {"report_path": str(self.report_path) if self.report_path else None}
        result["report"] = self.report.to_dict() if self.report else None
        result["history"] = [
            {
                "timestamp": e.timestamp,
                "run_id": e.run_id,
                "status": e.status,
                "exit_code": e.exit_code,
                "mock": e.mock,
                "actions_total": e.actions_total,
                "actions_failed": e.actions_failed,
            }
            for e in self.history
        ]
        return result


def get_status(
    config_path: Path | None = None,
    state_dir: Path | None = None,
    history: int = 5,
    env: Mapping[str, str] | None = None,
) -> StatusResult:
    """Load the last run report.

    The declaration is only consulted for the state directory; a
    declaration that no longer validates still lets the operator see
    what the last run did.
    """
    result = StatusResult()

    settings = Settings()
    try:
        declaration = load_declaration(resolve_declaration_path(config_path, env), env)
        settings = declaration.settings
    except ValidationError as e:
        logger.warning("Declaration invalid, using default state location: %s", e)
        env = os.environ if env is None else env
        if state_dir is None and env.get("HOMELAB_STATE_DIR"):
            state_dir = Path(env["HOMELAB_STATE_DIR"])

    paths = resolve_paths(settings, state_dir)
    result.report_path = paths.report_file
    result.report = load_report(paths.report_file)
    result.history = AuditWriter(paths.audit_file).read_recent(history)
    return result
