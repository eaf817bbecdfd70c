"""
Run history ledger.

One JSON line per apply run, appended to ``audit.ndjson`` in the state
directory. Lines are never rewritten; a corrupt line is skipped on read.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """Summary of one apply run."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    declaration: str = ""
    mock: bool = False

    status: str = ""  # ok | partial | halted | interrupted
    exit_code: int = 0
    actions_total: int = 0
    actions_succeeded: int = 0
    actions_failed: int = 0
    actions_skipped: int = 0
    duration_ms: int = 0

    # "<action id>: <error>" for every failed action
    errors: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        if path is None:
            path = (state_dir or Path(".")) / DEFAULT_AUDIT_FILE
        self.path = path

    def write(self, entry: AuditEntry) -> None:
        """Append one entry.

        Write errors are logged only: by the time the ledger is written
        the run has happened and its report is already on disk.
        """
        line = entry.model_dump_json() + "\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as ledger:
                ledger.write(line)
        except OSError as e:
            logger.error("Could not append to %s: %s", self.path, e)
            return
        logger.debug("Ledger entry %s appended", entry.run_id)

    def read_all(self) -> list[AuditEntry]:
        """Every readable entry, oldest first."""
        if not self.path.is_file():
            return []
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.error("Could not read %s: %s", self.path, e)
            return []

        entries = []
        for number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                entries.append(AuditEntry.model_validate(json.loads(line)))
            except ValueError as e:
                logger.warning("%s line %d is corrupt, skipping: %s", self.path.name, number, e)
        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:]
