"""
RunReport — the audit artifact of one executor run.

An ordered sequence of (Action, Receipt) entries. Entries are only
ever appended; once the run ends the report is final and is what the
``status`` command shows.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_serializer

from homelab.core.errors import ValidationError
from homelab.core.models.action import Action, Receipt

# Process exit codes
EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_PARTIAL = 2
EXIT_HALTED = 3


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class ReportEntry(BaseModel):
    """One executed (or skipped) action and its outcome.

    Action params are not serialized: they can hold rendered file
    content, including the stack credentials.
    """

    action: Action
    receipt: Receipt

    @field_serializer("action")
    def _redact_params(self, action: Action) -> dict:
        return action.model_dump(mode="json", exclude={"params"})


class RunReport(BaseModel):
    """Ordered outcome of a single apply run."""

    run_id: str = ""
    declaration: str = ""
    mock: bool = False

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str | None = None

    entries: list[ReportEntry] = Field(default_factory=list)
    halted_by: str | None = None     # id of the critical action that failed
    interrupted: bool = False

    def append(self, action: Action, receipt: Receipt) -> ReportEntry:
        entry = ReportEntry(action=action, receipt=receipt)
        self.entries.append(entry)
        return entry

    def finish(self) -> None:
        self.ended_at = _now_iso()

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def succeeded(self) -> int:
        return sum(1 for e in self.entries if e.receipt.ok)

    @property
    def failed(self) -> int:
        return sum(1 for e in self.entries if e.receipt.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for e in self.entries if e.receipt.skipped)

    @property
    def halted(self) -> bool:
        return self.halted_by is not None

    @property
    def status(self) -> str:
        if self.halted:
            return "halted"
        if self.interrupted:
            return "interrupted"
        if self.failed == 0:
            return "ok"
        return "partial"

    @property
    def exit_code(self) -> int:
        if self.halted or self.interrupted:
            return EXIT_HALTED
        if self.failed:
            return EXIT_PARTIAL
        return EXIT_OK

    def outcome_of(self, action_id: str) -> str | None:
        """Outcome label for an action id, or None if not in the report."""
        for entry in self.entries:
            if entry.action.id == action_id:
                return entry.receipt.label
        return None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "declaration": self.declaration,
            "mock": self.mock,
            "status": self.status,
            "exit_code": self.exit_code,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "halted_by": self.halted_by,
            "interrupted": self.interrupted,
            "entries": [
                {
                    "action": e.action.id,
                    "description": e.action.description,
                    "critical": e.action.critical,
                    "outcome": e.receipt.label,
                    "duration_ms": e.receipt.duration_ms,
                    "error": e.receipt.error,
                    "output": e.receipt.output,
                }
                for e in self.entries
            ],
        }


def exit_code_for(error: Exception) -> int:
    """Exit code for an error that stopped a run outside the executor.

    A bad declaration is 1; anything else (probe, cycle, lock,
    privilege, secret store) is treated like a halt.
    """
    return EXIT_VALIDATION if isinstance(error, ValidationError) else EXIT_HALTED
