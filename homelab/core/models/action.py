"""
Action and Receipt models — the execution contract.

Actions represent planned operations. Receipts represent results.
This is the I/O contract between the executor and adapters: the
executor sends Actions, the registry returns Receipts. Adapter errors
are turned into failed receipts at the registry boundary.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """A single idempotent operation planned against the host.

    Actions are value objects: they carry everything the adapter needs
    to execute them and to check whether their postcondition already
    holds. Ids are derived from resource references, so planning the
    same declaration twice yields identical actions.
    """

    model_config = ConfigDict(frozen=True)

    id: str                         # e.g. "install:docker-ce"
    kind: str                       # install, enable, write-file, ...
    adapter: str                    # apt, systemd, file, command, ufw, compose
    resource: str                   # declaring resource reference
    description: str = ""          # human-readable, e.g. "install docker-ce"
    critical: bool = False
    timeout: float | None = None    # seconds; None = executor default
    requires: tuple[str, ...] = ()  # ids of actions that must run first
    params: dict[str, Any] = Field(default_factory=dict, repr=False)

    def __str__(self) -> str:
        return self.description or self.id


class Receipt(BaseModel):
    """Result of executing one action.

    ``error_kind`` distinguishes a command failure from a timeout or an
    unexpected internal error; ``label`` renders the combined outcome
    shown to the operator (``ok``, ``skipped``, ``failed:timeout``).
    """

    action_id: str
    adapter: str = ""
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    error_kind: Literal["command", "timeout", "internal"] | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @property
    def label(self) -> str:
        if self.failed and self.error_kind == "timeout":
            return "failed:timeout"
        return self.status

    @classmethod
    def success(
        cls,
        action_id: str,
        adapter: str = "",
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            action_id=action_id,
            adapter=adapter,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        action_id: str,
        error: str,
        adapter: str = "",
        error_kind: str = "command",
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            action_id=action_id,
            adapter=adapter,
            status="failed",
            error=error,
            error_kind=error_kind,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        action_id: str,
        reason: str = "",
        adapter: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            action_id=action_id,
            adapter=adapter,
            status="skipped",
            output=reason,
            **kwargs,
        )
