"""
Engine executor — the central apply loop.

Takes an ordered ExecutionPlan, executes it through the adapter
registry strictly one action at a time, and records every outcome in
a RunReport.

Flow:
    plan → for each action: (halted? interrupted? blocked?) → execute
    → receipt → report → on_receipt

Failure policy:
    - non-critical failure: recorded, the run continues; actions that
      depend on it are skipped
    - critical failure: recorded, every remaining action is skipped
      and the run is halted
There is no rollback; re-running after fixing the cause completes the
remaining work.
"""

from __future__ import annotations

import logging
import signal
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from homelab.adapters.registry import AdapterRegistry
from homelab.core.engine.planner import ExecutionPlan
from homelab.core.models.action import Receipt
from homelab.core.models.report import RunReport
from homelab.core.persistence.audit import AuditEntry, AuditWriter

logger = logging.getLogger(__name__)

DEFAULT_ACTION_TIMEOUT = 900.0

_MARKERS = {"ok": "✓", "failed": "✗", "skipped": "⊘"}


class Interrupt:
    """Flag set when the operator asks the run to stop."""

    def __init__(self) -> None:
        self.signum: int | None = None

    @property
    def is_set(self) -> bool:
        return self.signum is not None

    def set(self, signum: int = signal.SIGINT) -> None:
        self.signum = signum


@contextmanager
def interrupt_on_signals(
    interrupt: Interrupt,
    signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[Interrupt]:
    """Turn SIGINT/SIGTERM into an Interrupt flag for the duration.

    The action in flight is allowed to finish; the executor stops
    before starting the next one. Previous handlers are restored on
    exit.
    """

    def handler(signum, frame):
        if not interrupt.is_set:
            logger.warning(
                "Received %s, stopping after the current action",
                signal.Signals(signum).name,
            )
        interrupt.set(signum)

    previous = {}
    try:
        for sig in signals:
            previous[sig] = signal.signal(sig, handler)
    except ValueError:
        # not the main thread; signals stay with their current handlers
        logger.debug("Signal handlers not installed outside the main thread")

    try:
        yield interrupt
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def execute_plan(
    plan: ExecutionPlan,
    registry: AdapterRegistry,
    *,
    report: RunReport | None = None,
    default_timeout: float = DEFAULT_ACTION_TIMEOUT,
    on_receipt: Callable[[RunReport], None] | None = None,
    interrupt: Interrupt | None = None,
) -> RunReport:
    """Execute all actions in a plan through the adapter registry.

    Args:
        plan: Ordered actions.
        registry: Adapter registry for dispatch.
        report: Report to append to (a new one is created if None).
        default_timeout: Seconds allowed for actions without their own
            timeout.
        on_receipt: Called with the report after each entry, before
            the next action starts.
        interrupt: Checked before each action.

    Returns:
        The finished RunReport.
    """
    if report is None:
        report = RunReport(run_id=generate_run_id(), declaration=plan.declaration)

    # ids of actions that did not succeed
    blocked: set[str] = set()

    for action in plan.actions:
        if report.halted:
            receipt = Receipt.skip(
                action.id,
                reason=f"halted after critical failure of {report.halted_by}",
                adapter=action.adapter,
            )
        elif interrupt is not None and interrupt.is_set:
            report.interrupted = True
            receipt = Receipt.skip(action.id, reason="interrupted", adapter=action.adapter)
        else:
            unmet = [dep for dep in action.requires if dep in blocked]
            if unmet:
                receipt = Receipt.skip(
                    action.id,
                    reason=f"dependency {', '.join(unmet)} did not succeed",
                    adapter=action.adapter,
                )
                if action.critical:
                    report.halted_by = action.id
            else:
                receipt = registry.execute_action(
                    action, timeout=action.timeout or default_timeout
                )
                if receipt.failed and action.critical:
                    report.halted_by = action.id

        if not receipt.ok:
            blocked.add(action.id)
        report.append(action, receipt)

        logger.info(
            "%s %s → %s%s",
            _MARKERS.get(receipt.status, "?"),
            action.id,
            receipt.label,
            f" ({receipt.error})" if receipt.error else "",
        )
        if report.halted_by == action.id:
            logger.error("Critical action %s did not succeed, halting run", action.id)

        if on_receipt is not None:
            on_receipt(report)

    report.finish()
    logger.info(
        "Run %s %s: %d ok, %d failed, %d skipped",
        report.run_id,
        report.status,
        report.succeeded,
        report.failed,
        report.skipped,
    )
    return report


def write_audit_entry(report: RunReport, audit_writer: AuditWriter) -> None:
    """Write one ledger entry summarizing a run."""
    entry = AuditEntry(
        run_id=report.run_id,
        declaration=report.declaration,
        mock=report.mock,
        status=report.status,
        exit_code=report.exit_code,
        actions_total=report.total,
        actions_succeeded=report.succeeded,
        actions_failed=report.failed,
        actions_skipped=report.skipped,
        duration_ms=sum(e.receipt.duration_ms for e in report.entries),
        errors=[
            f"{e.action.id}: {e.receipt.error}"
            for e in report.entries
            if e.receipt.failed and e.receipt.error
        ],
        context={"halted_by": report.halted_by} if report.halted_by else {},
    )
    audit_writer.write(entry)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"
