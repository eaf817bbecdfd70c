"""
Apply use case — converge the host to its declaration.

The full vertical slice: load the declaration, check privilege, take
the run lock, probe, plan, generate missing stack credentials, execute
the plan, and persist the report and audit entry.

Ordering guarantees:
    - validation, privilege, lock, graph and probe errors all happen
      before any side effect
    - the report is rewritten after every action, so it is accurate
      even if the process dies mid-run
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from homelab.adapters.registry import AdapterRegistry, default_registry
from homelab.core.config.loader import load_declaration, resolve_declaration_path
from homelab.core.context import require_root, resolve_paths
from homelab.core.engine.executor import (
    Interrupt,
    execute_plan,
    generate_run_id,
    interrupt_on_signals,
    write_audit_entry,
)
from homelab.core.engine.planner import ExecutionPlan
from homelab.core.errors import HomelabError
from homelab.core.models.report import EXIT_HALTED, EXIT_OK, RunReport, exit_code_for
from homelab.core.persistence.audit import AuditWriter
from homelab.core.persistence.lock import RunLock
from homelab.core.persistence.report_file import save_report
from homelab.core.services.secrets import SecretStore
from homelab.core.use_cases.plan import Prober, plan_host

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Result of an apply run."""

    report: RunReport | None = None
    plan: ExecutionPlan | None = None
    config_path: Path | None = None
    report_path: Path | None = None
    mock: bool = False
    error: str | None = None
    errors: list[str] = field(default_factory=list)
    exit_code: int = EXIT_OK

    def to_dict(self) -> dict:
        result: dict = {
            "config_path": str(self.config_path) if self.config_path else None,
            "mock": self.mock,
            "exit_code": self.exit_code,
        }
        if self.error:
            result["error"] = self.error
            result["errors"] = self.errors
        if self.report is not None:
            result["report_path"] = str(self.report_path) if self.report_path else None
            result["report"] = self.report.to_dict()
        return result


def run_apply(
    config_path: Path | None = None,
    state_dir: Path | None = None,
    mock: bool = False,
    timeout: float | None = None,
    prober: Prober | None = None,
    registry: AdapterRegistry | None = None,
    interrupt: Interrupt | None = None,
    env: Mapping[str, str] | None = None,
) -> ApplyResult:
    """Apply the declaration to the host.

    Args:
        config_path: Optional explicit declaration path.
        state_dir: Optional state directory override.
        mock: Run against the simulated host; skips the root check.
        timeout: Default per-action timeout override (seconds).
        prober: Optional host state source (tests).
        registry: Optional pre-configured adapter registry (tests).
        interrupt: Optional interrupt flag (tests); a fresh one wired to
            SIGINT/SIGTERM is used otherwise.
        env: Environment (default: os.environ).

    Returns:
        ApplyResult with the run report, or the error that stopped the
        run before execution.
    """
    result = ApplyResult(mock=mock)
    mock_host = None

    try:
        path = resolve_declaration_path(config_path, env)
        result.config_path = path
        declaration = load_declaration(path, env)
        paths = resolve_paths(declaration.settings, state_dir, mock)
        result.report_path = paths.report_file

        if mock:
            from homelab.adapters.mock import MockHost

            if prober is None or registry is None:
                mock_host = MockHost.load(paths.mock_host_file)
                prober = prober or mock_host
                registry = registry or mock_host.registry()
        else:
            require_root("apply")
            if prober is None:
                from homelab.core.engine.probe import HostProbe

                prober = HostProbe()
            registry = registry or default_registry()
            missing = registry.unavailable()
            if missing:
                logger.warning("Host tools missing for: %s", ", ".join(missing))

        with RunLock(paths.lock_file):
            plan = plan_host(
                declaration,
                prober,
                SecretStore(paths.secrets_file),
                generate_secrets=True,
            )
            result.plan = plan
            logger.info("Applying %d action(s)", plan.total_actions)

            report = RunReport(
                run_id=generate_run_id(),
                declaration=declaration.name,
                mock=mock,
            )
            result.report = report

            def persist(current: RunReport) -> None:
                save_report(current, paths.report_file)

            interrupt = interrupt or Interrupt()
            with interrupt_on_signals(interrupt):
                execute_plan(
                    plan,
                    registry,
                    report=report,
                    default_timeout=timeout or declaration.settings.action_timeout,
                    on_receipt=persist,
                    interrupt=interrupt,
                )

            persist(report)
            write_audit_entry(report, AuditWriter(paths.audit_file))
            if mock_host is not None:
                mock_host.save(paths.mock_host_file)

        result.exit_code = report.exit_code

    except HomelabError as e:
        logger.debug("Apply stopped: %s", e)
        result.error = str(e)
        result.errors = list(getattr(e, "errors", []))
        result.exit_code = exit_code_for(e)
    except OSError as e:
        # state directory not writable
        logger.error("Cannot persist run state: %s", e)
        result.error = f"cannot persist run state: {e}"
        result.exit_code = EXIT_HALTED

    return result
