"""
Adapter registry — routes each action to the adapter that owns its family.

Every action goes through the same converge step: the postcondition
is looked at first, the side effect only runs when it does not hold,
and the postcondition is looked at again afterwards. Whatever happens
in between comes back as a Receipt.
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime

from homelab.adapters.base import Adapter, ExecutionContext
from homelab.adapters.shell.command import CommandRunner
from homelab.core.errors import ActionError, ActionTimeoutError
from homelab.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Adapters by name, plus an optional stand-in for mock runs.

    In mock mode every action goes to the stand-in regardless of its
    adapter name; without a stand-in, mock actions simply succeed.
    """

    def __init__(self, mock_mode: bool = False):
        self._adapters: dict[str, Adapter] = {}
        self._mock_mode = mock_mode
        self._stand_in: Adapter | None = None

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def set_mock_mode(self, enabled: bool, mock_adapter: Adapter | None = None) -> None:
        self._mock_mode = enabled
        self._stand_in = mock_adapter

    def register(self, adapter: Adapter) -> None:
        if adapter.name in self._adapters:
            logger.warning("Replacing adapter %s", adapter.name)
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        return list(self._adapters)

    def unavailable(self) -> list[str]:
        """Names of registered adapters whose host tool is missing."""
        return [name for name, adapter in self._adapters.items() if not adapter.is_available()]

    def execute_action(self, action: Action, timeout: float | None = None) -> Receipt:
        """Converge one action and return its receipt. Never raises."""
        started_at = datetime.now(UTC).isoformat()
        clock = time.monotonic()

        adapter = self._resolve(action)
        if isinstance(adapter, Receipt):
            receipt = adapter
        else:
            receipt = self._converge(adapter, ExecutionContext(action=action, timeout=timeout))

        receipt.started_at = started_at
        receipt.ended_at = datetime.now(UTC).isoformat()
        receipt.duration_ms = int((time.monotonic() - clock) * 1000)
        return receipt

    def _resolve(self, action: Action) -> Adapter | Receipt:
        if self._mock_mode:
            if self._stand_in is not None:
                return self._stand_in
            return Receipt.success(
                action.id,
                adapter=action.adapter,
                output=f"[mock] {action.adapter}:{action.id} executed",
                metadata={"mock": True},
            )
        adapter = self._adapters.get(action.adapter)
        if adapter is None:
            return Receipt.failure(
                action.id,
                f"No adapter registered for '{action.adapter}'",
                adapter=action.adapter,
                error_kind="internal",
            )
        return adapter

    def _converge(self, adapter: Adapter, context: ExecutionContext) -> Receipt:
        action = context.action
        try:
            valid, problem = adapter.validate(context)
            if not valid:
                return Receipt.failure(
                    action.id,
                    f"Validation failed: {problem}",
                    adapter=action.adapter,
                    error_kind="internal",
                )

            if adapter.precheck(context) is True:
                return Receipt.success(
                    action.id,
                    adapter=action.adapter,
                    output="already satisfied",
                    metadata={"precheck": True},
                )

            output = adapter.execute(context)
            context.remaining()

            # None means the adapter has nothing to observe
            satisfied = adapter.check(context)
            context.remaining()
            if satisfied is False:
                return Receipt.failure(
                    action.id,
                    "postcondition not met after execution",
                    adapter=action.adapter,
                    output=output,
                )
            return Receipt.success(action.id, adapter=action.adapter, output=output)

        except ActionTimeoutError as e:
            # a command cut short by the action deadline reports the action's timeout
            if context.expired and context.timeout is not None:
                e = ActionTimeoutError(action.id, context.timeout)
            logger.warning("%s: %s", action.id, e)
            return Receipt.failure(action.id, str(e), adapter=action.adapter, error_kind=e.kind)
        except ActionError as e:
            logger.warning("%s: %s", action.id, e)
            return Receipt.failure(action.id, str(e), adapter=action.adapter, error_kind=e.kind)
        except Exception as e:
            logger.error("%s: adapter %s crashed: %s", action.id, action.adapter, e)
            return Receipt.failure(
                action.id,
                f"Unexpected error: {e}",
                adapter=action.adapter,
                error_kind="internal",
            )


def default_registry(runner: CommandRunner | None = None) -> AdapterRegistry:
    """Registry wired with the real host adapters."""
    from homelab.adapters.containers.docker import ComposeAdapter
    from homelab.adapters.shell.filesystem import FilesystemAdapter
    from homelab.adapters.shell.guarded import CommandAdapter
    from homelab.adapters.system.apt import AptAdapter
    from homelab.adapters.system.systemd import SystemdAdapter
    from homelab.adapters.system.ufw import UfwAdapter

    runner = runner or CommandRunner()
    registry = AdapterRegistry()
    for adapter_cls in (AptAdapter, SystemdAdapter, FilesystemAdapter, CommandAdapter, UfwAdapter, ComposeAdapter):
        registry.register(adapter_cls(runner))
    return registry
