"""
Compose adapter — bring the service stack up with Docker Compose.

Uses the docker CLI — never the Docker API directly.
"""

from __future__ import annotations

import logging

from homelab.adapters.base import Adapter, ExecutionContext
from homelab.adapters.shell.command import CommandRunner

logger = logging.getLogger(__name__)


def compose_base(project: str, compose_file: str, env_file: str) -> list[str]:
    """Common ``docker compose`` prefix for a stack."""
    return [
        "docker", "compose",
        "-p", project,
        "-f", compose_file,
        "--env-file", env_file,
    ]


def running_services(
    runner: CommandRunner,
    project: str,
    compose_file: str,
    env_file: str,
    label: str = "",
    timeout: float | None = 60,
) -> frozenset[str]:
    """Names of the stack's services that are currently running.

    An undeployed stack (or a host without docker yet) has none.
    """
    if not runner.available("docker"):
        return frozenset()
    result = runner.run(
        [*compose_base(project, compose_file, env_file), "ps", "--services", "--status", "running"],
        label=label or f"stack:{project}",
        timeout=timeout,
        check=False,
    )
    if not result.ok:
        logger.debug("compose ps for %s failed: %s", project, result.stderr.strip())
        return frozenset()
    return frozenset(line.strip() for line in result.stdout.splitlines() if line.strip())


class ComposeAdapter(Adapter):
    """Deploy the rendered stack.

    Action params (compose-up):
        project (str): Compose project name.
        directory (str): Stack directory (working directory).
        compose_file, env_file (str): Rendered outputs.
        services (list[str]): Services expected to run afterwards.
    """

    required_params = {
        "compose-up": ("project", "directory", "compose_file", "env_file"),
    }

    @property
    def name(self) -> str:
        return "compose"

    def is_available(self) -> bool:
        return self.runner.available("docker")

    def precheck(self, context: ExecutionContext) -> bool | None:
        # Running containers do not prove they run the current files
        return None

    def check(self, context: ExecutionContext) -> bool | None:
        if not context.params.get("services"):
            return None
        params = context.params
        running = running_services(
            self.runner,
            params["project"],
            params["compose_file"],
            params["env_file"],
            label=context.action.id,
            timeout=context.remaining(60),
        )
        return set(params["services"]) <= running

    def execute(self, context: ExecutionContext) -> str:
        params = context.params
        result = self.runner.run(
            [
                *compose_base(params["project"], params["compose_file"], params["env_file"]),
                "up", "-d", "--remove-orphans",
            ],
            label=context.action.id,
            timeout=context.remaining(),
            cwd=params["directory"],
        )
        # compose reports progress on stderr
        return result.output or result.stderr.strip()[-4000:]
