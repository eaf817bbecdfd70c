"""
Apt adapter — packages and apt repositories.

Uses apt-get to change state and dpkg-query to read it. Installs run
non-interactively; a package whose install needs a prompt fails
instead of hanging until the action timeout.
"""

from __future__ import annotations

import hashlib
import logging
import shlex
from pathlib import Path

from homelab.adapters.base import Adapter, ExecutionContext
from homelab.adapters.shell.command import CommandRunner
from homelab.adapters.shell.filesystem import write_atomic
from homelab.core.errors import ActionError

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def installed_packages(
    runner: CommandRunner, names: list[str], label: str = "dpkg", timeout: float | None = 60
) -> set[str]:
    """Which of ``names`` are installed, according to dpkg.

    dpkg-query exits 1 when some names are unknown; that still answers
    the question. Anything else is an error.

    Raises:
        ActionError: dpkg-query missing or failing.
    """
    if not names:
        return set()
    result = runner.run(
        ["dpkg-query", "-W", "-f=${Package}\t${db:Status-Abbrev}\n", *names],
        label=label,
        timeout=timeout,
        check=False,
    )
    if result.returncode not in (0, 1):
        raise ActionError(label, f"dpkg-query exited with code {result.returncode}: {result.stderr.strip()}")

    installed = set()
    for line in result.stdout.splitlines():
        name, _, status = line.partition("\t")
        # "ii " = desired install, currently installed
        if status.startswith("ii"):
            installed.add(name.strip())
    return installed


def source_digest(path: Path) -> str | None:
    """Checksum of an apt source file, or None if it is missing."""
    try:
        return hashlib.sha256(path.read_bytes()).hexdigest()
    except FileNotFoundError:
        return None


class AptAdapter(Adapter):
    """Install and remove packages, add apt repositories.

    Action params:
        install/remove: package (str)
        add-repo: name, key_url, keyring, source_path, source_line (str)
    """

    required_params = {
        "install": ("package",),
        "remove": ("package",),
        "add-repo": ("key_url", "keyring", "source_path", "source_line"),
    }

    @property
    def name(self) -> str:
        return "apt"

    def is_available(self) -> bool:
        return self.runner.available("apt-get") and self.runner.available("dpkg-query")

    def check(self, context: ExecutionContext) -> bool | None:
        kind = context.action.kind
        params = context.params
        if kind in ("install", "remove"):
            present = params["package"] in installed_packages(
                self.runner,
                [params["package"]],
                label=context.action.id,
                timeout=context.remaining(60),
            )
            return present if kind == "install" else not present
        if kind == "add-repo":
            expected = hashlib.sha256((params["source_line"] + "\n").encode()).hexdigest()
            return (
                Path(params["keyring"]).is_file()
                and source_digest(Path(params["source_path"])) == expected
            )
        return None

    def execute(self, context: ExecutionContext) -> str:
        kind = context.action.kind
        if kind == "install":
            return self._apt(context, ["install", "-y", context.params["package"]])
        if kind == "remove":
            return self._apt(context, ["remove", "-y", context.params["package"]])
        if kind == "add-repo":
            return self._add_repo(context)
        raise ActionError(context.action.id, f"unsupported action kind '{kind}'")

    def _apt(self, context: ExecutionContext, args: list[str]) -> str:
        result = self.runner.run(
            ["apt-get", *args],
            label=context.action.id,
            timeout=context.remaining(),
            env=APT_ENV,
        )
        return result.output

    def _add_repo(self, context: ExecutionContext) -> str:
        params = context.params
        keyring = Path(params["keyring"])
        action_id = context.action.id

        try:
            keyring.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as e:
            raise ActionError(action_id, f"cannot create {keyring.parent}: {e}") from e

        # Fetch and dearmor the signing key in one pipeline
        fetch = (
            f"curl -fsSL {shlex.quote(params['key_url'])}"
            f" | gpg --dearmor --yes -o {shlex.quote(str(keyring))}"
        )
        self.runner.run(
            ["bash", "-o", "pipefail", "-c", fetch],
            label=action_id,
            timeout=context.remaining(),
        )

        try:
            keyring.chmod(0o644)
            write_atomic(Path(params["source_path"]), params["source_line"] + "\n", mode=0o644)
        except OSError as e:
            raise ActionError(action_id, f"cannot install apt source: {e}") from e

        self.runner.run(
            ["apt-get", "update", "-y"],
            label=action_id,
            timeout=context.remaining(),
            env=APT_ENV,
        )
        return f"added {params['source_path']}"
