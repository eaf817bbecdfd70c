"""
Shared test fixtures and configuration.
"""

import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from homelab.adapters.shell.command import CommandResult, CommandRunner
from homelab.core.errors import ActionError

SAMPLE_DECLARATION = """\
name: testbox
settings:
  state_dir: STATE_DIR
  secrets_file: STATE_DIR/secrets.json
  lock_file: STATE_DIR/run.lock
vars:
  user: alice
packages:
  - curl
  - {name: docker-ce, critical: true, requires: [repository:docker]}
repositories:
  - name: docker
    requires: [package:curl]
    key_url: https://download.docker.com/linux/ubuntu/gpg
    keyring: /etc/apt/keyrings/docker.gpg
    source: "deb [arch=${arch} signed-by=${keyring}] https://download.docker.com/linux/ubuntu ${codename} stable"
commands:
  - name: docker-group
    requires: [package:docker-ce]
    command: usermod -aG docker ${user}
    unless: id -nG ${user} | grep -qw docker
files:
  - path: /etc/systemd/logind.conf.d/lid.conf
    content: |
      [Login]
      HandleLidSwitch=ignore
services:
  - name: docker
    package: docker-ce
    critical: true
  - name: systemd-logind
    restart_on: [file:/etc/systemd/logind.conf.d/lid.conf]
firewall:
  policy: {incoming: deny, outgoing: allow}
  rules:
    - 22/tcp
    - {port: 9090, comment: cockpit}
stack:
  name: lab
  directory: /srv/lab
  deploy: true
  env:
    SERVER_IP: 10.0.0.5
  secrets:
    - {env: POSTGRES_PASSWORD, service: postgres, name: password}
  services:
    - name: postgres
      image: postgres:16
      environment: {POSTGRES_PASSWORD: "${POSTGRES_PASSWORD}"}
    - name: portainer
      image: portainer/portainer-ce:latest
      networks: [proxy]
      route: {host: "portainer.${SERVER_IP}.nip.io", port: 9000}
"""

# Plan for SAMPLE_DECLARATION on a pristine host
SAMPLE_PLAN = [
    "install:curl",
    "add-repo:docker",
    "install:docker-ce",
    "run:docker-group",
    "write:/etc/systemd/logind.conf.d/lid.conf",
    "enable:docker",
    "enable:systemd-logind",
    "restart:systemd-logind",
    "default:incoming",
    "default:outgoing",
    "allow:22/tcp/in",
    "allow:9090/tcp/in",
    "enable-firewall",
    "write:/srv/lab/compose.yml",
    "write:/srv/lab/.env",
    "compose-up:lab",
]


class FakeRunner(CommandRunner):
    """CommandRunner that records commands and replays canned results.

    Responses match on an argv prefix; the most recently added match
    wins. Unmatched commands succeed with empty output.
    """

    def __init__(self, binaries=("apt-get", "dpkg-query", "systemctl", "ufw", "docker", "bash")):
        self.binaries = set(binaries)
        self.calls: list[list[str]] = []
        self.options: list[dict] = []
        self._responses: list[tuple[tuple[str, ...], object]] = []

    def respond(self, *prefix: str, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self._responses.append((prefix, (returncode, stdout, stderr)))

    def raise_on(self, *prefix: str, error: Exception) -> None:
        self._responses.append((prefix, error))

    def available(self, binary: str) -> bool:
        return binary in self.binaries

    def ran(self, *prefix: str) -> bool:
        return any(tuple(c[: len(prefix)]) == prefix for c in self.calls)

    def run(self, command, *, label="", timeout=None, input=None, env=None, cwd=None, check=True):
        self.calls.append(list(command))
        self.options.append({"label": label, "timeout": timeout, "env": env, "cwd": cwd})

        outcome: object = (0, "", "")
        for prefix, response in reversed(self._responses):
            if tuple(command[: len(prefix)]) == prefix:
                outcome = response
                break
        if isinstance(outcome, Exception):
            raise outcome

        returncode, stdout, stderr = outcome
        result = CommandResult(
            command=list(command), returncode=returncode, stdout=stdout, stderr=stderr
        )
        if check and not result.ok:
            raise ActionError(label or command[0], f"{command[0]} exited with code {returncode}")
        return result


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def write_declaration(tmp_path: Path, tmp_state_dir: Path) -> Callable[[str], Path]:
    """Write a homelab.yml into tmp_path; STATE_DIR expands to tmp_state_dir."""

    def _write(body: str, name: str = "homelab.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(body).replace("STATE_DIR", str(tmp_state_dir)))
        return path

    return _write


@pytest.fixture
def sample_declaration(write_declaration) -> Path:
    return write_declaration(SAMPLE_DECLARATION)


@pytest.fixture
def sample_plan() -> list[str]:
    return list(SAMPLE_PLAN)


@pytest.fixture
def clean_env(tmp_state_dir: Path) -> dict[str, str]:
    """Environment with no HOMELAB_* overrides."""
    return {"HOME": str(tmp_state_dir)}
