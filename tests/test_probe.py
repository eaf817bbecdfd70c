"""
Tests for the host probe.
"""

from pathlib import Path

import pytest

from homelab.core.config.loader import load_declaration
from homelab.core.engine.probe import HostProbe, parse_os_release
from homelab.core.errors import ActionTimeoutError, ProbeError
from homelab.core.models.declaration import HostDeclaration

OS_RELEASE = """\
PRETTY_NAME="Ubuntu 24.04.1 LTS"
NAME="Ubuntu"
VERSION_ID="24.04"
VERSION_CODENAME=noble
ID=ubuntu
ID_LIKE=debian
UBUNTU_CODENAME=noble
"""


@pytest.fixture
def os_release(tmp_path: Path) -> Path:
    path = tmp_path / "os-release"
    path.write_text(OS_RELEASE)
    return path


@pytest.fixture
def probe(runner, os_release: Path, tmp_path: Path) -> HostProbe:
    runner.respond("dpkg", "--print-architecture", stdout="amd64\n")
    return HostProbe(runner, os_release=os_release, ufw_defaults=tmp_path / "ufw")


def test_parse_os_release():
    values = parse_os_release(OS_RELEASE + "# comment\nBROKEN\n")
    assert values["ID"] == "ubuntu"
    assert values["VERSION_ID"] == "24.04"
    assert values["PRETTY_NAME"] == "Ubuntu 24.04.1 LTS"
    assert "BROKEN" not in values


class TestHostProbe:
    def test_facts(self, probe: HostProbe):
        state = probe.probe(HostDeclaration())
        assert state.facts.arch == "amd64"
        assert state.facts.codename == "noble"
        assert state.facts.distribution == "ubuntu24.04"

    def test_sample(self, probe: HostProbe, runner, sample_declaration: Path, clean_env):
        runner.respond("dpkg-query", stdout="curl\tii \ndocker-ce\tun \n", returncode=1)
        runner.respond("systemctl", "is-enabled", stdout="enabled\n")
        runner.respond("systemctl", "is-active", stdout="inactive\n", returncode=3)
        runner.respond("bash", "-c", returncode=1)
        runner.respond("ufw", "status", stdout="Status: active\n")
        runner.respond("ufw", "show", "added", stdout="ufw allow 22/tcp\n")

        decl = load_declaration(sample_declaration, clean_env)
        state = probe.probe(decl)

        assert state.packages == frozenset({"curl"})
        assert state.service("docker").enabled
        assert not state.service("docker").active
        assert state.commands == frozenset()
        assert state.firewall.active
        assert state.firewall.rules == frozenset({"allow:22/tcp/in"})
        # the stack has not been rendered yet
        assert state.stack_running == frozenset()
        assert not runner.ran("docker")

    def test_only_declared_things_inspected(self, probe: HostProbe, runner):
        probe.probe(HostDeclaration())
        assert not runner.ran("dpkg-query")
        assert not runner.ran("systemctl")
        assert not runner.ran("ufw")

    def test_satisfied_command_guard(self, probe: HostProbe, runner, tmp_path: Path):
        marker = tmp_path / "upgraded"
        marker.touch()
        decl = HostDeclaration.model_validate(
            {"commands": [{"name": "upgrade", "command": "apt-get -y upgrade", "creates": str(marker)}]}
        )
        assert probe.probe(decl).commands == frozenset({"upgrade"})

    def test_files(self, probe: HostProbe, tmp_path: Path):
        present = tmp_path / "present.conf"
        present.write_text("x")
        decl = HostDeclaration.model_validate(
            {
                "files": [
                    {"path": str(present), "content": "x"},
                    {"path": str(tmp_path / "absent.conf"), "content": "y"},
                ]
            }
        )
        files = probe.probe(decl).files
        assert list(files) == [str(present)]

    def test_stack_running(self, probe: HostProbe, runner, tmp_path: Path):
        (tmp_path / "compose.yml").write_text("name: lab\n")
        (tmp_path / ".env").write_text("")
        runner.respond("docker", stdout="postgres\n")
        decl = HostDeclaration.model_validate(
            {"stack": {"name": "lab", "directory": str(tmp_path), "deploy": True}}
        )
        assert probe.probe(decl).stack_running == frozenset({"postgres"})


class TestProbeErrors:
    def test_missing_os_release(self, runner, tmp_path: Path):
        probe = HostProbe(runner, os_release=tmp_path / "missing")
        with pytest.raises(ProbeError, match="probe failed for host"):
            probe.probe(HostDeclaration())

    def test_dpkg_failure(self, probe: HostProbe, runner):
        runner.respond("dpkg-query", returncode=2, stderr="database locked")
        decl = HostDeclaration.model_validate({"packages": ["curl"]})
        with pytest.raises(ProbeError) as exc:
            probe.probe(decl)
        assert exc.value.resource == "packages"

    def test_guard_timeout(self, probe: HostProbe, runner):
        runner.raise_on("bash", error=ActionTimeoutError("command:slow", 60))
        decl = HostDeclaration.model_validate(
            {"commands": [{"name": "slow", "command": "true", "unless": "sleep 999"}]}
        )
        with pytest.raises(ProbeError) as exc:
            probe.probe(decl)
        assert exc.value.resource == "command:slow"

    def test_ufw_failure(self, probe: HostProbe, runner):
        runner.respond("ufw", "status", returncode=1, stderr="ERROR: You need to be root")
        decl = HostDeclaration.model_validate({"firewall": {"rules": ["22/tcp"]}})
        with pytest.raises(ProbeError, match="firewall"):
            probe.probe(decl)
