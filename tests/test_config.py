"""
Tests for the declaration loader — parsing, interpolation, validation.
"""

from pathlib import Path

import pytest

from homelab.core.config.loader import (
    DEFAULT_DECLARATION,
    find_declaration_file,
    load_declaration,
    resolve_declaration_path,
)
from homelab.core.engine.planner import validate_graph
from homelab.core.errors import ValidationError


class TestLoadDeclaration:
    def test_load_sample(self, sample_declaration: Path, clean_env, tmp_state_dir: Path):
        decl = load_declaration(sample_declaration, clean_env)
        assert decl.name == "testbox"
        assert [p.name for p in decl.packages] == ["curl", "docker-ce"]
        assert decl.settings.state_dir == str(tmp_state_dir)
        assert decl.stack is not None
        assert decl.stack.deploy is True

    def test_vars_interpolated_into_commands(self, sample_declaration: Path, clean_env):
        decl = load_declaration(sample_declaration, clean_env)
        cmd = decl.commands[0]
        assert cmd.command == "usermod -aG docker alice"
        assert cmd.unless == "id -nG alice | grep -qw docker"

    def test_repository_source_keeps_host_placeholders(self, sample_declaration: Path, clean_env):
        decl = load_declaration(sample_declaration, clean_env)
        assert "${codename}" in decl.repositories[0].source

    def test_vars_from_environment(self, write_declaration, clean_env):
        path = write_declaration("""\
            vars:
              who: "${OPERATOR:-nobody}"
              ip: "${SERVER_IP:-0.0.0.0}"
            commands:
              - name: hello
                command: echo ${who} $HOME
                creates: /tmp/${who}
        """)
        decl = load_declaration(path, {**clean_env, "OPERATOR": "alice"})
        assert decl.vars == {"who": "alice", "ip": "0.0.0.0"}
        # unknown placeholders are shell variables, left alone
        assert decl.commands[0].command == "echo alice $HOME"
        assert decl.commands[0].creates == "/tmp/alice"

    def test_stack_env_interpolated(self, write_declaration, clean_env):
        path = write_declaration("""\
            vars: {ip: 192.168.1.50}
            stack:
              env: {SERVER_IP: "${ip}"}
              services:
                - name: portainer
                  image: portainer/portainer-ce
                  route: {host: "portainer.${SERVER_IP}.nip.io", port: 9000}
        """)
        decl = load_declaration(path, clean_env)
        assert decl.stack.env == {"SERVER_IP": "192.168.1.50"}
        # compose interpolates this one at runtime
        assert decl.stack.services[0].route.host == "portainer.${SERVER_IP}.nip.io"

    def test_file_template(self, write_declaration, tmp_path: Path, clean_env):
        (tmp_path / "lid.conf.tmpl").write_text("[Login]\nHandleLidSwitch=${lid}\n")
        path = write_declaration("""\
            vars: {lid: ignore}
            files:
              - path: /etc/systemd/logind.conf.d/lid.conf
                template: lid.conf.tmpl
        """)
        decl = load_declaration(path, clean_env)
        f = decl.files[0]
        assert f.content == "[Login]\nHandleLidSwitch=ignore\n"
        assert f.template is None

    def test_missing_template(self, write_declaration, clean_env):
        path = write_declaration("""\
            files:
              - path: /etc/x
                template: missing.tmpl
        """)
        with pytest.raises(ValidationError) as exc:
            load_declaration(path, clean_env)
        assert any("cannot read template" in e for e in exc.value.errors)

    def test_settings_env_override(self, sample_declaration: Path, clean_env):
        env = {**clean_env, "HOMELAB_STATE_DIR": "/var/tmp/hl", "HOMELAB_ACTION_TIMEOUT": "30"}
        decl = load_declaration(sample_declaration, env)
        assert decl.settings.state_dir == "/var/tmp/hl"
        assert decl.settings.action_timeout == 30.0

    def test_section_order_recorded(self, write_declaration, clean_env):
        path = write_declaration("""\
            services: [docker]
            packages: [docker-ce]
        """)
        decl = load_declaration(path, clean_env)
        assert decl.sections[:2] == ["services", "packages"]
        assert set(decl.sections) == {
            "packages", "repositories", "commands", "files", "services", "firewall", "stack",
        }

    def test_empty_file(self, write_declaration, clean_env):
        decl = load_declaration(write_declaration(""), clean_env)
        assert decl.name == "homelab"
        assert list(decl.resources()) == []


class TestValidationErrors:
    def test_missing_file(self, tmp_path: Path, clean_env):
        with pytest.raises(ValidationError, match="not found"):
            load_declaration(tmp_path / "nope.yml", clean_env)

    def test_invalid_yaml(self, write_declaration, clean_env):
        path = write_declaration("packages: [curl\n")
        with pytest.raises(ValidationError, match="invalid YAML"):
            load_declaration(path, clean_env)

    def test_not_a_mapping(self, write_declaration, clean_env):
        with pytest.raises(ValidationError, match="expected a YAML mapping"):
            load_declaration(write_declaration("- curl\n"), clean_env)

    def test_all_errors_reported(self, write_declaration, clean_env):
        path = write_declaration("""\
            packages: [curl, curl]
            files:
              - {path: /etc/x, content: "", mode: "999"}
            firewall:
              rules: [22/tcp, 22/tcp]
        """)
        with pytest.raises(ValidationError) as exc:
            load_declaration(path, clean_env)
        errors = exc.value.errors
        assert "package:curl: declared more than once" in errors
        assert "firewall:22/tcp/in: declared more than once" in errors
        assert any("invalid file mode" in e for e in errors)
        assert len(errors) == 3

    def test_error_names_entry(self, write_declaration, clean_env):
        path = write_declaration("""\
            services:
              - {name: docker, enabeld: true}
        """)
        with pytest.raises(ValidationError) as exc:
            load_declaration(path, clean_env)
        assert any(e.startswith("services[0] (docker)") for e in exc.value.errors)

    def test_file_clashes_with_stack_output(self, write_declaration, clean_env):
        path = write_declaration("""\
            files:
              - {path: /srv/homelab/.env, content: ""}
            stack: {}
        """)
        with pytest.raises(ValidationError) as exc:
            load_declaration(path, clean_env)
        assert exc.value.errors == ["file:/srv/homelab/.env: also rendered by stack:homelab"]

    def test_vars_must_be_mapping(self, write_declaration, clean_env):
        with pytest.raises(ValidationError, match="vars: expected a mapping"):
            load_declaration(write_declaration("vars: [a, b]\n"), clean_env)


class TestResolveDeclarationPath:
    def test_explicit_wins(self, tmp_path: Path):
        explicit = tmp_path / "mine.yml"
        env = {"HOMELAB_CONFIG": "/etc/other.yml"}
        assert resolve_declaration_path(explicit, env) == explicit

    def test_env(self):
        env = {"HOMELAB_CONFIG": "/etc/homelab/homelab.yml"}
        assert resolve_declaration_path(None, env) == Path("/etc/homelab/homelab.yml")

    def test_found_upward(self, tmp_path: Path, monkeypatch):
        (tmp_path / "homelab.yml").write_text("name: found\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert find_declaration_file() == (tmp_path / "homelab.yml").resolve()
        assert resolve_declaration_path(None, {}) == (tmp_path / "homelab.yml").resolve()

    def test_falls_back_to_bundled(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            "homelab.core.config.loader.find_declaration_file", lambda start_dir=None: None
        )
        assert resolve_declaration_path(None, {}) == DEFAULT_DECLARATION


class TestBundledDeclaration:
    def test_loads_and_orders(self):
        decl = load_declaration(DEFAULT_DECLARATION, {})
        order = validate_graph(decl)

        assert "package:docker-ce" in order
        assert order.index("repository:docker") < order.index("package:docker-ce")
        assert order.index("command:initial-upgrade") < order.index("package:curl")
        assert order.index("service:docker") < order.index("stack:homelab")
        assert order.index("firewall:22/tcp/in") < order.index("firewall-enable:default")

    def test_placeholders_from_environment(self):
        env = {"SUDO_USER": "alice", "HOMELAB_SERVER_IP": "192.168.1.50"}
        decl = load_declaration(DEFAULT_DECLARATION, env)
        assert decl.vars["primary_user"] == "alice"
        assert decl.stack.env["SERVER_IP"] == "192.168.1.50"
        group = next(c for c in decl.commands if c.name == "docker-group")
        assert "usermod -aG docker 'alice'" == group.command

    def test_stack_services(self):
        decl = load_declaration(DEFAULT_DECLARATION, {})
        names = [s.name for s in decl.stack.services]
        assert names == [
            "traefik",
            "portainer",
            "postgres",
            "redis",
            "mongo",
            "pgadmin",
            "redis-commander",
            "mongo-express",
            "netdata",
        ]
        assert [b.env for b in decl.stack.secrets] == [
            "POSTGRES_PASSWORD",
            "PGADMIN_DEFAULT_PASSWORD",
            "ME_CONFIG_BASICAUTH_PASSWORD",
        ]
