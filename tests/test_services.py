"""
Tests for the secret store and the stack renderer.
"""

import json
import stat
from pathlib import Path

import pytest
import yaml

from homelab.core.errors import SecretStoreError
from homelab.core.models.stack import SecretBinding, StackDeclaration
from homelab.core.services.secrets import (
    PLACEHOLDER,
    SecretStore,
    ensure_stack_secrets,
    generator_for,
    preview_stack_secrets,
)
from homelab.core.services.stack_render import (
    render_compose,
    render_env,
    render_stack,
    route_labels,
    stack_file_requirements,
)

# ── Secrets ──────────────────────────────────────────────────────────


@pytest.fixture
def store(tmp_state_dir: Path) -> SecretStore:
    return SecretStore(tmp_state_dir / "secrets.json")


class TestSecretStore:
    def test_generated_once(self, store: SecretStore):
        calls = []

        def gen():
            calls.append(1)
            return f"value-{len(calls)}"

        assert store.ensure_secret("postgres", "password", gen) == "value-1"
        assert store.ensure_secret("postgres", "password", gen) == "value-1"
        assert len(calls) == 1

    def test_persisted_across_instances(self, store: SecretStore):
        store.ensure_secret("postgres", "password", lambda: "s3cret")
        reopened = SecretStore(store.path)
        assert reopened.get("postgres", "password") == "s3cret"
        assert reopened.ensure_secret("postgres", "password", lambda: "other") == "s3cret"

    def test_file_mode(self, store: SecretStore):
        store.ensure_secret("postgres", "password", lambda: "s3cret")
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600
        document = json.loads(store.path.read_text())
        assert document == {"version": 1, "secrets": {"postgres": {"password": "s3cret"}}}

    def test_corrupt_store(self, store: SecretStore):
        store.path.write_text("{not json")
        with pytest.raises(SecretStoreError, match="corrupt"):
            store.load()

    def test_unexpected_structure(self, store: SecretStore):
        store.path.write_text(json.dumps({"secrets": {"postgres": "flat"}}))
        with pytest.raises(SecretStoreError, match="unexpected structure"):
            store.load()

    def test_preview_never_writes(self, store: SecretStore):
        assert store.preview("postgres", "password") == PLACEHOLDER
        assert not store.path.exists()

    def test_names_without_values(self, store: SecretStore):
        store.ensure_secret("pgadmin", "password", lambda: "a")
        store.ensure_secret("postgres", "password", lambda: "b")
        store.ensure_secret("postgres", "admin", lambda: "c")
        assert store.names() == {"pgadmin": ["password"], "postgres": ["admin", "password"]}


class TestGenerators:
    def test_hex(self):
        value = generator_for(SecretBinding(env="A", service="s", name="n", length=16))()
        assert len(value) == 32
        int(value, 16)

    def test_password(self):
        value = generator_for(
            SecretBinding(env="A", service="s", name="n", kind="password", length=12)
        )()
        assert len(value) == 12
        assert value.isalnum()

    def test_values_differ(self):
        gen = generator_for(SecretBinding(env="A", service="s", name="n", kind="token"))
        assert gen() != gen()


STACK = StackDeclaration.model_validate(
    {
        "name": "lab",
        "directory": "/srv/lab",
        "networks": {"proxy": {"name": "proxy"}},
        "volumes": ["postgres_data"],
        "env": {"SERVER_IP": "10.0.0.5", "ADMIN_EMAIL": "admin@example.com"},
        "secrets": [
            {"env": "POSTGRES_PASSWORD", "service": "postgres", "name": "password"},
            {"env": "PGADMIN_DEFAULT_PASSWORD", "service": "pgadmin", "name": "password",
             "kind": "password", "length": 12},
        ],
        "services": [
            {
                "name": "postgres",
                "image": "postgres:16",
                "environment": {"POSTGRES_PASSWORD": "${POSTGRES_PASSWORD}"},
                "volumes": ["postgres_data:/var/lib/postgresql/data"],
                "networks": ["proxy"],
            },
            {
                "name": "redis-commander",
                "image": "rediscommander/redis-commander:latest",
                "depends_on": ["postgres"],
                "networks": ["proxy"],
                "route": {"host": "rediscomm.${SERVER_IP}.nip.io", "port": 8081,
                          "router": "rediscomm"},
            },
        ],
    }
)


class TestStackSecrets:
    def test_ensure_and_preview(self, store: SecretStore):
        assert preview_stack_secrets(STACK, store) == {
            "POSTGRES_PASSWORD": PLACEHOLDER,
            "PGADMIN_DEFAULT_PASSWORD": PLACEHOLDER,
        }
        values = ensure_stack_secrets(STACK, store)
        assert list(values) == ["POSTGRES_PASSWORD", "PGADMIN_DEFAULT_PASSWORD"]
        assert len(values["PGADMIN_DEFAULT_PASSWORD"]) == 12
        assert preview_stack_secrets(STACK, store) == values
        assert ensure_stack_secrets(STACK, store) == values


# ── Rendering ────────────────────────────────────────────────────────

SECRETS = {"POSTGRES_PASSWORD": "pg-secret", "PGADMIN_DEFAULT_PASSWORD": "pga-secret"}


class TestStackRender:
    def test_route_labels(self):
        labels = route_labels(STACK.services[1])
        assert labels == [
            "traefik.enable=true",
            "traefik.http.routers.rediscomm.rule=Host(`rediscomm.${SERVER_IP}.nip.io`)",
            "traefik.http.routers.rediscomm.entrypoints=web",
            "traefik.http.services.rediscomm.loadbalancer.server.port=8081",
        ]
        assert route_labels(STACK.services[0]) == []

    def test_compose_document(self):
        text = render_compose(STACK)
        assert text.startswith("# Generated by homelab-provisioner")
        doc = yaml.safe_load(text)
        assert doc["name"] == "lab"
        assert doc["networks"] == {"proxy": {"name": "proxy"}}
        assert doc["volumes"] == {"postgres_data": {}}
        assert list(doc["services"]) == ["postgres", "redis-commander"]
        pg = doc["services"]["postgres"]
        assert pg["container_name"] == "postgres"
        assert pg["restart"] == "unless-stopped"
        # compose resolves credentials from .env
        assert pg["environment"] == {"POSTGRES_PASSWORD": "${POSTGRES_PASSWORD}"}
        assert doc["services"]["redis-commander"]["depends_on"] == ["postgres"]

    def test_no_credentials_in_compose(self):
        rendered = render_stack(STACK, SECRETS)
        assert "pg-secret" not in rendered.compose.content
        assert "pg-secret" in rendered.env.content

    def test_env_file(self):
        assert render_env(STACK, SECRETS).splitlines()[1:] == [
            "SERVER_IP=10.0.0.5",
            "ADMIN_EMAIL=admin@example.com",
            "",
            "# Credentials (generated once, never rotated implicitly)",
            "POSTGRES_PASSWORD=pg-secret",
            "PGADMIN_DEFAULT_PASSWORD=pga-secret",
        ]

    def test_deterministic(self):
        assert render_stack(STACK, SECRETS) == render_stack(STACK, dict(SECRETS))

    def test_missing_secret_value(self):
        with pytest.raises(KeyError):
            render_stack(STACK, {"POSTGRES_PASSWORD": "x"})

    def test_file_requirements(self):
        stack = STACK.model_copy(update={"requires": ["service:docker"]})
        files = stack_file_requirements(stack, render_stack(stack, SECRETS))
        assert [(f.path, f.mode) for f in files] == [
            ("/srv/lab/compose.yml", "0644"),
            ("/srv/lab/.env", "0600"),
        ]
        assert all(f.requires == ["service:docker"] for f in files)
