"""
Stack renderer — compose document and .env file from the declaration.

Pure: the same stack declaration and secret values always produce
byte-identical output, so a changed checksum on disk means the stack
really changed. Credentials only ever appear in the .env file (0600);
the compose document references them as ``${VAR}``.
"""

from __future__ import annotations

from typing import Any

import yaml

from homelab.core.models.declaration import FileRequirement
from homelab.core.models.stack import StackDeclaration, StackService
from homelab.core.models.template import GeneratedFile, RenderedStack

_HEADER = "# Generated by homelab-provisioner. Do not edit by hand.\n"


def route_labels(service: StackService) -> list[str]:
    """Traefik labels for a service's route (empty if it has none)."""
    route = service.route
    if route is None:
        return []
    router = route.router or service.name
    return [
        "traefik.enable=true",
        f"traefik.http.routers.{router}.rule=Host(`{route.host}`)",
        f"traefik.http.routers.{router}.entrypoints={route.entrypoint}",
        f"traefik.http.services.{router}.loadbalancer.server.port={route.port}",
    ]


def _service_spec(service: StackService) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "image": service.image,
        "container_name": service.container_name or service.name,
    }

    if service.command:
        spec["command"] = (
            list(service.command) if isinstance(service.command, list) else service.command
        )
    if service.pid:
        spec["pid"] = service.pid
    if service.cap_add:
        spec["cap_add"] = list(service.cap_add)
    if service.security_opt:
        spec["security_opt"] = list(service.security_opt)
    if service.ports:
        spec["ports"] = [str(p) for p in service.ports]
    if service.environment:
        spec["environment"] = {k: str(v) for k, v in service.environment.items()}
    if service.volumes:
        spec["volumes"] = list(service.volumes)
    if service.depends_on:
        spec["depends_on"] = list(service.depends_on)

    labels = list(service.labels) + route_labels(service)
    if labels:
        spec["labels"] = labels

    if service.networks:
        spec["networks"] = list(service.networks)
    if service.restart:
        spec["restart"] = service.restart

    return spec


def render_compose(stack: StackDeclaration) -> str:
    """Render the compose document for a stack."""
    compose: dict[str, Any] = {"name": stack.name}

    networks: dict[str, Any] = {
        name: dict(options) for name, options in stack.networks.items()
    }
    for service in stack.services:
        for network in service.networks:
            networks.setdefault(network, {})
    if networks:
        compose["networks"] = networks

    if stack.volumes:
        compose["volumes"] = {name: {} for name in stack.volumes}

    compose["services"] = {s.name: _service_spec(s) for s in stack.services}

    return _HEADER + yaml.dump(
        compose,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=4096,
    )


def render_env(stack: StackDeclaration, secret_values: dict[str, str]) -> str:
    """Render the .env file: plain variables, then credentials.

    Args:
        stack: The stack declaration.
        secret_values: env variable → credential value for every binding.
    """
    lines = [_HEADER.rstrip("\n")]
    for key, value in stack.env.items():
        lines.append(f"{key}={value}")
    if stack.secrets:
        lines.append("")
        lines.append("# Credentials (generated once, never rotated implicitly)")
        for binding in stack.secrets:
            lines.append(f"{binding.env}={secret_values[binding.env]}")
    return "\n".join(lines) + "\n"


def render_stack(stack: StackDeclaration, secret_values: dict[str, str]) -> RenderedStack:
    """Render both stack outputs.

    Raises:
        KeyError: If a secret binding has no value.
    """
    return RenderedStack(
        compose=GeneratedFile(
            path=stack.compose_path,
            content=render_compose(stack),
            mode="0644",
        ),
        env=GeneratedFile(
            path=stack.env_path,
            content=render_env(stack, secret_values),
            mode="0600",
        ),
    )


def stack_file_requirements(
    stack: StackDeclaration,
    rendered: RenderedStack,
) -> list[FileRequirement]:
    """Managed-file requirements for the rendered stack outputs."""
    return [
        FileRequirement(
            path=f.path,
            content=f.content,
            mode=f.mode,
            critical=stack.critical,
            requires=list(stack.requires),
        )
        for f in rendered.files()
    ]
