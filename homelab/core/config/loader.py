"""
Declaration loader — reads homelab.yml into domain models.

This is the primary entry point for loading the desired host state.
It reads YAML, applies variable interpolation and environment
overrides, validates against the Pydantic schema, and returns a typed,
immutable HostDeclaration.

Validation never stops at the first problem: schema errors from
Pydantic and cross-entry checks (duplicates) are collected and raised
together as one ValidationError.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from string import Template
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from homelab.core.errors import ValidationError
from homelab.core.models.declaration import SECTION_ORDER, HostDeclaration

logger = logging.getLogger(__name__)

# Default declaration filename
DECLARATION_FILE = "homelab.yml"

# Bundled declaration reproducing the stock homelab setup
DEFAULT_DECLARATION = Path(__file__).resolve().parents[2] / "data" / DECLARATION_FILE

# Environment overrides for the settings section
SETTINGS_ENV = {
    "state_dir": "HOMELAB_STATE_DIR",
    "secrets_file": "HOMELAB_SECRETS_FILE",
    "lock_file": "HOMELAB_LOCK_FILE",
    "action_timeout": "HOMELAB_ACTION_TIMEOUT",
}

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def find_declaration_file(start_dir: Path | None = None) -> Path | None:
    """Search for homelab.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to homelab.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / DECLARATION_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def resolve_declaration_path(
    explicit: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Path:
    """Pick the declaration file to use.

    Precedence: explicit path > HOMELAB_CONFIG > homelab.yml found
    upward from cwd > the bundled default declaration.
    """
    env = os.environ if env is None else env
    if explicit is not None:
        return explicit
    if env.get("HOMELAB_CONFIG"):
        return Path(env["HOMELAB_CONFIG"])
    found = find_declaration_file()
    if found is not None:
        return found
    logger.info("No %s found, using bundled declaration", DECLARATION_FILE)
    return DEFAULT_DECLARATION


def load_declaration(
    path: Path,
    env: Mapping[str, str] | None = None,
) -> HostDeclaration:
    """Load and validate a host declaration.

    Args:
        path: Path to the YAML declaration.
        env: Environment used for ``${VAR}`` expansion in ``vars`` and
            for settings overrides (default: os.environ).

    Returns:
        Validated, immutable HostDeclaration.

    Raises:
        ValidationError: With every violation found.
    """
    env = os.environ if env is None else env
    source = str(path)

    if not path.is_file():
        raise ValidationError([f"declaration file not found: {path}"], source=source)

    logger.debug("Loading declaration from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ValidationError([f"cannot read {path}: {e}"], source=source) from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ValidationError([f"invalid YAML: {e}"], source=source) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(
            [f"expected a YAML mapping, got {type(data).__name__}"], source=source
        )

    errors: list[str] = []

    # Sections keep the order they appear in the document
    present = [key for key in data if key in SECTION_ORDER]
    data["sections"] = present + [s for s in SECTION_ORDER if s not in present]

    variables = _expand_vars(data.get("vars"), env, errors)
    if variables is not None:
        data["vars"] = variables
        _interpolate(data, variables, path.parent, errors)

    _apply_settings_env(data, env)
    errors.extend(_duplicate_violations(data))

    declaration: HostDeclaration | None = None
    try:
        declaration = HostDeclaration.model_validate(data)
    except PydanticValidationError as e:
        errors.extend(_format_pydantic_errors(e, data))

    if declaration is not None and declaration.stack is not None:
        managed = {f.path for f in declaration.files}
        for out in declaration.stack.output_paths():
            if out in managed:
                errors.append(f"file:{out}: also rendered by {declaration.stack.ref}")

    if errors or declaration is None:
        raise ValidationError(errors, source=source)

    logger.info(
        "Loaded declaration '%s' with %d resources",
        declaration.name,
        sum(1 for _ in declaration.resources()),
    )
    return declaration


# ── Interpolation ───────────────────────────────────────────────────


def _expand_env(value: str, env: Mapping[str, str]) -> str:
    """Expand ``${NAME}`` and ``${NAME:-default}`` from the environment."""

    def repl(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        return env.get(name) or (default if default is not None else "")

    return _ENV_REF.sub(repl, value)


def _expand_vars(
    raw: Any,
    env: Mapping[str, str],
    errors: list[str],
) -> dict[str, str] | None:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        errors.append("vars: expected a mapping")
        return None
    return {str(k): _expand_env(str(v), env) for k, v in raw.items()}


def _substitute(value: Any, variables: dict[str, str]) -> Any:
    if isinstance(value, str):
        return Template(value).safe_substitute(variables)
    return value


def _interpolate(
    data: dict,
    variables: dict[str, str],
    base_dir: Path,
    errors: list[str],
) -> None:
    """Fill ``${var}`` placeholders in commands, files and stack env.

    Unknown placeholders are left untouched so shell variables in
    commands survive.
    """
    for entry in _entries(data, "commands"):
        for field in ("command", "unless", "creates", "user"):
            if field in entry:
                entry[field] = _substitute(entry[field], variables)

    for entry in _entries(data, "files"):
        if "content" in entry:
            entry["content"] = _substitute(entry["content"], variables)
        template = entry.get("template")
        # Both given is a schema error; leave it for validation to report
        if isinstance(template, str) and "content" not in entry:
            template_path = base_dir / template
            try:
                text = template_path.read_text(encoding="utf-8")
            except OSError as e:
                errors.append(
                    f"file:{entry.get('path')}: cannot read template {template_path}: {e}"
                )
                continue
            entry["content"] = Template(text).safe_substitute(variables)
            entry["template"] = None

    stack = data.get("stack")
    if isinstance(stack, dict) and isinstance(stack.get("env"), dict):
        stack["env"] = {k: _substitute(v, variables) for k, v in stack["env"].items()}


def _entries(data: dict, section: str) -> list[dict]:
    value = data.get(section)
    if not isinstance(value, list):
        return []
    return [e for e in value if isinstance(e, dict)]


def _apply_settings_env(data: dict, env: Mapping[str, str]) -> None:
    settings = data.get("settings")
    if settings is None:
        settings = {}
    if not isinstance(settings, dict):
        return  # reported by schema validation
    for field, var in SETTINGS_ENV.items():
        if env.get(var):
            settings[field] = env[var]
    data["settings"] = settings


# ── Cross-entry checks ──────────────────────────────────────────────


def _raw_key(section: str, entry: Any) -> str | None:
    """Best-effort resource key of a raw (unvalidated) entry."""
    if section in ("packages", "services") and isinstance(entry, str):
        return entry
    if section == "rules" and isinstance(entry, (str, int)):
        port, _, protocol = str(entry).partition("/")
        return f"{port}/{protocol or 'tcp'}/in"
    if not isinstance(entry, dict):
        return None
    if section == "files":
        return entry.get("path")
    if section == "rules":
        return (
            f"{entry.get('port')}/{entry.get('protocol', 'tcp')}"
            f"/{entry.get('direction', 'in')}"
        )
    name = entry.get("name")
    return str(name) if name is not None else None


def _duplicate_violations(data: dict) -> list[str]:
    errors: list[str] = []
    sections = {
        "packages": ("package", data.get("packages")),
        "repositories": ("repository", data.get("repositories")),
        "commands": ("command", data.get("commands")),
        "files": ("file", data.get("files")),
        "services": ("service", data.get("services")),
    }
    firewall = data.get("firewall")
    if isinstance(firewall, dict):
        sections["rules"] = ("firewall", firewall.get("rules"))

    for section, (kind, entries) in sections.items():
        if not isinstance(entries, list):
            continue
        keys = [_raw_key(section, e) for e in entries]
        keys = [k for k in keys if k is not None]
        dupes = sorted({k for k in keys if keys.count(k) > 1})
        for key in dupes:
            errors.append(f"{kind}:{key}: declared more than once")
    return errors


def _format_pydantic_errors(exc: PydanticValidationError, data: dict) -> list[str]:
    """Render schema errors with the offending entry named."""
    messages = []
    for err in exc.errors():
        loc = err.get("loc", ())
        where = _describe_loc(loc, data)
        msg = err.get("msg", "invalid value")
        # "Value error, x" → "x"
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        messages.append(f"{where}: {msg}" if where else msg)
    return messages


def _describe_loc(loc: tuple, data: dict) -> str:
    parts: list[str] = []
    node: Any = data
    for item in loc:
        if isinstance(item, int):
            label = f"[{item}]"
            entry = node[item] if isinstance(node, list) and item < len(node) else None
            name = None
            if isinstance(entry, dict):
                name = entry.get("name") or entry.get("path") or entry.get("port")
            elif isinstance(entry, (str, int)):
                name = entry
            if name is not None:
                label += f" ({name})"
            parts.append(label)
            node = entry
        else:
            parts.append(f".{item}" if parts else str(item))
            node = node.get(item) if isinstance(node, dict) else None
    return "".join(parts)
