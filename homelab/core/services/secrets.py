"""
Secret store — generate-once credentials for stack services.

Credentials live in a single JSON file (mode 0600) mapping
service → credential name → value. A value is generated the first
time it is asked for and then reused on every later run; nothing here
rotates or regenerates implicitly, so already-deployed containers keep
working after a re-run.

Values are never logged. Concurrent runs against the same file are
not supported at this layer; the run lock serialises applies.
"""

from __future__ import annotations

import json
import logging
import os
import secrets as _secrets
import string
import tempfile
from collections.abc import Callable
from pathlib import Path

from homelab.core.errors import SecretStoreError
from homelab.core.models.stack import SecretBinding, StackDeclaration

logger = logging.getLogger(__name__)

SecretSet = dict[str, dict[str, str]]

# Shown by `plan` in place of a credential that does not exist yet
PLACEHOLDER = "<generated-on-apply>"

_PASSWORD_ALPHABET = string.ascii_letters + string.digits


def _hex(length: int) -> str:
    return _secrets.token_hex(length)


def _token(length: int) -> str:
    return _secrets.token_urlsafe(length)


def _password(length: int) -> str:
    return "".join(_secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


GENERATORS: dict[str, Callable[[int], str]] = {
    "hex": _hex,           # `length` random bytes, hex encoded
    "token": _token,       # `length` random bytes, url-safe base64
    "password": _password, # `length` characters
}


def generator_for(binding: SecretBinding) -> Callable[[], str]:
    """Zero-argument generator for a stack secret binding."""
    produce = GENERATORS[binding.kind]
    return lambda: produce(binding.length)


class SecretStore:
    """Persisted SecretSet with generate-once semantics."""

    def __init__(self, path: Path):
        self._path = path
        self._data: SecretSet | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SecretSet:
        """Load the store from disk (cached after the first call).

        A missing file is an empty store. A corrupt file is an error:
        silently starting fresh would regenerate live credentials.
        """
        if self._data is not None:
            return self._data

        if not self._path.is_file():
            logger.debug("No secret store at %s — starting empty", self._path)
            self._data = {}
            return self._data

        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise SecretStoreError(f"cannot read secret store {self._path}: {e}") from e

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SecretStoreError(f"corrupt secret store {self._path}: {e}") from e

        data = document.get("secrets") if isinstance(document, dict) else None
        if not isinstance(data, dict) or not all(
            isinstance(creds, dict)
            and all(isinstance(k, str) and isinstance(v, str) for k, v in creds.items())
            for creds in data.values()
        ):
            raise SecretStoreError(f"unexpected structure in secret store {self._path}")

        self._data = data
        logger.debug("Loaded secret store %s (%d services)", self._path, len(data))
        return self._data

    def get(self, service: str, name: str) -> str | None:
        return self.load().get(service, {}).get(name)

    def ensure_secret(
        self,
        service: str,
        name: str,
        generator: Callable[[], str],
    ) -> str:
        """Return the stored credential, generating and persisting it once.

        Args:
            service: Owning service (e.g. 'postgres').
            name: Credential name (e.g. 'password').
            generator: Cryptographically secure value producer.

        Returns:
            The credential value.
        """
        existing = self.get(service, name)
        if existing is not None:
            return existing

        value = generator()
        data = self.load()
        data.setdefault(service, {})[name] = value
        self._save(data)
        logger.info("Generated credential %s/%s", service, name)
        return value

    def preview(self, service: str, name: str) -> str:
        """Stored value, or a placeholder if it would be generated."""
        existing = self.get(service, name)
        return existing if existing is not None else PLACEHOLDER

    def names(self) -> dict[str, list[str]]:
        """Credential names per service — never the values."""
        return {svc: sorted(creds) for svc, creds in sorted(self.load().items())}

    def _save(self, data: SecretSet) -> None:
        """Persist the whole set atomically (temp file, fsync, rename)."""
        content = json.dumps(
            {"version": 1, "secrets": data}, indent=2, sort_keys=True
        ) + "\n"

        try:
            self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=".secrets_",
                suffix=".tmp",
            )
        except OSError as e:
            raise SecretStoreError(f"cannot write secret store {self._path}: {e}") from e

        try:
            # mkstemp creates the file 0600 already
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.debug("Secret store saved to %s", self._path)


def ensure_stack_secrets(stack: StackDeclaration, store: SecretStore) -> dict[str, str]:
    """Resolve every secret binding of a stack, generating missing ones.

    Returns:
        env variable → value, in binding order.
    """
    return {
        b.env: store.ensure_secret(b.service, b.name, generator_for(b))
        for b in stack.secrets
    }


def preview_stack_secrets(stack: StackDeclaration, store: SecretStore) -> dict[str, str]:
    """Like ensure_stack_secrets, but never generates or writes."""
    return {b.env: store.preview(b.service, b.name) for b in stack.secrets}
