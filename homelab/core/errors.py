"""
Error taxonomy for the provisioner.

Every error carries enough context (resource reference or action id)
for an operator to find the offending declaration entry.

    HomelabError
    ├── ValidationError   bad declaration, all violations listed
    ├── ProbeError        host state could not be read
    ├── CycleError        dependency graph unsatisfiable
    ├── ActionError       one action failed
    │   └── ActionTimeoutError
    ├── LockError         another run holds the lock
    ├── PrivilegeError    not running as root
    └── SecretStoreError  secret store unreadable or corrupt
"""

from __future__ import annotations


class HomelabError(Exception):
    """Base class for all provisioner errors."""


class ValidationError(HomelabError):
    """The declaration is invalid.

    Carries every violation found, not just the first, so the operator
    can fix the declaration in one pass.
    """

    def __init__(self, errors: list[str], source: str = ""):
        self.errors = list(errors)
        self.source = source
        where = f" in {source}" if source else ""
        summary = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(
            f"{len(self.errors)} validation error(s){where}:\n{summary}"
        )


class ProbeError(HomelabError):
    """Current host state could not be read."""

    def __init__(self, resource: str, message: str):
        self.resource = resource
        super().__init__(f"probe failed for {resource}: {message}")


class CycleError(HomelabError):
    """The dependency graph has a cycle or an unknown reference."""

    def __init__(self, message: str, nodes: list[str] | None = None):
        self.nodes = list(nodes or [])
        super().__init__(message)


class ActionError(HomelabError):
    """A single action failed to apply."""

    kind = "command"

    def __init__(self, action_id: str, message: str):
        self.action_id = action_id
        super().__init__(f"{action_id}: {message}")


class ActionTimeoutError(ActionError):
    """An action exceeded its timeout."""

    kind = "timeout"

    def __init__(self, action_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(action_id, f"timed out after {timeout:g}s")


class LockError(HomelabError):
    """Another provisioning run holds the lock."""


class PrivilegeError(HomelabError):
    """The run requires root privileges."""


class SecretStoreError(HomelabError):
    """The persisted secret store cannot be used."""
