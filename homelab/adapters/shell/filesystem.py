"""
Filesystem adapter — managed file writes.

Writes are atomic (temp file in the target directory, then rename),
so a crash never leaves a half-written config behind. The same
``file_state`` helper is used by the probe, so planning and
postcondition checks compare the same facts.
"""

from __future__ import annotations

import grp
import hashlib
import logging
import os
import pwd
import shutil
import stat
import tempfile
from pathlib import Path

from homelab.adapters.base import Adapter, ExecutionContext
from homelab.core.errors import ActionError
from homelab.core.models.state import FileState

logger = logging.getLogger(__name__)


def _name_of_uid(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _name_of_gid(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def file_state(path: Path) -> FileState | None:
    """Checksum, mode and ownership of a file, or None if it is missing.

    Raises:
        OSError: If the file exists but cannot be read.
    """
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    if not stat.S_ISREG(st.st_mode):
        # a directory or device where a file should be; treat as different
        return FileState(sha256="", mode="", owner="", group="")

    digest = hashlib.sha256(path.read_bytes()).hexdigest()
    return FileState(
        sha256=digest,
        mode=format(stat.S_IMODE(st.st_mode), "04o"),
        owner=_name_of_uid(st.st_uid),
        group=_name_of_gid(st.st_gid),
    )


def write_atomic(
    path: Path,
    content: str,
    mode: int = 0o644,
    owner: str | None = None,
    group: str | None = None,
) -> None:
    """Write a file atomically with the given mode and ownership.

    Ownership is only changed when running as root; otherwise the file
    keeps the current user's ownership.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        if os.geteuid() == 0 and (owner or group):
            shutil.chown(tmp_path, user=owner, group=group)
        os.replace(tmp_path, path)
    except Exception:
        Path(tmp_path).unlink(missing_ok=True)
        raise


class FilesystemAdapter(Adapter):
    """Managed file writes.

    Action params (write-file):
        path (str): Absolute target path.
        content (str): Full file content.
        sha256 (str): Checksum of ``content``.
        mode (str): Octal mode, e.g. '0644'.
        owner, group (str): Ownership (applied when running as root).
    """

    required_params = {
        "write-file": ("path", "content", "sha256", "mode"),
    }

    @property
    def name(self) -> str:
        return "file"

    def is_available(self) -> bool:
        return True  # filesystem is always available

    def check(self, context: ExecutionContext) -> bool | None:
        params = context.params
        try:
            state = file_state(Path(params["path"]))
        except OSError as e:
            raise ActionError(context.action.id, f"cannot inspect {params['path']}: {e}") from e
        if state is None:
            return False
        if state.sha256 != params["sha256"] or state.mode != params["mode"]:
            return False
        if os.geteuid() == 0:
            return state.owner == params.get("owner", "root") and state.group == params.get(
                "group", "root"
            )
        return True

    def execute(self, context: ExecutionContext) -> str:
        params = context.params
        target = Path(params["path"])
        try:
            write_atomic(
                target,
                params["content"],
                mode=int(params["mode"], 8),
                owner=params.get("owner"),
                group=params.get("group"),
            )
        except (OSError, LookupError) as e:
            raise ActionError(context.action.id, f"cannot write {target}: {e}") from e

        logger.debug("Wrote %s (mode %s)", target, params["mode"])
        # Never echo content: it may hold credentials
        return f"wrote {target} ({len(params['content'])} bytes)"
