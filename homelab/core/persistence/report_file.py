"""
Run report persistence — atomic read/write of the last RunReport.

The report is stored as JSON in <state_dir>/last-run.json and rewritten
after every executed action, so an interrupted or crashed run still
leaves an accurate record of how far it got. Writes are atomic (write
to temp file, then rename).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from homelab.core.models.report import RunReport

logger = logging.getLogger(__name__)

DEFAULT_REPORT_FILE = "last-run.json"


def default_report_path(state_dir: Path) -> Path:
    """Get the report file path inside a state directory."""
    return state_dir / DEFAULT_REPORT_FILE


def load_report(path: Path) -> RunReport | None:
    """Load the last run report.

    Returns:
        The report, or None if there is none or it cannot be read.
    """
    if not path.is_file():
        logger.info("No run report at %s", path)
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        report = RunReport.model_validate(data)
        logger.debug("Loaded report %s from %s", report.run_id, path)
        return report
    except json.JSONDecodeError as e:
        logger.warning("Corrupt run report %s: %s", path, e)
        return None
    except Exception as e:
        logger.warning("Cannot load run report from %s: %s", path, e)
        return None


def save_report(report: RunReport, path: Path) -> None:
    """Save a run report (atomic write).

    Args:
        report: The report to save.
        path: Target path for the report file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    data = report.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".report_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
        logger.debug("Report saved to %s", path)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save run report to %s", path)
        raise
