"""Local filesystem storage for uploaded and scanned input files."""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path

from enricher.core.config import get_settings

logger = logging.getLogger(__name__)


def uploads_dir() -> Path:
    path = Path(get_settings().uploads_dir).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def _target_path(original_name: str | None) -> Path:
    suffix = Path(original_name or "upload.csv").suffix.lower() or ".csv"
    return (uploads_dir() / f"{uuid.uuid4()}{suffix}").resolve()


def stage_local_file(source: Path, original_name: str | None = None) -> Path:
    """Copy a file that already sits on disk into the uploads directory."""
    target_path = _target_path(original_name or source.name)
    shutil.copyfile(source, target_path)
    return target_path


def is_staged_upload(uri: str | Path) -> bool:
    return Path(uri).resolve().parent == uploads_dir()


def delete_upload(uri: str | Path) -> bool:
    """Remove a staged file once its job is finished.

    Files outside the uploads directory belong to the caller and are kept.
    """
    path = Path(uri).resolve()
    if not is_staged_upload(path):
        return False
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not delete staged file {path}: {e}")
        return False
    logger.info(f"Deleted staged upload {path.name}")
    return True
