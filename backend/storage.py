"""
File storage utilities for uploaded and processed CSV files.

Each job gets two collision-free locations derived from its id:
- uploads/upload_<job_id>_<filename>   raw bytes as uploaded
- outputs/processed_<job_id>.csv       transformed output

Security considerations:
- Job IDs are sanitized to prevent path traversal
- Uploaded filenames are reduced to a safe basename
"""

import logging
import re
from pathlib import Path
from typing import Any

from config import Config

logger = logging.getLogger(__name__)

# Pattern for valid job IDs (UUID format)
VALID_JOB_ID_PATTERN = re.compile(r"^[a-zA-Z0-9\-]+$")

# Characters allowed in the stored copy of an uploaded filename
UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def ensure_storage_dirs() -> None:
    """Create storage directories if they don't exist."""
    storage_dir = Path(Config.STORAGE_DIR)
    (storage_dir / "uploads").mkdir(parents=True, exist_ok=True)
    (storage_dir / "outputs").mkdir(parents=True, exist_ok=True)


def _sanitize_job_id(job_id: str) -> str | None:
    """
    Sanitize job ID to prevent path traversal.
    Returns None if job_id is invalid.
    """
    if not job_id:
        return None
    if not VALID_JOB_ID_PATTERN.match(job_id):
        logger.warning(f"Invalid job_id format: {job_id}")
        return None
    return job_id


def _sanitize_filename(filename: str) -> str:
    """Reduce an uploaded filename to a safe basename."""
    # Drop any client-side directory components (both separators)
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = UNSAFE_FILENAME_CHARS.sub("_", name).lstrip(".")
    return name or "upload.csv"


def get_upload_path(job_id: str, filename: str) -> Path:
    """Get the path for a job's uploaded CSV."""
    safe_id = _sanitize_job_id(job_id)
    if not safe_id:
        raise ValueError(f"Invalid job_id: {job_id}")
    return Path(Config.STORAGE_DIR) / "uploads" / f"upload_{safe_id}_{_sanitize_filename(filename)}"


def get_output_path(job_id: str) -> Path:
    """Get the path for a job's processed CSV."""
    safe_id = _sanitize_job_id(job_id)
    if not safe_id:
        raise ValueError(f"Invalid job_id: {job_id}")
    return Path(Config.STORAGE_DIR) / "outputs" / f"processed_{safe_id}.csv"


def save_upload(job_id: str, filename: str, content: bytes) -> Path:
    """
    Save uploaded CSV content to disk.
    Returns the path to the saved file.
    """
    ensure_storage_dirs()
    upload_path = get_upload_path(job_id, filename)
    upload_path.write_bytes(content)
    return upload_path


def get_storage_stats() -> dict[str, Any]:
    """Get storage usage statistics."""
    storage_dir = Path(Config.STORAGE_DIR)
    uploads_dir = storage_dir / "uploads"
    outputs_dir = storage_dir / "outputs"

    def get_dir_size(path: Path) -> int:
        total = 0
        if path.exists():
            for f in path.rglob("*"):
                if f.is_file():
                    total += f.stat().st_size
        return total

    return {
        "storage_dir": str(storage_dir),
        "uploads_size_bytes": get_dir_size(uploads_dir),
        "outputs_size_bytes": get_dir_size(outputs_dir),
        "total_size_bytes": get_dir_size(storage_dir),
    }
