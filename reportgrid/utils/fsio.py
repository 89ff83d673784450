"""File system I/O with atomic JSON writes for snapshot and configuration files."""
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

from .exceptions import PersistenceError

log = logging.getLogger(__name__)


def atomic_write_json(file_path: Path, content: Any, encoding: str = "utf-8") -> None:
    """
    Atomically write JSON content using a temporary file and rename.

    Readers never observe a half-written file: the temporary file lives in
    the target directory so the final ``replace`` stays on one filesystem.

    Args:
        file_path: Destination path
        content: JSON-serializable content
        encoding: File encoding

    Raises:
        PersistenceError: If the file cannot be written
    """
    file_path = Path(file_path)
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            suffix=".tmp",
            prefix=f".{file_path.stem}_",
            dir=file_path.parent
        )
    except OSError as e:
        raise PersistenceError(f"Cannot prepare write for {file_path.name}: {e}", cause=e) from e

    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, 'w', encoding=encoding) as f:
            json.dump(content, f, indent=2, ensure_ascii=False, default=str)
        temp_path.replace(file_path)
        log.debug(f"Atomically wrote file: {file_path.name}")
    except (OSError, TypeError, ValueError) as e:
        if temp_path.exists():
            temp_path.unlink()
        raise PersistenceError(f"Failed to write {file_path.name}: {e}", cause=e) from e


def read_json(file_path: Path, encoding: str = "utf-8") -> Optional[Any]:
    """
    Read a JSON file.

    Args:
        file_path: Path to read

    Returns:
        Parsed content, or None if the file does not exist

    Raises:
        PersistenceError: If the file exists but cannot be read or parsed
    """
    file_path = Path(file_path)
    if not file_path.exists():
        return None
    try:
        with open(file_path, 'r', encoding=encoding) as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(f"Failed to read {file_path.name}: {e}", cause=e) from e


def remove_file(file_path: Path) -> bool:
    """Delete a file if present. Returns True if something was removed."""
    try:
        Path(file_path).unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise PersistenceError(f"Failed to delete {Path(file_path).name}: {e}", cause=e) from e


def safe_filename(name: str, max_length: int = 200) -> str:
    """Create a safe filename from arbitrary text."""
    # Remove or replace problematic characters
    safe = re.sub(r'[<>:"/\\|?*]', '_', name)
    # Remove control characters
    safe = ''.join(c for c in safe if ord(c) >= 32)
    # Trim whitespace and dots (Windows doesn't like trailing dots)
    safe = safe.strip('. ')
    if len(safe) > max_length:
        safe = safe[:max_length].rstrip('. ')
    if not safe:
        safe = "unnamed"
    return safe


def ensure_directory(path: Union[str, Path]) -> Path:
    """Ensure directory exists, creating it if necessary."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
