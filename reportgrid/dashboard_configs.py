"""
Named dashboard configurations.

A configuration captures a manager's widgets and layouts under a name so
the same arrangement can be reloaded into any report view, duplicated, or
shared as a JSON file.
"""
import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from .models import DashboardConfig, DashboardMetadata, DashboardSettings
from .utils.config import SETTINGS
from .utils.exceptions import (
    ConfigurationNotFoundError,
    ErrorContext,
    PersistenceError,
    ValidationError,
)
from .utils.fsio import atomic_write_json, ensure_directory, read_json, safe_filename
from .utils.validation import format_pydantic_errors, validate_config_name

log = logging.getLogger(__name__)


def export_filename(name: str) -> str:
    """File name used when exporting a configuration."""
    slug = re.sub(r"\s+", "-", name.strip())
    return safe_filename(f"dashboard-{slug}") + ".json"


class DashboardConfigStore:
    """Persists a list of DashboardConfig objects in a single JSON file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or SETTINGS.dashboard_config_file)
        self._lock = threading.RLock()

    def _read(self) -> List[DashboardConfig]:
        data = read_json(self.path)
        if data is None:
            return []
        if not isinstance(data, list):
            log.warning(f"{self.path.name} does not contain a list; ignoring it")
            return []

        configs = []
        for index, item in enumerate(data):
            try:
                configs.append(DashboardConfig.model_validate(item))
            except PydanticValidationError as e:
                log.warning(f"Skipping invalid dashboard config #{index}: {format_pydantic_errors(e)}")
        return configs

    def _write(self, configs: List[DashboardConfig]) -> None:
        with ErrorContext(f"write {self.path.name}", log, PersistenceError):
            atomic_write_json(self.path, [c.to_dict() for c in configs])

    def list(self) -> List[DashboardConfig]:
        with self._lock:
            return self._read()

    def get(self, config_id: str) -> Optional[DashboardConfig]:
        with self._lock:
            for config in self._read():
                if config.id == config_id:
                    return config
        return None

    def _require(self, config_id: str) -> DashboardConfig:
        config = self.get(config_id)
        if config is None:
            raise ConfigurationNotFoundError(
                f"Dashboard configuration '{config_id}' not found",
                details={"config_id": config_id}
            )
        return config

    def _add(self, config: DashboardConfig) -> DashboardConfig:
        with self._lock:
            configs = self._read()
            configs.append(config)
            self._write(configs)
        return config

    def save_current(
        self,
        manager,
        name: str,
        description: Optional[str] = None,
        author: Optional[str] = None,
        settings: Optional[DashboardSettings] = None
    ) -> DashboardConfig:
        """
        Save the manager's current widgets and layouts as a new configuration.

        Raises:
            ValidationError: If the name is blank
        """
        name = validate_config_name(name)
        config = DashboardConfig(
            name=name,
            description=(description or "").strip() or None,
            widgets=manager.widgets,
            layouts=manager.layouts,
            settings=settings or DashboardSettings(),
            metadata=DashboardMetadata(author=author)
        )
        self._add(config)
        log.info(f"Saved dashboard configuration '{name}' ({len(config.widgets)} widgets)")
        return config

    def load_into(self, manager, config_id: str) -> DashboardConfig:
        """
        Replace the manager's widgets with a stored configuration.

        Raises:
            ConfigurationNotFoundError: If no configuration has that id
        """
        config = self._require(config_id)
        manager.replace_all(config.widgets, config.layouts)
        log.info(f"Loaded dashboard configuration '{config.name}'")
        return config

    def delete(self, config_id: str) -> bool:
        with self._lock:
            configs = self._read()
            remaining = [c for c in configs if c.id != config_id]
            if len(remaining) == len(configs):
                return False
            self._write(remaining)
        log.info(f"Deleted dashboard configuration {config_id}")
        return True

    def duplicate(self, config_id: str) -> DashboardConfig:
        """Copy a configuration under a new id with a " (Copy)" name suffix."""
        original = self._require(config_id)
        now = datetime.now()
        copy = original.model_copy(
            deep=True,
            update={
                "id": uuid4().hex,
                "name": f"{original.name} (Copy)",
                "metadata": original.metadata.model_copy(
                    update={"created_at": now, "updated_at": now}
                ),
            }
        )
        return self._add(copy)

    def export(self, config_id: str, directory: Path) -> Path:
        """
        Write one configuration to ``dashboard-<name>.json`` in a directory.

        Returns:
            Path of the written file
        """
        config = self._require(config_id)
        target = ensure_directory(directory) / export_filename(config.name)
        atomic_write_json(target, config.to_dict())
        log.info(f"Exported dashboard configuration '{config.name}' to {target}")
        return target

    def import_file(self, path: Path) -> DashboardConfig:
        """
        Import a configuration file under a fresh id.

        Raises:
            ValidationError: If the file is not a valid configuration
        """
        path = Path(path)
        try:
            data: Any = read_json(path)
        except PersistenceError as e:
            raise ValidationError(f"{path.name} is not valid JSON", cause=e) from e
        if data is None:
            raise ValidationError(f"File not found: {path.name}")
        if not isinstance(data, dict) or not all(k in data for k in ("name", "widgets", "layouts")):
            raise ValidationError(
                f"{path.name} is not a dashboard configuration (name, widgets and layouts are required)"
            )

        try:
            config = DashboardConfig.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid dashboard configuration in {path.name}: {format_pydantic_errors(e)}",
                cause=e
            ) from e

        config = config.model_copy(update={
            "id": uuid4().hex,
            "name": validate_config_name(config.name),
            "metadata": config.metadata.model_copy(update={"updated_at": datetime.now()}),
        })
        self._add(config)
        log.info(f"Imported dashboard configuration '{config.name}'")
        return config
