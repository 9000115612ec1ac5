"""
Configuration store — load, validate, and atomically persist the
Configuration document.

``load()`` never fails the caller: a missing, unreadable, or invalid
document yields built-in defaults plus a recorded warning. ``save()``
validates first and leaves the file untouched on any validation
failure. Writes go to a temp file in the same directory and are then
renamed over the target, so a crash mid-write never corrupts the
previous valid document.

The file format follows the suffix: ``.yml``/``.yaml`` is YAML,
anything else is JSON.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from initium.core.errors import FileSystemError, ValidationError
from initium.core.models.config import Configuration

logger = logging.getLogger(__name__)

# Default config location (relative to the user's home directory)
DEFAULT_CONFIG_DIR = ".config/initium"
DEFAULT_CONFIG_FILE = "config.json"

CONFIG_ENV_VAR = "INITIUM_CONFIG"

_YAML_SUFFIXES = (".yml", ".yaml")


def default_config_path() -> Path:
    """Resolve the config path: ``$INITIUM_CONFIG`` or ``~/.config/initium/config.json``."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def _describe(error: PydanticValidationError) -> tuple[str, str]:
    """First offending field (dotted, on-disk names) and its message."""
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return field, first.get("msg", "invalid value")


def _alias(segment: str) -> str:
    """Map a snake_case key segment to its on-disk camelCase name."""
    return to_camel(segment) if "_" in segment else segment


class ConfigStore:
    """Owns the Configuration document at one path.

    Args:
        path: Document location (default: :func:`default_config_path`).
        log: Logging sink (default: this module's logger).
    """

    def __init__(
        self,
        path: Path | str | None = None,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self.path = Path(path).expanduser() if path else default_config_path()
        self.warnings: list[str] = []
        self._log = log or logger

    # ── Reading ─────────────────────────────────────────────────

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Configuration:
        """Load the document, falling back to defaults on any problem."""
        self.warnings = []

        if not self.path.is_file():
            self._warn(f"No configuration file at {self.path}, using defaults", logging.INFO)
            return Configuration()

        try:
            raw = self.path.read_text(encoding="utf-8")
            data = self._parse(raw)
        except (OSError, ValueError, yaml.YAMLError) as e:
            self._warn(f"Cannot read configuration {self.path}: {e}, using defaults")
            return Configuration()

        if not isinstance(data, dict):
            self._warn(
                f"Expected a mapping in {self.path}, got {type(data).__name__}, using defaults"
            )
            return Configuration()

        try:
            config = Configuration.model_validate(data)
        except PydanticValidationError as e:
            field, msg = _describe(e)
            self._warn(f"Invalid configuration field '{field}': {msg}, using defaults")
            return Configuration()

        self._log.debug("Configuration loaded from %s", self.path)
        return config

    # ── Writing ─────────────────────────────────────────────────

    def validate(self, config: Configuration | dict[str, Any]) -> Configuration:
        """Re-validate a document, raising :class:`ValidationError` on failure.

        Models can be mutated after construction, so the object handed to
        ``save`` is never trusted as already valid.
        """
        if isinstance(config, Configuration):
            data = config.model_dump(mode="python", by_alias=True, warnings=False)
        else:
            data = config
        try:
            return Configuration.model_validate(data)
        except PydanticValidationError as e:
            field, msg = _describe(e)
            raise ValidationError(f"Invalid value for '{field}': {msg}", field=field) from e

    def save(self, config: Configuration | dict[str, Any]) -> Configuration:
        """Validate then atomically persist ``config``.

        Raises:
            ValidationError: A field is invalid; the file is not touched.
            FileSystemError: The document could not be written.
        """
        validated = self.validate(config)
        content = self._serialize(validated.to_document())

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=".config_",
                suffix=".tmp",
            )
            tmp = Path(tmp_path)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(content)
                os.replace(tmp, self.path)
            except BaseException:
                tmp.unlink(missing_ok=True)
                raise
        except OSError as e:
            self._log.error("Failed to save configuration to %s: %s", self.path, e)
            raise FileSystemError(f"Cannot write {self.path}: {e}") from e

        self._log.info("Configuration saved to %s", self.path)
        return validated

    # ── Setters ─────────────────────────────────────────────────

    def set_value(self, key: str, value: Any) -> Configuration:
        """Set one dotted key (``backup.retentionDays`` or ``backup.retention_days``).

        String values are coerced by the model (``"true"``, ``"30"``);
        a comma-separated string sets a list field.
        """
        return self.update({key: value})

    def update(self, changes: dict[str, Any]) -> Configuration:
        """Apply several dotted-key changes as one validated write."""
        config = self.load()
        document = config.to_document()
        for key, value in changes.items():
            parts = [_alias(p) for p in key.split(".") if p]
            node: Any = document
            for part in parts[:-1]:
                node = node.get(part) if isinstance(node, dict) else None
            if not isinstance(node, dict) or not parts or parts[-1] not in node:
                raise ValidationError(f"Unknown configuration key '{key}'", field=key)
            if isinstance(node[parts[-1]], list) and isinstance(value, str):
                value = [item.strip() for item in value.split(",") if item.strip()]
            node[parts[-1]] = value
        return self.save(document)

    def reset(self) -> Configuration:
        """Persist built-in defaults."""
        return self.save(Configuration())

    # ── Internal helpers ────────────────────────────────────────

    @property
    def _is_yaml(self) -> bool:
        return self.path.suffix.lower() in _YAML_SUFFIXES

    def _parse(self, raw: str) -> Any:
        if self._is_yaml:
            return yaml.safe_load(raw)
        return json.loads(raw)

    def _serialize(self, document: dict[str, Any]) -> str:
        if self._is_yaml:
            return yaml.safe_dump(document, sort_keys=False)
        return json.dumps(document, indent=2, ensure_ascii=False) + "\n"

    def _warn(self, message: str, level: int = logging.WARNING) -> None:
        self.warnings.append(message)
        self._log.log(level, message)
