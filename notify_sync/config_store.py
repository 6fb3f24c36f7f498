"""Layered client configuration: field defaults < env < config file < command-line overrides."""
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml
from pydantic import ValidationError

from notify_sync.domain.common.errors import ConfigError

logger = logging.getLogger(__name__)

_PARSERS: Dict[str, Callable[[str], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.loads,
}


def read_config_file(path: Path) -> Dict[str, Any]:
    """Parse a YAML or JSON config file into settings fields.

    A missing or empty file contributes nothing. A file that exists but cannot
    be used raises ConfigError, so a typo never silently falls back to defaults.
    """
    if not path.is_file():
        logger.debug("No config file at %s; using env and defaults", path)
        return {}
    parse = _PARSERS.get(path.suffix.lower())
    if parse is None:
        raise ConfigError(f"Config file must be .yaml, .yml or .json: {path}")
    try:
        data = parse(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must hold a mapping, not {type(data).__name__}")
    return data


class ConfigStore:
    """Resolves the client's Settings once and caches them.

    The config file is master over the environment; overrides pushed with
    ``update`` (the CLI flags) win over both.
    """

    def __init__(self, settings_cls: type, config_file: Optional[str] = None):
        self._settings_cls = settings_cls
        self.config_file = Path(config_file).expanduser() if config_file else None
        self._overrides: Dict[str, Any] = {}
        self._current: Optional[Any] = None

    def _build(self, overrides: Dict[str, Any]) -> Any:
        try:
            fields = self._settings_cls().model_dump()
            if self.config_file is not None:
                from_file = read_config_file(self.config_file)
                if from_file:
                    logger.info("Loaded config file %s (%d keys)", self.config_file, len(from_file))
                fields.update(from_file)
            fields.update(overrides)
            return self._settings_cls(**fields)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_settings(self) -> Any:
        """Current Settings; raises ConfigError when env or file values are invalid."""
        if self._current is None:
            self._current = self._build(self._overrides)
        return self._current

    def update(self, overrides: Dict[str, Any]) -> bool:
        """Apply overrides on top of env and file. Returns False and keeps the previous config when invalid."""
        merged = {**self._overrides, **overrides}
        try:
            current = self._build(merged)
        except ConfigError as e:
            logger.warning("Config update rejected; keeping previous config: %s", e)
            return False
        self._overrides = merged
        self._current = current
        return True
