"""YAML configuration for the motion-quality pipeline.

Configs live in ``motionquality/config/`` (or ``$MOTIONQUALITY_CONFIG_DIR``).
Settings read from the environment use the ``MOTIONQUALITY_`` prefix and may
also come from a ``.env`` file.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

load_dotenv()

ENV_PREFIX = "MOTIONQUALITY_"
CONFIG_DIR_ENV = f"{ENV_PREFIX}CONFIG_DIR"
PACKAGE_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

_MISSING = object()


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


class Config:
    """Cached access to the YAML config files of one directory."""

    def __init__(self, config_dir: Path | str | None = None):
        """Initialize configuration manager.

        Args:
            config_dir: Directory containing config files. Defaults to
                $MOTIONQUALITY_CONFIG_DIR, then the package's config/ directory.
        """
        if config_dir is None:
            config_dir = os.getenv(CONFIG_DIR_ENV) or PACKAGE_CONFIG_DIR

        self.config_dir = Path(config_dir)
        self._cache: dict[str, dict[str, Any]] = {}

    def path_for(self, config_name: str) -> Path:
        return self.config_dir / f"{config_name}.yaml"

    def load(self, config_name: str) -> dict[str, Any]:
        """Load a config file.

        Args:
            config_name: File name without the .yaml extension.

        Returns:
            Parsed configuration (empty dict for an empty file).

        Raises:
            FileNotFoundError: If the config file doesn't exist.
        """
        if config_name not in self._cache:
            path = self.path_for(config_name)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {path}")

            self._cache[config_name] = _read_yaml(path)
        return self._cache[config_name]

    def get(self, config_name: str, key: str, default: Any = None) -> Any:
        """Look up a dotted key, e.g. ``get("pipeline_config", "fusion.smoothing_factor")``.

        Missing keys and explicit nulls both return ``default``.
        """
        node: Any = self.load(config_name)
        for part in key.split("."):
            node = node.get(part, _MISSING) if isinstance(node, dict) else _MISSING
            if node is _MISSING or node is None:
                return default
        return node

    def get_env(self, name: str, default: str | None = None) -> str | None:
        """Read ``MOTIONQUALITY_<name>`` from the environment."""
        if not name.startswith(ENV_PREFIX):
            name = f"{ENV_PREFIX}{name}"
        return os.getenv(name, default)

    def reload(self, config_name: str | None = None) -> dict[str, Any] | None:
        """Drop cached configs so the next access re-reads the files.

        Args:
            config_name: Config to reload; all configs if None.

        Returns:
            The reloaded config when a name was given.
        """
        if config_name is None:
            self._cache.clear()
            return None
        self._cache.pop(config_name, None)
        return self.load(config_name)


_global_config: Config | None = None


def get_config() -> Config:
    """Process-wide Config for the default config directory."""
    global _global_config
    if _global_config is None:
        _global_config = Config()
    return _global_config


def load_pipeline_config() -> dict[str, Any]:
    """Detector, fusion, scheduler, analyzer and profiler defaults."""
    return get_config().load("pipeline_config")


def load_exercise_config() -> dict[str, Any]:
    """Exercise criteria, aliases and tempo classes."""
    return get_config().load("exercise_config")
