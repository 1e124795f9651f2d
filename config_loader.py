"""
Pipeline configuration: one JSON file, read once per process.

The file location defaults to ./config.json and can be overridden with the
ETL_CONFIG environment variable (a .env file works too, see etl.py).
"""
import json
import os
from datetime import date
from pathlib import Path
from typing import Any, Dict, Tuple

DEFAULT_CONFIG_FILE = "config.json"

REQUIRED_SECTIONS = ("database_path", "paths", "bronze", "silver", "gold")


class ConfigLoader:
    """Process-wide config; every ConfigLoader() call returns the same object."""

    _instance = None
    _config: Dict[str, Any] = {}
    _loaded = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigLoader, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if self._loaded:
            return
        self._config = self._read(os.getenv("ETL_CONFIG", DEFAULT_CONFIG_FILE))
        self._validate()
        self._loaded = True

    @staticmethod
    def _read(config_path: str) -> Dict[str, Any]:
        config_file = Path(config_path)
        if not config_file.is_file():
            raise FileNotFoundError(
                f"Config file {config_path} does not exist. "
                "Copy config.json or point ETL_CONFIG at your own file."
            )
        with open(config_file, "r", encoding="utf-8") as f:
            return json.load(f)

    def _validate(self):
        missing = [s for s in REQUIRED_SECTIONS if s not in self._config]
        if missing:
            raise ValueError(f"Missing required config sections: {missing}")

        self._validate_bronze(self._config["bronze"])
        self._validate_silver(self._config["silver"])
        self.window()

    @staticmethod
    def _validate_bronze(section: Dict[str, Any]):
        for key in ("sessions_file", "effects_file"):
            name = section.get(key)
            if not isinstance(name, str) or not name.strip():
                raise ValueError(f"bronze.{key} must be a non-empty file name, got {name!r}")

    @staticmethod
    def _validate_silver(section: Dict[str, Any]):
        types = section.get("discount_effect_types")
        valid = isinstance(types, list) and types and all(
            isinstance(t, str) and t for t in types
        )
        if not valid:
            raise ValueError(
                "silver.discount_effect_types must be a non-empty list of strings, "
                f"got {types!r}"
            )

    def window(self) -> Tuple[date, date]:
        """Gold reporting window as (start, end) dates, end exclusive."""
        gold = self._config.get("gold", {})
        try:
            start = date.fromisoformat(gold.get("window_start", ""))
            end = date.fromisoformat(gold.get("window_end", ""))
        except (TypeError, ValueError) as e:
            raise ValueError(
                f"gold.window_start/window_end must be ISO dates (YYYY-MM-DD): {e}"
            ) from e
        if start >= end:
            raise ValueError(
                f"gold.window_start must be before gold.window_end, got {start} >= {end}"
            )
        return start, end

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Look up a value by dot path, e.g. 'gold.window_start'.
        Returns default when any segment of the path is absent.
        """
        node = self._config
        for key in key_path.split("."):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def get_path(
        self, path_key: str, create: bool = False, base_dir: str = None
    ) -> Path:
        """
        Resolve a configured directory to an absolute Path.

        Relative values are taken against base_dir, or the working directory
        when base_dir is not given. With create=True the directory is made.
        """
        configured = self.get(path_key)
        if not configured:
            raise ValueError(f"Path key '{path_key}' not found in config")

        path = Path(configured)
        if not path.is_absolute():
            path = Path(base_dir or Path.cwd()) / path
        if create:
            path.mkdir(parents=True, exist_ok=True)
        return path

    def reload(self):
        """Re-read the file, e.g. after ETL_CONFIG changed."""
        self._loaded = False
        self.__init__()


_loader = None


def load_config() -> ConfigLoader:
    global _loader
    if _loader is None:
        _loader = ConfigLoader()
    return _loader
