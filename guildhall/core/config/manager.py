"""
ConfigManager: dot-notation tunables for the guild engine.

Values resolve in three layers, last one wins:

1. ``DEFAULT_CONFIG`` below, with ``guilds.invite_ttl_days`` seeded from
   ``Config.INVITE_TTL_DAYS`` (the ``INVITE_TTL_DAYS`` environment variable)
2. every ``*.yaml`` / ``*.yml`` file under ``config/``, deep-merged in path order
3. in-process ``set()`` overrides, dropped by ``clear_cache()``

Reads initialize lazily, so nothing has to call ``initialize()`` first.

    ttl_days = ConfigManager.get("guilds.invite_ttl_days", 7)
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

import yaml

from guildhall.core.config.config import Config
from guildhall.core.logging.logger import get_logger

logger = get_logger(__name__)

__all__ = ["ConfigManager", "DEFAULT_CONFIG"]

_MISSING = object()

DEFAULT_CONFIG: Dict[str, Any] = {
    "guilds": {
        "invite_ttl_days": 7,
        "search_default_page_size": 20,
        "search_max_page_size": 100,
        "slug_max_length": 100,
        "name_max_length": 100,
        "description_max_length": 500,
    },
}


def _merge_into(target: Dict[str, Any], overlay: Dict[str, Any]) -> None:
    for key, value in overlay.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge_into(current, value)
        else:
            target[key] = value


def _yaml_files(directory: Path) -> Iterator[Path]:
    yield from sorted(p for p in directory.rglob("*") if p.suffix in (".yaml", ".yml"))


def _lookup(tree: Dict[str, Any], key: str) -> Any:
    node: Any = tree
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


class ConfigManager:
    """Class-level store; never instantiated."""

    _values: Dict[str, Any] = {}
    _initialized: bool = False

    @classmethod
    def initialize(cls, config_dir: Optional[Union[str, Path]] = None) -> None:
        """
        Rebuild the store from defaults and YAML, discarding overrides.

        Args:
            config_dir: Directory scanned for YAML (``<project>/config`` when omitted)
        """
        directory = Path(config_dir) if config_dir is not None else Config.PROJECT_ROOT / "config"

        values = copy.deepcopy(DEFAULT_CONFIG)
        values["guilds"]["invite_ttl_days"] = Config.INVITE_TTL_DAYS

        merged = 0
        if directory.is_dir():
            for path in _yaml_files(directory):
                try:
                    data = yaml.safe_load(path.read_text(encoding="utf-8"))
                except (OSError, yaml.YAMLError) as exc:
                    logger.warning(
                        "Skipping unreadable YAML config",
                        extra={"file": str(path), "error_type": type(exc).__name__},
                        exc_info=True,
                    )
                    continue
                if data is None:
                    continue
                if not isinstance(data, dict):
                    logger.warning(
                        "Skipping YAML config without a mapping at the top",
                        extra={"file": str(path), "root_type": type(data).__name__},
                    )
                    continue
                _merge_into(values, data)
                merged += 1

        cls._values = values
        cls._initialized = True
        logger.info(
            "ConfigManager initialized",
            extra={"config_dir": str(directory), "yaml_file_count": merged},
        )

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        >>> ConfigManager.get("guilds.search_max_page_size")
        100
        """
        if not cls._initialized:
            cls.initialize()
        value = _lookup(cls._values, key)
        return default if value is _MISSING or value is None else value

    @classmethod
    def set(cls, key: str, value: Any) -> None:
        """Override ``key`` in-process; missing parents are created, siblings kept."""
        if not cls._initialized:
            cls.initialize()

        *parents, leaf = key.split(".")
        node = cls._values
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        previous = node.get(leaf)
        node[leaf] = value

        logger.info(
            "Configuration override",
            extra={"config_key": key, "previous_value": previous, "new_value": value},
        )

    @classmethod
    def clear_cache(cls) -> None:
        """Forget overrides; the next read reloads defaults and YAML."""
        cls._values = {}
        cls._initialized = False
