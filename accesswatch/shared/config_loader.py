"""Завантаження та атомарний запис YAML конфігурацій."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from accesswatch.shared.errors import ConfigInvalidError

log = logging.getLogger(__name__)


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Зчитує YAML файл та повертає його вміст як dict.

    Args:
        path: Шлях до файлу.

    Returns:
        Вміст файлу як словник.

    Raises:
        FileNotFoundError: Якщо файл не знайдено.
        ConfigInvalidError: Якщо файл не є коректним YAML-словником.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    with p.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ConfigInvalidError(f"{p.name}: {exc}") from exc
    if data is not None and not isinstance(data, dict):
        raise ConfigInvalidError(f"{p.name}: top level must be a mapping")
    log.debug("Loaded config %s (%d top-level keys)", p.name, len(data or {}))
    return data or {}


def atomic_write(path: str | Path, content: str) -> None:
    """Атомарно записує content у файл path."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=f".{target.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)
    except BaseException:
        # Clean up temp file on any failure
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def update_yaml_section(path: str | Path, section: str, value: Any) -> None:
    """Replace one top-level section of a YAML file, keeping the rest."""
    data = load_yaml(path)
    data[section] = value
    atomic_write(path, yaml.safe_dump(data, sort_keys=False, allow_unicode=True))
    log.info("Persisted section '%s' to %s", section, path)
