"""Налаштування логування AccessWatch."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

# Third-party loggers that follow our level instead of their own defaults
_FOLLOWERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> int:
    """Налаштовує кореневий логер; безпечно викликати повторно.

    Args:
        level: Рівень логування (DEBUG, INFO, WARNING, ERROR).
            Невідомі назви трактуються як INFO.
        stream: Куди писати; за замовчуванням stderr.

    Returns:
        Числовий рівень, що було застосовано.
    """
    numeric = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=stream or sys.stderr,
        force=True,
    )
    for name in _FOLLOWERS:
        logging.getLogger(name).setLevel(numeric)
    return numeric
