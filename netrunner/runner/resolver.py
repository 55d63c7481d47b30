from __future__ import annotations

import os
import shutil
from pathlib import Path

from netrunner.config import BinarySettings, get_settings
from netrunner.logger import get_logger


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def resolve_binary(settings: BinarySettings | None = None) -> str:
    """
    Locate the external binary. First match wins:
      1) explicit path from the override env variable, only if it exists
      2) PATH scan
      3) conventional install directories
      4) the literal command name (the OS loader decides at spawn time)
    Never raises: a missing binary surfaces as a spawn error.
    """
    settings = settings or get_settings().binary
    logger = get_logger("resolver")

    override = os.getenv(settings.override_env)
    if override:
        candidate = Path(override).expanduser()
        if candidate.exists():
            logger.debug("binary.resolved", rule="override", path=str(candidate))
            return str(candidate)
        logger.warning("binary.override_missing", env=settings.override_env, path=override)

    found = shutil.which(settings.command_name)
    if found:
        logger.debug("binary.resolved", rule="path", path=found)
        return found

    for directory in settings.search_dirs:
        candidate = directory.expanduser() / settings.command_name
        if _is_executable(candidate):
            logger.debug("binary.resolved", rule="known_dir", path=str(candidate))
            return str(candidate)

    logger.debug("binary.unresolved", command=settings.command_name)
    return settings.command_name
