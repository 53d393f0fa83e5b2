"""
agentcron diagnostics logging.

Everything under the "agentcron" logger goes to stderr (stdout is kept for
command output, including --json) and, unless disabled in config, to a
size-rotated agentcron.log. Job output never goes through here; see
agentcron.runner.logs.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler

from agentcron.core.config import AgentCronConfig
from agentcron.core.errors import ConfigError

LOG_FILE_NAME = "agentcron.log"


def parse_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level: {name}")
    return level


def setup_logging(config: AgentCronConfig, verbose: bool = False) -> logging.Logger:
    """Configure the "agentcron" logger from config.logging. verbose forces DEBUG on stderr."""
    settings = config.logging
    console_level = logging.DEBUG if verbose else parse_level(settings.console_level)

    logger = logging.getLogger("agentcron")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("agentcron: %(levelname)s %(message)s"))
    logger.addHandler(console_handler)

    log_dir = config.get_app_log_dir()
    if log_dir is None:
        return logger

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        logger.warning(f"File logging disabled: {e}")
        return logger

    file_handler.setLevel(parse_level(settings.file_level))
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(file_handler)
    return logger
