# Copyright (c) Meta Platforms, Inc. and affiliates.
# Modifications copyright (c) 2025 Logan Martel.
# Adapted from https://github.com/meta-pytorch/KernelAgent (Apache-2.0).

"""Rotating run logs for the polyrun loggers."""

from __future__ import annotations

import logging

from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

TAG_ATTR = "_polyrun_tag"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _tagged_handler(
    logger: logging.Logger, marker: str
) -> Optional[RotatingFileHandler]:
    for handler in logger.handlers:
        if getattr(handler, TAG_ATTR, None) == marker:
            return handler  # type: ignore[return-value]
    return None


def setup_file_logger(
    log_file: Path,
    name: str = "polyrun",
    level: Union[str, int] = "INFO",
    *,
    max_bytes: int = 2_000_000,
    backup_count: int = 3,
) -> logging.Logger:
    """Attach one rotating handler per log file to the ``name`` logger.

    Calling it again for the same file only updates the levels, so the CLI
    and embedding code can both ask for the same log.
    """

    logger = logging.getLogger(name)
    logger.setLevel(level)
    marker = str(log_file)
    handler = _tagged_handler(logger, marker)
    if handler is None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        setattr(handler, TAG_ATTR, marker)
        logger.addHandler(handler)
    handler.setLevel(level)
    return logger
