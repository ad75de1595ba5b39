"""Logging utilities."""

from .utils import LOG_FORMAT, TAG_ATTR, setup_file_logger

__all__ = ["LOG_FORMAT", "TAG_ATTR", "setup_file_logger"]
