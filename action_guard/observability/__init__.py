"""Structured logging."""

from .logging import SensitiveKeyRedactor, get_logger, setup_logging

__all__ = ["SensitiveKeyRedactor", "get_logger", "setup_logging"]
