"""Observability package: logging setup and structured sync logs."""

from .logging import (
    JSONFormatter,
    ColoredFormatter,
    StructuredLogger,
    setup_logging,
    setup_logging_from_settings,
    get_structured_logger,
    state_logger
)

__all__ = [
    'JSONFormatter',
    'ColoredFormatter',
    'StructuredLogger',
    'setup_logging',
    'setup_logging_from_settings',
    'get_structured_logger',
    'state_logger'
]
