"""Observability package for docsync."""

from .logging import setup_logging, setup_logging_from_config, JSONFormatter, ColoredFormatter
from .metrics import docsync_registry, get_metrics_text

__all__ = [
    'setup_logging',
    'setup_logging_from_config',
    'JSONFormatter',
    'ColoredFormatter',
    'docsync_registry',
    'get_metrics_text',
]
