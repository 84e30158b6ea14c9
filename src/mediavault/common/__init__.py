"""Common utilities for mediavault packages."""

from .config import ConfigLoader, expand_path_variables
from .logging import setup_logging, get_logger, LogContext
from .logging_config import LoggingConfig
from .errors import MediaVaultError
from .path_utils import normalize_path, absolute_path, is_within

__all__ = [
    'ConfigLoader',
    'expand_path_variables',
    'LoggingConfig',
    'setup_logging',
    'get_logger',
    'LogContext',
    'MediaVaultError',
    'normalize_path',
    'absolute_path',
    'is_within',
]
