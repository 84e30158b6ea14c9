"""Media indexing engine: catalog, scanner, thumbnails, faces and share tokens."""

__version__ = "0.1.0"

from .config import MediaVaultConfig, ScannerConfig
from .library import MediaLibrary

__all__ = [
    'MediaLibrary',
    'MediaVaultConfig',
    'ScannerConfig',
]
