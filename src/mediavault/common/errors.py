"""Base error definitions for mediavault packages."""

from typing import Any, Dict


class MediaVaultError(Exception):
    """Base exception for all mediavault errors.

    Every error carries a human-readable message plus arbitrary keyword
    context (ids, paths, tool names) that ends up in structured logs.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context
