"""Logging section of the service configuration."""

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import expand_path_variables


class LoggingConfig(BaseModel):
    """Console level and format, plus an optional rotating JSON log file."""

    model_config = ConfigDict(extra='forbid')

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["simple", "detailed", "json"] = Field(
        default="simple",
        description="Console format; the log file is always JSON"
    )
    file: Optional[str] = Field(
        default=None,
        description="Log file path, ${VAR} placeholders allowed"
    )

    @field_validator('level', 'format', mode='before')
    @classmethod
    def normalize_case(cls, v, info):
        if not isinstance(v, str):
            return v
        return v.upper() if info.field_name == 'level' else v.lower()

    @field_validator('file', mode='before')
    @classmethod
    def expand_file(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return expand_path_variables(v)

    @property
    def file_path(self) -> Optional[Path]:
        return Path(self.file) if self.file else None
