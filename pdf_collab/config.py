"""
Runtime configuration read from the environment (and a ``.env`` file).
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# Directory of the project checkout; uploads default to a folder beside it.
BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value if value else None


@dataclass
class Config:
    host: str = field(default_factory=lambda: os.getenv('HOST', '0.0.0.0'))
    port: int = field(default_factory=lambda: int(os.getenv('PORT', '4000')))
    upload_dir: Path = field(default_factory=lambda: Path(os.getenv('UPLOAD_DIR', str(BASE_DIR / 'uploads'))))
    doc_state_dir: Optional[str] = field(default_factory=lambda: _env_optional('DOC_STATE_DIR'))
    client_origin: str = field(default_factory=lambda: os.getenv('CLIENT_ORIGIN', '*'))
    max_upload_mb: int = field(default_factory=lambda: int(os.getenv('MAX_UPLOAD_MB', '100')))
    room_idle_seconds: float = field(default_factory=lambda: float(os.getenv('ROOM_IDLE_SECONDS', '3600')))
    history_limit: int = field(default_factory=lambda: int(os.getenv('HISTORY_LIMIT', '50')))
    log_level: str = field(default_factory=lambda: os.getenv('LOG_LEVEL', 'INFO').upper())
    log_file: Optional[str] = field(default_factory=lambda: _env_optional('LOG_FILE'))
    debug: bool = field(default_factory=lambda: _env_bool('DEBUG'))

    @property
    def max_content_length(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @property
    def cors_origins(self):
        return '*' if self.client_origin == '*' else [self.client_origin]
