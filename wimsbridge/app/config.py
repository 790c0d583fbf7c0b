from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_ENV_FILE = _PROJECT_ROOT / '.env'
if _ENV_FILE.exists():
    load_dotenv(_ENV_FILE)

_TRUTHY = {'1', 'true', 'yes', 'on'}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def _env_timeout() -> float | None:
    value = os.getenv('WIMS_TIMEOUT', '').strip()
    return float(value) if value else None


@dataclass(slots=True)
class Settings:
    server_url: str = field(default_factory=lambda: os.getenv('WIMS_SERVER_URL', 'http://localhost/wims/wims.cgi'))
    server_password: str = field(default_factory=lambda: os.getenv('WIMS_SERVER_PASSWORD', ''))
    allow_self_signed_certs: bool = field(default_factory=lambda: _env_flag('WIMS_ALLOW_SELF_SIGNED_CERTS'))
    debug: bool = field(default_factory=lambda: _env_flag('WIMS_DEBUG'))
    lang: str = field(default_factory=lambda: os.getenv('WIMS_LANG', 'en'))
    service_name: str = field(default_factory=lambda: os.getenv('WIMS_SERVICE_NAME', 'moodle'))
    timeout: float | None = field(default_factory=_env_timeout)

    def __post_init__(self) -> None:
        self.server_url = self.server_url.strip()
        if not self.server_url:
            msg = 'WIMS_SERVER_URL must not be empty.'
            raise ValueError(msg)


settings = Settings()
