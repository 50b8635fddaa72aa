import os
from dataclasses import dataclass
from typing import Optional

from sql_snitch.errors import ValidationError


DEFAULT_DRIVER = "ODBC Driver 17 for SQL Server"


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {value!r}")


@dataclass
class Settings:
    driver: str = DEFAULT_DRIVER
    encrypt: bool = False
    trust_server_certificate: bool = True
    timeout: int = 30
    retries: int = 3
    retry_delay: int = 5
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_env(cls):
        #"""Build settings from SQL_SNITCH_* environment variables."""
        return cls(
            driver=os.environ.get("SQL_SNITCH_DRIVER", DEFAULT_DRIVER),
            encrypt=_env_bool("SQL_SNITCH_ENCRYPT", False),
            trust_server_certificate=_env_bool("SQL_SNITCH_TRUST_CERT", True),
            timeout=_env_int("SQL_SNITCH_TIMEOUT", 30),
            retries=_env_int("SQL_SNITCH_RETRIES", 3),
            retry_delay=_env_int("SQL_SNITCH_RETRY_DELAY", 5),
            username=os.environ.get("SQL_SNITCH_USER") or None,
            password=os.environ.get("SQL_SNITCH_PASSWORD") or None,
        )
