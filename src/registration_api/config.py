import base64
import binascii
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class ConfigurationError(RuntimeError):
    """Raised when a required setting is missing or cannot be decoded."""


class DatabaseConfig(BaseModel):
    host: str
    user: str
    password: str
    database: str
    port: int = 3306
    sslmode: str = Field("require", description="libpq sslmode; 'require' encrypts without CA validation")
    connect_timeout: int = Field(10, ge=1, description="Seconds libpq waits for the server to answer a connect")
    pool_min: int = Field(0, ge=0)
    pool_max: int = Field(10, ge=1)
    acquire_timeout: Optional[float] = Field(None, gt=0, description="Seconds to wait for a free connection")
    max_waiting: int = Field(0, ge=0, description="Callers allowed to queue for a connection, 0 = unbounded")


class ServiceConfig(BaseModel):
    database: DatabaseConfig
    schema_bootstrap_strict: bool = False
    healthcheck_enabled: bool = True
    cors_allow_origins: List[str] = ["*"]
    log_level: str = "INFO"


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(
            f"Missing required environment variable '{name}'. "
            "Set it in the environment or in the service .env file."
        )
    return value


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# PUBLIC_INTERFACE
def decode_credential(name: str, value: str, encoding: str = "base64") -> str:
    """Decode a credential read from the environment.

    base64 is an obfuscation step for values kept in deployment files,
    not a protection of the secret itself.
    """
    if encoding == "plain":
        return value
    if encoding != "base64":
        raise ConfigurationError(
            f"Unsupported DB_CREDENTIALS_ENCODING '{encoding}' (expected 'base64' or 'plain')."
        )
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Environment variable '{name}' is not valid base64: {e}") from e


# PUBLIC_INTERFACE
def load_database_config() -> DatabaseConfig:
    """Build the database settings from DB_* environment variables."""
    encoding = os.getenv("DB_CREDENTIALS_ENCODING", "base64").strip().lower()

    def credential(name: str) -> str:
        return decode_credential(name, _required_env(name), encoding)

    timeout = os.getenv("DB_POOL_ACQUIRE_TIMEOUT")
    return DatabaseConfig(
        host=credential("DB_HOST"),
        user=credential("DB_USER"),
        password=credential("DB_PASSWORD"),
        database=credential("DB_NAME"),
        port=int(os.getenv("DB_PORT", "3306")),
        sslmode=os.getenv("DB_SSLMODE", "require"),
        connect_timeout=int(os.getenv("DB_CONNECT_TIMEOUT", "10")),
        pool_min=int(os.getenv("DB_POOL_MIN", "0")),
        pool_max=int(os.getenv("DB_POOL_MAX", "10")),
        acquire_timeout=float(timeout) if timeout else None,
        max_waiting=int(os.getenv("DB_POOL_MAX_WAITING", "0")),
    )


# PUBLIC_INTERFACE
def load_config() -> ServiceConfig:
    """Load the service configuration, reading a local .env file first if present."""
    load_dotenv()
    origins = os.getenv("CORS_ALLOW_ORIGINS", "*")
    return ServiceConfig(
        database=load_database_config(),
        schema_bootstrap_strict=_bool_env("SCHEMA_BOOTSTRAP_STRICT", False),
        healthcheck_enabled=_bool_env("HEALTHCHECK_ENABLED", True),
        cors_allow_origins=[o.strip() for o in origins.split(",") if o.strip()] or ["*"],
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
