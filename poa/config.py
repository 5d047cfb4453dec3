"""
Configuration for the Proof-of-Attention Service

Values are read from environment variables. Every threshold the session
core uses comes from here.
"""
import logging
import os
from typing import Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from poa.errors import ConfigError

# Development profile: 10 seconds. Production deployments override
# MIN_ATTENTION_TIME (e.g. 300000 for 5 minutes).
DEFAULT_MIN_ATTENTION_MS = 10_000
DEFAULT_HEARTBEAT_INTERVAL_MS = 30_000
DEFAULT_RETENTION_MS = 24 * 60 * 60 * 1000
DEFAULT_SWEEP_INTERVAL_MS = 60 * 60 * 1000

ARTIFACT_PROVIDERS = {"memory", "pinata"}


class AttentionConfig(BaseModel):
    """Runtime configuration for the session core and its collaborators."""

    model_config = ConfigDict(frozen=True)

    min_attention_ms: int = Field(default=DEFAULT_MIN_ATTENTION_MS, gt=0)
    heartbeat_interval_ms: int = Field(default=DEFAULT_HEARTBEAT_INTERVAL_MS, gt=0)
    regularity_tolerance_ms: int = Field(default=1000, ge=0)
    bot_score_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    session_retention_ms: int = Field(default=DEFAULT_RETENTION_MS, gt=0)
    sweep_interval_ms: int = Field(default=DEFAULT_SWEEP_INTERVAL_MS, gt=0)

    host: str = "0.0.0.0"
    port: int = Field(default=3001, ge=1, le=65535)
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    artifact_provider: str = "memory"
    ipfs_api_key: Optional[str] = None
    ipfs_secret_key: Optional[str] = None
    ipfs_gateway: str = "https://ipfs.io/ipfs/"
    issuance_timeout_s: float = Field(default=30.0, gt=0)

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = str(value).upper().strip()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value!r}")
        return level

    @field_validator("artifact_provider", mode="before")
    @classmethod
    def _validate_provider(cls, value: str) -> str:
        provider = str(value).lower().strip()
        if provider not in ARTIFACT_PROVIDERS:
            raise ValueError(f"must be one of {sorted(ARTIFACT_PROVIDERS)}, got: {value!r}")
        return provider

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            origins = tuple(o.strip() for o in value.split(",") if o.strip())
            return origins or ("*",)
        return value


# env var -> (field, parser)
_ENV_FIELDS = {
    "MIN_ATTENTION_TIME": ("min_attention_ms", int),
    "HEARTBEAT_INTERVAL": ("heartbeat_interval_ms", int),
    "HEARTBEAT_TOLERANCE": ("regularity_tolerance_ms", int),
    "BOT_SCORE_THRESHOLD": ("bot_score_threshold", float),
    "SESSION_MAX_AGE": ("session_retention_ms", int),
    "SESSION_SWEEP_INTERVAL": ("sweep_interval_ms", int),
    "HOST": ("host", str),
    "PORT": ("port", int),
    "CORS_ORIGINS": ("cors_origins", str),
    "LOG_LEVEL": ("log_level", str),
    "IPFS_PROVIDER": ("artifact_provider", str),
    "IPFS_API_KEY": ("ipfs_api_key", str),
    "IPFS_SECRET_KEY": ("ipfs_secret_key", str),
    "IPFS_GATEWAY": ("ipfs_gateway", str),
    "ISSUANCE_TIMEOUT": ("issuance_timeout_s", float),
}


def load_config(environ: Optional[Mapping[str, str]] = None) -> AttentionConfig:
    """
    Build configuration from environment variables.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.

    Raises:
        ConfigError: if a variable cannot be parsed or violates a constraint.
    """
    if environ is None:
        environ = os.environ

    values = {}
    for env_name, (field_name, parse) in _ENV_FIELDS.items():
        raw = environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            values[field_name] = parse(raw.strip())
        except ValueError as e:
            raise ConfigError(f"{env_name}: cannot parse {raw!r} ({e})") from e

    try:
        return AttentionConfig(**values)
    except ValidationError as e:
        field_to_env = {field: env for env, (field, _) in _ENV_FIELDS.items()}
        problems = []
        for err in e.errors():
            field = err["loc"][0] if err["loc"] else "?"
            problems.append(f"{field_to_env.get(field, field)}: {err['msg']}")
        raise ConfigError("; ".join(problems)) from e
