"""
Runtime settings, read from environment variables in one place.

The GitHub token is required and never shows up in repr() or in logs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Mapping

from agent_versions.application.publisher import WriteMode
from agent_versions.application.query_builder import AutoVersionMode
from agent_versions.domain.errors import ConfigError
from agent_versions.infrastructure.github_client import GITHUB_API_URL

BACKENDS = ("gcs", "postgres", "local")

DEFAULT_OBJECT_KEY = "agents-versions.json"
DEFAULT_TIMEOUT    = 30.0


def _timeout(env: Mapping[str, str], name: str) -> float:
    raw = env.get(name)
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number of seconds, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def _choice(env: Mapping[str, str], name: str, enum_cls, default):
    raw = env.get(name)
    if not raw:
        return default
    try:
        return enum_cls(raw.lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"{name} must be one of {allowed}, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    github_token:    str = field(repr=False)
    bucket:          str
    object_key:      str             = DEFAULT_OBJECT_KEY
    graphql_url:     str             = GITHUB_API_URL
    backend:         str             = "gcs"
    database_url:    str | None      = field(default=None, repr=False)
    local_root:      str             = "./blobs"
    auto_mode:       AutoVersionMode = AutoVersionMode.MIRROR
    write_mode:      WriteMode       = WriteMode.OVERWRITE
    http_timeout:    float           = DEFAULT_TIMEOUT
    storage_timeout: float           = DEFAULT_TIMEOUT
    log_level:       str             = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, require_bucket: bool = True) -> "Settings":
        """
        Build settings from the environment.
        Fails fast with ConfigError if anything required is missing.
        Dry runs never touch storage and pass require_bucket=False.
        """
        env = os.environ if env is None else env

        token = env.get("GITHUB_TOKEN")
        if not token:
            raise ConfigError("GITHUB_TOKEN environment variable is required")

        bucket = env.get("VERSIONS_BUCKET") or ""
        if require_bucket and not bucket:
            raise ConfigError("VERSIONS_BUCKET environment variable is required")

        settings = cls(
            github_token    = token,
            bucket          = bucket,
            object_key      = env.get("VERSIONS_OBJECT_KEY") or DEFAULT_OBJECT_KEY,
            graphql_url     = env.get("GITHUB_GRAPHQL_URL") or GITHUB_API_URL,
            backend         = (env.get("STORAGE_BACKEND") or "gcs").lower(),
            database_url    = env.get("DATABASE_URL") or None,
            local_root      = env.get("LOCAL_STORAGE_ROOT") or "./blobs",
            auto_mode       = _choice(env, "AUTO_VERSION_MODE", AutoVersionMode, AutoVersionMode.MIRROR),
            write_mode      = _choice(env, "WRITE_MODE", WriteMode, WriteMode.OVERWRITE),
            http_timeout    = _timeout(env, "HTTP_TIMEOUT"),
            storage_timeout = _timeout(env, "STORAGE_TIMEOUT"),
            log_level       = (env.get("LOG_LEVEL") or "INFO").upper(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.backend not in BACKENDS:
            raise ConfigError(f"STORAGE_BACKEND must be one of {', '.join(BACKENDS)}, got {self.backend!r}")
        if self.backend == "postgres" and not self.database_url:
            raise ConfigError("DATABASE_URL environment variable is required for the postgres backend")

    def with_overrides(self, **changes) -> "Settings":
        """Copy with the non-None values applied (CLI flags win over the environment)."""
        updated = replace(self, **{k: v for k, v in changes.items() if v is not None})
        updated.validate()
        return updated
