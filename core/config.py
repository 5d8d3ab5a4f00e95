"""
core/config.py -- Typed per-service settings via pydantic-settings.

All environment variable reads for the services happen here or in core/env.py.
No other module should call os.getenv() directly -- import get_settings().

Design patterns used:
  Singleton via lru_cache: get_settings(service) instantiates the settings
      class once per service and returns the cached instance afterwards. The
      FastAPI lifespan stores it on app.state so route code receives it
      explicitly instead of reaching for a global.

  Custom settings source: PrefixFallbackSource replaces pydantic-settings'
      own env source. Each field lists one or more variable names through
      validation_alias; the first name that resolves wins, and every name is
      checked as <PREFIX><NAME> before <NAME> (core.env.resolve_non_empty). This keeps
      the fallback rule in one place instead of one property per setting.

  @model_validator(mode="after"): enforces the JWT secret policy once all
      fields are resolved. Development generates a key with a warning,
      production refuses to start without one.

Boolean values follow pydantic's lax rule: true/false, 1/0, yes/no, on/off,
t/f and y/n (case-insensitive). Any other string is a startup error rather
than a silent False. JWT_EXPIRES_IN is parsed the same way at startup, so a
value like "7 days" fails construction instead of every login. An empty
string is treated as unset, in either the prefixed or the bare form.

Layer rule: core/ is the kernel. This module may not import from api/ or
auth/.
"""

from __future__ import annotations

import logging
import re
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict
from sqlalchemy.engine import URL

from core.env import resolve_non_empty

logger = logging.getLogger("campus.config")

_REDACTED = "**Set**"
_UNSET = "Not set"


# ---------------------------------------------------------------------------
# Expiry parsing
# ---------------------------------------------------------------------------

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def parse_expiry(value: str | int) -> int:
    """Convert a JWT_EXPIRES_IN value such as "1d", "24h", "30m" or "3600" to seconds.

    A bare number is seconds. Raises ValueError for anything else, including
    a zero duration.
    """
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(value)
        if match is None:
            raise ValueError(f"Unrecognised token expiry {value!r}; expected e.g. '3600', '30m', '24h', '7d'")
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]
    if seconds <= 0:
        raise ValueError("Token expiry must be positive")
    return seconds


# ---------------------------------------------------------------------------
# Settings source
# ---------------------------------------------------------------------------


class PrefixFallbackSource(PydanticBaseSettingsSource):
    """Resolve each field from the live environment using the prefix-fallback rule.

    Candidate names come from the field's validation_alias (a str or
    AliasChoices); fields without one use their uppercased name. The prefix
    is the settings class' env_prefix.
    """

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self.prefix: str = self.config.get("env_prefix", "")

    @staticmethod
    def _names(field: FieldInfo, field_name: str) -> list[str]:
        alias = field.validation_alias
        if isinstance(alias, AliasChoices):
            return [c for c in alias.choices if isinstance(c, str)]
        if isinstance(alias, str):
            return [alias]
        return [field_name.upper()]

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        for name in self._names(field, field_name):
            value = resolve_non_empty(name, self.prefix)
            if value:
                return value, name, False
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for field_name, field in self.settings_cls.model_fields.items():
            value, _, _ = self.get_field_value(field, field_name)
            if value is not None:
                data[field_name] = value
        return data


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class ServiceSettings(BaseSettings):
    """Resolved configuration for one service.

    All fields have defaults so the class can be instantiated in tests
    without a real environment. Field names stay usable as keyword
    arguments (populate_by_name) even though each one carries env aliases.
    """

    model_config = SettingsConfigDict(
        env_prefix="EVALUATION_",
        extra="ignore",
        populate_by_name=True,
    )

    service: ClassVar[str] = "evaluation"

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------

    environment: str = Field("development", validation_alias=AliasChoices("NODE_ENV", "APP_ENV"))
    log_level: str = Field("info", validation_alias=AliasChoices("LOG_LEVEL"))

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    pg_user: str | None = Field(None, validation_alias=AliasChoices("PGUSER", "DB_USER"))
    pg_password: str | None = Field(None, validation_alias=AliasChoices("PGPASSWORD", "DB_PASSWORD"))
    pg_host: str | None = Field(None, validation_alias=AliasChoices("PGHOST", "DB_HOST"))
    pg_database: str | None = Field(None, validation_alias=AliasChoices("PGDATABASE", "DB_NAME"))
    pg_port: int = Field(5432, validation_alias=AliasChoices("PGPORT", "DB_PORT"))
    pg_ssl: bool = Field(False, validation_alias=AliasChoices("PGSSL", "DB_SSL"))
    database_url: str | None = Field(None, validation_alias=AliasChoices("DATABASE_URL", "DB_CONNECTION_STRING"))

    pg_max_connections: int = Field(10, validation_alias=AliasChoices("PG_MAX_CONNECTIONS"))
    # Both timeouts are milliseconds, matching the node-postgres pool options.
    pg_idle_timeout: int = Field(60000, validation_alias=AliasChoices("PG_IDLE_TIMEOUT"))
    pg_connection_timeout: int = Field(10000, validation_alias=AliasChoices("PG_CONNECTION_TIMEOUT"))
    pg_connection_retries: int = Field(3, validation_alias=AliasChoices("PG_CONNECTION_RETRIES"))

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The validator below
    # either generates a dev key or raises, so callers never see "".
    jwt_secret: str = Field("", validation_alias=AliasChoices("JWT_SECRET"))
    jwt_expires_in: str = Field("1d", validation_alias=AliasChoices("JWT_EXPIRES_IN"))

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    port: int = Field(3002, validation_alias=AliasChoices("PORT"))
    frontend_url: str = Field("http://localhost:3000", validation_alias=AliasChoices("FRONTEND_URL"))

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # .env files are merged into os.environ by core.env.load_sources()
        # before settings are built, so only the live environment is read here.
        return init_settings, PrefixFallbackSource(settings_cls)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_expires_in")
    @classmethod
    def validate_jwt_expires_in(cls, value: str) -> str:
        """Reject an unparseable expiry at startup instead of on the first login."""
        parse_expiry(value)
        return value

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "ServiceSettings":
        """Enforce the JWT_SECRET policy.

        Development: auto-generate a random key with a warning. Tokens will
            not survive a restart -- acceptable locally.

        Production: refuse to start without a key, and warn when it is
            shorter than 32 characters.
        """
        if not self.jwt_secret:
            if self.is_production:
                raise ValueError(
                    "JWT_SECRET is required in production. "
                    f"Set JWT_SECRET or {self.model_config['env_prefix']}JWT_SECRET in the environment or .env file."
                )
            self.jwt_secret = secrets.token_hex(32)
            logger.warning("JWT_SECRET not set, using an auto-generated key. Tokens will not persist across restarts.")
        elif self.is_production and len(self.jwt_secret) < 32:
            logger.warning("JWT_SECRET should be at least 32 characters long in production")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def database_url_for(self) -> str:
        """Return the SQLAlchemy URL for the auth database.

        Priority: DATABASE_URL, then a PostgreSQL URL assembled from the PG*
        parts when PGHOST is set, then a local SQLite file.
        """
        if self.database_url:
            url = self.database_url
            # Hosted Postgres providers still hand out the legacy scheme,
            # which SQLAlchemy no longer accepts.
            if url.startswith("postgres://"):
                url = "postgresql://" + url[len("postgres://") :]
            return url
        if self.pg_host:
            return URL.create(
                "postgresql",
                username=self.pg_user,
                password=self.pg_password,
                host=self.pg_host,
                port=self.pg_port,
                database=self.pg_database,
                query={"sslmode": "require"} if self.pg_ssl else {},
            ).render_as_string(hide_password=False)
        return f"sqlite:///{Path.cwd() / f'campus_{self.service}.db'}"

    def summary(self) -> dict[str, Any]:
        """Return a loggable view of the configuration with secrets redacted."""
        return {
            "service": self.service,
            "environment": self.environment,
            "database": {
                "host": self.pg_host or _UNSET,
                "database": self.pg_database or _UNSET,
                "connection_string": _REDACTED if self.database_url else _UNSET,
                "ssl": self.pg_ssl,
            },
            "server": {"port": self.port, "frontend_url": self.frontend_url},
            "jwt": {
                "secret": f"{_REDACTED} (length {len(self.jwt_secret)})",
                "expires_in": self.jwt_expires_in,
            },
        }


class TokenSettings(ServiceSettings):
    model_config = SettingsConfigDict(env_prefix="TOKEN_")
    service: ClassVar[str] = "token"

    port: int = Field(3001, validation_alias=AliasChoices("PORT"))


class EvaluationSettings(ServiceSettings):
    model_config = SettingsConfigDict(env_prefix="EVALUATION_")
    service: ClassVar[str] = "evaluation"


class GradingSettings(ServiceSettings):
    model_config = SettingsConfigDict(env_prefix="GRADING_")
    service: ClassVar[str] = "grading"

    port: int = Field(3003, validation_alias=AliasChoices("PORT"))


_SETTINGS_CLASSES: dict[str, type[ServiceSettings]] = {
    "token": TokenSettings,
    "evaluation": EvaluationSettings,
    "grading": GradingSettings,
}


def settings_class(service: str) -> type[ServiceSettings]:
    try:
        return _SETTINGS_CLASSES[service.lower()]
    except KeyError:
        raise ValueError(f"Unknown service {service!r}; expected one of {sorted(_SETTINGS_CLASSES)}") from None


@lru_cache
def _cached_settings(service: str) -> ServiceSettings:
    return settings_class(service)()


def get_settings(service: str = "evaluation") -> ServiceSettings:
    """Return the settings singleton for a service. Names are case-insensitive.

    In tests: call clear_settings_cache() after changing the environment so
    the next call re-resolves every field.
    """
    return _cached_settings(service.lower())


def clear_settings_cache() -> None:
    _cached_settings.cache_clear()
