"""Runtime configuration schemas for label-mod.

Settings come from an optional YAML file (top-level ``registry:`` section)
overlaid with environment variables. All models are frozen Pydantic v2 models.

Example YAML:
    registry:
      timeout_seconds: 30
      insecure_registries: ["localhost:5000"]
      max_tag_workers: 4
      retry:
        max_attempts: 5
      auth:
        type: docker-config

Environment Variables:
    LABEL_MOD_CONFIG: Path of the YAML settings file.
    LABEL_MOD_REGISTRY_USERNAME / LABEL_MOD_REGISTRY_PASSWORD: Basic credentials.
    LABEL_MOD_REGISTRY_TOKEN: Bearer/identity token (wins over basic).
    LABEL_MOD_INSECURE_REGISTRIES: Comma-separated hosts reached over plain HTTP.
    LABEL_MOD_TAG_WORKERS: Parallelism for extra-tag pushes.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator

from label_mod.errors import ConfigurationError

ENV_CONFIG_PATH = "LABEL_MOD_CONFIG"
ENV_USERNAME = "LABEL_MOD_REGISTRY_USERNAME"
ENV_PASSWORD = "LABEL_MOD_REGISTRY_PASSWORD"  # noqa: S105
ENV_TOKEN = "LABEL_MOD_REGISTRY_TOKEN"  # noqa: S105
ENV_INSECURE_REGISTRIES = "LABEL_MOD_INSECURE_REGISTRIES"
ENV_TAG_WORKERS = "LABEL_MOD_TAG_WORKERS"


class AuthType(str, Enum):
    """How registry credentials are obtained."""

    AUTO = "auto"
    ANONYMOUS = "anonymous"
    BASIC = "basic"
    TOKEN = "token"
    DOCKER_CONFIG = "docker-config"


class AuthConfig(BaseModel):
    """Credential source configuration.

    ``auto`` tries the docker credential file and falls back to anonymous
    access. ``basic`` and ``token`` require their secrets inline or via the
    environment.

    Examples:
        >>> AuthConfig(type=AuthType.BASIC, username="ci", password="s3cret").type
        <AuthType.BASIC: 'basic'>
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: AuthType = Field(default=AuthType.AUTO, description="Credential source")
    username: str | None = Field(default=None, description="Username for basic auth")
    password: SecretStr | None = Field(default=None, description="Password for basic auth")
    token: SecretStr | None = Field(default=None, description="Bearer or identity token")
    docker_config: Path | None = Field(
        default=None,
        description="Explicit docker config.json or containers auth.json path",
    )

    @model_validator(mode="after")
    def validate_secrets(self) -> AuthConfig:
        """Require the secrets the chosen auth type needs."""
        if self.type is AuthType.BASIC and (self.username is None or self.password is None):
            raise ValueError("basic auth requires username and password")
        if self.type is AuthType.TOKEN and self.token is None:
            raise ValueError("token auth requires token")
        return self


class RetryConfig(BaseModel):
    """Retry policy configuration for transient registry failures.

    Uses exponential backoff with optional jitter.

    Examples:
        >>> RetryConfig(max_attempts=5, initial_delay_ms=500).initial_delay_ms
        500
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=3, ge=1, le=10, description="Maximum attempts per request")
    initial_delay_ms: int = Field(
        default=500,
        ge=0,
        description="Initial delay between retries in milliseconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=5.0,
        description="Multiplier for exponential backoff",
    )
    max_delay_ms: int = Field(
        default=10000,
        ge=0,
        description="Maximum delay cap in milliseconds",
    )
    jitter: bool = Field(default=True, description="Add random jitter to delays")


class RegistrySettings(BaseModel):
    """Complete registry access configuration.

    Examples:
        >>> settings = RegistrySettings(insecure_registries=("localhost:5000",))
        >>> settings.tls_verify
        True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout")
    tls_verify: bool = Field(default=True, description="Verify TLS certificates")
    insecure_registries: tuple[str, ...] = Field(
        default=(),
        description="Registry hosts reached over plain HTTP",
    )
    max_tag_workers: int = Field(
        default=1,
        ge=1,
        le=20,
        description="Parallel pushes for extra tags (1 means sequential)",
    )
    retry: RetryConfig = Field(default_factory=RetryConfig, description="Retry policy")
    auth: AuthConfig = Field(default_factory=AuthConfig, description="Credential source")

    @classmethod
    def from_file(cls, path: Path) -> RegistrySettings:
        """Load settings from the ``registry`` section of a YAML file.

        Args:
            path: Path to the YAML file.

        Returns:
            Validated settings.

        Raises:
            ConfigurationError: If the file is missing, unparseable or invalid.
        """
        try:
            raw = yaml.safe_load(path.read_text())
        except OSError as e:
            raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Settings file {path} must contain a mapping")

        section = raw.get("registry", {})
        if not isinstance(section, dict):
            raise ConfigurationError(f"'registry' section in {path} must be a mapping")

        try:
            return cls.model_validate(section)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings in {path}: {e}") from e

    @classmethod
    def load(
        cls,
        path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> RegistrySettings:
        """Load settings from file (if any) and overlay environment variables.

        Args:
            path: Explicit settings file. Falls back to ``$LABEL_MOD_CONFIG``.
            environ: Environment mapping (defaults to ``os.environ``).

        Returns:
            Validated settings.

        Raises:
            ConfigurationError: If the file or environment values are invalid.
        """
        env = os.environ if environ is None else environ
        if path is None and env.get(ENV_CONFIG_PATH):
            path = Path(env[ENV_CONFIG_PATH])

        settings = cls.from_file(path) if path is not None else cls()
        return settings.with_env(env)

    def with_env(self, environ: Mapping[str, str]) -> RegistrySettings:
        """Return a copy with environment overrides applied."""
        update: dict[str, Any] = {}

        insecure = environ.get(ENV_INSECURE_REGISTRIES)
        if insecure:
            hosts = tuple(h.strip() for h in insecure.split(",") if h.strip())
            update["insecure_registries"] = tuple(dict.fromkeys(self.insecure_registries + hosts))

        workers = environ.get(ENV_TAG_WORKERS)
        if workers:
            update["max_tag_workers"] = workers

        token = environ.get(ENV_TOKEN)
        username = environ.get(ENV_USERNAME)
        password = environ.get(ENV_PASSWORD)
        if token:
            update["auth"] = {"type": AuthType.TOKEN, "username": username, "token": token}
        elif username and password:
            update["auth"] = {"type": AuthType.BASIC, "username": username, "password": password}

        if not update:
            return self

        data = self.model_dump()
        for key in ("password", "token"):
            secret = data["auth"].get(key)
            if secret is not None:
                data["auth"][key] = secret.get_secret_value()
        data.update(update)
        try:
            return RegistrySettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings from environment: {e}") from e


__all__ = [
    "AuthConfig",
    "AuthType",
    "RegistrySettings",
    "RetryConfig",
]
