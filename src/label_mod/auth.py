"""Credential resolution for registry access.

An Authenticator turns a registry host into Credentials. Authenticators are
plain objects injected into the registry client; nothing here reads global
state at import time.

Supported Sources:
- AnonymousAuthenticator: no credentials
- BasicAuthenticator: fixed username/password
- TokenAuthenticator: fixed bearer/identity token
- DockerConfigAuthenticator: docker ``config.json`` / containers ``auth.json``,
  including ``credHelpers`` and ``credsStore`` helper programs
- ChainAuthenticator: first source with credentials wins

Example:
    >>> from label_mod.auth import create_authenticator
    >>> from label_mod.schemas.config import AuthConfig
    >>> authenticator = create_authenticator(AuthConfig())
    >>> creds = authenticator.resolve("registry.example.com")
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import subprocess
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from label_mod.errors import AuthenticationError, ConfigurationError
from label_mod.schemas.config import AuthConfig, AuthType

logger = structlog.get_logger(__name__)

TOKEN_USERNAME = "<token>"
DOCKER_HUB_HOSTS = ("docker.io", "index.docker.io", "registry-1.docker.io")
DOCKER_HUB_AUTH_KEY = "https://index.docker.io/v1/"


@dataclass(frozen=True)
class Credentials:
    """Credentials for one registry.

    Attributes:
        username: Username for basic auth.
        password: Password, or a token presented as a password.
        identity_token: OAuth2 refresh token exchanged at the token endpoint.
    """

    username: str | None = None
    password: str | None = None
    identity_token: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return not self.password and not self.identity_token

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, anonymous={self.is_anonymous})"


ANONYMOUS = Credentials()


class Authenticator(ABC):
    """Resolves credentials for a registry host.

    Example:
        >>> class FixedAuthenticator(Authenticator):
        ...     def resolve(self, registry: str) -> Credentials:
        ...         return Credentials(username="ci", password="s3cret")
    """

    @abstractmethod
    def resolve(self, registry: str) -> Credentials:
        """Return credentials for ``registry``.

        Args:
            registry: Registry host, including any port.

        Returns:
            Credentials, possibly anonymous.

        Raises:
            AuthenticationError: If a configured credential source is unusable.
        """
        ...


class AnonymousAuthenticator(Authenticator):
    """Always returns anonymous credentials."""

    def resolve(self, registry: str) -> Credentials:
        return ANONYMOUS


class BasicAuthenticator(Authenticator):
    """Returns one fixed username/password for every registry."""

    def __init__(self, username: str, password: str) -> None:
        self._credentials = Credentials(username=username, password=password)

    def resolve(self, registry: str) -> Credentials:
        return self._credentials


class TokenAuthenticator(Authenticator):
    """Returns one fixed token for every registry.

    With a username the token is presented as a password, which registries
    such as GHCR and GitLab accept for personal access tokens. Without one it
    is treated as an identity (refresh) token.
    """

    def __init__(self, token: str, username: str | None = None) -> None:
        if username:
            self._credentials = Credentials(username=username, password=token)
        else:
            self._credentials = Credentials(identity_token=token)

    def resolve(self, registry: str) -> Credentials:
        return self._credentials


class DockerConfigAuthenticator(Authenticator):
    """Reads credentials the way ``docker login`` and ``podman login`` store them.

    Search order when no explicit path is given:
        1. ``$REGISTRY_AUTH_FILE``
        2. ``$DOCKER_CONFIG/config.json``
        3. ``~/.docker/config.json``
        4. ``$XDG_RUNTIME_DIR/containers/auth.json``

    Per-registry ``credHelpers`` take precedence over inline ``auths`` entries,
    which take precedence over the global ``credsStore``.
    """

    def __init__(
        self,
        path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize DockerConfigAuthenticator.

        Args:
            path: Explicit config file. It must exist when given.
            environ: Environment mapping used for path discovery.
        """
        self._path = path
        self._environ = os.environ if environ is None else environ
        self._document: dict[str, Any] | None = None
        self._lock = threading.Lock()

    def resolve(self, registry: str) -> Credentials:
        document = self._load()
        keys = _auth_keys(registry)

        helpers = document.get("credHelpers") or {}
        for key in keys:
            if key in helpers:
                return _run_credential_helper(helpers[key], registry)

        auths = document.get("auths") or {}
        for entry_key, entry in auths.items():
            if _normalize_auth_key(entry_key) in keys and isinstance(entry, dict):
                credentials = _decode_auth_entry(entry, registry)
                if not credentials.is_anonymous:
                    logger.debug("docker_config_credentials_found", registry=registry)
                    return credentials

        store = document.get("credsStore")
        if store:
            return _run_credential_helper(store, registry)

        return ANONYMOUS

    def _load(self) -> dict[str, Any]:
        with self._lock:
            if self._document is None:
                self._document = self._read()
            return self._document

    def _read(self) -> dict[str, Any]:
        if self._path is not None:
            if not self._path.is_file():
                raise AuthenticationError(
                    "docker-config", f"Credential file {self._path} does not exist"
                )
            return _read_config_file(self._path)

        for candidate in self._candidate_paths():
            if candidate.is_file():
                logger.debug("docker_config_loaded", path=str(candidate))
                return _read_config_file(candidate)
        return {}

    def _candidate_paths(self) -> list[Path]:
        candidates: list[Path] = []
        if self._environ.get("REGISTRY_AUTH_FILE"):
            candidates.append(Path(self._environ["REGISTRY_AUTH_FILE"]))
        if self._environ.get("DOCKER_CONFIG"):
            candidates.append(Path(self._environ["DOCKER_CONFIG"]) / "config.json")
        candidates.append(Path.home() / ".docker" / "config.json")
        if self._environ.get("XDG_RUNTIME_DIR"):
            candidates.append(Path(self._environ["XDG_RUNTIME_DIR"]) / "containers" / "auth.json")
        return candidates


class ChainAuthenticator(Authenticator):
    """Tries each authenticator in turn; the first non-anonymous answer wins."""

    def __init__(self, authenticators: Sequence[Authenticator]) -> None:
        self._authenticators = tuple(authenticators)

    def resolve(self, registry: str) -> Credentials:
        for authenticator in self._authenticators:
            credentials = authenticator.resolve(registry)
            if not credentials.is_anonymous:
                return credentials
        return ANONYMOUS


def create_authenticator(config: AuthConfig) -> Authenticator:
    """Build the authenticator described by ``config``.

    Args:
        config: Credential source configuration.

    Returns:
        Authenticator instance.

    Raises:
        ConfigurationError: If a basic or token source lacks its secrets.

    Example:
        >>> authenticator = create_authenticator(AuthConfig(type=AuthType.ANONYMOUS))
        >>> authenticator.resolve("registry.example.com").is_anonymous
        True
    """
    if config.type is AuthType.ANONYMOUS:
        return AnonymousAuthenticator()

    if config.type is AuthType.BASIC:
        if config.username is None or config.password is None:
            raise ConfigurationError("basic auth requires username and password")
        return BasicAuthenticator(config.username, config.password.get_secret_value())

    if config.type is AuthType.TOKEN:
        if config.token is None:
            raise ConfigurationError("token auth requires a token")
        return TokenAuthenticator(config.token.get_secret_value(), username=config.username)

    if config.type is AuthType.DOCKER_CONFIG:
        return DockerConfigAuthenticator(config.docker_config)

    return ChainAuthenticator(
        [DockerConfigAuthenticator(config.docker_config), AnonymousAuthenticator()]
    )


# =============================================================================
# Docker config helpers
# =============================================================================


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise AuthenticationError("docker-config", f"Cannot read {path}: {e}") from e
    if not isinstance(document, dict):
        raise AuthenticationError("docker-config", f"{path} must contain a JSON object")
    return document


def _normalize_auth_key(key: str) -> str:
    """Reduce ``https://host/v1/`` style keys to ``host``."""
    for prefix in ("https://", "http://"):
        if key.startswith(prefix):
            key = key[len(prefix) :]
    return key.split("/", 1)[0]


def _auth_keys(registry: str) -> tuple[str, ...]:
    if registry in DOCKER_HUB_HOSTS:
        return (*DOCKER_HUB_HOSTS, DOCKER_HUB_AUTH_KEY)
    return (registry,)


def _decode_auth_entry(entry: dict[str, Any], registry: str) -> Credentials:
    identity_token = entry.get("identitytoken") or None
    username = entry.get("username")
    password = entry.get("password")

    encoded = entry.get("auth")
    if encoded:
        try:
            decoded = base64.b64decode(encoded).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise AuthenticationError(
                registry, f"Malformed auth entry in docker config: {e}"
            ) from e
        username, sep, password = decoded.partition(":")
        if not sep:
            raise AuthenticationError(registry, "Malformed auth entry in docker config")

    return Credentials(username=username, password=password or None, identity_token=identity_token)


def _run_credential_helper(helper: str, registry: str) -> Credentials:
    """Ask ``docker-credential-<helper>`` for the registry's secret."""
    program = f"docker-credential-{helper}"
    server = DOCKER_HUB_AUTH_KEY if registry in DOCKER_HUB_HOSTS else registry
    try:
        result = subprocess.run(  # noqa: S603
            [program, "get"],
            input=server,
            capture_output=True,
            text=True,
            check=False,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise AuthenticationError(registry, f"Credential helper {program} failed: {e}") from e

    if result.returncode != 0:
        # Helpers exit non-zero with "credentials not found" for unknown servers
        if "credentials not found" in result.stdout + result.stderr:
            return ANONYMOUS
        raise AuthenticationError(
            registry,
            f"Credential helper {program} exited {result.returncode}: {result.stderr.strip()}",
        )

    try:
        payload = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise AuthenticationError(
            registry, f"Credential helper {program} output invalid: {e}"
        ) from e

    username = payload.get("Username")
    secret = payload.get("Secret")
    if username == TOKEN_USERNAME:
        return Credentials(identity_token=secret)
    return Credentials(username=username, password=secret)


__all__ = [
    "ANONYMOUS",
    "AnonymousAuthenticator",
    "Authenticator",
    "BasicAuthenticator",
    "ChainAuthenticator",
    "Credentials",
    "DockerConfigAuthenticator",
    "TokenAuthenticator",
    "create_authenticator",
]
