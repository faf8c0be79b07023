"""Registry clients for fetching and publishing image manifests and configs.

RegistryClient is the narrow capability the mutation engine depends on.
HttpRegistryClient implements it over the OCI distribution HTTP API with
httpx, answering Basic and Bearer token challenges through RegistryAuth.

Transport Behaviour:
    - ``https://<host>/v2/...``; plain ``http`` for configured insecure hosts
      and for ``localhost`` / ``127.0.0.1``.
    - ``docker.io`` is served from ``registry-1.docker.io`` and single-component
      repositories there live under ``library/``.
    - Network failures, timeouts, 429 and 5xx responses are retried by the
      RetryPolicy. Everything else fails immediately.

Status Mapping:
    401/403 -> AuthenticationError
    404 -> NotFoundError
    400 with DIGEST_INVALID / MANIFEST_INVALID / BLOB_UNKNOWN -> RegistryIntegrityError
    other >= 400 and httpx errors -> TransportError

Example:
    >>> with HttpRegistryClient(RegistrySettings()) as client:
    ...     image = client.fetch_image(parse_reference("registry.example.com/app:v1"))
    ...     image.config.labels
"""

from __future__ import annotations

import base64
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Generator
from typing import TYPE_CHECKING, Any, TypeVar

import httpx
import structlog

from label_mod.auth import AnonymousAuthenticator, Authenticator, Credentials
from label_mod.errors import (
    AuthenticationError,
    NotFoundError,
    RegistryIntegrityError,
    TransportError,
    UnsupportedMediaTypeError,
)
from label_mod.manifest import (
    INDEX_MANIFEST_TYPES,
    SUPPORTED_MANIFEST_TYPES,
    FetchedImage,
    ImageConfig,
    ImageManifest,
    calculate_digest,
    verify_digest,
)
from label_mod.metrics import MutationMetrics, get_mutation_metrics
from label_mod.resilience import RetryPolicy
from label_mod.schemas.config import RegistrySettings

if TYPE_CHECKING:
    from label_mod.reference import ImageReference

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MANIFEST_ACCEPT = ", ".join((*SUPPORTED_MANIFEST_TYPES, *INDEX_MANIFEST_TYPES))
INTEGRITY_ERROR_CODES = frozenset({"DIGEST_INVALID", "MANIFEST_INVALID", "BLOB_UNKNOWN"})
DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io")
DOCKER_HUB_ENDPOINT = "registry-1.docker.io"
LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")
TOKEN_CLIENT_ID = "label-mod"

_CHALLENGE_PARAM = re.compile(r'(\w+)\s*=\s*(?:"([^"]*)"|([^\s,]+))')
_REPOSITORY_PATH = re.compile(r"^/v2/(?P<repository>.+?)/(?:manifests|blobs)/")


# =============================================================================
# Capability
# =============================================================================


class RegistryClient(ABC):
    """Fetches and publishes image content in a registry.

    The engine computes every digest and size; implementations only move bytes
    and verify what the registry reports back.
    """

    @abstractmethod
    def fetch_image(self, reference: ImageReference) -> FetchedImage:
        """Fetch the manifest and decoded config for ``reference``.

        Raises:
            AuthenticationError: Credentials missing or refused.
            NotFoundError: Manifest or config blob does not exist.
            TransportError: Network failure or unexpected response.
            UnsupportedMediaTypeError: Reference names a manifest list or index.
            RegistryIntegrityError: Served content does not match its digest.
        """
        ...

    @abstractmethod
    def push_blob(self, reference: ImageReference, data: bytes, digest: str) -> str:
        """Upload a blob to the reference's repository.

        Returns:
            The digest the registry stored the blob under.

        Raises:
            RegistryIntegrityError: Registry rejected or re-addressed the blob.
        """
        ...

    @abstractmethod
    def push_manifest(self, reference: ImageReference, manifest: ImageManifest) -> str:
        """Publish ``manifest`` under the reference's tag.

        Returns:
            The digest the registry stored the manifest under.
        """
        ...

    def close(self) -> None:
        """Release transport resources. No-op by default."""


# =============================================================================
# Authentication handshake
# =============================================================================


def parse_challenge(header: str) -> tuple[str, dict[str, str]] | None:
    """Parse a ``WWW-Authenticate`` header into (scheme, params).

    Example:
        >>> parse_challenge('Bearer realm="https://auth.example.com/token",service="reg"')
        ('bearer', {'realm': 'https://auth.example.com/token', 'service': 'reg'})
    """
    scheme, _, rest = header.strip().partition(" ")
    if not scheme:
        return None
    params = {
        match.group(1).lower(): match.group(2) if match.group(2) is not None else match.group(3)
        for match in _CHALLENGE_PARAM.finditer(rest)
    }
    return scheme.lower(), params


def _basic_header(credentials: Credentials) -> str:
    raw = f"{credentials.username or ''}:{credentials.password or ''}".encode()
    return "Basic " + base64.b64encode(raw).decode("ascii")


class RegistryAuth(httpx.Auth):
    """httpx auth flow answering registry Basic and Bearer challenges.

    Bearer tokens are cached per repository scope, so repeated requests for the
    same repository and action set skip the token round trip. Instances are
    shared across threads.
    """

    requires_request_body = True
    requires_response_body = True

    def __init__(self, registry: str, authenticator: Authenticator) -> None:
        self._registry = registry
        self._authenticator = authenticator
        self._tokens: dict[str, str] = {}
        self._use_basic = False
        self._lock = threading.Lock()

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        scope = self._scope_for(request)
        with self._lock:
            token = self._tokens.get(scope) if scope else None
            use_basic = self._use_basic

        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        elif use_basic:
            credentials = self._authenticator.resolve(self._registry)
            if not credentials.is_anonymous and credentials.password:
                request.headers["Authorization"] = _basic_header(credentials)

        response = yield request
        if response.status_code != 401:
            return

        challenge = parse_challenge(response.headers.get("WWW-Authenticate", ""))
        if challenge is None:
            return
        scheme, params = challenge

        if scheme == "basic":
            credentials = self._authenticator.resolve(self._registry)
            if credentials.is_anonymous or not credentials.password:
                return
            with self._lock:
                self._use_basic = True
            request.headers["Authorization"] = _basic_header(credentials)
            yield request
            return

        if scheme != "bearer" or "realm" not in params:
            return

        token_scope = params.get("scope") or scope
        token_response = yield self._token_request(params, token_scope)
        token = self._read_token(token_response)
        with self._lock:
            if scope:
                self._tokens[scope] = token
        logger.debug("registry_token_acquired", registry=self._registry, scope=token_scope)

        request.headers["Authorization"] = f"Bearer {token}"
        yield request

    def _token_request(self, params: dict[str, str], scope: str | None) -> httpx.Request:
        credentials = self._authenticator.resolve(self._registry)
        query: dict[str, str] = {}
        if params.get("service"):
            query["service"] = params["service"]

        if credentials.identity_token:
            form = {
                "grant_type": "refresh_token",
                "refresh_token": credentials.identity_token,
                "client_id": TOKEN_CLIENT_ID,
                **query,
            }
            if scope:
                form["scope"] = scope
            return httpx.Request("POST", params["realm"], data=form)

        if scope:
            query["scope"] = scope
        headers = {}
        if not credentials.is_anonymous:
            headers["Authorization"] = _basic_header(credentials)
        return httpx.Request("GET", params["realm"], params=query, headers=headers)

    def _read_token(self, response: httpx.Response) -> str:
        if response.status_code in (401, 403):
            raise AuthenticationError(
                self._registry,
                f"token endpoint refused credentials ({response.status_code})",
            )
        if response.status_code >= 400:
            raise TransportError(
                self._registry,
                f"token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise AuthenticationError(self._registry, f"token response is not JSON: {e}") from e
        token = payload.get("token") or payload.get("access_token")
        if not token:
            raise AuthenticationError(self._registry, "token response carried no token")
        return str(token)

    @staticmethod
    def _scope_for(request: httpx.Request) -> str | None:
        match = _REPOSITORY_PATH.match(request.url.path)
        if match is None:
            return None
        actions = "pull" if request.method in ("GET", "HEAD") else "pull,push"
        return f"repository:{match.group('repository')}:{actions}"


# =============================================================================
# HTTP client
# =============================================================================


class HttpRegistryClient(RegistryClient):
    """RegistryClient over the OCI distribution HTTP API.

    Example:
        >>> client = HttpRegistryClient(
        ...     RegistrySettings(insecure_registries=("registry.local:5000",)),
        ...     authenticator=create_authenticator(AuthConfig()),
        ... )
    """

    def __init__(
        self,
        settings: RegistrySettings | None = None,
        authenticator: Authenticator | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
        metrics: MutationMetrics | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize HttpRegistryClient.

        Args:
            settings: Registry settings. Uses defaults if None.
            authenticator: Credential source. Anonymous if None.
            retry_policy: Retry policy. Built from settings.retry if None.
            metrics: Metrics collector. Uses the process default if None.
            transport: httpx transport override, e.g. httpx.MockTransport.
        """
        self._settings = settings or RegistrySettings()
        self._authenticator = authenticator or AnonymousAuthenticator()
        self._retry_policy = retry_policy or RetryPolicy(self._settings.retry)
        self._metrics = metrics
        self._http = httpx.Client(
            timeout=self._settings.timeout_seconds,
            verify=self._settings.tls_verify,
            transport=transport,
        )
        self._auths: dict[str, RegistryAuth] = {}
        self._auths_lock = threading.Lock()

    @property
    def metrics(self) -> MutationMetrics:
        if self._metrics is None:
            self._metrics = get_mutation_metrics()
        return self._metrics

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> HttpRegistryClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # RegistryClient
    # -------------------------------------------------------------------------

    def fetch_image(self, reference: ImageReference) -> FetchedImage:
        log = logger.bind(reference=str(reference))
        with self.metrics.create_span(
            MutationMetrics.SPAN_FETCH,
            {"registry": reference.registry, "repository": reference.repository},
        ):
            manifest = self._retrying(self._get_manifest)(reference)

            if manifest.is_index:
                raise UnsupportedMediaTypeError(str(reference), manifest.media_type)
            if manifest.media_type not in SUPPORTED_MANIFEST_TYPES:
                raise UnsupportedMediaTypeError(str(reference), manifest.media_type or "unknown")
            if reference.digest is not None and not verify_digest(manifest.raw, reference.digest):
                raise RegistryIntegrityError(reference.digest, manifest.digest, str(reference))

            descriptor = manifest.config
            raw_config = self._retrying(self._get_blob)(reference, descriptor.digest)
            intact = verify_digest(raw_config, descriptor.digest)
            if not intact or len(raw_config) != descriptor.size:
                raise RegistryIntegrityError(
                    descriptor.digest,
                    calculate_digest(raw_config),
                    f"{reference.repository_ref} config blob",
                )

            try:
                config = ImageConfig.from_bytes(raw_config)
            except ValueError as e:
                raise TransportError(reference.registry, str(e), retryable=False) from e

        log.debug("image_fetched", manifest_digest=manifest.digest, config_digest=descriptor.digest)
        return FetchedImage(manifest=manifest, config=config)

    def push_blob(self, reference: ImageReference, data: bytes, digest: str) -> str:
        log = logger.bind(repository=reference.repository_ref, digest=digest)
        success = False
        try:
            with self.metrics.create_span(
                MutationMetrics.SPAN_PUSH_BLOB,
                {"registry": reference.registry, "digest": digest, "size": len(data)},
            ):
                if self._retrying(self._blob_exists)(reference, digest):
                    log.debug("blob_exists_skipped")
                    success = True
                    return digest

                stored = self._retrying(self._upload_blob)(reference, data, digest)
                if stored != digest:
                    raise RegistryIntegrityError(
                        digest, stored, f"{reference.repository_ref} blob upload"
                    )
                log.debug("blob_pushed", size=len(data))
                success = True
                return stored
        finally:
            self.metrics.record_push("blob", reference.registry, success=success)

    def push_manifest(self, reference: ImageReference, manifest: ImageManifest) -> str:
        if reference.tag is None or reference.digest is not None:
            raise ValueError(f"Manifests are only pushed to tag references, got {reference}")

        expected = manifest.digest
        success = False
        try:
            with self.metrics.create_span(
                MutationMetrics.SPAN_PUSH_MANIFEST,
                {"registry": reference.registry, "tag": reference.tag, "digest": expected},
            ):
                response = self._retrying(self._put_manifest)(reference, manifest)
                stored = response.headers.get("Docker-Content-Digest", expected)
                if stored != expected:
                    raise RegistryIntegrityError(expected, stored, str(reference))
                logger.debug("manifest_pushed", reference=str(reference), digest=stored)
                success = True
                return stored
        finally:
            self.metrics.record_push("manifest", reference.registry, success=success)

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def _get_manifest(self, reference: ImageReference) -> ImageManifest:
        url = self._url(reference, f"manifests/{reference.identifier}")
        response = self._request(
            "GET", url, reference, headers={"Accept": MANIFEST_ACCEPT}
        )
        self._raise_for_status(response, reference, str(reference))
        content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        try:
            return ImageManifest.from_bytes(response.content, content_type or None)
        except ValueError as e:
            raise TransportError(reference.registry, str(e), retryable=False) from e

    def _get_blob(self, reference: ImageReference, digest: str) -> bytes:
        url = self._url(reference, f"blobs/{digest}")
        response = self._request("GET", url, reference, follow_redirects=True)
        self._raise_for_status(response, reference, f"{reference.repository_ref}@{digest}")
        return response.content

    def _blob_exists(self, reference: ImageReference, digest: str) -> bool:
        url = self._url(reference, f"blobs/{digest}")
        response = self._request("HEAD", url, reference, follow_redirects=True)
        if response.status_code == 404:
            return False
        self._raise_for_status(response, reference, f"{reference.repository_ref}@{digest}")
        return True

    def _upload_blob(self, reference: ImageReference, data: bytes, digest: str) -> str:
        target = reference.repository_ref
        start = self._request("POST", self._url(reference, "blobs/uploads/"), reference)
        self._raise_for_status(start, reference, target, digest=digest)

        location = start.headers.get("Location")
        if not location:
            raise TransportError(
                reference.registry, "upload session returned no Location", retryable=False
            )
        upload_url = start.url.join(location).copy_merge_params({"digest": digest})

        response = self._request(
            "PUT",
            upload_url,
            reference,
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        self._raise_for_status(response, reference, target, digest=digest)
        return response.headers.get("Docker-Content-Digest", digest)

    def _put_manifest(self, reference: ImageReference, manifest: ImageManifest) -> httpx.Response:
        url = self._url(reference, f"manifests/{reference.identifier}")
        response = self._request(
            "PUT",
            url,
            reference,
            content=manifest.raw,
            headers={"Content-Type": manifest.media_type},
        )
        self._raise_for_status(response, reference, str(reference), digest=manifest.digest)
        return response

    def _request(
        self,
        method: str,
        url: httpx.URL | str,
        reference: ImageReference,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            auth = self._auth_for(reference.registry)
            return self._http.request(method, url, auth=auth, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(reference.registry, f"{method} {url}: {e}") from e

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _retrying(self, func: Callable[..., T]) -> Callable[..., T]:
        return self._retry_policy.wrap(func)

    def _auth_for(self, registry: str) -> RegistryAuth:
        with self._auths_lock:
            auth = self._auths.get(registry)
            if auth is None:
                auth = RegistryAuth(registry, self._authenticator)
                self._auths[registry] = auth
            return auth

    def _url(self, reference: ImageReference, suffix: str) -> str:
        host = reference.registry
        repository = reference.repository
        if host in DOCKER_HUB_ALIASES:
            host = DOCKER_HUB_ENDPOINT
            if "/" not in repository:
                repository = f"library/{repository}"
        return f"{self._scheme(reference.registry)}://{host}/v2/{repository}/{suffix}"

    def _scheme(self, registry: str) -> str:
        hostname = registry.rsplit(":", 1)[0] if registry.count(":") == 1 else registry
        if registry in self._settings.insecure_registries or hostname in LOOPBACK_HOSTS:
            return "http"
        return "https"

    def _raise_for_status(
        self,
        response: httpx.Response,
        reference: ImageReference,
        target: str,
        *,
        digest: str | None = None,
    ) -> None:
        status = response.status_code
        if status < 400:
            return

        codes, detail = _registry_errors(response)
        if status in (401, 403):
            raise AuthenticationError(reference.registry, detail or f"HTTP {status}")
        if status == 404:
            raise NotFoundError(target, detail or None)
        if status == 400 and codes & INTEGRITY_ERROR_CODES:
            raise RegistryIntegrityError(
                digest or "unknown",
                f"rejected by registry ({', '.join(sorted(codes))})",
                target,
            )
        raise TransportError(
            reference.registry,
            f"HTTP {status} for {target}" + (f": {detail}" if detail else ""),
            status_code=status,
        )


def _registry_errors(response: httpx.Response) -> tuple[set[str], str]:
    """Extract error codes and messages from a distribution API error body."""
    try:
        payload = response.json()
    except ValueError:
        return set(), response.text[:200].strip()
    if not isinstance(payload, dict):
        return set(), ""
    errors = payload.get("errors") or []
    codes = {str(err.get("code", "")) for err in errors if isinstance(err, dict)}
    messages = [str(err.get("message", "")) for err in errors if isinstance(err, dict)]
    return codes - {""}, "; ".join(m for m in messages if m)


__all__ = [
    "MANIFEST_ACCEPT",
    "HttpRegistryClient",
    "RegistryAuth",
    "RegistryClient",
    "parse_challenge",
]
