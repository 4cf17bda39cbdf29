"""
Client for the Docker Registry HTTP API v2.

Only the four calls the retention policy needs are implemented: catalog
listing, tag listing, tag -> digest resolution and manifest deletion by
digest. Calls are not retried: a failed call is reported to the caller and
the next scheduled prune starts from scratch.
"""

import threading
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import requests

from gc_listener.error_utils import (
    ErrorCategory,
    NotFound,
    TransportError,
    create_registry_connection_error,
    create_registry_protocol_error,
)
from gc_listener.logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 15.0

# Ask for every manifest flavour so the registry answers with the digest the
# tag actually points at instead of converting to schema 1.
MANIFEST_MEDIA_TYPES = [
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
]

DIGEST_HEADER = "Docker-Content-Digest"


def normalize_registry_url(url: str) -> str:
    """Return url with a scheme and without trailing slashes.

    >>> normalize_registry_url("registry-server:5000/")
    'http://registry-server:5000'
    """
    url = (url or "").strip()
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url.rstrip("/")


class RegistryClient:
    """Typed operations against a registry's v2 API."""

    def __init__(
        self,
        registry_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = 1000,
        shutdown: Optional[threading.Event] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize RegistryClient.

        Args:
            registry_url: Base URL of the registry, e.g. http://registry-server:5000
            username: Basic-auth user (optional; listing/deleting usually needs it)
            password: Basic-auth password
            timeout: Per-request timeout budget in seconds
            page_size: Page size requested from the catalog endpoint
            shutdown: Process-wide shutdown event; no new call starts once it is set
            session: Pre-built requests session (tests inject a mock here)
        """
        self.registry_url = normalize_registry_url(registry_url)
        self.username = username
        self.timeout = timeout
        self.page_size = page_size
        self.shutdown = shutdown
        self.session = session or requests.Session()
        if username:
            self.session.auth = (username, password or "")

    @classmethod
    def from_config(cls, config_manager, shutdown: Optional[threading.Event] = None) -> "RegistryClient":
        return cls(
            config_manager.get_registry_url(),
            username=config_manager.get_registry_username(),
            password=config_manager.get_registry_password(),
            timeout=config_manager.get_registry_timeout(),
            page_size=config_manager.get_catalog_page_size(),
            shutdown=shutdown,
        )

    def has_credentials(self) -> bool:
        """True when trust material for the listing/deletion API is configured."""
        return bool(self.username)

    # ── HTTP plumbing ──────────────────────────────────────────────────────────

    def _request(self, method: str, path: str, timeout: Optional[float] = None, **kwargs) -> requests.Response:
        if self.shutdown is not None and self.shutdown.is_set():
            raise TransportError(
                message="Shutdown in progress; registry call not started",
                category=ErrorCategory.CONNECTION,
                details={"registry_url": self.registry_url, "method": method, "path": path},
            )
        url = path if path.startswith(("http://", "https://")) else f"{self.registry_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            return self.session.request(method, url, timeout=timeout or self.timeout, **kwargs)
        except requests.RequestException as e:
            raise create_registry_connection_error(self.registry_url, e) from e

    def _get_json(
        self, path: str, operation: str, timeout: Optional[float] = None
    ) -> Tuple[Dict[str, Any], requests.Response]:
        response = self._request("GET", path, timeout=timeout, headers={"Accept": "application/json"})
        if response.status_code == 404:
            raise NotFound(
                message=f"Not found: {operation}",
                details={"registry_url": self.registry_url, "operation": operation},
            )
        if response.status_code // 100 != 2:
            raise create_registry_protocol_error(self.registry_url, operation, response.status_code, response.text)
        try:
            body = response.json()
        except ValueError:
            raise create_registry_protocol_error(self.registry_url, operation, None, response.text)
        if not isinstance(body, dict):
            raise create_registry_protocol_error(self.registry_url, operation, None, response.text)
        return body, response

    def _paginate(self, path: str, field: str, operation: str, timeout: Optional[float] = None) -> List[str]:
        """Collect a list field across pages linked with rel="next"."""
        items: List[str] = []
        seen = set()
        next_path: Optional[str] = path
        while next_path and next_path not in seen:
            seen.add(next_path)
            body, response = self._get_json(next_path, operation, timeout)
            values = body.get(field) or []
            if not isinstance(values, list):
                raise create_registry_protocol_error(self.registry_url, operation, None, str(body))
            items.extend(str(v) for v in values)

            link = (response.links or {}).get("next", {}).get("url")
            next_path = urljoin(self.registry_url + "/", link) if link else None
        return items

    # ── API operations ─────────────────────────────────────────────────────────

    def list_repositories(self, timeout: Optional[float] = None) -> List[str]:
        """List every repository in the registry catalog, in registry order.

        timeout overrides the client timeout for each page request.
        """
        return self._paginate(f"/v2/_catalog?n={self.page_size}", "repositories", "list repositories", timeout)

    def list_tags(self, repository: str, timeout: Optional[float] = None) -> List[str]:
        """List tags of a repository. An empty list is a valid answer."""
        return self._paginate(f"/v2/{repository}/tags/list", "tags", f"list tags of {repository}", timeout)

    def resolve_digest(self, repository: str, tag: str, timeout: Optional[float] = None) -> str:
        """Resolve repository:tag to the digest of the manifest it points at.

        Raises:
            NotFound: The tag no longer exists
            ProtocolError: Any other non-success answer, or no digest header
            TransportError: The registry could not be reached
        """
        operation = f"resolve digest of {repository}:{tag}"
        response = self._request(
            "HEAD",
            f"/v2/{repository}/manifests/{tag}",
            timeout=timeout,
            headers={"Accept": ", ".join(MANIFEST_MEDIA_TYPES)},
        )
        if response.status_code == 404:
            raise NotFound(
                message=f"Tag {repository}:{tag} no longer exists",
                details={"registry_url": self.registry_url, "repository": repository, "tag": tag},
            )
        if response.status_code != 200:
            raise create_registry_protocol_error(self.registry_url, operation, response.status_code)
        digest = response.headers.get(DIGEST_HEADER)
        if not digest:
            raise create_registry_protocol_error(self.registry_url, f"{operation} (missing {DIGEST_HEADER})", None)
        return digest

    def delete_manifest(self, repository: str, digest: str, timeout: Optional[float] = None) -> bool:
        """Delete a manifest by digest. Deleting an already deleted digest succeeds."""
        response = self._request("DELETE", f"/v2/{repository}/manifests/{digest}", timeout=timeout)
        if response.status_code == 404:
            logger.debug("[%s@%s] already deleted", repository, digest)
            return True
        if response.status_code // 100 != 2:
            raise create_registry_protocol_error(
                self.registry_url, f"delete {repository}@{digest}", response.status_code, response.text
            )
        return True

    def ping(self) -> bool:
        """Check the /v2/ base endpoint answers (used by health checks)."""
        response = self._request("GET", "/v2/")
        if response.status_code // 100 != 2:
            raise create_registry_protocol_error(self.registry_url, "ping", response.status_code)
        return True
