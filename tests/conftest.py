"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides an in-memory registry that behaves like the v2 API client.
"""
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)

from gc_listener.error_utils import NotFound, ProtocolError, TransportError  # noqa: E402


class FakeRegistry:
    """In-memory stand-in for RegistryClient.

    repos maps repository -> {tag: digest}. Deleting a digest removes every
    tag that points at it, like the real registry does.
    """

    def __init__(self, repos: Dict[str, Dict[str, str]], username: Optional[str] = "admin"):
        self.repos = {name: dict(tags) for name, tags in repos.items()}
        self.username = username
        self.registry_url = "http://fake-registry:5000"
        self.fail_list_tags: Set[str] = set()
        self.fail_delete: Set[str] = set()
        self.fail_catalog = False
        self.deleted: List[tuple] = []
        self._lock = threading.Lock()

    def has_credentials(self) -> bool:
        return bool(self.username)

    def list_repositories(self) -> List[str]:
        if self.fail_catalog:
            raise TransportError("connection refused")
        return list(self.repos)

    def list_tags(self, repository: str) -> List[str]:
        if repository in self.fail_list_tags:
            raise ProtocolError(f"status 500 for {repository}", status_code=500)
        if repository not in self.repos:
            raise NotFound(f"unknown repository {repository}")
        with self._lock:
            return list(self.repos[repository])

    def resolve_digest(self, repository: str, tag: str) -> str:
        with self._lock:
            tags = self.repos.get(repository, {})
            if tag not in tags:
                raise NotFound(f"Tag {repository}:{tag} no longer exists")
            return tags[tag]

    def delete_manifest(self, repository: str, digest: str) -> bool:
        if digest in self.fail_delete:
            raise ProtocolError(f"status 500 deleting {digest}", status_code=500)
        with self._lock:
            tags = self.repos.get(repository, {})
            for tag in [t for t, d in tags.items() if d == digest]:
                del tags[tag]
            self.deleted.append((repository, digest))
        return True


@pytest.fixture
def fake_registry_factory():
    return FakeRegistry
