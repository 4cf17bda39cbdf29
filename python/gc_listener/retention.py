"""
Retention policy: keep the N most recent tags of every repository.

Tags are ranked newest-first by one comparator. When both tags of a pair
parse as semantic versions (a leading "v" is allowed) they are ordered by
semver precedence; otherwise, or when the precedence is equal, the raw
strings are compared byte-wise and the greater string ranks first. The
fallback is decided per pair, so one repository may mix "v1.2.3" and
"latest" in the same sort.
"""

import threading
from dataclasses import dataclass
from functools import cmp_to_key, lru_cache
from typing import Callable, Iterable, Iterator, List, Optional

import semver

from gc_listener.error_utils import ActionableError, NotFound
from gc_listener.logging_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeleteJob:
    """One manifest to delete, produced by the policy and consumed once by a worker."""

    repository: str
    tag: str
    digest: str


@lru_cache(maxsize=4096)
def parse_version(tag: str) -> Optional[semver.Version]:
    """Parse a tag as a semantic version, or return None."""
    text = tag[1:] if tag.startswith("v") else tag
    try:
        return semver.Version.parse(text)
    except (ValueError, TypeError):
        return None


def compare_tags(a: str, b: str) -> int:
    """Order two tags newest-first: negative if a is newer than b."""
    va, vb = parse_version(a), parse_version(b)
    if va is not None and vb is not None:
        order = vb.compare(va)
        if order:
            return order
    ba, bb = a.encode("utf-8"), b.encode("utf-8")
    if ba == bb:
        return 0
    return -1 if ba > bb else 1


def rank_tags(tags: Iterable[str]) -> List[str]:
    """Return tags sorted newest-first (stable)."""
    return sorted(tags, key=cmp_to_key(compare_tags))


def select_for_deletion(tags: List[str], keep_n: int) -> List[str]:
    """Return the tags ranked below the top keep_n, in rank order.

    keep_n <= 0 disables the policy and selects nothing.
    """
    if keep_n <= 0 or len(tags) <= keep_n:
        return []
    return rank_tags(tags)[keep_n:]


def plan_repository(
    client,
    repository: str,
    tags: List[str],
    keep_n: int,
    shutdown: Optional[threading.Event] = None,
) -> Iterator[DeleteJob]:
    """Yield a DeleteJob for every tag of one repository that falls outside keep_n.

    Digests are resolved here, right before the job is handed to the
    pipeline. A tag that disappeared in the meantime is dropped silently.
    """
    candidates = select_for_deletion(tags, keep_n)
    if not candidates:
        logger.debug("[%s] %d tags, nothing to prune", repository, len(tags))
        return

    logger.info("[%s] %d tags, pruning %d", repository, len(tags), len(candidates))
    for tag in candidates:
        if shutdown is not None and shutdown.is_set():
            return
        try:
            digest = client.resolve_digest(repository, tag)
        except NotFound:
            logger.debug("[%s:%s] already gone", repository, tag)
            continue
        except ActionableError as e:
            logger.warning("[%s:%s] digest: %s", repository, tag, e.message)
            continue
        except Exception as e:
            logger.warning("[%s:%s] digest: %s", repository, tag, e)
            continue
        yield DeleteJob(repository, tag, digest)


def plan_deletions(
    client,
    repositories: Iterable[str],
    keep_n: int,
    shutdown: Optional[threading.Event] = None,
    on_skip: Optional[Callable[[str, Exception], None]] = None,
) -> Iterator[DeleteJob]:
    """Yield delete jobs for every repository in turn.

    A repository whose tags cannot be listed is reported through on_skip and
    skipped for this run; the remaining repositories are still evaluated.
    """
    for repository in repositories:
        if shutdown is not None and shutdown.is_set():
            logger.info("Shutdown requested; no further repositories are evaluated")
            return
        try:
            tags = client.list_tags(repository)
        except Exception as e:
            logger.warning("[%s] tags: %s", repository, getattr(e, "message", e))
            if on_skip is not None:
                on_skip(repository, e)
            continue
        yield from plan_repository(client, repository, tags, keep_n, shutdown)
