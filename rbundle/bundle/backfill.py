"""Revision backfill for manifests that carry a revision number.

The target assigns revisions itself, one after another per version. A
release that must land at revision N therefore needs revisions 0..N-1 to
exist first; PlaceholderBackfill creates the missing ones as failed,
final releases that nothing will ever deploy.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol
from uuid import uuid4

from rbundle.bundle.model import Release
from rbundle.bundle.pacing import Pacer
from rbundle.bundle.store import RemoteStore, StoreError
from rbundle.core.result import Err, Ok, Result
from rbundle.core.structured import get_int
from rbundle.output.console import ConsoleProtocol, Style

PLACEHOLDER_STATUS = "failed"


class RevisionBackfill(Protocol):
    def ensure_prior_revisions_exist(
        self,
        store: RemoteStore,
        *,
        application_id: int,
        release: Release,
        timestamp: str,
        console: ConsoleProtocol,
    ) -> Result[int, StoreError]:
        """Create whatever releases must precede ``release``; return how many."""
        ...


def _new_commit() -> str:
    return uuid4().hex


def highest_revision(
    store: RemoteStore, *, application_id: int, version: str
) -> Result[int, StoreError]:
    """Highest revision the target holds for ``version``, or -1 if none."""
    rows = store.get(
        "release",
        options={
            "$select": ["id", "revision"],
            "$filter": {
                "belongs_to__application": application_id,
                "semver": version,
                "revision": {"$ne": None},
            },
            "$orderby": "revision desc",
            "$top": 1,
        },
    )
    if isinstance(rows, Err):
        return rows
    if not rows.value:
        return Ok(-1)
    revision = get_int(rows.value[0], "revision")
    return Ok(-1 if revision is None else revision)


class PlaceholderBackfill:
    def __init__(self, pacer: Pacer, commit_factory: Callable[[], str] = _new_commit) -> None:
        self._pacer = pacer
        self._commit_factory = commit_factory

    def _placeholder(
        self, *, application_id: int, release: Release, timestamp: str
    ) -> dict[str, object]:
        identity = release.identity
        return {
            "belongs_to__application": application_id,
            "commit": self._commit_factory(),
            "status": PLACEHOLDER_STATUS,
            "composition": {},
            "semver": identity.version,
            "semver_major": identity.major,
            "semver_minor": identity.minor,
            "semver_patch": identity.patch,
            "semver_prerelease": identity.prerelease,
            "semver_build": identity.build,
            "is_final": True,
            "start_timestamp": timestamp,
            "end_timestamp": timestamp,
        }

    def ensure_prior_revisions_exist(
        self,
        store: RemoteStore,
        *,
        application_id: int,
        release: Release,
        timestamp: str,
        console: ConsoleProtocol,
    ) -> Result[int, StoreError]:
        if release.revision is None or release.revision <= 0:
            return Ok(0)

        highest = highest_revision(
            store, application_id=application_id, version=release.identity.version
        )
        if isinstance(highest, Err):
            return highest

        missing = range(highest.value + 1, release.revision)
        for revision in missing:
            console.print(
                f"creating placeholder for {release.version} revision {revision}", Style.DIM
            )
            created = store.post(
                "release",
                self._placeholder(
                    application_id=application_id, release=release, timestamp=timestamp
                ),
            )
            if isinstance(created, Err):
                return created
            # the next placeholder, or the release itself, follows this one
            self._pacer.wait()
        return Ok(len(missing))


class NoBackfill:
    def ensure_prior_revisions_exist(
        self,
        store: RemoteStore,
        *,
        application_id: int,
        release: Release,
        timestamp: str,
        console: ConsoleProtocol,
    ) -> Result[int, StoreError]:
        return Ok(0)
