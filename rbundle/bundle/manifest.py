"""Wire shape of a release manifest.

A manifest is the release record exactly as the source API returned it,
with its tags and images expanded. It travels through the bundle as plain
JSON, so the types below document the shape rather than enforce it; the
normalizer is what enforces it.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal, NotRequired, TypedDict

ReleaseStatus = Literal[
    "cancelled",
    "error",
    "failed",
    "interrupted",
    "local",
    "running",
    "success",
    "timeout",
]

ReleasePhase = Literal["next", "current", "sunset", "end-of-life"]


class ManifestSchema(StrEnum):
    """How a manifest expresses the release's version identity."""

    # semver_major / semver_minor / semver_patch numbers
    TRIPLE = "triple"
    # a single semver string
    SEMVER = "semver"
    # semver string plus a target-side revision number
    REVISION = "revision"


class ServiceRef(TypedDict):
    service_name: str
    id: NotRequired[int]


class ImageManifest(TypedDict, total=False):
    id: int
    created_at: str
    build_log: str | None
    contract: dict[str, object] | None
    content_hash: str | None
    project_type: str | None
    status: str
    is_stored_at__image_location: str
    start_timestamp: str | None
    end_timestamp: str | None
    push_timestamp: str | None
    image_size: int | None
    dockerfile: str | None
    error_message: str | None
    is_a_build_of__service: list[ServiceRef]


class ReleaseImageManifest(TypedDict, total=False):
    id: int
    created_at: str
    image: list[ImageManifest]


class ReleaseTagManifest(TypedDict, total=False):
    id: int
    tag_key: str
    value: str


class ReleaseManifest(TypedDict, total=False):
    commit: str
    composition: dict[str, object] | None
    contract: str | None
    status: ReleaseStatus | None
    source: str
    build_log: str | None
    is_invalidated: bool
    created_at: str
    start_timestamp: str
    update_timestamp: str | None
    end_timestamp: str | None
    phase: ReleasePhase | None
    semver: str
    semver_major: int
    semver_minor: int
    semver_patch: int
    semver_prerelease: str
    semver_build: str
    variant: str
    revision: int | None
    known_issue_list: str | None
    raw_version: str
    is_final: bool
    is_finalized_at__date: str | None
    note: str | None
    invalidation_reason: str | None
    release_image: list[ReleaseImageManifest]
    release_tag: list[ReleaseTagManifest]


# Descriptive fields copied verbatim onto the release created by apply.
# Identity and timestamps are handled separately.
RELEASE_COPY_FIELDS: tuple[str, ...] = (
    "commit",
    "composition",
    "contract",
    "source",
    "build_log",
    "is_invalidated",
    "phase",
    "variant",
    "known_issue_list",
    "raw_version",
    "is_final",
    "is_finalized_at__date",
    "note",
    "invalidation_reason",
)


def detect_schema(manifest: dict[str, object]) -> ManifestSchema:
    """Pick a schema for manifests that do not declare one."""
    if manifest.get("revision") is not None:
        return ManifestSchema.REVISION
    if isinstance(manifest.get("semver"), str):
        return ManifestSchema.SEMVER
    return ManifestSchema.TRIPLE
