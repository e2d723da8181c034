from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, cast

from rbundle.bundle.cleanup import CleanupPolicy
from rbundle.bundle.manifest import ManifestSchema
from rbundle.bundle.semver import SemVer


@dataclass(frozen=True, slots=True)
class ReleaseImage:
    """One built image of the release, scoped to the service it builds."""

    image: Mapping[str, object]
    service: str

    @property
    def content_hash(self) -> str:
        return cast(str, self.image["content_hash"])

    @property
    def status(self) -> str:
        return cast(str, self.image["status"])

    @property
    def location(self) -> str | None:
        value = self.image.get("is_stored_at__image_location")
        return value if isinstance(value, str) else None


@dataclass(frozen=True, slots=True)
class ReleaseTag:
    tag_key: str
    value: str


@dataclass(frozen=True, slots=True)
class Release:
    """A validated manifest, ready to be materialized on a target.

    Only the normalizer builds these, so every image is known to be a
    successful build with a content hash and a service name.
    """

    schema: ManifestSchema
    identity: SemVer
    revision: int | None
    status: str
    release_images: tuple[ReleaseImage, ...] = ()
    release_tags: tuple[ReleaseTag, ...] = ()

    @property
    def version(self) -> str:
        return self.identity.version


@dataclass(frozen=True, slots=True)
class ApplyOptions:
    force: bool = False
    version_override: str | None = None
    schema: ManifestSchema | None = None
    cleanup: CleanupPolicy = field(default=CleanupPolicy.LINKS)


@dataclass(frozen=True, slots=True)
class RegistryCredentials:
    username: str
    password: str
