"""Reconstitute a bundled release on a target application.

apply_bundle() runs a fixed sequence of writes against the target and
stops at the first failure. Nothing written before a failure is rolled
back; a half-applied release stays in status "running".
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import UTC, datetime
from typing import BinaryIO

from rbundle.bundle.adapter import read_release_bundle
from rbundle.bundle.backfill import PlaceholderBackfill, RevisionBackfill
from rbundle.bundle.cleanup import clean_stale_release
from rbundle.bundle.errors import BundleError, remote_error
from rbundle.bundle.manifest import RELEASE_COPY_FIELDS, ManifestSchema
from rbundle.bundle.model import ApplyOptions, Release, ReleaseImage, ReleaseTag
from rbundle.bundle.normalize import normalize_manifest
from rbundle.bundle.pacing import NoPacer
from rbundle.bundle.store import RemoteStore, StoreError
from rbundle.core.result import Err, Ok, Result
from rbundle.core.structured import StrDict, as_str_dict, get_int, get_str
from rbundle.output.console import ConsoleProtocol, Style

DEFAULT_TAG_WORKERS = 8


def utc_now() -> str:
    """Current time as ``2024-01-02T03:04:05.678Z``."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _remote(err: StoreError) -> Err[BundleError]:
    return Err(remote_error(err))


def _row_id(row: Mapping[str, object], resource: str) -> Result[int, BundleError]:
    row_id = row.get("id")
    if not isinstance(row_id, int) or isinstance(row_id, bool):
        return Err(BundleError(kind="remote", message=f"{resource}: response has no id"))
    return Ok(row_id)


def _duplicate_filter(
    release: Release, manifest: StrDict, application_id: int
) -> dict[str, object]:
    flt: dict[str, object] = {
        "belongs_to__application": application_id,
        "status": "success",
    }
    identity = release.identity
    if release.schema is ManifestSchema.TRIPLE:
        flt["semver_major"] = identity.major
        flt["semver_minor"] = identity.minor
        flt["semver_patch"] = identity.patch
        return flt

    version_match: dict[str, object] = {"semver": identity.version}
    if release.schema is ManifestSchema.REVISION:
        version_match["revision"] = release.revision

    commit = get_str(manifest, "commit")
    flt["$or"] = [{"commit": commit}, version_match] if commit else [version_match]
    return flt


def _describe(row: StrDict) -> str:
    version = get_str(row, "semver")
    if version is None:
        parts = [get_int(row, k) for k in ("semver_major", "semver_minor", "semver_patch")]
        version = ".".join("?" if p is None else str(p) for p in parts)
    revision = get_int(row, "revision")
    if revision is not None:
        version = f"{version} (revision {revision})"
    commit = get_str(row, "commit")
    return f"{version} (commit {commit})" if commit else version


def find_duplicates(
    store: RemoteStore, *, release: Release, manifest: StrDict, application_id: int
) -> Result[list[StrDict], StoreError]:
    """Successful releases on the target that ``release`` would duplicate."""
    return store.get(
        "release",
        options={
            "$select": [
                "id",
                "commit",
                "semver",
                "semver_major",
                "semver_minor",
                "semver_patch",
                "revision",
            ],
            "$filter": _duplicate_filter(release, manifest, application_id),
            "$orderby": "id asc",
        },
    )


def _release_body(
    release: Release, manifest: StrDict, *, application_id: int, timestamp: str
) -> dict[str, object]:
    body: dict[str, object] = {"belongs_to__application": application_id}
    if "created_at" in manifest:
        body["created_at"] = manifest["created_at"]
    for key in RELEASE_COPY_FIELDS:
        if key in manifest:
            body[key] = manifest[key]

    identity = release.identity
    body.update(
        {
            "status": "running",
            "semver": identity.version,
            "semver_major": identity.major,
            "semver_minor": identity.minor,
            "semver_patch": identity.patch,
            "semver_prerelease": identity.prerelease,
            "semver_build": identity.build,
            "start_timestamp": timestamp,
            "end_timestamp": timestamp,
            "update_timestamp": timestamp,
        }
    )
    return body


def create_tags(
    store: RemoteStore,
    *,
    release_id: int,
    tags: tuple[ReleaseTag, ...],
    max_workers: int = DEFAULT_TAG_WORKERS,
) -> Result[int, StoreError]:
    """Post every tag concurrently and wait for all of them.

    The first failure (in completion order) is reported once every post
    has finished. Tags that did get created are left in place.
    """
    if not tags:
        return Ok(0)

    failure: StoreError | None = None
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(tags)))) as pool:
        futures = [
            pool.submit(
                store.post,
                "release_tag",
                {"release": release_id, "tag_key": tag.tag_key, "value": tag.value},
            )
            for tag in tags
        ]
        for future in as_completed(futures):
            result = future.result()
            if isinstance(result, Err) and failure is None:
                failure = result.error

    if failure is not None:
        return Err(failure)
    return Ok(len(tags))


def create_image(
    store: RemoteStore,
    *,
    application_id: int,
    release_id: int,
    release_image: ReleaseImage,
    timestamp: str,
) -> Result[int, BundleError]:
    service = store.get_or_create(
        "service",
        {"application": application_id, "service_name": release_image.service},
        {"application": application_id, "service_name": release_image.service},
    )
    if isinstance(service, Err):
        return _remote(service.error)
    service_id = _row_id(service.value, "service")
    if isinstance(service_id, Err):
        return service_id

    image = store.post(
        "image",
        {
            "content_hash": release_image.content_hash,
            "is_a_build_of__service": service_id.value,
            "status": "running",
            "start_timestamp": timestamp,
            "push_timestamp": timestamp,
        },
    )
    if isinstance(image, Err):
        return _remote(image.error)
    image_id = _row_id(image.value, "image")
    if isinstance(image_id, Err):
        return image_id

    link = store.post(
        "image__is_part_of__release",
        {"is_part_of__release": release_id, "image": image_id.value},
    )
    if isinstance(link, Err):
        return _remote(link.error)

    # No blob upload yet: the image record is marked with its bundled status.
    done = store.patch(
        "image",
        image_id.value,
        {"status": release_image.status, "end_timestamp": timestamp},
    )
    if isinstance(done, Err):
        return _remote(done.error)
    return Ok(image_id.value)


def apply_bundle(
    *,
    store: RemoteStore,
    application_id: int,
    stream: BinaryIO,
    options: ApplyOptions,
    console: ConsoleProtocol,
    clock: Callable[[], str] = utc_now,
    backfill: RevisionBackfill | None = None,
    tag_workers: int = DEFAULT_TAG_WORKERS,
) -> Result[int, BundleError]:
    """Create the bundled release on ``application_id``.

    Args:
        store: Authenticated store for the target API
        application_id: Application that receives the release
        stream: Release bundle
        options: Force, version override, schema and cleanup policy
        console: Progress output
        clock: Source of the timestamps written to the target
        backfill: Placeholder strategy for revision manifests; creates
            failed placeholders without pausing when None
        tag_workers: Upper bound on concurrent tag posts

    Returns:
        Ok(id of the new release) or Err(BundleError)
    """
    timestamp = clock()

    bundle = read_release_bundle(stream)
    if isinstance(bundle, Err):
        return bundle

    normalized = normalize_manifest(
        bundle.value.manifest,
        schema=options.schema,
        version_override=options.version_override,
    )
    if isinstance(normalized, Err):
        return Err(
            BundleError(
                kind="validation",
                message=f"Manifest is malformed: {normalized.error.message}",
            )
        )
    release = normalized.value
    manifest = as_str_dict(bundle.value.manifest) or {}
    console.print(
        f"manifest: {release.version} ({release.schema}), "
        f"{len(release.release_images)} image(s), {len(release.release_tags)} tag(s)",
        Style.DIM,
    )

    application = store.get_by_id("application", application_id, options={"$select": ["id"]})
    if isinstance(application, Err):
        return _remote(application.error)
    if application.value is None:
        return Err(
            BundleError(kind="not_found", message=f"Application not found: {application_id}")
        )

    duplicates = find_duplicates(
        store, release=release, manifest=manifest, application_id=application_id
    )
    if isinstance(duplicates, Err):
        return _remote(duplicates.error)
    if duplicates.value:
        if not options.force:
            return Err(
                BundleError(
                    kind="conflict",
                    message=(
                        f"A successful release with the version {_describe(duplicates.value[0])} "
                        "already exists and duplicates are not allowed."
                    ),
                    hint="Pass --force to replace it.",
                )
            )
        for stale in duplicates.value:
            stale_id = _row_id(stale, "release")
            if isinstance(stale_id, Err):
                return stale_id
            console.warning(
                f"replacing release {stale_id.value} ({options.cleanup} cleanup)"
            )
            cleaned = clean_stale_release(store, release_id=stale_id.value, policy=options.cleanup)
            if isinstance(cleaned, Err):
                return _remote(cleaned.error)

    if release.schema is ManifestSchema.REVISION and (release.revision or 0) > 0:
        strategy = backfill if backfill is not None else PlaceholderBackfill(NoPacer())
        filled = strategy.ensure_prior_revisions_exist(
            store,
            application_id=application_id,
            release=release,
            timestamp=timestamp,
            console=console,
        )
        if isinstance(filled, Err):
            return _remote(filled.error)

    created = store.post(
        "release",
        _release_body(release, manifest, application_id=application_id, timestamp=timestamp),
    )
    if isinstance(created, Err):
        return _remote(created.error)
    release_id = _row_id(created.value, "release")
    if isinstance(release_id, Err):
        return release_id
    console.print(f"created release {release_id.value}", Style.DIM)

    tagged = create_tags(
        store, release_id=release_id.value, tags=release.release_tags, max_workers=tag_workers
    )
    if isinstance(tagged, Err):
        return _remote(tagged.error)

    for release_image in release.release_images:
        console.print(f"image for service {release_image.service}", Style.DIM)
        image = create_image(
            store,
            application_id=application_id,
            release_id=release_id.value,
            release_image=release_image,
            timestamp=timestamp,
        )
        if isinstance(image, Err):
            return image

    finished = store.patch(
        "release",
        release_id.value,
        {"status": release.status, "end_timestamp": timestamp, "update_timestamp": timestamp},
    )
    if isinstance(finished, Err):
        return _remote(finished.error)

    return Ok(release_id.value)
