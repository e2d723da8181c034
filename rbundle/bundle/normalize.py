"""Manifest validation and canonicalization.

normalize_manifest() is the only gate between an externally authored
manifest and the mutations apply performs on a target. It is pure: it
never touches its input and never reports a partially built Release.

Rules are checked in a fixed order and the first violation wins:

1. the version override, if any, is a valid semantic version
2. the release status is "success"
3. the version identity has the type the schema declares
4. release_image is a list
5. every release image holds a successful image with a content hash,
   built for a named service
6. release_tag is a list
7. every tag has a string key and a string value
"""

from __future__ import annotations

import copy
from types import MappingProxyType

from rbundle.bundle.errors import BundleError
from rbundle.bundle.manifest import ManifestSchema, detect_schema
from rbundle.bundle.model import Release, ReleaseImage, ReleaseTag
from rbundle.bundle.semver import SemVer, parse_semver
from rbundle.core.result import Err, Ok, Result
from rbundle.core.structured import StrDict, as_obj_list, as_str_dict, get_int, type_name


def _invalid(message: str) -> Err[BundleError]:
    return Err(BundleError(kind="validation", message=message))


def _shown(value: object) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    return repr(value)


def _text(manifest: StrDict, key: str) -> str:
    value = manifest.get(key)
    return value if isinstance(value, str) else ""


def _identity(manifest: StrDict, schema: ManifestSchema) -> Result[SemVer, BundleError]:
    if schema is ManifestSchema.TRIPLE:
        parts: list[int] = []
        for key in ("semver_major", "semver_minor", "semver_patch"):
            value = get_int(manifest, key)
            if value is None:
                return _invalid(
                    f"Expected release to have {key} that is a number "
                    f"but found {type_name(manifest.get(key))}"
                )
            parts.append(value)
        return Ok(
            SemVer(
                parts[0],
                parts[1],
                parts[2],
                prerelease=_text(manifest, "semver_prerelease"),
                build=_text(manifest, "semver_build"),
            )
        )

    raw = manifest.get("semver")
    if not isinstance(raw, str):
        return _invalid(
            f"Expected release to have semver that is a string but found {type_name(raw)}"
        )
    parsed = parse_semver(raw)
    if parsed is None:
        return _invalid(
            f"Expected release to have semver that is a valid semantic version but found {raw!r}"
        )
    return Ok(parsed)


def _revision(manifest: StrDict, schema: ManifestSchema) -> Result[int | None, BundleError]:
    if schema is not ManifestSchema.REVISION:
        return Ok(None)
    raw = manifest.get("revision")
    if raw is None:
        return Ok(None)
    revision = get_int(manifest, "revision")
    if revision is None or revision < 0:
        return _invalid(
            f"Expected release to have revision that is a non-negative number "
            f"but found {raw!r}"
        )
    return Ok(revision)


def _release_images(manifest: StrDict) -> Result[tuple[ReleaseImage, ...], BundleError]:
    raw = manifest.get("release_image")
    entries = as_obj_list(raw)
    if entries is None:
        return _invalid(f"Expected array of release images but found {type_name(raw)}")

    out: list[ReleaseImage] = []
    for index, entry_obj in enumerate(entries):
        entry = as_str_dict(entry_obj)
        if entry is None:
            return _invalid(
                f"Expected release image {index} to be an object but found {type_name(entry_obj)}"
            )
        ref = entry.get("id", index)

        images = as_obj_list(entry.get("image"))
        if not images:
            return _invalid(
                f"Expected array of images in release image {ref} "
                f"but found {type_name(entry.get('image'))}"
            )
        image = as_str_dict(images[0])
        if image is None:
            return _invalid(
                f"Expected image in release image {ref} to be an object "
                f"but found {type_name(images[0])}"
            )

        status = image.get("status")
        if status != "success":
            return _invalid(
                f"Expected release image to have status 'success' but found {_shown(status)}"
            )

        content_hash = image.get("content_hash")
        if not isinstance(content_hash, str):
            return _invalid(
                f"Expected content hash for release image {ref} to be a string "
                f"but found {type_name(content_hash)}"
            )

        services = as_obj_list(image.get("is_a_build_of__service"))
        if not services:
            return _invalid(
                f"Expected array of services in release image {ref} "
                f"but found {type_name(image.get('is_a_build_of__service'))}"
            )
        service = as_str_dict(services[0])
        service_name = service.get("service_name") if service is not None else None
        if not isinstance(service_name, str) or not service_name:
            return _invalid(
                f"Expected service name for release image {ref} to be a string "
                f"but found {type_name(service_name)}"
            )

        out.append(
            ReleaseImage(image=MappingProxyType(copy.deepcopy(image)), service=service_name)
        )

    return Ok(tuple(out))


def _release_tags(manifest: StrDict) -> Result[tuple[ReleaseTag, ...], BundleError]:
    raw = manifest.get("release_tag")
    entries = as_obj_list(raw)
    if entries is None:
        return _invalid(f"Expected array of release tags but found {type_name(raw)}")

    out: list[ReleaseTag] = []
    for index, entry_obj in enumerate(entries):
        entry = as_str_dict(entry_obj) or {}
        ref = entry.get("id", index)
        key = entry.get("tag_key")
        value = entry.get("value")
        if not isinstance(key, str):
            return _invalid(
                f"Expected key of release tag {ref} to be a string but found {type_name(key)}"
            )
        if not isinstance(value, str):
            return _invalid(
                f"Expected value of release tag {ref} to be a string but found {type_name(value)}"
            )
        out.append(ReleaseTag(tag_key=key, value=value))

    return Ok(tuple(out))


def normalize_manifest(
    raw: object,
    *,
    schema: ManifestSchema | None = None,
    version_override: str | None = None,
) -> Result[Release, BundleError]:
    """Validate a raw manifest and build the Release it describes.

    Args:
        raw: Manifest as read from a bundle (untrusted JSON)
        schema: How the manifest expresses its version; detected when None
        version_override: Version to give the release instead of the manifest's

    Returns:
        Ok(Release), or Err(BundleError) of kind "validation" naming the
        first rule the manifest breaks
    """
    override: SemVer | None = None
    if version_override is not None:
        override = parse_semver(version_override)
        if override is None:
            return _invalid(
                f"Expected version override to be a valid semantic version "
                f"but found {version_override!r}"
            )

    manifest = as_str_dict(raw)
    if manifest is None:
        return _invalid(f"Expected release manifest to be an object but found {type_name(raw)}")

    status = manifest.get("status")
    if status != "success":
        return _invalid(f"Expected release to have status 'success' but found {_shown(status)}")

    schema = schema or detect_schema(manifest)

    identity = _identity(manifest, schema)
    if isinstance(identity, Err):
        return identity

    revision = _revision(manifest, schema)
    if isinstance(revision, Err):
        return revision

    images = _release_images(manifest)
    if isinstance(images, Err):
        return images

    tags = _release_tags(manifest)
    if isinstance(tags, Err):
        return tags

    return Ok(
        Release(
            schema=schema,
            identity=override or identity.value,
            revision=revision.value,
            status=str(status),
            release_images=images.value,
            release_tags=tags.value,
        )
    )
