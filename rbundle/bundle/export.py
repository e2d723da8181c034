"""Build a release bundle from a release on the source API."""

from __future__ import annotations

from typing import BinaryIO

from rbundle.bundle.adapter import write_release_bundle
from rbundle.bundle.errors import BundleError, remote_error
from rbundle.bundle.model import RegistryCredentials
from rbundle.bundle.registry import ImageBlob, ImageDescriptor, RegistryClient
from rbundle.bundle.store import RemoteStore
from rbundle.core.result import Err, Ok, Result
from rbundle.core.structured import StrDict, as_obj_list, as_str_dict, get_list, get_str
from rbundle.output.console import ConsoleProtocol, Style

# What the manifest carries about each release.
RELEASE_EXPAND: dict[str, object] = {
    "release_tag": {"$select": ["tag_key", "value"]},
    "release_image": {
        "$select": ["created_at", "image"],
        "$expand": {
            "image": {
                "$select": [
                    "created_at",
                    "content_hash",
                    "end_timestamp",
                    "is_a_build_of__service",
                    "is_stored_at__image_location",
                    "push_timestamp",
                    "status",
                ],
                "$expand": {
                    "is_a_build_of__service": {"$select": ["id", "service_name"]},
                },
            },
        },
    },
}


def image_locations(manifest: StrDict) -> list[str]:
    """Registry locations of the release's images, in manifest order."""
    out: list[str] = []
    for entry_obj in get_list(manifest, "release_image") or []:
        entry = as_str_dict(entry_obj)
        images = as_obj_list(entry.get("image")) if entry is not None else None
        if not images:
            continue
        image = as_str_dict(images[0])
        location = get_str(image, "is_stored_at__image_location") if image else None
        if location is not None and location not in out:
            out.append(location)
    return out


def fetch_release_images(
    registry: RegistryClient,
    locations: list[str],
    credentials: RegistryCredentials | None,
) -> Result[list[ImageBlob], BundleError]:
    descriptors: list[ImageDescriptor] = []
    for location in locations:
        descriptor = registry.parse_image_name(location)
        if descriptor is None:
            return Err(BundleError(kind="registry", message=f"invalid image name: {location}"))
        descriptors.append(descriptor)

    # Tokens are per registry; images may live on several.
    by_registry: dict[str, list[ImageDescriptor]] = {}
    for descriptor in descriptors:
        by_registry.setdefault(descriptor.registry, []).append(descriptor)

    blobs: list[ImageBlob] = []
    for group in by_registry.values():
        challenge = registry.discover_authenticate(group)
        if isinstance(challenge, Err):
            return challenge

        token = registry.authenticate(challenge.value, group, credentials)
        if isinstance(token, Err):
            return token

        fetched = registry.fetch_images(group, token.value)
        if isinstance(fetched, Err):
            return fetched
        blobs.extend(fetched.value)
    return Ok(blobs)


def create_bundle(
    *,
    store: RemoteStore,
    release_id: int,
    console: ConsoleProtocol,
    registry: RegistryClient | None = None,
    credentials: RegistryCredentials | None = None,
) -> Result[BinaryIO, BundleError]:
    """Bundle release ``release_id`` without modifying anything remotely.

    Image blobs are pulled and embedded only when a registry client is given.
    """
    fetched = store.get_by_id(
        "release", release_id, options={"$expand": RELEASE_EXPAND}
    ).map_err(remote_error)
    if isinstance(fetched, Err):
        return fetched

    manifest = fetched.value
    if manifest is None:
        return Err(BundleError(kind="not_found", message="Release not found."))

    if manifest.get("status") != "success":
        return Err(
            BundleError(
                kind="validation",
                message=(
                    "Could not create bundle from release; "
                    "release bundles can only be created from successful releases."
                ),
            )
        )

    if get_list(manifest, "release_image") is None:
        return Err(
            BundleError(
                kind="validation",
                message=(
                    "Could not create bundle from release; "
                    "release bundles can only be created from releases with successfully built images."
                ),
            )
        )

    blobs: list[ImageBlob] = []
    if registry is not None:
        locations = image_locations(manifest)
        console.print(f"fetching {len(locations)} image(s) from the registry", Style.DIM)
        images = fetch_release_images(registry, locations, credentials)
        if isinstance(images, Err):
            return images
        blobs = images.value

    console.print(f"bundling release {release_id} with {len(blobs)} resource(s)", Style.DIM)
    return Ok(write_release_bundle(manifest, blobs))
