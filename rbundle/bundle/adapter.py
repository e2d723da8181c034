"""Conversion between release manifests and the generic bundle container."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, BinaryIO

from rbundle.bundle.container import ReadableBundle, WritableBundle, read_bundle
from rbundle.bundle.errors import BundleError
from rbundle.core.result import Result

if TYPE_CHECKING:
    from rbundle.bundle.registry import ImageBlob

RELEASE_BUNDLE_TYPE = "io.balena.release"


def read_release_bundle(stream: BinaryIO) -> Result[ReadableBundle, BundleError]:
    return read_bundle(stream, RELEASE_BUNDLE_TYPE)


def write_release_bundle(
    manifest: dict[str, object],
    blobs: Sequence[ImageBlob] = (),
) -> BinaryIO:
    bundle = WritableBundle(type=RELEASE_BUNDLE_TYPE, manifest=manifest)
    for blob in blobs:
        bundle.add_resource(blob.resource_id, blob.data, type=blob.media_type)
    return bundle.finalize()
