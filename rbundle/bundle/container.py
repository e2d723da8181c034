"""Generic bundle container: one manifest plus binary resources in a tar.

Layout of the archive, in member order:

    contents.json         {"version": 1, "type": ..., "manifest": ...,
                           "resources": [{"id", "type", "size", "digest"}]}
    resources/<sha256>    one member per distinct resource digest

Archives are written deterministically (fixed mtime, owner and mode) so
that the same manifest and resources always produce the same bytes. They
are read in streaming mode, so stdin and sockets work as sources.
"""

from __future__ import annotations

import hashlib
import io
import json
import tarfile
from dataclasses import dataclass, field
from typing import BinaryIO

from rbundle.bundle.errors import BundleError
from rbundle.core.result import Err, Ok, Result
from rbundle.core.structured import as_obj_list, as_str_dict, get_int, get_str

CONTAINER_VERSION = 1
CONTENTS_NAME = "contents.json"
RESOURCES_DIR = "resources"


@dataclass(frozen=True, slots=True)
class ResourceDescriptor:
    id: str
    type: str
    size: int
    digest: str

    @property
    def member_name(self) -> str:
        return f"{RESOURCES_DIR}/{self.digest.removeprefix('sha256:')}"


@dataclass(frozen=True, slots=True)
class ReadableBundle:
    type: str
    manifest: object
    resources: tuple[ResourceDescriptor, ...] = ()
    _blobs: dict[str, bytes] = field(default_factory=dict, repr=False)

    def resource(self, resource_id: str) -> bytes | None:
        for descriptor in self.resources:
            if descriptor.id == resource_id:
                return self._blobs.get(descriptor.digest)
        return None


def _digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def _tar_member(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mode = 0o644
    info.mtime = 0
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    tar.addfile(info, io.BytesIO(data))


class WritableBundle:
    """Accumulates resources, then writes the archive on finalize()."""

    def __init__(self, *, type: str, manifest: object) -> None:
        self.type = type
        self.manifest = manifest
        self._resources: list[ResourceDescriptor] = []
        self._blobs: dict[str, bytes] = {}
        self._finalized = False

    def add_resource(
        self,
        resource_id: str,
        data: bytes,
        *,
        type: str = "application/octet-stream",
    ) -> WritableBundle:
        if self._finalized:
            raise ValueError("bundle already finalized")
        if any(r.id == resource_id for r in self._resources):
            raise ValueError(f"duplicate resource id: {resource_id}")

        digest = _digest(data)
        self._resources.append(
            ResourceDescriptor(id=resource_id, type=type, size=len(data), digest=digest)
        )
        self._blobs.setdefault(digest, data)
        return self

    def contents(self) -> dict[str, object]:
        return {
            "version": CONTAINER_VERSION,
            "type": self.type,
            "manifest": self.manifest,
            "resources": [
                {"id": r.id, "type": r.type, "size": r.size, "digest": r.digest}
                for r in self._resources
            ],
        }

    def finalize(self) -> BinaryIO:
        """Write the archive and return it as a readable stream at offset 0."""
        self._finalized = True
        out = io.BytesIO()
        contents = json.dumps(self.contents(), indent=2, sort_keys=True).encode("utf-8")
        with tarfile.open(fileobj=out, mode="w", format=tarfile.PAX_FORMAT) as tar:
            _tar_member(tar, CONTENTS_NAME, contents)
            for digest in sorted(self._blobs):
                name = f"{RESOURCES_DIR}/{digest.removeprefix('sha256:')}"
                _tar_member(tar, name, self._blobs[digest])
        out.seek(0)
        return out


def _invalid(message: str, hint: str | None = None) -> Err[BundleError]:
    return Err(BundleError(kind="invalid_bundle", message=message, hint=hint))


def _parse_descriptors(raw: object) -> Result[tuple[ResourceDescriptor, ...], BundleError]:
    items = as_obj_list(raw if raw is not None else [])
    if items is None:
        return _invalid("bundle resources must be a list")

    out: list[ResourceDescriptor] = []
    for item in items:
        d = as_str_dict(item)
        if d is None:
            return _invalid("bundle resource entry must be an object")
        rid = get_str(d, "id")
        digest = get_str(d, "digest")
        size = get_int(d, "size")
        if rid is None or digest is None or size is None or not digest.startswith("sha256:"):
            return _invalid(f"malformed bundle resource entry: {d!r}")
        out.append(
            ResourceDescriptor(
                id=rid,
                type=get_str(d, "type") or "application/octet-stream",
                size=size,
                digest=digest,
            )
        )
    return Ok(tuple(out))


def read_bundle(stream: BinaryIO, type: str) -> Result[ReadableBundle, BundleError]:
    """Read a bundle and check that it carries the expected type.

    Every declared resource must be present and match its digest and size.
    """
    contents_raw: bytes | None = None
    members: dict[str, bytes] = {}

    try:
        with tarfile.open(fileobj=stream, mode="r|*") as tar:
            for member in tar:
                if not member.isfile():
                    continue
                handle = tar.extractfile(member)
                if handle is None:
                    continue
                data = handle.read()
                if member.name == CONTENTS_NAME:
                    contents_raw = data
                elif member.name.startswith(f"{RESOURCES_DIR}/"):
                    members[member.name] = data
    except (tarfile.TarError, OSError, EOFError) as e:
        return _invalid(f"failed to read bundle archive: {e}")

    if contents_raw is None:
        return _invalid(f"bundle has no {CONTENTS_NAME}")

    try:
        obj: object = json.loads(contents_raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return _invalid(f"invalid JSON in {CONTENTS_NAME}: {e}")

    contents = as_str_dict(obj)
    if contents is None:
        return _invalid(f"{CONTENTS_NAME} root must be an object")

    version = get_int(contents, "version")
    if version != CONTAINER_VERSION:
        return _invalid(f"unsupported bundle version: {contents.get('version')!r}")

    found_type = get_str(contents, "type")
    if found_type != type:
        return _invalid(
            f"expected bundle of type {type} but found {found_type}",
            hint="Is this a release bundle?",
        )

    if "manifest" not in contents:
        return _invalid("bundle has no manifest")

    descriptors = _parse_descriptors(contents.get("resources"))
    if isinstance(descriptors, Err):
        return descriptors

    blobs: dict[str, bytes] = {}
    for descriptor in descriptors.value:
        data = members.get(descriptor.member_name)
        if data is None:
            return _invalid(f"bundle resource missing: {descriptor.id}")
        if len(data) != descriptor.size or _digest(data) != descriptor.digest:
            return _invalid(f"bundle resource corrupted: {descriptor.id}")
        blobs[descriptor.digest] = data

    return Ok(
        ReadableBundle(
            type=found_type,
            manifest=contents["manifest"],
            resources=descriptors.value,
            _blobs=blobs,
        )
    )
