"""Container registry access for bundling image blobs.

DockerRegistryClient speaks the Docker Registry HTTP API v2:

1. ``GET /v2/`` answers 401 with a ``WWW-Authenticate: Bearer realm=...``
   challenge when the registry wants a token.
2. The token comes from the realm, scoped ``repository:<repo>:pull``.
3. Each image is its manifest plus the config and layer blobs it lists.
"""

from __future__ import annotations

import base64
import hashlib
import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlencode

from rbundle.bundle.errors import BundleError
from rbundle.bundle.model import RegistryCredentials
from rbundle.core.result import Err, Ok, Result
from rbundle.core.structured import as_obj_list, as_str_dict, get_str
from rbundle.platform.http import HttpClient, decode_json

DEFAULT_REGISTRY = "registry-1.docker.io"

MANIFEST_MEDIA_TYPES = (
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
)

_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')


@dataclass(frozen=True, slots=True)
class ImageDescriptor:
    registry: str
    repository: str
    reference: str

    @property
    def name(self) -> str:
        sep = "@" if self.reference.startswith("sha256:") else ":"
        return f"{self.registry}/{self.repository}{sep}{self.reference}"


@dataclass(frozen=True, slots=True)
class AuthChallenge:
    realm: str
    service: str | None


@dataclass(frozen=True, slots=True)
class ImageBlob:
    repository: str
    digest: str
    media_type: str
    data: bytes

    @property
    def resource_id(self) -> str:
        return f"{self.repository}@{self.digest}"


class RegistryClient(Protocol):
    def parse_image_name(self, name: str) -> ImageDescriptor | None: ...

    def discover_authenticate(
        self, descriptors: Sequence[ImageDescriptor]
    ) -> Result[AuthChallenge | None, BundleError]: ...

    def authenticate(
        self,
        challenge: AuthChallenge | None,
        descriptors: Sequence[ImageDescriptor],
        credentials: RegistryCredentials | None,
    ) -> Result[str | None, BundleError]: ...

    def fetch_images(
        self, descriptors: Sequence[ImageDescriptor], token: str | None
    ) -> Result[list[ImageBlob], BundleError]: ...


def parse_image_name(name: str) -> ImageDescriptor | None:
    """Split ``[registry/]repository[:tag|@digest]`` into its parts."""
    name = name.strip()
    if not name:
        return None

    reference = "latest"
    if "@" in name:
        name, reference = name.split("@", 1)
    else:
        last = name.rsplit("/", 1)[-1]
        if ":" in last:
            name, reference = name.rsplit(":", 1)

    first, _, rest = name.partition("/")
    if rest and ("." in first or ":" in first or first == "localhost"):
        registry, repository = first, rest
    else:
        registry = DEFAULT_REGISTRY
        repository = name if "/" in name else f"library/{name}"

    if not repository or not reference:
        return None
    return ImageDescriptor(registry=registry, repository=repository, reference=reference)


def parse_challenge(header: str) -> AuthChallenge | None:
    scheme, _, params = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    values = dict(_CHALLENGE_PARAM_RE.findall(params))
    realm = values.get("realm")
    if not realm:
        return None
    return AuthChallenge(realm=realm, service=values.get("service"))


def _registry_error(message: str, hint: str | None = None) -> Err[BundleError]:
    return Err(BundleError(kind="registry", message=message, hint=hint))


class DockerRegistryClient:
    def __init__(self, http: HttpClient) -> None:
        self._http = http

    def parse_image_name(self, name: str) -> ImageDescriptor | None:
        return parse_image_name(name)

    def discover_authenticate(
        self, descriptors: Sequence[ImageDescriptor]
    ) -> Result[AuthChallenge | None, BundleError]:
        if not descriptors:
            return Ok(None)
        registries = sorted({d.registry for d in descriptors})
        if len(registries) > 1:
            return _registry_error(
                f"one token cannot cover several registries: {', '.join(registries)}"
            )
        url = f"https://{descriptors[0].registry}/v2/"
        result = self._http.request("GET", url)
        if isinstance(result, Err):
            return _registry_error(f"registry unreachable: {result.error}")

        response = result.value
        if response.ok:
            return Ok(None)
        if response.status != 401:
            return _registry_error(f"unexpected registry status {response.status}", hint=url)

        challenge = parse_challenge(response.header("www-authenticate") or "")
        if challenge is None:
            return _registry_error("registry requires an unsupported authentication scheme", hint=url)
        return Ok(challenge)

    def authenticate(
        self,
        challenge: AuthChallenge | None,
        descriptors: Sequence[ImageDescriptor],
        credentials: RegistryCredentials | None,
    ) -> Result[str | None, BundleError]:
        if challenge is None:
            return Ok(None)

        params: list[tuple[str, str]] = []
        if challenge.service:
            params.append(("service", challenge.service))
        for repository in sorted({d.repository for d in descriptors}):
            params.append(("scope", f"repository:{repository}:pull"))
        url = f"{challenge.realm}?{urlencode(params)}"

        headers: dict[str, str] = {}
        if credentials is not None:
            raw = f"{credentials.username}:{credentials.password}".encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(raw).decode("ascii")

        result = self._http.request("GET", url, headers=headers)
        if isinstance(result, Err):
            return _registry_error(f"token request failed: {result.error}")
        if not result.value.ok:
            return _registry_error(
                f"registry token request rejected (HTTP {result.value.status})",
                hint="Check the registry credentials.",
            )

        decoded = decode_json(result.value, url=url)
        data = as_str_dict(decoded.value) if isinstance(decoded, Ok) else None
        token = (get_str(data, "token") or get_str(data, "access_token")) if data else None
        if token is None:
            return _registry_error("registry token response has no token")
        return Ok(token)

    def _get(
        self, url: str, token: str | None, *, accept: Sequence[str] = ()
    ) -> Result[tuple[bytes, str], BundleError]:
        headers: dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if accept:
            headers["Accept"] = ", ".join(accept)

        result = self._http.request("GET", url, headers=headers)
        if isinstance(result, Err):
            return _registry_error(f"registry request failed: {result.error}")
        if not result.value.ok:
            return _registry_error(f"registry returned HTTP {result.value.status}", hint=url)
        media_type = result.value.header("content-type") or "application/octet-stream"
        return Ok((result.value.body, media_type))

    def _fetch_one(
        self, descriptor: ImageDescriptor, token: str | None
    ) -> Result[list[ImageBlob], BundleError]:
        base = f"https://{descriptor.registry}/v2/{descriptor.repository}"
        fetched = self._get(
            f"{base}/manifests/{descriptor.reference}", token, accept=MANIFEST_MEDIA_TYPES
        )
        if isinstance(fetched, Err):
            return fetched
        manifest_bytes, manifest_type = fetched.value
        manifest_digest = "sha256:" + hashlib.sha256(manifest_bytes).hexdigest()

        try:
            manifest_obj: object = json.loads(manifest_bytes.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return _registry_error(f"invalid image manifest for {descriptor.name}: {e}")
        manifest = as_str_dict(manifest_obj)
        if manifest is None:
            return _registry_error(f"invalid image manifest for {descriptor.name}")

        digests: list[tuple[str, str]] = []
        config = as_str_dict(manifest.get("config"))
        if config is not None and get_str(config, "digest"):
            digests.append((get_str(config, "digest") or "", get_str(config, "mediaType") or ""))
        for layer_obj in as_obj_list(manifest.get("layers")) or []:
            layer = as_str_dict(layer_obj)
            digest = get_str(layer, "digest") if layer is not None else None
            if layer is None or digest is None:
                return _registry_error(f"image manifest layer without digest: {descriptor.name}")
            digests.append((digest, get_str(layer, "mediaType") or ""))

        blobs = [
            ImageBlob(
                repository=descriptor.repository,
                digest=manifest_digest,
                media_type=manifest_type,
                data=manifest_bytes,
            )
        ]
        for digest, media_type in digests:
            got = self._get(f"{base}/blobs/{digest}", token)
            if isinstance(got, Err):
                return got
            data, served_type = got.value
            if "sha256:" + hashlib.sha256(data).hexdigest() != digest:
                return _registry_error(f"blob digest mismatch: {descriptor.repository}@{digest}")
            blobs.append(
                ImageBlob(
                    repository=descriptor.repository,
                    digest=digest,
                    media_type=media_type or served_type,
                    data=data,
                )
            )
        return Ok(blobs)

    def fetch_images(
        self, descriptors: Sequence[ImageDescriptor], token: str | None
    ) -> Result[list[ImageBlob], BundleError]:
        out: list[ImageBlob] = []
        seen: set[str] = set()
        for descriptor in descriptors:
            result = self._fetch_one(descriptor, token)
            if isinstance(result, Err):
                return result
            for blob in result.value:
                if blob.resource_id in seen:
                    continue
                seen.add(blob.resource_id)
                out.append(blob)
        return Ok(out)
