"""Release bundle export and apply."""

from .adapter import RELEASE_BUNDLE_TYPE, read_release_bundle, write_release_bundle
from .apply import apply_bundle, utc_now
from .backfill import NoBackfill, PlaceholderBackfill, RevisionBackfill
from .cleanup import CleanupPolicy, parse_cleanup_policy
from .errors import BundleError, BundleErrorKind
from .export import create_bundle
from .manifest import ManifestSchema, ReleaseManifest, detect_schema
from .model import ApplyOptions, RegistryCredentials, Release, ReleaseImage, ReleaseTag
from .normalize import normalize_manifest
from .pacing import FixedDelayPacer, NoPacer, Pacer
from .store import MemoryStore, RemoteStore, StoreError

__all__ = [
    # adapter
    "RELEASE_BUNDLE_TYPE",
    "read_release_bundle",
    "write_release_bundle",
    # apply
    "apply_bundle",
    "utc_now",
    "NoBackfill",
    "PlaceholderBackfill",
    "RevisionBackfill",
    "CleanupPolicy",
    "parse_cleanup_policy",
    "FixedDelayPacer",
    "NoPacer",
    "Pacer",
    # errors
    "BundleError",
    "BundleErrorKind",
    # export
    "create_bundle",
    # model
    "ApplyOptions",
    "ManifestSchema",
    "ReleaseManifest",
    "RegistryCredentials",
    "Release",
    "ReleaseImage",
    "ReleaseTag",
    "detect_schema",
    "normalize_manifest",
    # store
    "MemoryStore",
    "RemoteStore",
    "StoreError",
]
