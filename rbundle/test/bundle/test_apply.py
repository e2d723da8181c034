from __future__ import annotations

import io
import re
from typing import BinaryIO

from rbundle.bundle.adapter import write_release_bundle
from rbundle.bundle.apply import apply_bundle, utc_now
from rbundle.bundle.backfill import PlaceholderBackfill
from rbundle.bundle.cleanup import CleanupPolicy
from rbundle.bundle.errors import BundleError
from rbundle.bundle.manifest import ManifestSchema
from rbundle.bundle.model import ApplyOptions, Release
from rbundle.bundle.store import MemoryStore, RemoteStore, StoreError
from rbundle.core.result import Err, Ok, Result
from rbundle.output.console import ConsoleProtocol, MockConsole

APP = 10
TS = "2024-05-01T12:00:00.000Z"


def _image(content_hash: str, service: str) -> dict[str, object]:
    return {
        "content_hash": content_hash,
        "status": "success",
        "is_stored_at__image_location": f"registry.example.com/v2/{content_hash}",
        "is_a_build_of__service": [{"id": 1, "service_name": service}],
    }


def _manifest(**overrides: object) -> dict[str, object]:
    manifest: dict[str, object] = {
        "commit": "abc123",
        "created_at": "2023-01-01T00:00:00.000Z",
        "status": "success",
        "source": "cloud",
        "composition": {"services": {"main": {}, "db": {}}},
        "is_invalidated": False,
        "is_final": True,
        "note": "imported",
        "semver": "16.3.11",
        "semver_major": 16,
        "semver_minor": 3,
        "semver_patch": 11,
        "semver_prerelease": "",
        "semver_build": "",
        "revision": None,
        "release_image": [
            {"id": 1, "image": [_image("hash-main", "main")]},
            {"id": 2, "image": [_image("hash-db", "db")]},
        ],
        "release_tag": [
            {"id": 1, "tag_key": "env", "value": "prod"},
            {"id": 2, "tag_key": "owner", "value": "ops"},
        ],
    }
    manifest.update(overrides)
    return manifest


def _bundle(manifest: object) -> BinaryIO:
    return write_release_bundle(manifest)  # type: ignore[arg-type]


def _target() -> MemoryStore:
    store = MemoryStore()
    store.seed("application", {"id": APP, "app_name": "fleet"})
    return store


def _apply(
    store: RemoteStore,
    manifest: object | None = None,
    *,
    console: MockConsole | None = None,
    **options: object,
) -> Result[int, BundleError]:
    return apply_bundle(
        store=store,
        application_id=APP,
        stream=_bundle(_manifest() if manifest is None else manifest),
        options=ApplyOptions(**options),  # type: ignore[arg-type]
        console=console or MockConsole(),
        clock=lambda: TS,
    )


def _error(result: Result[int, BundleError]) -> BundleError:
    assert isinstance(result, Err)
    return result.error


class TestFreshTarget:
    def test_two_images_two_services(self) -> None:
        store = _target()

        result = _apply(store)

        assert isinstance(result, Ok)
        release_id = result.value
        [release] = store.rows("release", id=release_id)
        assert release["status"] == "success"
        assert release["belongs_to__application"] == APP

        services = store.rows("service", application=APP)
        assert sorted(s["service_name"] for s in services) == ["db", "main"]  # type: ignore[type-var]

        images = store.rows("image")
        assert sorted(i["content_hash"] for i in images) == ["hash-db", "hash-main"]  # type: ignore[type-var]
        assert all(i["status"] == "success" for i in images)
        assert {i["is_a_build_of__service"] for i in images} == {s["id"] for s in services}

        links = store.rows("image__is_part_of__release", is_part_of__release=release_id)
        assert {link["image"] for link in links} == {i["id"] for i in images}

        tags = store.rows("release_tag", release=release_id)
        assert sorted((t["tag_key"], t["value"]) for t in tags) == [  # type: ignore[type-var]
            ("env", "prod"),
            ("owner", "ops"),
        ]

    def test_release_body(self) -> None:
        store = _target()
        _apply(store)

        [body] = store.calls_for("post", "release")
        assert isinstance(body, dict)
        assert body["status"] == "running"
        assert body["commit"] == "abc123"
        assert body["created_at"] == "2023-01-01T00:00:00.000Z"
        assert body["composition"] == {"services": {"main": {}, "db": {}}}
        assert body["note"] == "imported"
        assert body["is_final"] is True
        assert body["semver"] == "16.3.11"
        assert (body["semver_major"], body["semver_minor"], body["semver_patch"]) == (16, 3, 11)
        assert body["start_timestamp"] == TS
        assert body["update_timestamp"] == TS
        assert "release_image" not in body
        assert "revision" not in body

    def test_triple_release_keeps_prerelease_and_build(self) -> None:
        store = _target()
        manifest = _manifest(semver_prerelease="beta.1", semver_build="b7")
        del manifest["semver"]

        result = _apply(store, manifest, schema=ManifestSchema.TRIPLE)

        assert isinstance(result, Ok)
        [release] = store.rows("release", id=result.value)
        assert release["semver"] == "16.3.11-beta.1+b7"
        assert release["semver_prerelease"] == "beta.1"
        assert release["semver_build"] == "b7"
        assert (release["semver_major"], release["semver_minor"], release["semver_patch"]) == (
            16,
            3,
            11,
        )

    def test_image_lifecycle(self) -> None:
        store = _target()
        _apply(store)

        first_post = store.calls_for("post", "image")[0]
        assert first_post == {
            "content_hash": "hash-main",
            "is_a_build_of__service": 1,
            "status": "running",
            "start_timestamp": TS,
            "push_timestamp": TS,
        }
        first_patch = store.calls_for("patch", "image")[0]
        assert first_patch == {"id": 1, "status": "success", "end_timestamp": TS}

    def test_mutation_order(self) -> None:
        store = _target()
        result = _apply(store)
        assert isinstance(result, Ok)

        sequence = [(m, r) for m, r, _ in store.calls]
        per_image = [
            ("post", "service"),
            ("post", "image"),
            ("post", "image__is_part_of__release"),
            ("patch", "image"),
        ]
        assert sequence == [
            ("post", "release"),
            ("post", "release_tag"),
            ("post", "release_tag"),
            *per_image,
            *per_image,
            ("patch", "release"),
        ]
        assert store.calls[-1][2] == {
            "id": result.value,
            "status": "success",
            "end_timestamp": TS,
            "update_timestamp": TS,
        }

    def test_existing_service_reused(self) -> None:
        store = _target()
        store.seed("service", {"id": 77, "application": APP, "service_name": "main"})

        _apply(store)

        assert len(store.rows("service", application=APP)) == 2
        assert store.calls_for("post", "service") == [{"application": APP, "service_name": "db"}]
        assert store.rows("image", content_hash="hash-main")[0]["is_a_build_of__service"] == 77

    def test_no_images_no_tags(self) -> None:
        store = _target()
        result = _apply(store, _manifest(release_image=[], release_tag=[]))
        assert isinstance(result, Ok)
        assert store.rows("image") == []
        assert store.rows("release_tag") == []

    def test_many_tags_all_created(self) -> None:
        store = _target()
        tags = [{"tag_key": f"k{i}", "value": str(i)} for i in range(20)]

        result = apply_bundle(
            store=store,
            application_id=APP,
            stream=_bundle(_manifest(release_tag=tags)),
            options=ApplyOptions(),
            console=MockConsole(),
            clock=lambda: TS,
            tag_workers=4,
        )

        assert isinstance(result, Ok)
        assert len(store.rows("release_tag", release=result.value)) == 20

    def test_progress_reported(self) -> None:
        console = MockConsole()
        result = _apply(_target(), console=console)
        assert isinstance(result, Ok)
        assert console.find(f"created release {result.value}")
        assert console.find("image for service db")


class TestDuplicates:
    def test_apply_twice_without_force(self) -> None:
        store = _target()

        first = _apply(store)
        second = _apply(store)

        assert isinstance(first, Ok)
        error = _error(second)
        assert error.kind == "conflict"
        assert error.message == (
            "A successful release with the version 16.3.11 (commit abc123) "
            "already exists and duplicates are not allowed."
        )
        assert len(store.rows("release")) == 1

    def test_existing_successful_triple(self) -> None:
        store = _target()
        store.seed(
            "release",
            {
                "belongs_to__application": APP,
                "status": "success",
                "commit": "old",
                "semver_major": 16,
                "semver_minor": 3,
                "semver_patch": 11,
            },
        )

        error = _error(_apply(store, schema=ManifestSchema.TRIPLE))

        assert "16.3.11" in error.message
        assert "already exist" in error.message
        assert store.calls == []

    def test_failed_release_is_not_a_duplicate(self) -> None:
        store = _target()
        store.seed(
            "release",
            {"belongs_to__application": APP, "status": "failed", "semver": "16.3.11"},
        )
        assert isinstance(_apply(store), Ok)

    def test_other_application_is_not_a_duplicate(self) -> None:
        store = _target()
        store.seed("release", {"belongs_to__application": 99, "status": "success", "semver": "16.3.11"})
        assert isinstance(_apply(store), Ok)

    def test_semver_schema_matches_commit(self) -> None:
        store = _target()
        store.seed(
            "release",
            {"belongs_to__application": APP, "status": "success", "commit": "abc123", "semver": "1.0.0"},
        )

        error = _error(_apply(store, schema=ManifestSchema.SEMVER))

        assert "1.0.0 (commit abc123)" in error.message

    def test_triple_schema_ignores_commit(self) -> None:
        store = _target()
        store.seed(
            "release",
            {
                "belongs_to__application": APP,
                "status": "success",
                "commit": "abc123",
                "semver_major": 1,
                "semver_minor": 0,
                "semver_patch": 0,
            },
        )
        assert isinstance(_apply(store, schema=ManifestSchema.TRIPLE), Ok)

    def test_version_override_changes_identity(self) -> None:
        store = _target()
        assert isinstance(_apply(store), Ok)

        result = _apply(store, schema=ManifestSchema.TRIPLE, version_override="17.0.0")

        assert isinstance(result, Ok)
        [latest] = store.rows("release", id=result.value)
        assert latest["semver"] == "17.0.0"
        assert latest["semver_major"] == 17

    def test_revision_schema_distinguishes_revisions(self) -> None:
        store = _target()
        store.seed(
            "release",
            {
                "belongs_to__application": APP,
                "status": "success",
                "commit": "other",
                "semver": "16.3.11",
                "revision": 1,
            },
        )
        assert isinstance(_apply(store, _manifest(revision=2)), Ok)

    def test_revision_schema_same_revision_conflicts(self) -> None:
        store = _target()
        store.seed(
            "release",
            {
                "belongs_to__application": APP,
                "status": "success",
                "commit": "other",
                "semver": "16.3.11",
                "revision": 2,
            },
        )
        error = _error(_apply(store, _manifest(revision=2)))
        assert error.kind == "conflict"
        assert "16.3.11 (revision 2) (commit other)" in error.message


class TestForce:
    def test_force_replaces_links_and_keeps_stale_release(self) -> None:
        store = _target()
        first = _apply(store)
        assert isinstance(first, Ok)
        stale_id = first.value

        second = _apply(store, force=True)

        assert isinstance(second, Ok)
        assert second.value != stale_id
        assert store.rows("image__is_part_of__release", is_part_of__release=stale_id) == []
        assert len(store.rows("image__is_part_of__release", is_part_of__release=second.value)) == 2
        assert store.rows("release", id=stale_id)[0]["status"] == "success"
        assert len(store.rows("release_tag", release=stale_id)) == 2
        assert len(store.rows("service", application=APP)) == 2
        assert len(store.rows("image")) == 4

    def test_force_with_tag_cleanup(self) -> None:
        store = _target()
        first = _apply(store)
        assert isinstance(first, Ok)

        second = _apply(store, force=True, cleanup=CleanupPolicy.LINKS_AND_TAGS)

        assert isinstance(second, Ok)
        assert store.rows("release_tag", release=first.value) == []
        assert len(store.rows("release_tag", release=second.value)) == 2

    def test_force_warns(self) -> None:
        store = _target()
        _apply(store)
        console = MockConsole()
        _apply(store, console=console, force=True)
        assert console.has_warning()


class TestFailures:
    def test_missing_application(self) -> None:
        store = MemoryStore()
        error = _error(_apply(store))
        assert error.kind == "not_found"
        assert error.message == f"Application not found: {APP}"
        assert store.calls == []

    def test_malformed_manifest(self) -> None:
        store = _target()
        error = _error(_apply(store, _manifest(status="failed")))
        assert error.kind == "validation"
        assert error.message == (
            "Manifest is malformed: Expected release to have status 'success' but found failed"
        )
        assert store.calls == []

    def test_missing_images_nothing_written(self) -> None:
        store = _target()
        manifest = _manifest()
        del manifest["release_image"]
        error = _error(_apply(store, manifest))
        assert error.message.startswith("Manifest is malformed: Expected array of release images")
        assert store.calls == []

    def test_not_a_bundle(self) -> None:
        store = _target()
        result = apply_bundle(
            store=store,
            application_id=APP,
            stream=io.BytesIO(b"\x00" * 10),
            options=ApplyOptions(),
            console=MockConsole(),
        )
        assert _error(result).kind == "invalid_bundle"

    def test_tag_failure_leaves_release_running(self) -> None:
        store = _target()
        store.fail_on("post", "release_tag", message="tag rejected")

        error = _error(_apply(store))

        assert error.kind == "remote"
        assert "tag rejected" in error.message
        assert len(store.calls_for("post", "release_tag")) == 2
        assert store.rows("release")[0]["status"] == "running"
        assert store.calls_for("post", "image") == []

    def test_image_failure_is_not_rolled_back(self) -> None:
        store = _target()
        store.fail_on("post", "image", message="quota", after=1)

        error = _error(_apply(store))

        assert error.kind == "remote"
        assert len(store.rows("image")) == 1
        assert len(store.rows("image__is_part_of__release")) == 1
        assert store.rows("release")[0]["status"] == "running"

    def test_lookup_failure(self) -> None:
        store = _target()
        store.fail_on("get", "application", message="unavailable")
        error = _error(_apply(store))
        assert error.kind == "remote"
        assert "unavailable" in error.message


class SpyBackfill:
    def __init__(self) -> None:
        self.releases: list[Release] = []

    def ensure_prior_revisions_exist(
        self,
        store: RemoteStore,
        *,
        application_id: int,
        release: Release,
        timestamp: str,
        console: ConsoleProtocol,
    ) -> Result[int, StoreError]:
        self.releases.append(release)
        return Ok(0)


class TestRevisionBackfill:
    def test_placeholders_created_before_release(self) -> None:
        store = _target()

        result = _apply(store, _manifest(revision=2))

        assert isinstance(result, Ok)
        posted = store.calls_for("post", "release")
        statuses = [p["status"] for p in posted]  # type: ignore[index]
        assert statuses == ["failed", "failed", "running"]
        assert store.rows("release", id=result.value)[0]["status"] == "success"

    def test_paused_after_every_placeholder(self) -> None:
        store = _target()
        posts_at_wait: list[int] = []

        class RecordingPacer:
            def wait(self) -> None:
                posts_at_wait.append(len(store.calls_for("post", "release")))

        result = apply_bundle(
            store=store,
            application_id=APP,
            stream=_bundle(_manifest(revision=2)),
            options=ApplyOptions(),
            console=MockConsole(),
            clock=lambda: TS,
            backfill=PlaceholderBackfill(RecordingPacer()),
        )

        assert isinstance(result, Ok)
        # one pause after each placeholder, the last one before the release itself
        assert posts_at_wait == [1, 2]
        assert len(store.calls_for("post", "release")) == 3

    def test_injected_strategy(self) -> None:
        store = _target()
        spy = SpyBackfill()

        apply_bundle(
            store=store,
            application_id=APP,
            stream=_bundle(_manifest(revision=3)),
            options=ApplyOptions(),
            console=MockConsole(),
            clock=lambda: TS,
            backfill=spy,
        )

        assert [r.revision for r in spy.releases] == [3]
        assert len(store.calls_for("post", "release")) == 1

    def test_not_used_without_revision(self) -> None:
        spy = SpyBackfill()
        apply_bundle(
            store=_target(),
            application_id=APP,
            stream=_bundle(_manifest()),
            options=ApplyOptions(),
            console=MockConsole(),
            clock=lambda: TS,
            backfill=spy,
        )
        assert spy.releases == []


def test_utc_now_format() -> None:
    assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", utc_now())
