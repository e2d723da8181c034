from __future__ import annotations

import io
import json
import tarfile

import pytest

from rbundle.bundle.adapter import (
    RELEASE_BUNDLE_TYPE,
    read_release_bundle,
    write_release_bundle,
)
from rbundle.bundle.container import CONTENTS_NAME, WritableBundle, read_bundle
from rbundle.bundle.registry import ImageBlob
from rbundle.core.result import Err, Ok


def _tar(members: dict[str, bytes]) -> io.BytesIO:
    out = io.BytesIO()
    with tarfile.open(fileobj=out, mode="w") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    out.seek(0)
    return out


def _invalid(result: object) -> str:
    assert isinstance(result, Err)
    assert result.error.kind == "invalid_bundle"
    return result.error.message


class TestWritableBundle:
    def test_contents_member_comes_first(self) -> None:
        bundle = WritableBundle(type="t", manifest={"a": 1})
        bundle.add_resource("r1", b"hello")
        with tarfile.open(fileobj=bundle.finalize(), mode="r") as tar:
            names = tar.getnames()
        assert names[0] == CONTENTS_NAME
        assert len(names) == 2

    def test_identical_blobs_stored_once(self) -> None:
        bundle = WritableBundle(type="t", manifest={})
        bundle.add_resource("a", b"same")
        bundle.add_resource("b", b"same")
        with tarfile.open(fileobj=bundle.finalize(), mode="r") as tar:
            assert len(tar.getnames()) == 2

    def test_output_is_deterministic(self) -> None:
        def build() -> bytes:
            bundle = WritableBundle(type="t", manifest={"b": 2, "a": 1})
            bundle.add_resource("x", b"1")
            return bundle.finalize().read()

        assert build() == build()

    def test_duplicate_resource_id_rejected(self) -> None:
        bundle = WritableBundle(type="t", manifest={})
        bundle.add_resource("x", b"1")
        with pytest.raises(ValueError, match="duplicate resource id"):
            bundle.add_resource("x", b"2")

    def test_no_resources_after_finalize(self) -> None:
        bundle = WritableBundle(type="t", manifest={})
        bundle.finalize()
        with pytest.raises(ValueError, match="finalized"):
            bundle.add_resource("x", b"1")


class TestReadBundle:
    def test_reads_written_bundle(self) -> None:
        bundle = WritableBundle(type="t", manifest={"k": "v"})
        bundle.add_resource("blob", b"data", type="application/x-test")
        result = read_bundle(bundle.finalize(), "t")

        assert isinstance(result, Ok)
        assert result.value.manifest == {"k": "v"}
        assert [r.id for r in result.value.resources] == ["blob"]
        assert result.value.resources[0].type == "application/x-test"
        assert result.value.resource("blob") == b"data"
        assert result.value.resource("other") is None

    def test_type_mismatch(self) -> None:
        stream = WritableBundle(type="io.example.other", manifest={}).finalize()
        message = _invalid(read_bundle(stream, RELEASE_BUNDLE_TYPE))
        assert "expected bundle of type io.balena.release" in message

    def test_not_a_tar(self) -> None:
        assert "failed to read bundle archive" in _invalid(
            read_bundle(io.BytesIO(b"definitely not a tar archive" * 40), "t")
        )

    def test_missing_contents(self) -> None:
        assert "no contents.json" in _invalid(read_bundle(_tar({"other": b"x"}), "t"))

    def test_invalid_json(self) -> None:
        assert "invalid JSON" in _invalid(read_bundle(_tar({CONTENTS_NAME: b"{"}), "t"))

    def test_unsupported_version(self) -> None:
        contents = json.dumps({"version": 2, "type": "t", "manifest": {}}).encode()
        assert "unsupported bundle version" in _invalid(
            read_bundle(_tar({CONTENTS_NAME: contents}), "t")
        )

    def test_missing_manifest(self) -> None:
        contents = json.dumps({"version": 1, "type": "t"}).encode()
        assert "no manifest" in _invalid(read_bundle(_tar({CONTENTS_NAME: contents}), "t"))

    def test_missing_resource_member(self) -> None:
        contents = json.dumps(
            {
                "version": 1,
                "type": "t",
                "manifest": {},
                "resources": [{"id": "x", "type": "a", "size": 1, "digest": "sha256:00"}],
            }
        ).encode()
        assert "resource missing: x" in _invalid(
            read_bundle(_tar({CONTENTS_NAME: contents}), "t")
        )

    def test_corrupted_resource(self) -> None:
        contents = json.dumps(
            {
                "version": 1,
                "type": "t",
                "manifest": {},
                "resources": [{"id": "x", "type": "a", "size": 3, "digest": "sha256:abcd"}],
            }
        ).encode()
        stream = _tar({CONTENTS_NAME: contents, "resources/abcd": b"bad"})
        assert "resource corrupted: x" in _invalid(read_bundle(stream, "t"))


class TestReleaseAdapter:
    def test_release_bundle_carries_blobs(self) -> None:
        blob = ImageBlob(
            repository="v2/abc",
            digest="sha256:" + "0" * 64,
            media_type="application/vnd.docker.image.rootfs.diff.tar.gzip",
            data=b"layer",
        )
        stream = write_release_bundle({"commit": "abc"}, [blob])
        result = read_release_bundle(stream)

        assert isinstance(result, Ok)
        assert result.value.type == RELEASE_BUNDLE_TYPE
        assert result.value.manifest == {"commit": "abc"}
        assert result.value.resource(blob.resource_id) == b"layer"
        assert result.value.resources[0].type == blob.media_type
