from __future__ import annotations

from datetime import UTC, datetime

import pytest

from s3proxy.proxy.errors import MissingMetadata
from s3proxy.proxy.objects import LocalObjectView, ObjectDescriptor, RemoteObject, RemoteObjectView


def _descriptor(**overrides) -> ObjectDescriptor:
    values = {
        "content_type": "image/png",
        "last_modified": datetime(2024, 1, 1, tzinfo=UTC),
        "metadata": {"x-owner": "team-a"},
    }
    values.update(overrides)
    return ObjectDescriptor(**values)


def test_local_view_reads_file_and_uses_descriptor(tmp_path) -> None:
    path = tmp_path / "object.bin"
    path.write_bytes(b"local bytes")
    view = LocalObjectView(handle=path.open("rb"), descriptor=_descriptor())
    try:
        assert view.source == "local"
        assert view.content().read() == b"local bytes"
        assert view.content_type() == "image/png"
        assert view.metadata() == {"x-owner": "team-a"}
    finally:
        view.close()
    assert view.content().closed


def test_bare_local_view_has_no_metadata_and_no_content_type(tmp_path) -> None:
    path = tmp_path / "object.bin"
    path.write_bytes(b"x")
    view = LocalObjectView(handle=path.open("rb"))
    try:
        assert view.metadata() == {}
        with pytest.raises(MissingMetadata):
            view.content_type()
    finally:
        view.close()


def test_remote_view_streams_remote_body() -> None:
    remote = RemoteObject.from_bytes(_descriptor(content_type="text/csv"), b"a,b\n1,2\n")
    view = RemoteObjectView(remote=remote)
    assert view.source == "remote"
    assert view.content().read() == b"a,b\n1,2\n"
    assert view.content_type() == "text/csv"
    assert view.metadata() == {"x-owner": "team-a"}


def test_remote_view_without_content_type_is_an_invariant_violation() -> None:
    view = RemoteObjectView(remote=RemoteObject.from_bytes(_descriptor(content_type=None), b""))
    with pytest.raises(MissingMetadata):
        view.content_type()


def test_metadata_is_a_copy() -> None:
    descriptor = _descriptor()
    view = RemoteObjectView(remote=RemoteObject.from_bytes(descriptor, b""))
    view.metadata()["x-owner"] = "someone-else"
    assert descriptor.metadata == {"x-owner": "team-a"}
