from __future__ import annotations

from datetime import UTC, datetime

import pytest
from botocore.exceptions import EndpointConnectionError

from s3proxy.proxy.errors import ObjectNotFound, RemoteStoreError
from s3proxy.proxy.objects import ObjectDescriptor, RemoteObject
from s3proxy.proxy.remote import S3ObjectStore, read_body


@pytest.fixture
def session_kwargs(monkeypatch, fake_s3):
    captured: dict[str, object] = {}

    class DummySession:
        def client(self, service_name, **kwargs):  # noqa: D401 - mimic boto3 session
            captured["service"] = service_name
            captured.update(kwargs)
            return fake_s3

    monkeypatch.setattr("s3proxy.proxy.remote.boto3.session.Session", lambda: DummySession())
    return captured


def test_client_built_from_settings(session_kwargs, make_settings) -> None:
    S3ObjectStore(make_settings(region="us-west-2", s3_endpoint_url="http://minio:9000"))
    assert session_kwargs == {
        "service": "s3",
        "region_name": "us-west-2",
        "endpoint_url": "http://minio:9000",
    }


def test_endpoint_omitted_when_unset(session_kwargs, make_settings) -> None:
    S3ObjectStore(make_settings())
    assert session_kwargs == {"service": "s3", "region_name": "eu-central-1"}


@pytest.mark.anyio
async def test_head_maps_response_to_descriptor(fake_s3, make_settings) -> None:
    modified = datetime(2024, 3, 1, 8, 30, tzinfo=UTC)
    fake_s3.put("dir/file.txt", b"abc", content_type="text/plain", metadata={"x-owner": "team-a"}, last_modified=modified)
    store = S3ObjectStore(make_settings(), client=fake_s3)

    descriptor = await store.head_by_key("/dir/file.txt")

    assert fake_s3.head_calls == ["dir/file.txt"]
    assert descriptor.content_type == "text/plain"
    assert descriptor.last_modified == modified
    assert descriptor.metadata == {"x-owner": "team-a"}
    assert descriptor.content_length == 3


@pytest.mark.anyio
async def test_get_returns_body_and_descriptor(fake_s3, make_settings) -> None:
    fake_s3.put("file.bin", b"payload", content_type="application/octet-stream")
    store = S3ObjectStore(make_settings(), client=fake_s3)

    remote = await store.get_by_key("/file.bin")

    assert remote.descriptor.content_type == "application/octet-stream"
    assert read_body(remote) == b"payload"
    assert remote.body.closed


@pytest.mark.anyio
async def test_only_one_leading_slash_is_stripped(fake_s3, make_settings) -> None:
    fake_s3.put("/nested.txt", b"double", content_type="text/plain")
    fake_s3.put("nested.txt", b"single", content_type="text/plain")
    store = S3ObjectStore(make_settings(), client=fake_s3)

    remote = await store.get_by_key("//nested.txt")

    assert fake_s3.get_calls == ["/nested.txt"]
    assert read_body(remote) == b"double"


@pytest.mark.anyio
async def test_missing_key_maps_to_not_found(fake_s3, make_settings) -> None:
    store = S3ObjectStore(make_settings(), client=fake_s3)
    with pytest.raises(ObjectNotFound):
        await store.head_by_key("/absent")
    with pytest.raises(ObjectNotFound):
        await store.get_by_key("/absent")


@pytest.mark.anyio
async def test_other_client_errors_map_to_remote_store_error(fake_s3, make_settings) -> None:
    fake_s3.fail_with = "AccessDenied"
    store = S3ObjectStore(make_settings(), client=fake_s3)
    with pytest.raises(RemoteStoreError):
        await store.get_by_key("/secret")
    assert fake_s3.get_calls == ["secret"]


@pytest.mark.anyio
async def test_connection_errors_are_not_retried(fake_s3, make_settings, monkeypatch) -> None:
    calls = []

    def unreachable(**kwargs):
        calls.append(kwargs)
        raise EndpointConnectionError(endpoint_url="http://s3.invalid")

    monkeypatch.setattr(fake_s3, "head_object", unreachable)
    store = S3ObjectStore(make_settings(), client=fake_s3)
    with pytest.raises(RemoteStoreError):
        await store.head_by_key("/k")
    assert len(calls) == 1


def test_read_body_wraps_stream_errors() -> None:
    class BrokenBody:
        closed = False

        def read(self, amt=None):
            raise ConnectionResetError("reset by peer")

        def close(self):
            self.closed = True

    body = BrokenBody()
    with pytest.raises(RemoteStoreError):
        read_body(RemoteObject(descriptor=ObjectDescriptor(), body=body))
    assert body.closed
