from __future__ import annotations

import io
import shutil
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Optional

import pytest
from botocore.exceptions import ClientError

from s3proxy.common.settings import ProxySettings


BUCKET = "test-bucket"


class NoSuchKey(ClientError):
    pass


class FakeBody(io.BytesIO):
    """Single-pass body standing in for botocore's StreamingBody."""


class FakeS3Client:
    exceptions = SimpleNamespace(NoSuchKey=NoSuchKey)

    def __init__(self) -> None:
        self.objects: dict[str, dict] = {}
        self.head_calls: list[str] = []
        self.get_calls: list[str] = []
        self.bodies: list[FakeBody] = []
        self.fail_with: Optional[str] = None

    def put(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = "application/octet-stream",
        metadata: Optional[dict[str, str]] = None,
        last_modified: Optional[datetime] = None,
    ) -> None:
        self.objects[key] = {
            "data": data,
            "content_type": content_type,
            "metadata": dict(metadata or {}),
            "last_modified": last_modified or datetime.now(UTC) - timedelta(minutes=5),
        }

    def delete(self, key: str) -> None:
        self.objects.pop(key, None)

    def _error(self, operation: str) -> ClientError:
        return ClientError({"Error": {"Code": self.fail_with, "Message": "boom"}}, operation)

    def head_object(self, *, Bucket: str, Key: str) -> dict:
        assert Bucket == BUCKET
        self.head_calls.append(Key)
        if self.fail_with:
            raise self._error("HeadObject")
        obj = self.objects.get(Key)
        if obj is None:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        response = {
            "ContentLength": len(obj["data"]),
            "LastModified": obj["last_modified"],
            "Metadata": dict(obj["metadata"]),
        }
        if obj["content_type"] is not None:
            response["ContentType"] = obj["content_type"]
        return response

    def get_object(self, *, Bucket: str, Key: str) -> dict:
        assert Bucket == BUCKET
        self.get_calls.append(Key)
        if self.fail_with:
            raise self._error("GetObject")
        obj = self.objects.get(Key)
        if obj is None:
            raise NoSuchKey({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        body = FakeBody(obj["data"])
        self.bodies.append(body)
        response = {
            "Body": body,
            "ContentLength": len(obj["data"]),
            "LastModified": obj["last_modified"],
            "Metadata": dict(obj["metadata"]),
        }
        if obj["content_type"] is not None:
            response["ContentType"] = obj["content_type"]
        return response


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def make_settings(cache_root: Path) -> Callable[..., ProxySettings]:
    def _make(**overrides) -> ProxySettings:
        values = {"bucket": BUCKET, "cache_dir": cache_root, "log_level": "WARNING"}
        values.update(overrides)
        return ProxySettings(**values)

    return _make


@pytest.fixture
def break_cache_root(cache_root: Path) -> Callable[[], bytes]:
    """Swap the cache directory for a regular file so nothing can be created beneath it."""

    def _break() -> bytes:
        content = b"not a directory"
        shutil.rmtree(cache_root)
        cache_root.write_bytes(content)
        return content

    return _break
