"""Remote object store access over boto3."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Protocol

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from ..common.settings import ProxySettings
from .errors import ObjectNotFound, RemoteStoreError
from .objects import ObjectDescriptor, RemoteObject


LOGGER = structlog.get_logger("s3proxy.remote")

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class RemoteStore(Protocol):
    async def head_by_key(self, key: str) -> ObjectDescriptor: ...

    async def get_by_key(self, key: str) -> RemoteObject: ...


def _descriptor(response: dict) -> ObjectDescriptor:
    length = response.get("ContentLength")
    return ObjectDescriptor(
        content_type=response.get("ContentType"),
        last_modified=response.get("LastModified"),
        metadata={str(k): str(v) for k, v in (response.get("Metadata") or {}).items()},
        content_length=int(length) if length is not None else None,
    )


def read_body(remote: RemoteObject) -> bytes:
    """Read a fetched object's body to the end and release the connection."""
    try:
        return remote.body.read()
    except (BotoCoreError, OSError) as exc:
        raise RemoteStoreError(f"failed reading object body: {exc}") from exc
    finally:
        remote.body.close()


class S3ObjectStore:
    """Looks up and fetches objects from a single bucket.

    Requests go out exactly once; retries and circuit breaking are left to the
    caller so that one proxy request maps to at most one call per operation.
    """

    def __init__(self, settings: ProxySettings, client=None):
        self._bucket = settings.bucket
        if client is None:
            session = boto3.session.Session()
            client_args: dict[str, Optional[str]] = {
                "endpoint_url": settings.s3_endpoint_url,
                "region_name": settings.region,
            }
            client = session.client("s3", **{k: v for k, v in client_args.items() if v})
        self._client = client

    @property
    def bucket(self) -> str:
        return self._bucket

    async def head_by_key(self, key: str) -> ObjectDescriptor:
        response = await self._call(self._client.head_object, key)
        return _descriptor(response)

    async def get_by_key(self, key: str) -> RemoteObject:
        response = await self._call(self._client.get_object, key)
        return RemoteObject(descriptor=_descriptor(response), body=response["Body"])

    def status(self) -> dict[str, object]:
        return {"backend": "s3", "bucket": self._bucket}

    @staticmethod
    def _object_name(key: str) -> str:
        return key[1:] if key.startswith("/") else key

    async def _call(self, func: Callable[..., dict], key: str) -> dict:
        try:
            return await asyncio.to_thread(func, Bucket=self._bucket, Key=self._object_name(key))
        except self._client.exceptions.NoSuchKey as exc:  # type: ignore[attr-defined]
            raise ObjectNotFound(key) from exc
        except ClientError as exc:
            # head_object reports a missing key as a bare 404 ClientError
            error_code = exc.response.get("Error", {}).get("Code", "")
            if error_code in NOT_FOUND_CODES:
                raise ObjectNotFound(key) from exc
            LOGGER.warning("remote_request_failed", key=key, error_code=error_code)
            raise RemoteStoreError(f"{error_code or 'unknown'} error for {key}") from exc
        except BotoCoreError as exc:
            LOGGER.warning("remote_request_failed", key=key, error=str(exc))
            raise RemoteStoreError(str(exc)) from exc
