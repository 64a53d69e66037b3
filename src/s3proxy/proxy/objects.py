"""Object descriptors and the view handed to the HTTP layer.

An :class:`ObjectView` is either backed by a file in the local cache or by a
stream coming straight from the remote store. Callers read ``content()``
exactly once and call ``close()`` when they are done.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Optional, Protocol

from .errors import MissingMetadata


class ReadableStream(Protocol):
    def read(self, amt: int = ..., /) -> bytes: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class ObjectDescriptor:
    """Metadata returned by a remote lookup. Never carries content bytes."""

    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None
    metadata: dict[str, str] = field(default_factory=dict)
    content_length: Optional[int] = None


@dataclass
class RemoteObject:
    """A fetched remote object; ``body`` can only be consumed once."""

    descriptor: ObjectDescriptor
    body: ReadableStream

    @classmethod
    def from_bytes(cls, descriptor: ObjectDescriptor, data: bytes) -> "RemoteObject":
        return cls(descriptor=descriptor, body=io.BytesIO(data))


class ObjectView:
    source: str = ""

    def content(self) -> ReadableStream:
        raise NotImplementedError

    def content_type(self) -> str:
        raise NotImplementedError

    def metadata(self) -> dict[str, str]:
        raise NotImplementedError

    def close(self) -> None:
        self.content().close()


@dataclass
class LocalObjectView(ObjectView):
    handle: BinaryIO
    descriptor: Optional[ObjectDescriptor] = None
    source = "local"

    def content(self) -> BinaryIO:
        return self.handle

    def content_type(self) -> str:
        if self.descriptor is None or not self.descriptor.content_type:
            raise MissingMetadata("local object has no content type")
        return self.descriptor.content_type

    def metadata(self) -> dict[str, str]:
        if self.descriptor is None:
            return {}
        return dict(self.descriptor.metadata)


@dataclass
class RemoteObjectView(ObjectView):
    remote: RemoteObject
    source = "remote"

    def content(self) -> ReadableStream:
        return self.remote.body

    def content_type(self) -> str:
        if not self.remote.descriptor.content_type:
            raise MissingMetadata("remote object has no content type")
        return self.remote.descriptor.content_type

    def metadata(self) -> dict[str, str]:
        return dict(self.remote.descriptor.metadata)
