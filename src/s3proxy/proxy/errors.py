"""Exceptions raised while resolving an object key."""

from __future__ import annotations

from ..common.settings import ConfigurationError


class ProxyError(Exception):
    """Base class for failures that end a single request."""


class InvalidObjectKey(ProxyError):
    """The key names the store root or escapes the cache directory."""


class ObjectNotFound(ProxyError):
    """The remote store has no object under the key."""


class RemoteStoreError(ProxyError):
    """The remote store failed for a reason other than a missing object."""


class PersistError(Exception):
    """Writing a fetched object into the local cache failed."""


class MissingMetadata(LookupError):
    """An object view has no backing source that carries a content type."""


__all__ = [
    "ConfigurationError",
    "InvalidObjectKey",
    "MissingMetadata",
    "ObjectNotFound",
    "PersistError",
    "ProxyError",
    "RemoteStoreError",
]
