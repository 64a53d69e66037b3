"""Cache-aside object proxy."""

from .errors import (
    ConfigurationError,
    InvalidObjectKey,
    MissingMetadata,
    ObjectNotFound,
    PersistError,
    ProxyError,
    RemoteStoreError,
)
from .local_cache import CachedEntry, Freshness, LocalCacheStore
from .objects import LocalObjectView, ObjectDescriptor, ObjectView, RemoteObject, RemoteObjectView
from .remote import RemoteStore, S3ObjectStore
from .retriever import ObjectRetriever

__all__ = [
    "CachedEntry",
    "ConfigurationError",
    "Freshness",
    "InvalidObjectKey",
    "LocalCacheStore",
    "LocalObjectView",
    "MissingMetadata",
    "ObjectDescriptor",
    "ObjectNotFound",
    "ObjectRetriever",
    "ObjectView",
    "PersistError",
    "ProxyError",
    "RemoteObject",
    "RemoteObjectView",
    "RemoteStore",
    "RemoteStoreError",
    "S3ObjectStore",
]
