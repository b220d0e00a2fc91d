from .base import (
    KIND_ARTIST,
    KIND_RECORDING,
    KIND_RELEASE,
    QUERY_FIELDS,
    SEARCH_KINDS,
    MetadataProvider,
    cache_key,
)

__all__ = [
    "KIND_ARTIST",
    "KIND_RECORDING",
    "KIND_RELEASE",
    "QUERY_FIELDS",
    "SEARCH_KINDS",
    "MetadataProvider",
    "cache_key",
]
