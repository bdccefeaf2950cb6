from __future__ import annotations


class SessionStoreError(Exception):
    """Base class for everything the session store raises."""


class ConfigurationError(SessionStoreError, ValueError):
    """Mutually exclusive store options were supplied together."""


class StorageError(SessionStoreError):
    """A get/set/destroy call could not be completed."""


class StoreConnectionError(StorageError, ConnectionError):
    """The backing MongoDB connection could not be established."""


class IndexSetupError(StoreConnectionError):
    """The ttl or sid index could not be created after connecting."""


__all__ = [
    "SessionStoreError",
    "ConfigurationError",
    "StorageError",
    "StoreConnectionError",
    "IndexSetupError",
]
