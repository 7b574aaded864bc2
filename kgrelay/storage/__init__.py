"""In-memory credential store and the shared response cache."""

from kgrelay.storage.cache import CachedResponse, CacheCoordinator, ResponseCache
from kgrelay.storage.credentials import CredentialStore

__all__ = [
    "CachedResponse",
    "CacheCoordinator",
    "ResponseCache",
    "CredentialStore",
]
