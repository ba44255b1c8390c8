"""Parley persistence layer."""

from parley.store.sessions import (
    ParleyStoreError,
    SessionNotFoundError,
    SessionStore,
    StoreNotInitializedError,
    make_id,
)

__all__ = [
    "SessionStore",
    "ParleyStoreError",
    "SessionNotFoundError",
    "StoreNotInitializedError",
    "make_id",
]
