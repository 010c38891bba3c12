"""Friendship lookups used for cross-user split amounts."""

from splitledger.services.friends.directory import (
    FriendDirectory,
    InMemoryFriendDirectory,
    SQLAlchemyFriendDirectory,
)

__all__ = [
    "FriendDirectory",
    "InMemoryFriendDirectory",
    "SQLAlchemyFriendDirectory",
]
