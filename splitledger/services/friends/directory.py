"""
Friend Directory

Friendship is owned by another feature; the ledger only asks one question:
may this caller attribute split amounts to an account owned by that user?

is_friend is symmetric: is_friend(a, b) == is_friend(b, a).
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from sqlalchemy import and_, or_, select

from splitledger.services.storage.schema import FriendshipRow
from splitledger.services.storage.sqlalchemy_store import Database


class FriendDirectory(ABC):
    """Abstract friendship lookup."""

    @abstractmethod
    def is_friend(self, owner_user_id: int, caller_user_id: int) -> bool:
        """True if the two users are friends."""


class SQLAlchemyFriendDirectory(FriendDirectory):
    """
    Reads the friendships table of the ledger database.

    A friendship is stored once, in either direction. Each lookup uses
    its own read-only connection, so it runs beside an open unit of work
    on a file or server database. It cannot share an in-memory SQLite
    database with an open unit of work.
    """

    def __init__(self, database: Database):
        self._database = database

    def is_friend(self, owner_user_id: int, caller_user_id: int) -> bool:
        if owner_user_id == caller_user_id:
            return False

        stmt = select(
            select(FriendshipRow.user_id)
            .where(or_(
                and_(FriendshipRow.user_id == owner_user_id, FriendshipRow.friend_id == caller_user_id),
                and_(FriendshipRow.user_id == caller_user_id, FriendshipRow.friend_id == owner_user_id),
            ))
            .exists()
        )
        with self._database.read_connection() as connection:
            return bool(connection.scalar(stmt))


class InMemoryFriendDirectory(FriendDirectory):
    """Friendships held in a set; for embedding and tests."""

    def __init__(self, pairs: Optional[Iterable[tuple[int, int]]] = None):
        self._pairs: set[frozenset[int]] = set()
        for a, b in pairs or ():
            self.add(a, b)

    def add(self, a: int, b: int) -> None:
        if a == b:
            raise ValueError("A user cannot befriend themselves")
        self._pairs.add(frozenset((a, b)))

    def remove(self, a: int, b: int) -> None:
        self._pairs.discard(frozenset((a, b)))

    def is_friend(self, owner_user_id: int, caller_user_id: int) -> bool:
        return frozenset((owner_user_id, caller_user_id)) in self._pairs
