"""Tests for the friend directories."""

import pytest

from splitledger.services.friends import InMemoryFriendDirectory, SQLAlchemyFriendDirectory
from splitledger.services.storage.schema import FriendshipRow


class TestInMemoryFriendDirectory:
    """Tests for the set-backed directory."""

    def test_symmetric(self):
        friends = InMemoryFriendDirectory([(1, 2)])
        assert friends.is_friend(1, 2) is True
        assert friends.is_friend(2, 1) is True
        assert friends.is_friend(1, 3) is False

    def test_remove(self):
        friends = InMemoryFriendDirectory([(1, 2)])
        friends.remove(2, 1)
        assert friends.is_friend(1, 2) is False

    def test_self_friendship_rejected(self):
        with pytest.raises(ValueError):
            InMemoryFriendDirectory([(4, 4)])


class TestSQLAlchemyFriendDirectory:
    """Tests for the friendships table lookup."""

    @pytest.fixture
    def friends(self, database):
        with database.session() as session, session.begin():
            session.add(FriendshipRow(user_id=10, friend_id=20))
        return SQLAlchemyFriendDirectory(database)

    def test_stored_direction(self, friends):
        assert friends.is_friend(10, 20) is True

    def test_reverse_direction(self, friends):
        assert friends.is_friend(20, 10) is True

    def test_strangers(self, friends):
        assert friends.is_friend(10, 30) is False

    def test_self_is_not_a_friend(self, friends):
        assert friends.is_friend(10, 10) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
