"""Tests for user lookups used to resolve notification recipients."""

from uuid import uuid4

from app.repositories.user_repository import UserRepository
from tests.conftest import make_user


class TestUserRepository:
    def test_get_by_id(self, db_session):
        user = make_user(db_session)
        repo = UserRepository(db_session)

        assert repo.get_by_id(user.id).name == "Asha Rao"
        assert repo.get_by_id(uuid4()) is None

    def test_get_by_email_normalizes(self, db_session):
        user = make_user(db_session)
        assert UserRepository(db_session).get_by_email("  ASHA@example.com ").id == user.id

    def test_get_by_mobile(self, db_session):
        user = make_user(db_session)
        repo = UserRepository(db_session)

        assert repo.get_by_mobile(" 9876543210").id == user.id
        assert repo.get_by_mobile("9000000000") is None
