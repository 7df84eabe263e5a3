"""
Tests for the JSON user repository
"""
import json

import pytest

from kudos.core.exceptions import ConflictError, RepositoryError
from kudos.db.models import CreateUserData, UpdateUserData, UserFilter
from kudos.db.repository import JsonUserRepository


@pytest.fixture
def repo(tmp_path):
    return JsonUserRepository(tmp_path / "data" / "users.json", cache_ttl_seconds=0)


def _data(email="ana@kudos.test", role_id="role_user"):
    return CreateUserData(email=email, name="Ana", password_hash="hash", role_id=role_id)


class TestJsonUserRepository:
    """Test persistence and lookups"""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, repo):
        assert await repo.find_many() == []

    @pytest.mark.asyncio
    async def test_create_and_find(self, repo):
        user = await repo.create(_data(email=" Ana@Kudos.Test "))

        assert user.id.startswith("user_")
        assert user.email == "ana@kudos.test"
        assert (await repo.find_by_id(user.id)).email == "ana@kudos.test"
        assert (await repo.find_by_email("ANA@kudos.test")).id == user.id
        assert await repo.exists_by_email("ana@kudos.test")

    @pytest.mark.asyncio
    async def test_file_format(self, repo):
        await repo.create(_data())

        stored = json.loads(repo.path.read_text(encoding="utf-8"))
        assert set(stored) == {"users", "last_updated"}
        assert stored["users"][0]["password_hash"] == "hash"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, repo):
        await repo.create(_data())

        with pytest.raises(ConflictError):
            await repo.create(_data(email="ANA@kudos.test"))

    @pytest.mark.asyncio
    async def test_update(self, repo):
        user = await repo.create(_data())

        updated = await repo.update(user.id, UpdateUserData(name="Ana B", role_id="role_viewer"))

        assert updated.name == "Ana B"
        assert updated.role_id == "role_viewer"
        assert updated.updated_at >= user.updated_at
        assert await repo.update("user_missing", UpdateUserData(name="x")) is None

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, repo):
        user = await repo.create(_data())

        assert await repo.delete(user.id)

        stored = await repo.find_by_id(user.id)
        assert stored is not None
        assert not stored.is_active

    @pytest.mark.asyncio
    async def test_find_many_filter(self, repo):
        await repo.create(_data(email="a@kudos.test", role_id="role_admin"))
        other = await repo.create(_data(email="b@kudos.test"))
        await repo.delete(other.id)

        admins = await repo.find_many(UserFilter(role_id="role_admin", is_active=True))
        inactive = await repo.find_many(UserFilter(is_active=False))

        assert [u.email for u in admins] == ["a@kudos.test"]
        assert [u.email for u in inactive] == ["b@kudos.test"]

    @pytest.mark.asyncio
    async def test_corrupt_file(self, repo):
        repo.path.parent.mkdir(parents=True, exist_ok=True)
        repo.path.write_text("{not json", encoding="utf-8")

        with pytest.raises(RepositoryError):
            await repo.find_many()

    @pytest.mark.asyncio
    async def test_cache_serves_stale_reads_until_invalidated(self, tmp_path):
        repo = JsonUserRepository(tmp_path / "users.json", cache_ttl_seconds=300)
        await repo.create(_data())
        repo.path.write_text(json.dumps({"users": []}), encoding="utf-8")

        assert len(await repo.find_many()) == 1
        repo.invalidate_cache()
        assert await repo.find_many() == []
