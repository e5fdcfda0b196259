"""
Tests for API Key Service.

Tests key generation, hashing, lookup and administrative management.
"""

import hashlib
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from conftest import NOW, TEAM_ID, fixed_clock
from sqlalchemy.exc import OperationalError

from rhythm_gateway.db.models import APIKey
from rhythm_gateway.exceptions import TransientStoreError
from rhythm_gateway.services.api_key import (
    KEY_PREFIX_LENGTH,
    APIKeyService,
    SqlKeyStore,
    generate_api_key,
    hash_api_key,
)


def _api_key_row(**overrides) -> MagicMock:
    row = MagicMock(spec=APIKey)
    row.id = uuid4()
    row.team_id = TEAM_ID
    row.user_id = "user-1"
    row.is_active = True
    row.key_prefix = "r90_live_abc"
    row.name = "CI"
    row.created_at = NOW
    row.last_used_at = None
    for key, value in overrides.items():
        setattr(row, key, value)
    return row


class TestKeyGeneration:
    """Tests for generate_api_key and hash_api_key."""

    def test_format(self):
        """Keys look like r90_{env}_{suffix}."""
        plaintext, key_hash, prefix = generate_api_key()

        assert plaintext.startswith("r90_live_")
        assert len(plaintext) > 40
        assert prefix == plaintext[:KEY_PREFIX_LENGTH]
        assert key_hash == hash_api_key(plaintext)

    def test_environment_in_key(self):
        plaintext, _, _ = generate_api_key("test")

        assert plaintext.startswith("r90_test_")

    def test_keys_are_unique(self):
        keys = {generate_api_key()[0] for _ in range(50)}

        assert len(keys) == 50

    def test_hash_is_sha256_hex(self):
        """Hashes are deterministic SHA-256 digests."""
        assert hash_api_key("r90_live_x") == hashlib.sha256(b"r90_live_x").hexdigest()
        assert len(hash_api_key("anything")) == 64

    def test_plaintext_not_in_hash(self):
        plaintext, key_hash, _ = generate_api_key()

        assert plaintext not in key_hash


class TestSqlKeyStore:
    """Tests for SqlKeyStore."""

    async def test_find_by_hash_maps_row(self, db_session):
        row = _api_key_row()
        db_session.execute.return_value.one_or_none.return_value = (row, "admin")

        record = await SqlKeyStore(db_session).find_by_hash("abc")

        assert record is not None
        assert record.key_id == row.id
        assert record.team_id == TEAM_ID
        assert record.user_role == "admin"
        assert record.is_active is True

    async def test_find_by_hash_missing(self, db_session):
        assert await SqlKeyStore(db_session).find_by_hash("abc") is None

    async def test_revoked_key_still_returned(self, db_session):
        """Lookup returns inactive keys; the gateway decides to reject them."""
        db_session.execute.return_value.one_or_none.return_value = (
            _api_key_row(is_active=False),
            "member",
        )

        record = await SqlKeyStore(db_session).find_by_hash("abc")

        assert record.is_active is False

    async def test_lookup_failure_is_transient(self, db_session):
        db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(TransientStoreError):
            await SqlKeyStore(db_session).find_by_hash("abc")

    async def test_touch_commits(self, db_session):
        await SqlKeyStore(db_session).touch(uuid4(), NOW)

        db_session.execute.assert_awaited_once()
        db_session.commit.assert_awaited_once()

    async def test_touch_failure_rolls_back(self, db_session):
        db_session.commit.side_effect = OperationalError("COMMIT", {}, Exception("down"))

        with pytest.raises(TransientStoreError):
            await SqlKeyStore(db_session).touch(uuid4(), NOW)

        db_session.rollback.assert_awaited_once()


class TestAPIKeyService:
    """Tests for key creation, revocation and listing."""

    async def test_create_api_key(self, db_session):
        """The stored row carries only the hash; the plaintext is returned once."""
        key_id = uuid4()

        async def refresh(api_key):
            api_key.id = key_id

        db_session.refresh.side_effect = refresh
        service = APIKeyService(db_session, clock=fixed_clock())

        generated = await service.create_api_key(name="CI", team_id=TEAM_ID, user_id="user-1")

        stored = db_session.add.call_args.args[0]
        assert stored.key_hash == hash_api_key(generated.plaintext_key)
        assert stored.key_prefix == generated.key_prefix
        assert stored.team_id == TEAM_ID
        assert stored.is_active is True
        assert generated.key_id == key_id
        assert generated.created_at == NOW
        db_session.commit.assert_awaited_once()

    async def test_create_failure_rolls_back(self, db_session):
        db_session.commit.side_effect = OperationalError("INSERT", {}, Exception("down"))

        with pytest.raises(TransientStoreError):
            await APIKeyService(db_session).create_api_key("CI", TEAM_ID, "user-1")

        db_session.rollback.assert_awaited_once()

    async def test_revoke_existing_key(self, db_session):
        assert await APIKeyService(db_session).revoke_api_key(uuid4(), TEAM_ID) is True
        db_session.commit.assert_awaited_once()

    async def test_revoke_unknown_key(self, db_session):
        db_session.execute.return_value.rowcount = 0

        assert await APIKeyService(db_session).revoke_api_key(uuid4(), TEAM_ID) is False

    async def test_list_api_keys(self, db_session):
        rows = [(_api_key_row(name="CI"), "admin"), (_api_key_row(name="Zapier"), "member")]
        db_session.execute.return_value.all.return_value = rows

        records = await APIKeyService(db_session).list_api_keys(TEAM_ID)

        assert [r.name for r in records] == ["CI", "Zapier"]
        assert [r.user_role for r in records] == ["admin", "member"]
