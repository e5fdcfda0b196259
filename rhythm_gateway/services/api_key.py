"""
API Key Service - Generation, lookup and revocation of team API keys.

NO DICTIONARIES - All data uses typed models/dataclasses.

Keys are stored only as SHA-256 digests. API keys carry 256 bits of
randomness, so a fast deterministic digest is enough to make the stored value
useless to an attacker and still allows an indexed lookup by hash.
"""

import base64
import hashlib
import secrets
from collections.abc import Callable
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from rhythm_gateway.db.models import APIKey, User, utc_now
from rhythm_gateway.exceptions import TransientStoreError
from rhythm_gateway.models.domain import ApiKeyRecord, GeneratedApiKey

logger = get_logger(__name__)

KEY_PREFIX_LENGTH = 12


def hash_api_key(plaintext_key: str) -> str:
    """Hash an API key for storage and lookup."""
    return hashlib.sha256(plaintext_key.encode()).hexdigest()


def generate_api_key(environment: str = "live") -> tuple[str, str, str]:
    """
    Generate a new API key.

    Returns:
        tuple: (plaintext_key, key_hash, key_prefix)
    """
    random_bytes = secrets.token_bytes(32)
    key_suffix = base64.urlsafe_b64encode(random_bytes).decode("utf-8").rstrip("=")

    # Format: r90_{env}_{suffix}
    plaintext_key = f"r90_{environment}_{key_suffix}"
    return plaintext_key, hash_api_key(plaintext_key), plaintext_key[:KEY_PREFIX_LENGTH]


class KeyStore(Protocol):
    """Data access for API key records."""

    async def find_by_hash(self, key_hash: str) -> ApiKeyRecord | None:
        """Return the key with this hash (active or not), joined with its owner's role."""
        ...

    async def touch(self, key_id: UUID, used_at: datetime) -> None:
        """Record that a key was just used."""
        ...


class SqlKeyStore:
    """KeyStore backed by the api_keys and users tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_hash(self, key_hash: str) -> ApiKeyRecord | None:
        stmt = (
            select(APIKey, User.role)
            .join(User, User.id == APIKey.user_id)
            .where(APIKey.key_hash == key_hash)
        )
        try:
            result = await self.session.execute(stmt)
            row = result.one_or_none()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("api_key_lookup", str(exc)) from exc

        if row is None:
            return None

        api_key, role = row
        return _to_record(api_key, role)

    async def touch(self, key_id: UUID, used_at: datetime) -> None:
        try:
            await self.session.execute(
                update(APIKey).where(APIKey.id == key_id).values(last_used_at=used_at)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("api_key_touch", str(exc)) from exc


def _to_record(api_key: APIKey, role: str | None) -> ApiKeyRecord:
    return ApiKeyRecord(
        key_id=api_key.id,
        team_id=api_key.team_id,
        user_id=api_key.user_id,
        user_role=role,
        is_active=api_key.is_active,
        key_prefix=api_key.key_prefix,
        name=api_key.name,
        created_at=api_key.created_at,
        last_used_at=api_key.last_used_at,
    )


class APIKeyService:
    """Administrative key lifecycle: create, revoke, list."""

    def __init__(
        self, session: AsyncSession, clock: Callable[[], datetime] = utc_now
    ) -> None:
        self.session = session
        self.clock = clock

    async def create_api_key(
        self, name: str, team_id: str, user_id: str, environment: str = "live"
    ) -> GeneratedApiKey:
        """
        Create a new API key for a team member.

        Returns:
            GeneratedApiKey with plaintext key (shown once!)
        """
        plaintext_key, key_hash, key_prefix = generate_api_key(environment)
        api_key = APIKey(
            key_hash=key_hash,
            key_prefix=key_prefix,
            name=name,
            team_id=team_id,
            user_id=user_id,
            is_active=True,
            created_at=self.clock(),
        )
        self.session.add(api_key)
        try:
            await self.session.commit()
            await self.session.refresh(api_key)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("api_key_create", str(exc)) from exc

        logger.info("api_key_created", key_id=str(api_key.id), team_id=team_id, name=name)

        return GeneratedApiKey(
            key_id=api_key.id,
            plaintext_key=plaintext_key,
            key_prefix=key_prefix,
            name=name,
            team_id=team_id,
            user_id=user_id,
            created_at=api_key.created_at,
        )

    async def revoke_api_key(self, key_id: UUID, team_id: str) -> bool:
        """
        Revoke a key belonging to a team. The row is kept for audit.

        Returns:
            False if the team has no such key.
        """
        stmt = (
            update(APIKey)
            .where(APIKey.id == key_id, APIKey.team_id == team_id)
            .values(is_active=False, revoked_at=self.clock())
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("api_key_revoke", str(exc)) from exc

        revoked = bool(result.rowcount)
        if revoked:
            logger.info("api_key_revoked", key_id=str(key_id), team_id=team_id)
        return revoked

    async def list_api_keys(self, team_id: str) -> list[ApiKeyRecord]:
        """List a team's active keys."""
        stmt = (
            select(APIKey, User.role)
            .join(User, User.id == APIKey.user_id)
            .where(APIKey.team_id == team_id, APIKey.is_active.is_(True))
            .order_by(APIKey.created_at)
        )
        try:
            result = await self.session.execute(stmt)
            rows = result.all()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("api_key_list", str(exc)) from exc
        return [_to_record(api_key, role) for api_key, role in rows]
