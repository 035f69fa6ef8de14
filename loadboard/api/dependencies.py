"""FastAPI dependency injection helpers."""

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.config import settings
from loadboard.domain.entities import Actor
from loadboard.domain.errors import Unauthorized
from loadboard.infrastructure.database import async_session_factory
from loadboard.infrastructure.redis_client import get_redis
from loadboard.infrastructure.repositories import UserRepository
from loadboard.services.notifications import RedisNotificationDispatcher


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_actor(
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Resolve ``Authorization: Bearer <token>`` to the calling user."""
    if not authorization:
        raise Unauthorized("Authentication required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Authentication required")

    user = await UserRepository(db).get_by_token(token.strip())
    if user is None:
        raise Unauthorized("Invalid or expired session")
    return Actor(
        user_id=user.id,
        role=user.role,
        organization_id=user.organization_id,
        status=user.status,
    )


async def get_notifier() -> RedisNotificationDispatcher:
    return RedisNotificationDispatcher(await get_redis(), settings.notification_queue)
