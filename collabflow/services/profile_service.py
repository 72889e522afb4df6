"""Uploader profile lookups, always served from the SQL users table."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select

from collabflow.models.user import User

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

UNKNOWN_USER = "Unknown User"


@dataclass(frozen=True)
class Profile:
    full_name: str
    avatar_url: str | None = None


async def get_profiles(
    session_factory: async_sessionmaker[AsyncSession], user_ids: Iterable[int | None]
) -> dict[int, Profile]:
    """Map each known user id to its profile. Unknown ids are simply absent."""
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    async with session_factory() as session:
        result = await session.execute(
            select(User.id, User.username, User.display_name).where(User.id.in_(ids))
        )
        return {
            row.id: Profile(full_name=row.display_name or row.username or UNKNOWN_USER)
            for row in result
        }


def profile_for(profiles: dict[int, Profile], user_id: int | None) -> Profile:
    if user_id is None:
        return Profile(full_name=UNKNOWN_USER)
    return profiles.get(user_id, Profile(full_name=UNKNOWN_USER))
