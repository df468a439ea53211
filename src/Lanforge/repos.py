# repos.py

from __future__ import annotations

import contextlib
import uuid
from collections.abc import AsyncIterator

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from Lanforge import models
from Lanforge.db import session_scope
from Lanforge.errors import PersistenceError

log = structlog.get_logger()


def _server_query():
    return select(models.Server).options(
        selectinload(models.Server.consoles),
        selectinload(models.Server.http_paths),
        selectinload(models.Server.scripts),
        selectinload(models.Server.actions),
    )


async def get_server(s: AsyncSession, server_id: uuid.UUID) -> models.Server | None:
    q = await s.execute(_server_query().where(models.Server.id == server_id))
    return q.scalar_one_or_none()


async def list_servers(s: AsyncSession) -> list[models.Server]:
    q = await s.execute(_server_query().order_by(models.Server.name))
    return list(q.scalars().all())


async def game_exists(s: AsyncSession, game_id: uuid.UUID) -> bool:
    q = await s.execute(select(func.count()).select_from(models.Game).where(models.Game.id == game_id))
    return int(q.scalar_one()) > 0


async def get_game(s: AsyncSession, game_id: uuid.UUID) -> models.Game | None:
    return await s.get(models.Game, game_id)


async def create_game(s: AsyncSession, *, game_id: uuid.UUID, title: str) -> models.Game:
    obj = models.Game(id=game_id, title=title)
    s.add(obj)
    await s.flush()
    return obj


async def delete_server(s: AsyncSession, server_id: uuid.UUID) -> bool:
    obj = await get_server(s, server_id)
    if obj is None:
        return False
    await s.delete(obj)
    await s.flush()
    return True


class SqlPersistenceGateway:
    """Persistence gateway over one ``AsyncSession``.

    Loads eagerly include every nested collection, so reconciliation never
    triggers lazy IO on the async session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def load_server(self, server_id: uuid.UUID) -> models.Server | None:
        return await get_server(self.session, server_id)

    async def game_exists(self, game_id: uuid.UUID) -> bool:
        return await game_exists(self.session, game_id)

    async def commit(self, server: models.Server) -> models.Server:
        try:
            self.session.add(server)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceError(
                f"Failed to commit server {server.id}: {exc}", server_id=server.id
            ) from exc
        log.info("repos.server.committed", server_id=str(server.id))
        return server


@contextlib.asynccontextmanager
async def gateway_scope() -> AsyncIterator[SqlPersistenceGateway]:
    """Yield a gateway bound to a session that rolls back if the block raises."""
    async with session_scope() as s:
        yield SqlPersistenceGateway(s)
