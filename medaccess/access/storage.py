from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


@asynccontextmanager
async def session_scope(factory: SessionFactory) -> AsyncIterator[AsyncSession]:
    """Open a session; persistence failures surface as StoreUnavailable.

    IntegrityError passes through untouched: constraint conflicts are part of
    the protocol and are resolved by the caller.
    """
    try:
        async with factory() as session:
            yield session
    except IntegrityError:
        raise
    except SQLAlchemyError as e:
        logger.error("Access store error: %s", e.__class__.__name__)
        raise StoreUnavailable() from e
