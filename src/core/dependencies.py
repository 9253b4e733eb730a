"""Dependency injection module for FastAPI.

The user cache, the search index and its background worker are process-wide
handles: ``init_resources()`` opens them once at startup and
``close_resources()`` releases them at shutdown. Each request gets its own
database session and a ``UserManager`` wired to the shared handles.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from config import SEARCH_ENABLED
from core.database import get_db
from core.exceptions import DependencyUnavailableError
from utils.index_worker import IndexWorker
from utils.search_index import UserSearchIndex
from utils.user_cache import UserCache
from utils.user_manager import UserManager

logger = logging.getLogger(__name__)

_user_cache: Optional[UserCache] = None
_search_index: Optional[UserSearchIndex] = None
_index_worker: Optional[IndexWorker] = None


def init_resources(
    cache: Optional[UserCache] = None,
    index: Optional[UserSearchIndex] = None,
    search_enabled: bool = SEARCH_ENABLED,
) -> None:
    """Open the shared cache, search index and index worker.

    Args:
        cache: Cache to install instead of a default ``UserCache``.
        index: Index to install instead of a default ``UserSearchIndex``.
        search_enabled: When False, no index or worker is created and search
            falls back to empty results.
    """
    global _user_cache, _search_index, _index_worker
    _user_cache = (cache or UserCache()).open()

    if not search_enabled:
        logger.info("Search index disabled by configuration")
        return
    try:
        _search_index = (index or UserSearchIndex()).open()
    except DependencyUnavailableError as exc:
        # Search is best-effort; the service still starts without it
        logger.error("Search index unavailable, continuing without search: %s", exc)
        _search_index = None
        return
    _index_worker = IndexWorker(_search_index).start()


def close_resources() -> None:
    global _user_cache, _search_index, _index_worker
    if _index_worker is not None:
        _index_worker.stop()
        _index_worker = None
    if _search_index is not None:
        _search_index.close()
        _search_index = None
    if _user_cache is not None:
        _user_cache.close()
        _user_cache = None


def get_user_cache() -> Optional[UserCache]:
    return _user_cache


def get_search_index() -> Optional[UserSearchIndex]:
    return _search_index


def get_index_worker() -> Optional[IndexWorker]:
    return _index_worker


def get_user_manager(db: Session = Depends(get_db)) -> UserManager:
    """Get UserManager instance with request-scoped DB session.

    Args:
        db: Database session.

    Returns:
        UserManager instance sharing the process-wide cache and index.
    """
    return UserManager(
        db,
        cache=_user_cache,
        worker=_index_worker,
        index=_search_index,
    )


# Type aliases for dependency injection
UserManagerDep = Annotated[UserManager, Depends(get_user_manager)]
