"""Background worker that applies search index updates.

Writes to the index never run on the request thread. Callers submit an upsert
or delete and return immediately; the single worker thread applies them in
submission order. Failures are logged and dropped, since a stale or missing
document only degrades search.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable, List, Optional, Set

from core.exceptions import DependencyUnavailableError
from schemas.user import UserSearchDocument
from utils.search_index import UserSearchIndex

logger = logging.getLogger(__name__)


class IndexWorker:
    """Fire-and-forget executor for search index writes."""

    def __init__(self, index: UserSearchIndex):
        self.index = index
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def start(self) -> "IndexWorker":
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="search-index"
                )
        logger.info("Index worker started")
        return self

    def stop(self, wait_for_pending: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait_for_pending)
        logger.info("Index worker stopped")

    @property
    def is_running(self) -> bool:
        return self._executor is not None

    def _submit(self, description: str, task: Callable[[], None]) -> bool:
        with self._lock:
            if self._executor is None:
                logger.warning("Index worker not running; dropped %s", description)
                return False
            future = self._executor.submit(self._run, description, task)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return True

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @staticmethod
    def _run(description: str, task: Callable[[], None]) -> None:
        try:
            task()
        except DependencyUnavailableError as exc:
            logger.error("Search index update failed (%s): %s", description, exc)
        except Exception:
            logger.exception("Unexpected error during search index update (%s)", description)

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------
    def submit_upsert(self, document: UserSearchDocument) -> bool:
        return self._submit(
            f"upsert user {document.id}", lambda: self.index.upsert(document)
        )

    def submit_delete(self, user_id: int) -> bool:
        return self._submit(f"delete user {user_id}", lambda: self.index.delete(user_id))

    def submit_reindex(self, documents: Iterable[UserSearchDocument]) -> bool:
        docs: List[UserSearchDocument] = list(documents)

        def _reindex() -> None:
            logger.info("Reindexing %d users", len(docs))
            self.index.clear()
            for document in docs:
                self.index.upsert(document)

        return self._submit(f"reindex {len(docs)} users", _reindex)

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every submitted update has been applied."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)
