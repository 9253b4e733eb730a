"""SQLite-backed search index for user documents.

The index is a secondary, best-effort projection of the users table. Matching
is done in Python over the stored documents: every query token is compared
against the tokens of ``name`` (weighted x2), ``email`` and ``department_name``
with a similarity ratio, so small typos still match.
"""

import logging
import re
import sqlite3
import threading
from difflib import SequenceMatcher
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from config import SEARCH_INDEX_PATH, SEARCH_MIN_SCORE
from core.exceptions import DependencyUnavailableError
from schemas.user import UserSearchDocument

logger = logging.getLogger(__name__)

FIELD_WEIGHTS = (("name", 2.0), ("email", 1.0), ("department_name", 1.0))

_TOKEN_SPLIT = re.compile(r"[\s@._\-+]+")


def _tokenize(value: str, keep_whole: bool = False) -> List[str]:
    lowered = (value or "").lower().strip()
    if not lowered:
        return []
    tokens = [token for token in _TOKEN_SPLIT.split(lowered) if token]
    if keep_whole and len(tokens) > 1:
        tokens.append(lowered)
    return tokens


def _similarity(term: str, token: str) -> float:
    if term == token:
        return 1.0
    if len(term) >= 3 and token.startswith(term):
        return 0.95
    if len(term) <= 2:
        # Too short for edit tolerance
        return 0.0
    return SequenceMatcher(None, term, token).ratio()


def score_document(
    terms: List[str], document: UserSearchDocument, min_score: float = SEARCH_MIN_SCORE
) -> float:
    """Relevance of ``document`` for the tokenised query ``terms``.

    A term contributes the best weighted similarity it reaches in any field;
    terms below ``min_score`` contribute nothing. Zero means no match.
    """
    fields = [
        (_tokenize(getattr(document, field), keep_whole=True), weight) for field, weight in FIELD_WEIGHTS
    ]
    total = 0.0
    for term in terms:
        best = 0.0
        for tokens, weight in fields:
            for token in tokens:
                similarity = _similarity(term, token)
                if similarity >= min_score:
                    best = max(best, similarity * weight)
        total += best
    return total


class UserSearchIndex:
    """Search index over a single long-lived SQLite connection."""

    def __init__(
        self,
        path: str = SEARCH_INDEX_PATH,
        table_name: str = "user_documents",
        min_score: float = SEARCH_MIN_SCORE,
    ):
        self.path = path
        self.table_name = table_name
        self.min_score = min_score
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def open(self) -> "UserSearchIndex":
        with self._lock:
            if self._conn is not None:
                return self
            try:
                if self.path != ":memory:":
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self.path, check_same_thread=False)
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.table_name} (
                        id INTEGER PRIMARY KEY,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL,
                        department_name TEXT NOT NULL DEFAULT ''
                    )
                    """
                )
                conn.commit()
            except (sqlite3.Error, OSError) as exc:
                raise DependencyUnavailableError("search index", str(exc)) from exc
            self._conn = conn
        logger.info("Search index opened at %s", self.path)
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
        logger.info("Search index closed")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _execute(self, sql: str, params: Iterable = ()) -> List[tuple]:
        with self._lock:
            if self._conn is None:
                raise DependencyUnavailableError("search index", "index is not open")
            try:
                cursor = self._conn.execute(sql, tuple(params))
                rows = cursor.fetchall()
                self._conn.commit()
            except sqlite3.Error as exc:
                raise DependencyUnavailableError("search index", str(exc)) from exc
        return rows

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------
    def upsert(self, document: UserSearchDocument) -> None:
        self._execute(
            f"""
            INSERT INTO {self.table_name} (id, name, email, department_name)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                email = excluded.email,
                department_name = excluded.department_name
            """,
            (document.id, document.name, document.email, document.department_name or ""),
        )
        logger.info("Indexed user %s", document.id)

    def delete(self, user_id: int) -> None:
        self._execute(f"DELETE FROM {self.table_name} WHERE id = ?", (user_id,))
        logger.info("Deleted user %s from search index", user_id)

    def clear(self) -> None:
        self._execute(f"DELETE FROM {self.table_name}")

    def count(self) -> int:
        rows = self._execute(f"SELECT COUNT(*) FROM {self.table_name}")
        return int(rows[0][0])

    def get(self, user_id: int) -> Optional[UserSearchDocument]:
        rows = self._execute(
            f"SELECT id, name, email, department_name FROM {self.table_name} WHERE id = ?",
            (user_id,),
        )
        if not rows:
            return None
        return self._row_to_document(rows[0])

    def fuzzy_search(
        self, term: str, page: int, size: int
    ) -> Tuple[List[UserSearchDocument], int]:
        """Typo-tolerant search across name, email and department name.

        Returns:
            The requested page of documents ranked by relevance, and the total
            number of matching documents.
        """
        terms = _tokenize(term)
        if not terms:
            return [], 0
        logger.info("Performing fuzzy search for: %s", term)
        # Linear scan: every document is scored in Python
        rows = self._execute(
            f"SELECT id, name, email, department_name FROM {self.table_name}"
        )
        scored = []
        for row in rows:
            document = self._row_to_document(row)
            score = score_document(terms, document, self.min_score)
            if score > 0:
                scored.append((score, document))
        scored.sort(key=lambda item: (-item[0], item[1].id))
        start = page * size
        return [doc for _, doc in scored[start:start + size]], len(scored)

    @staticmethod
    def _row_to_document(row: tuple) -> UserSearchDocument:
        return UserSearchDocument(
            id=int(row[0]), name=row[1], email=row[2], department_name=row[3] or ""
        )
