import sqlite3
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .config import DB_PATH, MIN_RATING, MAX_RATING
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass
class RatingSignal:
    movie_id: int
    rating: float
    rated_at: datetime | None = None


def parse_timestamp_naive(timestamp_str: str) -> datetime:
    """
    Parse ISO format timestamp string to naive datetime.

    Ensures consistency by always returning naive datetime regardless of
    whether the stored timestamp had timezone info.
    """
    dt = datetime.fromisoformat(timestamp_str)
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


class ConnectionPool:
    """
    Thread-safe SQLite connection pool.

    - One connection per thread (SQLite threading requirement)
    - Periodic health checks via SELECT 1
    - Explicit transaction nesting tracking
    """

    def __init__(self, db_path, max_size: int = 50, health_check_interval: int = 300):
        self._db_path = db_path
        self._max_size = max_size
        self._health_check_interval = health_check_interval

        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._last_health_check: dict[int, float] = {}
        self._transaction_depth: dict[int, int] = {}

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _health_check(self, conn: sqlite3.Connection) -> bool:
        try:
            conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def _drop_dead_threads(self):
        alive_threads = {t.ident for t in threading.enumerate()}
        for thread_id in set(self._connections) - alive_threads:
            conn = self._connections.pop(thread_id)
            self._last_health_check.pop(thread_id, None)
            self._transaction_depth.pop(thread_id, None)
            conn.close()
            logger.debug(f"Closed connection for dead thread {thread_id}")

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection for the current thread, creating if necessary."""
        thread_id = threading.get_ident()
        now = time.time()

        with self._lock:
            conn = self._connections.get(thread_id)

            if conn is not None and now - self._last_health_check.get(thread_id, 0) > self._health_check_interval:
                if self._health_check(conn):
                    self._last_health_check[thread_id] = now
                else:
                    logger.warning(f"Connection for thread {thread_id} failed health check, replacing")
                    try:
                        conn.close()
                    except sqlite3.Error as e:
                        logger.debug(f"Error closing stale connection: {e}")
                    conn = None

            if conn is None:
                if len(self._connections) >= self._max_size:
                    self._drop_dead_threads()
                    if len(self._connections) >= self._max_size:
                        raise RuntimeError(
                            f"Connection pool exhausted ({self._max_size} connections). "
                            f"Possible connection leak or too many threads."
                        )

                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._last_health_check[thread_id] = now
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")

            return conn

    def get_transaction_depth(self) -> int:
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 1)
            self._transaction_depth[thread_id] = max(0, depth - 1)

    def close_all(self):
        """Close all connections (call on application shutdown)."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")

            self._connections.clear()
            self._last_health_check.clear()
            self._transaction_depth.clear()
            logger.debug("Connection pool closed")


# Global pool instance
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Get database connection with proper transaction handling.

    Only the outermost context commits or rolls back; nested calls are no-ops
    for transaction control.
    """
    pool = _get_pool()
    conn = pool.get_connection()

    is_outermost = pool.get_transaction_depth() == 0
    pool.increment_transaction_depth()

    try:
        yield conn

        if is_outermost and not read_only:
            conn.commit()

    except Exception:
        if is_outermost:
            conn.rollback()
        raise

    finally:
        pool.decrement_transaction_depth()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS movie_ratings (
                user_id TEXT NOT NULL,
                movie_id INTEGER NOT NULL,
                rating REAL NOT NULL,
                rated_at TEXT NOT NULL,
                PRIMARY KEY (user_id, movie_id)
            );

            CREATE INDEX IF NOT EXISTS idx_ratings_user ON movie_ratings(user_id);
            CREATE INDEX IF NOT EXISTS idx_ratings_user_rating ON movie_ratings(user_id, rating);
        """)


def validate_rating(rating: float) -> float:
    """Ratings are 1-5 stars; anything else is rejected."""
    try:
        value = float(rating)
    except (TypeError, ValueError):
        raise ValueError(f"Rating must be a number, got {rating!r}")
    if not MIN_RATING <= value <= MAX_RATING:
        raise ValueError(f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {value}")
    return value


def load_user_ratings(user_id: str) -> list[RatingSignal]:
    """Load all ratings for a user, most recent first."""
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT movie_id, rating, rated_at
            FROM movie_ratings
            WHERE user_id = ?
            ORDER BY rated_at DESC, movie_id
        """, (user_id,)).fetchall()

    return [
        RatingSignal(
            movie_id=row['movie_id'],
            rating=row['rating'],
            rated_at=parse_timestamp_naive(row['rated_at']) if row['rated_at'] else None,
        )
        for row in rows
    ]


@retry_with_backoff(max_retries=3, exceptions=(sqlite3.OperationalError,))
def upsert_rating(user_id: str, movie_id: int, rating: float, rated_at: datetime | None = None) -> RatingSignal:
    value = validate_rating(rating)
    timestamp = (rated_at or datetime.now()).replace(tzinfo=None)
    with get_db() as conn:
        conn.execute("""
            INSERT INTO movie_ratings (user_id, movie_id, rating, rated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, movie_id) DO UPDATE SET
                rating = excluded.rating,
                rated_at = excluded.rated_at
        """, (user_id, movie_id, value, timestamp.isoformat()))
    return RatingSignal(movie_id=movie_id, rating=value, rated_at=timestamp)


@retry_with_backoff(max_retries=3, exceptions=(sqlite3.OperationalError,))
def remove_rating(user_id: str, movie_id: int) -> bool:
    with get_db() as conn:
        cursor = conn.execute(
            "DELETE FROM movie_ratings WHERE user_id = ? AND movie_id = ?",
            (user_id, movie_id),
        )
        return cursor.rowcount > 0


class RatingStore:
    """
    Rating Source backed by the local SQLite database.

    Reads are side-effect free. Every mutation calls `on_change(user_id)` so
    the owner can drop cached preference data for that user; wire it to
    `RecommendationEngine.invalidate_preference_cache`.
    """

    def __init__(self, on_change: Callable[[str], None] | None = None):
        self.on_change = on_change
        init_db()

    def get_ratings_for_user(self, user_id: str) -> list[RatingSignal]:
        return load_user_ratings(user_id)

    def save_rating(self, user_id: str, movie_id: int, rating: float) -> RatingSignal:
        """Create or update a rating, then invalidate the user's cached preferences."""
        signal = upsert_rating(user_id, movie_id, rating)
        logger.info(f"Saved rating {signal.rating} for movie {movie_id} by {user_id}")
        self._notify(user_id)
        return signal

    def delete_rating(self, user_id: str, movie_id: int) -> bool:
        removed = remove_rating(user_id, movie_id)
        if removed:
            logger.info(f"Deleted rating for movie {movie_id} by {user_id}")
            self._notify(user_id)
        return removed

    def _notify(self, user_id: str) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(user_id)
        except Exception as exc:
            # The rating is already committed; a stale cache entry expires on its own TTL.
            logger.warning(f"Cache invalidation failed for {user_id}: {type(exc).__name__}: {exc}")
