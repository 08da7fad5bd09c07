import queue
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import structlog

from listing_search.core.config import default_pool_size
from listing_search.core.errors import InvalidArgumentError, OpenError, StorageUnavailableError
from listing_search.db.extension import load_vector_extension, register_vector_extension

logger = structlog.get_logger()

MEMORY = ":memory:"


class ConnectionPool:
    """
    Bounded pool of SQLite connections with sqlite-vec loaded.

    Connections are opened lazily up to `size` and handed out one thread at a
    time through `checkout()`.
    """

    def __init__(self, target: str, size: int | None = None, timeout: float = 30.0):
        if size is None:
            size = default_pool_size()
        if size < 1:
            raise InvalidArgumentError(f"pool size must be at least 1, got {size}")

        self.target = target
        self.size = size
        self.timeout = timeout

        if self.is_memory:
            # Every connection must see the same in-memory database
            self._uri = f"file:listings-{uuid.uuid4().hex}?mode=memory&cache=shared"
        else:
            path = Path(target)
            if not path.is_file():
                raise OpenError(f"database file not found: {target}")
            self._uri = f"{path.resolve().as_uri()}?mode=rw"

        self._idle: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue(maxsize=size)
        self._created = 0
        self._lock = threading.Lock()
        self._closed = False

        register_vector_extension()
        conn = None
        try:
            conn = self._connect()
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except sqlite3.Error as exc:
            if conn is not None:
                conn.close()
            raise OpenError(f"cannot open database {target}: {exc}") from exc
        self._idle.put_nowait(conn)
        self._created = 1

        logger.info("Opened connection pool", target=target, size=size)

    @classmethod
    def open(cls, target: str | Path, size: int | None = None, timeout: float = 30.0) -> "ConnectionPool":
        return cls(str(target), size=size, timeout=timeout)

    @classmethod
    def in_file(cls, path: str | Path, size: int | None = None, timeout: float = 30.0) -> "ConnectionPool":
        return cls(str(path), size=size, timeout=timeout)

    @classmethod
    def in_memory(cls, size: int | None = None, timeout: float = 30.0) -> "ConnectionPool":
        return cls(MEMORY, size=size, timeout=timeout)

    @property
    def is_memory(self) -> bool:
        return self.target == MEMORY

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._uri, uri=True, check_same_thread=False)
        try:
            load_vector_extension(conn)
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _acquire(self) -> sqlite3.Connection:
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            grow = self._created < self.size
            if grow:
                self._created += 1
        if grow:
            try:
                return self._connect()
            except sqlite3.Error as exc:
                with self._lock:
                    self._created -= 1
                raise StorageUnavailableError(f"cannot open connection: {exc}") from exc

        try:
            return self._idle.get(timeout=self.timeout)
        except queue.Empty:
            raise StorageUnavailableError(
                f"no database connection released within {self.timeout:.1f}s"
            ) from None

    def _release(self, conn: sqlite3.Connection) -> None:
        if self._closed:
            conn.close()
            return
        if conn.in_transaction:
            try:
                conn.rollback()
            except sqlite3.Error as exc:
                logger.warning("Discarding connection after failed rollback", error=str(exc))
                conn.close()
                self._replace()
                return
        self._idle.put_nowait(conn)

    def _replace(self) -> None:
        # Waiters block on the idle queue, so a freed slot is refilled here
        try:
            self._idle.put_nowait(self._connect())
        except sqlite3.Error as exc:
            logger.warning("Could not replace discarded connection", error=str(exc))
            with self._lock:
                self._created -= 1

    @contextmanager
    def checkout(self) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise StorageUnavailableError("connection pool is closed")
        conn = self._acquire()
        try:
            yield conn
        finally:
            self._release(conn)

    def close(self) -> None:
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()
        logger.info("Closed connection pool", target=self.target)
