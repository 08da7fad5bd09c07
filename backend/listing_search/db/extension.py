import sqlite3
import threading

import sqlite_vec
import structlog

from listing_search.core.errors import ExtensionRegistrationError

logger = structlog.get_logger()

_lock = threading.Lock()
_loadable_path: str | None = None


def register_vector_extension() -> str:
    """
    Register sqlite-vec for the whole process.

    Runs its checks once; later calls return the cached loadable path. Must
    succeed before any pooled connection is created.
    """
    global _loadable_path
    with _lock:
        if _loadable_path is not None:
            return _loadable_path

        if not hasattr(sqlite3.Connection, "enable_load_extension"):
            raise ExtensionRegistrationError(
                "this Python build of sqlite3 cannot load extensions"
            )

        try:
            path = sqlite_vec.loadable_path()
            scratch = sqlite3.connect(":memory:")
            try:
                _load(scratch, path)
                (version,) = scratch.execute("SELECT vec_version()").fetchone()
            finally:
                scratch.close()
        except sqlite3.Error as exc:
            raise ExtensionRegistrationError(f"failed to load sqlite-vec: {exc}") from exc

        logger.info("Registered vector extension", sqlite_vec=version, sqlite=sqlite3.sqlite_version)
        _loadable_path = path
        return path


def is_registered() -> bool:
    return _loadable_path is not None


def load_vector_extension(conn: sqlite3.Connection) -> None:
    if not is_registered():
        raise ExtensionRegistrationError("vector extension used before registration")
    _load(conn, _loadable_path)


def _load(conn: sqlite3.Connection, path: str) -> None:
    conn.enable_load_extension(True)
    try:
        conn.load_extension(path)
    finally:
        conn.enable_load_extension(False)
