import logging
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

_MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_MIGRATION_LEDGER = """
    CREATE TABLE IF NOT EXISTS applied_migrations (
        name        TEXT PRIMARY KEY,
        applied_at  DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
"""


def _enable_sqlite_features(dbapi_conn, _connection_record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    The intake store's SQLAlchemy engine over one SQLite file.

    Built once by the application lifespan and handed to the repository.
    The engine's queue pool holds at most `pool_size` connections; a caller
    that finds them all checked out waits `pool_timeout` seconds and then
    gets `sqlalchemy.exc.TimeoutError`.
    """

    def __init__(self, db_path: str, pool_size: int = 5, pool_timeout: float = 10.0) -> None:
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self.engine: Engine = create_engine(
            f"sqlite:///{db_path}",
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": 10},
        )
        event.listen(self.engine, "connect", _enable_sqlite_features)

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed | db=%s", self.db_path)


def run_migrations(db: Database) -> list[str]:
    """Apply migration files not yet recorded in `applied_migrations`, in name order."""
    with db.engine.begin() as conn:
        conn.execute(text(_MIGRATION_LEDGER))
        done = set(conn.execute(text("SELECT name FROM applied_migrations")).scalars())

    pending = [path for path in sorted(_MIGRATIONS_DIR.glob("*.sql")) if path.name not in done]
    for path in pending:
        logger.info("Applying migration: %s", path.name)
        # Migration files hold several statements, which only the driver's executescript accepts.
        raw = db.engine.raw_connection()
        try:
            cursor = raw.cursor()
            cursor.executescript(path.read_text())
            cursor.execute("INSERT INTO applied_migrations (name) VALUES (?)", (path.name,))
            raw.commit()
        finally:
            raw.close()
    return [path.name for path in pending]
