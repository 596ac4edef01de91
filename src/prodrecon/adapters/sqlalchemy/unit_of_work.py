"""Process-wide database handle and the SQLAlchemy unit of work.

``startup`` binds one engine per process, migrates it to head and keeps a
session factory; every ``SqlAlchemyUnitOfWork`` opens a fresh session from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final, Literal

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, SessionTransaction, sessionmaker

from prodrecon.adapters.sqlalchemy.mappings import start_mappers
from prodrecon.adapters.sqlalchemy.migrations import schema_revision, upgrade_head
from prodrecon.adapters.sqlalchemy.repositories import (
    SqlAlchemyJobRepository,
    SqlAlchemyLinkRepository,
    SqlAlchemyProductRepository,
    SqlAlchemySuggestionRepository,
    SqlAlchemyUnlinkRepository,
)
from prodrecon.config import get_database_config
from prodrecon.domain.ports.unit_of_work import ReconciliationRepositories

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Connection, Engine

log = getLogger(__name__)

SQLITE_BUSY_TIMEOUT_MS: Final[int] = 30_000
_WRITER_OPTION: Final[str] = "prodrecon_writer"


class StartupError(RuntimeError):
    """Raised when the database handle is missing, or opened twice."""


@dataclass(frozen=True, slots=True)
class _Database:
    engine: Engine
    writers: sessionmaker[Session]
    readers: sessionmaker[Session]


_database: _Database | None = None


def _sqlite_on_connect(dbapi_connection: Any, connection_record: Any) -> None:
    _ = connection_record
    # SQLAlchemy emits BEGIN itself, otherwise SAVEPOINT misbehaves under pysqlite
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    # readers see the last commit instead of queueing behind an open writer
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _sqlite_on_begin(connection: Connection) -> None:
    # writers queue on the lock up front instead of failing to upgrade a read mid-chunk
    if connection.get_execution_options().get(_WRITER_OPTION, False):
        connection.exec_driver_sql("BEGIN IMMEDIATE")
    else:
        connection.exec_driver_sql("BEGIN")


def prepare_engine(engine: Engine) -> Engine:
    if engine.dialect.name == "sqlite" and not event.contains(
        engine, "connect", _sqlite_on_connect
    ):
        event.listen(engine, "connect", _sqlite_on_connect)
        event.listen(engine, "begin", _sqlite_on_begin)
    return engine


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Open the database (``DATABASE_URI`` or the data dir by default) and migrate it."""

    global _database
    if _database is not None and not force:
        raise StartupError("Database already open; pass force=True to reopen it")

    resolved = prepare_engine(
        engine or create_engine(database_uri or get_database_config().uri, future=True)
    )
    start_mappers()
    upgrade_head(engine=resolved)
    _database = _Database(
        engine=resolved,
        writers=sessionmaker(
            bind=resolved.execution_options(**{_WRITER_OPTION: True}), expire_on_commit=False
        ),
        readers=sessionmaker(bind=resolved, expire_on_commit=False),
    )
    log.info(
        "Database %s at schema revision %s",
        resolved.url.render_as_string(hide_password=True),
        schema_revision(resolved),
    )


def is_started() -> bool:
    return _database is not None


def shutdown() -> None:
    global _database
    if _database is not None:
        _database.engine.dispose()
    _database = None


class SqlAlchemyUnitOfWork:
    """One session per ``with`` block over the product, link and job tables.

    Leaving the block with an exception rolls back; otherwise callers commit
    explicitly, and anything left uncommitted is discarded on close. On SQLite a
    writer takes the write lock when its transaction begins; a ``read_only``
    unit of work reads the last committed state without waiting for writers.
    """

    def __init__(self, *, read_only: bool = False) -> None:
        if _database is None:
            raise StartupError(
                "Database not open; call prodrecon.adapters.sqlalchemy.startup() first"
            )
        self.read_only = read_only
        self._sessions = _database.readers if read_only else _database.writers
        self._session: Session | None = None
        self._repositories: ReconciliationRepositories | None = None

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        if self._session is not None:
            raise StartupError("Unit of work is already in use")
        session = self._sessions()
        self._session = session
        self._repositories = ReconciliationRepositories(
            products=SqlAlchemyProductRepository(session),
            links=SqlAlchemyLinkRepository(session),
            suggestions=SqlAlchemySuggestionRepository(session),
            unlinks=SqlAlchemyUnlinkRepository(session),
            jobs=SqlAlchemyJobRepository(session),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        session = self.session
        if exc_type is not None:
            session.rollback()
        session.close()
        self._session = None
        self._repositories = None
        return False

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work used outside its with block")
        return self._session

    @property
    def repositories(self) -> ReconciliationRepositories:
        if self._repositories is None:
            raise StartupError("Unit of work used outside its with block")
        return self._repositories

    def savepoint(self) -> SessionTransaction:
        return self.session.begin_nested()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


if TYPE_CHECKING:
    from prodrecon.domain.ports.unit_of_work import ReconciliationUnitOfWork

    _uow_check: ReconciliationUnitOfWork = SqlAlchemyUnitOfWork()
