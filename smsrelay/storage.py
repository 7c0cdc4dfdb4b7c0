import logging
import os
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import create_engine, inspect, text, update
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from smsrelay.config import settings
from smsrelay.errors import StorageError
from smsrelay.models import Base, MessageRecord

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 200
MAX_LIST_LIMIT = 500


def build_engine(database_url: str) -> Engine:
    """Create an engine, with the SQLite settings needed under FastAPI's threadpool."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # check_same_thread=False is required for SQLite to work with FastAPI's async
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, echo=False)


engine = build_engine(settings.DATABASE_URL)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return
    database = url.database
    if not database or database == ":memory:":
        return
    directory = os.path.dirname(os.path.abspath(database))
    os.makedirs(directory, exist_ok=True)


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    bind = bind or engine
    logger.debug(f"Initializing database with URL: {bind.url!r}")
    try:
        ensure_sqlite_directory(str(bind.url))
        Base.metadata.create_all(bind=bind)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_health(bind: Optional[Engine] = None) -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    bind = bind or engine
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
            if not inspect(conn).has_table(MessageRecord.__tablename__):
                logger.error("Database schema not applied: 'messages' table not found")
                return False
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def clamp_limit(limit: Optional[int]) -> int:
    """Bound a caller supplied page size to [1, MAX_LIST_LIMIT]."""
    if limit is None:
        return DEFAULT_LIST_LIMIT
    return max(1, min(int(limit), MAX_LIST_LIMIT))


# =============================================================================
# Message Store
# =============================================================================

class MessageStore:
    """
    Durable log of message records.

    Each operation runs in its own session, so the store can be shared by
    concurrent requests. Every write touches at most one logical record.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def insert(self, record: MessageRecord) -> int:
        """
        Persist a new record and return its store-assigned id.

        Raises:
            StorageError: a required field is missing or the database failed.
        """
        if record.created_at is None:
            record.created_at = utc_timestamp()

        logger.info(
            f"Inserting message: direction={record.direction}, "
            f"provider_message_id={record.provider_message_id}"
        )
        logger.debug(f"Message details: from={record.from_number}, to={record.to_number}, status={record.status}")

        with self._session_factory() as db:
            try:
                db.add(record)
                db.commit()
                db.refresh(record)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to insert message: {e}")
                raise StorageError("Failed to store message", detail=str(e)) from e

        logger.info(f"Message stored: id={record.id}")
        return record.id

    def update_status(self, provider_message_id: Optional[str], new_status: str) -> int:
        """
        Set ``status`` on every record carrying ``provider_message_id``.

        Returns:
            Number of records updated. 0 means nothing to reconcile yet; a
            missing id is never looked up.
        """
        if not provider_message_id:
            logger.warning("Status update without provider message id ignored")
            return 0

        stmt = (
            update(MessageRecord)
            .where(MessageRecord.provider_message_id == provider_message_id)
            .values(status=new_status)
        )
        with self._session_factory() as db:
            try:
                result = db.execute(stmt)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to update status for {provider_message_id}: {e}")
                raise StorageError("Failed to update message status", detail=str(e)) from e

        affected = result.rowcount or 0
        logger.info(f"Status update: provider_message_id={provider_message_id}, status={new_status}, affected={affected}")
        return affected

    def list(self, limit: Optional[int] = DEFAULT_LIST_LIMIT) -> List[MessageRecord]:
        """Return the most recent records, newest (highest id) first."""
        limit = clamp_limit(limit)
        with self._session_factory() as db:
            try:
                records = (
                    db.query(MessageRecord)
                    .order_by(MessageRecord.id.desc())
                    .limit(limit)
                    .all()
                )
            except SQLAlchemyError as e:
                logger.error(f"Failed to list messages: {e}")
                raise StorageError("DB error", detail=str(e)) from e

        logger.debug(f"Listed {len(records)} messages (limit={limit})")
        return records
