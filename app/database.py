"""Database engine, session factory and transaction helpers"""
from contextlib import contextmanager
from typing import Generator, Iterator
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import settings
from app.core.exceptions import ConflictError, InternalError, ServiceError, UnavailableError

logger = logging.getLogger(__name__)

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.DATABASE_ECHO
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# SQLSTATE codes that mean "try again" rather than "your request is wrong"
RETRYABLE_SQLSTATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available
}


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables (Alembic handles migrations in production)"""
    import app.models  # noqa: F401  registers mappers on Base.metadata
    Base.metadata.create_all(bind=engine)


def translate_db_error(exc: SQLAlchemyError) -> ServiceError:
    """Map a SQLAlchemy/driver error onto the service error taxonomy"""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)

    if isinstance(exc, IntegrityError):
        return ConflictError("Record conflicts with an existing record")
    if sqlstate in RETRYABLE_SQLSTATES:
        return UnavailableError("Concurrent update detected. Please retry.")
    if isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return UnavailableError("Database temporarily unavailable. Please try again later.")
    return InternalError("Unexpected database error")


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run a unit of work inside one store transaction.

    Commits only when the block finishes; any exception rolls everything back
    before propagating. Driver errors surface as tagged ServiceErrors.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Transaction rolled back: {e.__class__.__name__}: {e}")
        raise translate_db_error(e) from e
    except Exception:
        db.rollback()
        raise


def lock_key(db: Session, key: str) -> None:
    """
    Take a transaction-scoped advisory lock on ``key``.

    Released automatically on commit/rollback. No-op on backends without
    advisory locks (SQLite serializes writers on its own).
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:k))"), {"k": key})
