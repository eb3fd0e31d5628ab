from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from swms.config import settings
from swms.errors import LedgerError, TransactionFailure
from swms.logging_config import get_logger

logger = get_logger("db")


class Base(DeclarativeBase):
    pass


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kw: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite:"):
            # one shared connection, otherwise every checkout sees an empty db
            kw["poolclass"] = StaticPool
        return kw
    kw = {"pool_pre_ping": True}
    if url.startswith("postgresql") and settings.STATEMENT_TIMEOUT_MS > 0:
        kw["connect_args"] = {"options": f"-c statement_timeout={settings.STATEMENT_TIMEOUT_MS}"}
    return kw


engine = create_engine(settings.DB_URL, **_engine_kwargs(settings.DB_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session, op: str) -> Iterator[Session]:
    """
    All-or-nothing scope for ledger writes.

    Commits on normal exit. On any error the session is rolled back; ledger
    errors are re-raised as-is, persistence errors are logged with detail and
    surfaced as an opaque TransactionFailure.
    """
    try:
        yield db
        db.commit()
    except LedgerError:
        db.rollback()
        logger.info("transaction_rolled_back", extra={"op": op})
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("transaction_failed", extra={"op": op}, exc_info=True)
        raise TransactionFailure(op) from e
    except Exception:
        db.rollback()
        logger.error("transaction_failed", extra={"op": op}, exc_info=True)
        raise
