from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from settlement_hub.config import settings
from settlement_hub.errors import Busy, Conflict, LedgerIntegrityError
from settlement_hub.logging_config import get_logger

logger = get_logger(__name__)

BALANCE_CHECK_NAME = "ck_accounts_balance_non_negative"
# largest value a 64-bit integer column holds; larger binds overflow the driver
BIGINT_MAX = 2**63 - 1
_LOCK_TIMEOUT_MARKERS = (
    "database is locked",
    "lock timeout",
    "could not obtain lock",
    "deadlock detected",
)


def _connect_args(db_url: str) -> dict:
    if db_url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": settings.db_busy_timeout_seconds}
    return {}


engine = create_engine(settings.db_url, connect_args=_connect_args(settings.db_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _is_lock_timeout(exc: OperationalError) -> bool:
    message = str(exc.orig).lower()
    return any(marker in message for marker in _LOCK_TIMEOUT_MARKERS)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Run a unit of work that either fully commits or fully rolls back.

    Nested use joins the outermost unit; only the outermost block commits.
    Lock waits that time out surface as ``Busy`` and a tripped balance
    CHECK constraint as ``LedgerIntegrityError``.
    """
    depth = db.info.get("uow_depth", 0)
    db.info["uow_depth"] = depth + 1
    try:
        yield db
        if depth == 0:
            db.commit()
    except OperationalError as exc:
        if depth == 0:
            db.rollback()
        if _is_lock_timeout(exc):
            logger.warning("Lock wait timed out, rolled back: %s", exc.orig)
            raise Busy() from exc
        raise
    except IntegrityError as exc:
        if depth == 0:
            db.rollback()
        if BALANCE_CHECK_NAME in str(exc.orig):
            logger.error("Balance floor constraint tripped: %s", exc.orig)
            raise LedgerIntegrityError(str(exc.orig)) from exc
        logger.warning("Write rejected by a constraint: %s", exc.orig)
        raise Conflict("duplicate record") from exc
    except BaseException:
        if depth == 0:
            db.rollback()
        raise
    finally:
        db.info["uow_depth"] = depth
