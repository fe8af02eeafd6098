"""
Transactional envelope for multi-step booking writes.

Booking creation claims a seat and then inserts the booking. Where the
database supports transactions both steps commit together
(``AtomicExecutor``). Where it does not, the claim is committed on its own
and undone by an explicit compensation if a later step fails
(``CompensatingExecutor``). Business code is written against
``TransactionalExecutor`` and calls ``uow.checkpoint()`` /
``uow.add_compensation()``; both are no-ops under the atomic executor.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, TypeVar
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, NotSupportedError
from sqlalchemy.orm import Session
import logging

from src.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Error text emitted by engines (or proxies in front of them) that cannot run
# multi-statement transactions
TRANSACTION_UNSUPPORTED_MARKERS = (
    "transaction numbers are only allowed",
    "replica set",
    "does not support transactions",
    "transactions are not supported",
)


def is_transaction_unsupported(exc: BaseException) -> bool:
    """True when an error means the database cannot run a transaction"""
    while exc is not None:
        if isinstance(exc, NotSupportedError):
            return True
        if isinstance(exc, DBAPIError):
            text = str(exc).lower()
            if any(marker in text for marker in TRANSACTION_UNSUPPORTED_MARKERS):
                return True
        exc = exc.__cause__
    return False


class UnitOfWork:
    """Handle passed to the work function by an executor"""

    def __init__(self, db: Session, atomic: bool):
        self.db = db
        self.atomic = atomic
        self._compensations: List[Callable[[], Any]] = []

    def checkpoint(self) -> None:
        """Make the writes so far durable on their own (compensating mode only)"""
        if not self.atomic:
            self.db.commit()

    def add_compensation(self, undo: Callable[[], Any]) -> None:
        """Register an undo step for writes already committed by a checkpoint"""
        if not self.atomic:
            self._compensations.append(undo)

    def compensate(self) -> None:
        """Run registered undo steps newest first; failures are logged, not raised"""
        for undo in reversed(self._compensations):
            try:
                undo()
            except Exception:
                self.db.rollback()
                logger.exception("Compensation step %r failed", undo)
        self._compensations.clear()


class TransactionalExecutor(ABC):
    """Runs a unit of work against a session"""

    mode: str = ""

    @abstractmethod
    def run(self, db: Session, work: Callable[[UnitOfWork], T]) -> T:
        pass


class AtomicExecutor(TransactionalExecutor):
    """All writes of the unit commit or roll back together"""

    mode = "atomic"

    def run(self, db: Session, work: Callable[[UnitOfWork], T]) -> T:
        try:
            result = work(UnitOfWork(db, atomic=True))
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise


class CompensatingExecutor(TransactionalExecutor):
    """Checkpointed writes stay committed; failures run the registered compensations"""

    mode = "compensating"

    def run(self, db: Session, work: Callable[[UnitOfWork], T]) -> T:
        uow = UnitOfWork(db, atomic=False)
        try:
            result = work(uow)
            db.commit()
            return result
        except Exception:
            db.rollback()
            uow.compensate()
            raise


class FallbackExecutor(TransactionalExecutor):
    """Try the primary executor; rerun once with the fallback if transactions are unavailable"""

    mode = "auto"

    def __init__(
        self,
        primary: Optional[TransactionalExecutor] = None,
        fallback: Optional[TransactionalExecutor] = None
    ):
        self.primary = primary or AtomicExecutor()
        self.fallback = fallback or CompensatingExecutor()

    def run(self, db: Session, work: Callable[[UnitOfWork], T]) -> T:
        try:
            return self.primary.run(db, work)
        except Exception as exc:
            if not is_transaction_unsupported(exc):
                raise
            logger.warning(
                "Transactions not supported (%s); retrying with %s executor",
                exc, self.fallback.mode
            )
            return self.fallback.run(db, work)


def probe_transaction_support(engine: Engine) -> bool:
    """Check once whether the engine can open a transaction with a savepoint"""
    try:
        with engine.connect() as connection:
            transaction = connection.begin()
            try:
                savepoint = connection.begin_nested()
                savepoint.rollback()
            finally:
                transaction.rollback()
        return True
    except DBAPIError as exc:
        if is_transaction_unsupported(exc):
            logger.warning("Transaction probe failed, using compensating writes: %s", exc)
            return False
        raise


_executors: Dict[Engine, TransactionalExecutor] = {}


def get_transaction_executor(bind: Engine, mode: Optional[str] = None) -> TransactionalExecutor:
    """Executor for the configured TRANSACTION_MODE, probed once per engine in auto mode"""
    mode = (mode or settings.TRANSACTION_MODE).lower()
    if mode == AtomicExecutor.mode:
        return AtomicExecutor()
    if mode == CompensatingExecutor.mode:
        return CompensatingExecutor()
    if mode != FallbackExecutor.mode:
        raise ValueError(f"Unknown TRANSACTION_MODE: {mode}")

    executor = _executors.get(bind)
    if executor is None:
        if probe_transaction_support(bind):
            executor = FallbackExecutor(AtomicExecutor(), CompensatingExecutor())
        else:
            executor = CompensatingExecutor()
        _executors[bind] = executor
        logger.info("Using %s transactional executor for %s", executor.mode, bind.url.render_as_string(hide_password=True))
    return executor
