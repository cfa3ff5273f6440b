"""
SequenceService -- tracking-number allocation via locked counter rows.

Responsibility:
    Provides strictly increasing tracking numbers per document kind (and,
    where numbering is per company, per company).  Uses a dedicated counter
    table with row-level locking (``SELECT ... FOR UPDATE``) so concurrent
    creations never receive the same number.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by DocumentService when a document is created.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value.  The aggregate-max-plus-one pattern is never used.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value.
    - The first number of a fresh sequence is ``base + 1``.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_kernel.domain.workflow import DocumentKind
from approval_kernel.logging_config import get_logger
from approval_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")

DEFAULT_TRACKING_BASE = 1000

# Kinds numbered independently for each company.
_PER_COMPANY_KINDS = frozenset({DocumentKind.PAYMENT_ORDER, DocumentKind.WAREHOUSE_DISPATCH})


def tracking_sequence_name(kind: DocumentKind, company: str | None) -> str:
    """Counter name for a kind's tracking numbers."""
    if kind in _PER_COMPANY_KINDS and company:
        return f"{kind.value}:{company}"
    return kind.value


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT fill gaps left by deleted documents.
    """

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str, base: int = 0) -> int:
        """
        Get the next value for a named sequence.

        Locks the counter row (creating it at ``base`` on first use),
        increments it and returns the new value.

        Args:
            sequence_name: Name of the sequence.
            base: Starting point for a sequence that does not exist yet.

        Returns:
            The next sequence value (> base).
        """
        # Cached counters may be stale when expire_on_commit=False
        self._session.expire_all()

        counter = self._lock_counter(sequence_name)

        if counter is None:
            # Savepoint so a lost creation race doesn't roll back other work
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=base + 1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": base + 1},
                )
                return base + 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                self._session.expire_all()
                counter = self._lock_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_tracking_number(
        self,
        kind: DocumentKind,
        company: str | None = None,
        base: int = DEFAULT_TRACKING_BASE,
    ) -> int:
        """Allocate the next tracking number for ``kind`` (and ``company``)."""
        return self.next_value(tracking_sequence_name(kind, company), base=base)

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Reset a sequence to a specific value.

        Used by administrators to move a company's numbering base.  Values
        below already-issued numbers will collide on the unique constraint.
        """
        counter = self._lock_counter(sequence_name)

        if counter is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        else:
            counter.current_value = value

        self._session.flush()
        logger.info(
            "sequence_reset",
            extra={"sequence_name": sequence_name, "value": value},
        )

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
