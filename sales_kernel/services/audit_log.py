"""
AuditLog -- append-only, hash-chained sale status history.

Responsibility:
    Records every accepted status change of a sale in
    ``sales_status_history`` within the caller's transaction, returns a
    sale's history oldest first, and validates the per-sale hash chain.

Architecture position:
    Kernel > Services -- imperative shell, called by the operational and
    financial track services and by SaleOrchestrator.

Invariants enforced:
    - Append-only: there is no update or delete API; the model rejects
      ORM updates and deletes.
    - ``seq`` comes from SequenceService (locked counter row), so entries
      are totally ordered in commit order.
    - hash = H(sale_id | seq | track | from | to | payload_hash | prev_hash)
      where prev_hash is the hash of the sale's previous entry.

Failure modes:
    - AuditChainBrokenError from ``verify_chain`` on a recomputed hash
      mismatch or a broken prev_hash link.

Audit relevance:
    This IS the audit trail of a sale.  Replaying a track's entries
    (``replay_status``) reproduces the sale's current status field.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from sales_kernel.domain.clock import Clock
from sales_kernel.domain.dtos import StatusHistoryEntry
from sales_kernel.domain.statuses import StatusTrack
from sales_kernel.exceptions import AuditChainBrokenError
from sales_kernel.logging_config import get_logger
from sales_kernel.models.status_history import StatusHistoryModel
from sales_kernel.services.base import BaseService
from sales_kernel.services.sequence_service import SequenceService
from sales_kernel.utils.hashing import hash_status_entry

logger = get_logger("services.audit_log")


class AuditLog(BaseService):
    """
    Service for writing and reading the sale status history.

    Contract:
        ``record`` flushes one new entry; the caller commits it together
        with the mutation it documents.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT decide whether a transition is legal.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._sequence_service = SequenceService(session)

    def record(
        self,
        sale_id: UUID,
        from_status: str,
        to_status: str,
        actor_id: UUID,
        note: str | None = None,
        track: StatusTrack = StatusTrack.OPERATIONAL,
    ) -> StatusHistoryEntry:
        """
        Append one status change to the sale's history.

        Postconditions:
            - A new row is flushed with a fresh ``seq`` and a hash linked
              to the sale's previous entry.
        """
        seq = self._sequence_service.next_value(SequenceService.STATUS_HISTORY)
        prev_hash = self._last_hash(sale_id)
        track_value = StatusTrack(track).value
        from_value = from_status or ""

        entry_hash = hash_status_entry(
            sale_id=sale_id,
            seq=seq,
            track=track_value,
            from_status=from_value,
            to_status=to_status,
            user_id=actor_id,
            notes=note,
            prev_hash=prev_hash,
        )

        row = StatusHistoryModel(
            sale_id=sale_id,
            seq=seq,
            track=track_value,
            from_status=from_value,
            to_status=to_status,
            user_id=actor_id,
            notes=note,
            created_at=self.clock.now(),
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "status_history_recorded",
            extra={
                "sale_id": str(sale_id),
                "seq": seq,
                "track": track_value,
                "from_status": from_value,
                "to_status": to_status,
            },
        )
        return row.to_dto()

    def history(self, sale_id: UUID) -> tuple[StatusHistoryEntry, ...]:
        """All history entries of a sale, oldest first."""
        return tuple(row.to_dto() for row in self._rows(sale_id))

    def verify_chain(self, sale_id: UUID) -> bool:
        """
        Validate the hash chain of a sale's history.

        Raises:
            AuditChainBrokenError: If an entry's stored hash or its link to
                the previous entry does not match.
        """
        expected_prev: str | None = None
        for row in self._rows(sale_id):
            if row.prev_hash != expected_prev:
                logger.critical(
                    "status_history_chain_broken",
                    extra={"sale_id": str(sale_id), "seq": row.seq},
                )
                raise AuditChainBrokenError(
                    str(sale_id), row.seq, expected_prev or "None", row.prev_hash or "None"
                )

            recomputed = hash_status_entry(
                sale_id=row.sale_id,
                seq=row.seq,
                track=row.track,
                from_status=row.from_status,
                to_status=row.to_status,
                user_id=row.user_id,
                notes=row.notes,
                prev_hash=row.prev_hash,
            )
            if recomputed != row.hash:
                logger.critical(
                    "status_history_chain_broken",
                    extra={"sale_id": str(sale_id), "seq": row.seq},
                )
                raise AuditChainBrokenError(str(sale_id), row.seq, recomputed, row.hash)

            expected_prev = row.hash
        return True

    def _rows(self, sale_id: UUID) -> list[StatusHistoryModel]:
        return list(
            self.session.execute(
                select(StatusHistoryModel)
                .where(StatusHistoryModel.sale_id == sale_id)
                .order_by(StatusHistoryModel.seq)
            ).scalars()
        )

    def _last_hash(self, sale_id: UUID) -> str | None:
        return self.session.execute(
            select(StatusHistoryModel.hash)
            .where(StatusHistoryModel.sale_id == sale_id)
            .order_by(StatusHistoryModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
