"""
BaseService -- abstract base for the sale track services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service below the orchestrator.  Services receive a SQLAlchemy
    ``Session`` and persist via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back.  SaleOrchestrator owns commit/rollback,
    so a sale mutation, its ledger changes and its history entry are
    always persisted together or not at all.
"""

from abc import ABC

from sqlalchemy.orm import Session

from sales_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Preconditions:
            - ``session`` is a valid, open SQLAlchemy session.
        """
        self.session = session
        self.clock = clock or SystemClock()
