"""
Sale workflow definitions (``sales_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the two sale state machines and the central
resolution function that decides whether a requested status change is
legal, authorized and which guards must be checked.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* Every (from, to, role) triple absent from a table is rejected.

Failure modes
-------------
* ``IllegalTransitionError`` when no transition matches (from, to).
* ``PermissionDeniedError`` when a transition matches but the role (or
  ownership) does not.
* ``AuditError`` from ``replay_status`` on a discontinuous history.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from sales_kernel.domain.statuses import (
    FinancialStatus,
    OperationalStatus,
    Role,
    StatusTrack,
)
from sales_kernel.exceptions import (
    AuditError,
    IllegalTransitionError,
    PermissionDeniedError,
)


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the track services do.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    Contract: frozen.  ``roles`` lists who may request it; ``owner_only``
    restricts it further to the seller who owns the sale.
    ``stamps_responsible`` records the actor as the track's responsible.
    """
    from_state: str
    to_state: str
    action: str
    roles: frozenset[Role]
    guards: tuple[Guard, ...] = ()
    owner_only: bool = False
    stamps_responsible: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for one sale status field.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    """
    name: str
    track: StatusTrack
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()
    _index: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.initial_state not in self.states:
            raise ValueError(
                f"{self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.action} references unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.name}: terminal state {t.from_state!r} has outgoing transition"
                )
            self._index.setdefault((t.from_state, t.to_state), []).append(t)

    def candidates(self, from_state: str, to_state: str) -> tuple[Transition, ...]:
        """All transitions from ``from_state`` to ``to_state``."""
        return tuple(self._index.get((from_state, to_state), ()))

    def targets_from(self, from_state: str) -> tuple[str, ...]:
        """Distinct states reachable in one step from ``from_state``."""
        seen: list[str] = []
        for t in self.transitions:
            if t.from_state == from_state and t.to_state not in seen:
                seen.append(t.to_state)
        return tuple(seen)


# =============================================================================
# Guards
# =============================================================================

SERVICE_TYPE_SELECTED = Guard(
    name="service_type_selected",
    description="A service type must be set on the sale or supplied now",
)
PROVIDER_WHEN_REQUIRED = Guard(
    name="provider_when_required",
    description="A service provider must be supplied when the service type requires one",
)
RETURN_REASON_GIVEN = Guard(
    name="return_reason_given",
    description="A non-empty return reason is required",
)
CORRECTION_NOTE_GIVEN = Guard(
    name="correction_note_given",
    description="A seller correction must explain what was changed",
)
ALL_INSTALLMENTS_PAID = Guard(
    name="all_installments_paid",
    description="Every installment of the sale is paid",
)
OPERATIONALLY_COMPLETED = Guard(
    name="operationally_completed",
    description="The operational track is completed",
)


# =============================================================================
# Operational workflow
# =============================================================================

_OPS = frozenset({Role.OPERACIONAL, Role.ADMIN, Role.SUPERVISOR})
_SUPERVISION = frozenset({Role.SUPERVISOR, Role.ADMIN})
_FIN = frozenset({Role.FINANCEIRO, Role.ADMIN})

_O = OperationalStatus

_OPERATIONAL_TRANSITIONS: tuple[Transition, ...] = (
    *(
        Transition(
            from_state=src.value,
            to_state=_O.IN_PROGRESS.value,
            action="start_execution",
            roles=_OPS,
            guards=(SERVICE_TYPE_SELECTED, PROVIDER_WHEN_REQUIRED),
            stamps_responsible=True,
        )
        for src in (_O.PENDING, _O.CORRECTED, _O.RETURNED)
    ),
    Transition(
        from_state=_O.IN_PROGRESS.value,
        to_state=_O.COMPLETED.value,
        action="complete_execution",
        roles=_OPS,
        stamps_responsible=True,
    ),
    *(
        Transition(
            from_state=src.value,
            to_state=_O.RETURNED.value,
            action="return_to_seller",
            roles=_OPS,
            guards=(RETURN_REASON_GIVEN,),
        )
        for src in (_O.PENDING, _O.IN_PROGRESS, _O.CORRECTED)
    ),
    Transition(
        from_state=_O.RETURNED.value,
        to_state=_O.CORRECTED.value,
        action="mark_corrected",
        roles=_SUPERVISION,
    ),
    Transition(
        from_state=_O.RETURNED.value,
        to_state=_O.CORRECTED.value,
        action="resubmit_correction",
        roles=frozenset({Role.VENDEDOR}),
        guards=(CORRECTION_NOTE_GIVEN,),
        owner_only=True,
    ),
    *(
        Transition(
            from_state=src.value,
            to_state=_O.CANCELED.value,
            action="cancel",
            roles=frozenset({Role.ADMIN}),
        )
        for src in (_O.PENDING, _O.IN_PROGRESS, _O.RETURNED, _O.CORRECTED)
    ),
)

OPERATIONAL_WORKFLOW = Workflow(
    name="sale_operational",
    track=StatusTrack.OPERATIONAL,
    description="Execution lifecycle of a sale",
    initial_state=_O.PENDING.value,
    states=tuple(s.value for s in OperationalStatus),
    transitions=_OPERATIONAL_TRANSITIONS,
    terminal_states=(_O.COMPLETED.value, _O.CANCELED.value),
)


# =============================================================================
# Financial workflow
# =============================================================================

_F = FinancialStatus

_FINANCIAL_TRANSITIONS: tuple[Transition, ...] = (
    Transition(
        from_state=_F.PENDING.value,
        to_state=_F.IN_PROGRESS.value,
        action="start_analysis",
        roles=_FIN,
        stamps_responsible=True,
    ),
    Transition(
        from_state=_F.IN_PROGRESS.value,
        to_state=_F.COMPLETED.value,
        action="complete_collection",
        roles=_FIN,
        guards=(ALL_INSTALLMENTS_PAID,),
    ),
    Transition(
        from_state=_F.COMPLETED.value,
        to_state=_F.PAID.value,
        action="settle",
        roles=_FIN,
        guards=(OPERATIONALLY_COMPLETED,),
        stamps_responsible=True,
    ),
)

FINANCIAL_WORKFLOW = Workflow(
    name="sale_financial",
    track=StatusTrack.FINANCIAL,
    description="Collection and settlement lifecycle of a sale",
    initial_state=_F.PENDING.value,
    states=tuple(s.value for s in FinancialStatus),
    transitions=_FINANCIAL_TRANSITIONS,
    terminal_states=(_F.PAID.value,),
)


# =============================================================================
# Resolution
# =============================================================================


def resolve_transition(
    workflow: Workflow,
    *,
    sale_id: str,
    from_state: str,
    to_state: str,
    role: Role,
    actor_id: str,
    is_owner: bool,
) -> Transition:
    """
    Pick the transition that authorizes ``role`` to move ``from_state`` to
    ``to_state``.

    Legality is checked before authority: a change absent from the table
    is illegal for everybody.  Guards are returned unevaluated on the
    transition.

    Raises:
        IllegalTransitionError: No transition (from_state, to_state) exists.
        PermissionDeniedError: The role is not listed, or the transition is
            owner-only and the actor does not own the sale.
    """
    candidates = workflow.candidates(from_state, to_state)
    if not candidates:
        raise IllegalTransitionError(
            sale_id, workflow.track.value, from_state, to_state
        )

    allowed = [t for t in candidates if role in t.roles]
    if not allowed:
        raise PermissionDeniedError(
            actor_id, role.value, f"move {workflow.track.value} status to {to_state!r}"
        )

    for transition in allowed:
        if not transition.owner_only or is_owner:
            return transition

    raise PermissionDeniedError(
        actor_id,
        role.value,
        f"move {workflow.track.value} status to {to_state!r}",
        reason="only the seller who owns the sale may do this",
    )


def replay_status(entries: Iterable, workflow: Workflow) -> str:
    """
    Reconstruct a track's current status from its history entries.

    ``entries`` are status history records (oldest first) exposing
    ``track``, ``from_status`` and ``to_status``.  Entries of other tracks
    are ignored.  A track with no entries is in its initial state.

    Raises:
        AuditError: An entry does not start where the previous one ended.
    """
    current = workflow.initial_state
    for entry in entries:
        track = getattr(entry.track, "value", entry.track)
        if track != workflow.track.value:
            continue
        # The creation entry starts from the empty status.
        if entry.from_status and entry.from_status != current:
            raise AuditError(
                f"{workflow.name}: history jumps from {current!r} "
                f"to an entry starting at {entry.from_status!r}"
            )
        current = entry.to_status
    return current
