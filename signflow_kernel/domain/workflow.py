"""
Canonical lifecycle tables (``signflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing which status changes are legal for envelopes,
signers and documents.  The services use ``ensure_transition()`` before every
status write and the ORM immutability listeners consult the same tables, so
there is exactly one definition of "legal".

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* ``terminal_states`` have no outgoing transitions, except
  COMPLETED -> ARCHIVED which only the archival sweep performs.
"""

from __future__ import annotations

from dataclasses import dataclass

from signflow_kernel.domain.statuses import DocumentStatus, EnvelopeStatus, SignerStatus
from signflow_kernel.exceptions import IllegalTransitionError


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    Contract: frozen.  ``action`` names the operation that performs it.
    """
    from_state: str
    to_state: str
    action: str


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an entity lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"{self.name}: transition {t} references unknown state")

    def allows(self, from_state: str, to_state: str) -> bool:
        """True iff ``from_state -> to_state`` is listed (or is a no-op)."""
        if from_state == to_state:
            return True
        return any(
            t.from_state == from_state and t.to_state == to_state
            for t in self.transitions
        )

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


def _t(from_state: str, to_state: str, action: str) -> Transition:
    return Transition(from_state=from_state, to_state=to_state, action=action)


_E = EnvelopeStatus
_S = SignerStatus
_D = DocumentStatus


ENVELOPE_WORKFLOW = Workflow(
    name="envelope",
    description="Envelope lifecycle driven by signer actions, revocation and sweeps",
    initial_state=_E.PENDING,
    states=tuple(_E),
    transitions=(
        _t(_E.PENDING, _E.IN_PROGRESS, "send"),
        _t(_E.PENDING, _E.COMPLETED, "sign"),
        _t(_E.PENDING, _E.DECLINED, "decline"),
        _t(_E.PENDING, _E.REVOKED, "revoke"),
        _t(_E.PENDING, _E.EXPIRED, "expire"),
        _t(_E.IN_PROGRESS, _E.COMPLETED, "sign"),
        _t(_E.IN_PROGRESS, _E.DECLINED, "decline"),
        _t(_E.IN_PROGRESS, _E.REVOKED, "revoke"),
        _t(_E.IN_PROGRESS, _E.EXPIRED, "expire"),
        _t(_E.COMPLETED, _E.ARCHIVED, "archive"),
    ),
    terminal_states=(_E.COMPLETED, _E.DECLINED, _E.REVOKED, _E.EXPIRED, _E.ARCHIVED),
)

SIGNER_WORKFLOW = Workflow(
    name="signer",
    description="A signer leaves PENDING exactly once",
    initial_state=_S.PENDING,
    states=tuple(_S),
    transitions=(
        _t(_S.PENDING, _S.SIGNED, "sign"),
        _t(_S.PENDING, _S.DECLINED, "decline"),
        _t(_S.PENDING, _S.REVOKED, "revoke"),
        _t(_S.PENDING, _S.EXPIRED, "expire"),
    ),
    terminal_states=(_S.SIGNED, _S.DECLINED, _S.REVOKED, _S.EXPIRED),
)

DOCUMENT_WORKFLOW = Workflow(
    name="document",
    description="Document status mirrors its envelope",
    initial_state=_D.DRAFT,
    states=tuple(_D),
    transitions=(
        _t(_D.DRAFT, _D.SENT, "send"),
        _t(_D.DRAFT, _D.COMPLETED, "sign"),
        _t(_D.DRAFT, _D.DECLINED, "decline"),
        _t(_D.DRAFT, _D.REVOKED, "revoke"),
        _t(_D.DRAFT, _D.EXPIRED, "expire"),
        _t(_D.SENT, _D.COMPLETED, "sign"),
        _t(_D.SENT, _D.DECLINED, "decline"),
        _t(_D.SENT, _D.REVOKED, "revoke"),
        _t(_D.SENT, _D.EXPIRED, "expire"),
        _t(_D.COMPLETED, _D.ARCHIVED, "archive"),
    ),
    terminal_states=(_D.COMPLETED, _D.DECLINED, _D.REVOKED, _D.EXPIRED, _D.ARCHIVED),
)


def ensure_transition(
    workflow: Workflow,
    entity_id: object,
    from_state: str,
    to_state: str,
) -> None:
    """Raise IllegalTransitionError unless the workflow lists the change."""
    if not workflow.allows(from_state, to_state):
        raise IllegalTransitionError(
            entity_type=workflow.name,
            entity_id=str(entity_id),
            from_status=str(getattr(from_state, "value", from_state)),
            to_status=str(getattr(to_state, "value", to_state)),
        )
