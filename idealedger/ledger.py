"""Role ledger: the per-idea collection of role assignments.

Owns the equity, debt and date invariants. Mutating functions flush but do not
commit; run them inside :func:`idealedger.db.idea_mutation` so the
read-validate-write sequence is serialized per idea and committed atomically.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from idealedger.errors import (
    ConflictError, EquityExceededError, NotFoundError, ProtectedRoleError, UserNotFoundError,
)
from idealedger.models import Idea, RoleAssignment, User
from idealedger.roles import (
    OWNER_EQUITY, EquityStake, RoleKind, build_terms, parse_assignable_kind, terms_to_columns,
)
from idealedger.utils import normalize_email

log = logging.getLogger(__name__)

EQUITY_CAP = Decimal(100)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def assignments(session: Session, idea_id: str) -> list[RoleAssignment]:
    """All assignments of an idea in insertion order."""
    return list(session.execute(
        select(RoleAssignment).where(RoleAssignment.idea_id == idea_id).order_by(RoleAssignment.seq)
    ).scalars())


def assignment_for(session: Session, idea_id: str, user_id: str) -> RoleAssignment | None:
    return session.execute(
        select(RoleAssignment).where(
            RoleAssignment.idea_id == idea_id, RoleAssignment.user_id == user_id,
        )
    ).scalars().first()


def _as_decimal(value: float) -> Decimal:
    # repr of a float is its shortest round-trip form: 33.3 -> Decimal("33.3")
    return Decimal(repr(value))


def _granted(session: Session, idea_id: str) -> Decimal:
    shares = session.execute(
        select(RoleAssignment.equity_percentage).where(
            RoleAssignment.idea_id == idea_id,
            RoleAssignment.kind == RoleKind.EQUITY_OWNER.value,
        )
    ).scalars()
    return sum((_as_decimal(p) for p in shares if p is not None), Decimal(0))


def total_equity(session: Session, idea_id: str) -> float:
    """Equity granted to EQUITY_OWNER assignments; the owner's nominal 100 is excluded.

    Summed exactly in decimal so 33.3 + 33.3 + 33.4 is 100, not 99.99999999999999.
    """
    return float(_granted(session, idea_id))


def remaining_equity(session: Session, idea_id: str) -> float:
    return float(max(EQUITY_CAP - _granted(session, idea_id), Decimal(0)))


def team_size(session: Session, idea_id: str) -> int:
    return session.execute(
        select(func.count()).select_from(RoleAssignment).where(RoleAssignment.idea_id == idea_id)
    ).scalar_one()


def team_sizes(session: Session, idea_ids: list[str]) -> dict[str, int]:
    if not idea_ids:
        return {}
    rows = session.execute(
        select(RoleAssignment.idea_id, func.count())
        .where(RoleAssignment.idea_id.in_(idea_ids))
        .group_by(RoleAssignment.idea_id)
    ).all()
    return {idea_id: count for idea_id, count in rows}


# ---------------------------------------------------------------------------
# Mutations (caller commits)
# ---------------------------------------------------------------------------


def _next_seq(session: Session, idea_id: str) -> int:
    current = session.execute(
        select(func.max(RoleAssignment.seq)).where(RoleAssignment.idea_id == idea_id)
    ).scalar_one()
    return (current or 0) + 1


def _insert(session: Session, idea_id: str, user_id: str, kind: RoleKind, columns: dict[str, Any]) -> RoleAssignment:
    assignment = RoleAssignment(
        idea_id=idea_id, user_id=user_id, kind=kind.value,
        seq=_next_seq(session, idea_id), **columns,
    )
    session.add(assignment)
    try:
        session.flush()
    except IntegrityError as exc:
        raise ConflictError("User already holds a role on this idea") from exc
    return assignment


def add_owner(session: Session, idea: Idea) -> RoleAssignment:
    """Create the idea's single IDEA_OWNER assignment with its nominal 100% stake."""
    return _insert(
        session, idea.id, idea.owner_id, RoleKind.IDEA_OWNER,
        terms_to_columns(EquityStake(OWNER_EQUITY)),
    )


def add(session: Session, idea_id: str, email: str, kind: Any, details: dict[str, Any]) -> RoleAssignment:
    """Grant a role on an idea to the user registered under *email*.

    Checks run in order and stop at the first failure: the kind is assignable;
    the kind's terms are present, in range and within the remaining equity;
    the user exists; the user holds no role on the idea yet.

    Raises:
        ValidationError: bad kind or terms (``EquityExceededError`` for the cap).
        UserNotFoundError: no user with that email.
        ConflictError: the user already holds a role on the idea.
    """
    role_kind = parse_assignable_kind(kind)
    terms = build_terms(role_kind, details)
    if isinstance(terms, EquityStake):
        remaining = EQUITY_CAP - _granted(session, idea_id)
        if _as_decimal(terms.percentage) > remaining:
            raise EquityExceededError(
                f"Requested {terms.percentage:g}% equity but only {float(remaining):g}% remains"
            )

    user = session.execute(
        select(User).where(User.email == normalize_email(email))
    ).scalars().first()
    if user is None:
        raise UserNotFoundError(f"No user registered with email {email!r}")

    if assignment_for(session, idea_id, user.id) is not None:
        raise ConflictError("User already holds a role on this idea")

    assignment = _insert(session, idea_id, user.id, role_kind, terms_to_columns(terms))
    log.info("Granted %s on idea %s to user %s", role_kind.value, idea_id, user.id)
    return assignment


def remove(session: Session, idea_id: str, user_id: str) -> None:
    """Remove a user's assignment from an idea.

    Raises:
        NotFoundError: the user holds no role on the idea.
        ProtectedRoleError: the assignment is the IDEA_OWNER's.
    """
    assignment = assignment_for(session, idea_id, user_id)
    if assignment is None:
        raise NotFoundError("Member not found")
    if assignment.kind == RoleKind.IDEA_OWNER.value:
        raise ProtectedRoleError("The idea owner cannot be removed")
    session.delete(assignment)
    session.flush()
    log.info("Removed %s on idea %s from user %s", assignment.kind, idea_id, user_id)
