"""Authorization gate: what a user may do with a given idea.

Permissions derive solely from the user's role assignment on that idea (plus
the idea's visibility for reads). Editing idea content and managing the team
share one predicate.

The ``require_*`` helpers raise instead of returning ``False``. Reads that the
caller may not see raise :class:`NotFoundError`, so an idea's existence is
never revealed to outsiders. Mutations raise :class:`NotFoundError` only for a
missing idea and :class:`ForbiddenError` for any caller lacking the role.
"""
from __future__ import annotations

from sqlalchemy.orm import Session

from idealedger import ledger
from idealedger.errors import ForbiddenError, NotFoundError
from idealedger.models import Idea
from idealedger.roles import EDITOR_KINDS, RoleKind


def role_of(session: Session, user_id: str, idea_id: str) -> RoleKind | None:
    assignment = ledger.assignment_for(session, idea_id, user_id)
    return assignment.role_kind if assignment is not None else None


def can_view(session: Session, user_id: str, idea_id: str) -> bool:
    idea = session.get(Idea, idea_id)
    if idea is None:
        return False
    return idea.visibility == "public" or role_of(session, user_id, idea_id) is not None


def can_edit(session: Session, user_id: str, idea_id: str) -> bool:
    return role_of(session, user_id, idea_id) in EDITOR_KINDS


def can_manage_roles(session: Session, user_id: str, idea_id: str) -> bool:
    return can_edit(session, user_id, idea_id)


def require_view(session: Session, user_id: str, idea_id: str) -> Idea:
    if not can_view(session, user_id, idea_id):
        raise NotFoundError("Idea not found")
    return session.get(Idea, idea_id)


def _require_idea(session: Session, idea_id: str) -> Idea:
    idea = session.get(Idea, idea_id)
    if idea is None:
        raise NotFoundError("Idea not found")
    return idea


def require_edit(session: Session, user_id: str, idea_id: str) -> Idea:
    idea = _require_idea(session, idea_id)
    if not can_edit(session, user_id, idea_id):
        raise ForbiddenError("Not authorized to edit this idea")
    return idea


def require_manage_roles(session: Session, user_id: str, idea_id: str) -> Idea:
    idea = _require_idea(session, idea_id)
    if not can_manage_roles(session, user_id, idea_id):
        raise ForbiddenError("Not authorized to manage roles on this idea")
    return idea
