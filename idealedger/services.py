"""Business operations behind the API: accounts, ideas, the idea directory and
team management.

Every mutating operation runs inside a transaction that commits on success and
rolls back on any failure; authorization is checked before anything is written.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from idealedger import access, ledger
from idealedger.db import atomic, idea_mutation
from idealedger.errors import (
    AuthenticationError, DuplicateEmailError, NotFoundError, ValidationError,
)
from idealedger.models import Idea, RoleAssignment, User
from idealedger.security import hash_password, verify_password
from idealedger.utils import new_id, normalize_email, normalize_tags, utcnow

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

IDEA_FIELDS = ("name", "description", "problem_category", "solution", "visibility")
REQUIRED_IDEA_FIELDS = ("name", "description", "problem_category", "solution")
VISIBILITIES = ("public", "private")

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def user_summary(user: User) -> dict:
    return {
        "id": user.id, "email": user.email, "name": user.name,
        "skills": user.skills, "interests": user.interests, "portfolio": user.portfolio,
    }


def idea_view(idea: Idea, assignment: RoleAssignment | None, team_size: int) -> dict:
    """An idea as seen by one user: their role and terms plus the team size."""
    return {
        "id": idea.id, "name": idea.name, "description": idea.description,
        "problem_category": idea.problem_category, "solution": idea.solution,
        "visibility": idea.visibility, "owner_id": idea.owner_id,
        "created_at": idea.created_at, "updated_at": idea.updated_at,
        "user_role": assignment.kind if assignment else None,
        "equity_percentage": assignment.equity_percentage if assignment else None,
        "debt_amount": assignment.debt_amount if assignment else None,
        "start_date": assignment.start_date if assignment else None,
        "end_date": assignment.end_date if assignment else None,
        "team_size": team_size,
    }


def member_view(assignment: RoleAssignment) -> dict:
    return {
        "user_id": assignment.user_id, "email": assignment.user.email, "name": assignment.user.name,
        "role": assignment.kind, "equity_percentage": assignment.equity_percentage,
        "debt_amount": assignment.debt_amount, "start_date": assignment.start_date,
        "end_date": assignment.end_date,
    }


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)


def _check_idea_fields(fields: dict[str, Any], *, required: bool) -> None:
    for field in REQUIRED_IDEA_FIELDS:
        val = fields.get(field)
        if (required and val is None) or (val is not None and not str(val).strip()):
            raise ValidationError(f"{field} must not be empty")
    visibility = fields.get("visibility")
    if visibility is not None and visibility not in VISIBILITIES:
        raise ValidationError("visibility must be 'public' or 'private'")


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def signup(session: Session, email: str, password: str, name: str) -> User:
    if not (email or "").strip() or not password or not (name or "").strip():
        raise ValidationError("email, password and name are required")
    email = normalize_email(email)
    with atomic(session):
        if session.execute(select(User.id).where(User.email == email)).first() is not None:
            raise DuplicateEmailError("User already exists")
        user = User(id=new_id(), email=email, name=name.strip(), password_hash=hash_password(password))
        session.add(user)
        try:
            session.flush()
        except IntegrityError as exc:
            raise DuplicateEmailError("User already exists") from exc
    log.info("Signed up user %s", user.id)
    return user


def authenticate(session: Session, email: str, password: str) -> User:
    if not (email or "").strip() or not password:
        raise ValidationError("email and password are required")
    user = session.execute(
        select(User).where(User.email == normalize_email(email))
    ).scalars().first()
    if user is None or not verify_password(password, user.password_hash):
        log.info("Rejected login for %s", normalize_email(email))
        raise AuthenticationError("Invalid credentials")
    return user


def resolve_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise AuthenticationError("Unknown user")
    return user


def update_profile(session: Session, user: User, updates: dict[str, Any]) -> User:
    """Update name, skills, interests and portfolio; email never changes."""
    name = updates.get("name")
    if name is not None and not name.strip():
        raise ValidationError("name must not be empty")
    with atomic(session):
        if name is not None:
            user.name = name.strip()
        if updates.get("skills") is not None:
            user.skills_json = json.dumps(normalize_tags(updates["skills"]))
        if updates.get("interests") is not None:
            user.interests_json = json.dumps(normalize_tags(updates["interests"]))
        if "portfolio" in updates:
            user.portfolio = (updates["portfolio"] or "").strip() or None
    return user


# ---------------------------------------------------------------------------
# Idea aggregate
# ---------------------------------------------------------------------------


def create_idea(
    session: Session, owner_id: str, *, name: str, description: str,
    problem_category: str, solution: str, visibility: str = "private",
) -> dict:
    """Create an idea together with its IDEA_OWNER assignment, or neither."""
    fields = {
        "name": name, "description": description, "problem_category": problem_category,
        "solution": solution, "visibility": visibility,
    }
    _check_idea_fields(fields, required=True)
    with atomic(session):
        idea = Idea(id=new_id(), owner_id=owner_id, **fields)
        session.add(idea)
        session.flush()
        owner = ledger.add_owner(session, idea)
    log.info("Created idea %s for owner %s", idea.id, owner_id)
    return idea_view(idea, owner, 1)


def update_idea(session: Session, idea_id: str, requester_id: str, updates: dict[str, Any]) -> dict:
    """Update the descriptive fields of an idea. Requires edit permission.

    Ownership and role data are never touched here.
    """
    _check_idea_fields(updates, required=False)
    with idea_mutation(session, idea_id) as idea:
        access.require_edit(session, requester_id, idea_id)
        apply_updates(idea, updates, IDEA_FIELDS)
        idea.updated_at = utcnow()
    log.info("Updated idea %s by user %s", idea_id, requester_id)
    return get_idea(session, idea_id, requester_id)


# ---------------------------------------------------------------------------
# Idea directory
# ---------------------------------------------------------------------------


def list_ideas_for_user(session: Session, user_id: str) -> list[dict]:
    """Ideas the user holds a role on, newest first, whatever their visibility."""
    rows = session.execute(
        select(Idea, RoleAssignment)
        .join(RoleAssignment, RoleAssignment.idea_id == Idea.id)
        .where(RoleAssignment.user_id == user_id)
        .order_by(Idea.created_at.desc(), Idea.id.desc())
    ).all()
    sizes = ledger.team_sizes(session, [idea.id for idea, _ in rows])
    return [idea_view(idea, assignment, sizes.get(idea.id, 0)) for idea, assignment in rows]


def get_idea(session: Session, idea_id: str, user_id: str, *, public_readable: bool = False) -> dict:
    """Detail of one idea for *user_id*.

    Without *public_readable* the caller must hold a role on the idea, even a
    public one. With it, anyone the gate lets view the idea may read it.
    Either way a refused read is indistinguishable from a missing idea.
    """
    idea = access.require_view(session, user_id, idea_id)
    assignment = ledger.assignment_for(session, idea_id, user_id)
    if assignment is None and not public_readable:
        raise NotFoundError("Idea not found")
    return idea_view(idea, assignment, ledger.team_size(session, idea_id))


# ---------------------------------------------------------------------------
# Team management
# ---------------------------------------------------------------------------


def list_members(session: Session, idea_id: str, requester_id: str) -> dict:
    """Roster of an idea. A read, so outsiders see a missing idea."""
    access.require_view(session, requester_id, idea_id)
    idea = access.require_manage_roles(session, requester_id, idea_id)
    members = ledger.assignments(session, idea_id)
    total = ledger.total_equity(session, idea_id)
    return {
        "id": idea.id, "name": idea.name,
        "users": [member_view(a) for a in members],
        "total_equity": total,
        "remaining_equity": ledger.remaining_equity(session, idea_id),
        "team_size": len(members),
    }


def add_member(
    session: Session, idea_id: str, requester_id: str, email: str, kind: Any, details: dict[str, Any],
) -> dict:
    """Grant a role on an idea; serialized against other grants on the same idea."""
    with idea_mutation(session, idea_id):
        access.require_manage_roles(session, requester_id, idea_id)
        assignment = ledger.add(session, idea_id, email, kind, details)
    return member_view(assignment)


def remove_member(session: Session, idea_id: str, requester_id: str, user_id: str) -> None:
    with idea_mutation(session, idea_id):
        access.require_manage_roles(session, requester_id, idea_id)
        ledger.remove(session, idea_id, user_id)
