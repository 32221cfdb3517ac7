"""Pydantic request/response schemas for the idealedger API.

Field names are snake_case in Python and camelCase on the wire.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class SignupRequest(_ApiModel):
    email: str | None = None
    password: str | None = None
    name: str | None = None


class LoginRequest(_ApiModel):
    email: str | None = None
    password: str | None = None


class UserOut(_ApiModel):
    id: str
    email: str
    name: str
    skills: list[str] = []
    interests: list[str] = []
    portfolio: str | None = None


class AuthResponse(_ApiModel):
    user: UserOut
    token: str
    token_type: str = "bearer"


class ProfileUpdate(_ApiModel):
    name: str | None = None
    skills: list[str] | None = None
    interests: list[str] | None = None
    portfolio: str | None = None


# ---------------------------------------------------------------------------
# Ideas
# ---------------------------------------------------------------------------


class IdeaCreate(_ApiModel):
    name: str
    description: str
    problem_category: str
    solution: str
    visibility: Literal["public", "private"] = "private"


class IdeaUpdate(_ApiModel):
    name: str | None = None
    description: str | None = None
    problem_category: str | None = None
    solution: str | None = None
    visibility: Literal["public", "private"] | None = None


class IdeaOut(_ApiModel):
    id: str
    name: str
    description: str
    problem_category: str
    solution: str
    visibility: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    user_role: str | None = None
    equity_percentage: float | None = None
    debt_amount: float | None = None
    start_date: date | None = None
    end_date: date | None = None
    team_size: int


# ---------------------------------------------------------------------------
# Team
# ---------------------------------------------------------------------------


class MemberCreate(_ApiModel):
    """Flat role request; the ledger checks which terms belong to the role.

    Dates are passed through as strings so full ISO timestamps are accepted too.
    """

    email: str
    role: str
    equity_percentage: float | None = None
    debt_amount: float | None = None
    start_date: str | None = None
    end_date: str | None = None


class MemberOut(_ApiModel):
    user_id: str
    email: str
    name: str
    role: str
    equity_percentage: float | None = None
    debt_amount: float | None = None
    start_date: date | None = None
    end_date: date | None = None


class RosterOut(_ApiModel):
    id: str
    name: str
    users: list[MemberOut]
    total_equity: float
    remaining_equity: float
    team_size: int
