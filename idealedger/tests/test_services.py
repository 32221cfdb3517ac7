"""Tests for idea lifecycle, the idea directory, team management and accounts."""
from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from idealedger import ledger, services
from idealedger.errors import (
    AuthenticationError, DuplicateEmailError, ForbiddenError, InternalError, NotFoundError,
    ProtectedRoleError, ValidationError,
)
from idealedger.models import Idea, RoleAssignment


def _new_idea(session, owner_id, name="Idea", visibility="private"):
    return services.create_idea(
        session, owner_id, name=name, description="desc", problem_category="health",
        solution="sol", visibility=visibility,
    )


# =========================================================================
# Idea aggregate
# =========================================================================


class TestCreateIdea:
    def test_create_returns_owner_view(self, solar_kiosk, alice):
        assert solar_kiosk["name"] == "Solar Kiosk"
        assert solar_kiosk["owner_id"] == alice.id
        assert solar_kiosk["user_role"] == "IDEA_OWNER"
        assert solar_kiosk["equity_percentage"] == 100
        assert solar_kiosk["team_size"] == 1
        assert solar_kiosk["created_at"] is not None

    def test_ids_are_unique(self, session, alice):
        ids = {_new_idea(session, alice.id, name=f"I{i}")["id"] for i in range(5)}
        assert len(ids) == 5

    def test_owner_write_failure_rolls_back_idea(self, session_factory, session, alice):
        failure = OperationalError("INSERT", {}, Exception("disk full"))
        with patch("idealedger.ledger.add_owner", side_effect=failure):
            with pytest.raises(InternalError):
                _new_idea(session, alice.id)
        fresh = session_factory()
        try:
            assert fresh.execute(select(func.count()).select_from(Idea)).scalar_one() == 0
            assert fresh.execute(select(func.count()).select_from(RoleAssignment)).scalar_one() == 0
        finally:
            fresh.close()

    @pytest.mark.parametrize("field", ["name", "description", "problem_category", "solution"])
    def test_blank_field_rejected(self, session, alice, field):
        kwargs = {"name": "n", "description": "d", "problem_category": "c", "solution": "s", field: "  "}
        with pytest.raises(ValidationError, match=field):
            services.create_idea(session, alice.id, **kwargs)

    def test_bad_visibility_rejected(self, session, alice):
        with pytest.raises(ValidationError, match="visibility"):
            _new_idea(session, alice.id, visibility="friends")


class TestUpdateIdea:
    def test_owner_updates_fields(self, session, alice, solar_kiosk):
        before = solar_kiosk["updated_at"]
        result = services.update_idea(session, solar_kiosk["id"], alice.id, {
            "name": "Solar Kiosk v2", "description": None, "visibility": "public",
        })
        assert result["name"] == "Solar Kiosk v2"
        assert result["description"] == "Off-grid charging stalls"
        assert result["visibility"] == "public"
        assert result["updated_at"] >= before
        assert result["user_role"] == "IDEA_OWNER"

    def test_role_data_untouched(self, session, alice, bob, solar_kiosk):
        services.update_idea(session, solar_kiosk["id"], alice.id, {"owner_id": bob.id, "name": "X"})
        idea = session.get(Idea, solar_kiosk["id"])
        assert idea.owner_id == alice.id
        assert ledger.team_size(session, solar_kiosk["id"]) == 1

    def test_equity_owner_may_update(self, session, alice, bob, solar_kiosk):
        services.add_member(session, solar_kiosk["id"], alice.id, bob.email, "EQUITY_OWNER",
                            {"equity_percentage": 10})
        result = services.update_idea(session, solar_kiosk["id"], bob.id, {"solution": "Leasing"})
        assert result["solution"] == "Leasing"
        assert result["user_role"] == "EQUITY_OWNER"

    def test_viewer_forbidden(self, session, alice, bob, solar_kiosk):
        services.add_member(session, solar_kiosk["id"], alice.id, bob.email, "VIEWER", {})
        assert services.get_idea(session, solar_kiosk["id"], bob.id)["user_role"] == "VIEWER"
        with pytest.raises(ForbiddenError):
            services.update_idea(session, solar_kiosk["id"], bob.id, {"name": "Hijacked"})
        assert session.get(Idea, solar_kiosk["id"]).name == "Solar Kiosk"

    def test_missing_idea(self, session, alice):
        with pytest.raises(NotFoundError):
            services.update_idea(session, "missing", alice.id, {"name": "x"})

    def test_outsider_forbidden_on_private(self, session, bob, solar_kiosk):
        with pytest.raises(ForbiddenError):
            services.update_idea(session, solar_kiosk["id"], bob.id, {"name": "x"})
        assert session.get(Idea, solar_kiosk["id"]).name == "Solar Kiosk"

    def test_blank_update_rejected(self, session, alice, solar_kiosk):
        with pytest.raises(ValidationError):
            services.update_idea(session, solar_kiosk["id"], alice.id, {"name": ""})


# =========================================================================
# Idea directory
# =========================================================================


class TestDirectory:
    def test_list_newest_first(self, session, alice):
        first = _new_idea(session, alice.id, name="First")
        second = _new_idea(session, alice.id, name="Second")
        third = _new_idea(session, alice.id, name="Third")
        for offset, view in enumerate((first, second, third)):
            session.get(Idea, view["id"]).created_at = datetime(2025, 1, 1) + timedelta(days=offset)
        session.commit()
        names = [i["name"] for i in services.list_ideas_for_user(session, alice.id)]
        assert names == ["Third", "Second", "First"]

    def test_list_only_own_roles(self, session, alice, bob):
        _new_idea(session, alice.id, name="Public One", visibility="public")
        shared = _new_idea(session, alice.id, name="Shared")
        services.add_member(session, shared["id"], alice.id, bob.email, "DEBT_FINANCIER",
                            {"debt_amount": 500})
        listed = services.list_ideas_for_user(session, bob.id)
        assert [i["name"] for i in listed] == ["Shared"]
        assert listed[0]["user_role"] == "DEBT_FINANCIER"
        assert listed[0]["debt_amount"] == 500
        assert listed[0]["team_size"] == 2

    def test_list_empty(self, session, bob):
        assert services.list_ideas_for_user(session, bob.id) == []

    def test_get_member_view(self, session, alice, bob, solar_kiosk):
        services.add_member(session, solar_kiosk["id"], alice.id, bob.email, "CONTRACTOR",
                            {"start_date": "2025-04-01", "end_date": "2025-05-01"})
        view = services.get_idea(session, solar_kiosk["id"], bob.id)
        assert view["user_role"] == "CONTRACTOR"
        assert str(view["start_date"]) == "2025-04-01"
        assert view["team_size"] == 2

    def test_get_is_repeatable(self, session, alice, solar_kiosk):
        first = services.get_idea(session, solar_kiosk["id"], alice.id)
        second = services.get_idea(session, solar_kiosk["id"], alice.id)
        assert first == second

    def test_no_role_masked_as_missing(self, session, bob, solar_kiosk):
        with pytest.raises(NotFoundError) as existing:
            services.get_idea(session, solar_kiosk["id"], bob.id)
        with pytest.raises(NotFoundError) as missing:
            services.get_idea(session, "no-such-idea", bob.id)
        assert existing.value.to_dict() == missing.value.to_dict()

    def test_public_idea_requires_role_by_default(self, session, alice, bob):
        idea = _new_idea(session, alice.id, visibility="public")
        with pytest.raises(NotFoundError):
            services.get_idea(session, idea["id"], bob.id)

    def test_public_idea_readable_when_enabled(self, session, alice, bob):
        idea = _new_idea(session, alice.id, visibility="public")
        view = services.get_idea(session, idea["id"], bob.id, public_readable=True)
        assert view["user_role"] is None
        assert view["team_size"] == 1

    def test_private_idea_hidden_even_when_public_reads_enabled(self, session, bob, solar_kiosk):
        with pytest.raises(NotFoundError):
            services.get_idea(session, solar_kiosk["id"], bob.id, public_readable=True)


# =========================================================================
# Team management
# =========================================================================


class TestTeamManagement:
    def test_roster(self, session, alice, bob, carol, solar_kiosk):
        idea_id = solar_kiosk["id"]
        services.add_member(session, idea_id, alice.id, bob.email, "EQUITY_OWNER", {"equity_percentage": 25})
        services.add_member(session, idea_id, alice.id, carol.email, "VIEWER", {})
        roster = services.list_members(session, idea_id, alice.id)
        assert roster["name"] == "Solar Kiosk"
        assert [u["email"] for u in roster["users"]] == [alice.email, bob.email, carol.email]
        assert roster["users"][0]["role"] == "IDEA_OWNER"
        assert roster["total_equity"] == 25.0
        assert roster["remaining_equity"] == 75.0
        assert roster["team_size"] == 3

    def test_viewer_cannot_manage(self, session, alice, bob, carol, solar_kiosk):
        services.add_member(session, solar_kiosk["id"], alice.id, bob.email, "VIEWER", {})
        with pytest.raises(ForbiddenError):
            services.add_member(session, solar_kiosk["id"], bob.id, carol.email, "VIEWER", {})
        with pytest.raises(ForbiddenError):
            services.list_members(session, solar_kiosk["id"], bob.id)
        with pytest.raises(ForbiddenError):
            services.remove_member(session, solar_kiosk["id"], bob.id, alice.id)
        assert ledger.team_size(session, solar_kiosk["id"]) == 2

    def test_equity_owner_cannot_remove_owner(self, session, alice, bob, solar_kiosk):
        services.add_member(session, solar_kiosk["id"], alice.id, bob.email, "EQUITY_OWNER",
                            {"equity_percentage": 40})
        with pytest.raises(ProtectedRoleError):
            services.remove_member(session, solar_kiosk["id"], bob.id, alice.id)
        assert ledger.assignment_for(session, solar_kiosk["id"], alice.id) is not None

    def test_equity_owner_can_add_and_remove(self, session, alice, bob, carol, solar_kiosk):
        services.add_member(session, solar_kiosk["id"], alice.id, bob.email, "EQUITY_OWNER",
                            {"equity_percentage": 40})
        services.add_member(session, solar_kiosk["id"], bob.id, carol.email, "VIEWER", {})
        services.remove_member(session, solar_kiosk["id"], bob.id, carol.id)
        assert ledger.assignment_for(session, solar_kiosk["id"], carol.id) is None

    def test_outsider_forbidden_to_manage(self, session, alice, bob, carol, solar_kiosk):
        with pytest.raises(ForbiddenError):
            services.add_member(session, solar_kiosk["id"], bob.id, carol.email, "VIEWER", {})
        with pytest.raises(ForbiddenError):
            services.remove_member(session, solar_kiosk["id"], bob.id, alice.id)
        assert ledger.team_size(session, solar_kiosk["id"]) == 1

    def test_outsider_roster_read_masked(self, session, bob, solar_kiosk):
        with pytest.raises(NotFoundError):
            services.list_members(session, solar_kiosk["id"], bob.id)

    def test_member_view_shape(self, session, alice, bob, solar_kiosk):
        member = services.add_member(session, solar_kiosk["id"], alice.id, bob.email, "DEBT_FINANCIER",
                                     {"debt_amount": 750.0})
        assert member == {
            "user_id": bob.id, "email": bob.email, "name": "Bob", "role": "DEBT_FINANCIER",
            "equity_percentage": None, "debt_amount": 750.0, "start_date": None, "end_date": None,
        }


# =========================================================================
# Accounts
# =========================================================================


class TestAccounts:
    def test_signup_normalizes_email(self, session):
        user = services.signup(session, "  Dana@Example.COM ", "pw", "Dana")
        assert user.email == "dana@example.com"
        assert user.password_hash != "pw"
        assert user.skills == [] and user.interests == []

    def test_duplicate_email(self, session, alice):
        with pytest.raises(DuplicateEmailError):
            services.signup(session, "ALICE@example.com", "other", "Alice Two")

    @pytest.mark.parametrize("email, password, name", [("", "pw", "N"), ("a@b.c", "", "N"), ("a@b.c", "pw", " ")])
    def test_signup_missing_fields(self, session, email, password, name):
        with pytest.raises(ValidationError):
            services.signup(session, email, password, name)

    def test_authenticate(self, session, alice):
        assert services.authenticate(session, "alice@example.com", "s3cret").id == alice.id

    def test_authenticate_wrong_password(self, session, alice):
        with pytest.raises(AuthenticationError, match="Invalid credentials"):
            services.authenticate(session, "alice@example.com", "nope")

    def test_authenticate_unknown_email(self, session):
        with pytest.raises(AuthenticationError):
            services.authenticate(session, "ghost@example.com", "pw")

    def test_authenticate_missing_fields(self, session):
        with pytest.raises(ValidationError):
            services.authenticate(session, "", "pw")

    def test_resolve_unknown_user(self, session):
        with pytest.raises(AuthenticationError):
            services.resolve_user(session, "nobody")

    def test_update_profile(self, session, alice):
        services.update_profile(session, alice, {
            "skills": ["python", " design ", "python", ""],
            "interests": ["energy"], "portfolio": "https://alice.dev",
        })
        assert alice.skills == ["design", "python"]
        assert alice.interests == ["energy"]
        assert alice.portfolio == "https://alice.dev"
        assert alice.email == "alice@example.com"

    def test_clear_portfolio(self, session, alice):
        services.update_profile(session, alice, {"portfolio": "https://alice.dev"})
        services.update_profile(session, alice, {"portfolio": None})
        assert alice.portfolio is None

    def test_blank_name_rejected(self, session, alice):
        with pytest.raises(ValidationError):
            services.update_profile(session, alice, {"name": "  "})
