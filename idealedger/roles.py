"""Role kinds and their kind-specific terms.

Each kind carries exactly one shape of terms:

* ``EQUITY_OWNER`` -> :class:`EquityStake`
* ``DEBT_FINANCIER`` -> :class:`DebtClaim`
* ``CONTRACTOR`` -> :class:`ContractWindow`
* ``VIEWER`` -> ``None``
* ``IDEA_OWNER`` -> :class:`EquityStake` of 100 (nominal, never capped)

:func:`build_terms` turns loosely-typed request fields into the matching
variant and rejects any field that does not belong to the kind.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Union

from idealedger.errors import ValidationError


class RoleKind(str, Enum):
    IDEA_OWNER = "IDEA_OWNER"
    EQUITY_OWNER = "EQUITY_OWNER"
    DEBT_FINANCIER = "DEBT_FINANCIER"
    CONTRACTOR = "CONTRACTOR"
    VIEWER = "VIEWER"


ASSIGNABLE_KINDS = frozenset({
    RoleKind.EQUITY_OWNER, RoleKind.DEBT_FINANCIER, RoleKind.CONTRACTOR, RoleKind.VIEWER,
})
EDITOR_KINDS = frozenset({RoleKind.IDEA_OWNER, RoleKind.EQUITY_OWNER})

OWNER_EQUITY = 100.0


@dataclass(frozen=True, slots=True)
class EquityStake:
    percentage: float


@dataclass(frozen=True, slots=True)
class DebtClaim:
    amount: float


@dataclass(frozen=True, slots=True)
class ContractWindow:
    start_date: date
    end_date: date


RoleTerms = Union[EquityStake, DebtClaim, ContractWindow, None]

_FIELDS_BY_KIND: dict[RoleKind, frozenset[str]] = {
    RoleKind.IDEA_OWNER: frozenset({"equity_percentage"}),
    RoleKind.EQUITY_OWNER: frozenset({"equity_percentage"}),
    RoleKind.DEBT_FINANCIER: frozenset({"debt_amount"}),
    RoleKind.CONTRACTOR: frozenset({"start_date", "end_date"}),
    RoleKind.VIEWER: frozenset(),
}
TERM_FIELDS = ("equity_percentage", "debt_amount", "start_date", "end_date")


def parse_assignable_kind(value: Any) -> RoleKind:
    """Return the kind for *value*, rejecting the owner and unknown kinds."""
    try:
        kind = RoleKind(value)
    except ValueError:
        raise ValidationError(f"Unknown role kind: {value!r}") from None
    if kind not in ASSIGNABLE_KINDS:
        raise ValidationError(f"Role {kind.value} cannot be assigned")
    return kind


def _as_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number")
    return float(value)


def _as_date(name: str, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        # Full ISO timestamps are truncated to their date.
        try:
            if len(value) > 10:
                return datetime.fromisoformat(value).date()
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD)")


def build_terms(kind: RoleKind, details: dict[str, Any]) -> RoleTerms:
    """Validate *details* against *kind* and return its terms.

    Fields required by the kind must be present and in range; fields of other
    kinds must be absent (``None``). The remaining-equity cap is not checked
    here since it depends on the ledger.
    """
    allowed = _FIELDS_BY_KIND[kind]
    given = {k for k in TERM_FIELDS if details.get(k) is not None}
    stray = sorted(given - allowed)
    if stray:
        raise ValidationError(f"{kind.value} does not accept: {', '.join(stray)}")
    missing = sorted(allowed - given)
    if missing:
        raise ValidationError(f"{kind.value} requires: {', '.join(missing)}")

    if kind in (RoleKind.EQUITY_OWNER, RoleKind.IDEA_OWNER):
        pct = _as_number("equity_percentage", details["equity_percentage"])
        if not 0 < pct <= 100:
            raise ValidationError("equity_percentage must be greater than 0 and at most 100")
        return EquityStake(pct)
    if kind is RoleKind.DEBT_FINANCIER:
        amount = _as_number("debt_amount", details["debt_amount"])
        if amount <= 0:
            raise ValidationError("debt_amount must be positive")
        return DebtClaim(amount)
    if kind is RoleKind.CONTRACTOR:
        start = _as_date("start_date", details["start_date"])
        end = _as_date("end_date", details["end_date"])
        if end < start:
            raise ValidationError("end_date must not be before start_date")
        return ContractWindow(start, end)
    return None


def terms_from_columns(
    kind: RoleKind,
    equity_percentage: float | None,
    debt_amount: float | None,
    start_date: date | None,
    end_date: date | None,
) -> RoleTerms:
    if kind in (RoleKind.EQUITY_OWNER, RoleKind.IDEA_OWNER):
        return EquityStake(equity_percentage if equity_percentage is not None else 0.0)
    if kind is RoleKind.DEBT_FINANCIER:
        return DebtClaim(debt_amount or 0.0)
    if kind is RoleKind.CONTRACTOR:
        return ContractWindow(start_date, end_date)
    return None


def terms_to_columns(terms: RoleTerms) -> dict[str, Any]:
    columns: dict[str, Any] = dict.fromkeys(TERM_FIELDS)
    if isinstance(terms, EquityStake):
        columns["equity_percentage"] = terms.percentage
    elif isinstance(terms, DebtClaim):
        columns["debt_amount"] = terms.amount
    elif isinstance(terms, ContractWindow):
        columns["start_date"] = terms.start_date
        columns["end_date"] = terms.end_date
    return columns
