"""
Business-area records (tagged variant).

Payloads arriving from outer layers carry an ``area`` tag and the fields of
exactly one variant:

- operations: delivery projects
- marketing: campaigns
- commercial: sales pipeline deals
- investments: investment account movements

``parse_area_record`` is the single entry point; anything that does not
fit a variant raises ValidationError before it reaches storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union

from ..exceptions import ValidationError
from .records import parse_date


class AreaType(str, Enum):
    """Variant tag."""

    OPERATIONS = "operations"
    MARKETING = "marketing"
    COMMERCIAL = "commercial"
    INVESTMENTS = "investments"


PROJECT_STATUSES = ("backlog", "in_progress", "done", "blocked")
PRIORITIES = ("low", "medium", "high", "critical")
CAMPAIGN_CHANNELS = (
    "google_ads",
    "meta_ads",
    "linkedin",
    "email",
    "organic",
    "events",
    "referral",
)
CAMPAIGN_STATUSES = ("planned", "active", "paused", "finished")
DEAL_STAGES = ("prospecting", "qualification", "proposal", "negotiation", "won", "lost")
DEAL_RECURRENCES = ("one_off", "monthly", "quarterly", "yearly")
DEAL_ORIGINS = ("inbound", "outbound", "referral", "event")
INVESTMENT_MOVEMENT_TYPES = (
    "INTEREST",
    "INCOME_TAX",
    "IOF",
    "TRANSFER_TO_CHECKING",
    "TRANSFER_FROM_CHECKING",
    "APPLICATION",
    "REDEMPTION",
)


@dataclass
class OperationsProject:
    id: str
    name: str
    client: str
    owner: str
    status: str
    priority: str
    start_date: date
    expected_date: date
    progress: int = 0
    estimated_hours: Decimal = Decimal("0")
    actual_hours: Decimal = Decimal("0")
    contract_value: Decimal = Decimal("0")
    completed_date: date | None = None
    tags: list[str] = field(default_factory=list)
    area: AreaType = AreaType.OPERATIONS


@dataclass
class MarketingCampaign:
    id: str
    name: str
    channel: str
    status: str
    budget: Decimal
    spent: Decimal
    start_date: date
    end_date: date | None = None
    leads: int = 0
    conversions: int = 0
    impressions: int = 0
    clicks: int = 0
    area: AreaType = AreaType.MARKETING

    @property
    def cost_per_lead(self) -> Decimal:
        """Spent divided by leads (0 when there are no leads)."""
        return self.spent / self.leads if self.leads else Decimal("0")


@dataclass
class CommercialDeal:
    id: str
    company: str
    contact: str
    service: str
    stage: str
    value: Decimal
    recurrence: str
    probability: int
    owner: str
    created_date: date
    expected_close_date: date
    origin: str
    closed_date: date | None = None
    loss_reason: str | None = None
    area: AreaType = AreaType.COMMERCIAL

    @property
    def weighted_value(self) -> Decimal:
        """Deal value weighted by its close probability."""
        return self.value * Decimal(self.probability) / Decimal(100)


@dataclass
class InvestmentMovement:
    id: str
    account_id: str
    movement_date: date
    movement_type: str
    amount: Decimal
    description: str = ""
    area: AreaType = AreaType.INVESTMENTS


AreaRecord = Union[OperationsProject, MarketingCampaign, CommercialDeal, InvestmentMovement]


class _Reader:
    """Field accessor that collects the variant name for error messages."""

    def __init__(self, area: AreaType, payload: dict):
        self.area = area
        self.payload = payload

    def _fail(self, key: str, problem: str) -> ValidationError:
        return ValidationError(f"{self.area.value}.{key}: {problem}")

    def text(self, key: str, required: bool = True) -> str | None:
        value = self.payload.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                raise self._fail(key, "is required")
            return None
        if not isinstance(value, str):
            raise self._fail(key, "must be a string")
        return value.strip()

    def choice(self, key: str, allowed: tuple[str, ...]) -> str:
        value = self.text(key)
        if value not in allowed:
            raise self._fail(key, f"must be one of {', '.join(allowed)}")
        return value

    def decimal(self, key: str, default: Decimal | None = None, minimum: int | None = 0) -> Decimal:
        value = self.payload.get(key)
        if value is None:
            if default is None:
                raise self._fail(key, "is required")
            return default
        if isinstance(value, bool):
            raise self._fail(key, "must be a number")
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise self._fail(key, "must be a number") from None
        if minimum is not None and result < minimum:
            raise self._fail(key, f"must be >= {minimum}")
        return result

    def integer(self, key: str, default: int = 0, maximum: int | None = None) -> int:
        value = self.payload.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._fail(key, "must be an integer")
        if value < 0 or (maximum is not None and value > maximum):
            raise self._fail(key, f"must be between 0 and {maximum}" if maximum else "must be >= 0")
        return value

    def day(self, key: str, required: bool = True) -> date | None:
        value = self.payload.get(key)
        if value in (None, ""):
            if required:
                raise self._fail(key, "is required")
            return None
        try:
            return parse_date(value)
        except ValueError:
            raise self._fail(key, "must be an ISO date (YYYY-MM-DD)") from None


def _parse_operations(r: _Reader) -> OperationsProject:
    tags = r.payload.get("tags") or []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ValidationError("operations.tags: must be a list of strings")
    return OperationsProject(
        id=r.text("id"),
        name=r.text("name"),
        client=r.text("client"),
        owner=r.text("owner"),
        status=r.choice("status", PROJECT_STATUSES),
        priority=r.choice("priority", PRIORITIES),
        start_date=r.day("start_date"),
        expected_date=r.day("expected_date"),
        completed_date=r.day("completed_date", required=False),
        progress=r.integer("progress", maximum=100),
        estimated_hours=r.decimal("estimated_hours", Decimal("0")),
        actual_hours=r.decimal("actual_hours", Decimal("0")),
        contract_value=r.decimal("contract_value", Decimal("0")),
        tags=tags,
    )


def _parse_marketing(r: _Reader) -> MarketingCampaign:
    return MarketingCampaign(
        id=r.text("id"),
        name=r.text("name"),
        channel=r.choice("channel", CAMPAIGN_CHANNELS),
        status=r.choice("status", CAMPAIGN_STATUSES),
        budget=r.decimal("budget"),
        spent=r.decimal("spent", Decimal("0")),
        start_date=r.day("start_date"),
        end_date=r.day("end_date", required=False),
        leads=r.integer("leads"),
        conversions=r.integer("conversions"),
        impressions=r.integer("impressions"),
        clicks=r.integer("clicks"),
    )


def _parse_commercial(r: _Reader) -> CommercialDeal:
    return CommercialDeal(
        id=r.text("id"),
        company=r.text("company"),
        contact=r.text("contact"),
        service=r.text("service"),
        stage=r.choice("stage", DEAL_STAGES),
        value=r.decimal("value"),
        recurrence=r.choice("recurrence", DEAL_RECURRENCES),
        probability=r.integer("probability", maximum=100),
        owner=r.text("owner"),
        created_date=r.day("created_date"),
        expected_close_date=r.day("expected_close_date"),
        closed_date=r.day("closed_date", required=False),
        loss_reason=r.text("loss_reason", required=False),
        origin=r.choice("origin", DEAL_ORIGINS),
    )


def _parse_investments(r: _Reader) -> InvestmentMovement:
    return InvestmentMovement(
        id=r.text("id"),
        account_id=r.text("account_id"),
        movement_date=r.day("date"),
        movement_type=r.choice("movement_type", INVESTMENT_MOVEMENT_TYPES),
        # Taxes and transfers out are negative
        amount=r.decimal("amount", minimum=None),
        description=r.text("description", required=False) or "",
    )


_PARSERS = {
    AreaType.OPERATIONS: _parse_operations,
    AreaType.MARKETING: _parse_marketing,
    AreaType.COMMERCIAL: _parse_commercial,
    AreaType.INVESTMENTS: _parse_investments,
}


def parse_area_record(payload: Any) -> AreaRecord:
    """Parse and validate a tagged area payload.

    Raises:
        ValidationError: If the tag is unknown or any field is invalid.
    """
    if not isinstance(payload, dict):
        raise ValidationError("area payload must be an object")
    tag = payload.get("area")
    try:
        area = AreaType(tag)
    except ValueError:
        valid = ", ".join(a.value for a in AreaType)
        raise ValidationError(f"unknown area '{tag}' (expected one of {valid})") from None
    return _PARSERS[area](_Reader(area, payload))
