"""
Typed shapes for data crossing the upstream boundary.
Raw API payloads are parsed into these in the client modules; services never
dig through nested response dicts.
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from budgetbot.utils import budget_format, parse_ad_platform_ids

# CRM custom fields
CF_AD_IDS = "cf_adwords_ids"
CF_CALL_TRACKING_ID = "cf_wildjar_id"
CF_WA_NUMBER = "cf_wa_number"
CF_BUDGET_FEATURE = "cf_budget_recommendation"


def _is_checked(value) -> bool:
    """Checkbox custom fields arrive as real bools or as "true"/"false" strings."""
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() == "true"


class Account(BaseModel):
    """Snapshot of a CRM sales account joined to its ad and call-tracking ids."""
    crm_id: str
    name: str = ""
    ad_platform_ids: list[str] = Field(default_factory=list)
    call_tracking_id: Optional[str] = None
    wa_phone: Optional[str] = None
    feature_flags: set[str] = Field(default_factory=set)

    @classmethod
    def from_crm(cls, payload: dict) -> "Account":
        """Build from a FreshSales `sales_account` object."""
        custom = payload.get("custom_field") or {}
        call_tracking_id = custom.get(CF_CALL_TRACKING_ID)
        return cls(
            crm_id=str(payload["id"]),
            name=payload.get("name") or "",
            ad_platform_ids=parse_ad_platform_ids(custom.get(CF_AD_IDS)),
            call_tracking_id=str(call_tracking_id) if call_tracking_id not in (None, "") else None,
            wa_phone=custom.get(CF_WA_NUMBER),
            feature_flags={k for k, v in custom.items() if _is_checked(v)},
        )

    def has_feature(self, flag: str) -> bool:
        return flag in self.feature_flags


class Campaign(BaseModel):
    account_id: str
    campaign_id: str
    budget_id: str
    name: str
    budget_amount: Decimal
    channel_type: str = "UNSPECIFIED"
    status: str = "ENABLED"


class BudgetGroup(BaseModel):
    """Campaigns sharing one budget; the unit an operator pauses."""
    account_id: str
    budget_id: str
    current_budget: Decimal
    member_names: list[str]

    @property
    def label(self) -> str:
        if len(self.member_names) > 1:
            return "".join(f"({n})" for n in self.member_names)
        return self.member_names[0]

    @property
    def display(self) -> str:
        return f"{self.label} ${budget_format(self.current_budget)}"


class MetricTotals(BaseModel):
    cost_micros: int = 0
    clicks: int = 0


class CallSummary(BaseModel):
    answered: int = 0
    missed: int = 0
    abandoned: int = 0

    @property
    def total(self) -> int:
        return self.answered + self.missed + self.abandoned


class Customer(BaseModel):
    """Chat platform customer."""
    id: str
    name: str = ""
    phone: Optional[str] = None
    opt_in: bool = False
