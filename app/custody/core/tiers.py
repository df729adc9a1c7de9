from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CustodianTier(str, Enum):
    ADMIN = "ADMIN"
    LEADER = "LEADER"
    AGENT = "AGENT"


MAIN_LEDGER = "main"
CUSTODY_LEDGER = "custody"

AGENT_TO_LEADER = "agent_to_leader"
LEADER_TO_ADMIN = "leader_to_admin"

PRICE_FIELDS = ("unit_price", "selling_price", "dealer_price", "retail_price")


@dataclass(frozen=True)
class TierRule:
    parent_tier: CustodianTier | None
    ledger_name: str
    sellable: bool
    required_prices: tuple[str, ...]
    request_level: str | None


TIER_RULES: dict[CustodianTier, TierRule] = {
    CustodianTier.ADMIN: TierRule(
        parent_tier=None,
        ledger_name=MAIN_LEDGER,
        sellable=False,
        required_prices=(),
        request_level=None,
    ),
    CustodianTier.LEADER: TierRule(
        parent_tier=CustodianTier.ADMIN,
        ledger_name=CUSTODY_LEDGER,
        sellable=False,
        required_prices=(),
        request_level=LEADER_TO_ADMIN,
    ),
    CustodianTier.AGENT: TierRule(
        parent_tier=CustodianTier.LEADER,
        ledger_name=CUSTODY_LEDGER,
        sellable=True,
        required_prices=("selling_price",),
        request_level=AGENT_TO_LEADER,
    ),
}


def normalize_tier(tier: str | CustodianTier | None) -> CustodianTier | None:
    if tier is None:
        return None
    if isinstance(tier, CustodianTier):
        return tier
    try:
        return CustodianTier((tier or "").upper())
    except ValueError:
        return None


def rule_for(tier: str | CustodianTier) -> TierRule:
    resolved = normalize_tier(tier)
    if resolved is None:
        raise KeyError(f"unknown custodian tier: {tier}")
    return TIER_RULES[resolved]


def missing_prices(tier: str | CustodianTier, prices: dict) -> list[str]:
    """Required price fields of ``tier`` that are absent or not positive in ``prices``."""
    missing = []
    for field in rule_for(tier).required_prices:
        value = prices.get(field)
        if value is None or value <= 0:
            missing.append(field)
    return missing


def is_parent_of(parent, child) -> bool:
    child_rule = rule_for(child.tier)
    if child_rule.parent_tier is None:
        return False
    return normalize_tier(parent.tier) == child_rule.parent_tier and str(child.parent_id) == str(parent.id)
