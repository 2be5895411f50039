"""
qrforge/features/subscriptions/policy.py

Tier -> feature entitlement table.

Handles:
- Entitlement types (Metered, Permission, Cap)
- The static policy table for free, pro and business
- Completeness and monotonicity validation (run at import)
- Pricing and display details per tier
"""

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Mapping, Union

from qrforge.core.errors import PolicyTableError, UnknownFeatureError, UnknownTierError
from qrforge.models.subscription import FeatureKey, SubscriptionTier


UNLIMITED = -1


@dataclass(frozen=True)
class Metered:
    """Usage counted against a daily and a monthly budget (-1 = unlimited)."""
    daily: int
    monthly: int

    @property
    def unlimited(self) -> bool:
        return self.daily == UNLIMITED and self.monthly == UNLIMITED


@dataclass(frozen=True)
class Permission:
    """Feature simply on or off."""
    enabled: bool


@dataclass(frozen=True)
class Cap:
    """Hard numeric limit (e.g. max items in one bulk job)."""
    limit: int


Entitlement = Union[Metered, Permission, Cap]


def _tier(
    *,
    qr: Metered,
    barcode: Metered,
    bulk: Metered,
    ai: Metered,
    permissions: bool,
    caps: Dict[FeatureKey, int],
    switches: Dict[FeatureKey, bool],
) -> Mapping[FeatureKey, Entitlement]:
    entries: Dict[FeatureKey, Entitlement] = {
        FeatureKey.QR_CODES_GENERATED: qr,
        FeatureKey.BARCODES_GENERATED: barcode,
        FeatureKey.BULK_GENERATIONS: bulk,
        FeatureKey.AI_CUSTOMIZATIONS: ai,
    }
    for key in PERMISSION_FEATURES - set(switches):
        entries[key] = Permission(permissions)
    for key, enabled in switches.items():
        entries[key] = Permission(enabled)
    for key, limit in caps.items():
        entries[key] = Cap(limit)
    return MappingProxyType(entries)


METERED_FEATURES = frozenset({
    FeatureKey.QR_CODES_GENERATED,
    FeatureKey.BARCODES_GENERATED,
    FeatureKey.BULK_GENERATIONS,
    FeatureKey.AI_CUSTOMIZATIONS,
})

CAP_FEATURES = frozenset({
    FeatureKey.MAX_QR_CODES,
    FeatureKey.MAX_BARCODES,
    FeatureKey.MAX_BULK_ITEMS,
    FeatureKey.MAX_AI_CUSTOMIZATIONS,
    FeatureKey.MAX_TEAM_MEMBERS,
})

PERMISSION_FEATURES = frozenset(set(FeatureKey) - METERED_FEATURES - CAP_FEATURES)


POLICY_TABLE: Mapping[SubscriptionTier, Mapping[FeatureKey, Entitlement]] = MappingProxyType({
    SubscriptionTier.FREE: _tier(
        qr=Metered(daily=5, monthly=50),
        barcode=Metered(daily=5, monthly=50),
        bulk=Metered(daily=1, monthly=5),
        ai=Metered(daily=0, monthly=0),
        permissions=False,
        caps={
            FeatureKey.MAX_QR_CODES: 10,
            FeatureKey.MAX_BARCODES: 5,
            FeatureKey.MAX_BULK_ITEMS: 0,
            FeatureKey.MAX_AI_CUSTOMIZATIONS: 0,
            FeatureKey.MAX_TEAM_MEMBERS: 0,
        },
        switches={
            FeatureKey.BULK_GENERATION_ALLOWED: False,
            FeatureKey.AI_CUSTOMIZATION_ALLOWED: False,
            FeatureKey.ANALYTICS_ENABLED: False,
            FeatureKey.CUSTOM_BRANDING_ALLOWED: False,
            FeatureKey.TEAM_MEMBERS_ALLOWED: False,
        },
    ),
    SubscriptionTier.PRO: _tier(
        qr=Metered(daily=50, monthly=500),
        barcode=Metered(daily=50, monthly=500),
        bulk=Metered(daily=10, monthly=100),
        ai=Metered(daily=5, monthly=50),
        permissions=True,
        caps={
            FeatureKey.MAX_QR_CODES: 100,
            FeatureKey.MAX_BARCODES: 50,
            FeatureKey.MAX_BULK_ITEMS: 25,
            FeatureKey.MAX_AI_CUSTOMIZATIONS: 10,
            FeatureKey.MAX_TEAM_MEMBERS: 0,
        },
        switches={
            FeatureKey.BULK_GENERATION_ALLOWED: True,
            FeatureKey.AI_CUSTOMIZATION_ALLOWED: True,
            FeatureKey.ANALYTICS_ENABLED: True,
            FeatureKey.CUSTOM_BRANDING_ALLOWED: True,
            FeatureKey.TEAM_MEMBERS_ALLOWED: False,
        },
    ),
    SubscriptionTier.BUSINESS: _tier(
        qr=Metered(daily=500, monthly=5000),
        barcode=Metered(daily=500, monthly=5000),
        bulk=Metered(daily=100, monthly=1000),
        ai=Metered(daily=50, monthly=500),
        permissions=True,
        caps={
            FeatureKey.MAX_QR_CODES: 1000,
            FeatureKey.MAX_BARCODES: 500,
            FeatureKey.MAX_BULK_ITEMS: 100,
            FeatureKey.MAX_AI_CUSTOMIZATIONS: 50,
            FeatureKey.MAX_TEAM_MEMBERS: 5,
        },
        switches={
            FeatureKey.BULK_GENERATION_ALLOWED: True,
            FeatureKey.AI_CUSTOMIZATION_ALLOWED: True,
            FeatureKey.ANALYTICS_ENABLED: True,
            FeatureKey.CUSTOM_BRANDING_ALLOWED: True,
            FeatureKey.TEAM_MEMBERS_ALLOWED: True,
        },
    ),
})


# Monthly price in USD
SUBSCRIPTION_PRICING: Mapping[SubscriptionTier, Decimal] = MappingProxyType({
    SubscriptionTier.FREE: Decimal("0"),
    SubscriptionTier.PRO: Decimal("9.99"),
    SubscriptionTier.BUSINESS: Decimal("29.99"),
})


def is_metered(feature: FeatureKey) -> bool:
    return feature in METERED_FEATURES


def get_entitlement(
    tier: SubscriptionTier,
    feature: FeatureKey,
    table: Mapping[SubscriptionTier, Mapping[FeatureKey, Entitlement]] = POLICY_TABLE,
) -> Entitlement:
    """Strict lookup. Unknown tier or feature is a programming error."""
    try:
        tier_entries = table[tier]
    except KeyError:
        raise UnknownTierError(f"Unknown subscription tier: {tier!r}") from None
    try:
        return tier_entries[feature]
    except KeyError:
        raise UnknownFeatureError(f"Unknown feature: {feature!r}") from None


def _limit_rank(value: int) -> float:
    return float("inf") if value == UNLIMITED else value


def _at_least(higher: Entitlement, lower: Entitlement) -> bool:
    if isinstance(lower, Metered):
        return (
            _limit_rank(higher.daily) >= _limit_rank(lower.daily)
            and _limit_rank(higher.monthly) >= _limit_rank(lower.monthly)
        )
    if isinstance(lower, Permission):
        return higher.enabled or not lower.enabled
    return _limit_rank(higher.limit) >= _limit_rank(lower.limit)


def validate_policy_table(
    table: Mapping[SubscriptionTier, Mapping[FeatureKey, Entitlement]] = POLICY_TABLE,
) -> None:
    """Check completeness, type agreement and monotonicity across tiers.

    Raises PolicyTableError listing every violation found.
    """
    problems = []
    for tier in SubscriptionTier:
        entries = table.get(tier)
        if entries is None:
            problems.append(f"tier {tier.value} missing")
            continue
        missing = [f.value for f in FeatureKey if f not in entries]
        if missing:
            problems.append(f"tier {tier.value} missing features: {', '.join(sorted(missing))}")

    if problems:
        raise PolicyTableError("; ".join(problems))

    ordered = sorted(SubscriptionTier)
    for feature in FeatureKey:
        for lower, higher in zip(ordered, ordered[1:]):
            low_ent = table[lower][feature]
            high_ent = table[higher][feature]
            if type(low_ent) is not type(high_ent):
                problems.append(
                    f"{feature.value}: {lower.value} is {type(low_ent).__name__}, "
                    f"{higher.value} is {type(high_ent).__name__}"
                )
            elif not _at_least(high_ent, low_ent):
                problems.append(
                    f"{feature.value}: {higher.value} ({high_ent}) is stricter than {lower.value} ({low_ent})"
                )

    if problems:
        raise PolicyTableError("; ".join(problems))


def entitlement_to_dict(entitlement: Entitlement) -> Dict[str, Any]:
    if isinstance(entitlement, Metered):
        return {"type": "metered", "daily": entitlement.daily, "monthly": entitlement.monthly}
    if isinstance(entitlement, Permission):
        return {"type": "permission", "enabled": entitlement.enabled}
    return {"type": "cap", "limit": entitlement.limit}


def get_subscription_details(tier: SubscriptionTier) -> Dict[str, Any]:
    """Name, monthly price and entitlements of a tier, for display."""
    entries = POLICY_TABLE[SubscriptionTier(tier)]
    return {
        "tier": SubscriptionTier(tier).value,
        "name": SubscriptionTier(tier).display_name,
        "price": str(SUBSCRIPTION_PRICING[SubscriptionTier(tier)]),
        "currency": "USD",
        "features": {key.value: entitlement_to_dict(ent) for key, ent in entries.items()},
    }


validate_policy_table()
