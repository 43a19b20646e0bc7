"""
Plan-Based Feature Gating

- Free: manual cost sync, forecasts, anomalies
- Starter: + scheduled daily sync
- Pro: + email anomaly alerts
"""

from enum import Enum

import structlog

logger = structlog.get_logger()


class PricingTier(str, Enum):
    """Subscription plans in order of access level."""
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"


class FeatureFlag(str, Enum):
    COST_SYNC = "cost_sync"
    FORECASTING = "forecasting"
    SCHEDULED_SYNC = "scheduled_sync"
    EMAIL_ALERTS = "email_alerts"


TIER_FEATURES = {
    PricingTier.FREE: {
        FeatureFlag.COST_SYNC,
        FeatureFlag.FORECASTING,
    },
    PricingTier.STARTER: {
        FeatureFlag.COST_SYNC,
        FeatureFlag.FORECASTING,
        FeatureFlag.SCHEDULED_SYNC,
    },
    PricingTier.PRO: {
        *[f for f in FeatureFlag],
    },
}


def normalize_plan(plan) -> PricingTier:
    """Map a stored plan value to a tier; unknown values fall back to FREE."""
    if isinstance(plan, PricingTier):
        return plan
    try:
        return PricingTier(str(plan or "").strip().lower())
    except ValueError:
        logger.warning("unknown_plan", plan=plan)
        return PricingTier.FREE


def has_feature(plan, feature: FeatureFlag) -> bool:
    """Check if a plan has access to a feature."""
    return feature in TIER_FEATURES.get(normalize_plan(plan), set())
