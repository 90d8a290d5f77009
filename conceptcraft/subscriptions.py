"""Subscription tiers, feature limits and monthly AI-generation quota."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Optional

import structlog

from .errors import QuotaExceeded
from .schemas import SubscriptionTier, User

logger = structlog.get_logger(__name__)

UNLIMITED = -1

UsageKind = Literal["concepts", "personas", "ai"]


@dataclass(frozen=True)
class SubscriptionLimits:
    max_business_concepts: int
    max_personas_per_concept: int
    max_ai_generations_per_month: int
    can_export_pdf: bool
    can_export_json: bool
    has_team_collaboration: bool
    has_advanced_ai: bool
    has_priority_support: bool


@dataclass(frozen=True)
class SubscriptionPlan:
    name: str
    price: int
    limits: SubscriptionLimits
    features: List[str]
    price_id: Optional[str] = None
    popular: bool = False


SUBSCRIPTION_PLANS: Dict[SubscriptionTier, SubscriptionPlan] = {
    SubscriptionTier.FREE: SubscriptionPlan(
        name="Free",
        price=0,
        limits=SubscriptionLimits(
            max_business_concepts=1,
            max_personas_per_concept=1,
            max_ai_generations_per_month=10,
            can_export_pdf=False,
            can_export_json=True,
            has_team_collaboration=False,
            has_advanced_ai=False,
            has_priority_support=False,
        ),
        features=[
            "1 Business Concept",
            "1 Persona per concept",
            "10 AI generations per month",
            "Basic Lean Canvas",
            "JSON export",
            "Community support",
        ],
    ),
    SubscriptionTier.PRO: SubscriptionPlan(
        name="Professional",
        price=49,
        price_id="price_pro_monthly",
        popular=True,
        limits=SubscriptionLimits(
            max_business_concepts=10,
            max_personas_per_concept=5,
            max_ai_generations_per_month=500,
            can_export_pdf=True,
            can_export_json=True,
            has_team_collaboration=False,
            has_advanced_ai=True,
            has_priority_support=False,
        ),
        features=[
            "10 Business Concepts",
            "5 Personas per concept",
            "500 AI generations per month",
            "Advanced AI features",
            "PDF & JSON export",
            "Pitch deck generator",
            "Email support",
        ],
    ),
    SubscriptionTier.BUSINESS: SubscriptionPlan(
        name="Business",
        price=99,
        price_id="price_business_monthly",
        limits=SubscriptionLimits(
            max_business_concepts=UNLIMITED,
            max_personas_per_concept=UNLIMITED,
            max_ai_generations_per_month=UNLIMITED,
            can_export_pdf=True,
            can_export_json=True,
            has_team_collaboration=True,
            has_advanced_ai=True,
            has_priority_support=True,
        ),
        features=[
            "Unlimited Business Concepts",
            "Unlimited Personas",
            "Unlimited AI generations",
            "Team collaboration",
            "Advanced AI features",
            "All export formats",
            "Priority support",
            "Custom integrations",
        ],
    ),
}


def get_limits(tier: SubscriptionTier) -> SubscriptionLimits:
    return SUBSCRIPTION_PLANS[tier].limits


def _within(limit: int, current: int) -> bool:
    return limit == UNLIMITED or current < limit


def can_create_business_concept(tier: SubscriptionTier, current_count: int) -> bool:
    return _within(get_limits(tier).max_business_concepts, current_count)


def can_create_persona(tier: SubscriptionTier, current_count: int) -> bool:
    return _within(get_limits(tier).max_personas_per_concept, current_count)


def can_use_ai(tier: SubscriptionTier, monthly_usage: int, calls: int = 1) -> bool:
    """True when *calls* more generations fit in this month's allowance."""

    return _within(get_limits(tier).max_ai_generations_per_month, monthly_usage + calls - 1)


def can_export_pdf(tier: SubscriptionTier) -> bool:
    return get_limits(tier).can_export_pdf


def can_export_json(tier: SubscriptionTier) -> bool:
    return get_limits(tier).can_export_json


def has_team_collaboration(tier: SubscriptionTier) -> bool:
    return get_limits(tier).has_team_collaboration


def has_advanced_ai(tier: SubscriptionTier) -> bool:
    return get_limits(tier).has_advanced_ai


def get_upgrade_message(tier: SubscriptionTier, feature: str) -> str:
    """Suggest the next tier up for *feature*."""

    next_tier = SubscriptionTier.PRO if tier is SubscriptionTier.FREE else SubscriptionTier.BUSINESS
    plan = SUBSCRIPTION_PLANS[next_tier]
    return f"Upgrade to {plan.name} (${plan.price}/month) to unlock {feature} and more features."


def get_remaining_usage(tier: SubscriptionTier, current_usage: int, kind: UsageKind) -> Optional[int]:
    """Return what is left of a limit, or None when the tier is unlimited."""

    limits = get_limits(tier)
    limit = {
        "concepts": limits.max_business_concepts,
        "personas": limits.max_personas_per_concept,
        "ai": limits.max_ai_generations_per_month,
    }[kind]
    if limit == UNLIMITED:
        return None
    return max(0, limit - current_usage)


# ---------------------------------------------------------------------------
# Usage tracking
# ---------------------------------------------------------------------------


def _month_key(user_id: str, now: datetime) -> str:
    return f"ai_usage_{user_id}_{now.strftime('%Y-%m')}"


class UsageTracker:
    """Count AI generations per user per calendar month in the key/value store."""

    def __init__(self, kv, *, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)) -> None:
        self._kv = kv
        self._clock = clock

    def monthly_usage(self, user_id: str) -> int:
        raw = self._kv.get(_month_key(user_id, self._clock()))
        try:
            return max(0, int(raw)) if raw is not None else 0
        except ValueError:
            return 0

    def track(self, user_id: str, count: int = 1) -> int:
        usage = self.monthly_usage(user_id) + count
        self._kv.set(_month_key(user_id, self._clock()), str(usage))
        return usage


class GenerationQuota:
    """Gate generation calls on the current user's monthly allowance."""

    def __init__(self, tracker: UsageTracker, current_user: Callable[[], Optional[User]]) -> None:
        self._tracker = tracker
        self._current_user = current_user

    def check(self, calls: int = 1) -> None:
        user = self._current_user()
        if user is None:
            return
        usage = self._tracker.monthly_usage(user.user_id)
        if not can_use_ai(user.subscription_tier, usage, calls):
            logger.info("ai_quota_exhausted", user_id=user.user_id, usage=usage, calls=calls)
            raise QuotaExceeded(get_upgrade_message(user.subscription_tier, "more AI generations"))

    def record(self, calls: int = 1) -> None:
        user = self._current_user()
        if user is not None:
            self._tracker.track(user.user_id, calls)

    def summary(self, user: User) -> tuple[int, Optional[int]]:
        usage = self._tracker.monthly_usage(user.user_id)
        return usage, get_remaining_usage(user.subscription_tier, usage, "ai")
