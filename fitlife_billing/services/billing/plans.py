"""Membership plan catalog offered at checkout."""
from dataclasses import dataclass

from fitlife_billing.exceptions import ValidationError


@dataclass(frozen=True)
class MembershipPlan:
    key: str
    name: str
    price: int  # whole currency units
    interval: str
    features: tuple[str, ...]

    @property
    def unit_amount(self) -> int:
        return self.price * 100


PLANS: dict[str, MembershipPlan] = {
    "basic": MembershipPlan(
        key="basic",
        name="Basic",
        price=29,
        interval="month",
        features=(
            "Access to gym equipment",
            "Locker room access",
            "Basic fitness assessment",
            "Mobile app access",
        ),
    ),
    "standard": MembershipPlan(
        key="standard",
        name="Standard",
        price=49,
        interval="month",
        features=(
            "Everything in Basic",
            "Group fitness classes",
            "Personal training session (1/month)",
            "Nutrition consultation",
            "Guest passes (2/month)",
        ),
    ),
    "premium": MembershipPlan(
        key="premium",
        name="Premium",
        price=79,
        interval="month",
        features=(
            "Everything in Standard",
            "Unlimited personal training",
            "Premium classes access",
            "Massage therapy (1/month)",
            "Meal planning service",
            "Priority booking",
        ),
    ),
}


def get_plan(plan_type: str) -> MembershipPlan:
    plan = PLANS.get(plan_type)
    if plan is None:
        raise ValidationError(
            "Invalid plan", details={"plan_type": plan_type, "allowed": sorted(PLANS)}
        )
    return plan


def list_plans() -> list[dict]:
    return [
        {
            "key": plan.key,
            "name": plan.name,
            "price": plan.price,
            "interval": plan.interval,
            "features": list(plan.features),
        }
        for plan in PLANS.values()
    ]
