"""Fixed subscription plan catalog (price and duration per tier)"""
from decimal import Decimal
from typing import Any, Dict, List

from app.core.exceptions import InvalidPlanError


PLANS: Dict[str, Dict[str, Any]] = {
    "mobile-v4-basic": {
        "id": "mobile-v4-basic",
        "name": "Mobile V4 Basic",
        "price": Decimal("29.99"),
        "duration_days": 30,
    },
    "mobile-v4-premium": {
        "id": "mobile-v4-premium",
        "name": "Mobile V4 Premium",
        "price": Decimal("49.99"),
        "duration_days": 60,
    },
    "mobile-v4-enterprise": {
        "id": "mobile-v4-enterprise",
        "name": "Mobile V4 Enterprise",
        "price": Decimal("99.99"),
        "duration_days": 90,
    },
    "mobile-v5-basic": {
        "id": "mobile-v5-basic",
        "name": "Mobile V5 Basic",
        "price": Decimal("39.99"),
        "duration_days": 30,
    },
    "mobile-v5-premium": {
        "id": "mobile-v5-premium",
        "name": "Mobile V5 Premium",
        "price": Decimal("59.99"),
        "duration_days": 60,
    },
    "full-suite-basic": {
        "id": "full-suite-basic",
        "name": "Full Suite Basic",
        "price": Decimal("79.99"),
        "duration_days": 60,
    },
    "full-suite-premium": {
        "id": "full-suite-premium",
        "name": "Full Suite Premium",
        "price": Decimal("149.99"),
        "duration_days": 90,
    },
}


def is_valid_plan(plan: str) -> bool:
    return plan in PLANS


def get_plan(plan: str) -> Dict[str, Any]:
    """Look up a plan, raising InvalidPlanError for anything outside the catalog"""
    try:
        return PLANS[plan]
    except (KeyError, TypeError):
        raise InvalidPlanError(
            f"Invalid plan '{plan}'. Must be one of: {', '.join(PLANS)}"
        )


def get_plan_price(plan: str) -> Decimal:
    return get_plan(plan)["price"]


def get_plan_duration(plan: str) -> int:
    """Plan duration in days"""
    return get_plan(plan)["duration_days"]


def list_plans() -> List[Dict[str, Any]]:
    return list(PLANS.values())
