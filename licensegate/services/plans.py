"""
Plan table lookups.

Limits, upgrade targets, and price-tier mapping are all table-driven from
settings so deployments can override them.  A plan missing from the limits
table resolves to ``default_plan_limit``, never to unlimited.
"""
from __future__ import annotations

import logging

from licensegate.config import settings

logger = logging.getLogger(__name__)


def get_limit_for_plan(plan: str) -> int | None:
    """
    Resolve the license limit for a plan.

    Args:
        plan: Plan name

    Returns:
        Positive limit, or None for an unlimited plan
    """
    if plan in settings.plan_limits:
        return settings.plan_limits[plan]
    logger.warning(
        f"Unknown plan '{plan}', applying default cap of {settings.default_plan_limit}"
    )
    return settings.default_plan_limit


def get_next_plan(plan: str) -> str | None:
    """Upgrade target for ``plan``, or None if it is a top tier."""
    return settings.plan_upgrade_path.get(plan)


def get_plan_for_price(price_id: int | None) -> str:
    """Map a billing price tier to a plan, falling back to the default plan."""
    if price_id is None:
        return settings.default_plan
    return settings.price_plan_map.get(price_id, settings.default_plan)


def get_upgrade_url() -> str:
    """URL shown to customers who hit their limit."""
    return settings.upgrade_url


def usage_percent(count: int, limit: int | None) -> float:
    """Percentage of the limit in use, rounded to one decimal; 0 when unlimited."""
    if limit is None:
        return 0
    return round(count / limit * 100, 1)
