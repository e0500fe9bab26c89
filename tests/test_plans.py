"""Tests for plan table lookups."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from licensegate.config import Settings, settings
from licensegate.services.plans import (
    get_limit_for_plan,
    get_next_plan,
    get_plan_for_price,
    get_upgrade_url,
    usage_percent,
)


def test_default_limits():
    assert get_limit_for_plan("solo") == 500
    assert get_limit_for_plan("studio") is None
    assert get_limit_for_plan("agency") is None


def test_unknown_plan_fails_closed():
    assert get_limit_for_plan("mystery") == settings.default_plan_limit


def test_limits_overridable(monkeypatch):
    monkeypatch.setattr(settings, "plan_limits", {"solo": 250, "studio": 2000})
    assert get_limit_for_plan("solo") == 250
    assert get_limit_for_plan("studio") == 2000
    assert get_limit_for_plan("agency") == settings.default_plan_limit


def test_upgrade_path():
    assert get_next_plan("solo") == "studio"
    assert get_next_plan("studio") is None
    assert get_next_plan("agency") is None


def test_price_mapping():
    assert get_plan_for_price(1) == "solo"
    assert get_plan_for_price(2) == "studio"
    assert get_plan_for_price(3) == "agency"
    assert get_plan_for_price(99) == "solo"
    assert get_plan_for_price(None) == "solo"


def test_upgrade_url(monkeypatch):
    monkeypatch.setattr(settings, "upgrade_url", "https://example.com/upgrade")
    assert get_upgrade_url() == "https://example.com/upgrade"


@pytest.mark.parametrize(
    "count,limit,expected",
    [(0, 500, 0.0), (250, 500, 50.0), (1, 3, 33.3), (620, 500, 124.0), (10, None, 0)],
)
def test_usage_percent(count, limit, expected):
    assert usage_percent(count, limit) == expected


def test_non_positive_plan_limit_rejected():
    with pytest.raises(ValidationError):
        Settings(plan_limits={"solo": 0})


def test_non_positive_default_cap_rejected():
    with pytest.raises(ValidationError):
        Settings(default_plan_limit=-1)
