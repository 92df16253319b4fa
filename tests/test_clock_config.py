from __future__ import annotations

from datetime import date

import pytest

from clock import BusinessClock, parse_calendar_date
from conftest import BASE_ENV, make_config
from cycle_config import load_config


def test_parse_calendar_date_keeps_components():
    assert parse_calendar_date("2025-06-05") == date(2025, 6, 5)
    assert parse_calendar_date(" 2025-12-31 ") == date(2025, 12, 31)
    assert parse_calendar_date("2026-1-2") == date(2026, 1, 2)


@pytest.mark.parametrize("bad", ["", "2025/06/05", "05-06-2025", "2025-13-01", "2025-02-30", "2025-06-05T00:00:00Z"])
def test_parse_calendar_date_rejects_malformed(bad):
    with pytest.raises(ValueError):
        parse_calendar_date(bad)


def test_clock_override_is_returned_verbatim():
    clock = BusinessClock("Europe/Berlin", override=date(2025, 6, 10))
    assert clock.today() == date(2025, 6, 10)
    assert "simulated" in clock.describe()


def test_clock_without_override_uses_business_timezone():
    clock = BusinessClock("Europe/Berlin")
    assert isinstance(clock.today(), date)


def test_unknown_timezone():
    with pytest.raises(ValueError):
        BusinessClock("Mars/Olympus_Mons")


def test_defaults():
    cfg = make_config()
    assert cfg.phase.public_start_day == 1
    assert cfg.phase.public_end_day == 7
    assert cfg.phase.preorder_start_day == 8
    assert cfg.business_tz == "Europe/Berlin"
    assert cfg.mf_reference_key == "data_referencia"
    assert cfg.mf_phase_key == "sale_phase"
    assert not cfg.test_mode
    assert not cfg.dry_run


def test_phase_day_overrides():
    cfg = make_config(PUBLIC_START_DAY=2, PUBLIC_END_DAY=9, PREORDER_START_DAY=15)
    assert cfg.phase.as_dict() == {"public_start_day": 2, "public_end_day": 9, "preorder_start_day": 15}


def test_test_date_only_applies_in_test_mode():
    assert make_config(TEST_DATE="2025-06-10").build_clock().override is None
    clock = make_config(TEST_MODE="true", TEST_DATE="2025-06-10").build_clock()
    assert clock.today() == date(2025, 6, 10)


def test_shop_url_is_normalized():
    cfg = make_config(SHOPIFY_STORE_URL="https://My-Shop.myshopify.com/")
    assert cfg.shop_domain == "my-shop.myshopify.com"


@pytest.mark.parametrize("missing", ["SHOPIFY_STORE_URL", "SHOPIFY_ACCESS_TOKEN", "API_KEY"])
def test_missing_required_is_fatal(missing):
    env = {k: v for k, v in BASE_ENV.items() if k != missing}
    with pytest.raises(SystemExit):
        load_config(env)


@pytest.mark.parametrize(
    "overrides",
    [
        {"TEST_MODE": "true", "TEST_DATE": "10/06/2025"},
        {"TEST_DATE": "2025-02-30"},
        {"PUBLIC_END_DAY": "seven"},
        {"PREORDER_START_DAY": "32"},
        {"PUBLIC_START_DAY": "0"},
        {"BUSINESS_TZ": "Nowhere/City"},
        {"MUTATION_SLEEP_SEC": "fast"},
    ],
)
def test_malformed_settings_are_fatal(overrides):
    with pytest.raises(SystemExit):
        make_config(**overrides)


def test_out_of_order_days_only_warn(capsys):
    cfg = make_config(PUBLIC_START_DAY=10, PUBLIC_END_DAY=5)
    assert cfg.phase.public_start_day == 10
    assert "[WARN]" in capsys.readouterr().out


def test_public_view_hides_secrets():
    view = make_config(SLACK_WEBHOOK_URL="https://hooks.slack.com/x").public_view()
    assert "access_token" not in view
    assert "api_key" not in view
    assert "slack_webhook_url" not in view
    assert view["shop_domain"] == "test-shop.myshopify.com"


def test_port_is_validated_once():
    assert make_config().port == 10000
    assert make_config(PORT=8080).port == 8080
    with pytest.raises(SystemExit):
        make_config(PORT="eighty")
